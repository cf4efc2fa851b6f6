"""Blob storage – content-addressed attachment and thumbnail files on disk or MinIO/S3."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import ArchiverConfig, DiskConfig, S3Config
from .errors import ConfigurationError, NotFoundError, StorageError

logger = logging.getLogger("archiver.storage")

# Map file extension → MIME type
MIME_MAP: dict[str, str] = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webm": "video/webm",
    ".mp4": "video/mp4",
    ".webp": "image/webp",
    ".swf": "application/x-shockwave-flash",
    ".pdf": "application/pdf",
}

SHARD_DEPTH = 4
SHARD_WIDTH = 2


def guess_mime(key: str) -> str:
    ext = key[key.rfind("."):].lower() if "." in key else ""
    return MIME_MAP.get(ext, "application/octet-stream")


def shard_segments(key: str) -> list[str]:
    """Up to four two-character directory names from the start of ``key``."""
    head = key[: SHARD_DEPTH * SHARD_WIDTH]
    return [head[i : i + SHARD_WIDTH] for i in range(0, len(head), SHARD_WIDTH)]


def split_path(key: str) -> str:
    """``"1234567890"`` → ``"12/34/56/78"``; ``"123"`` → ``"12/3"``."""
    return "/".join(shard_segments(key))


class BlobStorage(ABC):
    """Write-once key/value store, one namespace per board."""

    @abstractmethod
    async def exists(self, key: str, namespace: str) -> bool: ...

    @abstractmethod
    async def put(self, key: str, namespace: str, data: bytes) -> None: ...

    @abstractmethod
    async def get(self, key: str, namespace: str) -> bytes: ...

    async def close(self) -> None:
        pass


class DiskStorage(BlobStorage):
    """Stores blobs under ``<root>/<namespace>/<aa>/<bb>/<cc>/<dd>/<key>``."""

    def __init__(self, cfg: DiskConfig | None = None) -> None:
        self.cfg = cfg or DiskConfig.from_env()
        self.root = Path(self.cfg.data_dir)

    def path_for(self, key: str, namespace: str) -> Path:
        return self.root.joinpath(namespace, *shard_segments(key), key)

    async def exists(self, key: str, namespace: str) -> bool:
        return await asyncio.to_thread(self.path_for(key, namespace).is_file)

    async def put(self, key: str, namespace: str, data: bytes) -> None:
        path = self.path_for(key, namespace)
        logger.debug("saving file %s", path)
        try:
            await asyncio.to_thread(self._write, path, data)
        except OSError as exc:
            raise StorageError(f"failed to write {path}: {exc}") from exc

    @staticmethod
    def _write(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            path.write_bytes(data)
        except BaseException:
            # a partial file would pass exists() and never be refetched
            path.unlink(missing_ok=True)
            raise

    async def get(self, key: str, namespace: str) -> bytes:
        path = self.path_for(key, namespace)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as exc:
            raise NotFoundError(f"no blob {namespace}/{key}") from exc
        except OSError as exc:
            raise StorageError(f"failed to read {path}: {exc}") from exc


class S3Storage(BlobStorage):
    """Stores blobs in MinIO / S3 using the same sharded key layout."""

    def __init__(self, cfg: S3Config | None = None, *, client: Any = None) -> None:
        self.cfg = cfg or S3Config.from_env()
        self._s3 = client or boto3.client(
            "s3",
            endpoint_url=self.cfg.endpoint,
            aws_access_key_id=self.cfg.access_key,
            aws_secret_access_key=self.cfg.secret_key,
            config=BotoConfig(signature_version="s3v4"),
            use_ssl=self.cfg.use_ssl,
        )
        self._ensure_bucket()

    def _ensure_bucket(self) -> None:
        try:
            self._s3.head_bucket(Bucket=self.cfg.bucket)
        except ClientError:
            try:
                self._s3.create_bucket(Bucket=self.cfg.bucket)
                logger.info("Created bucket: %s", self.cfg.bucket)
            except (BotoCoreError, ClientError) as exc:
                logger.warning("Could not ensure bucket %s exists: %s", self.cfg.bucket, exc)

    @staticmethod
    def object_key(key: str, namespace: str) -> str:
        return f"{namespace}/{split_path(key)}/{key}"

    @staticmethod
    def _is_missing(exc: ClientError) -> bool:
        code = exc.response.get("Error", {}).get("Code", "")
        return code in ("404", "NoSuchKey", "NotFound")

    async def exists(self, key: str, namespace: str) -> bool:
        object_key = self.object_key(key, namespace)
        try:
            await asyncio.to_thread(self._s3.head_object, Bucket=self.cfg.bucket, Key=object_key)
        except ClientError as exc:
            if self._is_missing(exc):
                return False
            raise StorageError(f"failed to stat {object_key}: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"failed to stat {object_key}: {exc}") from exc
        return True

    async def put(self, key: str, namespace: str, data: bytes) -> None:
        object_key = self.object_key(key, namespace)
        logger.debug("uploading %s (%d bytes)", object_key, len(data))
        try:
            await asyncio.to_thread(
                self._s3.put_object,
                Bucket=self.cfg.bucket,
                Key=object_key,
                Body=data,
                ContentType=guess_mime(key),
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"failed to upload {object_key}: {exc}") from exc

    async def get(self, key: str, namespace: str) -> bytes:
        object_key = self.object_key(key, namespace)
        try:
            resp = await asyncio.to_thread(self._s3.get_object, Bucket=self.cfg.bucket, Key=object_key)
            return await asyncio.to_thread(resp["Body"].read)
        except ClientError as exc:
            if self._is_missing(exc):
                raise NotFoundError(f"no blob {namespace}/{key}") from exc
            raise StorageError(f"failed to download {object_key}: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"failed to download {object_key}: {exc}") from exc


def make_storage(cfg: ArchiverConfig) -> BlobStorage:
    """Build the storage backend selected by ``cfg.storage_driver``."""
    if cfg.storage_driver == "disk":
        return DiskStorage(cfg.disk)
    if cfg.storage_driver == "s3":
        return S3Storage(cfg.s3)
    raise ConfigurationError(f"Unknown storage driver: {cfg.storage_driver}")
