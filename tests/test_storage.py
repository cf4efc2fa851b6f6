"""Blob storage: sharding, disk round-trips and the S3 backend."""

from __future__ import annotations

import errno
from pathlib import Path

import pytest
from botocore.exceptions import ClientError

from archiver.config import ArchiverConfig, DiskConfig, S3Config
from archiver.errors import ConfigurationError, NotFoundError, StorageError
from archiver.storage import DiskStorage, S3Storage, guess_mime, make_storage, split_path


def test_split_path_takes_four_pairs():
    assert split_path("1234567890") == "12/34/56/78"


def test_split_path_short_key():
    assert split_path("123") == "12/3"
    assert split_path("1") == "1"


def test_split_path_is_deterministic_for_thumbnail_keys():
    assert split_path("1704067200123s.jpg") == split_path("1704067200123.png") == "17/04/06/72"


def test_guess_mime():
    assert guess_mime("1.webm") == "video/webm"
    assert guess_mime("1s.jpg") == "image/jpeg"
    assert guess_mime("noext") == "application/octet-stream"


@pytest.mark.asyncio
async def test_disk_put_get_roundtrip(storage: DiskStorage):
    assert not await storage.exists("1234567890.jpg", "g")
    await storage.put("1234567890.jpg", "g", b"\xff\xd8payload")
    assert await storage.exists("1234567890.jpg", "g")
    assert await storage.get("1234567890.jpg", "g") == b"\xff\xd8payload"


@pytest.mark.asyncio
async def test_disk_layout_on_disk(storage: DiskStorage):
    await storage.put("1234567890.jpg", "g", b"x")
    expected = storage.root / "g" / "12" / "34" / "56" / "78" / "1234567890.jpg"
    assert expected.is_file()


@pytest.mark.asyncio
async def test_disk_namespaces_are_separate(storage: DiskStorage):
    await storage.put("1234567890.jpg", "g", b"x")
    assert not await storage.exists("1234567890.jpg", "v")


@pytest.mark.asyncio
async def test_disk_get_missing_raises_not_found(storage: DiskStorage):
    with pytest.raises(NotFoundError):
        await storage.get("999.png", "g")


@pytest.mark.asyncio
async def test_disk_failed_write_leaves_nothing_behind(storage: DiskStorage, monkeypatch):
    def half_write(self: Path, data: bytes) -> int:
        with open(self, "wb") as f:
            f.write(data[: len(data) // 2])
        raise OSError(errno.ENOSPC, "No space left on device")

    monkeypatch.setattr(Path, "write_bytes", half_write)
    with pytest.raises(StorageError):
        await storage.put("1234567890.jpg", "x", b"0123456789")
    monkeypatch.undo()

    assert not await storage.exists("1234567890.jpg", "x")
    await storage.put("1234567890.jpg", "x", b"0123456789")
    assert await storage.get("1234567890.jpg", "x") == b"0123456789"


def _client_error(code: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, "HeadObject")


class FakeS3:
    def __init__(self) -> None:
        self.objects: dict[tuple[str, str], dict] = {}
        self.buckets: set[str] = set()

    def head_bucket(self, Bucket):
        if Bucket not in self.buckets:
            raise _client_error("404")

    def create_bucket(self, Bucket):
        self.buckets.add(Bucket)

    def head_object(self, Bucket, Key):
        if (Bucket, Key) not in self.objects:
            raise _client_error("404")
        return {}

    def put_object(self, Bucket, Key, Body, ContentType):
        self.objects[(Bucket, Key)] = {"Body": Body, "ContentType": ContentType}

    def get_object(self, Bucket, Key):
        if (Bucket, Key) not in self.objects:
            raise _client_error("NoSuchKey")
        body = self.objects[(Bucket, Key)]["Body"]

        class _Stream:
            def read(self):
                return body

        return {"Body": _Stream()}


@pytest.mark.asyncio
async def test_s3_uses_sharded_keys_and_creates_bucket():
    fake = FakeS3()
    s3 = S3Storage(S3Config(bucket="arc"), client=fake)
    assert "arc" in fake.buckets

    assert not await s3.exists("1234567890.webm", "wsg")
    await s3.put("1234567890.webm", "wsg", b"data")
    assert ("arc", "wsg/12/34/56/78/1234567890.webm") in fake.objects
    assert fake.objects[("arc", "wsg/12/34/56/78/1234567890.webm")]["ContentType"] == "video/webm"
    assert await s3.exists("1234567890.webm", "wsg")
    assert await s3.get("1234567890.webm", "wsg") == b"data"


@pytest.mark.asyncio
async def test_s3_get_missing_raises_not_found():
    s3 = S3Storage(S3Config(bucket="arc"), client=FakeS3())
    with pytest.raises(NotFoundError):
        await s3.get("nope.jpg", "g")


def test_make_storage_selects_driver(tmp_path):
    cfg = ArchiverConfig(disk=DiskConfig(data_dir=tmp_path), storage_driver="disk")
    assert isinstance(make_storage(cfg), DiskStorage)

    cfg.storage_driver = "ftp"
    with pytest.raises(ConfigurationError):
        make_storage(cfg)
