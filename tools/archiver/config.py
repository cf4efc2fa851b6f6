"""Configuration and environment settings for the archiver."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigurationError


@dataclass(frozen=True)
class DatabaseConfig:
    host: str = "localhost"
    port: int = 5432
    dbname: str = "archiver"
    user: str = "archiver"
    password: str = "archiver"
    url: str | None = None
    pool_size: int = 10

    @property
    def dsn(self) -> str:
        if self.url:
            return self.url
        return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.dbname}"

    @classmethod
    def from_env(cls) -> DatabaseConfig:
        return cls(
            host=os.getenv("DB_HOST", "localhost"),
            port=int(os.getenv("DB_PORT", "5432")),
            dbname=os.getenv("DB_NAME", "archiver"),
            user=os.getenv("DB_USER", "archiver"),
            password=os.getenv("DB_PASSWORD", "archiver"),
            url=os.getenv("DATABASE_URL") or None,
        )


@dataclass(frozen=True)
class S3Config:
    endpoint: str = "http://localhost:9000"
    access_key: str = "minioadmin"
    secret_key: str = "minioadmin"
    bucket: str = "archiver"
    use_ssl: bool = False

    @classmethod
    def from_env(cls) -> S3Config:
        return cls(
            endpoint=os.getenv("S3_ENDPOINT", "http://localhost:9000"),
            access_key=os.getenv("S3_ACCESS_KEY", "minioadmin"),
            secret_key=os.getenv("S3_SECRET_KEY", "minioadmin"),
            bucket=os.getenv("S3_BUCKET", "archiver"),
            use_ssl=os.getenv("S3_USE_SSL", "false").lower() == "true",
        )


@dataclass(frozen=True)
class DiskConfig:
    data_dir: Path = Path("data")

    @classmethod
    def from_env(cls) -> DiskConfig:
        return cls(data_dir=Path(os.getenv("DATA_DIR", "data")))


@dataclass(frozen=True)
class FourChanConfig:
    """4chan API configuration.  Respects the 1-request-per-second guideline."""
    api_base: str = "https://a.4cdn.org"
    image_base: str = "https://i.4cdn.org"
    thumb_base: str = "https://i.4cdn.org"
    request_delay: float = 1.1  # seconds between API requests
    max_retries: int = 3
    retry_backoff: float = 2.0
    timeout: float = 30.0
    user_agent: str = "board-archiver/1.0"


@dataclass(frozen=True)
class BoardConfig:
    """Per-board archival settings."""

    # Only thumbnails are saved when false
    full_media: bool = True
    filters: tuple[re.Pattern[str], ...] = ()
    filter_comment: bool = False
    reverse_filter: bool = False

    @classmethod
    def from_dict(cls, name: str, raw: dict[str, Any] | None) -> BoardConfig:
        raw = raw or {}
        if not isinstance(raw, dict):
            raise ConfigurationError(f"board {name!r}: settings must be a mapping")
        patterns = raw.get("filters") or []
        if not isinstance(patterns, list):
            raise ConfigurationError(f"board {name!r}: filters must be a list of regexes")
        compiled = []
        for pattern in patterns:
            try:
                compiled.append(re.compile(str(pattern), re.IGNORECASE))
            except re.error as exc:
                raise ConfigurationError(f"board {name!r}: invalid filter {pattern!r}: {exc}") from exc
        return cls(
            full_media=bool(raw.get("full_media", True)),
            filters=tuple(compiled),
            filter_comment=bool(raw.get("filter_comment", False)),
            reverse_filter=bool(raw.get("reverse_filter", False)),
        )


@dataclass
class ArchiverConfig:
    db: DatabaseConfig = field(default_factory=DatabaseConfig.from_env)
    s3: S3Config = field(default_factory=S3Config.from_env)
    disk: DiskConfig = field(default_factory=DiskConfig.from_env)
    fourchan: FourChanConfig = field(default_factory=FourChanConfig)
    boards: dict[str, BoardConfig] = field(default_factory=dict)
    storage_driver: str = field(default_factory=lambda: os.getenv("STORAGE_DRIVER", "disk"))
    concurrency: int = 4
    cycle_interval: float = 600.0


def load_boards(path: str | os.PathLike[str]) -> tuple[dict[str, BoardConfig], dict[str, Any]]:
    """Read the YAML board file.

    Returns the board settings (in file order) and the remaining top-level
    options (``concurrency``, ``cycle_interval``).
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as exc:
        raise ConfigurationError(f"failed to read config file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"failed to parse config file {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigurationError(f"{path}: top level must be a mapping")
    raw_boards = data.get("boards")
    if not isinstance(raw_boards, dict) or not raw_boards:
        raise ConfigurationError(f"{path}: no boards configured")

    boards = {str(name): BoardConfig.from_dict(str(name), raw) for name, raw in raw_boards.items()}
    options: dict[str, Any] = {}
    try:
        if "concurrency" in data:
            options["concurrency"] = int(data["concurrency"])
        if "cycle_interval" in data:
            options["cycle_interval"] = float(data["cycle_interval"])
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{path}: {exc}") from exc
    if options.get("concurrency", 1) < 1:
        raise ConfigurationError(f"{path}: concurrency must be at least 1")
    return boards, options


def load_config(path: str | os.PathLike[str], base: ArchiverConfig | None = None) -> ArchiverConfig:
    """Build an ArchiverConfig from the environment plus a YAML board file."""
    boards, options = load_boards(path)
    cfg = base or ArchiverConfig()
    return ArchiverConfig(
        db=cfg.db,
        s3=cfg.s3,
        disk=cfg.disk,
        fourchan=cfg.fourchan,
        boards=boards,
        storage_driver=cfg.storage_driver,
        concurrency=options.get("concurrency", cfg.concurrency),
        cycle_interval=options.get("cycle_interval", cfg.cycle_interval),
    )
