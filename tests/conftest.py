"""Shared fixtures: a fake 4chan remote and an in-memory post repository."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from email.utils import parsedate_to_datetime
from typing import Any

import httpx
import pytest

from archiver.api import FourChanAPI
from archiver.config import ArchiverConfig, BoardConfig, DiskConfig, FourChanConfig
from archiver.db import MUTABLE_COLUMNS
from archiver.errors import PersistenceError
from archiver.models import Post
from archiver.storage import DiskStorage

# ==================== API payload factories ====================


def make_post(no: int, resto: int = 0, **overrides: Any) -> dict[str, Any]:
    data: dict[str, Any] = {
        "no": no,
        "resto": resto,
        "now": "01/01/24(Mon)00:00:00",
        "time": 1704067200,
        "name": "Anonymous",
        "com": f"post {no}",
    }
    if resto == 0:
        data.update({"sub": f"thread {no}", "replies": 0, "images": 0, "unique_ips": 1})
    data.update(overrides)
    return data


def with_file(data: dict[str, Any], tim: int = 1704067200123, ext: str = ".jpg") -> dict[str, Any]:
    data.update({
        "tim": tim,
        "filename": "image",
        "ext": ext,
        "fsize": 1024,
        "md5": "rBEvZ1hK0GkW7ZkZfL1MuQ==",
        "w": 800,
        "h": 600,
        "tn_w": 250,
        "tn_h": 187,
    })
    return data


def make_board(code: str) -> dict[str, Any]:
    return {
        "board": code,
        "title": f"Board {code}",
        "ws_board": 1,
        "per_page": 15,
        "pages": 10,
        "max_filesize": 4194304,
        "max_webm_filesize": 3145728,
        "max_comment_chars": 2000,
        "bump_limit": 300,
        "image_limit": 150,
        "cooldowns": {"threads": 600, "replies": 60, "images": 60},
        "meta_description": "",
    }


# ==================== fake remote ====================


@dataclass
class FakeRemote:
    """In-process stand-in for a.4cdn.org / i.4cdn.org."""

    boards: list[str] = field(default_factory=lambda: ["x"])
    threads: dict[tuple[str, int], list[dict[str, Any]]] = field(default_factory=dict)
    files: dict[tuple[str, str], bytes] = field(default_factory=dict)
    modified: dict[tuple[str, int], bool] = field(default_factory=dict)
    requests: list[httpx.Request] = field(default_factory=list)
    fail_paths: dict[str, int] = field(default_factory=dict)
    # listed in threads.json but already gone from the thread endpoint
    pruned: set[tuple[str, int]] = field(default_factory=set)

    def add_thread(self, board: str, posts: list[dict[str, Any]]) -> None:
        self.threads[(board, posts[0]["no"])] = posts

    def add_file(self, board: str, key: str, body: bytes) -> None:
        self.files[(board, key)] = body

    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path in self.fail_paths:
            return httpx.Response(self.fail_paths[path])

        if request.url.host == "i.4cdn.org":
            board, key = path.strip("/").split("/", 1)
            body = self.files.get((board, key))
            if body is None:
                return httpx.Response(404)
            return httpx.Response(200, content=body)

        if path == "/boards.json":
            return httpx.Response(200, json={"boards": [make_board(b) for b in self.boards]})

        m = re.fullmatch(r"/(\w+)/threads\.json", path)
        if m:
            board = m.group(1)
            entries = [
                {"no": no, "last_modified": 1704067200, "replies": len(posts) - 1}
                for (b, no), posts in self.threads.items()
                if b == board
            ]
            entries += [
                {"no": no, "last_modified": 1704067200, "replies": 0}
                for b, no in sorted(self.pruned)
                if b == board
            ]
            return httpx.Response(200, json=[{"page": 1, "threads": entries}])

        m = re.fullmatch(r"/(\w+)/thread/(\d+)\.json", path)
        if m:
            key = (m.group(1), int(m.group(2)))
            posts = self.threads.get(key)
            if posts is None:
                return httpx.Response(404)
            since = request.headers.get("If-Modified-Since")
            if since and not self.modified.get(key, False):
                parsedate_to_datetime(since)
                return httpx.Response(304)
            return httpx.Response(200, json={"posts": posts})

        return httpx.Response(404)


# ==================== in-memory repository ====================


class FakeRepository:
    """Applies the same conflict rule as the SQL upsert, in memory."""

    def __init__(self) -> None:
        self.rows: dict[int, dict[str, Any]] = {}
        self.calls = 0
        self.fail_on: set[int] = set()

    async def open(self) -> None:
        pass

    async def upsert(self, post: Post) -> None:
        self.calls += 1
        if post.no in self.fail_on:
            raise PersistenceError(f"boom on {post.no}")
        row = post.as_row()
        existing = self.rows.get(post.no)
        if existing is None:
            self.rows[post.no] = row
        else:
            for col in MUTABLE_COLUMNS:
                existing[col] = row[col]

    async def close(self) -> None:
        pass


# ==================== fixtures ====================


FAST_API = FourChanConfig(request_delay=0.0, max_retries=2, retry_backoff=0.0, timeout=5.0)


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def api(remote: FakeRemote) -> FourChanAPI:
    return FourChanAPI(FAST_API, transport=httpx.MockTransport(remote.handler))


@pytest.fixture
def repository() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def storage(tmp_path) -> DiskStorage:
    return DiskStorage(DiskConfig(data_dir=tmp_path / "data"))


@pytest.fixture
def make_config(tmp_path):
    def _make(boards: dict[str, BoardConfig] | None = None, **kwargs: Any) -> ArchiverConfig:
        kwargs.setdefault("cycle_interval", 0.0)
        return ArchiverConfig(
            fourchan=FAST_API,
            disk=DiskConfig(data_dir=tmp_path / "data"),
            boards=boards if boards is not None else {"x": BoardConfig()},
            storage_driver="disk",
            **kwargs,
        )

    return _make
