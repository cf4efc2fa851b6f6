"""Database operations – idempotent post upserts into PostgreSQL."""

from __future__ import annotations

import logging

import psycopg
from psycopg_pool import AsyncConnectionPool

from .config import DatabaseConfig
from .errors import PersistenceError
from .models import Post

logger = logging.getLogger("archiver.db")

POST_COLUMNS: tuple[str, ...] = (
    "no", "resto", "sticky", "closed", "now", "time", "name", "trip",
    "id", "capcode", "country", "country_name", "board_flag", "flag_name", "sub", "com",
    "tim", "filename", "ext", "fsize", "md5", "w", "h", "tn_w",
    "tn_h", "filedeleted", "spoiler", "custom_spoiler", "replies", "images", "bumplimit", "imagelimit",
    "tag", "semantic_url", "since4pass", "unique_ips", "m_img", "archived", "archived_on", "board",
)

# Columns that change over a thread's life; everything else is fixed at first insert.
MUTABLE_COLUMNS: tuple[str, ...] = (
    "filedeleted", "replies", "images", "bumplimit",
    "imagelimit", "unique_ips", "archived", "archived_on",
)

SCHEMA = """
CREATE TABLE IF NOT EXISTS posts (
    no              BIGINT PRIMARY KEY,
    resto           BIGINT NOT NULL,
    sticky          SMALLINT NOT NULL DEFAULT 0,
    closed          SMALLINT NOT NULL DEFAULT 0,
    now             TEXT NOT NULL DEFAULT '',
    time            BIGINT NOT NULL,
    name            TEXT NOT NULL DEFAULT 'Anonymous',
    trip            TEXT,
    id              TEXT,
    capcode         TEXT,
    country         TEXT,
    country_name    TEXT,
    board_flag      TEXT,
    flag_name       TEXT,
    sub             TEXT,
    com             TEXT,
    tim             BIGINT,
    filename        TEXT,
    ext             TEXT,
    fsize           BIGINT,
    md5             TEXT,
    w               INTEGER,
    h               INTEGER,
    tn_w            INTEGER,
    tn_h            INTEGER,
    filedeleted     SMALLINT NOT NULL DEFAULT 0,
    spoiler         SMALLINT NOT NULL DEFAULT 0,
    custom_spoiler  SMALLINT,
    replies         INTEGER,
    images          INTEGER,
    bumplimit       SMALLINT NOT NULL DEFAULT 0,
    imagelimit      SMALLINT NOT NULL DEFAULT 0,
    tag             TEXT,
    semantic_url    TEXT,
    since4pass      INTEGER,
    unique_ips      INTEGER,
    m_img           SMALLINT NOT NULL DEFAULT 0,
    archived        SMALLINT NOT NULL DEFAULT 0,
    archived_on     BIGINT,
    board           TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS posts_board_resto_idx ON posts (board, resto);
"""


def _build_upsert() -> str:
    columns = ", ".join(POST_COLUMNS)
    placeholders = ", ".join(f"%({c})s" for c in POST_COLUMNS)
    updates = ",\n       ".join(f"{c} = EXCLUDED.{c}" for c in MUTABLE_COLUMNS)
    return (
        f"INSERT INTO posts ({columns})\n"
        f"VALUES ({placeholders})\n"
        f"ON CONFLICT (no) DO UPDATE SET\n       {updates}"
    )


UPSERT_POST = _build_upsert()


class PostRepository:
    """Postgres interface for the archiver, backed by an async connection pool."""

    def __init__(self, cfg: DatabaseConfig | None = None, *, pool: AsyncConnectionPool | None = None) -> None:
        self.cfg = cfg or DatabaseConfig.from_env()
        self._pool = pool or AsyncConnectionPool(
            self.cfg.dsn, max_size=self.cfg.pool_size, open=False
        )

    async def open(self) -> None:
        await self._pool.open()

    async def ensure_schema(self) -> None:
        """Create the ``posts`` table and its index if they are missing."""
        try:
            async with self._pool.connection() as conn:
                await conn.execute(SCHEMA)
        except psycopg.Error as exc:
            raise PersistenceError(f"failed to create schema: {exc}") from exc
        logger.info("Database schema ready")

    async def upsert(self, post: Post) -> None:
        """Insert ``post``, or refresh its mutable columns if ``no`` already exists.

        The conflict resolution happens inside one statement so concurrent
        upserts of the same post cannot interleave.
        """
        row = post.as_row()
        params = {c: row[c] for c in POST_COLUMNS}
        try:
            # pool.connection() commits on clean exit
            async with self._pool.connection() as conn:
                await conn.execute(UPSERT_POST, params)
        except psycopg.Error as exc:
            raise PersistenceError(f"failed to upsert post {post.no} on /{post.board}/: {exc}") from exc

    async def close(self) -> None:
        await self._pool.close()

    async def __aenter__(self) -> PostRepository:
        await self.open()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
