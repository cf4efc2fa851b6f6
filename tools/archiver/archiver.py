"""Core archival loop – orchestrates API → Filter → DB / Storage."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from .api import FourChanAPI
from .config import ArchiverConfig, BoardConfig
from .db import PostRepository
from .errors import ConfigurationError, DecodeError, TransportError
from .filters import ThreadFilter
from .models import NotFound, NotModified, Post, PostAttachment
from .storage import BlobStorage, make_storage

logger = logging.getLogger("archiver.core")

ConfigLoader = Callable[[], ArchiverConfig]


class Archiver:
    """Polls the configured boards forever and mirrors what it finds.

    Board, page and thread iteration is sequential. Each post of an admitted
    thread becomes a unit of work that runs concurrently with the driver,
    bounded by a permit pool of ``cfg.concurrency`` slots shared by the whole
    engine.
    """

    def __init__(
        self,
        cfg: ArchiverConfig | None = None,
        *,
        api: FourChanAPI | None = None,
        repository: PostRepository | None = None,
        storage: BlobStorage | None = None,
        reload_config: ConfigLoader | None = None,
    ) -> None:
        self.cfg = cfg or ArchiverConfig()
        self.api = api or FourChanAPI(self.cfg.fourchan)
        self.repository = repository or PostRepository(self.cfg.db)
        self.storage = storage or make_storage(self.cfg)
        self.reload_config = reload_config
        self.permits = asyncio.Semaphore(self.cfg.concurrency)
        self._pending: set[asyncio.Task[None]] = set()
        # Stats
        self.stats = {
            "threads": 0, "posts": 0, "images": 0, "thumbs": 0, "skipped": 0,
            "not_modified": 0, "not_found": 0, "filtered": 0, "errors": 0,
        }

    # ── blob handling ────────────────────────────────────────────

    async def _save_file(self, key: str, namespace: str, fetch: Callable[[], Awaitable[bytes]]) -> bool:
        """Fetch and store a blob unless ``key`` already exists. Returns True if written."""
        if await self.storage.exists(key, namespace):
            logger.debug("file exists %s/%s", namespace, key)
            self.stats["skipped"] += 1
            return False
        body = await fetch()
        await self.storage.put(key, namespace, body)
        return True

    async def save_attachment(self, board: str, attachment: PostAttachment) -> bool:
        written = await self._save_file(
            attachment.media_key,
            board,
            lambda: self.api.download_image(board, attachment.tim, attachment.ext),
        )
        if written:
            self.stats["images"] += 1
        return written

    async def save_thumbnail(self, board: str, attachment: PostAttachment) -> bool:
        written = await self._save_file(
            attachment.thumb_key,
            board,
            lambda: self.api.download_thumbnail(board, attachment.tim),
        )
        if written:
            self.stats["thumbs"] += 1
        return written

    # ── per-post unit ────────────────────────────────────────────

    async def archive_post(self, board: str, post: Post, board_cfg: BoardConfig) -> None:
        """Persist one post and its media. Raises on failure."""
        logger.debug("archiving post no %d", post.no)
        await self.repository.upsert(post)
        self.stats["posts"] += 1

        attachment = post.attachment()
        if attachment is not None:
            if board_cfg.full_media:
                await self.save_attachment(board, attachment)
            await self.save_thumbnail(board, attachment)
        logger.debug("archived post no %d", post.no)

    async def _run_unit(self, board: str, post: Post, board_cfg: BoardConfig) -> None:
        try:
            await self.archive_post(board, post, board_cfg)
        except Exception as exc:
            logger.error("Error archiving post /%s/%d: %s", board, post.no, exc)
            self.stats["errors"] += 1
        finally:
            self.permits.release()

    async def dispatch(self, board: str, post: Post, board_cfg: BoardConfig) -> None:
        """Start a unit for ``post`` once a permit is free; does not wait for it."""
        await self.permits.acquire()
        try:
            task = asyncio.create_task(self._run_unit(board, post, board_cfg), name=f"post-{board}-{post.no}")
        except BaseException:
            self.permits.release()
            raise
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for every dispatched unit to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @property
    def in_flight(self) -> int:
        return len(self._pending)

    # ── thread / board archival ─────────────────────────────────

    async def archive_thread(self, board: str, thread_no: int, board_cfg: BoardConfig) -> bool:
        """Fetch a thread and dispatch its posts. Returns True if the thread was admitted."""
        logger.debug("archiving thread no %d", thread_no)
        started = time.monotonic()

        try:
            result = await self.api.get_thread(board, thread_no)
        except (TransportError, DecodeError) as exc:
            logger.error("Error fetching thread /%s/%d: %s", board, thread_no, exc)
            self.stats["errors"] += 1
            return False
        if isinstance(result, NotModified):
            logger.debug("thread no %d on /%s/ was not modified", thread_no, board)
            self.stats["not_modified"] += 1
            return False
        if isinstance(result, NotFound):
            logger.warning("thread no %d on /%s/ could not be found", thread_no, board)
            self.stats["not_found"] += 1
            return False

        thread_filter = ThreadFilter(board_cfg)
        if thread_filter.enabled and not thread_filter.admits(result.op):
            logger.debug("skipping thread no %d on /%s/ (filtered)", thread_no, board)
            self.stats["filtered"] += 1
            return False

        for post in result.posts:
            await self.dispatch(board, post, board_cfg)

        self.stats["threads"] += 1
        logger.info(
            "archived thread no %d on /%s/ in %.2fs (%d posts)",
            thread_no, board, time.monotonic() - started, len(result.posts),
        )
        return True

    async def archive_board(self, board: str, board_cfg: BoardConfig) -> int:
        """Walk every index page of ``board``. Returns the number of admitted threads."""
        archived = 0
        for page in await self.api.get_thread_pages(board):
            logger.debug("found %d threads on page %d of /%s/", len(page.threads), page.page, board)
            for entry in page.threads:
                if await self.archive_thread(board, entry.no, board_cfg):
                    archived += 1
        logger.info("Board /%s/ pass complete: %d threads archived", board, archived)
        return archived

    async def run_cycle(self) -> dict[str, int]:
        """One pass over every configured board."""
        boards = self.cfg.boards
        if not boards:
            raise ConfigurationError("no boards configured")

        live = {b.board for b in await self.api.get_boards()}
        missing = [name for name in boards if name not in live]
        if missing:
            raise ConfigurationError(
                f"configured board(s) not served by the remote: {', '.join(missing)}"
            )

        results = {}
        for name, board_cfg in boards.items():
            logger.info("Starting pass over /%s/", name)
            results[name] = await self.archive_board(name, board_cfg)
        return results

    async def run(self, cycles: int | None = None) -> None:
        """Archive forever, or for ``cycles`` passes, sleeping between passes.

        The configuration snapshot is only replaced at a cycle boundary.
        """
        logger.debug("archiver running")
        done = 0
        while cycles is None or done < cycles:
            if self.reload_config is not None and done > 0:
                self.cfg = self.reload_config()
                logger.debug("configuration reloaded: %s", ", ".join(self.cfg.boards))
            await self.run_cycle()
            done += 1
            if cycles is not None and done >= cycles:
                break
            logger.debug("waiting %.0fs until next archival", self.cfg.cycle_interval)
            await asyncio.sleep(self.cfg.cycle_interval)
        await self.drain()

    # ── lifecycle ────────────────────────────────────────────────

    async def close(self) -> None:
        await self.drain()
        await self.api.close()
        await self.repository.close()
        await self.storage.close()

    async def __aenter__(self) -> Archiver:
        await self.repository.open()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
