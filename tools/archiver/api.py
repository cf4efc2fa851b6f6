"""4chan API client – rate-limited, retrying async HTTP fetcher."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any

import httpx

from .config import FourChanConfig
from .errors import DecodeError, NotFoundError, TransportError
from .ledger import CacheLedger
from .models import Board, Found, NotFound, NotModified, Post, ThreadPage, ThreadResult

logger = logging.getLogger("archiver.api")

HTTP_DATE_FORMAT = "%a, %d %b %Y %H:%M:%S GMT"


def format_http_date(when: datetime) -> str:
    return when.astimezone(timezone.utc).strftime(HTTP_DATE_FORMAT)


class FourChanAPI:
    """Thin async wrapper around the 4chan JSON API with rate limiting."""

    def __init__(
        self,
        cfg: FourChanConfig | None = None,
        *,
        ledger: CacheLedger | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.cfg = cfg or FourChanConfig()
        self.ledger = ledger if ledger is not None else CacheLedger()
        self._last_request: float = 0.0
        self._throttle_lock = asyncio.Lock()
        self._client = httpx.AsyncClient(
            timeout=self.cfg.timeout,
            headers={"User-Agent": self.cfg.user_agent},
            follow_redirects=True,
            transport=transport,
        )

    # ── rate limiting ────────────────────────────────────────────
    async def _throttle(self) -> None:
        async with self._throttle_lock:
            elapsed = time.monotonic() - self._last_request
            if elapsed < self.cfg.request_delay:
                await asyncio.sleep(self.cfg.request_delay - elapsed)
            self._last_request = time.monotonic()

    async def _request(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        passthrough: tuple[int, ...] = (),
    ) -> httpx.Response:
        """GET ``url`` with throttling and retries.

        Statuses in ``passthrough`` are returned to the caller untouched.
        404 raises NotFoundError; 429/5xx and transport failures are retried
        and finally raised as TransportError.
        """
        for attempt in range(1, self.cfg.max_retries + 1):
            await self._throttle()
            try:
                resp = await self._client.get(url, headers=headers)
                if resp.status_code in passthrough:
                    return resp
                if resp.status_code == 404:
                    raise NotFoundError(f"404: {url}")
                if resp.status_code == 429 or resp.status_code >= 500:
                    resp.raise_for_status()
                if resp.status_code >= 400:
                    raise TransportError(f"{url}: HTTP {resp.status_code}")
                return resp
            except (httpx.HTTPStatusError, httpx.TransportError) as exc:
                logger.warning("Attempt %d/%d failed for %s: %s", attempt, self.cfg.max_retries, url, exc)
                if attempt == self.cfg.max_retries:
                    raise TransportError(f"{url}: {exc}") from exc
                await asyncio.sleep(self.cfg.retry_backoff ** attempt)
        raise TransportError(f"{url}: no attempts made (max_retries={self.cfg.max_retries})")

    async def _get_json(self, url: str) -> Any:
        resp = await self._request(url)
        return self._decode(resp, url)

    @staticmethod
    def _decode(resp: httpx.Response, url: str) -> Any:
        try:
            return resp.json()
        except ValueError as exc:
            raise DecodeError(f"{url}: response is not valid JSON") from exc

    async def _get_bytes(self, url: str) -> bytes:
        resp = await self._request(url)
        return resp.content

    # ── public API ───────────────────────────────────────────────

    async def get_boards(self) -> list[Board]:
        """Fetch all boards from boards.json."""
        url = f"{self.cfg.api_base}/boards.json"
        data = await self._get_json(url)
        if not isinstance(data, dict) or not isinstance(data.get("boards"), list):
            raise DecodeError(f"{url}: expected an object with a 'boards' list")
        return [Board.from_api(b) for b in data["boards"]]

    async def get_thread_pages(self, board: str) -> list[ThreadPage]:
        """Fetch threads.json for a board (every index page in one document)."""
        url = f"{self.cfg.api_base}/{board}/threads.json"
        data = await self._get_json(url)
        if not isinstance(data, list):
            raise DecodeError(f"{url}: expected a list of pages")
        return [ThreadPage.from_api(p) for p in data]

    async def get_thread(self, board: str, thread_no: int) -> ThreadResult:
        """Fetch a full thread (OP + all replies), conditionally if seen before."""
        url = f"{self.cfg.api_base}/{board}/thread/{thread_no}.json"
        headers: dict[str, str] = {}
        last_fetched = await self.ledger.get(thread_no)
        if last_fetched is not None:
            headers["If-Modified-Since"] = format_http_date(last_fetched)

        resp = await self._request(url, headers=headers, passthrough=(304, 404))
        if resp.status_code == 304:
            return NotModified()
        if resp.status_code == 404:
            return NotFound()

        data = self._decode(resp, url)
        if not isinstance(data, dict) or not isinstance(data.get("posts"), list):
            raise DecodeError(f"{url}: expected an object with a 'posts' list")
        posts = [Post.from_api(p, board=board) for p in data["posts"]]

        await self.ledger.set(thread_no, datetime.now(timezone.utc))
        return Found(posts)

    async def download_image(self, board: str, tim: int, ext: str) -> bytes:
        """Download a full-size attachment from i.4cdn.org."""
        return await self._get_bytes(f"{self.cfg.image_base}/{board}/{tim}{ext}")

    async def download_thumbnail(self, board: str, tim: int) -> bytes:
        """Download thumbnail from i.4cdn.org."""
        return await self._get_bytes(f"{self.cfg.thumb_base}/{board}/{tim}s.jpg")

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> FourChanAPI:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
