"""Opening-post regex filters."""

from __future__ import annotations

import logging

from bs4 import BeautifulSoup

from .config import BoardConfig
from .models import Post

logger = logging.getLogger("archiver.filters")


def strip_html(markup: str) -> str:
    """Concatenate every text node of ``markup`` in document order."""
    soup = BeautifulSoup(markup, "html.parser")
    return "".join(soup.find_all(string=True))


class ThreadFilter:
    """Decides whether a thread is archived, based on its opening post.

    Patterns are tried in order against the subject and, when
    ``filter_comment`` is set, against the tag-stripped comment. In normal
    mode a thread is kept when something matches; with ``reverse_filter``
    it is kept when nothing matches.
    """

    def __init__(self, cfg: BoardConfig) -> None:
        self.patterns = cfg.filters
        self.filter_comment = cfg.filter_comment
        self.reverse = cfg.reverse_filter

    @property
    def enabled(self) -> bool:
        return bool(self.patterns)

    def matches(self, op: Post) -> bool:
        comment = strip_html(op.com) if self.filter_comment and op.com else None
        for pattern in self.patterns:
            if op.sub and pattern.search(op.sub):
                logger.debug("post %d subject matched %r", op.no, pattern.pattern)
                return True
            if comment and pattern.search(comment):
                logger.debug("post %d comment matched %r", op.no, pattern.pattern)
                return True
        return False

    def admits(self, op: Post | None) -> bool:
        if not self.patterns or op is None:
            return True
        return self.matches(op) != self.reverse
