"""Typed views of the 4chan API documents the archiver consumes."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any

from .errors import DecodeError

THUMB_SUFFIX = "s.jpg"


def _require(data: Any, key: str, kind: type | tuple[type, ...], where: str) -> Any:
    if not isinstance(data, dict):
        raise DecodeError(f"{where}: expected an object, got {type(data).__name__}")
    if key not in data:
        raise DecodeError(f"{where}: missing field {key!r}")
    value = data[key]
    # bool is an int subclass; the API never sends JSON booleans for these
    if not isinstance(value, kind) or isinstance(value, bool):
        raise DecodeError(f"{where}: field {key!r} has unexpected type {type(value).__name__}")
    return value


# ── boards.json ──────────────────────────────────────────────────


@dataclass(frozen=True)
class Board:
    board: str
    title: str = ""
    ws_board: int = 0
    per_page: int = 0
    pages: int = 0
    max_filesize: int = 0
    max_webm_filesize: int = 0
    max_comment_chars: int = 0
    bump_limit: int = 0
    image_limit: int = 0
    meta_description: str = ""
    is_archived: int = 0
    spoilers: int = 0
    custom_spoilers: int | None = None
    country_flags: int = 0
    user_ids: int = 0
    text_only: int = 0
    forced_anon: int = 0

    @classmethod
    def from_api(cls, data: Any) -> Board:
        code = _require(data, "board", str, "board")
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known and k != "board"}, board=code)


# ── threads.json ─────────────────────────────────────────────────


@dataclass(frozen=True)
class ThreadEntry:
    no: int
    last_modified: int
    replies: int = 0

    @classmethod
    def from_api(cls, data: Any) -> ThreadEntry:
        return cls(
            no=_require(data, "no", int, "thread entry"),
            last_modified=_require(data, "last_modified", int, "thread entry"),
            replies=data.get("replies", 0),
        )


@dataclass(frozen=True)
class ThreadPage:
    page: int
    threads: list[ThreadEntry] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: Any) -> ThreadPage:
        page = _require(data, "page", int, "thread page")
        threads = _require(data, "threads", list, "thread page")
        return cls(page=page, threads=[ThreadEntry.from_api(t) for t in threads])


# ── thread/<no>.json ─────────────────────────────────────────────


@dataclass(frozen=True)
class PostAttachment:
    tim: int
    filename: str
    ext: str
    fsize: int
    md5: str
    w: int
    h: int
    tn_w: int
    tn_h: int
    filedeleted: int = 0
    spoiler: int = 0
    custom_spoiler: int | None = None

    @property
    def media_key(self) -> str:
        return f"{self.tim}{self.ext}"

    @property
    def thumb_key(self) -> str:
        return f"{self.tim}{THUMB_SUFFIX}"


# Every other optional post field is an integer.
_STR_FIELDS = frozenset({
    "now", "name", "trip", "id", "capcode", "country", "country_name", "board_flag",
    "flag_name", "sub", "com", "filename", "ext", "md5", "tag", "semantic_url",
})


@dataclass
class Post:
    """A single post as served by the API, tagged with its board."""

    no: int
    resto: int
    time: int
    now: str = ""
    sticky: int = 0
    closed: int = 0
    name: str = "Anonymous"
    trip: str | None = None
    id: str | None = None
    capcode: str | None = None
    country: str | None = None
    country_name: str | None = None
    board_flag: str | None = None
    flag_name: str | None = None
    sub: str | None = None
    com: str | None = None
    tim: int | None = None
    filename: str | None = None
    ext: str | None = None
    fsize: int | None = None
    md5: str | None = None
    w: int | None = None
    h: int | None = None
    tn_w: int | None = None
    tn_h: int | None = None
    filedeleted: int = 0
    spoiler: int = 0
    custom_spoiler: int | None = None
    replies: int | None = None
    images: int | None = None
    bumplimit: int = 0
    imagelimit: int = 0
    tag: str | None = None
    semantic_url: str | None = None
    since4pass: int | None = None
    unique_ips: int | None = None
    m_img: int = 0
    archived: int = 0
    archived_on: int | None = None
    board: str = ""

    @classmethod
    def from_api(cls, data: Any, board: str = "") -> Post:
        no = _require(data, "no", int, "post")
        resto = _require(data, "resto", int, f"post {no}")
        ts = _require(data, "time", int, f"post {no}")
        known = {f.name for f in fields(cls)} - {"no", "resto", "time", "board"}
        extra = {k: v for k, v in data.items() if k in known and v is not None}
        for key, value in extra.items():
            kind = str if key in _STR_FIELDS else int
            if not isinstance(value, kind) or isinstance(value, bool):
                raise DecodeError(f"post {no}: field {key!r} has unexpected type {type(value).__name__}")
        return cls(no=no, resto=resto, time=ts, board=board, **extra)

    @property
    def is_op(self) -> bool:
        return self.resto == 0

    def attachment(self) -> PostAttachment | None:
        """Return the attachment descriptor, or None unless every file field is set."""
        required = (self.tim, self.filename, self.ext, self.fsize, self.md5,
                    self.w, self.h, self.tn_w, self.tn_h)
        if any(v is None for v in required):
            return None
        return PostAttachment(
            tim=self.tim,  # type: ignore[arg-type]
            filename=self.filename,  # type: ignore[arg-type]
            ext=self.ext,  # type: ignore[arg-type]
            fsize=self.fsize,  # type: ignore[arg-type]
            md5=self.md5,  # type: ignore[arg-type]
            w=self.w,  # type: ignore[arg-type]
            h=self.h,  # type: ignore[arg-type]
            tn_w=self.tn_w,  # type: ignore[arg-type]
            tn_h=self.tn_h,  # type: ignore[arg-type]
            filedeleted=self.filedeleted,
            spoiler=self.spoiler,
            custom_spoiler=self.custom_spoiler,
        )

    def as_row(self) -> dict[str, Any]:
        """Column → value mapping for the ``posts`` table."""
        return {f.name: getattr(self, f.name) for f in fields(self)}


# ── thread fetch outcome ─────────────────────────────────────────


@dataclass(frozen=True)
class Found:
    posts: list[Post]

    @property
    def op(self) -> Post | None:
        return self.posts[0] if self.posts else None


@dataclass(frozen=True)
class NotModified:
    pass


@dataclass(frozen=True)
class NotFound:
    pass


ThreadResult = Found | NotModified | NotFound
