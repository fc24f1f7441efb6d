from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional
from urllib.parse import urlsplit, urlunsplit

from .errors import CountOverflow

MAX_COUNT = 0xFFFF


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse an RFC 3339 timestamp, returning None when it cannot be read."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_datetime(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


def book_id_from_url(url: str) -> str:
    """Stable identifier of a book, so every fetch of a URL maps to the same cache entry."""
    parts = urlsplit(url.strip())
    normalized = urlunsplit(
        (parts.scheme.lower(), parts.netloc.lower(), parts.path.rstrip("/"), "", "")
    )
    return str(uuid.uuid5(uuid.NAMESPACE_URL, normalized))


def checked_count(value: int) -> int:
    if value < 0 or value > MAX_COUNT:
        raise CountOverflow(
            f"{value} chapters to refresh, more than {MAX_COUNT}; the remote index is probably broken"
        )
    return value


@dataclass(eq=False)
class Chapter:
    identifier: str
    date_published: datetime
    title: str
    url: str
    content: Optional[str] = None
    authors_note_start: Optional[str] = None
    authors_note_end: Optional[str] = None
    # Set when the archive carried no date and none was cached; not persisted
    date_inferred: bool = False

    # Two chapters are the same chapter iff their identifiers match
    def __eq__(self, other):
        if not isinstance(other, Chapter):
            return NotImplemented
        return self.identifier == other.identifier

    def __hash__(self):
        return hash(self.identifier)

    def to_dict(self, with_content: bool = True) -> dict:
        data = {
            "identifier": self.identifier,
            "date_published": format_datetime(self.date_published),
            "title": self.title,
            "url": self.url,
        }
        if with_content:
            data["content"] = self.content
            data["authors_note_start"] = self.authors_note_start
            data["authors_note_end"] = self.authors_note_end
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Chapter":
        return cls(
            identifier=str(data["identifier"]),
            date_published=parse_datetime(data.get("date_published")) or utc_now(),
            title=data.get("title", ""),
            url=data.get("url", ""),
            content=data.get("content"),
            authors_note_start=data.get("authors_note_start"),
            authors_note_end=data.get("authors_note_end"),
        )


@dataclass
class Book:
    id: str
    source_url: str
    title: str
    author: str
    description: str = ""
    date_published: datetime = field(default_factory=utc_now)
    cover_url: str = ""
    chapters: List[Chapter] = field(default_factory=list)

    def clone_without_chapters(self) -> "Book":
        return replace(self, chapters=[])

    def last_chapter_date(self) -> Optional[datetime]:
        return max((c.date_published for c in self.chapters), default=None)

    def to_dict(self, with_content: bool = False) -> dict:
        return {
            "id": self.id,
            "source_url": self.source_url,
            "title": self.title,
            "author": self.author,
            "description": self.description,
            "date_published": format_datetime(self.date_published),
            "cover_url": self.cover_url,
            "chapters": [c.to_dict(with_content) for c in self.chapters],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Book":
        return cls(
            id=str(data["id"]),
            source_url=data.get("source_url", ""),
            title=data.get("title", ""),
            author=data.get("author", ""),
            description=data.get("description", ""),
            date_published=parse_datetime(data.get("date_published")) or utc_now(),
            cover_url=data.get("cover_url", ""),
            chapters=[Chapter.from_dict(c) for c in data.get("chapters", [])],
        )


class UpdateKind(Enum):
    UNSUPPORTED = "unsupported"
    UP_TO_DATE = "up to date"
    UPDATED = "updated"
    SKIPPED = "skipped"
    MORE_CHAPTER_THAN_SOURCE = "more chapters than source"
    ERROR = "error"


@dataclass(frozen=True)
class UpdateResult:
    """Outcome of one sync call. Only UPDATED and MORE_CHAPTER_THAN_SOURCE carry a count."""

    kind: UpdateKind
    count: int = 0
    reason: str = ""

    @classmethod
    def unsupported(cls) -> "UpdateResult":
        return cls(UpdateKind.UNSUPPORTED)

    @classmethod
    def up_to_date(cls) -> "UpdateResult":
        return cls(UpdateKind.UP_TO_DATE)

    @classmethod
    def updated(cls, count: int) -> "UpdateResult":
        return cls(UpdateKind.UPDATED, checked_count(count))

    @classmethod
    def skipped(cls) -> "UpdateResult":
        return cls(UpdateKind.SKIPPED)

    @classmethod
    def more_chapter_than_source(cls, count: int) -> "UpdateResult":
        return cls(UpdateKind.MORE_CHAPTER_THAN_SOURCE, checked_count(count))

    @classmethod
    def error(cls, reason: str) -> "UpdateResult":
        return cls(UpdateKind.ERROR, reason=reason)

    def __str__(self) -> str:
        if self.kind is UpdateKind.UPDATED:
            return f"{self.count} new chapter(s)"
        if self.kind is UpdateKind.MORE_CHAPTER_THAN_SOURCE:
            return f"{self.count} more chapter(s) than source"
        if self.kind is UpdateKind.ERROR:
            return f"error: {self.reason}"
        return self.kind.value
