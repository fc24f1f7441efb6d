from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from ..model import Book, Chapter, UpdateResult


class WebnovelSource(ABC):
    """A site autebook scrapes itself: index page, chapter pages, optional feed."""

    name = "source"

    @classmethod
    @abstractmethod
    def matches(cls, url: str) -> bool:
        ...

    @abstractmethod
    def fetch_metadata(self, url: str) -> Book:
        """Book metadata and chapter stubs (no content), in reading order."""

    @abstractmethod
    def fetch_chapter_content(self, chapter: Chapter) -> Chapter:
        """Return a copy of ``chapter`` with its content and author's notes filled in."""

    def last_published(self, url: str) -> Optional[datetime]:
        """Date of the newest chapter, when the site offers a cheap way to know it."""
        return None


class ExternalUpdater(ABC):
    """A site handled by an external tool that updates the EPUB in place."""

    name = "external"

    @classmethod
    @abstractmethod
    def matches(cls, url: str) -> bool:
        ...

    @abstractmethod
    def update(self, path: Path) -> UpdateResult:
        ...

    @abstractmethod
    def create(self, url: str, directory: Union[str, Path], filename: Optional[str] = None) -> Path:
        ...
