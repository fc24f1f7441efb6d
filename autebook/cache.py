from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Optional, Union

from .config_loader import config
from .errors import CacheIOError
from .logger_config import logger
from .model import Book

BOOK_FILE = "book.json"
IMAGES_DIR = "images"

_UNSAFE_SEGMENT = re.compile(r'[\\/:*?"<>|%\[\]\x00]')


def _segment(value: str) -> str:
    """Turn an id or filename into exactly one path segment."""
    cleaned = _UNSAFE_SEGMENT.sub("_", value).strip()
    if cleaned in ("", ".", ".."):
        cleaned = cleaned.replace(".", "_") or "_"
    return cleaned


class Cache:
    """
    Per-book store under ``<root>/<book id>/``: ``book.json`` holds the last
    known metadata, ``images/`` the processed inline images.
    Each book id owns its own subtree; one id never reads another's files.
    """

    def __init__(self, root: Optional[Union[str, Path]] = None):
        if root is None:
            root = config.get("cache.dir", "~/.cache/autebook")
        self.root = Path(root).expanduser()

    def book_dir(self, book_id: str) -> Path:
        return self.root / _segment(book_id)

    def _images_dir(self, book_id: str) -> Path:
        return self.book_dir(book_id) / IMAGES_DIR

    def write_book(self, book: Book) -> None:
        """Store the book metadata. Chapter bodies stay in the EPUB itself."""
        path = self.book_dir(book.id) / BOOK_FILE
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(
                json.dumps(book.to_dict(with_content=False), ensure_ascii=False, indent=2),
                encoding="utf-8",
            )
        except OSError as e:
            raise CacheIOError(f"Could not write {path}: {e}") from e
        logger.debug(f"Cached metadata of '{book.title}' in {path}")

    def read_book(self, book_id: str) -> Optional[Book]:
        path = self.book_dir(book_id) / BOOK_FILE
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except OSError as e:
            raise CacheIOError(f"Could not read {path}: {e}") from e
        except ValueError as e:
            logger.error(f"Failed to parse book from cache {path}: {e}")
            return None

        try:
            book = Book.from_dict(data)
        except (KeyError, TypeError) as e:
            logger.error(f"Cached book {path} is incomplete: {e}")
            return None
        if book.id != book_id:
            logger.error(f"Cached book {path} belongs to {book.id}, ignoring it")
            return None
        return book

    def write_image(self, book_id: str, filename: str, data: bytes) -> None:
        path = self._images_dir(book_id) / _segment(filename)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            raise CacheIOError(f"Could not write {path}: {e}") from e

    def read_image(self, book_id: str, filename: str) -> Optional[bytes]:
        path = self._images_dir(book_id) / _segment(filename)
        if not path.exists():
            return None
        try:
            return path.read_bytes()
        except OSError as e:
            raise CacheIOError(f"Could not read {path}: {e}") from e
