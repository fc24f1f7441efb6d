"""Merge a freshly fetched chapter index into the book already on disk."""

from __future__ import annotations

import shutil
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

from . import epub, koreader
from .cache import Cache
from .config_loader import config
from .errors import AutebookError, FormatError, NetworkError, UnsupportedSource
from .image import ImagePipeline
from .logger_config import logger
from .model import Book, Chapter, UpdateKind, UpdateResult, checked_count
from .sources.base import ExternalUpdater, WebnovelSource
from .sources.registry import get_source

FetchContent = Callable[[Chapter], Chapter]
ProgressCallback = Callable[[Chapter], None]

STASH_TIMESTAMP = "_%Y-%m-%d_%Hh%M"


def sync(
    remote_index: Book,
    current: Optional[Book],
    fetch_content: FetchContent,
    on_progress: Optional[ProgressCallback] = None,
) -> Tuple[Book, UpdateResult]:
    """
    Bring ``current`` up to date with ``remote_index`` (chapter stubs without content).

    Chapters already mirrored keep their content unless the source reports a
    newer publication date; chapters unknown locally are appended in source
    order. A chapter that cannot be fetched is logged and skipped: a new one is
    dropped, an existing one keeps what it had. ``current`` is not modified.
    """
    if current is None:
        merged = remote_index.clone_without_chapters()
    else:
        merged = replace(current, chapters=list(current.chapters))

    remote_by_id: Dict[str, Chapter] = {}
    for chapter in remote_index.chapters:
        remote_by_id.setdefault(chapter.identifier, chapter)

    # Archives without dates (FanFicFare) take the source dates as they are
    merged.chapters = [
        replace(c, date_published=remote_by_id[c.identifier].date_published, date_inferred=False)
        if c.date_inferred and c.identifier in remote_by_id else c
        for c in merged.chapters
    ]

    to_refresh: List[str] = [
        c.identifier for c in merged.chapters
        if c.identifier in remote_by_id and remote_by_id[c.identifier].date_published > c.date_published
    ]
    known = {c.identifier for c in merged.chapters}
    new_chapters = [c for c in remote_by_id.values() if c.identifier not in known]
    to_refresh.extend(c.identifier for c in new_chapters)

    count = checked_count(len(set(to_refresh)))
    merged.chapters.extend(new_chapters)

    refresh = set(to_refresh)
    logger.info(f"'{merged.title}': {count} chapter(s) to download")

    chapters = []
    for chapter in merged.chapters:
        if chapter.identifier in refresh:
            try:
                fetched = fetch_content(remote_by_id[chapter.identifier])
            except AutebookError as e:
                logger.error(f"Could not download chapter '{chapter.title}': {e}")
            else:
                if fetched.content is not None or chapter.content is None:
                    chapter = fetched
            if on_progress is not None:
                on_progress(chapter)
        chapters.append(chapter)

    merged.chapters = [c for c in chapters if c.content is not None]
    merged.cover_url = remote_index.cover_url

    if count > 0:
        return merged, UpdateResult.updated(count)
    return merged, UpdateResult.up_to_date()


class Updater:
    """Update, create or rebuild one EPUB on disk from its source."""

    def __init__(self, cache: Optional[Cache] = None, pipeline: Optional[ImagePipeline] = None,
                 source_factory: Callable[[str], Union[WebnovelSource, ExternalUpdater]] = get_source):
        self.cache = cache or Cache()
        self.pipeline = pipeline or ImagePipeline(self.cache)
        self.source_factory = source_factory

    def update(self, path: Union[str, Path], on_progress: Optional[ProgressCallback] = None) -> UpdateResult:
        path = Path(path)
        try:
            current = epub.read(path, self.cache)
        except AutebookError as e:
            return UpdateResult.error(f"{e} for file {path}")

        if not current.source_url:
            return UpdateResult.error(f"No source URL in {path}")

        try:
            source = self.source_factory(current.source_url)
        except UnsupportedSource:
            logger.debug(f"No source supports {current.source_url}")
            return UpdateResult.unsupported()

        if isinstance(source, ExternalUpdater):
            result = source.update(path)
        else:
            result = self._update_natively(source, current, path, on_progress)

        if result.kind is UpdateKind.UPDATED and config.get("koreader.reset_finished", False):
            try:
                koreader.reset_finished(path)
            except (OSError, UnicodeDecodeError) as e:
                logger.warning(f"Could not reset KOReader progress of {path}: {e}")
        return result

    def _already_up_to_date(self, source: WebnovelSource, current: Book) -> bool:
        if any(c.date_inferred for c in current.chapters):
            logger.debug(f"Some chapter dates of '{current.title}' are unknown, checking the full index")
            return False
        newest = current.last_chapter_date()
        if newest is None:
            return False
        try:
            last_published = source.last_published(current.source_url)
        except NetworkError as e:
            logger.warning(f"Could not check {current.source_url} for updates: {e}")
            return False
        return last_published is not None and newest >= last_published

    def _update_natively(self, source: WebnovelSource, current: Book, path: Path,
                         on_progress: Optional[ProgressCallback]) -> UpdateResult:
        if self._already_up_to_date(source, current):
            return UpdateResult.up_to_date()

        try:
            remote = source.fetch_metadata(current.source_url)
            book, result = sync(remote, current, source.fetch_chapter_content, on_progress)
            if result.kind is UpdateKind.UPDATED:
                epub.write(book, path, self.pipeline.load)
            self.cache.write_book(book)
        except AutebookError as e:
            return UpdateResult.error(f"{e} for file {path}")
        return result

    def create(self, url: str, directory: Union[str, Path] = ".", filename: Optional[str] = None,
               on_progress: Optional[ProgressCallback] = None) -> Path:
        """Download ``url`` into a new EPUB and return its path."""
        source = self.source_factory(url)
        if isinstance(source, ExternalUpdater):
            return source.create(url, directory, filename)

        remote = source.fetch_metadata(url)
        book, _ = sync(remote, None, source.fetch_chapter_content, on_progress)
        target = Path(directory) / (filename or epub.default_filename(book.title))
        epub.write(book, target, self.pipeline.load)
        self.cache.write_book(book)
        return target

    def stash_and_recreate(self, path: Union[str, Path], stash_dir: Optional[Union[str, Path]] = None) -> Path:
        """
        Move ``path`` aside into ``stash_dir`` with a timestamp suffix and
        rebuild the book from scratch under the same name.
        """
        path = Path(path)
        current = epub.read(path, self.cache)
        if not current.source_url:
            raise FormatError(f"No source URL in {path}")

        if stash_dir is None:
            stash_dir = config.get("update.stash_dir", ".stash")
        stash_dir = Path(stash_dir)
        if not stash_dir.is_absolute():
            stash_dir = path.parent / stash_dir
        stash_dir.mkdir(parents=True, exist_ok=True)

        stashed = stash_dir / f"{path.stem}{datetime.now().strftime(STASH_TIMESTAMP)}{path.suffix}"
        shutil.move(str(path), str(stashed))
        logger.info(f"Stashed {path} as {stashed}")

        try:
            return self.create(current.source_url, path.parent, path.name)
        except AutebookError:
            shutil.move(str(stashed), str(path))
            logger.warning(f"Recreation failed, restored {path}")
            raise
