from __future__ import annotations

import concurrent.futures
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Union

from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn

from .config_loader import config
from .logger_config import logger
from .model import UpdateKind, UpdateResult
from .sync import Updater
from .utils import truncate_and_pad

EPUB_SUFFIX = ".epub"
NAME_WIDTH = 48
BAR_LABEL_WIDTH = 32


@dataclass
class BookOutcome:
    path: Path
    result: UpdateResult


def collect_epubs(paths: Iterable[Union[str, Path]], stash_dir: Optional[str] = None) -> List[Path]:
    """Expand directories recursively into their EPUB files, skipping stashed copies."""
    if stash_dir is None:
        stash_dir = config.get("update.stash_dir", ".stash")
    stash_name = Path(stash_dir).name

    found = []
    for entry in paths:
        entry = Path(entry)
        if entry.is_dir():
            for candidate in entry.rglob(f"*{EPUB_SUFFIX}"):
                if stash_name in candidate.relative_to(entry).parts[:-1]:
                    continue
                if candidate.is_file():
                    found.append(candidate)
        elif entry.suffix.lower() == EPUB_SUFFIX and entry.is_file():
            found.append(entry)
        else:
            logger.warning(f"Ignoring {entry}: not an EPUB file or directory")

    return sorted(set(found))


def _update_with_progress(updater: Updater, path: Path, progress: Progress) -> UpdateResult:
    """Run one update, showing a chapter bar for the book once downloads start."""
    task = None

    def on_progress(chapter):
        nonlocal task
        if task is None:
            task = progress.add_task(truncate_and_pad(path.stem, BAR_LABEL_WIDTH), total=None)
        progress.advance(task)

    try:
        return updater.update(path, on_progress=on_progress)
    finally:
        if task is not None:
            progress.remove_task(task)


def update_books(paths: Iterable[Union[str, Path]], workers: Optional[int] = None,
                 updater: Optional[Updater] = None) -> List[BookOutcome]:
    """Update every EPUB under ``paths``, ``workers`` books at a time."""
    files = collect_epubs(paths)
    if not files:
        logger.warning("No EPUB file found")
        return []

    workers = workers or config.get("update.workers", 4)
    updater = updater or Updater()
    logger.info(f"Checking {len(files)} book(s) for updates with {workers} worker(s)")

    outcomes = []
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        transient=True,
    ) as progress:
        task = progress.add_task("Updating books...", total=len(files))

        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
            future_to_path = {
                executor.submit(_update_with_progress, updater, path, progress): path for path in files
            }

            for future in concurrent.futures.as_completed(future_to_path):
                path = future_to_path[future]
                try:
                    result = future.result()
                except Exception as e:
                    logger.error(f"Unexpected error while updating {path}: {e}")
                    result = UpdateResult.error(str(e))

                if result.kind is UpdateKind.ERROR:
                    logger.error(result.reason)
                elif result.kind is UpdateKind.UPDATED:
                    logger.info(f"{path.name}: {result}")

                outcomes.append(BookOutcome(path, result))
                progress.advance(task)

    outcomes.sort(key=lambda o: str(o.path))
    return outcomes


def format_summary(outcomes: List[BookOutcome]) -> str:
    """One aligned line per book, most interesting results first."""
    order = [
        UpdateKind.UPDATED,
        UpdateKind.ERROR,
        UpdateKind.MORE_CHAPTER_THAN_SOURCE,
        UpdateKind.SKIPPED,
        UpdateKind.UNSUPPORTED,
        UpdateKind.UP_TO_DATE,
    ]
    ranked = sorted(outcomes, key=lambda o: (order.index(o.result.kind), str(o.path)))

    lines = [f"{truncate_and_pad('Book', NAME_WIDTH)}   Result"]
    for outcome in ranked:
        lines.append(f"{truncate_and_pad(outcome.path.stem, NAME_WIDTH)}   {outcome.result}")

    updated = sum(1 for o in outcomes if o.result.kind is UpdateKind.UPDATED)
    errors = sum(1 for o in outcomes if o.result.kind is UpdateKind.ERROR)
    lines.append(f"{len(outcomes)} book(s) checked, {updated} updated, {errors} failed")
    return "\n".join(lines)
