from __future__ import annotations

import re
from pathlib import Path
from typing import Optional

from .logger_config import logger

# "= 1" but not "= 1.5" or "= 10"
FINISHED = re.compile(r'\["percent_finished"\] = 1(?![\d.])')
ALMOST_FINISHED = '["percent_finished"] = 0.99'


def sidecar_path(book_path: Path) -> Path:
    return book_path.parent / f"{book_path.stem}.sdr" / "metadata.epub.lua"


def reset_finished(book_path: Path) -> Optional[bool]:
    """
    Mark a finished book as 99% read in its KOReader sidecar so the reader
    shows the chapters that were just added.

    Returns None when there is no sidecar, otherwise whether it was changed.
    """
    path = sidecar_path(Path(book_path))
    if not path.exists():
        return None

    data = path.read_text(encoding="utf-8")
    updated = FINISHED.sub(ALMOST_FINISHED, data)
    if updated == data:
        return False

    path.write_text(updated, encoding="utf-8")
    logger.debug(f"Reset reading progress in {path}")
    return True
