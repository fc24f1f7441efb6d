"""Exception hierarchy shared by every layer of autebook.

Library code raises these; ``Updater`` turns book-level failures into
``UpdateResult.error`` so the driver can move on to the next book.
"""

from __future__ import annotations

from typing import Optional


class AutebookError(Exception):
    """Base class for every error raised on purpose by autebook."""


class NetworkError(AutebookError):
    """Transport failure or unexpected HTTP status for ``url``."""

    def __init__(self, url: str, detail: str, status_code: Optional[int] = None):
        super().__init__(f"{detail} (URL: {url})")
        self.url = url
        self.detail = detail
        self.status_code = status_code


class RateLimitExhausted(NetworkError):
    """The upstream kept answering 429 past the allowed number of escalations."""

    def __init__(self, url: str, bounces: int):
        super().__init__(url, f"Still rate limited after {bounces} back-offs", 429)
        self.bounces = bounces


class FormatError(AutebookError):
    """An EPUB archive or a scraped page is missing expected content or is malformed."""


class ImageFormatError(AutebookError):
    """Bytes that are not a supported image, or an HTML page served as one."""

    def __init__(self, detail: str, url: Optional[str] = None):
        super().__init__(f"{detail} URL: {url}" if url else detail)
        self.url = url
        self.detail = detail


class CountOverflow(AutebookError):
    """More new or updated chapters than a 16-bit count can hold."""


class CacheIOError(AutebookError):
    """Filesystem failure while reading or writing the cache."""


class UnsupportedSource(AutebookError):
    """No source adapter handles the given URL."""
