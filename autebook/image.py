from __future__ import annotations

import html
import re
from enum import Enum
from io import BytesIO
from typing import Callable, Dict, List, Optional, Set
from urllib.parse import urlsplit

from bs4 import BeautifulSoup
from PIL import Image, UnidentifiedImageError

from . import client
from .cache import Cache
from .errors import ImageFormatError
from .logger_config import logger

MAX_WIDTH = 600
JPEG_QUALITY = 80
FORBIDDEN_CHARACTERS = re.compile(r'[/\\:*?"<>|%\[\]]')
LOCAL_PREFIX = "../images/"

_IMG_SRC = re.compile(r"""(<img\b[^>]*?\ssrc=)(["'])(.*?)\2""", re.IGNORECASE | re.DOTALL)


class ImageFormat(Enum):
    PNG = "image/png"
    JPEG = "image/jpeg"
    WEBP = "image/webp"
    GIF = "image/gif"
    SVG = "image/svg+xml"
    HTML = "text/html"

    @property
    def media_type(self) -> str:
        return self.value


def detect_format(data: bytes) -> Optional[ImageFormat]:
    """Identify the payload from its leading bytes only."""
    if data[:8] == b"\x89PNG\r\n\x1a\n":
        return ImageFormat.PNG
    if data[:3] == b"\xff\xd8\xff":
        return ImageFormat.JPEG
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return ImageFormat.WEBP
    if data[:6] in (b"GIF87a", b"GIF89a"):
        return ImageFormat.GIF

    try:
        text = data.decode("utf-8").strip().lower()
    except UnicodeDecodeError:
        return None

    if text.startswith("<?xml") or text.startswith("<svg"):
        return ImageFormat.SVG
    if text.startswith("<!doctype html>") or text.startswith("<html"):
        return ImageFormat.HTML
    return None


def resize(data: bytes, url: Optional[str] = None) -> bytes:
    """
    Apply the inline image policy: HTML is rejected, GIF and SVG pass through,
    PNG, JPEG and WEBP are scaled down to MAX_WIDTH. PNG and WEBP come out as
    PNG (many readers cannot show WEBP), JPEG as JPEG.
    """
    image_format = detect_format(data)
    if image_format is None:
        raise ImageFormatError("Unsupported inline image format. Please report this as a bug and include the link.", url)
    if image_format is ImageFormat.HTML:
        raise ImageFormatError("Skipping html served as an image.", url)
    if image_format in (ImageFormat.GIF, ImageFormat.SVG):
        return data

    try:
        with Image.open(BytesIO(data)) as image:
            image.load()
            width, height = image.size

            if width <= MAX_WIDTH and image_format is not ImageFormat.WEBP:
                return data

            if image.mode in ("P", "1", "LA"):
                image = image.convert("RGBA")
            if width > MAX_WIDTH:
                new_height = max(1, round(height * MAX_WIDTH / width))
                image = image.resize((MAX_WIDTH, new_height), Image.Resampling.LANCZOS)

            buffer = BytesIO()
            if image_format is ImageFormat.JPEG:
                if image.mode not in ("RGB", "L", "CMYK"):
                    image = image.convert("RGB")
                image.save(buffer, format="JPEG", quality=JPEG_QUALITY)
            else:
                image.save(buffer, format="PNG")
            return buffer.getvalue()
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise ImageFormatError(f"Could not decode {image_format.name} image: {e}", url) from e


def media_type_of(data: bytes) -> str:
    image_format = detect_format(data)
    if image_format is None or image_format is ImageFormat.HTML:
        return "application/octet-stream"
    return image_format.media_type


def is_local_reference(src: str) -> bool:
    return src.startswith(LOCAL_PREFIX)


def extract_file_name(url: str) -> str:
    """Last path segment of ``url`` with characters illegal in a filename replaced."""
    path = urlsplit(url).path
    name = path.rstrip("/").rsplit("/", 1)[-1] if path.strip("/") else ""
    if not name:
        raise ImageFormatError("Invalid image URL", url)
    return FORBIDDEN_CHARACTERS.sub("_", name)


def extract_urls_from_html(fragment: Optional[str]) -> List[str]:
    if not fragment:
        return []
    soup = BeautifulSoup(fragment, "html.parser")
    return [img["src"] for img in soup.find_all("img") if img.get("src")]


def replace_urls_with_paths(fragment: str, names: Dict[str, str]) -> str:
    """Point every known ``<img src>`` at its file under ../images/."""

    def _swap(match: re.Match) -> str:
        src = html.unescape(match.group(3))
        filename = names.get(src)
        if filename is None:
            return match.group(0)
        quote = match.group(2)
        return f"{match.group(1)}{quote}{html.escape(LOCAL_PREFIX + filename)}{quote}"

    return _IMG_SRC.sub(_swap, fragment)


class ImageNames:
    """
    Assign archive filenames to image sources in first-seen order.
    When two sources reduce to the same name, later ones get an ``N_`` prefix.
    """

    def __init__(self):
        self._by_source: Dict[str, str] = {}
        self._taken: Set[str] = set()
        self._counter = 0

    def register(self, src: str) -> str:
        if src in self._by_source:
            return self._by_source[src]

        base = extract_file_name(src)
        name = base
        while name in self._taken:
            name = f"{self._counter}_{base}"
            self._counter += 1

        self._taken.add(name)
        self._by_source[src] = name
        return name

    def get(self, src: str) -> Optional[str]:
        return self._by_source.get(src)

    def as_dict(self) -> Dict[str, str]:
        return dict(self._by_source)


class ImagePipeline:
    """Cache-first loader: a cache hit never touches the network or the resizer."""

    def __init__(self, cache: Optional[Cache] = None, fetch: Optional[Callable[[str], bytes]] = None):
        self.cache = cache or Cache()
        self._fetch = fetch or client.get_bytes

    def load(self, book_id: str, src: str, filename: str) -> bytes:
        cached = self.cache.read_image(book_id, filename)
        if cached is not None:
            logger.debug(f"Image {filename} served from cache")
            return cached

        if is_local_reference(src):
            raise ImageFormatError(f"Image {filename} is referenced locally but missing from the cache", src)

        data = self._fetch(src)
        buffer = resize(data, src)
        self.cache.write_image(book_id, filename, buffer)
        logger.debug(f"Downloaded inline image {src}")
        return buffer
