from __future__ import annotations

import json
import re
from dataclasses import replace
from datetime import timezone
from email.utils import parsedate_to_datetime
from typing import Callable, List, Optional

from bs4 import BeautifulSoup

from .. import client
from ..errors import FormatError
from ..logger_config import logger
from ..model import Book, Chapter, book_id_from_url, parse_datetime, utc_now
from .base import WebnovelSource

BASE_URL = "https://www.royalroad.com"
SYNDICATION_URL = BASE_URL + "/fiction/syndication/{fiction_id}"

FICTION_URL = re.compile(r"^https?://(?:www\.)?royalroad\.com/fiction/(\d+)")
COVER = re.compile(r'window\.fictionCover = "(.*)";')
CHAPTERS = re.compile(r"window\.chapters = (\[.*]);")

TITLE_SELECTOR = "h1"
AUTHOR_SELECTOR = "h4 a"
DESCRIPTION_SELECTOR = ".description > .hidden-content"
CONTENT_SELECTOR = ".chapter-inner.chapter-content"
# The page gives no hint whether a note comes before or after the chapter
AUTHORS_NOTE_START_SELECTOR = "hr + .portlet > .author-note"
AUTHORS_NOTE_END_SELECTOR = "div + .portlet > .author-note"
WATERMARK_SELECTOR = "[class^=cj],[class^=cm]"
WATERMARK_MAX_LENGTH = 200


def _inner_html(soup: BeautifulSoup, selector: str) -> Optional[str]:
    node = soup.select_one(selector)
    if node is None:
        return None
    inner = node.decode_contents()
    return inner if inner else None


def remove_watermarks(soup: BeautifulSoup) -> None:
    """Drop the short hidden paragraphs the site injects to trace copies."""
    for node in soup.select(WATERMARK_SELECTOR):
        if len(node.decode_contents()) < WATERMARK_MAX_LENGTH:
            node.decompose()


def parse_chapter_index(raw: str) -> List[Chapter]:
    try:
        entries = json.loads(raw)
    except ValueError as e:
        raise FormatError(f"Chapter list is not valid JSON: {e}") from e

    try:
        return [
            Chapter(
                identifier=str(entry["id"]),
                date_published=parse_datetime(entry.get("date")) or utc_now(),
                title=entry.get("title", ""),
                url=BASE_URL + entry.get("url", ""),
            )
            for entry in entries
        ]
    except (KeyError, TypeError, AttributeError) as e:
        raise FormatError(f"Unexpected chapter list entry: {e}") from e


def parse_fiction_page(html: str, url: str) -> Book:
    soup = BeautifulSoup(html, "html.parser")

    title = _inner_html(soup, TITLE_SELECTOR)
    if title is None:
        raise FormatError(f"No title found on {url}")
    author = _inner_html(soup, AUTHOR_SELECTOR) or "<unknown>"
    description = _inner_html(soup, DESCRIPTION_SELECTOR) or ""

    cover = COVER.search(html)
    if cover is None:
        raise FormatError(f"No cover found on {url}")
    chapters_match = CHAPTERS.search(html)
    if chapters_match is None:
        raise FormatError(f"No chapters found on {url}")
    chapters = parse_chapter_index(chapters_match.group(1))

    return Book(
        id=book_id_from_url(url),
        source_url=url,
        title=title.strip(),
        author=author.strip(),
        description=description,
        date_published=min((c.date_published for c in chapters), default=utc_now()),
        cover_url=cover.group(1),
        chapters=chapters,
    )


def parse_chapter_page(html: str, chapter: Chapter) -> Chapter:
    soup = BeautifulSoup(html, "html.parser")
    remove_watermarks(soup)

    content = _inner_html(soup, CONTENT_SELECTOR)
    if content is None:
        logger.warning(f"No content found for chapter '{chapter.title}' ({chapter.url})")
    return replace(
        chapter,
        content=content,
        authors_note_start=_inner_html(soup, AUTHORS_NOTE_START_SELECTOR),
        authors_note_end=_inner_html(soup, AUTHORS_NOTE_END_SELECTOR),
    )


def parse_syndication(xml: str):
    """Return ``(title, newest publication date)`` of a fiction feed."""
    soup = BeautifulSoup(xml, "html.parser")
    title_node = soup.find("title")
    title = title_node.get_text(strip=True) if title_node else None

    dates = []
    # html.parser lowercases tag names
    for node in soup.find_all("pubdate"):
        try:
            published = parsedate_to_datetime(node.get_text(strip=True))
        except (TypeError, ValueError):
            continue
        if published.tzinfo is None:
            published = published.replace(tzinfo=timezone.utc)
        dates.append(published.astimezone(timezone.utc))
    return title, max(dates, default=None)


class RoyalRoad(WebnovelSource):
    name = "RoyalRoad"

    def __init__(self, get_text: Optional[Callable[[str], str]] = None):
        self._get_text = get_text or client.get_text

    @classmethod
    def matches(cls, url: str) -> bool:
        return FICTION_URL.match(url) is not None

    def fetch_metadata(self, url: str) -> Book:
        logger.info(f"Fetching chapter list of {url}")
        return parse_fiction_page(self._get_text(url), url)

    def fetch_chapter_content(self, chapter: Chapter) -> Chapter:
        logger.debug(f"Downloading chapter '{chapter.title}'")
        return parse_chapter_page(self._get_text(chapter.url), chapter)

    def last_published(self, url: str):
        match = FICTION_URL.match(url)
        if match is None:
            return None
        feed_url = SYNDICATION_URL.format(fiction_id=match.group(1))
        title, newest = parse_syndication(self._get_text(feed_url))
        logger.debug(f"Feed of '{title}' last published {newest}")
        return newest
