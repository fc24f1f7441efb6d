from __future__ import annotations

import os
import re
import tempfile
import zipfile
import posixpath
import xml.etree.ElementTree as ET
from pathlib import Path, PurePosixPath
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple, Union

from bs4 import BeautifulSoup

from .cache import Cache
from .config_loader import config
from .errors import AutebookError, FormatError
from .image import (
    FORBIDDEN_CHARACTERS,
    ImageNames,
    ImagePipeline,
    extract_urls_from_html,
    is_local_reference,
    media_type_of,
    replace_urls_with_paths,
)
from .logger_config import logger
from .model import Book, Chapter, book_id_from_url, format_datetime, parse_datetime, utc_now
from .sanitizer import sanitize

GENERATOR = "autebook"

CONTAINER_PATH = "META-INF/container.xml"
OPF_PATH = "OEBPS/content.opf"

NS = {
    "container": "urn:oasis:names:tc:opendocument:xmlns:container",
    "opf": "http://www.idpf.org/2007/opf",
    "dc": "http://purl.org/dc/elements/1.1/",
}

# Spine entries that are never chapters
NON_CHAPTER_IDS = {"title", "nav", "title_page", "toc_page", "cover"}

_CHAPTER_ID_IN_URL = re.compile(r"/chapter/([^/?#]+)")
_UNSAFE_FILE_STEM = re.compile(r"[^A-Za-z0-9._-]")

ImageLoader = Callable[[str, str, str], bytes]

STYLESHEET = """body {
  font-family: serif;
  line-height: 1.4;
}

img {
  max-width: 100%;
}

img.cover {
  display: block;
  margin: 0 auto;
}

h1.title, h2.author {
  text-align: center;
}

.authors-note-start, .authors-note-end {
  border: 1px solid #888;
  padding: 0.5em;
  margin: 1em 0;
  font-size: 0.9em;
}

table {
  border-collapse: collapse;
}

td, th {
  border: 1px solid #888;
  padding: 0.2em;
}
"""


def escape_xml(text: str) -> str:
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&apos;")
    )


def default_filename(title: str) -> str:
    return f"{FORBIDDEN_CHARACTERS.sub('_', title)}.epub"


def chapter_file_stem(chapter: Chapter) -> str:
    return _UNSAFE_FILE_STEM.sub("_", chapter.identifier) or "chapter"


def _collect_image_sources(book: Book) -> List[str]:
    """Cover first, then every ``<img>`` of every chapter in reading order."""
    sources = []
    if book.cover_url:
        sources.append(book.cover_url)
    for chapter in book.chapters:
        for fragment in (chapter.authors_note_start, chapter.content, chapter.authors_note_end):
            sources.extend(extract_urls_from_html(fragment))

    # Files already inside the archive keep their names
    local = [s for s in sources if is_local_reference(s)]
    remote = [s for s in sources if not is_local_reference(s)]
    return list(dict.fromkeys(local + remote))


def _register_names(sources: List[str]) -> ImageNames:
    names = ImageNames()
    for src in sources:
        try:
            names.register(src)
        except AutebookError as e:
            logger.warning(str(e))
    return names


def _prepare_images(book: Book, image_loader: ImageLoader) -> Tuple[Dict[str, str], Dict[str, bytes]]:
    """
    Return ``(names, files)``: the archive filename of every image source, and
    the bytes of every image that could be loaded. Images that fail are logged
    and left out; their ``<img>`` keeps pointing at the remote URL.
    """
    names = _register_names(_collect_image_sources(book))
    files: Dict[str, bytes] = {}
    resolved: Dict[str, str] = {}
    for src, filename in names.as_dict().items():
        try:
            files[filename] = image_loader(book.id, src, filename)
            resolved[src] = filename
        except AutebookError as e:
            logger.warning(f"Skipping image of '{book.title}': {e}")
    return resolved, files


def _container_xml() -> str:
    return """<?xml version="1.0" encoding="utf-8"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles>
    <rootfile full-path="OEBPS/content.opf" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>
"""


def _content_opf(book: Book, chapter_stems: List[str], images: Dict[str, bytes],
                 cover_filename: Optional[str], language: str) -> str:
    manifest_items = [
        '<item id="title" href="text/title.xhtml" media-type="application/xhtml+xml"/>',
        '<item id="stylesheet" href="styles/stylesheet.css" media-type="text/css"/>',
        '<item id="ncx" href="toc.ncx" media-type="application/x-dtbncx+xml"/>',
        '<item id="nav" href="nav.xhtml" media-type="application/xhtml+xml" properties="nav"/>',
    ]
    for index, (filename, data) in enumerate(images.items()):
        href = escape_xml(f"images/{filename}")
        media_type = media_type_of(data)
        if filename == cover_filename:
            manifest_items.append(
                f'<item id="cover" href="{href}" media-type="{media_type}" properties="cover-image"/>'
            )
        else:
            manifest_items.append(f'<item id="img-{index}" href="{href}" media-type="{media_type}"/>')

    spine_items = ['<itemref idref="title"/>']
    for index, stem in enumerate(chapter_stems):
        manifest_items.append(
            f'<item id="chapter-{index}" href="text/{stem}.xhtml" media-type="application/xhtml+xml"/>'
        )
        spine_items.append(f'<itemref idref="chapter-{index}"/>')

    cover_meta = '<meta name="cover" content="cover"/>' if cover_filename else ""
    manifest = "\n    ".join(manifest_items)
    spine = "\n    ".join(spine_items)
    modified = utc_now().strftime("%Y-%m-%dT%H:%M:%SZ")

    return f"""<?xml version="1.0" encoding="utf-8"?>
<package version="3.0" xmlns="http://www.idpf.org/2007/opf" unique-identifier="bookid">
  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/">
    <dc:title>{escape_xml(book.title)}</dc:title>
    <dc:creator>{escape_xml(book.author)}</dc:creator>
    <dc:source>{escape_xml(book.source_url)}</dc:source>
    <dc:description>{escape_xml(book.description)}</dc:description>
    <dc:date>{format_datetime(book.date_published)}</dc:date>
    <dc:identifier id="bookid">{escape_xml(book.id)}</dc:identifier>
    <dc:language>{escape_xml(language)}</dc:language>
    <meta property="dcterms:modified">{modified}</meta>
    {cover_meta}
  </metadata>
  <manifest>
    {manifest}
  </manifest>
  <spine toc="ncx">
    {spine}
  </spine>
</package>
"""


def _toc_ncx(book: Book, chapter_stems: List[str]) -> str:
    nav_points = ["""    <navPoint id="cover" playOrder="0">
      <navLabel>
        <text>Cover</text>
      </navLabel>
      <content src="text/title.xhtml"/>
    </navPoint>
"""]
    for index, (chapter, stem) in enumerate(zip(book.chapters, chapter_stems)):
        nav_points.append(f"""    <navPoint id="navPoint-{index + 1}" playOrder="{index + 1}">
      <navLabel>
        <text>{escape_xml(chapter.title)}</text>
      </navLabel>
      <content src="text/{stem}.xhtml"/>
    </navPoint>
""")

    return f"""<?xml version="1.0" encoding="UTF-8"?>
<ncx xmlns="http://www.daisy.org/z3986/2005/ncx/" version="2005-1">
  <head>
    <meta name="dtb:uid" content="{escape_xml(book.id)}"/>
    <meta name="dtb:depth" content="1"/>
    <meta name="dtb:totalPageCount" content="0"/>
    <meta name="dtb:maxPageNumber" content="0"/>
  </head>
  <docTitle>
    <text>{escape_xml(book.title)}</text>
  </docTitle>
  <navMap>
{"".join(nav_points)}  </navMap>
</ncx>
"""


def _nav_xhtml(book: Book, chapter_stems: List[str]) -> str:
    entries = "\n".join(
        f'        <li><a href="text/{stem}.xhtml">{escape_xml(chapter.title)}</a></li>'
        for chapter, stem in zip(book.chapters, chapter_stems)
    )
    return f"""<?xml version="1.0" encoding="utf-8"?>
<!DOCTYPE html>
<html xmlns="http://www.w3.org/1999/xhtml" xmlns:epub="http://www.idpf.org/2007/ops">
  <head>
    <title>{escape_xml(book.title)}</title>
  </head>
  <body>
    <nav epub:type="toc" id="toc">
      <ol>
        <li><a href="text/title.xhtml">Cover</a></li>
{entries}
      </ol>
    </nav>
  </body>
</html>
"""


def _prepare_fragment(fragment: Optional[str], names: Dict[str, str]) -> Optional[str]:
    if fragment is None:
        return None
    return replace_urls_with_paths(sanitize(fragment), names)


def _chapter_xhtml(chapter: Chapter, names: Dict[str, str], language: str) -> str:
    parts = []
    for css_class, fragment in (
        ("authors-note-start", chapter.authors_note_start),
        ("chapter-content", chapter.content),
        ("authors-note-end", chapter.authors_note_end),
    ):
        cleaned = _prepare_fragment(fragment, names)
        if cleaned is not None:
            # No whitespace around the fragment so that reading it back is lossless
            parts.append(f'    <div class="{css_class}">{cleaned}</div>')
    body = "\n".join(parts)

    return f"""<?xml version="1.0" encoding="utf-8"?>
<!DOCTYPE html>
<html xmlns="http://www.w3.org/1999/xhtml" xml:lang="{escape_xml(language)}">
  <head>
    <title>{escape_xml(chapter.title)}</title>
    <meta name="generator" content="{GENERATOR}"/>
    <meta name="identifier" content="{escape_xml(chapter.identifier)}"/>
    <meta name="chapterurl" content="{escape_xml(chapter.url)}"/>
    <meta name="published" content="{format_datetime(chapter.date_published)}"/>
    <link href="../styles/stylesheet.css" rel="stylesheet" type="text/css"/>
  </head>
  <body>
    <h1 class="chapter-title">{escape_xml(chapter.title)}</h1>
{body}
  </body>
</html>
"""


def _title_xhtml(book: Book, cover_filename: Optional[str]) -> str:
    cover = ""
    if cover_filename:
        cover = f'    <img src="../images/{escape_xml(cover_filename)}" alt="Cover" class="cover"/>\n'
    return f"""<?xml version="1.0" encoding="utf-8"?>
<!DOCTYPE html>
<html xmlns="http://www.w3.org/1999/xhtml">
  <head>
    <title>{escape_xml(book.title)}</title>
    <link rel="stylesheet" type="text/css" href="../styles/stylesheet.css"/>
  </head>
  <body>
{cover}    <h1 class="title">{escape_xml(book.title)}</h1>
    <h2 class="author">{escape_xml(book.author)}</h2>
  </body>
</html>
"""


def _unique_stems(chapters: List[Chapter]) -> List[str]:
    stems, seen = [], set()
    for chapter in chapters:
        stem = chapter_file_stem(chapter)
        candidate, n = stem, 1
        while candidate in seen:
            candidate = f"{stem}_{n}"
            n += 1
        seen.add(candidate)
        stems.append(candidate)
    return stems


def write(
    book: Book,
    target_path: Optional[Union[str, Path]] = None,
    image_loader: Optional[ImageLoader] = None,
    language: Optional[str] = None,
) -> Path:
    """
    Assemble ``book`` into an EPUB 3 archive at ``target_path``
    (default: ``<title>.epub`` in the working directory).

    The archive is built in a temporary file next to the target and moved
    into place once complete, so a crash never leaves a truncated book behind.
    """
    target = Path(target_path) if target_path is not None else Path(default_filename(book.title))
    language = language or config.get("epub.language", "en")
    if image_loader is None:
        image_loader = ImagePipeline().load

    names, images = _prepare_images(book, image_loader)
    cover_filename = names.get(book.cover_url) if book.cover_url else None
    chapter_stems = _unique_stems(book.chapters)

    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=".autebook-", suffix=".epub.tmp", dir=target.parent)
    os.close(fd)
    try:
        with zipfile.ZipFile(tmp_name, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            zf.writestr("mimetype", "application/epub+zip", compress_type=zipfile.ZIP_STORED)
            zf.writestr(CONTAINER_PATH, _container_xml())
            zf.writestr(OPF_PATH, _content_opf(book, chapter_stems, images, cover_filename, language))
            zf.writestr("OEBPS/toc.ncx", _toc_ncx(book, chapter_stems))
            zf.writestr("OEBPS/nav.xhtml", _nav_xhtml(book, chapter_stems))

            for chapter, stem in zip(book.chapters, chapter_stems):
                zf.writestr(f"OEBPS/text/{stem}.xhtml", _chapter_xhtml(chapter, names, language))

            zf.writestr("OEBPS/text/title.xhtml", _title_xhtml(book, cover_filename))

            for filename, data in images.items():
                zf.writestr(f"OEBPS/images/{filename}", data)

            zf.writestr("OEBPS/styles/stylesheet.css", STYLESHEET)

        os.replace(tmp_name, target)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise

    logger.info(f"Wrote EPUB to {target}")
    return target


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------

def _read_entry(zf: zipfile.ZipFile, name: str) -> bytes:
    try:
        return zf.read(name)
    except KeyError as e:
        raise FormatError(f"Missing entry {name} in archive") from e


def _parse_xml(data: bytes, name: str) -> ET.Element:
    try:
        return ET.fromstring(data)
    except ET.ParseError as e:
        raise FormatError(f"Malformed XML in {name}: {e}") from e


def _dc_text(metadata: ET.Element, tag: str) -> str:
    element = metadata.find(f"dc:{tag}", NS)
    if element is None or element.text is None:
        return ""
    return element.text.strip()


def _inner_html(soup: BeautifulSoup, selector: str) -> Optional[str]:
    element = soup.select_one(selector)
    if element is None:
        return None
    inner = element.decode_contents()
    return inner if inner else None


def _meta_content(soup: BeautifulSoup, name: str) -> Optional[str]:
    element = soup.find("meta", attrs={"name": name})
    if element is None:
        return None
    return element.get("content") or None


def _extract_fanficfare(soup: BeautifulSoup) -> Tuple[Optional[str], Optional[str], Optional[str]]:
    """Return ``(content, note_start, note_end)`` of a chapter written by FanFicFare."""
    notes = soup.select(".author-note-portlet")
    # A single note is treated as an end note
    note_end = notes[-1].decode_contents() if notes else None
    note_start = notes[-2].decode_contents() if len(notes) >= 2 else None

    body = soup.body
    if body is None:
        return None, note_start, note_end

    heading = body.find("h3", class_="fff_chapter_title")
    content = body.decode_contents()
    if heading is not None:
        content = content.replace(str(heading), "")
    for note in (note_start, note_end):
        if note:
            content = content.replace(note, "")
    return content or None, note_start, note_end


def parse_chapter(file_stem: str, xhtml: Union[str, bytes],
                  known_dates: Optional[Dict[str, datetime]] = None) -> Chapter:
    """
    Parse one chapter document. Without a ``published`` meta the date comes
    from ``known_dates`` (the last cached state), else it defaults to now and
    the chapter is flagged ``date_inferred``.
    """
    soup = BeautifulSoup(xhtml, "html.parser")

    title_tag = soup.find("title")
    title = title_tag.get_text() if title_tag is not None else ""
    url = _meta_content(soup, "chapterurl") or ""

    if _meta_content(soup, "generator") == GENERATOR:
        identifier = _meta_content(soup, "identifier") or file_stem
        content = _inner_html(soup, ".chapter-content")
        note_start = _inner_html(soup, ".authors-note-start")
        note_end = _inner_html(soup, ".authors-note-end")
    else:
        match = _CHAPTER_ID_IN_URL.search(url)
        identifier = match.group(1) if match else file_stem
        content, note_start, note_end = _extract_fanficfare(soup)

    published = parse_datetime(_meta_content(soup, "published"))
    if published is None:
        published = (known_dates or {}).get(identifier)
    inferred = published is None
    if inferred:
        published = utc_now()

    return Chapter(
        identifier=identifier,
        date_published=published,
        title=title,
        url=url,
        content=content,
        authors_note_start=note_start,
        authors_note_end=note_end,
        date_inferred=inferred,
    )


def read(path: Union[str, Path], cache: Optional[Cache] = None) -> Book:
    """
    Rebuild a ``Book`` from an EPUB written by autebook or by FanFicFare.
    Every image of the archive is stored in the cache under the book id.
    """
    path = Path(path)
    cache = cache or Cache()
    try:
        with zipfile.ZipFile(path) as zf:
            container = _parse_xml(_read_entry(zf, CONTAINER_PATH), CONTAINER_PATH)
            rootfile = container.find(".//container:rootfile", NS)
            if rootfile is None or not rootfile.get("full-path"):
                raise FormatError(f"No rootfile declared in {CONTAINER_PATH}")
            opf_path = rootfile.get("full-path")
            opf_dir = posixpath.dirname(opf_path)

            package = _parse_xml(_read_entry(zf, opf_path), opf_path)
            metadata = package.find("opf:metadata", NS)
            manifest = package.find("opf:manifest", NS)
            spine = package.find("opf:spine", NS)
            if metadata is None or manifest is None or spine is None:
                raise FormatError(f"Incomplete package document {opf_path}")

            source = _dc_text(metadata, "source")
            identifier = _dc_text(metadata, "identifier")
            if not source and identifier.startswith("http"):
                source = identifier

            book = Book(
                id=book_id_from_url(source) if source else identifier or path.stem,
                source_url=source,
                title=_dc_text(metadata, "title"),
                author=_dc_text(metadata, "creator"),
                description=_dc_text(metadata, "description"),
                date_published=parse_datetime(_dc_text(metadata, "date")) or utc_now(),
            )

            cached = cache.read_book(book.id)
            known_dates = {c.identifier: c.date_published for c in cached.chapters} if cached else {}

            items = {}
            for item in manifest.findall("opf:item", NS):
                href = item.get("href", "")
                items[item.get("id")] = (
                    posixpath.normpath(posixpath.join(opf_dir, href)),
                    item.get("media-type", ""),
                    item.get("properties", ""),
                )

            for item_id, (entry, media_type, properties) in items.items():
                if not media_type.startswith("image/"):
                    continue
                filename = PurePosixPath(entry).name
                try:
                    cache.write_image(book.id, filename, _read_entry(zf, entry))
                except AutebookError as e:
                    logger.warning(f"Could not cache image {entry} of {path}: {e}")
                    continue
                if "cover-image" in properties or item_id == "cover":
                    book.cover_url = f"../images/{filename}"

            for itemref in spine.findall("opf:itemref", NS):
                item_id = itemref.get("idref")
                if item_id not in items:
                    continue
                entry, media_type, properties = items[item_id]
                stem = PurePosixPath(entry).stem
                if media_type != "application/xhtml+xml" or "nav" in properties.split():
                    continue
                if item_id in NON_CHAPTER_IDS or stem in NON_CHAPTER_IDS:
                    continue
                book.chapters.append(parse_chapter(stem, _read_entry(zf, entry), known_dates))
    except zipfile.BadZipFile as e:
        raise FormatError(f"{path} is not a valid EPUB archive: {e}") from e
    except OSError as e:
        raise FormatError(f"Could not open {path}: {e}") from e

    logger.debug(f"Read '{book.title}' from {path}: {len(book.chapters)} chapter(s)")
    return book
