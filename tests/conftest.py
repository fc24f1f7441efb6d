"""
Shared fixtures. The configuration singleton is created on first import, so
the environment is prepared here before any autebook module is imported.
"""

import os
import tempfile
import zipfile
from datetime import datetime, timedelta, timezone
from io import BytesIO
from pathlib import Path

import pytest

_SESSION_DIR = Path(tempfile.mkdtemp(prefix="autebook-tests-"))
_CONFIG_PATH = _SESSION_DIR / "config.yaml"
_CONFIG_PATH.write_text(
    f"""log:
  level: DEBUG
  dir: {(_SESSION_DIR / 'logs').as_posix()}
  retention: 1
network:
  requests_per_second: 2
  burst: 1
  max_bounces: 10
  base_backoff_seconds: 8
  timeout_seconds: 5
  user_agent: autebook-tests
  debug_dump: false
cache:
  dir: {(_SESSION_DIR / 'cache').as_posix()}
update:
  workers: 2
  stash_dir: .stash
epub:
  language: en
sources:
  fanficfare: false
koreader:
  reset_finished: false
""",
    encoding="utf-8",
)
os.environ["AUTEBOOK_CONFIG"] = str(_CONFIG_PATH)

from PIL import Image  # noqa: E402

from autebook.cache import Cache  # noqa: E402
from autebook.model import Book, Chapter, book_id_from_url  # noqa: E402

BOOK_URL = "https://www.royalroad.com/fiction/12345/a-test-story"
BASE_DATE = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeClock:
    """Monotonic clock that only moves when something sleeps on it."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def make_image(fmt="PNG", size=(1, 1), mode="RGB", color=(200, 30, 30)):
    buffer = BytesIO()
    Image.new(mode, size, color).save(buffer, format=fmt)
    return buffer.getvalue()


def make_chapter(identifier, day=0, content=None, title=None, **kwargs):
    return Chapter(
        identifier=str(identifier),
        date_published=BASE_DATE + timedelta(days=day),
        title=title or f"Chapter {identifier}",
        url=f"https://www.royalroad.com/fiction/12345/a-test-story/chapter/{identifier}/slug",
        content=content,
        **kwargs,
    )


def make_book(chapters=(), cover_url="", url=BOOK_URL):
    return Book(
        id=book_id_from_url(url),
        source_url=url,
        title="A Test Story",
        author="Jane Writer",
        description="<p>A story used in tests.</p>",
        date_published=BASE_DATE,
        cover_url=cover_url,
        chapters=list(chapters),
    )


@pytest.fixture(scope="session")
def session_dir():
    return _SESSION_DIR


@pytest.fixture
def cache(tmp_path):
    return Cache(tmp_path / "cache")


@pytest.fixture
def clock():
    return FakeClock()


FANFICFARE_CONTAINER = """<?xml version="1.0" encoding="utf-8"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles>
    <rootfile full-path="content.opf" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>
"""

FANFICFARE_OPF = """<?xml version="1.0" encoding="utf-8"?>
<package version="2.0" xmlns="http://www.idpf.org/2007/opf" unique-identifier="fanficfare-uid">
  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/" xmlns:opf="http://www.idpf.org/2007/opf">
    <dc:identifier id="fanficfare-uid">royalroad-555</dc:identifier>
    <dc:title>Imported Story</dc:title>
    <dc:creator>Someone</dc:creator>
    <dc:source>https://www.royalroad.com/fiction/555/imported-story</dc:source>
  </metadata>
  <manifest>
    <item id="ncx" href="toc.ncx" media-type="application/x-dtbncx+xml"/>
    <item id="image0000" href="OEBPS/images/cover.jpg" media-type="image/jpeg" properties="cover-image"/>
    <item id="cover" href="OEBPS/cover.xhtml" media-type="application/xhtml+xml"/>
    <item id="title_page" href="OEBPS/title_page.xhtml" media-type="application/xhtml+xml"/>
    <item id="file0001" href="OEBPS/file0001.xhtml" media-type="application/xhtml+xml"/>
  </manifest>
  <spine toc="ncx">
    <itemref idref="cover"/>
    <itemref idref="title_page"/>
    <itemref idref="file0001"/>
  </spine>
</package>
"""

FANFICFARE_CHAPTER = """<?xml version="1.0" encoding="UTF-8"?>
<html xmlns="http://www.w3.org/1999/xhtml">
<head>
<title>Chapter One</title>
<meta name="chapterurl" content="https://www.royalroad.com/fiction/555/imported-story/chapter/9001/chapter-one"/>
</head>
<body>
<h3 class="fff_chapter_title">Chapter One</h3>
<div class="portlet author-note-portlet"><p>Start note</p></div>
<p>Body text</p>
<div class="portlet author-note-portlet"><p>End note</p></div>
</body>
</html>
"""


def write_fanficfare_epub(path, cover=b""):
    """A one-chapter archive laid out the way FanFicFare writes them (no dates)."""
    with zipfile.ZipFile(path, "w") as zf:
        zf.writestr("mimetype", "application/epub+zip")
        zf.writestr("META-INF/container.xml", FANFICFARE_CONTAINER)
        zf.writestr("content.opf", FANFICFARE_OPF)
        zf.writestr("OEBPS/images/cover.jpg", cover or make_image("JPEG", size=(4, 4)))
        zf.writestr("OEBPS/cover.xhtml", "<html><body><img src='images/cover.jpg'/></body></html>")
        zf.writestr("OEBPS/title_page.xhtml", "<html><body>Title</body></html>")
        zf.writestr("OEBPS/file0001.xhtml", FANFICFARE_CHAPTER)
    return path
