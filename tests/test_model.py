from datetime import datetime, timezone

import pytest

from autebook.errors import CountOverflow
from autebook.model import (
    Book,
    Chapter,
    UpdateKind,
    UpdateResult,
    book_id_from_url,
    checked_count,
    parse_datetime,
)
from conftest import BASE_DATE, make_book, make_chapter


class TestChapterIdentity:
    def test_equal_when_identifiers_match(self):
        a = make_chapter(1, day=0, content="<p>old</p>")
        b = make_chapter(1, day=5, content="<p>new</p>", title="Renamed")
        assert a == b
        assert hash(a) == hash(b)

    def test_different_identifiers(self):
        assert make_chapter(1) != make_chapter(2)

    def test_membership_uses_identifier(self):
        chapters = [make_chapter(1), make_chapter(2)]
        assert make_chapter(2, day=9) in chapters
        assert make_chapter(3) not in chapters


class TestBook:
    def test_clone_without_chapters_keeps_metadata(self):
        book = make_book([make_chapter(1)], cover_url="https://example.com/cover.jpg")
        clone = book.clone_without_chapters()
        assert clone.chapters == []
        assert clone.title == book.title
        assert clone.cover_url == book.cover_url
        assert book.chapters  # original untouched

    def test_last_chapter_date(self):
        book = make_book([make_chapter(1, day=3), make_chapter(2, day=1)])
        assert book.last_chapter_date() == make_chapter(1, day=3).date_published

    def test_last_chapter_date_empty(self):
        assert make_book().last_chapter_date() is None

    def test_dict_without_content(self):
        book = make_book([make_chapter(1, content="<p>text</p>")])
        data = book.to_dict()
        assert "content" not in data["chapters"][0]
        restored = Book.from_dict(data)
        assert restored.chapters[0].content is None
        assert restored.chapters[0].date_published == BASE_DATE
        assert restored.id == book.id


class TestBookId:
    def test_stable(self):
        url = "https://www.royalroad.com/fiction/12345/a-test-story"
        assert book_id_from_url(url) == book_id_from_url(url)

    def test_ignores_trailing_slash_and_query(self):
        url = "https://www.royalroad.com/fiction/12345/a-test-story"
        assert book_id_from_url(url + "/") == book_id_from_url(url)
        assert book_id_from_url(url + "?tab=chapters") == book_id_from_url(url)

    def test_different_books(self):
        assert book_id_from_url("https://www.royalroad.com/fiction/1") != book_id_from_url(
            "https://www.royalroad.com/fiction/2"
        )


class TestDates:
    def test_parse_z_suffix(self):
        assert parse_datetime("2024-01-01T00:00:00Z") == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_parse_offset_is_normalised(self):
        parsed = parse_datetime("2024-01-01T02:00:00+02:00")
        assert parsed == datetime(2024, 1, 1, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", [None, "", "yesterday"])
    def test_unreadable(self, value):
        assert parse_datetime(value) is None


class TestCounts:
    def test_bounds(self):
        assert checked_count(0) == 0
        assert checked_count(65535) == 65535

    def test_overflow(self):
        with pytest.raises(CountOverflow):
            checked_count(65536)

    def test_updated_result_is_checked(self):
        with pytest.raises(CountOverflow):
            UpdateResult.updated(70000)

    def test_result_kinds(self):
        assert UpdateResult.updated(3).kind is UpdateKind.UPDATED
        assert UpdateResult.updated(3).count == 3
        assert UpdateResult.up_to_date().count == 0
        assert UpdateResult.error("boom").reason == "boom"
        assert str(UpdateResult.updated(2)) == "2 new chapter(s)"


def test_chapter_dict_round_trip_keeps_notes():
    chapter = Chapter(
        identifier="7",
        date_published=BASE_DATE,
        title="Seven",
        url="https://example.com/7",
        content="<p>c</p>",
        authors_note_start="<p>start</p>",
        authors_note_end=None,
    )
    restored = Chapter.from_dict(chapter.to_dict())
    assert restored.authors_note_start == "<p>start</p>"
    assert restored.authors_note_end is None
    assert restored.content == "<p>c</p>"
