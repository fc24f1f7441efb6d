import json
import subprocess

import pytest

from autebook.errors import AutebookError, FormatError
from autebook.model import UpdateKind, UpdateResult
from autebook.sources import fanficfare
from autebook.sources.fanficfare import FanFicFare, parse_update_output


class TestParseUpdateOutput:
    def test_up_to_date(self):
        lines = [
            "Updating stories/Some Story.epub, URL: https://www.fanfiction.net/s/1/1/",
            "stories/Some Story.epub already contains 12 chapters.",
        ]
        assert parse_update_output(lines) == UpdateResult.up_to_date()

    def test_updated(self):
        lines = ["", "Do update - epub(10) vs url(13)"]
        assert parse_update_output(lines) == UpdateResult.updated(3)

    def test_more_chapters_than_source(self):
        lines = ["stories/Some Story.epub contains 15 chapters, more than source: 12."]
        assert parse_update_output(lines) == UpdateResult.more_chapter_than_source(3)

    def test_skipped(self):
        lines = ["Story stories/Some Story.epub is marked complete - Skipping"]
        assert parse_update_output(lines) == UpdateResult.skipped()

    def test_line_endings_ignored(self):
        assert parse_update_output(["Do update - epub(1) vs url(2)\r\n"]) == UpdateResult.updated(1)

    @pytest.mark.parametrize("lines", [[], ["Updating a.epub, URL: https://x"], ["Traceback (most recent call last):"]])
    def test_unrecognized(self, lines):
        with pytest.raises(FormatError):
            parse_update_output(lines)


class TestMatches:
    def test_supported(self):
        assert FanFicFare.matches("https://archiveofourown.org/works/1")
        assert FanFicFare.matches("https://www.scribblehub.com/series/1/a-story/")

    def test_unsupported(self):
        assert not FanFicFare.matches("https://example.com/story/1")


@pytest.fixture
def fake_run(monkeypatch):
    """Replace the subprocess call; returns the list of recorded commands."""
    calls = []
    outputs = {}

    def run(command, cwd=None, capture_output=False, text=False, check=False):
        calls.append((command, cwd))
        stdout, stderr = outputs.get("result", ("", ""))
        return subprocess.CompletedProcess(command, 0, stdout=stdout, stderr=stderr)

    monkeypatch.setattr(fanficfare.shutil, "which", lambda name: f"/usr/bin/{name}")
    monkeypatch.setattr(fanficfare.subprocess, "run", run)
    return calls, outputs


class TestFanFicFare:
    def test_update(self, fake_run, tmp_path):
        calls, outputs = fake_run
        outputs["result"] = ("", "Do update - epub(3) vs url(5)\n")

        path = tmp_path / "story.epub"
        assert FanFicFare().update(path) == UpdateResult.updated(2)
        assert calls[0][0] == ["fanficfare", "--non-interactive", "--update-epub", "--update-cover", str(path)]

    def test_update_with_unreadable_output(self, fake_run, tmp_path):
        _, outputs = fake_run
        outputs["result"] = ("something else entirely", "")

        result = FanFicFare().update(tmp_path / "story.epub")
        assert result.kind is UpdateKind.ERROR
        assert "story.epub" in result.reason

    def test_missing_executable(self, monkeypatch, tmp_path):
        monkeypatch.setattr(fanficfare.shutil, "which", lambda name: None)
        result = FanFicFare().update(tmp_path / "story.epub")
        assert result.kind is UpdateKind.ERROR
        assert "not found" in result.reason

    def test_create(self, fake_run, tmp_path):
        calls, outputs = fake_run
        outputs["result"] = (json.dumps({"output_filename": "Some Story-ffnet_1.epub"}), "")
        (tmp_path / "Some Story-ffnet_1.epub").write_bytes(b"epub")

        path = FanFicFare().create("https://www.fanfiction.net/s/1/1/", tmp_path)
        assert path == tmp_path / "Some Story-ffnet_1.epub"
        assert calls[0][1] == tmp_path

    def test_create_with_filename(self, fake_run, tmp_path):
        _, outputs = fake_run
        outputs["result"] = (json.dumps({"output_filename": "generated.epub"}), "")
        (tmp_path / "generated.epub").write_bytes(b"epub")

        path = FanFicFare().create("https://www.fanfiction.net/s/1/1/", tmp_path, "Wanted.epub")
        assert path == tmp_path / "Wanted.epub"
        assert path.read_bytes() == b"epub"
        assert not (tmp_path / "generated.epub").exists()

    def test_create_reports_stderr(self, fake_run, tmp_path):
        _, outputs = fake_run
        outputs["result"] = ("", "Story does not exist")

        with pytest.raises(AutebookError) as excinfo:
            FanFicFare().create("https://www.fanfiction.net/s/1/1/", tmp_path)
        assert "Story does not exist" in str(excinfo.value)

    def test_create_with_filename_when_output_is_missing(self, fake_run, tmp_path):
        _, outputs = fake_run
        outputs["result"] = (json.dumps({"output_filename": "generated.epub"}), "")

        with pytest.raises(AutebookError) as excinfo:
            FanFicFare().create("https://www.fanfiction.net/s/1/1/", tmp_path, "Wanted.epub")
        assert "generated.epub" in str(excinfo.value)
