"""Delegate sites autebook cannot scrape itself to the ``fanficfare`` command line tool."""

from __future__ import annotations

import json
import re
import shutil
import subprocess
from pathlib import Path
from typing import Iterable, List, Optional, Union

from ..errors import AutebookError, FormatError
from ..logger_config import logger
from ..model import UpdateResult
from .base import ExternalUpdater

EXECUTABLE = "fanficfare"

UPDATING = re.compile(r"^Updating .*, URL: .*$")
UP_TO_DATE = re.compile(r"^.* already contains \d+ chapters\.$")
DO_UPDATE = re.compile(r"^Do update - epub\((\d+)\) vs url\((\d+)\)$")
MORE_CHAPTER_THAN_SOURCE = re.compile(r"^.* contains (\d+) chapters, more than source: (\d+)\.$")
SKIPPED = " - Skipping"

SUPPORTED_HOSTS = (
    "archiveofourown.org",
    "chireads.com",
    "efpfanfic.net",
    "fanfics.me",
    "fanfictalk.com",
    "fanfictions.fr",
    "fastnovels.net",
    "ficbook.net",
    "fiction.live",
    "fictionhunt.com",
    "ficwad.com",
    "finestories.com",
    "forum.questionablequesting.com",
    "forums.spacebattles.com",
    "forums.sufficientvelocity.com",
    "kakuyomu.jp",
    "ksarchive.com",
    "m.fanfiction.net",
    "m.fictionpress.com",
    "mobile.fimfiction.net",
    "ncode.syosetu.com",
    "novelonlinefull.com",
    "readonlymind.com",
    "scifistories.com",
    "squidgeworld.org",
    "storiesonline.net",
    "trekfanfiction.net",
    "www.alternatehistory.com",
    "www.asianfanfics.com",
    "www.deviantart.com",
    "www.fanfiction.net",
    "www.fanfiktion.de",
    "www.fictionpress.com",
    "www.fimfiction.net",
    "www.mediaminer.org",
    "www.novelall.com",
    "www.novelupdates.cc",
    "www.quotev.com",
    "www.scribblehub.com",
    "www.spiritfanfiction.com",
    "www.tthfanfic.org",
    "www.wattpad.com",
    "www.whofic.com",
    "www.wuxiaworld.xyz",
)


def parse_update_output(lines: Iterable[str]) -> UpdateResult:
    """Map the first meaningful line printed by ``fanficfare --update-epub`` to a result."""
    for line in lines:
        line = line.rstrip("\r\n")
        if not line or UPDATING.match(line):
            continue
        if UP_TO_DATE.match(line):
            return UpdateResult.up_to_date()

        match = DO_UPDATE.match(line)
        if match:
            in_epub, in_source = int(match.group(1)), int(match.group(2))
            return UpdateResult.updated(max(0, in_source - in_epub))

        match = MORE_CHAPTER_THAN_SOURCE.match(line)
        if match:
            in_epub, in_source = int(match.group(1)), int(match.group(2))
            return UpdateResult.more_chapter_than_source(max(0, in_epub - in_source))

        if line.endswith(SKIPPED):
            return UpdateResult.skipped()

    raise FormatError("Could not parse FanFicFare output")


class FanFicFare(ExternalUpdater):
    name = "FanFicFare"

    def __init__(self, executable: str = EXECUTABLE):
        self.executable = executable

    @classmethod
    def matches(cls, url: str) -> bool:
        return any(host in url for host in SUPPORTED_HOSTS)

    def _run(self, args: List[str], cwd: Optional[Path] = None) -> subprocess.CompletedProcess:
        if shutil.which(self.executable) is None:
            raise AutebookError(f"'{self.executable}' was not found in PATH")
        command = [self.executable, "--non-interactive", *args]
        logger.debug(f"Running {' '.join(command)}")
        try:
            return subprocess.run(command, cwd=cwd, capture_output=True, text=True, check=False)
        except OSError as e:
            raise AutebookError(f"Could not run {self.executable}: {e}") from e

    def update(self, path: Path) -> UpdateResult:
        try:
            completed = self._run(["--update-epub", "--update-cover", str(path)])
            lines = completed.stderr.splitlines() + completed.stdout.splitlines()
            return parse_update_output(lines)
        except AutebookError as e:
            return UpdateResult.error(f"{e} for file {path}")

    def create(self, url: str, directory: Union[str, Path], filename: Optional[str] = None) -> Path:
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        completed = self._run(["--json-meta", url], cwd=directory)

        if completed.stderr.strip():
            raise AutebookError(
                f"The execution of FanFicFare for '{url}' ended with an error\n{completed.stderr.strip()}"
            )
        try:
            generated = json.loads(completed.stdout)["output_filename"]
        except (ValueError, KeyError, TypeError) as e:
            raise FormatError(f"Failed to read book metadata from FanFicFare: {e}") from e

        file_path = directory / generated
        if filename:
            target = directory / filename
            try:
                file_path.replace(target)
            except OSError as e:
                raise AutebookError(f"Could not rename {file_path} to {target}: {e}") from e
            file_path = target
        logger.info(f"FanFicFare created {file_path}")
        return file_path
