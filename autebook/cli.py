import argparse
from pathlib import Path

import questionary

from .config_loader import config
from .driver import format_summary, update_books
from .errors import AutebookError
from .logger_config import logger
from .model import UpdateKind
from .sync import Updater


def build_parser():
    parser = argparse.ArgumentParser(
        prog="autebook",
        description="Keep EPUB copies of web novels up to date with their source",
    )
    parser.add_argument("--workers", type=int, help="Number of books updated at once")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")

    subparsers = parser.add_subparsers(dest="command")

    update = subparsers.add_parser("update", help="Update existing EPUB files")
    update.add_argument("paths", nargs="*", default=["."], help="EPUB files or directories (default: .)")

    add = subparsers.add_parser("add", help="Create an EPUB from a web novel URL")
    add.add_argument("url", nargs="?", help="Web novel URL")
    add.add_argument("--dir", default=".", help="Output directory")
    add.add_argument("--filename", help="Output file name (default: <title>.epub)")

    recreate = subparsers.add_parser("recreate", help="Stash an EPUB and rebuild it from scratch")
    recreate.add_argument("path", help="EPUB file to rebuild")

    return parser


def parse_cli_args(argv=None):
    """Parse arguments; command line options override the configuration in memory."""
    args = build_parser().parse_args(argv)

    if args.workers:
        config.set("update.workers", args.workers)
        logger.info(f"Command line override: {args.workers} worker(s)")
    if args.log_level:
        config.set("log.level", args.log_level.upper())
    if args.command is None:
        args.command = "update"
        args.paths = ["."]
    return args


def _prompt_for_url():
    url = questionary.text("Web novel URL:").ask()
    if not url:
        return None
    directory = questionary.path("Output directory:", default=".", only_directories=True).ask()
    return url.strip(), directory or "."


def run_update(args) -> int:
    outcomes = update_books(args.paths, workers=config.get("update.workers", 4))
    if outcomes:
        print(format_summary(outcomes))
    return 1 if any(o.result.kind is UpdateKind.ERROR for o in outcomes) else 0


def run_add(args) -> int:
    url, directory = args.url, args.dir
    if not url:
        answer = _prompt_for_url()
        if answer is None:
            logger.warning("No URL given")
            return 1
        url, directory = answer

    try:
        path = Updater().create(url, directory, args.filename)
    except AutebookError as e:
        logger.error(f"Could not create a book from {url}: {e}")
        return 1
    logger.info(f"Created {path}")
    return 0


def run_recreate(args) -> int:
    path = Path(args.path)
    try:
        new_path = Updater().stash_and_recreate(path)
    except AutebookError as e:
        logger.error(f"Could not recreate {path}: {e}")
        return 1
    logger.info(f"Recreated {new_path}")
    return 0


COMMANDS = {
    "update": run_update,
    "add": run_add,
    "recreate": run_recreate,
}


def run_cli(args) -> int:
    return COMMANDS[args.command](args)
