import logging
import sys
from pathlib import Path

from loguru import logger

# time | level | thread | module:function:line - message
LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{thread.name}</cyan> | "
    "<cyan>{module}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)

# Chatty below WARNING, and every book update goes through them
NOISY_LIBRARIES = ("urllib3", "PIL")


class InterceptHandler(logging.Handler):
    """Forward standard library log records (requests, Pillow) to loguru."""

    def emit(self, record):
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logger(log_level: str = "INFO", log_dir: str = "./logs", retention: int = 7):
    """
    Replace loguru's default sink with a coloured stderr sink and a daily
    ``autebook_YYYY-MM-DD.log`` file kept for ``retention`` days.
    """
    logger.remove()

    log_path = Path(log_dir).expanduser()
    log_path.mkdir(parents=True, exist_ok=True)

    logger.add(sys.stderr, format=LOG_FORMAT, level=log_level, colorize=True)
    logger.add(
        log_path / "autebook_{time:YYYY-MM-DD}.log",
        format=LOG_FORMAT,
        level=log_level,
        rotation="00:00",
        retention=f"{retention} days",
        encoding="utf-8",
        enqueue=True,  # worker threads log concurrently
    )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in NOISY_LIBRARIES:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.debug(f"Logging to {log_path} at level {log_level}")


__all__ = ["setup_logger", "logger"]
