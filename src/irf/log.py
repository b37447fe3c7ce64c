"""Loguru sink setup shared by scripts and notebooks."""

import sys
from pathlib import Path

from loguru import logger

LOG_FORMAT = "{time:HH:mm:ss}|{level:<7}|{message}"


def setup_logging(level: str = "INFO", log_dir: Path | str | None = None) -> None:
    """Replace loguru's default sink with a stdout sink and an optional file sink.

    The file sink always records DEBUG and rotates at 30 MB.
    """
    logger.remove()
    logger.add(sys.stdout, level=level, format=LOG_FORMAT)
    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(log_dir / "run.log", rotation="30 MB", level="DEBUG")
