from __future__ import annotations

import sys
from pathlib import Path

from loguru import logger

_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}"


def setup_logging(level: str = "INFO", log_dir: str | Path | None = "./logs") -> None:
    """Console sink plus a rotating application log and an error-only log."""
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=_FORMAT)
    if not log_dir:
        return
    path = Path(log_dir)
    path.mkdir(parents=True, exist_ok=True)
    logger.add(
        path / "application_{time:YYYY-MM-DD}.log",
        level=level.upper(),
        format=_FORMAT,
        rotation="20 MB",
        retention="14 days",
        encoding="utf-8",
        enqueue=True,
    )
    logger.add(
        path / "error_{time:YYYY-MM-DD}.log",
        level="ERROR",
        format=_FORMAT,
        rotation="00:00",
        retention="30 days",
        encoding="utf-8",
        enqueue=True,
        backtrace=True,
    )
