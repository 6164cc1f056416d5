"""Filesystem and logging helpers."""

from __future__ import annotations

import sys
from pathlib import Path

from loguru import logger

from mission_control.config.schema import Config

_LOG_FORMAT = "<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | {message}"


def ensure_dir(path: Path) -> Path:
    """Create directory (and parents) if missing; return it."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_path(state_dir: str | None = None) -> Path:
    """Return the per-user data directory, creating it on demand."""
    base = Path(state_dir).expanduser() if state_dir else Config().state_path.parent
    return ensure_dir(base)


def setup_logging(level: str = "INFO", log_file: str | None = None) -> None:
    """Route loguru to stderr and, optionally, a rotating file."""
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=_LOG_FORMAT)
    if log_file:
        target = Path(log_file).expanduser()
        ensure_dir(target.parent)
        logger.add(
            target,
            level="DEBUG",
            rotation="5 MB",
            retention=3,
            encoding="utf-8",
            enqueue=True,
        )
