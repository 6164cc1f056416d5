"""Last-resort crash capture for the host process."""

from __future__ import annotations

import faulthandler
import json
import os
import platform
import sys
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, TextIO

from loguru import logger

from mission_control.utils.helpers import ensure_dir

# Exit status used after an uncaught exception has been recorded.
UNCAUGHT_EXIT_CODE = 70

_fault_file: TextIO | None = None


def crash_dir(base: Path) -> Path:
    return ensure_dir(base / "crashes")


def write_crash_report(directory: Path, kind: str, details: dict[str, Any]) -> Path:
    """Write one JSON diagnostic and return its path."""
    now = datetime.now(timezone.utc)
    target = ensure_dir(directory) / f"{kind.lower()}-{int(now.timestamp() * 1000)}.json"
    payload = {
        "type": kind,
        "timestamp": now.isoformat(),
        "process": {
            "pid": os.getpid(),
            "platform": sys.platform,
            "machine": platform.machine(),
            "python": platform.python_version(),
        },
        "env": {
            "USE_TEST_CLAUDE": os.environ.get("USE_TEST_CLAUDE"),
            "USE_SAFE_PTY_TEST": os.environ.get("USE_SAFE_PTY_TEST"),
        },
        **details,
    }
    target.write_text(json.dumps(payload, indent=2, default=str), encoding="utf-8")
    return target


def install_crash_handler(base: Path, exit_on_uncaught: bool = True) -> Path:
    """Enable faulthandler and record uncaught exceptions as JSON.

    Fatal signals (SIGSEGV, SIGBUS, SIGFPE, SIGABRT) dump every thread's
    traceback to ``crashes/fatal.log``; the process then dies with the
    signal's conventional status (128 + signum). Uncaught exceptions write a
    JSON report and exit with ``UNCAUGHT_EXIT_CODE``.
    """
    global _fault_file
    directory = crash_dir(base)
    if _fault_file is None:
        _fault_file = (directory / "fatal.log").open("a", encoding="utf-8")
        faulthandler.enable(file=_fault_file, all_threads=True)

    def _excepthook(exc_type, exc, tb) -> None:
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc, tb)
            return
        try:
            report = write_crash_report(
                directory,
                "UNCAUGHT",
                {
                    "exception": exc_type.__name__,
                    "message": str(exc),
                    "stack": traceback.format_exception(exc_type, exc, tb),
                },
            )
            logger.critical(f"[crash] Uncaught {exc_type.__name__}, report saved to {report}")
        except OSError as write_exc:
            logger.critical(f"[crash] Failed to save crash report: {write_exc}")
        sys.__excepthook__(exc_type, exc, tb)
        if exit_on_uncaught:
            os._exit(UNCAUGHT_EXIT_CODE)

    sys.excepthook = _excepthook
    logger.debug(f"[crash] Crash handler installed, reports go to {directory}")
    return directory
