"""Centralized Loguru logging setup.

Why: Keep logging configuration consistent across modules and allow semantic
levels for the chat path (CHAT/IRC/SUB/FANOUT). Call `setup_logging()` at app
startup; the levels themselves are registered on package import so modules can
log at them even when no sink has been configured yet (tests, scripts).
"""

from __future__ import annotations

from loguru import logger
import os
import sys


# name -> (severity, color)
CUSTOM_LEVELS = {
    "CHAT": (21, "<cyan>"),
    "IRC": (22, "<magenta>"),
    "SUB": (23, "<blue>"),
    "FANOUT": (24, "<yellow>"),
}


def register_levels() -> None:
    """Register custom semantic levels once; safe to call repeatedly."""
    for name, (no, color) in CUSTOM_LEVELS.items():
        try:
            logger.level(name)
        except ValueError:
            logger.level(name, no=no, color=color)


def setup_logging() -> None:
    """Configure Loguru sinks and levels.

    - Logs to stderr with a concise format suitable for dev.
    - Respects `LOG_LEVEL` env var (default: INFO).
    - Avoid duplicate handlers if called multiple times.
    """
    # Remove any previously configured handlers to avoid duplicates.
    logger.remove()

    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    register_levels()

    logger.add(
        sys.stderr,
        level=log_level,
        backtrace=False,
        diagnose=False,
        format="<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <level>{message}</level>",
        colorize=True,
    )
