"""
Utilities for configuring consistent logging across AIR entry points.

The CLI and any embedding service call :func:`configure_logging` once at
start-up so every module's ``logging.getLogger(__name__)`` writes unbuffered
lines to a single stream. The level and format come from environment
variables:

- ``AIR_LOG_LEVEL`` controls the root log level (default: ``WARNING`` so the
  CLI's own output stays readable).
- ``AIR_LOG_FORMAT`` controls the message format.
"""
from __future__ import annotations

import logging
import os
import sys
from typing import Final, TextIO

DEFAULT_FORMAT: Final[str] = os.environ.get(
    "AIR_LOG_FORMAT",
    "%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
DEFAULT_DATEFMT: Final[str] = "%Y-%m-%d %H:%M:%S"
_NOISY_LOGGERS: Final[tuple[str, ...]] = ("httpx", "httpcore", "langchain", "e2b", "mcp")
_CONFIGURED: bool = False


def _resolve_level(name: str | None, default: int = logging.WARNING) -> int:
    if not name:
        return default
    normalized = name.strip().upper()
    level = getattr(logging, normalized, None)
    return level if isinstance(level, int) else default


def configure_logging(*, force: bool = False, stream: TextIO | None = None) -> None:
    """
    Configure the root logger to stream messages to ``stream`` (stderr by default).

    Args:
        force: When True, existing handlers are cleared before configuring.
        stream: Destination stream; the CLI keeps stdout for its own output.
    """
    global _CONFIGURED
    if _CONFIGURED and not force:
        return

    root_logger = logging.getLogger()
    if force:
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)

    level = _resolve_level(os.environ.get("AIR_LOG_LEVEL"))
    root_logger.setLevel(level)

    handler = logging.StreamHandler(stream=stream or sys.stderr)
    handler.setFormatter(logging.Formatter(fmt=DEFAULT_FORMAT, datefmt=DEFAULT_DATEFMT))
    root_logger.addHandler(handler)

    # Quiet down noisy dependencies unless explicitly overridden.
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, level))

    _CONFIGURED = True
