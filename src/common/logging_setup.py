"""Logging setup shared by the data-access core."""

from __future__ import annotations

import logging
import sys
from typing import Union

LOGGER_NAMES = ("app", "common", "session", "state")

_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def setup_logging(level: Union[int, str] = logging.INFO) -> None:
    """
    Attach a stderr handler to the core's package loggers.

    Idempotent: loggers that already carry a handler are only re-levelled.
    """
    fmt = logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    for name in LOGGER_NAMES:
        log = logging.getLogger(name)
        log.setLevel(level)
        if log.handlers:
            continue
        h = logging.StreamHandler(sys.stderr)
        h.setFormatter(fmt)
        log.addHandler(h)


def mask_token(token: object) -> str:
    """Describe a token for logs without revealing it."""
    if not isinstance(token, str) or not token:
        return "none"
    return f"present(len={len(token)})"
