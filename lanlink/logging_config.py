from __future__ import annotations

import logging
import os
import sys
from typing import Optional


ENGINE_LOGGERS = ("aiortc", "aioice")


def setup_logging(level: Optional[str] = None) -> str:
    """Send lanlink logs to stderr and return the level in effect.

    ``lanlink host|join`` prints descriptions and chat lines on stdout for
    copy/paste, so log records must never land there. At DEBUG the ICE and
    DTLS engine loggers stay at INFO unless LANLINK_ENGINE_DEBUG is set.
    """

    effective_level = (level or os.environ.get("LANLINK_LOG_LEVEL") or "INFO").upper()

    root = logging.getLogger()
    if root.handlers:
        root.setLevel(effective_level)
    else:
        logging.basicConfig(
            level=effective_level,
            stream=sys.stderr,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

    if effective_level == "DEBUG" and not os.environ.get("LANLINK_ENGINE_DEBUG"):
        for name in ENGINE_LOGGERS:
            logging.getLogger(name).setLevel(logging.INFO)
    return effective_level
