"""
Logging setup.

stdout carries JSON-RPC frames when serving over stdio, so every handler
writes to stderr.
"""
import logging
import sys
from typing import Optional

from .config import LoggingSettings

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"

# Chatty third-party loggers that would otherwise echo every request at INFO
_QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def configure_logging(settings: Optional[LoggingSettings] = None) -> None:
    settings = settings or LoggingSettings()
    logging.basicConfig(
        level=getattr(logging, settings.level.upper()),
        format=LOG_FORMAT,
        stream=sys.stderr,
        force=True,
    )
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, logging.root.level))
