"""Logging setup shared by the inbox services.

Log lines follow the ``event_name key=value`` convention, e.g.::

    logger.info("reply_dispatched message_id=%s channel=%s", message.id, channel)
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime

from cozmo_inbox.config import settings

_HANDLER_NAME = "cozmo_inbox"
_PLAIN_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


class KeyValueJsonFormatter(logging.Formatter):
    """Render records as a single JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        request_id = getattr(record, "request_id", None)
        if request_id:
            payload["request_id"] = request_id
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(level: str | None = None, fmt: str | None = None) -> None:
    """Install the package log handler on the root logger.

    Safe to call more than once; the handler is only added the first time.
    """
    root = logging.getLogger()
    root.setLevel((level or settings.log_level).upper())
    if any(getattr(handler, "name", None) == _HANDLER_NAME for handler in root.handlers):
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(_HANDLER_NAME)
    if (fmt or settings.log_format) == "json":
        handler.setFormatter(KeyValueJsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(_PLAIN_FORMAT))
    root.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
