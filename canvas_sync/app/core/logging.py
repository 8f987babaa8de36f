"""Logging for the canvas sync core.

Everything logs under the ``canvas_sync`` logger. Records carry optional
sync context (user, territory, action, mode, recovery attempt, call
duration) passed through ``extra=get_log_context(...)``; the
``ContextFilter`` fills in blanks so that text formats can always
reference those fields.

Formats (``settings.log_format``):
    text        time, level, logger and message
    structured  text plus territory, user and mode
    json        one JSON object per line (see JSONFormatter)
"""

import json
import logging
import logging.config
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from canvas_sync.app.core.config import settings

ROOT_LOGGER = "canvas_sync"

# Context attributes a record may carry, with the value used when absent
CONTEXT_FIELDS: Dict[str, Any] = {
    "user_id": None,
    "entity_id": None,
    "action_type": None,
    "mode": None,
    "attempt": None,
    "duration_ms": None,
}

# Attributes every LogRecord has; anything else on a record came from ``extra``
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime"}

FORMATS = {
    "text": "%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    "structured": (
        "%(asctime)s %(levelname)-7s %(name)s: %(message)s "
        "[territory=%(entity_id)s user=%(user_id)s mode=%(mode)s]"
    ),
}


class JSONFormatter(logging.Formatter):
    """Render a record as a single JSON line.

    Known context fields are promoted to top-level keys when set; any
    other ``extra`` attributes are grouped under ``"extra"``.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "source": {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            },
        }

        extra: Dict[str, Any] = {}
        for key, value in vars(record).items():
            if key in _RECORD_ATTRS:
                continue
            if key in CONTEXT_FIELDS:
                if value is not None:
                    entry[key] = value
            else:
                extra[key] = value
        if extra:
            entry["extra"] = extra

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = traceback.format_exception(*record.exc_info)

        return json.dumps(entry, default=str, ensure_ascii=False)


class ContextFilter(logging.Filter):
    """Give every record the sync context attributes."""

    def filter(self, record: logging.LogRecord) -> bool:
        for name, default in CONTEXT_FIELDS.items():
            if not hasattr(record, name):
                setattr(record, name, default)
        return True


def get_logging_config(level: Optional[str] = None, fmt: Optional[str] = None) -> Dict[str, Any]:
    """Build a dictConfig for the ``canvas_sync`` logger tree.

    Args:
        level: Log level, defaults to settings.log_level
        fmt: text, structured or json, defaults to settings.log_format

    Returns:
        Dict accepted by logging.config.dictConfig
    """
    level = (level or settings.log_level).upper()
    fmt = (fmt or settings.log_format).lower()

    if fmt == "json":
        formatter: Dict[str, Any] = {"()": f"{__name__}.JSONFormatter"}
    else:
        fmt = fmt if fmt in FORMATS else "text"
        formatter = {"format": FORMATS[fmt]}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {"context": {"()": f"{__name__}.ContextFilter"}},
        "formatters": {fmt: formatter},
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stderr",
                "formatter": fmt,
                "filters": ["context"],
                "level": level,
            },
        },
        "loggers": {
            ROOT_LOGGER: {
                "handlers": ["console"],
                "level": level,
                "propagate": False,
            },
        },
    }


def setup_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> None:
    """Apply the logging config and quiet the HTTP client libraries."""
    logging.config.dictConfig(get_logging_config(level, fmt))
    for noisy in ("httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    return logging.getLogger(name)


def get_log_context(
    user_id: Optional[str] = None,
    entity_id: Optional[str] = None,
    action_type: Optional[str] = None,
    mode: Optional[str] = None,
    **extra
) -> Dict[str, Any]:
    """Build the ``extra=`` mapping for a log call, dropping unset values.

    Example:
        >>> logger.info("Flushed canvas", extra=get_log_context(entity_id="T1", mode="normal"))
    """
    context = dict(user_id=user_id, entity_id=entity_id, action_type=action_type, mode=mode, **extra)
    return {key: value for key, value in context.items() if value is not None}
