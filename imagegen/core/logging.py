"""Logging setup for the dispatcher and the CLI.

Log records raised around a single generation carry dispatch context
(request id, backend, mode, error code) through ``extra=``. The JSON
formatter emits those as top-level fields; the text formatter appends
them in brackets so a failed request can be followed through the log.
"""

import json
import logging
import sys
from datetime import datetime, timezone

from imagegen.core.config import settings

# Attributes a log call may attach via extra=
CONTEXT_FIELDS = ("request_id", "backend", "mode", "error_code")


def _context(record: logging.LogRecord) -> dict:
    return {name: getattr(record, name) for name in CONTEXT_FIELDS if getattr(record, name, None) is not None}


class JSONFormatter(logging.Formatter):
    """One JSON object per line, dispatch context as top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_context(record),
        }
        if record.exc_info and record.exc_info[1]:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, ensure_ascii=False)


class ContextFormatter(logging.Formatter):
    """Plain text line with the dispatch context appended as [key=value ...]."""

    def __init__(self):
        super().__init__(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = _context(record)
        if not context:
            return line
        return f"{line} [{' '.join(f'{k}={v}' for k, v in context.items())}]"


def setup_logging() -> None:
    """Install a single stderr handler on the root logger.

    stdout is left to the CLI, which prints generation results there.
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if settings.log_json else ContextFormatter())
    root.addHandler(handler)

    # Request lines from the HTTP client duplicate the adapters' own logs
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
