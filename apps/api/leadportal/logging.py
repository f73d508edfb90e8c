from __future__ import annotations

import json
import logging
import os
import re
import sys
from datetime import datetime, timezone
from typing import Any

from leadportal.context import get_correlation_id, get_log_context


_BASE_RECORD_KEYS = set(logging.makeLogRecord({}).__dict__.keys())
_KNOWN_FIELDS = frozenset(
    {
        "method",
        "path",
        "status_code",
        "duration_ms",
        "uid",
        "lead_id",
        "customer_id",
        "job_id",
        "step",
        "batch",
        "reason",
        "error",
    }
)
MAX_ERROR_LENGTH = 500

# CRM error bodies echo the request document, grant key included.
_SECRETS = (
    (re.compile(r'("grantKey"\s*:\s*")[^"]*(")'), r"\1***\2"),
    (re.compile(r"(Bearer\s+)[A-Za-z0-9._~+/=-]+"), r"\1***"),
)


def redact(text: str) -> str:
    for pattern, replacement in _SECRETS:
        text = pattern.sub(replacement, text)
    return text


class RequestContextFilter(logging.Filter):
    """Fills correlation id and caller uid on records that were not given them explicitly."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in get_log_context().items():
            if not getattr(record, key, None):
                setattr(record, key, value)
        return True


_DEFAULT_RECORD_FACTORY = logging.getLogRecordFactory()


def _record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
    record = _DEFAULT_RECORD_FACTORY(*args, **kwargs)
    if not getattr(record, "correlation_id", None):
        record.correlation_id = get_correlation_id()
    return record


def _structured_fields(record: logging.LogRecord) -> dict[str, Any]:
    fields = {
        key: value
        for key, value in record.__dict__.items()
        if key in _KNOWN_FIELDS and key not in _BASE_RECORD_KEYS and value is not None
    }
    error = fields.get("error")
    if isinstance(error, str):
        fields["error"] = redact(error)[:MAX_ERROR_LENGTH]
    return fields


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        fields = _structured_fields(record)
        if record.exc_info:
            fields["exception"] = redact(self.formatException(record.exc_info))

        return json.dumps(
            {
                "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
                "correlation_id": getattr(record, "correlation_id", None),
                "fields": fields,
            },
            default=str,
        )


def configure_logging() -> None:
    root_logger = logging.getLogger()
    if getattr(root_logger, "_leadportal_configured", False):
        return

    level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(JsonLogFormatter())
    handler.addFilter(RequestContextFilter())

    root_logger.handlers.clear()
    root_logger.filters.clear()
    root_logger.setLevel(level)
    logging.setLogRecordFactory(_record_factory)
    root_logger.addHandler(handler)
    # httpx logs every CRM and identity call at INFO with full URLs.
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))
    root_logger._leadportal_configured = True  # type: ignore[attr-defined]
