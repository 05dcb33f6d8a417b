from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from app.context import get_correlation_id
from app.core.config import get_settings


# Extra attributes copied into the "fields" object; anything else passed via
# ``extra=`` stays out of the JSON line.
LOGGED_FIELDS = (
    "method",
    "path",
    "status_code",
    "duration_ms",
    "entry_point",
    "item_count",
    "filters",
    "error",
)
ERROR_FIELD_MAX_CHARS = 500


def _attach_correlation_id(record: logging.LogRecord) -> logging.LogRecord:
    if not getattr(record, "correlation_id", None):
        record.correlation_id = get_correlation_id()
    return record


class CorrelationIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        _attach_correlation_id(record)
        return True


_base_record_factory = logging.getLogRecordFactory()


def _correlated_record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
    return _attach_correlation_id(_base_record_factory(*args, **kwargs))


def structured_fields(record: logging.LogRecord) -> dict[str, Any]:
    fields = {name: record.__dict__[name] for name in LOGGED_FIELDS if name in record.__dict__}
    error = fields.get("error")
    if isinstance(error, str) and len(error) > ERROR_FIELD_MAX_CHARS:
        fields["error"] = error[:ERROR_FIELD_MAX_CHARS]
    return fields


class JsonLogFormatter(logging.Formatter):
    """One JSON object per line: ts, level, logger, msg, correlation_id and fields."""

    def format(self, record: logging.LogRecord) -> str:
        fields = structured_fields(record)
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None),
            "fields": fields,
        }
        return json.dumps(payload, default=str)


def configure_logging(level: str | None = None) -> None:
    root_logger = logging.getLogger()
    if getattr(root_logger, "_cross_sell_configured", False):
        return

    level_name = (level or get_settings().log_level).upper()
    resolved = logging.getLevelName(level_name)
    if not isinstance(resolved, int):
        resolved = logging.INFO

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setLevel(resolved)
    handler.setFormatter(JsonLogFormatter())
    handler.addFilter(CorrelationIdFilter())

    root_logger.handlers.clear()
    root_logger.filters.clear()
    root_logger.setLevel(resolved)
    logging.setLogRecordFactory(_correlated_record_factory)
    root_logger.addHandler(handler)
    root_logger._cross_sell_configured = True  # type: ignore[attr-defined]
