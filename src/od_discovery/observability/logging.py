"""Logging setup: a single stdout handler emitting JSON lines or plain text."""

from __future__ import annotations

from datetime import datetime, timezone
import logging
import sys
from typing import Any

import orjson

from od_discovery.observability.context import current_fields


SECRET_FIELDS = frozenset({"password", "elastic_password", "authorization", "token", "api_key", "secret"})
MAX_MESSAGE_CHARS = 2000
MAX_FIELD_CHARS = 500
QUIET_LOGGERS = ("httpx", "httpcore")

_RESERVED = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


def _clip(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def _encode_default(value: Any) -> Any:
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    if isinstance(value, (bytes, bytearray)):
        return value.decode("utf-8", errors="replace")
    return str(value)


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    """Fields passed through ``extra=``, with secrets masked."""
    fields: dict[str, Any] = {}
    for key, value in vars(record).items():
        if key in _RESERVED or key.startswith("_"):
            continue
        if key.lower() in SECRET_FIELDS:
            value = "[REDACTED]"
        elif isinstance(value, str):
            value = _clip(value, MAX_FIELD_CHARS)
        fields[key] = value
    return fields


class JsonFormatter(logging.Formatter):
    """One JSON object per record, tagged with the current trace and task."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": _clip(record.getMessage(), MAX_MESSAGE_CHARS),
        }
        entry.update(current_fields())
        if "." in record.name:
            entry["component"] = record.name.rpartition(".")[2]
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        entry.update(_extra_fields(record))
        return orjson.dumps(entry, default=_encode_default).decode("utf-8")


def configure_logging(
    level: str = "INFO",
    json_output: bool = True,
    *,
    logger_levels: dict[str, str] | None = None,
) -> None:
    """Replace the root handlers with one stdout handler.

    Args:
        level: Root level name, case-insensitive
        json_output: JSON lines when True, human-readable text otherwise
        logger_levels: Per-logger overrides, e.g. ``{"od_discovery.utils.probe": "debug"}``
    """
    handler = logging.StreamHandler(sys.stdout)
    if json_output:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(logging.getLevelNamesMapping().get(level.upper(), logging.INFO))

    # One line per probe otherwise
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    for name, name_level in (logger_levels or {}).items():
        logging.getLogger(name).setLevel(name_level.upper())
