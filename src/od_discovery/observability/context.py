"""Log correlation fields carried across awaits.

Each asyncio task sees its own copy, so a field bound while the scheduler runs
"reconcile roots" shows up on every log line that task emits, probes included.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
import secrets
from uuid import uuid4


_log_fields: ContextVar[dict[str, str] | None] = ContextVar("od_log_fields", default=None)


def new_trace_id() -> str:
    return uuid4().hex


def new_span_id() -> str:
    return secrets.token_hex(8)


def current_fields() -> dict[str, str]:
    """Return the active fields, starting a fresh trace if none is bound."""
    fields = _log_fields.get()
    if not fields:
        fields = {"trace_id": new_trace_id(), "span_id": new_span_id()}
        _log_fields.set(fields)
    return fields


@contextmanager
def bound_fields(**fields: str) -> Iterator[dict[str, str]]:
    """Open a child span in the log context with extra ``fields``; restored on exit."""
    merged = {**current_fields(), "span_id": new_span_id(), **fields}
    token = _log_fields.set(merged)
    try:
        yield merged
    finally:
        _log_fields.reset(token)
