"""Call id correlation for log records.

The tool executor binds the id of the call it is serving; any log line
emitted while that execution runs (including from services and the data
layer) is tagged with it through ``CallIdFilter``.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

_call_id: ContextVar[str] = ContextVar("call_id", default="-")


def get_call_id() -> str:
    return _call_id.get()


@contextmanager
def bind_call_id(call_id: Optional[str]) -> Iterator[None]:
    token = _call_id.set(call_id or "-")
    try:
        yield
    finally:
        _call_id.reset(token)


class CallIdFilter(logging.Filter):
    """Injects call_id into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.call_id = _call_id.get()
        return True
