"""Tracing helpers for lookup calls and record submissions."""
from __future__ import annotations

import contextlib
import time
from typing import Iterator, Optional

import structlog
from structlog.contextvars import bind_contextvars, unbind_contextvars

_CONTEXT_KEYS = ("submit_id", "record_id")


def _logger():
    return structlog.get_logger("housemap.trace")


def set_context(*, submit_id: str, record_id: Optional[str] = None) -> None:
    bind_contextvars(submit_id=submit_id, record_id=record_id)
    _logger().debug("trace_context", submit_id=submit_id, record_id=record_id)


def clear_context() -> None:
    unbind_contextvars(*_CONTEXT_KEYS)


@contextlib.contextmanager
def span(*, name: str, url: Optional[str] = None) -> Iterator[None]:
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        _logger().info("trace_span", span=name, url=url, elapsed_ms=elapsed_ms)


def log_lookup_result(*, operation: str, status: int, results: int, elapsed_ms: int) -> None:
    _logger().info(
        "lookup_result",
        operation=operation,
        status=status,
        results=results,
        elapsed_ms=elapsed_ms,
    )
