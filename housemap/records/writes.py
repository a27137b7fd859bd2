"""Non-blocking store writes with an explicit error channel.

Each write is scheduled as a task and returned immediately. Callers either
await the task, which re-raises a `PersistenceRejected`, or pass an
`on_error` callback that receives rejections once the write settles.
"""
from __future__ import annotations

import asyncio
from functools import partial
from typing import Awaitable, Callable, Optional, TypeVar

import structlog

from housemap.errors import PersistenceRejected
from housemap.observability.metrics import MetricsRegistry
from housemap.records.models import BuildingRecord
from housemap.records.store import RecordStore

LOGGER = structlog.get_logger(__name__)

T = TypeVar("T")
ErrorHandler = Callable[[PersistenceRejected], None]


class OptimisticWriter:
    def __init__(
        self,
        store: RecordStore,
        *,
        on_error: Optional[ErrorHandler] = None,
        metrics: Optional[MetricsRegistry] = None,
    ) -> None:
        self._store = store
        self._on_error = on_error
        self._metrics = metrics or MetricsRegistry()

    def create(self, record: BuildingRecord) -> "asyncio.Task[str]":
        return self._schedule("create", self._store.create(record.to_document()))

    def update(self, record: BuildingRecord) -> "asyncio.Task[None]":
        if record.id is None:
            raise ValueError("cannot update a record without an id")
        return self._schedule("update", self._store.update(record.id, record.to_document()))

    def delete(self, record_id: str) -> "asyncio.Task[None]":
        return self._schedule("delete", self._store.delete(record_id))

    def _schedule(self, operation: str, write: Awaitable[T]) -> "asyncio.Task[T]":
        task = asyncio.ensure_future(write)
        task.add_done_callback(partial(self._settled, operation))
        return task

    def _settled(self, operation: str, task: "asyncio.Task[object]") -> None:
        if task.cancelled():
            LOGGER.info("write_cancelled", operation=operation)
            return
        exc = task.exception()
        if exc is None:
            self._metrics.incr("writes_ok")
            LOGGER.info("write_settled", operation=operation)
            return
        if isinstance(exc, PersistenceRejected):
            self._metrics.incr("writes_rejected")
            LOGGER.warning("write_rejected", operation=operation, reason=str(exc))
            if self._on_error is not None:
                self._on_error(exc)
            return
        LOGGER.error("write_crashed", operation=operation, exc_info=exc)
