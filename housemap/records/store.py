"""JSONL-backed document store with live snapshot subscriptions."""
from __future__ import annotations

import asyncio
import uuid
from pathlib import Path
from typing import Callable, Dict, List, Optional, Protocol

import orjson
import structlog
from pydantic import ValidationError

from housemap.errors import INVALID_PAYLOAD, READ_ONLY, UNKNOWN_RECORD, WRITE_FAILED, PersistenceRejected
from housemap.records.models import BuildingRecord
from housemap.records.validate import RecordSchema

LOGGER = structlog.get_logger(__name__)

Listener = Callable[[List[BuildingRecord]], None]


class RecordStore(Protocol):
    async def create(self, payload: Dict[str, object]) -> str: ...

    async def update(self, record_id: str, payload: Dict[str, object]) -> None: ...

    async def delete(self, record_id: str) -> None: ...

    def subscribe(self, listener: Listener) -> Callable[[], None]: ...

    def snapshot(self) -> List[BuildingRecord]: ...


class LocalRecordStore:
    """Owns the canonical copy of every record; ids are assigned here."""

    def __init__(self, path: Path, *, schema: Optional[RecordSchema] = None, read_only: bool = False) -> None:
        self._path = path
        self._schema = schema or RecordSchema()
        self._read_only = read_only
        self._docs: Dict[str, Dict[str, object]] = {}
        self._listeners: List[Listener] = []
        self._lock = asyncio.Lock()
        self._load_from_disk()

    def _load_from_disk(self) -> None:
        if not self._path.exists():
            self._path.parent.mkdir(parents=True, exist_ok=True)
            return
        for line in self._path.read_text(encoding="utf-8").splitlines():
            if not line.strip():
                continue
            row = orjson.loads(line)
            self._docs[str(row["id"])] = row["data"]

    def _write_lines(self, rows: List[Dict[str, object]]) -> None:
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as handle:
            for row in rows:
                handle.write(orjson.dumps(row).decode())
                handle.write("\n")
        tmp_path.replace(self._path)

    async def _commit(self, operation: str, docs: Dict[str, Dict[str, object]]) -> None:
        """Write `docs` to disk and only then make them the live state. Hold `_lock`."""
        rows = [{"id": record_id, "data": doc} for record_id, doc in docs.items()]
        try:
            await asyncio.to_thread(self._write_lines, rows)
        except OSError as exc:
            LOGGER.error("record_write_failed", operation=operation, path=str(self._path), reason=str(exc))
            raise PersistenceRejected(operation, str(exc), reason=WRITE_FAILED) from exc
        self._docs = docs

    def _check_writable(self, operation: str) -> None:
        if self._read_only:
            raise PersistenceRejected(operation, "store is read-only", reason=READ_ONLY)

    def _check_payload(self, operation: str, payload: Dict[str, object]) -> None:
        result = self._schema.validate(payload)
        if not result.ok:
            raise PersistenceRejected(operation, "; ".join(result.errors), reason=INVALID_PAYLOAD)

    def _check_known(self, operation: str, record_id: str) -> None:
        if record_id not in self._docs:
            raise PersistenceRejected(operation, f"unknown record {record_id}", reason=UNKNOWN_RECORD)

    async def create(self, payload: Dict[str, object]) -> str:
        self._check_writable("create")
        self._check_payload("create", payload)
        record_id = uuid.uuid4().hex
        async with self._lock:
            await self._commit("create", {**self._docs, record_id: dict(payload)})
        LOGGER.info("record_created", record_id=record_id)
        self._notify()
        return record_id

    async def update(self, record_id: str, payload: Dict[str, object]) -> None:
        self._check_writable("update")
        self._check_payload("update", payload)
        async with self._lock:
            self._check_known("update", record_id)
            await self._commit("update", {**self._docs, record_id: dict(payload)})
        LOGGER.info("record_updated", record_id=record_id)
        self._notify()

    async def delete(self, record_id: str) -> None:
        self._check_writable("delete")
        async with self._lock:
            self._check_known("delete", record_id)
            docs = dict(self._docs)
            del docs[record_id]
            await self._commit("delete", docs)
        LOGGER.info("record_deleted", record_id=record_id)
        self._notify()

    def get(self, record_id: str) -> Optional[BuildingRecord]:
        doc = self._docs.get(record_id)
        if doc is None:
            return None
        return BuildingRecord.from_document(record_id, doc)

    def snapshot(self) -> List[BuildingRecord]:
        records: List[BuildingRecord] = []
        for record_id, doc in self._docs.items():
            try:
                records.append(BuildingRecord.from_document(record_id, doc))
            except (KeyError, TypeError, ValueError, ValidationError) as exc:
                LOGGER.warning("record_unreadable", record_id=record_id, reason=str(exc))
        return records

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; it receives the current snapshot immediately."""
        self._listeners.append(listener)
        listener(self.snapshot())

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        if not self._listeners:
            return
        records = self.snapshot()
        for listener in list(self._listeners):
            listener(records)
