"""Create/edit/delete orchestration for building records."""
from __future__ import annotations

import asyncio
import uuid
from typing import Optional

import structlog

from housemap.errors import (
    INVALID_PAYLOAD,
    READ_ONLY,
    UNKNOWN_RECORD,
    WRITE_FAILED,
    GatewayCallFailed,
    PersistenceRejected,
    ResolutionFailed,
)
from housemap.geo.models import ExternalCandidate, GeoPoint
from housemap.observability.tracing import clear_context, set_context
from housemap.records.assemble import assemble
from housemap.records.models import BuildingForm, BuildingRecord
from housemap.records.writes import OptimisticWriter
from housemap.resolve.resolver import (
    ADDRESS_NOT_FOUND,
    EXTERNAL_NOT_FETCHED,
    NO_MANUAL_POINT,
    CoordinateResolver,
    ResolutionContext,
    ResolutionMode,
)

LOGGER = structlog.get_logger(__name__)

_RESOLUTION_MESSAGES = {
    ADDRESS_NOT_FOUND: "Could not find coordinates for this address. Retype it more precisely or pick the point on the map.",
    NO_MANUAL_POINT: "No point was picked. Click the building on the map first.",
    EXTERNAL_NOT_FETCHED: "The map object has not been fetched yet. Pick the building again before saving.",
}

_PERSISTENCE_MESSAGES = {
    READ_ONLY: "The directory refused the change. Check that you are signed in as an administrator.",
    INVALID_PAYLOAD: "The record was not accepted. Check the year, floors and series fields.",
    UNKNOWN_RECORD: "This record no longer exists. Reload the directory and try again.",
    WRITE_FAILED: "The change could not be saved. Try again in a moment.",
}


def user_message(exc: Exception) -> str:
    """Actionable text for a failed submit."""
    if isinstance(exc, ResolutionFailed):
        return _RESOLUTION_MESSAGES.get(exc.reason, "Could not place the building on the map.")
    if isinstance(exc, GatewayCallFailed):
        return "The geocoding service did not answer. Try again, or pick the point on the map."
    if isinstance(exc, PersistenceRejected):
        return _PERSISTENCE_MESSAGES.get(exc.reason or "", "The directory refused the change.")
    return "Something went wrong while preparing the record."


def build_context(
    form: BuildingForm,
    *,
    mode: ResolutionMode,
    editing: Optional[BuildingRecord] = None,
    manual_point: Optional[GeoPoint] = None,
    fetched_candidate: Optional[ExternalCandidate] = None,
) -> ResolutionContext:
    return ResolutionContext(
        mode=mode,
        is_editing_existing=editing is not None,
        existing_footprint=editing.footprint if editing else None,
        existing_address=editing.address if editing else None,
        existing_source_id=editing.external_id if editing else None,
        typed_address=form.address,
        manual_point=manual_point,
        fetched_external_candidate=fetched_candidate,
        requested_external_id=form.external_id,
    )


class RecordEditor:
    """Resolve, assemble and hand records to the store without blocking on it."""

    def __init__(self, resolver: CoordinateResolver, writer: OptimisticWriter) -> None:
        self._resolver = resolver
        self._writer = writer

    async def submit(
        self,
        form: BuildingForm,
        *,
        mode: ResolutionMode = ResolutionMode.ADDRESS,
        editing: Optional[BuildingRecord] = None,
        manual_point: Optional[GeoPoint] = None,
        fetched_candidate: Optional[ExternalCandidate] = None,
    ) -> "asyncio.Task[object]":
        """Return the scheduled write; resolution errors propagate before any write."""
        set_context(submit_id=uuid.uuid4().hex, record_id=editing.id if editing else None)
        try:
            if mode is ResolutionMode.EXTERNAL_ID and fetched_candidate is not None and fetched_candidate.source_id:
                # the stored id follows the map object the footprint came from
                form = form.model_copy(update={"external_id": fetched_candidate.source_id})
            ctx = build_context(
                form,
                mode=mode,
                editing=editing,
                manual_point=manual_point,
                fetched_candidate=fetched_candidate,
            )
            footprint = await self._resolver.resolve(ctx)
            record = assemble(form, footprint, existing_id=editing.id if editing else None)
            if editing is not None:
                LOGGER.info("submit_update", record_id=editing.id)
                return self._writer.update(record)
            LOGGER.info("submit_create")
            return self._writer.create(record)
        finally:
            clear_context()

    def delete(self, record_id: str) -> "asyncio.Task[None]":
        LOGGER.info("submit_delete", record_id=record_id)
        return self._writer.delete(record_id)
