"""Coordinate resolution: one footprint per create/edit submission.

Three inputs compete to place a building: a typed address, a point picked
on the map, and a footprint fetched through an external map object. The
`mode` of a `ResolutionContext` says which of them is authoritative; the
others are only consulted as documented fallbacks.

Precedence:

1. Editing with an unchanged address reuses the stored footprint, unless
   the active mode supplies a fresh pin (a manual point in
   `manual_point` mode, a fetched candidate in `external_id` mode).
2. `manual_point`: the picked point, else the stored footprint when
   editing, else failure.
3. `external_id`: the fetched candidate, else the stored footprint when
   editing the same external id, else failure.
4. `address`: first forward-geocoding candidate (polygon preferred by
   the gateway), else the picked point, else failure.

Every successful resolution updates the last-location memory.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional

import structlog

from housemap.errors import ResolutionFailed
from housemap.gateway.base import LookupGateway
from housemap.geo.models import ExternalCandidate, Footprint, GeoPoint, PointFootprint, first_point
from housemap.memory.last_location import DEFAULT_ZOOM, LastLocationMemory
from housemap.normalize.address import normalize_address
from housemap.observability.metrics import MetricsRegistry

LOGGER = structlog.get_logger(__name__)

NO_MANUAL_POINT = "no_manual_point"
EXTERNAL_NOT_FETCHED = "external_not_fetched"
ADDRESS_NOT_FOUND = "address_not_found"


class ResolutionMode(str, enum.Enum):
    ADDRESS = "address"
    MANUAL_POINT = "manual_point"
    EXTERNAL_ID = "external_id"


@dataclass(frozen=True)
class ResolutionContext:
    """Everything the resolver may consult for one submission."""

    mode: ResolutionMode = ResolutionMode.ADDRESS
    is_editing_existing: bool = False
    existing_footprint: Optional[Footprint] = None
    existing_address: Optional[str] = None
    existing_source_id: Optional[str] = None
    typed_address: Optional[str] = None
    manual_point: Optional[GeoPoint] = None
    fetched_external_candidate: Optional[ExternalCandidate] = None
    requested_external_id: Optional[str] = None

    def has_fresh_pin(self) -> bool:
        if self.mode is ResolutionMode.MANUAL_POINT:
            return self.manual_point is not None
        if self.mode is ResolutionMode.EXTERNAL_ID:
            return self.fetched_external_candidate is not None
        return False

    def address_unchanged(self) -> bool:
        return (
            self.is_editing_existing
            and self.existing_address is not None
            and self.typed_address is not None
            and self.typed_address == self.existing_address
        )


class CoordinateResolver:
    """Apply the precedence rules and record the outcome."""

    def __init__(
        self,
        gateway: LookupGateway,
        *,
        memory: Optional[LastLocationMemory] = None,
        metrics: Optional[MetricsRegistry] = None,
        default_zoom: int = DEFAULT_ZOOM,
    ) -> None:
        self._gateway = gateway
        self._memory = memory
        self._metrics = metrics or MetricsRegistry()
        self._default_zoom = default_zoom

    async def resolve(self, ctx: ResolutionContext) -> Footprint:
        try:
            footprint = await self._choose(ctx)
        except ResolutionFailed as exc:
            self._metrics.incr("resolutions_failed")
            LOGGER.warning("resolution_failed", mode=ctx.mode.value, reason=exc.reason)
            raise
        self._metrics.incr("resolutions_ok")
        if self._memory is not None:
            self._memory.remember(first_point(footprint), self._default_zoom)
        LOGGER.info("resolution_ok", mode=ctx.mode.value, kind=footprint.kind)
        return footprint

    async def _choose(self, ctx: ResolutionContext) -> Footprint:
        if ctx.existing_footprint is not None and ctx.address_unchanged() and not ctx.has_fresh_pin():
            return self._reuse(ctx.existing_footprint, ctx, "address_unchanged")
        if ctx.mode is ResolutionMode.MANUAL_POINT:
            return self._from_manual_point(ctx)
        if ctx.mode is ResolutionMode.EXTERNAL_ID:
            return self._from_external(ctx)
        return await self._from_address(ctx)

    def _reuse(self, footprint: Footprint, ctx: ResolutionContext, why: str) -> Footprint:
        self._metrics.incr("resolutions_reused")
        LOGGER.debug("resolution_reused", mode=ctx.mode.value, why=why)
        return footprint

    def _from_manual_point(self, ctx: ResolutionContext) -> Footprint:
        if ctx.manual_point is not None:
            return PointFootprint(location=ctx.manual_point)
        if ctx.is_editing_existing and ctx.existing_footprint is not None:
            return self._reuse(ctx.existing_footprint, ctx, "no_new_point")
        raise ResolutionFailed(NO_MANUAL_POINT)

    def _from_external(self, ctx: ResolutionContext) -> Footprint:
        if ctx.fetched_external_candidate is not None:
            return ctx.fetched_external_candidate.footprint
        if (
            ctx.is_editing_existing
            and ctx.existing_footprint is not None
            and ctx.requested_external_id is not None
            and ctx.requested_external_id == ctx.existing_source_id
        ):
            return self._reuse(ctx.existing_footprint, ctx, "same_external_id")
        raise ResolutionFailed(EXTERNAL_NOT_FETCHED)

    async def _from_address(self, ctx: ResolutionContext) -> Footprint:
        query = normalize_address(ctx.typed_address)
        if query:
            candidates = await self._gateway.forward_geocode(query)
            if candidates:
                return candidates[0].footprint
            LOGGER.info("address_not_geocoded", query=query)
        if ctx.manual_point is not None:
            return PointFootprint(location=ctx.manual_point)
        raise ResolutionFailed(ADDRESS_NOT_FOUND)
