"""Lookup gateway interface consumed by the resolver and editor."""
from __future__ import annotations

from typing import List, Optional, Protocol

from housemap.geo.models import ExternalCandidate, GeoPoint, PickResult, PolygonFootprint, ReverseResult


class LookupGateway(Protocol):
    async def forward_geocode(self, address: str) -> List[ExternalCandidate]: ...

    async def reverse_geocode(self, point: GeoPoint) -> ReverseResult: ...

    async def lookup_footprint_by_id(self, source_id: str) -> Optional[PolygonFootprint]: ...

    async def pick_building(self, point: GeoPoint) -> PickResult: ...

    async def fetch_candidate_by_id(self, source_id: str) -> Optional[ExternalCandidate]: ...
