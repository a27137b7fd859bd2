"""Nominatim-backed implementation of the lookup gateway.

Every public call issues at most one HTTP request per lookup operation and
never retries. Transport errors, non-2xx statuses and undecodable bodies
surface as `GatewayCallFailed` tagged with the operation name.
"""
from __future__ import annotations

import time
from typing import Dict, List, Mapping, Optional

import httpx
import orjson
import structlog

from housemap.errors import GatewayCallFailed
from housemap.fetch.session import GeoSession
from housemap.gateway.config import GatewaySettings
from housemap.geo.models import (
    ExternalCandidate,
    GeoPoint,
    PickResult,
    PointFootprint,
    PolygonFootprint,
    SOURCE_ID_RE,
    ReverseResult,
    footprint_from_geojson,
)
from housemap.normalize.address import compose_display_address, strip_street_types
from housemap.observability.metrics import MetricsRegistry
from housemap.observability.tracing import log_lookup_result, span

LOGGER = structlog.get_logger(__name__)

FORWARD = "forward_geocode"
REVERSE = "reverse_geocode"
LOOKUP = "lookup_footprint_by_id"

_LOCALITY_KEYS = ("city", "town", "village")


def source_id_for(item: Mapping[str, object]) -> Optional[str]:
    """Build an `osm_ids` reference (`W123`) unless the object is a bare node."""
    osm_type = str(item.get("osm_type") or "").lower()
    osm_id = item.get("osm_id")
    if osm_type not in {"way", "relation"} or osm_id in (None, ""):
        return None
    return f"{osm_type[0].upper()}{osm_id}"


def _candidate_from_search(item: Mapping[str, object]) -> Optional[ExternalCandidate]:
    footprint = footprint_from_geojson(item.get("geojson"))  # type: ignore[arg-type]
    if footprint is None:
        try:
            point = GeoPoint(lat=float(item["lat"]), lng=float(item["lon"]))  # type: ignore[arg-type]
        except (KeyError, TypeError, ValueError):
            return None
        footprint = PointFootprint(location=point)
    display = item.get("display_name")
    return ExternalCandidate(
        footprint=footprint,
        source_id=source_id_for(item),
        display_address=str(display) if display else None,
    )


def _display_address(payload: Mapping[str, object]) -> Optional[str]:
    address = payload.get("address")
    if isinstance(address, dict):
        road = strip_street_types(address.get("road"))
        house_number = str(address.get("house_number") or "").strip()
        if road and house_number:
            locality = next((address[key] for key in _LOCALITY_KEYS if address.get(key)), None)
            return compose_display_address([locality, road, house_number])
    display = payload.get("display_name")
    return str(display) if display else None


class NominatimGateway:
    """Forward, reverse and footprint-by-id lookups against Nominatim."""

    def __init__(
        self,
        session: GeoSession,
        settings: GatewaySettings,
        *,
        metrics: Optional[MetricsRegistry] = None,
    ) -> None:
        self._session = session
        self._settings = settings
        self._metrics = metrics or MetricsRegistry()

    async def _request(self, operation: str, path: str, params: Dict[str, object]) -> object:
        url = f"{self._settings.base_url}/{path}"
        self._metrics.incr(f"lookups_{operation}")
        start = time.perf_counter()
        try:
            with span(name=operation, url=url):
                response = await self._session.get(url, params=params)
                response.raise_for_status()
                payload = orjson.loads(response.content)
        except httpx.HTTPError as exc:
            self._metrics.incr("lookup_failures")
            LOGGER.warning("lookup_failed", operation=operation, url=url, reason=str(exc))
            raise GatewayCallFailed(operation, str(exc)) from exc
        except orjson.JSONDecodeError as exc:
            self._metrics.incr("lookup_failures")
            LOGGER.warning("lookup_undecodable", operation=operation, url=url, reason=str(exc))
            raise GatewayCallFailed(operation, "response is not valid JSON") from exc
        log_lookup_result(
            operation=operation,
            status=response.status_code,
            results=len(payload) if isinstance(payload, list) else 1,
            elapsed_ms=int((time.perf_counter() - start) * 1000),
        )
        return payload

    async def forward_geocode(self, address: str) -> List[ExternalCandidate]:
        """Return service-ranked candidates for an address; empty when nothing matched."""
        params: Dict[str, object] = {
            "q": address,
            "format": "jsonv2",
            "polygon_geojson": 1,
            "addressdetails": 1,
            "limit": self._settings.limit,
        }
        if self._settings.countrycodes:
            params["countrycodes"] = self._settings.countrycodes
        if self._settings.accept_language:
            params["accept-language"] = self._settings.accept_language
        payload = await self._request(FORWARD, "search", params)
        if not isinstance(payload, list):
            raise GatewayCallFailed(FORWARD, "unexpected response shape")
        candidates: List[ExternalCandidate] = []
        for item in payload:
            if not isinstance(item, dict):
                continue
            candidate = _candidate_from_search(item)
            if candidate is None:
                LOGGER.debug("forward_result_skipped", reason="no_geometry")
                continue
            candidates.append(candidate)
        return candidates

    async def reverse_geocode(self, point: GeoPoint) -> ReverseResult:
        params: Dict[str, object] = {
            "lat": point.lat,
            "lon": point.lng,
            "format": "jsonv2",
            "zoom": 18,
            "addressdetails": 1,
        }
        if self._settings.accept_language:
            params["accept-language"] = self._settings.accept_language
        payload = await self._request(REVERSE, "reverse", params)
        if not isinstance(payload, dict):
            raise GatewayCallFailed(REVERSE, "unexpected response shape")
        if "error" in payload:
            # Nominatim answers 200 + {"error": "Unable to geocode"} for empty areas.
            LOGGER.info("reverse_no_match", lat=point.lat, lng=point.lng, reason=payload.get("error"))
            return ReverseResult()
        return ReverseResult(display_address=_display_address(payload), source_id=source_id_for(payload))

    async def lookup_footprint_by_id(self, source_id: str) -> Optional[PolygonFootprint]:
        """Fetch the boundary of a mapped object; None when it has no polygon."""
        if not SOURCE_ID_RE.match(source_id):
            raise ValueError(f"Malformed source identifier: {source_id!r}")
        params: Dict[str, object] = {
            "osm_ids": source_id,
            "format": "jsonv2",
            "polygon_geojson": 1,
        }
        payload = await self._request(LOOKUP, "lookup", params)
        if not isinstance(payload, list):
            raise GatewayCallFailed(LOOKUP, "unexpected response shape")
        for item in payload:
            if isinstance(item, dict):
                footprint = footprint_from_geojson(item.get("geojson"))
                if footprint is not None:
                    return footprint
        return None

    async def pick_building(self, point: GeoPoint) -> PickResult:
        """Reverse geocode a clicked point, then fetch its footprint when it has one."""
        reverse = await self.reverse_geocode(point)
        candidate: Optional[ExternalCandidate] = None
        if reverse.source_id:
            footprint = await self.lookup_footprint_by_id(reverse.source_id)
            if footprint is not None:
                candidate = ExternalCandidate(
                    footprint=footprint,
                    source_id=reverse.source_id,
                    display_address=reverse.display_address,
                )
        return PickResult(
            point=point,
            display_address=reverse.display_address,
            source_id=reverse.source_id,
            candidate=candidate,
        )

    async def fetch_candidate_by_id(self, source_id: str) -> Optional[ExternalCandidate]:
        footprint = await self.lookup_footprint_by_id(source_id)
        if footprint is None:
            return None
        return ExternalCandidate(footprint=footprint, source_id=source_id)
