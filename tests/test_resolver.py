import asyncio

import pytest

from housemap.errors import GatewayCallFailed, ResolutionFailed
from housemap.geo.models import ExternalCandidate, GeoPoint, PickResult, PointFootprint, PolygonFootprint, ReverseResult
from housemap.memory.kv import InMemoryKeyValueStore
from housemap.memory.last_location import LastLocationMemory
from housemap.observability.metrics import MetricsRegistry
from housemap.resolve.resolver import (
    ADDRESS_NOT_FOUND,
    EXTERNAL_NOT_FETCHED,
    NO_MANUAL_POINT,
    CoordinateResolver,
    ResolutionContext,
    ResolutionMode,
)

POLYGON = PolygonFootprint(ring=(GeoPoint(lat=57.1, lng=39.1), GeoPoint(lat=57.2, lng=39.2), GeoPoint(lat=57.3, lng=39.1)))
STORED = PointFootprint(location=GeoPoint(lat=55.0, lng=37.0))
PIN = GeoPoint(lat=57.6, lng=39.8)


class FakeGateway:
    """Scripted forward-geocoding answers; counts every call."""

    def __init__(self, candidates=None, error=None):
        self._candidates = list(candidates or [])
        self._error = error
        self.queries = []

    async def forward_geocode(self, address):
        self.queries.append(address)
        if self._error is not None:
            raise self._error
        return list(self._candidates)

    async def reverse_geocode(self, point):
        self.queries.append(point)
        return ReverseResult()

    async def lookup_footprint_by_id(self, source_id):
        self.queries.append(source_id)
        return None

    async def pick_building(self, point):
        self.queries.append(point)
        return PickResult(point=point)

    async def fetch_candidate_by_id(self, source_id):
        self.queries.append(source_id)
        return None


def _resolve(gateway, ctx, memory=None, metrics=None):
    resolver = CoordinateResolver(gateway, memory=memory, metrics=metrics)
    return asyncio.run(resolver.resolve(ctx))


def test_unchanged_address_reuses_stored_footprint_without_network():
    gateway = FakeGateway([ExternalCandidate(footprint=POLYGON)])
    metrics = MetricsRegistry()
    ctx = ResolutionContext(
        mode=ResolutionMode.ADDRESS,
        is_editing_existing=True,
        existing_footprint=STORED,
        existing_address="Ярославль Свободы 5",
        typed_address="Ярославль Свободы 5",
    )
    assert _resolve(gateway, ctx, metrics=metrics) == STORED
    assert gateway.queries == []
    assert metrics.get("resolutions_reused") == 1


def test_unchanged_address_with_fresh_pin_uses_pin():
    gateway = FakeGateway()
    ctx = ResolutionContext(
        mode=ResolutionMode.MANUAL_POINT,
        is_editing_existing=True,
        existing_footprint=STORED,
        existing_address="Свободы 5",
        typed_address="Свободы 5",
        manual_point=PIN,
    )
    assert _resolve(gateway, ctx) == PointFootprint(location=PIN)


def test_manual_point_never_calls_the_network():
    gateway = FakeGateway([ExternalCandidate(footprint=POLYGON)])
    ctx = ResolutionContext(mode=ResolutionMode.MANUAL_POINT, typed_address="Свободы 5", manual_point=PIN)
    assert _resolve(gateway, ctx) == PointFootprint(location=PIN)
    assert gateway.queries == []


def test_manual_point_mode_without_point():
    ctx = ResolutionContext(mode=ResolutionMode.MANUAL_POINT, typed_address="Свободы 5")
    with pytest.raises(ResolutionFailed) as excinfo:
        _resolve(FakeGateway(), ctx)
    assert excinfo.value.reason == NO_MANUAL_POINT


def test_manual_point_mode_edit_without_new_point_keeps_stored():
    ctx = ResolutionContext(
        mode=ResolutionMode.MANUAL_POINT,
        is_editing_existing=True,
        existing_footprint=STORED,
        existing_address="old",
        typed_address="new",
    )
    assert _resolve(FakeGateway(), ctx) == STORED


def test_external_candidate_wins_over_changed_address():
    gateway = FakeGateway([ExternalCandidate(footprint=STORED)])
    ctx = ResolutionContext(
        mode=ResolutionMode.EXTERNAL_ID,
        is_editing_existing=True,
        existing_footprint=STORED,
        existing_address="old address",
        typed_address="new address",
        fetched_external_candidate=ExternalCandidate(footprint=POLYGON, source_id="W9"),
    )
    assert _resolve(gateway, ctx) == POLYGON
    assert gateway.queries == []


def test_external_mode_same_id_reuses_stored():
    ctx = ResolutionContext(
        mode=ResolutionMode.EXTERNAL_ID,
        is_editing_existing=True,
        existing_footprint=POLYGON,
        existing_address="old",
        existing_source_id="W9",
        typed_address="new",
        requested_external_id="W9",
    )
    assert _resolve(FakeGateway(), ctx) == POLYGON


def test_external_mode_without_candidate_fails():
    ctx = ResolutionContext(mode=ResolutionMode.EXTERNAL_ID, typed_address="x", requested_external_id="W9")
    with pytest.raises(ResolutionFailed) as excinfo:
        _resolve(FakeGateway(), ctx)
    assert excinfo.value.reason == EXTERNAL_NOT_FETCHED


def test_address_mode_uses_first_candidate():
    gateway = FakeGateway(
        [
            ExternalCandidate(footprint=POLYGON),
            ExternalCandidate(footprint=PointFootprint(location=GeoPoint(lat=1.0, lng=1.0))),
        ]
    )
    ctx = ResolutionContext(typed_address="г. Ярославль, ул. Свободы, д. 5", manual_point=PIN)
    assert _resolve(gateway, ctx) == POLYGON
    assert gateway.queries == ["Ярославль ул. Свободы 5"]


def test_address_mode_changed_address_geocodes_again():
    gateway = FakeGateway([ExternalCandidate(footprint=POLYGON)])
    ctx = ResolutionContext(
        is_editing_existing=True,
        existing_footprint=STORED,
        existing_address="Свободы 5",
        typed_address="Свободы 7",
    )
    assert _resolve(gateway, ctx) == POLYGON
    assert gateway.queries == ["Свободы 7"]


def test_address_not_found_falls_back_to_manual_point():
    ctx = ResolutionContext(typed_address="nowhere", manual_point=PIN)
    assert _resolve(FakeGateway([]), ctx) == PointFootprint(location=PIN)


def test_address_not_found_without_point_fails():
    metrics = MetricsRegistry()
    with pytest.raises(ResolutionFailed) as excinfo:
        _resolve(FakeGateway([]), ResolutionContext(typed_address="nowhere"), metrics=metrics)
    assert excinfo.value.reason == ADDRESS_NOT_FOUND
    assert metrics.get("resolutions_failed") == 1


def test_blank_address_skips_geocoding():
    gateway = FakeGateway([ExternalCandidate(footprint=POLYGON)])
    with pytest.raises(ResolutionFailed):
        _resolve(gateway, ResolutionContext(typed_address=" , "))
    assert gateway.queries == []


def test_gateway_failure_propagates():
    gateway = FakeGateway(error=GatewayCallFailed("forward_geocode", "timeout"))
    with pytest.raises(GatewayCallFailed):
        _resolve(gateway, ResolutionContext(typed_address="Свободы 5", manual_point=PIN))


def test_success_updates_last_location():
    store = InMemoryKeyValueStore()
    memory = LastLocationMemory(store)
    _resolve(FakeGateway([ExternalCandidate(footprint=POLYGON)]), ResolutionContext(typed_address="x"), memory=memory)
    recalled = memory.recall()
    assert recalled is not None
    assert recalled.point == GeoPoint(lat=57.1, lng=39.1)
    assert recalled.zoom == 13


def test_failure_leaves_last_location_untouched():
    memory = LastLocationMemory(InMemoryKeyValueStore())
    with pytest.raises(ResolutionFailed):
        _resolve(FakeGateway([]), ResolutionContext(typed_address="x"), memory=memory)
    assert memory.recall() is None


def test_manual_point_beats_candidate_and_address():
    gateway = FakeGateway([ExternalCandidate(footprint=POLYGON)])
    ctx = ResolutionContext(
        mode=ResolutionMode.MANUAL_POINT,
        typed_address="Ленина 10",
        manual_point=PIN,
        fetched_external_candidate=ExternalCandidate(footprint=POLYGON, source_id="W1"),
    )
    assert _resolve(gateway, ctx) == PointFootprint(location=PIN)
    assert gateway.queries == []


def test_address_scenario_updates_memory_to_first_vertex():
    ring = (
        GeoPoint(lat=57.60, lng=39.80),
        GeoPoint(lat=57.60, lng=39.81),
        GeoPoint(lat=57.61, lng=39.81),
        GeoPoint(lat=57.61, lng=39.80),
    )
    polygon = PolygonFootprint(ring=ring)
    memory = LastLocationMemory(InMemoryKeyValueStore())

    gateway = FakeGateway([ExternalCandidate(footprint=polygon)])
    footprint = _resolve(gateway, ResolutionContext(typed_address="Ленина 10"), memory=memory)
    assert footprint == polygon
    assert memory.recall().point == ring[0]
    assert memory.recall().zoom == 13


def test_manual_point_scenario_for_new_record():
    gateway = FakeGateway()
    point = GeoPoint(lat=57.62, lng=39.89)
    ctx = ResolutionContext(mode=ResolutionMode.MANUAL_POINT, manual_point=point)
    assert _resolve(gateway, ctx) == PointFootprint(location=point)
    assert gateway.queries == []
