import asyncio

import httpx
import orjson
import pytest

from housemap.errors import GatewayCallFailed
from housemap.fetch.session import GeoSession
from housemap.gateway.config import GatewaySettings
from housemap.gateway.nominatim import NominatimGateway, source_id_for
from housemap.geo.models import GeoPoint, PointFootprint, PolygonFootprint
from housemap.observability.metrics import MetricsRegistry
from housemap.resolve.resolver import CoordinateResolver, ResolutionContext

SQUARE = {"type": "Polygon", "coordinates": [[[39.1, 57.1], [39.2, 57.1], [39.2, 57.2], [39.1, 57.1]]]}


class RoutedSession(GeoSession):
    """Answers by endpoint name and records every request."""

    def __init__(self, routes):
        super().__init__(client=None)
        self._routes = {path: list(answers) for path, answers in routes.items()}
        self.calls = []

    async def get(self, url, *, params=None, headers=None):  # type: ignore[override]
        endpoint = url.rsplit("/", 1)[-1]
        self.calls.append((endpoint, dict(params or {})))
        status, body = self._routes[endpoint].pop(0)
        content = body if isinstance(body, bytes) else orjson.dumps(body)
        return httpx.Response(status, content=content, request=httpx.Request("GET", url))


class BrokenSession(GeoSession):
    def __init__(self):
        super().__init__(client=None)

    async def get(self, url, *, params=None, headers=None):  # type: ignore[override]
        raise httpx.ConnectTimeout("timed out", request=httpx.Request("GET", url))


def _gateway(session, metrics=None):
    settings = GatewaySettings(base_url="https://geo.test/", user_agent="test-agent")
    return NominatimGateway(session, settings, metrics=metrics)


def test_forward_geocode_prefers_polygon_and_falls_back_to_point():
    session = RoutedSession(
        {
            "search": [
                (
                    200,
                    [
                        {"osm_type": "way", "osm_id": 11, "geojson": SQUARE, "lat": "57.15", "lon": "39.15",
                         "display_name": "Свободы 5, Ярославль"},
                        {"osm_type": "node", "osm_id": 12, "geojson": {"type": "Point", "coordinates": [39.5, 57.5]},
                         "lat": "57.5", "lon": "39.5"},
                        {"osm_type": "node", "osm_id": 13},
                    ],
                )
            ]
        }
    )
    metrics = MetricsRegistry()

    async def _run():
        return await _gateway(session, metrics).forward_geocode("Ярославль Свободы 5")

    candidates = asyncio.run(_run())
    assert len(candidates) == 2
    assert isinstance(candidates[0].footprint, PolygonFootprint)
    assert candidates[0].footprint.ring[0] == GeoPoint(lat=57.1, lng=39.1)
    assert candidates[0].source_id == "W11"
    assert candidates[0].display_address == "Свободы 5, Ярославль"
    assert candidates[1].footprint == PointFootprint(location=GeoPoint(lat=57.5, lng=39.5))
    assert candidates[1].source_id is None

    endpoint, params = session.calls[0]
    assert endpoint == "search"
    assert params["q"] == "Ярославль Свободы 5"
    assert params["polygon_geojson"] == 1
    assert params["countrycodes"] == "ru"
    assert metrics.get("lookups_forward_geocode") == 1


def test_forward_geocode_multipolygon():
    multi = {"type": "MultiPolygon", "coordinates": [[[[40.0, 58.0], [40.1, 58.1]]], [[[1.0, 1.0]]]]}
    session = RoutedSession({"search": [(200, [{"osm_type": "relation", "osm_id": 7, "geojson": multi}])]})

    candidates = asyncio.run(_gateway(session).forward_geocode("x"))
    assert candidates[0].footprint.ring[0] == GeoPoint(lat=58.0, lng=40.0)
    assert candidates[0].source_id == "R7"


def test_forward_geocode_no_match_is_empty_list():
    session = RoutedSession({"search": [(200, [])]})
    assert asyncio.run(_gateway(session).forward_geocode("nowhere")) == []


def test_forward_geocode_http_error_raises():
    session = RoutedSession({"search": [(503, {"error": "busy"})]})
    metrics = MetricsRegistry()
    with pytest.raises(GatewayCallFailed) as excinfo:
        asyncio.run(_gateway(session, metrics).forward_geocode("x"))
    assert excinfo.value.operation == "forward_geocode"
    assert metrics.get("lookup_failures") == 1


def test_invalid_json_raises():
    session = RoutedSession({"search": [(200, b"<html>oops</html>")]})
    with pytest.raises(GatewayCallFailed):
        asyncio.run(_gateway(session).forward_geocode("x"))


def test_transport_error_raises():
    with pytest.raises(GatewayCallFailed) as excinfo:
        asyncio.run(_gateway(BrokenSession()).reverse_geocode(GeoPoint(lat=1.0, lng=2.0)))
    assert excinfo.value.operation == "reverse_geocode"


def test_reverse_geocode_composes_address():
    payload = {
        "osm_type": "way",
        "osm_id": 555,
        "display_name": "5, улица Свободы, Ярославль, Россия",
        "address": {"city": "Ярославль", "road": "улица Свободы", "house_number": "5"},
    }
    session = RoutedSession({"reverse": [(200, payload)]})

    result = asyncio.run(_gateway(session).reverse_geocode(GeoPoint(lat=57.62, lng=39.88)))
    assert result.display_address == "Ярославль Свободы 5"
    assert result.source_id == "W555"
    _, params = session.calls[0]
    assert params["lat"] == 57.62
    assert params["lon"] == 39.88
    assert params["zoom"] == 18


def test_reverse_geocode_falls_back_to_display_name_for_nodes():
    payload = {"osm_type": "node", "osm_id": 1, "display_name": "Остановка", "address": {"road": "улица Свободы"}}
    session = RoutedSession({"reverse": [(200, payload)]})

    result = asyncio.run(_gateway(session).reverse_geocode(GeoPoint(lat=1.0, lng=2.0)))
    assert result.display_address == "Остановка"
    assert result.source_id is None


def test_reverse_geocode_unable_to_geocode():
    session = RoutedSession({"reverse": [(200, {"error": "Unable to geocode"})]})
    result = asyncio.run(_gateway(session).reverse_geocode(GeoPoint(lat=0.0, lng=0.0)))
    assert result.display_address is None
    assert result.source_id is None


def test_lookup_footprint_by_id():
    session = RoutedSession(
        {
            "lookup": [
                (200, [{"osm_type": "way", "osm_id": 9, "geojson": SQUARE}]),
                (200, [{"osm_type": "way", "osm_id": 10, "geojson": {"type": "Point", "coordinates": [1, 2]}}]),
            ]
        }
    )
    gateway = _gateway(session)

    async def _run():
        return await gateway.lookup_footprint_by_id("W9"), await gateway.lookup_footprint_by_id("W10")

    found, missing = asyncio.run(_run())
    assert isinstance(found, PolygonFootprint)
    assert len(found.ring) == 4
    assert missing is None
    assert session.calls[0][1]["osm_ids"] == "W9"


def test_lookup_rejects_malformed_id():
    session = RoutedSession({})
    with pytest.raises(ValueError):
        asyncio.run(_gateway(session).lookup_footprint_by_id("way 9"))
    assert session.calls == []


def test_pick_building_reverse_then_lookup():
    session = RoutedSession(
        {
            "reverse": [(200, {"osm_type": "way", "osm_id": 9, "display_name": "Дом"})],
            "lookup": [(200, [{"osm_type": "way", "osm_id": 9, "geojson": SQUARE}])],
        }
    )
    point = GeoPoint(lat=57.15, lng=39.15)

    result = asyncio.run(_gateway(session).pick_building(point))
    assert result.point == point
    assert result.source_id == "W9"
    assert result.candidate is not None
    assert result.candidate.source_id == "W9"
    assert result.candidate.display_address == "Дом"
    assert [endpoint for endpoint, _ in session.calls] == ["reverse", "lookup"]


def test_pick_building_without_source_skips_lookup():
    session = RoutedSession({"reverse": [(200, {"osm_type": "node", "osm_id": 3, "display_name": "Точка"})]})

    result = asyncio.run(_gateway(session).pick_building(GeoPoint(lat=1.0, lng=2.0)))
    assert result.candidate is None
    assert result.display_address == "Точка"
    assert [endpoint for endpoint, _ in session.calls] == ["reverse"]


def test_source_id_for():
    assert source_id_for({"osm_type": "way", "osm_id": 1}) == "W1"
    assert source_id_for({"osm_type": "R", "osm_id": 2}) is None
    assert source_id_for({"osm_type": "relation", "osm_id": 2}) == "R2"
    assert source_id_for({"osm_type": "node", "osm_id": 3}) is None


def test_settings_env_override(monkeypatch):
    monkeypatch.setenv("HOUSEMAP_USER_AGENT", "from-env")
    settings = GatewaySettings.from_settings({"lookup": {"user_agent": "from-file", "base_url": "https://x.test/"}})
    assert settings.user_agent == "from-env"
    assert settings.base_url == "https://x.test"


def test_empty_polygon_falls_back_to_point():
    empty = {"type": "Polygon", "coordinates": [[]]}
    session = RoutedSession(
        {"search": [(200, [{"osm_type": "way", "osm_id": 4, "geojson": empty, "lat": "57.3", "lon": "39.3"}])]}
    )
    candidates = asyncio.run(_gateway(session).forward_geocode("x"))
    assert candidates[0].footprint == PointFootprint(location=GeoPoint(lat=57.3, lng=39.3))


def test_empty_polygon_without_point_is_skipped():
    empty = {"type": "Polygon", "coordinates": [[]]}
    session = RoutedSession({"search": [(200, [{"osm_type": "way", "osm_id": 4, "geojson": empty}])]})
    assert asyncio.run(_gateway(session).forward_geocode("x")) == []


def test_resolver_reduces_multipolygon_to_first_ring():
    ring_a = [[39.1, 57.1], [39.2, 57.2], [39.3, 57.1]]
    ring_b = [[10.0, 10.0], [11.0, 11.0], [12.0, 10.0]]
    multi = {"type": "MultiPolygon", "coordinates": [[ring_a], [ring_b]]}
    session = RoutedSession({"search": [(200, [{"osm_type": "relation", "osm_id": 5, "geojson": multi}])]})
    resolver = CoordinateResolver(_gateway(session))

    footprint = asyncio.run(resolver.resolve(ResolutionContext(typed_address="Ленина 10")))
    assert footprint == PolygonFootprint(
        ring=(GeoPoint(lat=57.1, lng=39.1), GeoPoint(lat=57.2, lng=39.2), GeoPoint(lat=57.1, lng=39.3))
    )
