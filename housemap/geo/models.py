"""Geographic value types and their GeoJSON/document conversions."""
from __future__ import annotations

from dataclasses import dataclass, field
import re
from typing import Dict, List, Optional, Sequence, Tuple, Union


@dataclass(frozen=True, slots=True)
class GeoPoint:
    """A single WGS84 coordinate."""

    lat: float
    lng: float

    def to_dict(self) -> Dict[str, float]:
        return {"lat": self.lat, "lng": self.lng}


@dataclass(frozen=True, slots=True)
class PointFootprint:
    """Footprint anchored on a single coordinate."""

    location: GeoPoint

    @property
    def kind(self) -> str:
        return "Point"


@dataclass(frozen=True, slots=True)
class PolygonFootprint:
    """Footprint described by an ordered boundary ring."""

    ring: Tuple[GeoPoint, ...]

    def __post_init__(self) -> None:
        if not self.ring:
            raise ValueError("polygon footprint needs at least one point")

    @property
    def kind(self) -> str:
        return "Polygon"


Footprint = Union[PointFootprint, PolygonFootprint]

# OpenStreetMap object reference as accepted by Nominatim `lookup`: node, way or relation + id.
SOURCE_ID_RE = re.compile(r"^[NWR]\d+$")


@dataclass(frozen=True, slots=True)
class ExternalCandidate:
    """A footprint proposed by one of the lookup services."""

    footprint: Footprint
    source_id: Optional[str] = None
    display_address: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ReverseResult:
    """Address text and source reference found for a coordinate."""

    display_address: Optional[str] = None
    source_id: Optional[str] = None


@dataclass(frozen=True, slots=True)
class PickResult:
    """Outcome of picking a building on the map."""

    point: GeoPoint
    display_address: Optional[str] = None
    source_id: Optional[str] = None
    candidate: Optional[ExternalCandidate] = field(default=None)


def first_point(footprint: Footprint) -> GeoPoint:
    """Return the point used to centre the map on a footprint."""
    if isinstance(footprint, PointFootprint):
        return footprint.location
    return footprint.ring[0]


def polygon_from_ring(ring: Sequence[GeoPoint]) -> Optional[PolygonFootprint]:
    if not ring:
        return None
    return PolygonFootprint(ring=tuple(ring))


def _ring_from_positions(positions: object) -> List[GeoPoint]:
    ring: List[GeoPoint] = []
    if not isinstance(positions, list):
        return ring
    for position in positions:
        if not isinstance(position, (list, tuple)) or len(position) < 2:
            continue
        lng, lat = position[0], position[1]
        ring.append(GeoPoint(lat=float(lat), lng=float(lng)))
    return ring


def footprint_from_geojson(geometry: Optional[Dict[str, object]]) -> Optional[PolygonFootprint]:
    """Map a GeoJSON Polygon/MultiPolygon to its first outer ring.

    Later rings and later polygons of a MultiPolygon are discarded.
    Returns None for other geometry types and for empty rings.
    """
    if not isinstance(geometry, dict):
        return None
    kind = geometry.get("type")
    coordinates = geometry.get("coordinates")
    if not isinstance(coordinates, list) or not coordinates:
        return None
    if kind == "Polygon":
        positions = coordinates[0]
    elif kind == "MultiPolygon":
        polygon = coordinates[0]
        if not isinstance(polygon, list) or not polygon:
            return None
        positions = polygon[0]
    else:
        return None
    return polygon_from_ring(_ring_from_positions(positions))


def footprint_to_document(footprint: Footprint) -> Dict[str, object]:
    """Serialise a footprint into the persisted `{type, points}` shape."""
    if isinstance(footprint, PointFootprint):
        points = [footprint.location.to_dict()]
    else:
        points = [point.to_dict() for point in footprint.ring]
    return {"type": footprint.kind, "points": points}


def footprint_from_document(payload: Dict[str, object]) -> Optional[Footprint]:
    """Inverse of `footprint_to_document`; an empty point list yields None."""
    raw_points = payload.get("points") or []
    if not isinstance(raw_points, list):
        raise ValueError("footprint points must be a list")
    points = [GeoPoint(lat=float(item["lat"]), lng=float(item["lng"])) for item in raw_points]
    if not points:
        return None
    kind = payload.get("type")
    if kind == "Point":
        return PointFootprint(location=points[0])
    if kind == "Polygon":
        return PolygonFootprint(ring=tuple(points))
    raise ValueError(f"unknown footprint type: {kind!r}")
