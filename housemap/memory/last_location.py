"""Remember where the map was last centred across sessions."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import orjson
import structlog

from housemap.geo.models import GeoPoint
from housemap.memory.kv import KeyValueStore

LOGGER = structlog.get_logger(__name__)

LAST_LOCATION_KEY = "lastHouseLocation"
DEFAULT_ZOOM = 13
DEFAULT_CENTER = GeoPoint(lat=57.626, lng=39.897)


@dataclass(frozen=True, slots=True)
class LastLocation:
    point: GeoPoint
    zoom: int


class LastLocationMemory:
    """Overwrite-on-write memory of the last resolved point and zoom."""

    def __init__(self, store: KeyValueStore, *, key: str = LAST_LOCATION_KEY) -> None:
        self._store = store
        self._key = key

    def remember(self, point: GeoPoint, zoom: int) -> None:
        payload = {"lat": point.lat, "lng": point.lng, "zoom": int(zoom)}
        self._store.set(self._key, orjson.dumps(payload).decode())

    def recall(self) -> Optional[LastLocation]:
        raw = self._store.get(self._key)
        if not raw:
            return None
        try:
            payload = orjson.loads(raw)
            return LastLocation(
                point=GeoPoint(lat=float(payload["lat"]), lng=float(payload["lng"])),
                zoom=int(payload.get("zoom", DEFAULT_ZOOM)),
            )
        except (orjson.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError) as exc:
            LOGGER.warning("last_location_unreadable", key=self._key, reason=str(exc))
            return None


def initial_view(
    memory: Optional[LastLocationMemory],
    *,
    default_center: GeoPoint = DEFAULT_CENTER,
    default_zoom: int = DEFAULT_ZOOM,
) -> LastLocation:
    """Where to open the map: the remembered location or the configured default."""
    if memory is not None:
        recalled = memory.recall()
        if recalled is not None:
            return recalled
    return LastLocation(point=default_center, zoom=default_zoom)
