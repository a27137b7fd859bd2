"""Lightweight in-process metrics suitable for exporting later."""
from __future__ import annotations

import time
from collections import defaultdict
from pathlib import Path
from typing import Dict

import orjson
import structlog

LOGGER = structlog.get_logger(__name__)


class MetricsRegistry:
    """Holds mutable counters for the current process."""

    def __init__(self) -> None:
        self._counters: Dict[str, int] = defaultdict(int)
        self._register_defaults()

    def _register_defaults(self) -> None:
        defaults = [
            "lookups_forward_geocode",
            "lookups_reverse_geocode",
            "lookups_lookup_footprint_by_id",
            "lookup_failures",
            "resolutions_ok",
            "resolutions_reused",
            "resolutions_failed",
            "writes_ok",
            "writes_rejected",
        ]
        for key in defaults:
            self._counters[key] = 0

    def incr(self, name: str, value: int = 1) -> None:
        """Increment the named counter by the supplied value."""
        self._counters[name] += value

    def get(self, name: str) -> int:
        """Return the current value for the counter, defaulting to zero."""
        return self._counters.get(name, 0)

    def snapshot(self) -> Dict[str, int]:
        return dict(self._counters)

    def export(self, *, path: Path, run_id: str) -> Path:
        """Write counters to a JSON file, creating parent directories."""
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "run_id": run_id,
            "counters": self.snapshot(),
            "generated_at": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        }
        path.write_bytes(orjson.dumps(payload, option=orjson.OPT_INDENT_2))
        LOGGER.debug("metrics_exported", path=str(path))
        return path
