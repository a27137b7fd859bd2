"""Read-only cached view of the directory fed by store snapshots."""
from __future__ import annotations

from typing import List, Optional

import structlog

from housemap.records.models import BuildingRecord
from housemap.search.filters import search_records

LOGGER = structlog.get_logger(__name__)


class DirectoryView:
    """Tracks the latest snapshot, the open detail record and the active search."""

    def __init__(self) -> None:
        self.records: List[BuildingRecord] = []
        self.selected: Optional[BuildingRecord] = None
        self.highlighted: Optional[List[BuildingRecord]] = None
        self._search: Optional[dict] = None

    def on_snapshot(self, records: List[BuildingRecord]) -> None:
        """Store pushes are authoritative; reconcile the open record by id."""
        self.records = list(records)
        if self.selected is not None:
            current = next((record for record in self.records if record.id == self.selected.id), None)
            if current is None:
                LOGGER.info("selection_dropped", record_id=self.selected.id)
            self.selected = current
        if self._search is not None:
            self.highlighted = search_records(self.records, **self._search)

    def select(self, record_id: str) -> Optional[BuildingRecord]:
        self.selected = next((record for record in self.records if record.id == record_id), None)
        return self.selected

    def close_details(self) -> None:
        self.selected = None

    def search(
        self,
        term: Optional[str],
        *,
        by: str = "address",
        city: Optional[str] = None,
        search_all_map: bool = False,
    ) -> Optional[List[BuildingRecord]]:
        self.selected = None
        self._search = {"term": term, "by": by, "city": city, "search_all_map": search_all_map}
        self.highlighted = search_records(self.records, **self._search)
        if self.highlighted is None:
            self._search = None
        return self.highlighted
