"""Merge a resolved footprint with form attributes into a record."""
from __future__ import annotations

from typing import Optional

from housemap.geo.models import Footprint
from housemap.normalize.fields import join_series, split_series
from housemap.records.models import BuildingForm, BuildingRecord

__all__ = ["assemble", "join_series", "split_series"]


def assemble(form: BuildingForm, footprint: Footprint, existing_id: Optional[str] = None) -> BuildingRecord:
    """Build the record to persist; `existing_id` is None when creating."""
    return BuildingRecord(
        id=existing_id,
        address=form.address,
        footprint=footprint,
        year=form.year,
        building_series=split_series(form.building_series),
        floors=form.floors,
        image_url=form.image_url,
        floor_plan_urls=[url for url in form.floor_plan_urls if url and url.strip()],
        external_id=form.external_id,
    )
