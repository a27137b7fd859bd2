"""Pydantic models for building records and the edit form."""
from __future__ import annotations

import re
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, InstanceOf, field_validator

from housemap.geo.models import (
    SOURCE_ID_RE,
    PointFootprint,
    PolygonFootprint,
    footprint_from_document,
    footprint_to_document,
)
from housemap.normalize.fields import split_series

_YEAR_RE = re.compile(r"^\d{4}(?:\s*-\s*\d{4})?$")


class BuildingForm(BaseModel):
    """Raw attribute values entered in the create/edit form."""

    address: str = Field(min_length=1)
    year: str
    building_series: str = ""
    floors: int = Field(gt=0)
    image_url: Optional[str] = None
    floor_plan_urls: List[str] = Field(default_factory=list)
    external_id: Optional[str] = None

    @field_validator("address", "year", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> str:
        return str(value).strip() if value is not None else ""

    @field_validator("year")
    @classmethod
    def _check_year(cls, value: str) -> str:
        if not _YEAR_RE.match(value):
            raise ValueError("year must be YYYY or YYYY-YYYY")
        return value

    @field_validator("image_url", "external_id", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    @field_validator("external_id")
    @classmethod
    def _check_external_id(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not SOURCE_ID_RE.match(value):
            raise ValueError("external id must look like N123, W123 or R123")
        return value


class BuildingRecord(BaseModel):
    """Canonical building entry as held by the document store."""

    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    address: str = Field(min_length=1)
    footprint: Union[InstanceOf[PointFootprint], InstanceOf[PolygonFootprint]]
    year: str
    building_series: List[str] = Field(default_factory=list)
    floors: int = Field(gt=0)
    image_url: Optional[str] = None
    floor_plan_urls: List[str] = Field(default_factory=list)
    external_id: Optional[str] = None

    @field_validator("footprint", mode="before")
    @classmethod
    def _coerce_footprint(cls, value: Any) -> Any:
        if isinstance(value, dict):
            footprint = footprint_from_document(value)
            if footprint is None:
                raise ValueError("footprint has no points")
            return footprint
        return value

    def to_document(self) -> Dict[str, object]:
        """Store payload; the id lives outside the document."""
        return {
            "address": self.address,
            "coordinates": footprint_to_document(self.footprint),
            "year": self.year,
            "buildingSeries": list(self.building_series),
            "floors": self.floors,
            "imageUrl": self.image_url,
            "floorPlans": [{"url": url} for url in self.floor_plan_urls],
            "externalId": self.external_id,
        }

    @classmethod
    def from_document(cls, record_id: str, payload: Dict[str, Any]) -> "BuildingRecord":
        series = payload.get("buildingSeries") or []
        if isinstance(series, str):
            # older documents stored the raw comma-separated text
            series = split_series(series)
        return cls(
            id=record_id,
            address=payload["address"],
            footprint=payload["coordinates"],
            year=str(payload["year"]),
            building_series=series,
            floors=payload["floors"],
            image_url=payload.get("imageUrl"),
            floor_plan_urls=[item["url"] for item in payload.get("floorPlans") or [] if item.get("url")],
            external_id=payload.get("externalId"),
        )
