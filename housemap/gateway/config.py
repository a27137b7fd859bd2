"""Validated settings for the lookup gateway."""
from __future__ import annotations

import os
from typing import Dict, Mapping

from pydantic import BaseModel, Field, field_validator

USER_AGENT_ENV = "HOUSEMAP_USER_AGENT"


class GatewaySettings(BaseModel):
    """Endpoint and request options for the Nominatim services."""

    base_url: str = "https://nominatim.openstreetmap.org"
    user_agent: str = Field(default="housemap/0.1 (set your email)", min_length=1)
    timeout_seconds: float = Field(default=15.0, gt=0)
    countrycodes: str = "ru"
    accept_language: str = "ru"
    limit: int = Field(default=5, gt=0)

    @field_validator("base_url", mode="before")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return str(value).rstrip("/")

    @classmethod
    def from_settings(cls, settings: Mapping[str, object]) -> "GatewaySettings":
        """Build from the `[lookup]` table, honouring the user-agent env override."""
        section: Dict[str, object] = dict(settings.get("lookup", {}) or {})
        if override := os.environ.get(USER_AGENT_ENV):
            section["user_agent"] = override
        return cls(**section)
