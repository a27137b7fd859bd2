"""Factories for httpx-backed lookup sessions."""
from __future__ import annotations

import contextlib
from typing import AsyncIterator, Dict, Mapping, Optional

import httpx


class GeoSession:
    """Thin wrapper over an `httpx.AsyncClient` shared by all lookups."""

    def __init__(self, client: Optional[httpx.AsyncClient]) -> None:
        self._client = client

    async def get(
        self,
        url: str,
        *,
        params: Optional[Mapping[str, object]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        """Issue a single GET request; no retries."""
        if self._client is None:
            raise RuntimeError("No lookup session available")
        return await self._client.get(url, params=params, headers=headers)


@contextlib.asynccontextmanager
async def create_geo_session(
    *,
    user_agent: str,
    timeout: float,
    accept_language: str = "ru",
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> AsyncIterator[GeoSession]:
    """Yield a configured `GeoSession` for the duration of the context."""
    headers = {"User-Agent": user_agent, "Accept-Language": accept_language}
    async with httpx.AsyncClient(headers=headers, timeout=timeout, transport=transport) as client:
        yield GeoSession(client)
