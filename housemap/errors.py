"""Error taxonomy shared by the gateway, resolver and persistence layers."""
from __future__ import annotations

from typing import Optional


class HousemapError(Exception):
    """Base class for all housemap failures."""


class GatewayCallFailed(HousemapError):
    """A single lookup request failed at the transport or HTTP level."""

    def __init__(self, operation: str, detail: str = "") -> None:
        self.operation = operation
        self.detail = detail
        message = f"{operation} failed"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class ResolutionFailed(HousemapError):
    """No footprint could be determined for a resolution context."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"resolution failed: {reason}")


READ_ONLY = "read_only"
INVALID_PAYLOAD = "invalid_payload"
UNKNOWN_RECORD = "unknown_record"
WRITE_FAILED = "write_failed"


class PersistenceRejected(HousemapError):
    """The document store refused a write, or could not complete it."""

    def __init__(self, operation: str, detail: str = "", *, reason: Optional[str] = None) -> None:
        self.operation = operation
        self.detail = detail
        self.reason = reason
        message = f"store rejected {operation}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
