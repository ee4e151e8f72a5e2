"""Collector-side models for SiteBeacon."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

# Re-export wire schema types for convenience
from sitebeacon.tracker.schema import (
    VISIT,
    EventKind,
    ExportFormat,
    ExportType,
    SaveMessagesRequest,
    TrackRequest,
    TrackResult,
)

__all__ = [
    # Schema re-exports
    "VISIT",
    "EventKind",
    "ExportFormat",
    "ExportType",
    "SaveMessagesRequest",
    "TrackRequest",
    "TrackResult",
    # Collector models
    "IP_PREFIX_LENGTH",
    "redact_ip",
    "Beacon",
    "VisitRecord",
    "RecentVisit",
    "RecentEvent",
    "RecentConversation",
]

IP_PREFIX_LENGTH = 10


def redact_ip(ip: str | None) -> str:
    """Truncate an address for display; full addresses never leave the collector.

    Addresses that fit entirely in the prefix lose their last group instead.
    """
    value = ip or "unknown"
    prefix = value[:IP_PREFIX_LENGTH]
    if len(prefix) == len(value):
        cut = max(prefix.rfind("."), prefix.rfind(":"))
        prefix = prefix[: cut + 1] if cut > 0 else prefix[: len(prefix) // 2]
    return f"{prefix}..."


# =============================================================================
# Ingestion Models
# =============================================================================


class Beacon(BaseModel):
    """A normalised track call, ready to be stored."""

    ip: str
    site: str = "unknown"
    page: str = "/"
    referrer: str = "direct"
    user_agent: str | None = None
    event: str = VISIT
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_visit(self) -> bool:
        return self.event == VISIT


# =============================================================================
# Database Models
# =============================================================================


class VisitRecord(BaseModel):
    """Full visit or event record from database."""

    id: UUID
    ip: str
    timestamp: datetime
    date: str | None
    site: str
    page: str
    referrer: str
    user_agent: str | None
    event: str
    metadata: dict[str, Any]
    messages: list[dict[str, Any]] | None = None
    conversation_metadata: dict[str, Any] | None = None
    conversation_updated_at: datetime | None = None

    def redacted(self) -> "VisitRecord":
        """Copy of the record with the address truncated."""
        return self.model_copy(update={"ip": redact_ip(self.ip)})


# =============================================================================
# Summary Models
# =============================================================================


class RecentVisit(BaseModel):
    """Visit row in a summary's recent list."""

    time: datetime
    ip: str
    site: str
    page: str
    device: str
    referrer: str


class RecentEvent(BaseModel):
    """Event row in a summary's recent list."""

    time: datetime
    ip: str
    event: str
    site: str
    page: str
    metadata: dict[str, Any]


class RecentConversation(BaseModel):
    """Conversation row in the conversation summary."""

    session_id: UUID
    ip: str
    site: str
    updated_at: datetime
    message_count: int
    metadata: dict[str, Any]
