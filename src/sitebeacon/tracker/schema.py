"""
SiteBeacon wire schema.

This module defines the request and response bodies exchanged between
client sites and the collector. Sites send one beacon per pageview or
discrete event, and may later attach a conversation transcript to the
visit they received an identifier for.

The schema supports:
- Plain visits, deduplicated per address, site and UTC day
- Discrete events (conversion, click, scroll, error, page_exit, ...)
- Open-ended metadata maps supplied by the site
- Conversation transcripts attached to a stored visit
"""

from typing import Any, Literal
from uuid import UUID

from pydantic import AliasChoices, BaseModel, Field

# =============================================================================
# TYPE DEFINITIONS
# =============================================================================

VISIT = "visit"
"""Event kind of a plain pageview. Anything else is a discrete event."""

EventKind = Literal[
    "visit",       # Plain pageview (deduplicated)
    "conversion",  # Site-defined goal reached (metadata.type names it)
    "click",       # Element clicked
    "scroll",      # Scroll depth reached
    "error",       # Client-side error
    "page_exit",   # Page left
]
"""
Well-known event kinds.

The collector accepts any string as an event kind; these are the names the
bundled dashboards and conversion statistics understand.
"""

ExportFormat = Literal["json", "csv"]
ExportType = Literal["all", "visits", "events"]


# =============================================================================
# CORE MODELS
# =============================================================================

class TrackRequest(BaseModel):
    """
    A single beacon sent by a client site.

    Every field is optional; the collector fills in defaults. The event kind
    may be sent as ``event`` or ``eventKind``.

    Attributes:
        site: Identifier of the originating site.
        page: Path of the page the beacon was sent from.
        referrer: Referring URL, or nothing for direct traffic.
        event: Event kind; absent means a plain visit.
        metadata: Arbitrary key-value attributes (deviceType, language,
            timezone, country, or custom event fields).

    Example:
        >>> beacon = TrackRequest(
        ...     site="shop",
        ...     page="/pricing",
        ...     event="click",
        ...     metadata={"element": {"text": "Buy"}},
        ... )
    """

    site: str | None = None
    page: str | None = None
    referrer: str | None = None
    event: str | None = Field(
        default=None,
        validation_alias=AliasChoices("event", "eventKind"),
    )
    metadata: dict[str, Any] | None = None


class TrackResult(BaseModel):
    """
    Collector response to a beacon.

    Attributes:
        tracked: Always True when the beacon was stored or matched.
        unique: True when a new record was created by this call. A repeated
            same-day visit reports False.
        total: Number of records held by the collector.
        session_id: Identifier of the stored (or matched) record, usable with
            ``save_messages``. Sent on the wire as ``sessionIdentifier``;
            ``session_id`` is accepted when reading.
    """

    tracked: bool = True
    unique: bool
    total: int
    session_id: UUID | None = Field(
        default=None,
        validation_alias=AliasChoices("sessionIdentifier", "session_id"),
        serialization_alias="sessionIdentifier",
    )


class SaveMessagesRequest(BaseModel):
    """
    A conversation transcript to attach to a stored visit.

    The identifier may be sent as ``session_id``, ``sessionId`` or
    ``sessionIdentifier``. Both ``session_id`` and ``messages`` are required;
    they are declared optional here so the collector can answer with a plain
    400 instead of a validation error.

    Attributes:
        session_id: Identifier returned by a previous track call.
        messages: Ordered conversation turns, each an open map
            (for example ``{"role": "user", "content": "..."}``).
        metadata: Conversation attributes (scenario, voice, duration);
            optional, null is stored as an empty map.
    """

    session_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("session_id", "sessionId", "sessionIdentifier"),
    )
    messages: list[dict[str, Any]] | None = None
    metadata: dict[str, Any] | None = None
