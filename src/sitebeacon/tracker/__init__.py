"""
SiteBeacon Tracker - SDK for sending visit and event beacons.

Example:
    >>> from sitebeacon.tracker import Client
    >>> async with Client("https://beacon.example.com") as client:
    ...     result = await client.track(site="shop", page="/pricing")
    ...     await client.save_messages(
    ...         session_id=result.session_id,
    ...         messages=[{"role": "user", "content": "Hello"}],
    ...     )
"""

from sitebeacon.tracker.client import Client
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
    # Client
    "Client",
    # Type aliases
    "EventKind",
    "ExportFormat",
    "ExportType",
    "VISIT",
    # Models
    "TrackRequest",
    "TrackResult",
    "SaveMessagesRequest",
]

__version__ = "0.3.0"
