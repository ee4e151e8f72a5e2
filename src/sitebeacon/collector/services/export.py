"""Bulk export of stored records."""

import csv
import io
from datetime import UTC, datetime
from typing import Any

from psycopg import AsyncConnection

from sitebeacon.collector.models import ExportType, VisitRecord, redact_ip
from sitebeacon.collector.services.stats import EVENT_FILTER, VISIT_FILTER
from sitebeacon.collector.services.visits import RECORD_COLUMNS, row_to_record

CSV_HEADER = [
    "Date",
    "Time",
    "Site",
    "Page",
    "Event",
    "Device",
    "Language",
    "Timezone",
    "Referrer",
    "IP",
]

_FILTERS: dict[str, str] = {
    "all": "TRUE",
    "visits": VISIT_FILTER,
    "events": EVENT_FILTER,
}


async def list_records(
    conn: AsyncConnection,
    record_type: ExportType = "all",
) -> list[VisitRecord]:
    """All records of the given type, newest first."""
    row = await conn.execute(
        f"""
        SELECT {RECORD_COLUMNS} FROM visits
        WHERE {_FILTERS[record_type]}
        ORDER BY timestamp DESC
        """
    )
    results = await row.fetchall()
    return [row_to_record(r) for r in results]


def to_json(records: list[VisitRecord], exported_at: datetime | None = None) -> dict[str, Any]:
    """JSON export envelope, addresses redacted."""
    return {
        "exported_at": (exported_at or datetime.now(UTC)).isoformat(),
        "total_records": len(records),
        "records": [r.redacted().model_dump(mode="json") for r in records],
    }


def to_csv(records: list[VisitRecord]) -> str:
    """Flatten records into the fixed CSV column set, addresses redacted."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for record in records:
        date, _, time = record.timestamp.astimezone(UTC).isoformat().partition("T")
        meta = record.metadata
        writer.writerow(
            [
                date,
                time,
                record.site,
                record.page,
                record.event or "visit",
                meta.get("deviceType") or meta.get("device") or "",
                meta.get("language") or "",
                meta.get("timezone") or "",
                record.referrer,
                redact_ip(record.ip),
            ]
        )
    return buffer.getvalue()
