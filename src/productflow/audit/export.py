"""Audit export formats and integrity verification."""

from __future__ import annotations

import csv
import io
import json
from collections.abc import Iterable
from enum import Enum

from pydantic import BaseModel, Field

from productflow.domain import AuditEntry


class ExportFormat(str, Enum):
    """Supported export formats."""

    JSON = "json"
    NDJSON = "ndjson"
    CSV = "csv"


CONTENT_TYPES: dict[ExportFormat, str] = {
    ExportFormat.JSON: "application/json",
    ExportFormat.NDJSON: "application/x-ndjson",
    ExportFormat.CSV: "text/csv",
}

CSV_COLUMNS = [
    "id",
    "timestamp",
    "record_id",
    "actor_id",
    "actor_role",
    "action",
    "resulting_state",
    "priority",
    "reason",
    "comment",
    "field_changes",
    "metadata",
    "integrity_hash",
]


class AuditExport(BaseModel):
    """Rendered export.

    Attributes:
        format: Format used.
        content_type: MIME type of ``content``.
        count: Number of entries exported.
        content: Rendered document.
    """

    format: ExportFormat
    content_type: str
    count: int
    content: str


class IntegrityReport(BaseModel):
    """Result of verifying entry hashes."""

    checked: int
    valid: int
    invalid_ids: list[str] = Field(default_factory=list)

    @property
    def all_valid(self) -> bool:
        return not self.invalid_ids


def _csv_row(entry: AuditEntry) -> dict[str, str]:
    data = entry.model_dump(mode="json")
    row: dict[str, str] = {}
    for column in CSV_COLUMNS:
        value = data.get(column)
        if column in ("field_changes", "metadata"):
            row[column] = json.dumps(value, sort_keys=True)
        else:
            row[column] = "" if value is None else str(value)
    return row


def render_export(entries: Iterable[AuditEntry], fmt: ExportFormat) -> AuditExport:
    """Render entries in the requested format."""
    items = list(entries)
    if fmt == ExportFormat.JSON:
        content = json.dumps([e.model_dump(mode="json") for e in items], indent=2)
    elif fmt == ExportFormat.NDJSON:
        content = "".join(e.model_dump_json() + "\n" for e in items)
    else:
        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=CSV_COLUMNS)
        writer.writeheader()
        for entry in items:
            writer.writerow(_csv_row(entry))
        content = buffer.getvalue()
    return AuditExport(
        format=fmt,
        content_type=CONTENT_TYPES[fmt],
        count=len(items),
        content=content,
    )


def verify_entry(entry: AuditEntry) -> bool:
    """True when the entry's stored hash matches its content."""
    return entry.verify_integrity()


def verify_entries(entries: Iterable[AuditEntry]) -> IntegrityReport:
    checked = 0
    invalid: list[str] = []
    for entry in entries:
        checked += 1
        if not verify_entry(entry):
            invalid.append(entry.id)
    return IntegrityReport(checked=checked, valid=checked - len(invalid), invalid_ids=invalid)
