"""Audit ledger: queries, pagination, aggregation, export and integrity."""

from productflow.audit.export import (
    AuditExport,
    ExportFormat,
    IntegrityReport,
    render_export,
    verify_entries,
    verify_entry,
)
from productflow.audit.ledger import AuditLedger, AuditStats
from productflow.audit.pagination import (
    AuditPage,
    AuditQuery,
    InvalidPageRequest,
    PageInfo,
    PaginationStrategy,
    decode_cursor,
    encode_cursor,
    paginate,
)

__all__ = [
    "AuditExport",
    "AuditLedger",
    "AuditPage",
    "AuditQuery",
    "AuditStats",
    "ExportFormat",
    "IntegrityReport",
    "InvalidPageRequest",
    "PageInfo",
    "PaginationStrategy",
    "decode_cursor",
    "encode_cursor",
    "paginate",
    "render_export",
    "verify_entries",
    "verify_entry",
]
