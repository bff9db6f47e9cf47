"""Audit query pagination.

Four strategies page over the same ordered result set, ordered by
``(timestamp, id)`` descending unless the caller asks for ascending:

- OFFSET: ``page`` / ``page_size``.
- CURSOR: opaque token encoding the ``(timestamp, id)`` of the last entry.
- TIME: exclusive ``before`` (descending) or ``after`` (ascending) bound,
  with ``bound_id`` breaking ties between entries sharing that timestamp.
- ID: continue after the entry with ``after_id``.

Ordering is identical across strategies, so walking every page of any
strategy yields the same sequence.
"""

from __future__ import annotations

import base64
import binascii
import json
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator

from productflow.domain import AuditEntry, as_utc
from productflow.storage.base import AuditFilter


class PaginationStrategy(str, Enum):
    """Supported pagination strategies."""

    OFFSET = "offset"
    CURSOR = "cursor"
    TIME = "time"
    ID = "id"


class InvalidPageRequest(ValueError):
    """Raised when a cursor or id bound cannot be resolved."""


class AuditQuery(BaseModel):
    """A filtered, paginated audit query.

    Attributes:
        filter: Structured and free-text criteria.
        strategy: Pagination strategy.
        page: 1-based page number (OFFSET).
        page_size: Entries per page; defaults to the ledger's configuration.
        cursor: Token from a previous page (CURSOR).
        before: Exclusive upper timestamp bound (TIME, descending).
        after: Exclusive lower timestamp bound (TIME, ascending).
        bound_id: Id of the last entry at the TIME bound; entries at that
            timestamp past this id are still returned.
        after_id: Continue after this entry id (ID).
        descending: Newest first when True.
    """

    filter: AuditFilter = Field(default_factory=AuditFilter)
    strategy: PaginationStrategy = PaginationStrategy.OFFSET
    page: int = Field(default=1, ge=1)
    page_size: int | None = Field(default=None, ge=1)
    cursor: str | None = None
    before: datetime | None = None
    after: datetime | None = None
    bound_id: str | None = None
    after_id: str | None = None
    descending: bool = True

    @field_validator("before", "after")
    @classmethod
    def _bounds_in_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)


class PageInfo(BaseModel):
    """Pagination metadata returned with each page.

    Attributes:
        strategy: Strategy used.
        page_size: Entries per page.
        total: Entries matching the filter across all pages.
        has_more: Another page follows.
        page: Current page number (OFFSET).
        total_pages: Page count (OFFSET).
        next_cursor: Token for the next page (CURSOR).
        next_before: Bound for the next page (TIME, descending).
        next_after: Bound for the next page (TIME, ascending).
        next_bound_id: Tiebreak id for the next page (TIME).
        next_after_id: Id bound for the next page (ID).
    """

    strategy: PaginationStrategy
    page_size: int
    total: int
    has_more: bool
    page: int | None = None
    total_pages: int | None = None
    next_cursor: str | None = None
    next_before: datetime | None = None
    next_after: datetime | None = None
    next_bound_id: str | None = None
    next_after_id: str | None = None


class AuditPage(BaseModel):
    """One page of audit entries."""

    entries: list[AuditEntry]
    page_info: PageInfo


def encode_cursor(entry: AuditEntry) -> str:
    payload = json.dumps({"ts": entry.timestamp.isoformat(), "id": entry.id})
    return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii")


def decode_cursor(cursor: str) -> tuple[datetime, str]:
    """Decode a cursor token.

    Raises:
        InvalidPageRequest: If the token is malformed.
    """
    try:
        payload = json.loads(base64.urlsafe_b64decode(cursor.encode("ascii")))
        return as_utc(datetime.fromisoformat(payload["ts"])), str(payload["id"])
    except (binascii.Error, ValueError, KeyError, TypeError) as exc:
        raise InvalidPageRequest(f"Invalid cursor: {cursor}") from exc


def _before(entry: AuditEntry, bound: datetime, bound_id: str | None) -> bool:
    if bound_id is None:
        return entry.timestamp < bound
    return (entry.timestamp, entry.id) < (bound, bound_id)


def _after(entry: AuditEntry, bound: datetime, bound_id: str | None) -> bool:
    if bound_id is None:
        return entry.timestamp > bound
    return (entry.timestamp, entry.id) > (bound, bound_id)


def paginate(entries: list[AuditEntry], query: AuditQuery, page_size: int) -> AuditPage:
    """Slice an already-ordered entry list according to ``query``.

    Args:
        entries: Every matching entry, in the query's order.
        query: The query carrying strategy and bounds.
        page_size: Resolved page size.

    Raises:
        InvalidPageRequest: For an undecodable cursor or unknown ``after_id``.
    """
    total = len(entries)
    strategy = query.strategy

    if strategy == PaginationStrategy.OFFSET:
        start = (query.page - 1) * page_size
        window = entries[start:start + page_size]
        return AuditPage(
            entries=window,
            page_info=PageInfo(
                strategy=strategy,
                page_size=page_size,
                total=total,
                has_more=start + page_size < total,
                page=query.page,
                total_pages=(total + page_size - 1) // page_size,
            ),
        )

    if strategy == PaginationStrategy.CURSOR:
        remaining = entries
        if query.cursor:
            key = decode_cursor(query.cursor)
            if query.descending:
                remaining = [e for e in entries if (e.timestamp, e.id) < key]
            else:
                remaining = [e for e in entries if (e.timestamp, e.id) > key]
        window = remaining[:page_size]
        has_more = len(remaining) > page_size
        return AuditPage(
            entries=window,
            page_info=PageInfo(
                strategy=strategy,
                page_size=page_size,
                total=total,
                has_more=has_more,
                next_cursor=encode_cursor(window[-1]) if has_more and window else None,
            ),
        )

    if strategy == PaginationStrategy.TIME:
        # bound_id only applies to the bound the walk is moving along
        before_id = query.bound_id if query.descending else None
        after_id = query.bound_id if not query.descending else None
        remaining = entries
        if query.before is not None:
            remaining = [e for e in remaining if _before(e, query.before, before_id)]
        if query.after is not None:
            remaining = [e for e in remaining if _after(e, query.after, after_id)]
        window = remaining[:page_size]
        has_more = len(remaining) > page_size
        last = window[-1] if has_more and window else None
        return AuditPage(
            entries=window,
            page_info=PageInfo(
                strategy=strategy,
                page_size=page_size,
                total=total,
                has_more=has_more,
                next_before=last.timestamp if last and query.descending else None,
                next_after=last.timestamp if last and not query.descending else None,
                next_bound_id=last.id if last else None,
            ),
        )

    # ID strategy
    start = 0
    if query.after_id is not None:
        ids = [e.id for e in entries]
        if query.after_id not in ids:
            raise InvalidPageRequest(f"Unknown audit entry id: {query.after_id}")
        start = ids.index(query.after_id) + 1
    window = entries[start:start + page_size]
    has_more = start + page_size < total
    return AuditPage(
        entries=window,
        page_info=PageInfo(
            strategy=strategy,
            page_size=page_size,
            total=total,
            has_more=has_more,
            next_after_id=window[-1].id if has_more and window else None,
        ),
    )
