"""Shared fixtures for unit tests.

Provides identities for each role, an in-memory storage collaborator,
a controllable clock, and helpers for seeding records in a given state.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from productflow.domain import (
    Identity,
    LifecycleState,
    ProductRecord,
    Role,
    StateHistoryEntry,
)
from productflow.notifications import InMemoryNotifier
from productflow.storage import InMemoryStorage


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def seeded_record(
    record_id: str,
    state: LifecycleState = LifecycleState.DRAFT,
    assigned_reviewer_id: str | None = None,
    submitted_by: str | None = None,
    at: datetime | None = None,
) -> ProductRecord:
    """Build a record whose history agrees with ``state``."""
    at = at or datetime(2024, 2, 1, tzinfo=timezone.utc)
    history = []
    if state != LifecycleState.DRAFT:
        history.append(StateHistoryEntry(state=state, timestamp=at, actor_id="seed"))
    return ProductRecord(
        id=record_id,
        name=f"Product {record_id}",
        lifecycle_state=state,
        state_history=history,
        assigned_reviewer_id=assigned_reviewer_id,
        submitted_by=submitted_by,
        submitted_at=at if state == LifecycleState.REVIEW else None,
        created_at=at,
        updated_at=at,
    )


@pytest.fixture
def clock() -> FakeClock:
    """A clock fixed at 2024-03-01 09:00 UTC."""
    return FakeClock()


@pytest.fixture
def editor() -> Identity:
    return Identity(actor_id="ed-1", actor_role=Role.EDITOR, actor_name="Edith Editor")


@pytest.fixture
def other_editor() -> Identity:
    return Identity(actor_id="ed-2", actor_role=Role.EDITOR, actor_name="Eddie Other")


@pytest.fixture
def reviewer() -> Identity:
    return Identity(actor_id="rev-1", actor_role=Role.REVIEWER, actor_name="Rita Reviewer")


@pytest.fixture
def admin() -> Identity:
    return Identity(actor_id="adm-1", actor_role=Role.ADMIN, actor_name="Ada Admin")


@pytest.fixture
def viewer() -> Identity:
    return Identity(actor_id="view-1", actor_role=Role.VIEWER)


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def notifier() -> InMemoryNotifier:
    return InMemoryNotifier()


@pytest_asyncio.fixture
async def draft_record(storage: InMemoryStorage) -> ProductRecord:
    """A DRAFT record stored as ``prod-1``."""
    record = seeded_record("prod-1")
    await storage.save_record(record)
    return record


@pytest_asyncio.fixture
async def review_record(storage: InMemoryStorage) -> ProductRecord:
    """A REVIEW record assigned to ``rev-1`` and submitted by ``ed-1``."""
    record = seeded_record(
        "prod-2",
        LifecycleState.REVIEW,
        assigned_reviewer_id="rev-1",
        submitted_by="ed-1",
    )
    await storage.save_record(record)
    return record


@pytest.fixture
def make_record():
    """Factory building records whose history agrees with their state."""
    return seeded_record
