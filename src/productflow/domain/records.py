"""Product record and identity models.

The engine holds records only for the duration of one call; the storage
collaborator owns them. Records are treated as values: the transition
executor builds an updated copy rather than mutating the caller's object.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from productflow.domain.enums import INITIAL_STATE, LifecycleState, Role


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Treat a naive datetime as UTC; aware values pass through unchanged."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Identity(BaseModel):
    """Per-call identity context supplied by the host.

    Attributes:
        actor_id: Identifier of the acting user.
        actor_role: Role of the acting user.
        actor_name: Display name, used in conflict messages.
        actor_email: Contact address, copied into audit metadata.
    """

    model_config = {"frozen": True}

    actor_id: str = Field(..., min_length=1)
    actor_role: Role
    actor_name: str | None = None
    actor_email: str | None = None

    @property
    def display_name(self) -> str:
        return self.actor_name or self.actor_id


class StateHistoryEntry(BaseModel):
    """One entry of a record's append-only state history.

    Attributes:
        state: State the record entered.
        timestamp: When the state was entered.
        actor_id: Who caused the transition.
        reason: Optional reason supplied with the transition.
        comment: Optional free-form comment.
    """

    state: LifecycleState
    timestamp: datetime
    actor_id: str
    reason: str | None = None
    comment: str | None = None


class ProductRecord(BaseModel):
    """A catalog record under lifecycle governance.

    Attributes:
        id: Record identifier.
        name: Optional display name.
        lifecycle_state: Current state; equals the last history entry's state
            once at least one transition has happened.
        state_history: Ordered, append-only list of state entries.
        submitted_by: Actor who submitted the record for review.
        submitted_at: When the record was submitted.
        reviewed_by: Reviewer who approved or rejected it.
        reviewed_at: When it was approved or rejected.
        published_by: Actor who published it.
        published_at: When it was published.
        rejection_reason: Reason given on rejection; cleared on return to draft.
        assigned_reviewer_id: Reviewer currently assigned.
        attributes: Opaque product fields owned by the host.
        created_at: Creation timestamp.
        updated_at: Last modification timestamp.
    """

    id: str = Field(..., min_length=1)
    name: str | None = None
    lifecycle_state: LifecycleState = INITIAL_STATE
    state_history: list[StateHistoryEntry] = Field(default_factory=list)
    submitted_by: str | None = None
    submitted_at: datetime | None = None
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    published_by: str | None = None
    published_at: datetime | None = None
    rejection_reason: str | None = None
    assigned_reviewer_id: str | None = None
    attributes: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def current_state(self) -> LifecycleState:
        """State derived from history, falling back to the initial state."""
        if not self.state_history:
            return INITIAL_STATE
        return self.state_history[-1].state

    def is_consistent(self) -> bool:
        """Check that ``lifecycle_state`` agrees with the state history."""
        return self.lifecycle_state == self.current_state
