"""Advisory concurrent-edit guard.

Tracks at most one editing session per record so that two actors do not
transition or edit the same record at once. Sessions are advisory: the
guard never blocks storage writes, it only answers "who is editing this
record" and lets callers fail fast with a conflict naming that actor.

Sessions expire. Each session carries ``last_activity_at`` and a session
idle for longer than the configured TTL is treated as gone, so a crashed
client cannot block a record indefinitely.

Example:
    >>> guard = EditGuard(session_ttl_seconds=1800)
    >>> guard.start_session("rec-1", identity)
    >>> guard.check_access("rec-1", other_identity).allowed
    False
    >>> guard.end_session("rec-1", identity.actor_id)
    True
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta

import structlog
from pydantic import BaseModel

from productflow.domain import Identity, utc_now

logger = structlog.get_logger(__name__)


class EditSession(BaseModel):
    """An active editing session.

    Attributes:
        record_id: Record being edited.
        actor_id: Actor holding the session.
        actor_name: Display name used in conflict messages.
        started_at: When the session started.
        last_activity_at: Last time the holder touched the session.
    """

    record_id: str
    actor_id: str
    actor_name: str | None = None
    started_at: datetime
    last_activity_at: datetime

    @property
    def holder_name(self) -> str:
        return self.actor_name or self.actor_id


class EditAccess(BaseModel):
    """Whether an actor may proceed on a record.

    Attributes:
        allowed: False when another actor holds a live session.
        holder: The blocking session, if any.
        message: Conflict message naming the holder.
    """

    allowed: bool
    holder: EditSession | None = None
    message: str | None = None


class EditGuard:
    """In-memory advisory lock table keyed by record id.

    Attributes:
        session_ttl_seconds: Idle time after which a session is stale.
    """

    def __init__(
        self,
        session_ttl_seconds: int = 1800,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.session_ttl_seconds = session_ttl_seconds
        self._clock = clock
        self._sessions: dict[str, EditSession] = {}
        self._logger = logger.bind(component="EditGuard")

    def _is_stale(self, session: EditSession, now: datetime) -> bool:
        return now - session.last_activity_at > timedelta(seconds=self.session_ttl_seconds)

    def _live_session(self, record_id: str) -> EditSession | None:
        session = self._sessions.get(record_id)
        if session is None:
            return None
        if self._is_stale(session, self._clock()):
            del self._sessions[record_id]
            self._logger.info(
                "edit_session_expired",
                record_id=record_id,
                actor_id=session.actor_id,
            )
            return None
        return session

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def start_session(self, record_id: str, identity: Identity) -> EditAccess:
        """Open (or refresh) the actor's session on a record.

        Returns:
            EditAccess with ``allowed=False`` and the holder when another
            actor already holds a live session.
        """
        now = self._clock()
        current = self._live_session(record_id)
        if current is not None and current.actor_id != identity.actor_id:
            return self._conflict(current, identity.actor_id)

        if current is not None:
            current.last_activity_at = now
            return EditAccess(allowed=True, holder=current)

        session = EditSession(
            record_id=record_id,
            actor_id=identity.actor_id,
            actor_name=identity.actor_name,
            started_at=now,
            last_activity_at=now,
        )
        self._sessions[record_id] = session
        self._logger.info(
            "edit_session_started",
            record_id=record_id,
            actor_id=identity.actor_id,
        )
        return EditAccess(allowed=True, holder=session)

    def end_session(self, record_id: str, actor_id: str) -> bool:
        """End a session. Only the holding actor may end it.

        Returns:
            True if a session held by ``actor_id`` was removed.
        """
        session = self._sessions.get(record_id)
        if session is None or session.actor_id != actor_id:
            return False
        del self._sessions[record_id]
        self._logger.info("edit_session_ended", record_id=record_id, actor_id=actor_id)
        return True

    def touch_session(self, record_id: str, actor_id: str) -> bool:
        """Extend the holder's session. Returns False if not held by the actor."""
        session = self._live_session(record_id)
        if session is None or session.actor_id != actor_id:
            return False
        session.last_activity_at = self._clock()
        return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_being_edited(self, record_id: str) -> EditSession | None:
        """Return the live session on a record, or None."""
        session = self._live_session(record_id)
        return session.model_copy() if session is not None else None

    def check_access(self, record_id: str, actor_id: str) -> EditAccess:
        """Fail fast when a different actor holds a live session."""
        session = self._live_session(record_id)
        if session is None or session.actor_id == actor_id:
            return EditAccess(allowed=True, holder=session)
        return self._conflict(session, actor_id)

    def active_sessions(self) -> list[EditSession]:
        now = self._clock()
        return [
            s.model_copy()
            for s in self._sessions.values()
            if not self._is_stale(s, now)
        ]

    def cleanup_stale_sessions(self) -> int:
        """Remove every stale session.

        Returns:
            Number of sessions removed.
        """
        now = self._clock()
        stale = [rid for rid, s in self._sessions.items() if self._is_stale(s, now)]
        for record_id in stale:
            del self._sessions[record_id]

        if stale:
            self._logger.warning(
                "stale_edit_sessions_cleaned",
                count=len(stale),
                record_ids=stale,
            )
        return len(stale)

    def _conflict(self, holder: EditSession, actor_id: str) -> EditAccess:
        self._logger.info(
            "edit_session_conflict",
            record_id=holder.record_id,
            holder_id=holder.actor_id,
            requested_by=actor_id,
        )
        return EditAccess(
            allowed=False,
            holder=holder.model_copy(),
            message=f"Record {holder.record_id} is being edited by {holder.holder_name}",
        )
