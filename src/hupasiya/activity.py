"""Activity and metrics recorder.

Every state transition the engines make is recorded here as one immutable
ActivityEvent. Each event kind may also bump one or more monotonic
counters; nothing ever decrements a counter.
"""

from __future__ import annotations

import logging

from hupasiya.models.activity import ActivityEvent, ActivityKind, GlobalStats
from hupasiya.models.session import SessionMetrics
from hupasiya.store import SessionStore, utcnow
from hupasiya.storage.schema import ActivityEventRow

logger = logging.getLogger(__name__)

_COUNTERS: dict[ActivityKind, tuple[str, ...]] = {
    ActivityKind.CASCADED: ("cascades",),
    ActivityKind.GATHERED: ("gathers",),
    ActivityKind.MERGE_CONFLICT: ("merge_conflicts",),
    ActivityKind.MERGE_FAILED: ("merge_failures",),
    ActivityKind.SHEPHERD_RUN: ("shepherd_runs",),
    ActivityKind.COMMENT_ANALYZED: ("comments_analyzed",),
    ActivityKind.COMMENT_APPLIED: ("comments_resolved",),
    ActivityKind.COMMENT_ACKNOWLEDGED: ("comments_resolved",),
    ActivityKind.RESPONSE_POSTED: ("responses_posted",),
}


def _to_event(row: ActivityEventRow) -> ActivityEvent:
    return ActivityEvent(
        session_id=row.session_id,
        seq=row.seq,
        kind=row.kind,
        detail=row.detail,
        created_at=row.created_at,
        duration_secs=row.duration_secs,
    )


class ActivityRecorder:
    """Appends activity events and maintains per-session counters.

    Writes are flushed into the store's current transaction; the calling
    engine decides when to commit.
    """

    def __init__(self, store: SessionStore) -> None:
        self._store = store

    def record(
        self,
        session_id: str,
        kind: ActivityKind,
        detail: str = "",
        *,
        duration_secs: float | None = None,
    ) -> ActivityEvent:
        """Append one event and bump the counters derived from its kind.

        Args:
            session_id: Session the event belongs to.
            kind: Activity kind.
            detail: One-line description.
            duration_secs: Optional elapsed time, added to ``total_time_secs``.

        Returns:
            The recorded event with its assigned sequence number.
        """
        now = utcnow()
        row = self._store.activity.append(
            session_id, kind, detail, now, duration_secs=duration_secs
        )
        for counter in _COUNTERS.get(kind, ()):
            self._store.metrics.increment(session_id, counter)
        if duration_secs is not None and duration_secs > 0:
            self._store.metrics.increment(
                session_id, "total_time_secs", int(round(duration_secs))
            )

        session = self._store.sessions.get(session_id)
        if session is not None:
            session.last_active = now
        logger.debug("activity %s #%d %s: %s", session_id[:8], row.seq, kind.value, detail)
        return _to_event(row)

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------

    def events(
        self,
        session_ref: str,
        limit: int | None = None,
        kind: ActivityKind | None = None,
    ) -> list[ActivityEvent]:
        """Events for a session in sequence order (most recent ``limit`` if set)."""
        row = self._store.get_row(session_ref)
        return [_to_event(r) for r in self._store.activity.list(row.id, limit, kind)]

    def metrics(self, session_ref: str) -> SessionMetrics:
        row = self._store.get_row(session_ref)
        return SessionMetrics.from_counters(self._store.metrics.get(row.id))

    def stats(self) -> GlobalStats:
        """Global totals: session count by status and summed counters."""
        by_status = self._store.sessions.count_by_status()
        return GlobalStats(
            total_sessions=sum(by_status.values()),
            by_status=by_status,
            counters=self._store.metrics.totals(),
        )
