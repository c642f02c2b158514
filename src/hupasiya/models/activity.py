"""Activity event model.

ActivityKind enumerates every state transition the engines record.
ActivityEvent is the immutable record of one transition.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime


class ActivityKind(str, enum.Enum):
    """Kinds of activity events."""

    SESSION_CREATED = "session_created"
    STATUS_CHANGED = "status_changed"
    PARENT_LINKED = "parent_linked"
    PARENT_UNLINKED = "parent_unlinked"
    CHILD_ADDED = "child_added"
    CASCADED = "cascaded"
    GATHERED = "gathered"
    MERGE_CONFLICT = "merge_conflict"
    MERGE_FAILED = "merge_failed"
    CONFLICT_SUSPENDED = "conflict_suspended"
    CONFLICT_RESUMED = "conflict_resumed"
    CLOSURE_FLAGGED = "closure_flagged"
    LOCKED = "locked"
    UNLOCKED = "unlocked"
    CHANGE_REQUEST_SYNCED = "change_request_synced"
    COMMENT_ANALYZED = "comment_analyzed"
    COMMENT_QUEUED = "comment_queued"
    COMMENT_APPLIED = "comment_applied"
    COMMENT_ACKNOWLEDGED = "comment_acknowledged"
    COMMENT_DEFERRED = "comment_deferred"
    COMMENT_AWAITING_CLARIFICATION = "comment_awaiting_clarification"
    COMMENT_DISAGREED = "comment_disagreed"
    ANALYSIS_FAILED = "analysis_failed"
    APPLY_FAILED = "apply_failed"
    RESPONSE_POSTED = "response_posted"
    SHEPHERD_RUN = "shepherd_run"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ActivityEvent:
    """One append-only activity record.

    Attributes:
        session_id: Session the event belongs to.
        seq: Per-session sequence number, strictly increasing from 1.
        kind: What happened.
        detail: Human-readable one-line description.
        created_at: When the event was recorded (UTC).
        duration_secs: Optional elapsed time attributed to the event.
    """

    session_id: str
    seq: int
    kind: ActivityKind
    detail: str
    created_at: datetime
    duration_secs: float | None = None

    def __str__(self) -> str:
        return f"[{self.seq}] {self.kind.value}: {self.detail}"


@dataclass(frozen=True)
class GlobalStats:
    """Totals across every session in the store."""

    total_sessions: int
    by_status: dict[str, int]
    counters: dict[str, int]
