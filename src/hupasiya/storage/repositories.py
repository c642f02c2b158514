"""Abstract repository interfaces for Hupasiya storage.

Defines ABC interfaces for all database operations. No SQLAlchemy
imports here -- pure abstract contracts.

Concrete implementations are in sqlite.py.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from datetime import datetime

    from hupasiya.models.activity import ActivityKind
    from hupasiya.models.review import CommentState
    from hupasiya.models.session import SessionStatus
    from hupasiya.storage.schema import (
        ActivityEventRow,
        ReviewCommentRow,
        SessionRow,
        ShepherdAnalysisRow,
        SuspensionRow,
    )


class SessionRepository(ABC):
    """Abstract interface for session storage.

    Also owns the tree edges (parent_id + sibling_position on each row) and
    the lock column, since both must change atomically with the row.
    """

    @abstractmethod
    def get(self, session_id: str) -> SessionRow | None:
        """Get a session by id. Returns None if not found."""
        ...

    @abstractmethod
    def get_by_name(self, name: str) -> SessionRow | None:
        """Get a session by its unique name. Returns None if not found."""
        ...

    @abstractmethod
    def save(self, row: SessionRow) -> None:
        """Insert or update a session row."""
        ...

    @abstractmethod
    def list(self, status: SessionStatus | None = None) -> Sequence[SessionRow]:
        """List sessions ordered by created_at, optionally filtered by status."""
        ...

    @abstractmethod
    def get_children(self, parent_id: str) -> list[SessionRow]:
        """Get direct children ordered by sibling_position (attach order)."""
        ...

    @abstractmethod
    def get_roots(self) -> list[SessionRow]:
        """Get sessions without a parent, ordered by created_at."""
        ...

    @abstractmethod
    def next_sibling_position(self, parent_id: str) -> int:
        """Position to assign to the next child attached under parent_id."""
        ...

    @abstractmethod
    def has_ancestor(self, session_id: str, potential_ancestor: str) -> bool:
        """Check if potential_ancestor is an ancestor of session_id.

        Walks up parent pointers from session_id. Used for cycle detection
        before every attach.
        """
        ...

    @abstractmethod
    def try_lock(self, session_id: str, owner: str) -> bool:
        """Atomically set locked_by if it is currently unset.

        Returns True if the lock was acquired, False if already held.
        """
        ...

    @abstractmethod
    def unlock(self, session_id: str, owner: str | None = None) -> bool:
        """Clear locked_by. With owner, only clears a lock held by that owner.

        Returns True if a lock was cleared.
        """
        ...

    @abstractmethod
    def count_by_status(self) -> dict[str, int]:
        """Count sessions grouped by status value."""
        ...


class ActivityRepository(ABC):
    """Abstract interface for the append-only activity log."""

    @abstractmethod
    def append(
        self,
        session_id: str,
        kind: ActivityKind,
        detail: str,
        created_at: datetime,
        duration_secs: float | None = None,
    ) -> ActivityEventRow:
        """Append an event with the next per-session sequence number."""
        ...

    @abstractmethod
    def list(
        self,
        session_id: str,
        limit: int | None = None,
        kind: ActivityKind | None = None,
    ) -> list[ActivityEventRow]:
        """Get events in ascending seq order.

        With limit, returns only the most recent ``limit`` events (still
        ascending).
        """
        ...


class MetricsRepository(ABC):
    """Abstract interface for per-session monotonic counters."""

    @abstractmethod
    def increment(self, session_id: str, counter: str, amount: int = 1) -> int:
        """Add a non-negative amount to a counter. Returns the new value."""
        ...

    @abstractmethod
    def get(self, session_id: str) -> dict[str, int]:
        """Get all counters for a session."""
        ...

    @abstractmethod
    def totals(self) -> dict[str, int]:
        """Sum every counter across all sessions."""
        ...


class ReviewRepository(ABC):
    """Abstract interface for review comments and shepherd analyses."""

    @abstractmethod
    def get_comment(self, session_id: str, comment_id: str) -> ReviewCommentRow | None:
        """Get a tracked comment. Returns None if not found."""
        ...

    @abstractmethod
    def save_comment(self, row: ReviewCommentRow) -> None:
        """Insert or update a comment row."""
        ...

    @abstractmethod
    def list_comments(
        self,
        session_id: str,
        states: Sequence[CommentState] | None = None,
    ) -> list[ReviewCommentRow]:
        """List comments ordered by created_at, optionally filtered by state."""
        ...

    @abstractmethod
    def save_analysis(self, row: ShepherdAnalysisRow) -> None:
        """Append an analysis audit row."""
        ...

    @abstractmethod
    def latest_analysis(
        self, session_id: str, comment_id: str
    ) -> ShepherdAnalysisRow | None:
        """Get the most recent analysis for a comment, or None."""
        ...


class SuspensionRepository(ABC):
    """Abstract interface for suspended cascade/gather runs."""

    @abstractmethod
    def save(self, row: SuspensionRow) -> None:
        """Persist a suspension."""
        ...

    @abstractmethod
    def get(self, token: str) -> SuspensionRow | None:
        """Get a suspension by token. Returns None if not found."""
        ...

    @abstractmethod
    def delete(self, token: str) -> None:
        """Remove a suspension once it has been resumed."""
        ...

    @abstractmethod
    def list_for_session(self, session_id: str) -> list[SuspensionRow]:
        """Get pending suspensions started from a session, oldest first."""
        ...
