"""SQLite implementations of repository interfaces.

All repositories use SQLAlchemy 2.0-style queries (select() + session.execute()).
Each repository takes a Session in its constructor.
"""

from __future__ import annotations

from datetime import datetime
from typing import Sequence

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from hupasiya.models.activity import ActivityKind
from hupasiya.models.review import CommentState
from hupasiya.models.session import SessionStatus
from hupasiya.storage.repositories import (
    ActivityRepository,
    MetricsRepository,
    ReviewRepository,
    SessionRepository,
    SuspensionRepository,
)
from hupasiya.storage.schema import (
    ActivityEventRow,
    ReviewCommentRow,
    SessionMetricRow,
    SessionRow,
    ShepherdAnalysisRow,
    SuspensionRow,
)


class SqliteSessionRepository(SessionRepository):
    """SQLite implementation of session storage."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, session_id: str) -> SessionRow | None:
        stmt = select(SessionRow).where(SessionRow.id == session_id)
        return self._session.execute(stmt).scalar_one_or_none()

    def get_by_name(self, name: str) -> SessionRow | None:
        stmt = select(SessionRow).where(SessionRow.name == name)
        return self._session.execute(stmt).scalar_one_or_none()

    def save(self, row: SessionRow) -> None:
        self._session.add(row)
        self._session.flush()

    def list(self, status: SessionStatus | None = None) -> Sequence[SessionRow]:
        stmt = select(SessionRow)
        if status is not None:
            stmt = stmt.where(SessionRow.status == status)
        stmt = stmt.order_by(SessionRow.created_at, SessionRow.name)
        return list(self._session.execute(stmt).scalars().all())

    def get_children(self, parent_id: str) -> list[SessionRow]:
        stmt = (
            select(SessionRow)
            .where(SessionRow.parent_id == parent_id)
            .order_by(SessionRow.sibling_position)
        )
        return list(self._session.execute(stmt).scalars().all())

    def get_roots(self) -> list[SessionRow]:
        stmt = (
            select(SessionRow)
            .where(SessionRow.parent_id.is_(None))
            .order_by(SessionRow.created_at, SessionRow.name)
        )
        return list(self._session.execute(stmt).scalars().all())

    def next_sibling_position(self, parent_id: str) -> int:
        stmt = select(func.max(SessionRow.sibling_position)).where(
            SessionRow.parent_id == parent_id
        )
        current = self._session.execute(stmt).scalar_one_or_none()
        return 0 if current is None else current + 1

    def has_ancestor(self, session_id: str, potential_ancestor: str) -> bool:
        """Walk up the tree to check ancestry.

        Iteratively follows parent pointers from session_id. Returns True if
        potential_ancestor is found at any level. Terminates at a root or
        if a corrupted loop is encountered.
        """
        visited: set[str] = set()
        current = session_id

        while True:
            if current in visited:
                return False
            visited.add(current)

            row = self.get(current)
            if row is None or row.parent_id is None:
                return False

            if row.parent_id == potential_ancestor:
                return True

            current = row.parent_id

    def try_lock(self, session_id: str, owner: str) -> bool:
        stmt = (
            update(SessionRow)
            .where(SessionRow.id == session_id, SessionRow.locked_by.is_(None))
            .values(locked_by=owner)
            .execution_options(synchronize_session="fetch")
        )
        result = self._session.execute(stmt)
        return result.rowcount == 1

    def unlock(self, session_id: str, owner: str | None = None) -> bool:
        stmt = update(SessionRow).where(
            SessionRow.id == session_id, SessionRow.locked_by.is_not(None)
        )
        if owner is not None:
            stmt = stmt.where(SessionRow.locked_by == owner)
        stmt = stmt.values(locked_by=None).execution_options(
            synchronize_session="fetch"
        )
        result = self._session.execute(stmt)
        return result.rowcount == 1

    def count_by_status(self) -> dict[str, int]:
        stmt = select(SessionRow.status, func.count()).group_by(SessionRow.status)
        return {
            status.value: count
            for status, count in self._session.execute(stmt).all()
        }


class SqliteActivityRepository(ActivityRepository):
    """SQLite implementation of the activity log.

    Sequence numbers are assigned as max(seq) + 1 inside the caller's
    transaction; the composite primary key rejects a concurrent duplicate.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def append(
        self,
        session_id: str,
        kind: ActivityKind,
        detail: str,
        created_at: datetime,
        duration_secs: float | None = None,
    ) -> ActivityEventRow:
        stmt = select(func.max(ActivityEventRow.seq)).where(
            ActivityEventRow.session_id == session_id
        )
        current = self._session.execute(stmt).scalar_one_or_none() or 0
        row = ActivityEventRow(
            session_id=session_id,
            seq=current + 1,
            kind=kind,
            detail=detail,
            duration_secs=duration_secs,
            created_at=created_at,
        )
        self._session.add(row)
        self._session.flush()
        return row

    def list(
        self,
        session_id: str,
        limit: int | None = None,
        kind: ActivityKind | None = None,
    ) -> list[ActivityEventRow]:
        stmt = select(ActivityEventRow).where(ActivityEventRow.session_id == session_id)
        if kind is not None:
            stmt = stmt.where(ActivityEventRow.kind == kind)
        if limit is not None:
            stmt = stmt.order_by(ActivityEventRow.seq.desc()).limit(limit)
            rows = list(self._session.execute(stmt).scalars().all())
            rows.reverse()
            return rows
        stmt = stmt.order_by(ActivityEventRow.seq)
        return list(self._session.execute(stmt).scalars().all())


class SqliteMetricsRepository(MetricsRepository):
    """SQLite implementation of per-session counters."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def increment(self, session_id: str, counter: str, amount: int = 1) -> int:
        if amount < 0:
            raise ValueError(f"Counters only grow; got amount={amount}")
        stmt = select(SessionMetricRow).where(
            SessionMetricRow.session_id == session_id,
            SessionMetricRow.counter == counter,
        )
        row = self._session.execute(stmt).scalar_one_or_none()
        if row is None:
            row = SessionMetricRow(session_id=session_id, counter=counter, value=0)
            self._session.add(row)
        row.value += amount
        self._session.flush()
        return row.value

    def get(self, session_id: str) -> dict[str, int]:
        stmt = select(SessionMetricRow).where(SessionMetricRow.session_id == session_id)
        return {
            row.counter: row.value
            for row in self._session.execute(stmt).scalars().all()
        }

    def totals(self) -> dict[str, int]:
        stmt = select(SessionMetricRow.counter, func.sum(SessionMetricRow.value)).group_by(
            SessionMetricRow.counter
        )
        return {counter: int(total or 0) for counter, total in self._session.execute(stmt).all()}


class SqliteReviewRepository(ReviewRepository):
    """SQLite implementation of review comment and analysis storage."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get_comment(self, session_id: str, comment_id: str) -> ReviewCommentRow | None:
        stmt = select(ReviewCommentRow).where(
            ReviewCommentRow.session_id == session_id,
            ReviewCommentRow.comment_id == comment_id,
        )
        return self._session.execute(stmt).scalar_one_or_none()

    def save_comment(self, row: ReviewCommentRow) -> None:
        self._session.add(row)
        self._session.flush()

    def list_comments(
        self,
        session_id: str,
        states: Sequence[CommentState] | None = None,
    ) -> list[ReviewCommentRow]:
        stmt = select(ReviewCommentRow).where(ReviewCommentRow.session_id == session_id)
        if states is not None:
            stmt = stmt.where(ReviewCommentRow.state.in_(list(states)))
        stmt = stmt.order_by(ReviewCommentRow.created_at, ReviewCommentRow.comment_id)
        return list(self._session.execute(stmt).scalars().all())

    def save_analysis(self, row: ShepherdAnalysisRow) -> None:
        self._session.add(row)
        self._session.flush()

    def latest_analysis(
        self, session_id: str, comment_id: str
    ) -> ShepherdAnalysisRow | None:
        stmt = (
            select(ShepherdAnalysisRow)
            .where(
                ShepherdAnalysisRow.session_id == session_id,
                ShepherdAnalysisRow.comment_id == comment_id,
            )
            .order_by(ShepherdAnalysisRow.id.desc())
            .limit(1)
        )
        return self._session.execute(stmt).scalar_one_or_none()


class SqliteSuspensionRepository(SuspensionRepository):
    """SQLite implementation of suspended-run storage."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def save(self, row: SuspensionRow) -> None:
        self._session.add(row)
        self._session.flush()

    def get(self, token: str) -> SuspensionRow | None:
        stmt = select(SuspensionRow).where(SuspensionRow.token == token)
        return self._session.execute(stmt).scalar_one_or_none()

    def delete(self, token: str) -> None:
        row = self.get(token)
        if row is not None:
            self._session.delete(row)
            self._session.flush()

    def list_for_session(self, session_id: str) -> list[SuspensionRow]:
        stmt = (
            select(SuspensionRow)
            .where(SuspensionRow.session_id == session_id)
            .order_by(SuspensionRow.created_at)
        )
        return list(self._session.execute(stmt).scalars().all())
