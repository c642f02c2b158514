"""SQLAlchemy ORM schema for Hupasiya.

Defines all database tables: sessions, activity_events, session_metrics,
review_comments, shepherd_analyses, suspensions, _hupasiya_meta.

IMPORTANT: status and kind enums are imported from the domain models --
they are NOT redefined here. The ORM uses the same Python enums.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from hupasiya.models.activity import ActivityKind
from hupasiya.models.orchestration import ConflictPolicy, GatherStrategy, MergeDirection
from hupasiya.models.review import CommentState, Confidence, ShepherdAction
from hupasiya.models.session import ChangeRequestStatus, SessionStatus, VcsKind


class Base(DeclarativeBase):
    """Base class for all Hupasiya ORM models."""

    pass


class SessionRow(Base):
    """A session bound to one workspace.

    Tree edges live on the child row: ``parent_id`` plus ``sibling_position``
    (attach order among the parent's children), so linking and unlinking is
    a single-row update.
    """

    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    parent_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        ForeignKey("sessions.id", ondelete="SET NULL"),
        nullable=True,
    )
    sibling_position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    workspace_ref: Mapped[str] = mapped_column(String(255), nullable=False)
    vcs_kind: Mapped[VcsKind] = mapped_column(nullable=False)
    branch: Mapped[str] = mapped_column(String(255), nullable=False)
    base_branch: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[SessionStatus] = mapped_column(nullable=False)
    agent_type: Mapped[str] = mapped_column(String(50), nullable=False)
    commit_ref: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    locked_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    change_request_ref: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    change_request_status: Mapped[Optional[ChangeRequestStatus]] = mapped_column(
        nullable=True
    )
    closure_candidate: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    last_active: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_sessions_parent_position", "parent_id", "sibling_position"),
        Index("ix_sessions_status", "status"),
    )


class ActivityEventRow(Base):
    """Append-only activity record. ``seq`` is per session, starting at 1."""

    __tablename__ = "activity_events"

    session_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("sessions.id", ondelete="CASCADE"),
        primary_key=True,
    )
    seq: Mapped[int] = mapped_column(Integer, primary_key=True)
    kind: Mapped[ActivityKind] = mapped_column(nullable=False)
    detail: Mapped[str] = mapped_column(Text, nullable=False, default="")
    duration_secs: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_activity_kind_time", "kind", "created_at"),
    )


class SessionMetricRow(Base):
    """One monotonic counter for one session."""

    __tablename__ = "session_metrics"

    session_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("sessions.id", ondelete="CASCADE"),
        primary_key=True,
    )
    counter: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class ReviewCommentRow(Base):
    """A fetched review comment plus its shepherd state.

    Content columns are written once on first fetch. Only ``state``,
    ``resolved``, ``reason`` and ``updated_at`` change afterwards.
    """

    __tablename__ = "review_comments"

    session_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("sessions.id", ondelete="CASCADE"),
        primary_key=True,
    )
    comment_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    path: Mapped[str] = mapped_column(Text, nullable=False)
    line: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    author: Mapped[str] = mapped_column(String(255), nullable=False)
    diff_hunk: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    state: Mapped[CommentState] = mapped_column(nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_review_comments_state", "session_id", "state"),
    )


class ShepherdAnalysisRow(Base):
    """Append-only audit record of one assistant analysis.

    The latest row for a (session_id, comment_id) pair is the current analysis.
    """

    __tablename__ = "shepherd_analyses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("sessions.id", ondelete="CASCADE"),
        nullable=False,
    )
    comment_id: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[ShepherdAction] = mapped_column(nullable=False)
    confidence: Mapped[Confidence] = mapped_column(nullable=False)
    summary: Mapped[str] = mapped_column(Text, nullable=False, default="")
    assessment: Mapped[str] = mapped_column(Text, nullable=False, default="")
    changes_json: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    response: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_analyses_comment_time", "session_id", "comment_id", "created_at"),
    )


class SuspensionRow(Base):
    """A cascade or gather paused on a prompt-policy conflict.

    ``remaining_json`` lists the session ids still to process after the
    suspended target, in traversal order. Deleted when resumed.
    """

    __tablename__ = "suspensions"

    token: Mapped[str] = mapped_column(String(64), primary_key=True)
    session_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("sessions.id", ondelete="CASCADE"),
        nullable=False,
    )
    operation: Mapped[MergeDirection] = mapped_column(nullable=False)
    target_id: Mapped[str] = mapped_column(String(64), nullable=False)
    remaining_json: Mapped[list] = mapped_column(JSON, nullable=False)
    gather_strategy: Mapped[GatherStrategy] = mapped_column(nullable=False)
    conflict_strategy: Mapped[ConflictPolicy] = mapped_column(nullable=False)
    details: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class HupasiyaMetaRow(Base):
    """Key-value metadata for the Hupasiya database itself (e.g., schema version)."""

    __tablename__ = "_hupasiya_meta"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
