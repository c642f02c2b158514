"""Orchestration domain models.

Defines the closed enums that parameterize cascade and gather, and the
structured results every sweep returns: one TargetResult per target,
wrapped in an OperationReport that never collapses to a single boolean.
"""

from __future__ import annotations

import enum
from typing import Optional

from pydantic import BaseModel

from hupasiya.exceptions import FailureKind
from hupasiya.models.review import CommentState, ShepherdAction, ShepherdPhase


class MergeDirection(str, enum.Enum):
    """Which way changes flow between a parent and a child."""

    CASCADE = "cascade"  # parent -> child, runs in the child's workspace
    GATHER = "gather"  # child -> parent, runs in the parent's workspace

    def __str__(self) -> str:
        return self.value


class ConflictPolicy(str, enum.Enum):
    """How merge conflicts are handled during cascade and gather."""

    ABORT = "abort"
    PARENT_WINS = "parent_wins"
    CHILD_WINS = "child_wins"
    PROMPT = "prompt"

    def __str__(self) -> str:
        return self.value


class ResumeChoice(str, enum.Enum):
    """Decision supplied when resuming a run suspended on a conflict."""

    PARENT_WINS = "parent_wins"
    CHILD_WINS = "child_wins"
    ABORT = "abort"
    SKIP = "skip"

    def __str__(self) -> str:
        return self.value


class GatherStrategy(str, enum.Enum):
    """Command template family used to land child work in its parent."""

    MERGE = "merge"
    REBASE = "rebase"
    SQUASH = "squash"

    def __str__(self) -> str:
        return self.value


class TargetStatus(str, enum.Enum):
    """Outcome of one target within a sweep."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    SUSPENDED = "suspended"
    PENDING = "pending"
    DRY_RUN = "dry_run"

    def __str__(self) -> str:
        return self.value


class TargetResult(BaseModel):
    """Result for a single cascade/gather target.

    ``session`` is the session whose branch moved: the child for cascade,
    the receiving parent for gather. ``source`` names the session whose
    branch was merged in.
    """

    session: str
    source: str
    status: TargetStatus
    command: Optional[str] = None
    kind: Optional[FailureKind] = None
    reason: Optional[str] = None
    forced_side: Optional[str] = None
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.status in (TargetStatus.SUCCEEDED, TargetStatus.DRY_RUN)

    def __str__(self) -> str:
        text = f"{self.source} -> {self.session}: {self.status.value}"
        if self.reason:
            text += f" ({self.reason})"
        return text


class OperationReport(BaseModel):
    """Exhaustive per-target result of one cascade, gather, or resume."""

    operation: MergeDirection
    session: str
    results: list[TargetResult] = []
    dry_run: bool = False
    suspended_token: Optional[str] = None
    cancelled: bool = False

    def count(self, status: TargetStatus) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def succeeded(self) -> int:
        return self.count(TargetStatus.SUCCEEDED)

    @property
    def failed(self) -> int:
        return self.count(TargetStatus.FAILED)

    @property
    def skipped(self) -> int:
        return self.count(TargetStatus.SKIPPED)

    @property
    def is_suspended(self) -> bool:
        return self.suspended_token is not None

    def result_for(self, name: str) -> TargetResult:
        """Return the result whose source or receiving session is ``name``.

        Raises:
            KeyError: If no result mentions that session.
        """
        key = "source" if self.operation == MergeDirection.GATHER else "session"
        for r in self.results:
            if getattr(r, key) == name:
                return r
        raise KeyError(name)

    def summary(self) -> str:
        parts = [f"{self.succeeded} succeeded", f"{self.failed} failed"]
        if self.skipped:
            parts.append(f"{self.skipped} skipped")
        if self.is_suspended:
            parts.append("suspended")
        return ", ".join(parts)


# ---------------------------------------------------------------------------
# Shepherd results
# ---------------------------------------------------------------------------


class CommentOutcome(BaseModel):
    """What happened to one review comment during a shepherd sweep."""

    comment_id: str
    state: CommentState
    action: Optional[ShepherdAction] = None
    applied: bool = False
    response_posted: bool = False
    kind: Optional[FailureKind] = None
    reason: Optional[str] = None

    def __str__(self) -> str:
        text = f"#{self.comment_id}: {self.state.value}"
        if self.action is not None:
            text += f" [{self.action.value}]"
        if self.reason:
            text += f" ({self.reason})"
        return text


class ShepherdReport(BaseModel):
    """Result of one shepherd sweep over a change request."""

    session: str
    change_request_ref: str
    phases: list[ShepherdPhase] = []
    outcomes: list[CommentOutcome] = []
    dry_run: bool = False
    cancelled: bool = False

    def count(self, state: CommentState) -> int:
        return sum(1 for o in self.outcomes if o.state == state)

    @property
    def resolved(self) -> int:
        return self.count(CommentState.RESOLVED)

    @property
    def awaiting(self) -> list[str]:
        """Comment ids that can be continued with ``apply`` or a later run."""
        return [
            o.comment_id
            for o in self.outcomes
            if o.state in (CommentState.AWAITING_CLARIFICATION, CommentState.QUEUED)
        ]

    def outcome_for(self, comment_id: str) -> CommentOutcome:
        for o in self.outcomes:
            if o.comment_id == comment_id:
                return o
        raise KeyError(comment_id)
