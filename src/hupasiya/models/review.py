"""Review and shepherd domain models.

ReviewComment is a frozen snapshot of a change-request comment. The only
field that ever changes is ``resolved``, and only the shepherd engine flips
it (producing a new instance via ``mark_resolved``).

ShepherdAnalysis is what the assistant returns for one comment. It is
consumed once to decide what to do, then persisted for audit.
"""

from __future__ import annotations

import dataclasses
import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator


class ShepherdAction(str, enum.Enum):
    """Recommended handling of a review comment."""

    FIX = "FIX"
    CLARIFY = "CLARIFY"
    ACKNOWLEDGE = "ACKNOWLEDGE"
    DEFER = "DEFER"
    DISAGREE = "DISAGREE"

    def __str__(self) -> str:
        return self.value


class Confidence(str, enum.Enum):
    """Assistant's self-reported certainty about its recommendation."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return {"high": 3, "medium": 2, "low": 1}[self.value]

    def meets(self, threshold: Confidence) -> bool:
        """True if this confidence is at or above ``threshold``."""
        return self.rank >= threshold.rank

    def __str__(self) -> str:
        return self.value


class CommentState(str, enum.Enum):
    """Per-comment shepherd state.

    PENDING comments have not been analyzed yet. QUEUED comments have an
    analysis recommending FIX that is waiting for a manual ``apply``.
    """

    PENDING = "pending"
    QUEUED = "queued"
    RESOLVED = "resolved"
    DEFERRED = "deferred"
    AWAITING_CLARIFICATION = "awaiting_clarification"
    DISAGREED = "disagreed"
    ANALYSIS_FAILED = "analysis_failed"

    def __str__(self) -> str:
        return self.value


class ShepherdPhase(str, enum.Enum):
    """Phases of one shepherd sweep over a change request."""

    CREATED = "created"
    FETCHING = "fetching"
    ANALYZING = "analyzing"
    DECIDING = "deciding"
    APPLYING = "applying"
    DONE = "done"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ReviewComment:
    """A review comment fetched from the review provider."""

    id: str
    path: str
    body: str
    author: str
    created_at: datetime
    line: int | None = None
    resolved: bool = False
    diff_hunk: str | None = None

    def mark_resolved(self) -> ReviewComment:
        return dataclasses.replace(self, resolved=True)

    @property
    def location(self) -> str:
        if self.line is None:
            return self.path
        return f"{self.path}:{self.line}"

    def __str__(self) -> str:
        return f"#{self.id} {self.location} by {self.author}"


class ShepherdAnalysis(BaseModel):
    """Assistant analysis of a single comment. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    comment_id: str
    action: ShepherdAction
    confidence: Confidence
    summary: str = ""
    assessment: str = ""
    changes: Optional[Any] = None  # Opaque change payload, if action is FIX
    response: str = ""

    @field_validator("action", mode="before")
    @classmethod
    def _coerce_action(cls, v: object) -> object:
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator("confidence", mode="before")
    @classmethod
    def _coerce_confidence(cls, v: object) -> object:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    def __str__(self) -> str:
        return f"{self.action.value} ({self.confidence.value}) for #{self.comment_id}"
