"""Session domain models.

Provides:
- SessionStatus, VcsKind, ChangeRequestStatus: closed enums
- SessionMetrics: frozen snapshot of a session's monotonic counters
- SessionInfo: frozen snapshot of a session record for use outside storage
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime

from hupasiya.exceptions import ConfigurationError


class SessionStatus(str, enum.Enum):
    """Lifecycle status of a session."""

    ACTIVE = "active"
    PAUSED = "paused"
    INTEGRATED = "integrated"
    ARCHIVED = "archived"
    ABANDONED = "abandoned"

    @property
    def is_terminal(self) -> bool:
        """Terminal sessions are never cascade or gather targets."""
        return self in _TERMINAL_STATUSES

    def __str__(self) -> str:
        return self.value


_TERMINAL_STATUSES = frozenset(
    {SessionStatus.INTEGRATED, SessionStatus.ARCHIVED, SessionStatus.ABANDONED}
)


class VcsKind(str, enum.Enum):
    """Closed set of version control systems a workspace can use.

    GIT is the primary VCS; HG and JJ are the two secondary ones.
    """

    GIT = "git"
    HG = "hg"
    JJ = "jj"

    @classmethod
    def parse(cls, value: str) -> VcsKind:
        """Parse a VCS name reported by a workspace.

        Raises:
            ConfigurationError: If the name is not one of the known kinds.
        """
        try:
            return cls(value.strip().lower())
        except ValueError:
            known = ", ".join(k.value for k in cls)
            raise ConfigurationError(
                f"Unknown VCS kind '{value}' (expected one of: {known})"
            ) from None

    def __str__(self) -> str:
        return self.value


class ChangeRequestStatus(str, enum.Enum):
    """Cached status of the change request linked to a session."""

    OPEN = "open"
    DRAFT = "draft"
    MERGED = "merged"
    CLOSED = "closed"

    def __str__(self) -> str:
        return self.value


KNOWN_AGENT_TYPES: tuple[str, ...] = (
    "feature",
    "bugfix",
    "review",
    "research",
    "refactor",
    "test",
    "docs",
    "shepherd",
)


@dataclass(frozen=True)
class SessionMetrics:
    """Monotonic counters accumulated from activity events.

    Every field only ever grows. Unknown counters recorded by newer
    versions are kept in ``extra``.
    """

    cascades: int = 0
    gathers: int = 0
    merge_conflicts: int = 0
    merge_failures: int = 0
    shepherd_runs: int = 0
    comments_analyzed: int = 0
    comments_resolved: int = 0
    responses_posted: int = 0
    total_time_secs: int = 0
    extra: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_counters(cls, counters: dict[str, int]) -> SessionMetrics:
        known = {f for f in cls.__dataclass_fields__ if f != "extra"}
        values = {k: v for k, v in counters.items() if k in known}
        extra = {k: v for k, v in counters.items() if k not in known}
        return cls(**values, extra=extra)


@dataclass(frozen=True)
class SessionInfo:
    """Immutable snapshot of a session record.

    Engines re-read a fresh snapshot on every invocation; nothing holds
    on to one across calls.
    """

    id: str
    name: str
    parent_id: str | None
    children: tuple[str, ...]
    workspace_ref: str
    vcs_kind: VcsKind
    branch: str
    base_branch: str
    status: SessionStatus
    agent_type: str
    created_at: datetime
    last_active: datetime
    commit_ref: str | None = None
    locked_by: str | None = None
    change_request_ref: str | None = None
    change_request_status: ChangeRequestStatus | None = None
    closure_candidate: bool = False
    notes: str = ""

    @property
    def is_locked(self) -> bool:
        return self.locked_by is not None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def __str__(self) -> str:
        return f"{self.name} ({self.status.value}, {self.branch})"
