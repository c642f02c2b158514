"""Protocol definitions for Hupasiya collaborators.

The engines never provision workspaces, run VCS commands themselves,
talk to a review host, or generate analysis text. They consume those
capabilities through the three protocols below:

- Workspace: resolves a session's workspace and runs commands inside it
- ReviewProvider: fetches comments and posts responses for a change request
- Assistant: analyzes a comment and proposes a change payload

No SQLAlchemy imports allowed in this module -- pure domain protocols.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional, Protocol, runtime_checkable

from hupasiya.models.session import VcsKind

if TYPE_CHECKING:
    from hupasiya.models.review import ReviewComment, ShepherdAnalysis
    from hupasiya.models.session import ChangeRequestStatus, SessionInfo


@dataclass(frozen=True)
class WorkspaceInfo:
    """What the workspace collaborator knows about one workspace."""

    ref: str
    path: str
    vcs_kind: VcsKind
    branch: str
    base_branch: str
    commit: Optional[str] = None


@dataclass(frozen=True)
class ExecResult:
    """Exit code and combined stdout/stderr of one workspace command."""

    exit_code: int
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@runtime_checkable
class Workspace(Protocol):
    """Resolves workspaces and executes commands in them."""

    def resolve(self, ref: str) -> WorkspaceInfo | None:
        """Look up a workspace. Returns None if it does not exist."""
        ...

    def execute(self, ref: str, command: str, timeout: float | None = None) -> ExecResult:
        """Run a command inside the workspace and capture its result.

        A non-zero exit is reported through ``ExecResult``, not raised.
        """
        ...

    def apply_change(self, ref: str, payload: Any) -> ExecResult:
        """Apply an opaque change payload (e.g. a unified diff) to the workspace."""
        ...


@runtime_checkable
class ReviewProvider(Protocol):
    """Change-request host (GitHub or similar)."""

    def fetch_comments(self, change_request_ref: str) -> list[ReviewComment]:
        """Fetch all review comments on a change request."""
        ...

    def get_status(self, change_request_ref: str) -> ChangeRequestStatus:
        """Current open/draft/merged/closed status."""
        ...

    def post_response(self, change_request_ref: str, comment_id: str, body: str) -> None:
        """Reply to one review comment."""
        ...


@runtime_checkable
class Assistant(Protocol):
    """Produces analyses and change payloads for review comments."""

    def analyze(self, comment: ReviewComment, session: SessionInfo) -> ShepherdAnalysis:
        """Analyze a single comment. Raises on failure."""
        ...

    def propose_change(
        self,
        comment: ReviewComment,
        analysis: ShepherdAnalysis,
        session: SessionInfo,
    ) -> Any:
        """Produce a change payload for a FIX analysis that has none."""
        ...
