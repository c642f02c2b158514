"""Shared test fixtures for Hupasiya.

Provides an in-memory store, the engines wired to it, and scripted fake
collaborators (workspace, review provider, assistant) that log every call.
"""

from __future__ import annotations

import threading
from collections import Counter, defaultdict
from datetime import datetime

import pytest

from hupasiya.activity import ActivityRecorder
from hupasiya.exceptions import ProviderUnavailableError
from hupasiya.models.config import HupasiyaConfig, ShepherdConfig
from hupasiya.models.review import ReviewComment, ShepherdAnalysis
from hupasiya.models.session import ChangeRequestStatus, VcsKind
from hupasiya.orchestration import Orchestrator
from hupasiya.protocols import ExecResult, WorkspaceInfo
from hupasiya.sessions import SessionManager
from hupasiya.shepherd import ShepherdEngine
from hupasiya.store import SessionStore
from hupasiya.tree import SessionTree

OWNER = "tester@host"

UP_TO_DATE = ExecResult(0, "Already up to date.")
MERGED = ExecResult(0, "Merge made by the 'ort' strategy.")
CONFLICT = ExecResult(
    1,
    "Auto-merging app.py\n"
    "CONFLICT (content): Merge conflict in app.py\n"
    "Automatic merge failed; fix conflicts and then commit the result.",
)
BROKEN = ExecResult(128, "fatal: not a git repository")

# Back-out commands never consume scripted results.
_ABORT_MARKERS = ("--abort", "reset --merge", "jj undo")


# ------------------------------------------------------------------
# Fake collaborators
# ------------------------------------------------------------------


class FakeWorkspace:
    """Workspace collaborator with per-workspace scripted command results.

    Merge commands pop the next scripted result for their workspace and
    fall back to ``default``. Every call is logged in ``calls``.
    """

    def __init__(self) -> None:
        self.infos: dict[str, WorkspaceInfo] = {}
        self.scripts: dict[str, list[ExecResult]] = defaultdict(list)
        self.default = UP_TO_DATE
        self.calls: list[tuple[str, str]] = []
        self.resolved: list[str] = []
        self.applied: list[tuple[str, object]] = []
        self.apply_result = ExecResult(0, "")
        self._lock = threading.Lock()

    def add(
        self,
        ref: str,
        branch: str | None = None,
        *,
        vcs_kind: VcsKind = VcsKind.GIT,
        base_branch: str = "main",
        commit: str | None = "c0",
    ) -> WorkspaceInfo:
        info = WorkspaceInfo(
            ref=ref,
            path=f"/work/{ref}",
            vcs_kind=vcs_kind,
            branch=branch or ref,
            base_branch=base_branch,
            commit=commit,
        )
        self.infos[ref] = info
        return info

    def script(self, ref: str, *results: ExecResult) -> None:
        self.scripts[ref].extend(results)

    def reset_log(self) -> None:
        self.calls.clear()
        self.resolved.clear()
        self.applied.clear()

    def commands(self, ref: str | None = None) -> list[str]:
        return [c for r, c in self.calls if ref is None or r == ref]

    def merge_refs(self) -> list[str]:
        """Workspaces that ran a merge command, in call order."""
        return [
            r for r, c in self.calls if not any(m in c for m in _ABORT_MARKERS)
        ]

    # Workspace protocol

    def resolve(self, ref: str) -> WorkspaceInfo | None:
        with self._lock:
            self.resolved.append(ref)
        return self.infos.get(ref)

    def execute(self, ref: str, command: str, timeout: float | None = None) -> ExecResult:
        with self._lock:
            self.calls.append((ref, command))
            if any(m in command for m in _ABORT_MARKERS):
                return ExecResult(0, "")
            queue = self.scripts[ref]
            return queue.pop(0) if queue else self.default

    def apply_change(self, ref: str, payload: object) -> ExecResult:
        with self._lock:
            self.applied.append((ref, payload))
        return self.apply_result


class FakeProvider:
    """Review provider with canned comments and injectable transient failures."""

    def __init__(self) -> None:
        self.comments: list[ReviewComment] = []
        self.status = ChangeRequestStatus.OPEN
        self.posted: list[tuple[str, str, str]] = []
        self.calls: Counter[str] = Counter()
        self._failures: Counter[str] = Counter()

    def fail(self, method: str, times: int) -> None:
        """Make the next ``times`` calls to ``method`` raise ProviderUnavailableError."""
        self._failures[method] = times

    def _maybe_fail(self, method: str) -> None:
        self.calls[method] += 1
        if self._failures[method] > 0:
            self._failures[method] -= 1
            raise ProviderUnavailableError(f"{method}: 503 Service Unavailable")

    def fetch_comments(self, change_request_ref: str) -> list[ReviewComment]:
        self._maybe_fail("fetch_comments")
        return list(self.comments)

    def get_status(self, change_request_ref: str) -> ChangeRequestStatus:
        self._maybe_fail("get_status")
        return self.status

    def post_response(self, change_request_ref: str, comment_id: str, body: str) -> None:
        self._maybe_fail("post_response")
        self.posted.append((change_request_ref, comment_id, body))


class FakeAssistant:
    """Assistant returning scripted analyses (or raising scripted errors)."""

    def __init__(self) -> None:
        self.analyses: dict[str, ShepherdAnalysis | Exception] = {}
        self.proposals: dict[str, object] = {}
        self.analyzed: list[str] = []
        self.proposed: list[str] = []

    def analyze(self, comment, session) -> ShepherdAnalysis:
        self.analyzed.append(comment.id)
        result = self.analyses.get(comment.id)
        if result is None:
            raise RuntimeError(f"no scripted analysis for {comment.id}")
        if isinstance(result, Exception):
            raise result
        return result

    def propose_change(self, comment, analysis, session) -> object:
        self.proposed.append(comment.id)
        return self.proposals.get(comment.id, f"--- a/{comment.path}\n+++ b/{comment.path}\n")


def make_comment(comment_id: str, body: str = "Please fix", **kwargs) -> ReviewComment:
    kwargs.setdefault("path", "app.py")
    kwargs.setdefault("author", "reviewer")
    kwargs.setdefault("created_at", datetime(2024, 1, 1, 12, 0))
    return ReviewComment(id=comment_id, body=body, **kwargs)


def make_analysis(comment_id: str, action: str = "FIX", confidence: str = "high", **kwargs) -> ShepherdAnalysis:
    kwargs.setdefault("summary", f"handle {comment_id}")
    return ShepherdAnalysis(comment_id=comment_id, action=action, confidence=confidence, **kwargs)


# ------------------------------------------------------------------
# Fixtures
# ------------------------------------------------------------------


@pytest.fixture
def store():
    """In-memory session store with all tables created."""
    s = SessionStore.open(":memory:")
    yield s
    s.close()


@pytest.fixture
def config() -> HupasiyaConfig:
    return HupasiyaConfig(shepherd=ShepherdConfig(provider_backoff=0))


@pytest.fixture
def workspace() -> FakeWorkspace:
    return FakeWorkspace()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def assistant() -> FakeAssistant:
    return FakeAssistant()


@pytest.fixture
def recorder(store) -> ActivityRecorder:
    return ActivityRecorder(store)


@pytest.fixture
def manager(store, workspace, recorder) -> SessionManager:
    return SessionManager(store, workspace, recorder)


@pytest.fixture
def tree(store, recorder) -> SessionTree:
    return SessionTree(store, recorder)


@pytest.fixture
def orchestrator(store, workspace, config, recorder) -> Orchestrator:
    return Orchestrator(store, workspace, config, recorder=recorder, owner=OWNER)


@pytest.fixture
def shepherd(store, provider, assistant, workspace, config, recorder) -> ShepherdEngine:
    return ShepherdEngine(
        store, provider, assistant, workspace, config, recorder=recorder, owner=OWNER
    )


@pytest.fixture
def new_session(manager, workspace):
    """Factory: register a session whose workspace (and branch) share its name."""

    def _make(name: str, parent: str | None = None, **kwargs):
        vcs_kind = kwargs.pop("vcs_kind", VcsKind.GIT)
        workspace.add(name, vcs_kind=vcs_kind)
        return manager.register(name, name, parent=parent, **kwargs)

    return _make
