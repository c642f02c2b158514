"""Tests for cascade, gather and resume."""

from __future__ import annotations

import threading

import pytest

from hupasiya.exceptions import (
    FailureKind,
    InvalidTargetError,
    SessionLockedError,
    SuspensionNotFoundError,
    TerminalSessionError,
)
from hupasiya.models.activity import ActivityKind
from hupasiya.models.orchestration import MergeDirection, TargetStatus
from hupasiya.models.session import SessionStatus, VcsKind
from tests.conftest import BROKEN, CONFLICT, MERGED


@pytest.fixture
def feature(new_session):
    """feature -> (tests, docs)"""
    new_session("feature")
    new_session("tests", parent="feature", agent_type="test")
    new_session("docs", parent="feature", agent_type="docs")


@pytest.fixture
def three(new_session):
    """p -> (c1, c2, c3)"""
    new_session("p")
    for name in ("c1", "c2", "c3"):
        new_session(name, parent="p")


def _statuses(report) -> list[TargetStatus]:
    return [r.status for r in report.results]


def _all_unlocked(store) -> bool:
    return all(row.locked_by is None for row in store.sessions.list())


# ---------------------------------------------------------------------------
# Cascade
# ---------------------------------------------------------------------------


class TestCascade:
    def test_two_children_two_cascaded_events_in_order(
        self, orchestrator, workspace, recorder, feature
    ):
        workspace.reset_log()
        report = orchestrator.cascade("feature")

        assert report.operation == MergeDirection.CASCADE
        assert [r.session for r in report.results] == ["tests", "docs"]
        assert _statuses(report) == [TargetStatus.SUCCEEDED] * 2
        assert workspace.merge_refs() == ["tests", "docs"]
        assert workspace.commands("tests") == ["git merge --no-edit feature"]

        cascaded = [
            name
            for name in ("feature", "tests", "docs")
            for _ in recorder.events(name, kind=ActivityKind.CASCADED)
        ]
        assert sorted(cascaded) == ["docs", "tests"]
        assert recorder.metrics("tests").cascades == 1
        assert recorder.metrics("feature").cascades == 0

    def test_breadth_first_over_grandchildren(self, orchestrator, workspace, new_session, feature):
        new_session("unit", parent="tests")
        workspace.reset_log()
        report = orchestrator.cascade("feature")
        assert [r.session for r in report.results] == ["tests", "docs", "unit"]
        assert workspace.commands("unit") == ["git merge --no-edit tests"]

    def test_idempotent(self, orchestrator, workspace, recorder, feature):
        workspace.script("tests", MERGED)
        first = orchestrator.cascade("feature")
        second = orchestrator.cascade("feature")
        assert first.failed == 0 and second.failed == 0
        assert _statuses(second) == [TargetStatus.SUCCEEDED] * 2
        assert recorder.metrics("tests").merge_conflicts == 0
        assert recorder.metrics("docs").merge_conflicts == 0

    def test_updates_commit_ref(self, orchestrator, workspace, store, feature):
        workspace.add("tests", commit="c9")
        orchestrator.cascade("feature")
        assert store.info("tests").commit_ref == "c9"

    def test_locks_released_after_sweep(self, orchestrator, store, feature):
        orchestrator.cascade("feature")
        assert _all_unlocked(store)

    def test_jj_workspace_uses_its_own_command(self, orchestrator, workspace, new_session):
        new_session("main")
        new_session("exp", parent="main", vcs_kind=VcsKind.JJ)
        workspace.reset_log()
        orchestrator.cascade("main")
        assert workspace.commands("exp") == ["jj rebase -d main"]


# ---------------------------------------------------------------------------
# Gather
# ---------------------------------------------------------------------------


class TestGather:
    def test_post_order(self, orchestrator, workspace, store, new_session):
        new_session("p")
        new_session("a", parent="p")
        new_session("a1", parent="a")
        workspace.reset_log()

        report = orchestrator.gather("p")

        assert [r.source for r in report.results] == ["a1", "a"]
        assert report.result_for("a1").session == "a"
        assert report.result_for("a").session == "p"
        assert workspace.merge_refs() == ["a", "p"]
        assert workspace.commands("a") == ["git merge --no-edit a1"]
        assert workspace.commands("p") == ["git merge --no-edit a"]

    def test_flags_closure_candidates_without_closing(self, orchestrator, store, recorder, feature):
        orchestrator.gather("feature")
        tests = store.info("tests")
        assert tests.closure_candidate
        assert tests.status == SessionStatus.ACTIVE
        assert not store.info("feature").closure_candidate
        assert recorder.events("tests")[-1].kind == ActivityKind.CLOSURE_FLAGGED
        assert recorder.metrics("feature").gathers == 2

    def test_strategy(self, orchestrator, workspace, feature):
        workspace.reset_log()
        orchestrator.gather("feature", strategy="squash")
        squashes = workspace.commands("feature")
        assert [c.split(" && ")[0] for c in squashes] == [
            "git merge --squash tests",
            "git merge --squash docs",
        ]
        assert all("git commit" in c for c in squashes)

    def test_fan_out_keeps_levels_and_report_order(self, orchestrator, workspace, new_session):
        new_session("p")
        new_session("a", parent="p")
        new_session("b", parent="p")
        new_session("a1", parent="a")
        new_session("a2", parent="a")
        workspace.reset_log()

        report = orchestrator.gather("p", fan_out=4)

        assert [r.source for r in report.results] == ["a1", "a2", "a", "b"]
        assert report.succeeded == 4
        refs = workspace.merge_refs()
        assert max(i for i, r in enumerate(refs) if r == "a") < min(
            i for i, r in enumerate(refs) if r == "p"
        )


# ---------------------------------------------------------------------------
# Conflicts
# ---------------------------------------------------------------------------


class TestConflicts:
    def test_abort_skips_the_rest(self, orchestrator, workspace, recorder, three):
        workspace.script("c2", CONFLICT)
        workspace.reset_log()

        report = orchestrator.cascade("p", conflict_strategy="abort")

        assert _statuses(report) == [
            TargetStatus.SUCCEEDED,
            TargetStatus.FAILED,
            TargetStatus.SKIPPED,
        ]
        assert report.result_for("c2").kind == FailureKind.MERGE_CONFLICT
        assert "c2" in report.result_for("c3").reason
        assert workspace.commands("c2") == ["git merge --no-edit p", "git merge --abort"]
        assert workspace.commands("c3") == []
        assert recorder.metrics("c2").merge_conflicts == 1
        assert recorder.metrics("c2").merge_failures == 1

    def test_parent_wins_retries_with_theirs(self, orchestrator, workspace, recorder, feature):
        workspace.script("tests", CONFLICT)
        workspace.reset_log()

        report = orchestrator.cascade("feature", conflict_strategy="parent_wins")

        result = report.result_for("tests")
        assert result.status == TargetStatus.SUCCEEDED
        assert result.forced_side == "theirs"
        assert workspace.commands("tests") == [
            "git merge --no-edit feature",
            "git merge --abort",
            "git merge --no-edit -X theirs feature",
        ]
        kinds = [e.kind for e in recorder.events("tests")][-2:]
        assert kinds == [ActivityKind.MERGE_CONFLICT, ActivityKind.CASCADED]

    def test_child_wins_in_gather_keeps_theirs(self, orchestrator, workspace, feature):
        workspace.script("feature", CONFLICT)
        workspace.reset_log()
        report = orchestrator.gather("feature", conflict_strategy="child_wins")
        assert report.result_for("tests").forced_side == "theirs"
        assert "git merge --no-edit -X theirs tests" in workspace.commands("feature")

    def test_forced_retry_that_still_conflicts_fails_only_that_target(
        self, orchestrator, workspace, feature
    ):
        workspace.script("tests", CONFLICT, CONFLICT)
        report = orchestrator.cascade("feature", conflict_strategy="child_wins")
        assert report.result_for("tests").status == TargetStatus.FAILED
        assert report.result_for("tests").kind == FailureKind.MERGE_CONFLICT
        assert report.result_for("docs").status == TargetStatus.SUCCEEDED

    def test_executor_failure_fails_target_and_continues(self, orchestrator, workspace, feature):
        workspace.script("tests", BROKEN)
        report = orchestrator.cascade("feature")
        assert report.result_for("tests").kind == FailureKind.EXECUTOR_FAILURE
        assert report.result_for("docs").status == TargetStatus.SUCCEEDED

    def test_missing_workspace_fails_target(self, orchestrator, workspace, feature):
        del workspace.infos["docs"]
        report = orchestrator.cascade("feature")
        assert report.result_for("docs").kind == FailureKind.WORKSPACE_MISSING
        assert report.result_for("tests").status == TargetStatus.SUCCEEDED


# ---------------------------------------------------------------------------
# Suspend / resume
# ---------------------------------------------------------------------------


class TestPrompt:
    @pytest.fixture
    def suspended(self, orchestrator, workspace, feature):
        workspace.script("tests", CONFLICT)
        report = orchestrator.cascade("feature")
        workspace.reset_log()
        return report

    def test_prompt_suspends_with_token(self, suspended, orchestrator, store):
        assert suspended.is_suspended
        assert _statuses(suspended) == [TargetStatus.SUSPENDED, TargetStatus.PENDING]
        assert len(orchestrator.pending_suspensions("feature")) == 1
        assert _all_unlocked(store)

    def test_resume_parent_wins(self, suspended, orchestrator, workspace, recorder):
        report = orchestrator.resume(suspended.suspended_token, "parent_wins")

        assert _statuses(report) == [TargetStatus.SUCCEEDED] * 2
        assert workspace.commands("tests") == ["git merge --no-edit -X theirs feature"]
        assert workspace.commands("docs") == ["git merge --no-edit feature"]
        assert recorder.metrics("tests").merge_conflicts == 1
        assert orchestrator.pending_suspensions("feature") == []

    def test_resume_skip(self, suspended, orchestrator, workspace):
        report = orchestrator.resume(suspended.suspended_token, "skip")
        assert _statuses(report) == [TargetStatus.SKIPPED, TargetStatus.SUCCEEDED]
        assert workspace.commands("tests") == []

    def test_resume_abort(self, suspended, orchestrator, workspace):
        report = orchestrator.resume(suspended.suspended_token, "abort")
        assert _statuses(report) == [TargetStatus.FAILED, TargetStatus.SKIPPED]
        assert workspace.calls == []

    def test_token_is_single_use(self, suspended, orchestrator):
        orchestrator.resume(suspended.suspended_token, "skip")
        with pytest.raises(SuspensionNotFoundError):
            orchestrator.resume(suspended.suspended_token, "skip")


# ---------------------------------------------------------------------------
# Validation, dry run, cancellation
# ---------------------------------------------------------------------------


class TestValidation:
    def test_locked_target_rejected_before_any_workspace_call(
        self, orchestrator, manager, workspace, store, feature
    ):
        manager.lock("docs", "someone@box")
        workspace.reset_log()
        with pytest.raises(SessionLockedError) as exc_info:
            orchestrator.cascade("feature")
        assert exc_info.value.locked_by == "someone@box"
        assert workspace.calls == []
        assert workspace.resolved == []
        assert store.info("feature").locked_by is None
        assert store.info("docs").locked_by == "someone@box"

    def test_locked_operator_rejected(self, orchestrator, manager, workspace, feature):
        manager.lock("feature", "someone@box")
        workspace.reset_log()
        with pytest.raises(SessionLockedError):
            orchestrator.gather("feature")
        assert workspace.calls == []

    def test_terminal_descendants_excluded_by_default(self, orchestrator, manager, feature):
        manager.close("docs")
        report = orchestrator.cascade("feature")
        assert [r.session for r in report.results] == ["tests"]

    def test_named_terminal_target_rejected(self, orchestrator, manager, workspace, feature):
        manager.close("docs", SessionStatus.ARCHIVED)
        workspace.reset_log()
        with pytest.raises(TerminalSessionError):
            orchestrator.cascade("feature", ["docs"])
        assert workspace.calls == []

    def test_named_non_descendant_rejected(self, orchestrator, new_session, feature):
        new_session("other")
        with pytest.raises(InvalidTargetError):
            orchestrator.cascade("feature", ["other"])

    def test_named_targets_limit_the_sweep(self, orchestrator, workspace, feature):
        workspace.reset_log()
        report = orchestrator.cascade("feature", ["docs"])
        assert [r.session for r in report.results] == ["docs"]
        assert workspace.merge_refs() == ["docs"]

    def test_dry_run_runs_nothing(self, orchestrator, workspace, recorder, feature):
        workspace.reset_log()
        report = orchestrator.cascade("feature", dry_run=True)
        assert report.dry_run
        assert _statuses(report) == [TargetStatus.DRY_RUN] * 2
        assert report.result_for("tests").command == "git merge --no-edit feature"
        assert workspace.calls == []
        assert recorder.metrics("tests").cascades == 0

    def test_cancel_skips_unprocessed_targets(self, orchestrator, workspace, feature):
        cancel = threading.Event()
        cancel.set()
        workspace.reset_log()
        report = orchestrator.cascade("feature", cancel=cancel)
        assert report.cancelled
        assert _statuses(report) == [TargetStatus.SKIPPED] * 2
        assert all(r.reason == "cancelled" for r in report.results)
        assert workspace.calls == []
