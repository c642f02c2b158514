"""CLI tests for hp -- exercises every command via Click's CliRunner.

Each test uses a file-backed database under tmp_path since every command
opens its own store. Collaborators (workspace, review provider, assistant)
are injected through ``obj`` so nothing external runs.
"""

from __future__ import annotations

import pytest
from click.testing import CliRunner

from hupasiya.cli import cli
from hupasiya.models.review import CommentState
from hupasiya.store import SessionStore
from tests.conftest import (
    CONFLICT,
    FakeAssistant,
    FakeProvider,
    FakeWorkspace,
    make_analysis,
    make_comment,
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def runner():
    """Create a Click test runner."""
    return CliRunner()


@pytest.fixture
def db(tmp_path) -> str:
    return str(tmp_path / "hp.db")


@pytest.fixture
def ws() -> FakeWorkspace:
    workspace = FakeWorkspace()
    for name in ("feature", "tests", "docs"):
        workspace.add(name)
    return workspace


@pytest.fixture
def hp(runner, db, ws):
    """Invoke hp against the test database with the fake workspace injected."""

    def _invoke(*args: str, **obj):
        obj.setdefault("workspace", ws)
        return runner.invoke(cli, ["--db", db, *args], obj=obj)

    return _invoke


@pytest.fixture
def family(hp):
    """feature -> (tests, docs)"""
    assert hp("new", "feature").exit_code == 0
    assert hp("new", "tests", "-p", "feature").exit_code == 0
    assert hp("new", "docs", "-p", "feature", "-t", "docs").exit_code == 0


# ---------------------------------------------------------------------------
# Session commands
# ---------------------------------------------------------------------------


class TestSessionCommands:
    def test_new_shows_session(self, hp):
        result = hp("new", "feature", "--notes", "login flow")
        assert result.exit_code == 0, result.output
        assert "feature" in result.output
        assert "Status:    active" in result.output

    def test_new_with_explicit_workspace(self, hp, ws):
        ws.add("ws-42", "feat/x")
        result = hp("new", "x", "-w", "ws-42")
        assert result.exit_code == 0, result.output
        assert "feat/x" in result.output

    def test_new_duplicate_is_error(self, hp):
        hp("new", "feature")
        result = hp("new", "feature")
        assert result.exit_code == 1
        assert "Error:" in result.output
        assert "already exists" in result.output

    def test_new_missing_workspace(self, hp):
        result = hp("new", "ghost")
        assert result.exit_code == 1
        assert "Error:" in result.output

    def test_lock_and_unlock(self, hp, family):
        result = hp("lock", "tests", "--owner", "me@box")
        assert result.exit_code == 0
        assert "Locked tests for me@box" in result.output

        again = hp("lock", "tests", "--owner", "you@box")
        assert again.exit_code == 1
        assert "locked by me@box" in again.output

        assert "Unlocked tests" in hp("unlock", "tests").output
        assert "was not locked" in hp("unlock", "tests").output

    def test_close(self, hp, family):
        result = hp("close", "docs", "--status", "abandoned")
        assert result.exit_code == 0
        assert "Closed docs as abandoned" in result.output

    def test_close_rejects_non_terminal(self, hp, family):
        result = hp("close", "docs", "--status", "paused")
        assert result.exit_code == 2  # click usage error

    def test_link_pr(self, hp, family):
        result = hp("link-pr", "feature", "octo/app#1")
        assert result.exit_code == 0
        assert "Linked feature to octo/app#1" in result.output

    def test_session_from_env(self, runner, db, ws, family):
        result = runner.invoke(
            cli, ["--db", db, "lock", "--owner", "me@box"],
            obj={"workspace": ws}, env={"HP_SESSION": "docs"},
        )
        assert result.exit_code == 0
        assert "Locked docs" in result.output

    def test_list(self, hp, family):
        result = hp("list")
        assert result.exit_code == 0, result.output
        lines = result.output.splitlines()
        assert lines[0].split()[:3] == ["Name", "Status", "Branch"]
        assert [line.split()[0] for line in lines[1:]] == ["feature", "tests", "docs"]
        assert lines[2].split()[3] == "feature"

    def test_list_by_status(self, hp, family):
        hp("close", "docs")
        result = hp("list", "--status", "integrated")
        assert result.exit_code == 0
        assert "docs" in result.output
        assert "tests" not in result.output

    def test_list_empty(self, hp):
        assert "No sessions." in hp("list").output

    def test_pause_and_activate(self, hp, family):
        result = hp("pause", "tests")
        assert result.exit_code == 0, result.output
        assert "tests is paused" in result.output
        assert "tests" in hp("list", "--status", "paused").output

        result = hp("activate", "tests")
        assert result.exit_code == 0
        assert "tests is active" in result.output
        assert "No sessions." in hp("list", "--status", "paused").output

    def test_pause_locked_session(self, hp, family):
        hp("lock", "tests", "--owner", "me@box")
        result = hp("pause", "tests")
        assert result.exit_code == 1
        assert "locked by me@box" in result.output


# ---------------------------------------------------------------------------
# Tree
# ---------------------------------------------------------------------------


class TestTreeCommand:
    def test_empty(self, hp):
        result = hp("tree")
        assert result.exit_code == 0
        assert "No sessions." in result.output

    def test_shows_children_indented(self, hp, family):
        result = hp("tree")
        assert result.exit_code == 0
        lines = result.output.splitlines()
        assert lines[0].startswith("feature")
        assert any(line.startswith("  └─ tests") for line in lines)
        assert any(line.startswith("  └─ docs") for line in lines)

    def test_unknown_root(self, hp):
        result = hp("tree", "ghost")
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_attach(self, hp, ws, family):
        ws.add("solo")
        hp("new", "solo")
        result = hp("attach", "tests", "solo")
        assert result.exit_code == 0, result.output
        assert "Attached solo under tests" in result.output
        assert any(line.startswith("    └─ solo") for line in hp("tree").output.splitlines())

    def test_attach_rejects_cycle(self, hp, family):
        result = hp("attach", "tests", "feature")
        assert result.exit_code == 1
        assert "ancestors" in result.output

    def test_detach(self, hp, family):
        result = hp("detach", "tests")
        assert result.exit_code == 0, result.output
        assert "Detached tests" in result.output
        assert any(line.startswith("tests") for line in hp("tree").output.splitlines())

    def test_detach_with_children_needs_cascade(self, hp, family):
        hp("detach", "docs")
        assert hp("attach", "tests", "docs").exit_code == 0
        refused = hp("detach", "tests")
        assert refused.exit_code == 1
        assert "has active children" in refused.output

        result = hp("detach", "tests", "--cascade")
        assert result.exit_code == 0, result.output
        lines = hp("tree").output.splitlines()
        assert any(line.startswith("  └─ docs") for line in lines)
        assert any(line.startswith("tests") for line in lines)


# ---------------------------------------------------------------------------
# Cascade / gather / resume
# ---------------------------------------------------------------------------


class TestMergeCommands:
    def test_cascade(self, hp, ws, family):
        result = hp("cascade", "feature")
        assert result.exit_code == 0, result.output
        assert "feature -> tests: succeeded" in result.output
        assert "2 succeeded, 0 failed" in result.output
        assert ws.merge_refs() == ["tests", "docs"]

    def test_cascade_dry_run_prints_commands(self, hp, ws, family):
        result = hp("cascade", "feature", "tests", "--dry-run")
        assert result.exit_code == 0
        assert "cascade (dry run)" in result.output
        assert "git merge --no-edit feature" in result.output
        assert ws.calls == []

    def test_cascade_failure_exits_nonzero(self, hp, ws, family):
        ws.script("tests", CONFLICT)
        result = hp("cascade", "feature", "--conflict", "abort")
        assert result.exit_code == 1
        assert "failed" in result.output

    def test_gather_flags_children(self, hp, family):
        result = hp("gather", "feature", "-s", "squash")
        assert result.exit_code == 0, result.output
        assert "tests -> feature: succeeded" in result.output
        assert "ready to close" in hp("tree").output

    def test_suspend_then_resume(self, hp, ws, db, family):
        ws.script("tests", CONFLICT)
        result = hp("cascade", "feature")
        assert result.exit_code == 0, result.output
        assert "Suspended on conflict" in result.output
        assert "hp resume" in result.output

        with SessionStore.open(db) as store:
            [suspension] = store.suspensions.list_for_session(store.info("feature").id)
            token = suspension.token

        resumed = hp("resume", token, "parent_wins")
        assert resumed.exit_code == 0, resumed.output
        assert "2 succeeded" in resumed.output

        reused = hp("resume", token, "skip")
        assert reused.exit_code == 1
        assert "No pending suspension" in reused.output

    def test_resume_rejects_unknown_choice(self, hp):
        result = hp("resume", "tok", "merge_both")
        assert result.exit_code == 2


# ---------------------------------------------------------------------------
# Shepherd
# ---------------------------------------------------------------------------


class TestShepherdCommands:
    @pytest.fixture
    def linked(self, hp, family):
        assert hp("link-pr", "feature", "octo/app#1").exit_code == 0

    def test_shepherd_run(self, hp, linked):
        provider = FakeProvider()
        provider.comments = [make_comment("1"), make_comment("2")]
        assistant = FakeAssistant()
        assistant.analyses["1"] = make_analysis("1", changes="diff", response="Fixed")
        assistant.analyses["2"] = make_analysis("2", "CLARIFY", response="Which test?")

        result = hp("shepherd", "feature", "--auto-apply", provider=provider, assistant=assistant)

        assert result.exit_code == 0, result.output
        assert "#1: resolved" in result.output
        assert "#2: awaiting_clarification" in result.output
        assert "1 resolved of 2" in result.output
        assert "Awaiting clarification: 2" in result.output

    def test_shepherd_status_needs_no_credentials(self, hp, linked):
        provider = FakeProvider()
        provider.comments = [make_comment("1")]
        assistant = FakeAssistant()
        assistant.analyses["1"] = make_analysis("1", "DEFER")
        hp("shepherd", "feature", provider=provider, assistant=assistant)

        result = hp("shepherd", "feature", "--status")
        assert result.exit_code == 0
        assert CommentState.DEFERRED.value in result.output

    def test_shepherd_without_link(self, hp, family):
        result = hp("shepherd", "tests", provider=FakeProvider(), assistant=FakeAssistant())
        assert result.exit_code == 1
        assert "no linked change request" in result.output

    def test_apply(self, hp, ws, linked):
        provider = FakeProvider()
        provider.comments = [make_comment("1")]
        assistant = FakeAssistant()
        assistant.analyses["1"] = make_analysis("1", changes="diff")
        hp("shepherd", "feature", provider=provider, assistant=assistant)

        result = hp("apply", "feature", "1", provider=provider, assistant=assistant)

        assert result.exit_code == 0, result.output
        assert "#1: resolved" in result.output
        assert ws.applied == [("feature", "diff")]

    def test_apply_already_resolved_succeeds(self, hp, ws, linked):
        provider = FakeProvider()
        provider.comments = [make_comment("1")]
        assistant = FakeAssistant()
        assistant.analyses["1"] = make_analysis("1", changes="diff")
        hp("shepherd", "feature", "--auto-apply", provider=provider, assistant=assistant)
        ws.reset_log()

        result = hp("apply", "feature", "1", provider=provider, assistant=assistant)

        assert result.exit_code == 0, result.output
        assert "#1: resolved" in result.output
        assert "already resolved" in result.output
        assert ws.applied == []


# ---------------------------------------------------------------------------
# Activity / metrics / stats
# ---------------------------------------------------------------------------


class TestActivityCommands:
    def test_activity(self, hp, family):
        hp("cascade", "feature")
        result = hp("activity", "tests")
        assert result.exit_code == 0
        assert "session_created" in result.output
        assert "cascaded" in result.output

    def test_activity_kind_filter(self, hp, family):
        hp("cascade", "feature")
        result = hp("activity", "tests", "--kind", "cascaded")
        assert "session_created" not in result.output
        assert "cascaded" in result.output

    def test_metrics(self, hp, family):
        hp("cascade", "feature")
        result = hp("metrics", "tests")
        assert result.exit_code == 0
        assert "cascades" in result.output
        assert "1" in result.output

    def test_stats(self, hp, family):
        hp("close", "docs")
        result = hp("stats")
        assert result.exit_code == 0
        assert "3 session(s)" in result.output
        assert "integrated" in result.output
