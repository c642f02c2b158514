"""Tests for the conflict resolver and the VCS command table."""

from __future__ import annotations

import pytest

from hupasiya import vcs
from hupasiya.conflict import (
    ConflictContext,
    MergeSide,
    ResolutionAction,
    resolve,
    winning_side,
)
from hupasiya.exceptions import ConfigurationError
from hupasiya.models.orchestration import ConflictPolicy, GatherStrategy, MergeDirection
from hupasiya.models.session import VcsKind
from hupasiya.protocols import ExecResult


def _ctx(direction=MergeDirection.CASCADE, attempt=1) -> ConflictContext:
    return ConflictContext(
        direction=direction,
        source_branch="feature",
        target_session="tests",
        details="CONFLICT (content)",
        attempt=attempt,
    )


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class TestResolve:
    def test_abort(self):
        assert resolve(ConflictPolicy.ABORT, _ctx()).action == ResolutionAction.ABORT

    def test_prompt_suspends(self):
        assert resolve(ConflictPolicy.PROMPT, _ctx()).action == ResolutionAction.SUSPEND

    @pytest.mark.parametrize(
        "policy, direction, side",
        [
            (ConflictPolicy.PARENT_WINS, MergeDirection.CASCADE, MergeSide.THEIRS),
            (ConflictPolicy.CHILD_WINS, MergeDirection.CASCADE, MergeSide.OURS),
            (ConflictPolicy.PARENT_WINS, MergeDirection.GATHER, MergeSide.OURS),
            (ConflictPolicy.CHILD_WINS, MergeDirection.GATHER, MergeSide.THEIRS),
        ],
    )
    def test_force_side_relative_to_receiver(self, policy, direction, side):
        directive = resolve(policy, _ctx(direction))
        assert directive.action == ResolutionAction.FORCE
        assert directive.side == side

    def test_second_attempt_fails_whatever_the_policy(self):
        for policy in ConflictPolicy:
            assert resolve(policy, _ctx(attempt=2)).action == ResolutionAction.FAIL

    def test_total_over_every_combination(self):
        for policy in ConflictPolicy:
            for direction in MergeDirection:
                for attempt in (1, 2, 3):
                    directive = resolve(policy, _ctx(direction, attempt))
                    assert directive.action in ResolutionAction
                    assert directive.reason

    def test_winning_side_rejects_non_side_policy(self):
        with pytest.raises(ValueError):
            winning_side(ConflictPolicy.ABORT, MergeDirection.CASCADE)


# ---------------------------------------------------------------------------
# Command table
# ---------------------------------------------------------------------------


class TestCommands:
    def test_git_cascade(self):
        cmd = vcs.merge_command(VcsKind.GIT, MergeDirection.CASCADE, "feature", "tests")
        assert cmd == "git merge --no-edit feature"

    def test_git_forced(self):
        cmd = vcs.merge_command(
            VcsKind.GIT, MergeDirection.CASCADE, "feature", "tests", side=MergeSide.THEIRS
        )
        assert cmd == "git merge --no-edit -X theirs feature"

    def test_gather_strategies(self):
        assert vcs.merge_command(
            VcsKind.GIT, MergeDirection.GATHER, "tests", "feature", GatherStrategy.SQUASH
        ) == (
            "git merge --squash tests && "
            "(git diff --cached --quiet || git commit --no-edit -m \"Squash tests\")"
        )
        assert vcs.merge_command(
            VcsKind.JJ, MergeDirection.GATHER, "tests", "feature", GatherStrategy.MERGE
        ) == "jj new feature tests"

    @pytest.mark.parametrize(
        "policy, flag",
        [(ConflictPolicy.PARENT_WINS, "theirs"), (ConflictPolicy.CHILD_WINS, "ours")],
    )
    def test_git_rebase_gather_swaps_sides(self, policy, flag):
        # git rebase replays the parent onto the child, so the child is "ours".
        side = winning_side(policy, MergeDirection.GATHER)
        cmd = vcs.merge_command(
            VcsKind.GIT, MergeDirection.GATHER, "tests", "feature", GatherStrategy.REBASE, side
        )
        assert cmd == f"git rebase -X {flag} tests"

    def test_git_merge_gather_keeps_sides(self):
        side = winning_side(ConflictPolicy.PARENT_WINS, MergeDirection.GATHER)
        cmd = vcs.merge_command(
            VcsKind.GIT, MergeDirection.GATHER, "tests", "feature", GatherStrategy.MERGE, side
        )
        assert cmd == "git merge --no-edit -X ours tests"

    def test_jj_squash_keeps_child_change(self):
        cmd = vcs.merge_command(
            VcsKind.JJ, MergeDirection.GATHER, "tests", "feature", GatherStrategy.SQUASH
        )
        assert cmd == "jj squash --from tests --into feature --keep-emptied"

    def test_hg_forced_uses_merge_tools(self):
        cmd = vcs.merge_command(
            VcsKind.HG, MergeDirection.GATHER, "tests", "feature", side=MergeSide.OURS
        )
        assert cmd == "hg merge --tool :local tests"

    def test_cascade_abort_ignores_strategy(self):
        assert vcs.abort_command(
            VcsKind.GIT, MergeDirection.CASCADE, GatherStrategy.REBASE
        ) == "git merge --abort"
        assert vcs.abort_command(
            VcsKind.GIT, MergeDirection.GATHER, GatherStrategy.REBASE
        ) == "git rebase --abort"

    def test_every_kind_has_every_template(self):
        for kind in VcsKind:
            for direction in MergeDirection:
                for strategy in GatherStrategy:
                    for side in (None, MergeSide.OURS, MergeSide.THEIRS):
                        assert vcs.merge_command(kind, direction, "s", "t", strategy, side)

    def test_unknown_kind_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            VcsKind.parse("svn")
        assert VcsKind.parse("Git") == VcsKind.GIT


class TestConflictDetection:
    def test_git_conflict(self):
        result = ExecResult(1, "CONFLICT (content): Merge conflict in a.py")
        assert vcs.is_conflict(VcsKind.GIT, result)

    def test_git_failure_without_marker_is_not_conflict(self):
        assert not vcs.is_conflict(VcsKind.GIT, ExecResult(128, "fatal: bad revision"))

    def test_success_is_not_conflict(self):
        assert not vcs.is_conflict(VcsKind.GIT, ExecResult(0, "Already up to date."))

    def test_jj_conflict_with_zero_exit(self):
        result = ExecResult(0, "New conflicts appeared in these commits:")
        assert vcs.is_conflict(VcsKind.JJ, result)

    def test_hg_conflict(self):
        result = ExecResult(1, "0 files updated, 0 files merged, 1 files unresolved\nunresolved conflicts")
        assert vcs.is_conflict(VcsKind.HG, result)
