"""Cascade and gather against real git worktrees.

The ``hn`` binary is replaced by GitWorkboxes, which answers ``hn info``
from a worktree and runs ``hn exec`` commands inside it, so HnWorkspace
and the git command table run unmodified against actual repositories.
"""

from __future__ import annotations

import json
import shutil
import subprocess
from pathlib import Path

import pytest

from hupasiya.models.orchestration import TargetStatus
from hupasiya.workspace import HnWorkspace

pytestmark = pytest.mark.skipif(
    shutil.which("git") is None or shutil.which("sh") is None,
    reason="git not installed",
)


def git(cwd: Path, *args: str) -> str:
    proc = subprocess.run(
        ["git", *args], cwd=cwd, check=True, capture_output=True, text=True
    )
    return proc.stdout.strip()


class GitWorkboxes:
    """Stands in for ``hn``: one git worktree per workbox name."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.main = root / "main"
        self.paths: dict[str, Path] = {}

    def init(self) -> None:
        self.main.mkdir()
        git(self.main, "init", "-q")
        git(self.main, "symbolic-ref", "HEAD", "refs/heads/main")
        (self.main / "f.txt").write_text("base\n")
        git(self.main, "add", "f.txt")
        git(self.main, "commit", "-q", "-m", "base")

    def branch(self, name: str, start: str = "main") -> Path:
        path = self.root / name
        git(self.main, "worktree", "add", "-q", "-b", name, str(path), start)
        self.paths[name] = path
        return path

    def commit(self, name: str, filename: str, content: str) -> str:
        path = self.paths[name]
        (path / filename).write_text(content)
        git(path, "add", filename)
        git(path, "commit", "-q", "-m", f"{name}: {filename}")
        return self.head(name)

    def head(self, name: str) -> str:
        return git(self.paths[name], "rev-parse", "HEAD")

    def read(self, name: str, filename: str) -> str:
        return (self.paths[name] / filename).read_text()

    def files(self, name: str) -> set[str]:
        return set(git(self.paths[name], "ls-tree", "-r", "--name-only", "HEAD").split())

    def clean(self, name: str) -> bool:
        return git(self.paths[name], "status", "--porcelain") == ""

    def __call__(self, args: list[str], **kwargs) -> subprocess.CompletedProcess[str]:
        _, verb, ref, *rest = args
        path = self.paths.get(ref)
        if path is None:
            return subprocess.CompletedProcess(args, 1, "", f"no workbox named {ref}")
        if verb == "info":
            info = {
                "name": ref,
                "path": str(path),
                "vcs_type": "git",
                "branch": git(path, "rev-parse", "--abbrev-ref", "HEAD"),
                "base_branch": "main",
                "commit": git(path, "rev-parse", "HEAD"),
            }
            return subprocess.CompletedProcess(args, 0, json.dumps(info), "")
        # exec: [hn, exec, ref, --, argv...]
        return subprocess.run(rest[1:], cwd=path, **kwargs)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def boxes(tmp_path, monkeypatch) -> GitWorkboxes:
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    for role in ("AUTHOR", "COMMITTER"):
        monkeypatch.setenv(f"GIT_{role}_NAME", "Tester")
        monkeypatch.setenv(f"GIT_{role}_EMAIL", "tester@example.com")
    workboxes = GitWorkboxes(tmp_path)
    workboxes.init()
    return workboxes


@pytest.fixture
def workspace(boxes) -> HnWorkspace:
    return HnWorkspace(runner=boxes)


@pytest.fixture
def family(boxes, manager):
    """feature -> (tests, docs), each child branched from feature."""
    boxes.branch("feature")
    boxes.branch("tests", "feature")
    boxes.branch("docs", "feature")
    manager.register("feature", "feature")
    manager.register("tests", "tests", parent="feature")
    manager.register("docs", "docs", parent="feature")


@pytest.fixture
def diverged(boxes, manager):
    """feature and tests both rewrite f.txt after tests branched off."""
    boxes.branch("feature")
    boxes.branch("tests", "feature")
    boxes.commit("feature", "f.txt", "parent\n")
    boxes.commit("tests", "f.txt", "child\n")
    manager.register("feature", "feature")
    manager.register("tests", "tests", parent="feature")


# ---------------------------------------------------------------------------
# Clean merges
# ---------------------------------------------------------------------------


class TestCleanMerges:
    def test_cascade_brings_parent_into_children(self, boxes, orchestrator, store, family):
        boxes.commit("feature", "a.txt", "from parent\n")
        before = boxes.head("tests")

        report = orchestrator.cascade("feature")

        assert [r.status for r in report.results] == [TargetStatus.SUCCEEDED] * 2
        for child in ("tests", "docs"):
            assert boxes.read(child, "a.txt") == "from parent\n"
            assert store.info(child).commit_ref == boxes.head(child)
        assert boxes.head("tests") != before

    @pytest.mark.parametrize("strategy", ["merge", "rebase", "squash"])
    def test_gather_lands_every_child(self, boxes, orchestrator, store, family, strategy):
        boxes.commit("tests", "t.txt", "tests\n")
        boxes.commit("docs", "d.txt", "docs\n")
        before = boxes.head("feature")

        report = orchestrator.gather("feature", strategy=strategy)

        assert [r.status for r in report.results] == [TargetStatus.SUCCEEDED] * 2
        assert {"t.txt", "d.txt"} <= boxes.files("feature")
        assert boxes.clean("feature")
        assert boxes.head("feature") != before
        assert store.info("feature").commit_ref == boxes.head("feature")
        assert store.info("tests").closure_candidate

    def test_repeat_cascade_is_a_no_op(self, boxes, orchestrator, family):
        boxes.commit("feature", "a.txt", "from parent\n")
        orchestrator.cascade("feature")
        heads = {c: boxes.head(c) for c in ("tests", "docs")}

        report = orchestrator.cascade("feature")

        assert report.succeeded == 2
        assert {c: boxes.head(c) for c in ("tests", "docs")} == heads


# ---------------------------------------------------------------------------
# Forced retries
# ---------------------------------------------------------------------------


class TestForcedSides:
    @pytest.mark.parametrize(
        "policy, expected",
        [("parent_wins", "parent\n"), ("child_wins", "child\n")],
    )
    def test_cascade(self, boxes, orchestrator, diverged, policy, expected):
        report = orchestrator.cascade("feature", conflict_strategy=policy)

        assert report.result_for("tests").status == TargetStatus.SUCCEEDED
        assert boxes.read("tests", "f.txt") == expected
        assert boxes.clean("tests")

    @pytest.mark.parametrize("strategy", ["merge", "rebase", "squash"])
    @pytest.mark.parametrize(
        "policy, expected",
        [("parent_wins", "parent\n"), ("child_wins", "child\n")],
    )
    def test_gather(self, boxes, orchestrator, diverged, strategy, policy, expected):
        report = orchestrator.gather(
            "feature", ["tests"], strategy=strategy, conflict_strategy=policy
        )

        assert report.result_for("tests").status == TargetStatus.SUCCEEDED
        assert boxes.read("feature", "f.txt") == expected
        assert boxes.clean("feature")

    def test_abort_leaves_parent_untouched(self, boxes, orchestrator, diverged):
        before = boxes.head("feature")

        report = orchestrator.gather("feature", conflict_strategy="abort")

        assert report.result_for("tests").status == TargetStatus.FAILED
        assert boxes.head("feature") == before
        assert boxes.read("feature", "f.txt") == "parent\n"
        assert boxes.clean("feature")
