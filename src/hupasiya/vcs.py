"""VCS command table.

Maps each closed ``VcsKind`` to the merge, abort and conflict-detection
details the orchestration engine needs. Commands are plain strings handed
to the workspace collaborator; nothing here touches a repository.

Cascade runs in the child's workspace and brings in the parent's branch.
Gather runs in the parent's workspace and brings in the child's branch.
``ours`` and ``theirs`` are always relative to the receiving workspace.
Where a command names the sides the other way round (git rebase replays
the receiving branch onto the incoming one, so the incoming branch is
"ours"), the table lists that strategy under ``inverted``.

Gather squash folds the child's changes into one new change on the
parent. git commits the squash itself; jj moves the child's content into
the parent and keeps the emptied child change so its bookmark survives.
"""

from __future__ import annotations

from dataclasses import dataclass

from hupasiya.conflict import MergeSide
from hupasiya.models.orchestration import GatherStrategy, MergeDirection
from hupasiya.models.session import VcsKind
from hupasiya.protocols import ExecResult


@dataclass(frozen=True)
class VcsCommands:
    """Command templates for one VCS.

    Templates use ``{source}`` (branch being merged in) and ``{target}``
    (branch of the receiving workspace). Forced templates add ``{side}``.
    Gather strategies in ``inverted`` swap ours and theirs when filling
    ``{side}``.
    """

    cascade: str
    gather: dict[GatherStrategy, str]
    forced_cascade: str
    forced_gather: dict[GatherStrategy, str]
    abort: dict[GatherStrategy, str]
    sides: dict[MergeSide, str]
    conflict_markers: tuple[str, ...]
    inverted: frozenset[GatherStrategy] = frozenset()


# Squash only stages; commit unless the child brought nothing new.
_GIT_SQUASH = (
    "{merge} && "
    "(git diff --cached --quiet || git commit --no-edit -m \"Squash {{source}}\")"
)

_TABLE: dict[VcsKind, VcsCommands] = {
    VcsKind.GIT: VcsCommands(
        cascade="git merge --no-edit {source}",
        gather={
            GatherStrategy.MERGE: "git merge --no-edit {source}",
            GatherStrategy.REBASE: "git rebase {source}",
            GatherStrategy.SQUASH: _GIT_SQUASH.format(merge="git merge --squash {source}"),
        },
        forced_cascade="git merge --no-edit -X {side} {source}",
        forced_gather={
            GatherStrategy.MERGE: "git merge --no-edit -X {side} {source}",
            GatherStrategy.REBASE: "git rebase -X {side} {source}",
            GatherStrategy.SQUASH: _GIT_SQUASH.format(
                merge="git merge --squash -X {side} {source}"
            ),
        },
        abort={
            GatherStrategy.MERGE: "git merge --abort",
            GatherStrategy.REBASE: "git rebase --abort",
            GatherStrategy.SQUASH: "git reset --merge",
        },
        sides={MergeSide.OURS: "ours", MergeSide.THEIRS: "theirs"},
        conflict_markers=("CONFLICT (", "Automatic merge failed"),
        inverted=frozenset({GatherStrategy.REBASE}),
    ),
    VcsKind.HG: VcsCommands(
        cascade="hg merge {source}",
        gather={
            GatherStrategy.MERGE: "hg merge {source}",
            GatherStrategy.REBASE: "hg rebase -s {source} -d {target}",
            GatherStrategy.SQUASH: "hg rebase -s {source} -d {target} --collapse",
        },
        forced_cascade="hg merge --tool {side} {source}",
        forced_gather={
            GatherStrategy.MERGE: "hg merge --tool {side} {source}",
            GatherStrategy.REBASE: "hg rebase -s {source} -d {target} --tool {side}",
            GatherStrategy.SQUASH: (
                "hg rebase -s {source} -d {target} --collapse --tool {side}"
            ),
        },
        abort={
            GatherStrategy.MERGE: "hg merge --abort",
            GatherStrategy.REBASE: "hg rebase --abort",
            GatherStrategy.SQUASH: "hg rebase --abort",
        },
        sides={MergeSide.OURS: ":local", MergeSide.THEIRS: ":other"},
        conflict_markers=("unresolved conflicts", "conflicts while merging"),
    ),
    VcsKind.JJ: VcsCommands(
        cascade="jj rebase -d {source}",
        gather={
            GatherStrategy.MERGE: "jj new {target} {source}",
            GatherStrategy.REBASE: "jj rebase -s {source} -d {target}",
            GatherStrategy.SQUASH: (
                "jj squash --from {source} --into {target} --keep-emptied"
            ),
        },
        forced_cascade="jj rebase -d {source} && jj resolve --tool {side}",
        forced_gather={
            GatherStrategy.MERGE: "jj new {target} {source} && jj resolve --tool {side}",
            GatherStrategy.REBASE: (
                "jj rebase -s {source} -d {target} && jj resolve --tool {side}"
            ),
            GatherStrategy.SQUASH: (
                "jj squash --from {source} --into {target} --keep-emptied"
                " && jj resolve --tool {side}"
            ),
        },
        abort={
            GatherStrategy.MERGE: "jj undo",
            GatherStrategy.REBASE: "jj undo",
            GatherStrategy.SQUASH: "jj undo",
        },
        sides={MergeSide.OURS: ":ours", MergeSide.THEIRS: ":theirs"},
        conflict_markers=("New conflicts appeared", "There are unresolved conflicts"),
    ),
}


def commands_for(vcs: VcsKind) -> VcsCommands:
    return _TABLE[vcs]


def merge_command(
    vcs: VcsKind,
    direction: MergeDirection,
    source: str,
    target: str,
    strategy: GatherStrategy = GatherStrategy.MERGE,
    side: MergeSide | None = None,
) -> str:
    """Build the command that merges ``source`` into the receiving branch.

    Args:
        vcs: VCS of the receiving workspace.
        direction: Cascade (parent into child) or gather (child into parent).
        source: Branch being merged in.
        target: Branch of the receiving workspace.
        strategy: Gather command family. Ignored for cascade.
        side: Forced resolution side, relative to the receiving workspace.

    Returns:
        The command string to run in the receiving workspace.
    """
    table = _TABLE[vcs]
    if direction == MergeDirection.CASCADE:
        template = table.cascade if side is None else table.forced_cascade
    else:
        template = table.gather[strategy] if side is None else table.forced_gather[strategy]
    if side is not None and direction == MergeDirection.GATHER and strategy in table.inverted:
        side = MergeSide.THEIRS if side == MergeSide.OURS else MergeSide.OURS
    side_arg = table.sides[side] if side is not None else ""
    return template.format(source=source, target=target, side=side_arg)


def abort_command(
    vcs: VcsKind,
    direction: MergeDirection,
    strategy: GatherStrategy = GatherStrategy.MERGE,
) -> str:
    """Command that backs out an in-progress conflicted merge."""
    if direction == MergeDirection.CASCADE:
        strategy = GatherStrategy.MERGE
    return _TABLE[vcs].abort[strategy]


def is_conflict(vcs: VcsKind, result: ExecResult) -> bool:
    """True if a command result reports merge conflicts.

    jj records conflicts in commits and may exit 0, so its markers are
    checked regardless of exit code. For git and hg a conflict also needs
    a non-zero exit.
    """
    output = result.output.lower()
    markers = [m.lower() for m in _TABLE[vcs].conflict_markers]
    if any(m in output for m in markers):
        return vcs == VcsKind.JJ or not result.ok
    return not result.ok and "conflict" in output
