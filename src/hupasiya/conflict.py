"""Conflict resolver.

A pure decision table: given a ConflictPolicy and the context of one
conflicted merge, return a ResolutionDirective telling the orchestration
engine what to do next. No I/O, no state.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional

from hupasiya.models.orchestration import ConflictPolicy, MergeDirection


class ResolutionAction(str, enum.Enum):
    """What the engine does with a conflicted target."""

    ABORT = "abort"  # fail the target, skip every remaining target
    FORCE = "force"  # back out and retry with a forced side
    SUSPEND = "suspend"  # persist the run and return a resume token
    FAIL = "fail"  # fail the target, continue with the rest

    def __str__(self) -> str:
        return self.value


class MergeSide(str, enum.Enum):
    """Side that wins a forced merge, relative to the receiving workspace."""

    OURS = "ours"
    THEIRS = "theirs"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ConflictContext:
    """Everything the resolver may look at for one conflicted merge."""

    direction: MergeDirection
    source_branch: str
    target_session: str
    details: str = ""
    attempt: int = 1  # 2+ means a forced retry already conflicted


@dataclass(frozen=True)
class ResolutionDirective:
    action: ResolutionAction
    side: Optional[MergeSide] = None
    reason: str = ""


def winning_side(policy: ConflictPolicy, direction: MergeDirection) -> MergeSide:
    """Translate parent/child wins into ours/theirs for the receiving workspace.

    Cascade merges the parent into the child, so the parent is ``theirs``.
    Gather merges the child into the parent, so the parent is ``ours``.

    Raises:
        ValueError: If the policy does not name a winning side.
    """
    if policy not in (ConflictPolicy.PARENT_WINS, ConflictPolicy.CHILD_WINS):
        raise ValueError(f"Policy {policy.value} does not pick a side")
    parent_wins = policy == ConflictPolicy.PARENT_WINS
    if direction == MergeDirection.CASCADE:
        return MergeSide.THEIRS if parent_wins else MergeSide.OURS
    return MergeSide.OURS if parent_wins else MergeSide.THEIRS


def resolve(policy: ConflictPolicy, context: ConflictContext) -> ResolutionDirective:
    """Decide how to handle one conflicted merge.

    Args:
        policy: Configured or per-call conflict policy.
        context: The conflicted merge.

    Returns:
        A directive for every combination of policy and context.
    """
    if context.attempt > 1:
        return ResolutionDirective(
            ResolutionAction.FAIL,
            reason=(
                f"forced retry of '{context.source_branch}' into "
                f"'{context.target_session}' still conflicts"
            ),
        )
    if policy == ConflictPolicy.ABORT:
        return ResolutionDirective(
            ResolutionAction.ABORT,
            reason=f"conflict merging '{context.source_branch}'; sweep aborted",
        )
    if policy == ConflictPolicy.PROMPT:
        return ResolutionDirective(
            ResolutionAction.SUSPEND,
            reason="awaiting conflict decision",
        )
    side = winning_side(policy, context.direction)
    return ResolutionDirective(
        ResolutionAction.FORCE,
        side=side,
        reason=f"{policy.value}: retrying with {side.value}",
    )
