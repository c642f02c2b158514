"""Orchestration engine: cascade, gather, and resume.

Cascade pushes each parent's branch down into its children (breadth-first,
so a parent is up to date before its own children merge from it). Gather
pulls each child's branch up into its parent (post-order, so leaf work
lands in intermediate sessions before those land in the root).

Every sweep returns an OperationReport with one TargetResult per target.
Partial success is normal: already-merged targets are never rolled back.

Workspace commands may run on worker threads (bounded by ``fan_out``);
all store reads and writes happen on the calling thread.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional, Sequence

from hupasiya import vcs
from hupasiya.activity import ActivityRecorder
from hupasiya.conflict import (
    ConflictContext,
    MergeSide,
    ResolutionAction,
    resolve,
    winning_side,
)
from hupasiya.exceptions import (
    ExecutorError,
    FailureKind,
    HupasiyaError,
    InvalidTargetError,
    MergeConflictError,
    SessionNotFoundError,
    SuspensionNotFoundError,
    TerminalSessionError,
    WorkspaceMissingError,
)
from hupasiya.models.activity import ActivityKind
from hupasiya.models.config import HupasiyaConfig
from hupasiya.models.orchestration import (
    ConflictPolicy,
    GatherStrategy,
    MergeDirection,
    OperationReport,
    ResumeChoice,
    TargetResult,
    TargetStatus,
)
from hupasiya.models.session import SessionInfo, VcsKind
from hupasiya.protocols import ExecResult, Workspace
from hupasiya.sessions import default_owner, exclusive
from hupasiya.store import SessionStore, utcnow
from hupasiya.storage.schema import SessionRow, SuspensionRow
from hupasiya.tree import SessionTree, TraversalOrder

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Job:
    """One parent/child pair to merge.

    ``node`` is the descendant that was selected as a target. ``receiver``
    is where the command runs and ``source`` is the branch merged in.
    """

    node: SessionInfo
    receiver: SessionInfo
    source: SessionInfo
    depth: int


@dataclass
class _Outcome:
    result: TargetResult
    action: Optional[ResolutionAction] = None
    conflict_details: Optional[str] = None
    commit: Optional[str] = None
    duration: float = 0.0


def _tail(output: str, lines: int = 3) -> str:
    return " | ".join(output.strip().splitlines()[-lines:])


class Orchestrator:
    """Runs cascade and gather sweeps over a session's descendants."""

    def __init__(
        self,
        store: SessionStore,
        workspace: Workspace,
        config: HupasiyaConfig | None = None,
        *,
        recorder: ActivityRecorder | None = None,
        owner: str | None = None,
    ) -> None:
        self._store = store
        self._workspace = workspace
        self._config = config or HupasiyaConfig()
        self._recorder = recorder or ActivityRecorder(store)
        self._tree = SessionTree(store, self._recorder)
        self._owner = owner or default_owner()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def cascade(
        self,
        session_ref: str,
        targets: Sequence[str] | None = None,
        *,
        dry_run: bool = False,
        conflict_strategy: ConflictPolicy | str | None = None,
        fan_out: int | None = None,
        cancel: threading.Event | None = None,
    ) -> OperationReport:
        """Merge each target's parent branch into the target, breadth-first.

        Args:
            session_ref: Operating session (name or id).
            targets: Descendants to update. Defaults to every non-terminal
                descendant.
            dry_run: Report the commands that would run without running them.
            conflict_strategy: Override the configured conflict policy.
            fan_out: Maximum concurrent workspace commands.
            cancel: Set to stop before the next target.

        Returns:
            Per-target report in breadth-first order.

        Raises:
            SessionNotFoundError: If the session or a named target is unknown.
            InvalidTargetError: If a named target is not a descendant.
            TerminalSessionError: If a named target is terminal.
            SessionLockedError: If the session or any target is locked.
        """
        return self._run(
            MergeDirection.CASCADE,
            session_ref,
            targets,
            dry_run=dry_run,
            policy=conflict_strategy,
            strategy=None,
            fan_out=fan_out,
            cancel=cancel,
        )

    def gather(
        self,
        session_ref: str,
        targets: Sequence[str] | None = None,
        *,
        strategy: GatherStrategy | str | None = None,
        dry_run: bool = False,
        conflict_strategy: ConflictPolicy | str | None = None,
        fan_out: int | None = None,
        cancel: threading.Event | None = None,
    ) -> OperationReport:
        """Merge each target's branch into its own parent, in post-order.

        Successfully gathered targets are flagged as closure candidates;
        they are never closed here.

        Args:
            session_ref: Operating session (name or id).
            targets: Descendants to gather. Defaults to every non-terminal
                descendant.
            strategy: merge, rebase, or squash. Defaults to configuration.
            dry_run: Report the commands that would run without running them.
            conflict_strategy: Override the configured conflict policy.
            fan_out: Maximum concurrent workspace commands.
            cancel: Set to stop before the next target.

        Returns:
            Per-target report in post-order.
        """
        return self._run(
            MergeDirection.GATHER,
            session_ref,
            targets,
            dry_run=dry_run,
            policy=conflict_strategy,
            strategy=strategy,
            fan_out=fan_out,
            cancel=cancel,
        )

    def resume(
        self,
        token: str,
        choice: ResumeChoice | str,
        *,
        fan_out: int | None = None,
        cancel: threading.Event | None = None,
    ) -> OperationReport:
        """Continue a sweep that was suspended on a prompt-policy conflict.

        The choice settles the suspended target; the remaining targets are
        then processed with the sweep's original conflict policy (and may
        suspend again with a new token).

        Raises:
            SuspensionNotFoundError: If the token is unknown or already used.
            SessionLockedError: If any involved session is now locked.
        """
        choice = ResumeChoice(choice)
        suspension = self._store.suspensions.get(token)
        if suspension is None:
            raise SuspensionNotFoundError(token)
        operator = self._store.sessions.get(suspension.session_id)
        if operator is None:
            raise SessionNotFoundError(suspension.session_id)

        direction = suspension.operation
        policy = suspension.conflict_strategy
        strategy = suspension.gather_strategy
        node_ids = [suspension.target_id, *suspension.remaining_json]

        nodes: list[SessionInfo] = []
        for node_id in node_ids:
            row = self._store.sessions.get(node_id)
            if row is None:
                raise SessionNotFoundError(node_id)
            nodes.append(self._store.to_info(row))
        jobs = self._jobs(direction, operator, nodes)

        report = OperationReport(operation=direction, session=operator.name)
        with exclusive(self._store, self._lock_rows(operator, jobs), self._owner):
            self._recorder.record(
                operator.id,
                ActivityKind.CONFLICT_RESUMED,
                f"{direction.value} resumed at {jobs[0].node.name}: {choice.value}",
            )
            self._store.suspensions.delete(token)
            self._store.commit()

            first, rest = jobs[0], jobs[1:]
            if choice == ResumeChoice.ABORT:
                report.results.append(
                    self._result(
                        first,
                        TargetStatus.FAILED,
                        kind=FailureKind.MERGE_CONFLICT,
                        reason="aborted on resume",
                    )
                )
                self._recorder.record(
                    first.receiver.id, ActivityKind.MERGE_FAILED, "aborted on resume"
                )
                self._store.commit()
                report.results.extend(
                    self._result(j, TargetStatus.SKIPPED, reason="aborted") for j in rest
                )
                return report

            if choice == ResumeChoice.SKIP:
                report.results.append(
                    self._result(first, TargetStatus.SKIPPED, reason="skipped on resume")
                )
                swept = self._sweep(
                    direction, operator, rest, policy, strategy, False,
                    self._fan_out(fan_out), cancel,
                )
            else:
                forced_policy = ConflictPolicy(choice.value)
                side = winning_side(forced_policy, direction)
                swept = self._sweep(
                    direction, operator, jobs, policy, strategy, False,
                    self._fan_out(fan_out), cancel, forced={0: side},
                )
            report.results.extend(swept.results)
            report.suspended_token = swept.suspended_token
            report.cancelled = swept.cancelled
        return report

    def pending_suspensions(self, session_ref: str) -> list[SuspensionRow]:
        row = self._store.get_row(session_ref)
        return self._store.suspensions.list_for_session(row.id)

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def _run(
        self,
        direction: MergeDirection,
        session_ref: str,
        targets: Sequence[str] | None,
        *,
        dry_run: bool,
        policy: ConflictPolicy | str | None,
        strategy: GatherStrategy | str | None,
        fan_out: int | None,
        cancel: threading.Event | None,
    ) -> OperationReport:
        settings = self._config.orchestration
        policy = ConflictPolicy(policy) if policy is not None else settings.conflict_strategy
        strategy = (
            GatherStrategy(strategy) if strategy is not None else settings.gather_strategy
        )

        operator = self._store.get_row(session_ref)
        nodes = self._select(direction, operator, targets)
        jobs = self._jobs(direction, operator, nodes)
        logger.info(
            "%s from %s: %d target(s), policy=%s, dry_run=%s",
            direction.value, operator.name, len(jobs), policy.value, dry_run,
        )

        with exclusive(self._store, self._lock_rows(operator, jobs), self._owner):
            return self._sweep(
                direction, operator, jobs, policy, strategy, dry_run,
                self._fan_out(fan_out), cancel,
            )

    def _select(
        self,
        direction: MergeDirection,
        operator: SessionRow,
        targets: Sequence[str] | None,
    ) -> list[SessionInfo]:
        order = (
            TraversalOrder.BREADTH_FIRST
            if direction == MergeDirection.CASCADE
            else TraversalOrder.POST_ORDER
        )
        if targets is None:
            return list(
                self._tree.descendants(operator.id, order, prune=lambda s: s.is_terminal)
            )

        everything = list(self._tree.descendants(operator.id, order))
        descendant_ids = {d.id for d in everything}
        wanted: set[str] = set()
        for ref in targets:
            row = self._store.get_row(ref)
            if row.id not in descendant_ids:
                raise InvalidTargetError(row.name, operator.name)
            if row.status.is_terminal:
                raise TerminalSessionError(row.name, row.status.value)
            wanted.add(row.id)
        return [d for d in everything if d.id in wanted]

    def _jobs(
        self, direction: MergeDirection, operator: SessionRow, nodes: list[SessionInfo]
    ) -> list[_Job]:
        depths: dict[str, int] = {}

        def depth_of(info: SessionInfo) -> int:
            if info.id not in depths:
                depths[info.id] = self._tree.depth(info.id)
            return depths[info.id]

        jobs: list[_Job] = []
        for node in nodes:
            if node.parent_id is None:
                raise InvalidTargetError(node.name, operator.name)
            parent = self._store.info(node.parent_id)
            if direction == MergeDirection.CASCADE:
                receiver, source = node, parent
            else:
                receiver, source = parent, node
            jobs.append(_Job(node=node, receiver=receiver, source=source, depth=depth_of(node)))
        return jobs

    def _lock_rows(self, operator: SessionRow, jobs: list[_Job]) -> list[SessionRow]:
        rows = [operator]
        for job in jobs:
            for info in (job.node, job.receiver):
                row = self._store.sessions.get(info.id)
                if row is not None:
                    rows.append(row)
        return rows

    def _fan_out(self, fan_out: int | None) -> int:
        value = fan_out if fan_out is not None else self._config.orchestration.fan_out
        return max(1, value)

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    def _batches(
        self, direction: MergeDirection, jobs: list[_Job], fan_out: int
    ) -> list[list[int]]:
        """Group job indexes into batches that may run concurrently.

        Sequential runs keep the exact traversal order. Concurrent runs go
        level by level (shallow first for cascade, deep first for gather)
        and never put two jobs with the same receiving workspace in one batch.
        """
        if fan_out <= 1:
            return [[i] for i in range(len(jobs))]
        levels = sorted(
            {j.depth for j in jobs},
            reverse=direction == MergeDirection.GATHER,
        )
        batches: list[list[int]] = []
        for level in levels:
            pending = [i for i, j in enumerate(jobs) if j.depth == level]
            while pending:
                batch: list[int] = []
                receivers: set[str] = set()
                for i in list(pending):
                    if len(batch) >= fan_out:
                        break
                    if jobs[i].receiver.id in receivers:
                        continue
                    receivers.add(jobs[i].receiver.id)
                    batch.append(i)
                    pending.remove(i)
                batches.append(batch)
        return batches

    def _sweep(
        self,
        direction: MergeDirection,
        operator: SessionRow,
        jobs: list[_Job],
        policy: ConflictPolicy,
        strategy: GatherStrategy,
        dry_run: bool,
        fan_out: int,
        cancel: threading.Event | None,
        *,
        forced: dict[int, MergeSide] | None = None,
    ) -> OperationReport:
        forced = forced or {}
        report = OperationReport(operation=direction, session=operator.name, dry_run=dry_run)
        results: dict[int, TargetResult] = {}
        stop: Optional[ResolutionAction] = None
        stop_reason = ""
        suspended_at: Optional[int] = None
        requeue: list[int] = []

        with ThreadPoolExecutor(max_workers=fan_out) as pool:
            for batch in self._batches(direction, jobs, fan_out):
                if stop is not None:
                    break
                runnable: list[int] = []
                for i in batch:
                    if cancel is not None and cancel.is_set():
                        report.cancelled = True
                        results[i] = self._result(
                            jobs[i], TargetStatus.SKIPPED, reason="cancelled"
                        )
                    else:
                        runnable.append(i)
                if not runnable:
                    continue

                futures = [
                    pool.submit(
                        self._run_job, direction, jobs[i], policy, strategy,
                        dry_run, forced.get(i),
                    )
                    for i in runnable
                ]
                for i, future in zip(runnable, futures):
                    outcome = future.result()
                    self._record(direction, jobs[i], outcome)
                    if outcome.action == ResolutionAction.SUSPEND:
                        if suspended_at is None:
                            suspended_at = i
                            results[i] = outcome.result
                        else:
                            requeue.append(i)
                            results[i] = self._result(
                                jobs[i], TargetStatus.PENDING, reason="conflict, awaiting resume"
                            )
                        stop = ResolutionAction.SUSPEND
                        continue
                    results[i] = outcome.result
                    if outcome.action == ResolutionAction.ABORT and stop is None:
                        stop = ResolutionAction.ABORT
                        stop_reason = f"aborted after conflict in {jobs[i].receiver.name}"

        unprocessed = [i for i in range(len(jobs)) if i not in results]
        if stop == ResolutionAction.SUSPEND and suspended_at is not None:
            remaining = requeue + unprocessed
            token = self._suspend(direction, operator, jobs, suspended_at, remaining,
                                  policy, strategy, results[suspended_at])
            report.suspended_token = token
            for i in unprocessed:
                results[i] = self._result(jobs[i], TargetStatus.PENDING, reason="awaiting resume")
        else:
            for i in unprocessed:
                results[i] = self._result(jobs[i], TargetStatus.SKIPPED, reason=stop_reason)

        report.results = [results[i] for i in range(len(jobs))]
        logger.info("%s from %s: %s", direction.value, operator.name, report.summary())
        return report

    def _suspend(
        self,
        direction: MergeDirection,
        operator: SessionRow,
        jobs: list[_Job],
        index: int,
        remaining: list[int],
        policy: ConflictPolicy,
        strategy: GatherStrategy,
        result: TargetResult,
    ) -> str:
        token = uuid.uuid4().hex
        job = jobs[index]
        self._store.suspensions.save(
            SuspensionRow(
                token=token,
                session_id=operator.id,
                operation=direction,
                target_id=job.node.id,
                remaining_json=[jobs[i].node.id for i in remaining],
                gather_strategy=strategy,
                conflict_strategy=policy,
                details=result.reason or "",
                created_at=utcnow(),
            )
        )
        self._recorder.record(
            operator.id,
            ActivityKind.CONFLICT_SUSPENDED,
            f"{direction.value} suspended at {job.node.name} (token {token})",
        )
        self._store.commit()
        logger.warning(
            "%s suspended on conflict in %s; resume with token %s",
            direction.value, job.receiver.name, token,
        )
        return token

    # ------------------------------------------------------------------
    # Per-target pipeline (worker threads: no store access)
    # ------------------------------------------------------------------

    def _result(self, job: _Job, status: TargetStatus, **kwargs: object) -> TargetResult:
        return TargetResult(
            session=job.receiver.name, source=job.source.name, status=status, **kwargs
        )

    def _execute(self, ref: str, command: str) -> ExecResult:
        return self._workspace.execute(
            ref, command, timeout=self._config.orchestration.merge_timeout
        )

    def _run_job(
        self,
        direction: MergeDirection,
        job: _Job,
        policy: ConflictPolicy,
        strategy: GatherStrategy,
        dry_run: bool,
        forced_side: MergeSide | None,
    ) -> _Outcome:
        started = time.monotonic()
        try:
            outcome = self._merge(direction, job, policy, strategy, dry_run, forced_side)
        except HupasiyaError as exc:
            logger.warning("%s into %s failed: %s", job.source.name, job.receiver.name, exc)
            outcome = _Outcome(
                self._result(job, TargetStatus.FAILED, kind=exc.kind, reason=str(exc))
            )
        except OSError as exc:
            logger.warning("%s into %s failed: %s", job.source.name, job.receiver.name, exc)
            outcome = _Outcome(
                self._result(
                    job, TargetStatus.FAILED, kind=FailureKind.EXECUTOR_FAILURE, reason=str(exc)
                )
            )
        outcome.duration = time.monotonic() - started
        return outcome

    def _merge(
        self,
        direction: MergeDirection,
        job: _Job,
        policy: ConflictPolicy,
        strategy: GatherStrategy,
        dry_run: bool,
        forced_side: MergeSide | None,
    ) -> _Outcome:
        ref = job.receiver.workspace_ref
        ws = self._workspace.resolve(ref)
        if ws is None:
            raise WorkspaceMissingError(ref)

        kind = ws.vcs_kind
        source_branch, target_branch = job.source.branch, job.receiver.branch
        command = vcs.merge_command(
            kind, direction, source_branch, target_branch, strategy, side=forced_side
        )
        if dry_run:
            return _Outcome(self._result(job, TargetStatus.DRY_RUN, command=command))

        logger.debug("[%s] %s", job.receiver.name, command)
        result = self._execute(ref, command)
        attempt = 2 if forced_side is not None else 1
        side = forced_side
        conflicted = False

        while vcs.is_conflict(kind, result):
            conflicted = True
            details = _tail(result.output)
            self._back_out(ref, kind, direction, strategy)
            directive = resolve(
                policy,
                ConflictContext(
                    direction=direction,
                    source_branch=source_branch,
                    target_session=job.receiver.name,
                    details=details,
                    attempt=attempt,
                ),
            )
            if directive.action == ResolutionAction.FORCE:
                side = directive.side
                command = vcs.merge_command(
                    kind, direction, source_branch, target_branch, strategy, side=side
                )
                logger.debug("[%s] %s (%s)", job.receiver.name, command, directive.reason)
                result = self._execute(ref, command)
                attempt += 1
                continue

            error = MergeConflictError(source_branch, job.receiver.name, details)
            if directive.action == ResolutionAction.SUSPEND:
                status = TargetStatus.SUSPENDED
            else:
                status = TargetStatus.FAILED
            return _Outcome(
                self._result(
                    job,
                    status,
                    command=command,
                    kind=FailureKind.MERGE_CONFLICT,
                    reason=directive.reason or str(error),
                    output=result.output,
                ),
                action=directive.action,
                conflict_details=details,
            )

        if not result.ok:
            raise ExecutorError(command, result.exit_code, result.output)

        after = self._workspace.resolve(ref)
        return _Outcome(
            self._result(
                job,
                TargetStatus.SUCCEEDED,
                command=command,
                forced_side=side.value if side is not None else None,
                output=result.output,
            ),
            conflict_details=f"resolved with {side.value}" if conflicted and side else None,
            commit=after.commit if after is not None else None,
        )

    def _back_out(
        self,
        ref: str,
        kind: VcsKind,
        direction: MergeDirection,
        strategy: GatherStrategy,
    ) -> None:
        command = vcs.abort_command(kind, direction, strategy)
        result = self._execute(ref, command)
        if not result.ok:
            logger.warning("Backing out with '%s' failed: %s", command, _tail(result.output))

    # ------------------------------------------------------------------
    # Recording (calling thread)
    # ------------------------------------------------------------------

    def _record(self, direction: MergeDirection, job: _Job, outcome: _Outcome) -> None:
        result = outcome.result
        receiver = self._store.sessions.get(job.receiver.id)
        if receiver is None:
            return
        if outcome.conflict_details is not None:
            self._recorder.record(
                receiver.id,
                ActivityKind.MERGE_CONFLICT,
                f"{job.source.name}: {outcome.conflict_details}",
            )

        if result.status == TargetStatus.SUCCEEDED:
            if outcome.commit is not None:
                receiver.commit_ref = outcome.commit
            kind = (
                ActivityKind.CASCADED
                if direction == MergeDirection.CASCADE
                else ActivityKind.GATHERED
            )
            detail = f"from {job.source.name}"
            if result.forced_side:
                detail += f" ({result.forced_side} wins)"
            self._recorder.record(receiver.id, kind, detail, duration_secs=outcome.duration)
            if direction == MergeDirection.GATHER:
                child = self._store.sessions.get(job.source.id)
                if child is not None and not child.closure_candidate:
                    child.closure_candidate = True
                    self._recorder.record(
                        child.id, ActivityKind.CLOSURE_FLAGGED, f"gathered into {receiver.name}"
                    )
        elif result.status == TargetStatus.FAILED:
            self._recorder.record(
                receiver.id,
                ActivityKind.MERGE_FAILED,
                f"{job.source.name}: {result.reason}",
            )
        self._store.commit()
