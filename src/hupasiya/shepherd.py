"""Shepherd workflow engine.

Walks a session's change request through one sweep:

    created -> fetching -> analyzing -> deciding -> applying -> done

Each unresolved comment is analyzed independently. A comment is applied
automatically only when the analysis says FIX, its confidence meets the
threshold, and auto-apply is on. Everything else lands in a state a human
(or a later run) can pick up: queued, awaiting_clarification, deferred,
disagreed, or analysis_failed.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Optional, TypeVar

import tenacity

from hupasiya.activity import ActivityRecorder
from hupasiya.exceptions import (
    AnalysisFailedError,
    ApplyFailedError,
    CommentNotFoundError,
    FailureKind,
    HupasiyaError,
    ProviderUnavailableError,
    ValidationError,
)
from hupasiya.models.activity import ActivityKind
from hupasiya.models.config import HupasiyaConfig
from hupasiya.models.orchestration import CommentOutcome, ShepherdReport
from hupasiya.models.review import (
    CommentState,
    Confidence,
    ReviewComment,
    ShepherdAction,
    ShepherdAnalysis,
    ShepherdPhase,
)
from hupasiya.models.session import SessionInfo
from hupasiya.protocols import Assistant, ReviewProvider, Workspace
from hupasiya.sessions import default_owner, exclusive
from hupasiya.store import SessionStore, utcnow
from hupasiya.storage.schema import ReviewCommentRow, SessionRow, ShepherdAnalysisRow

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Comments a sweep (re)analyzes. Deferred and disagreed comments were
# decided by a human-visible action and are left alone.
_OPEN_STATES = (
    CommentState.PENDING,
    CommentState.QUEUED,
    CommentState.AWAITING_CLARIFICATION,
    CommentState.ANALYSIS_FAILED,
)

_ACTION_STATES: dict[ShepherdAction, tuple[CommentState, ActivityKind]] = {
    ShepherdAction.FIX: (CommentState.QUEUED, ActivityKind.COMMENT_QUEUED),
    ShepherdAction.CLARIFY: (
        CommentState.AWAITING_CLARIFICATION,
        ActivityKind.COMMENT_AWAITING_CLARIFICATION,
    ),
    ShepherdAction.ACKNOWLEDGE: (CommentState.RESOLVED, ActivityKind.COMMENT_ACKNOWLEDGED),
    ShepherdAction.DEFER: (CommentState.DEFERRED, ActivityKind.COMMENT_DEFERRED),
    ShepherdAction.DISAGREE: (CommentState.DISAGREED, ActivityKind.COMMENT_DISAGREED),
}

# Actions whose drafted response goes to the reviewer without a fix.
_POSTED_ACTIONS = frozenset({ShepherdAction.ACKNOWLEDGE, ShepherdAction.CLARIFY})


def _to_comment(row: ReviewCommentRow) -> ReviewComment:
    return ReviewComment(
        id=row.comment_id,
        path=row.path,
        body=row.body,
        author=row.author,
        created_at=row.created_at,
        line=row.line,
        resolved=row.resolved,
        diff_hunk=row.diff_hunk,
    )


def _to_analysis(row: ShepherdAnalysisRow) -> ShepherdAnalysis:
    return ShepherdAnalysis(
        comment_id=row.comment_id,
        action=row.action,
        confidence=row.confidence,
        summary=row.summary,
        assessment=row.assessment,
        changes=row.changes_json,
        response=row.response,
    )


class ShepherdEngine:
    """Triage review comments on a session's change request."""

    def __init__(
        self,
        store: SessionStore,
        provider: ReviewProvider,
        assistant: Assistant,
        workspace: Workspace,
        config: HupasiyaConfig | None = None,
        *,
        recorder: ActivityRecorder | None = None,
        owner: str | None = None,
    ) -> None:
        self._store = store
        self._provider = provider
        self._assistant = assistant
        self._workspace = workspace
        self._config = config or HupasiyaConfig()
        self._recorder = recorder or ActivityRecorder(store)
        self._owner = owner or default_owner()

    # ------------------------------------------------------------------
    # Provider calls with retry
    # ------------------------------------------------------------------

    def _provider_call(self, fn: Callable[..., T], *args: Any) -> T:
        """Call the review provider, retrying transient failures.

        Uses tenacity.Retrying programmatically so the attempt count comes
        from configuration at call time.
        """
        settings = self._config.shepherd
        backoff = settings.provider_backoff
        retryer = tenacity.Retrying(
            retry=tenacity.retry_if_exception_type(ProviderUnavailableError),
            wait=(
                tenacity.wait_exponential(multiplier=backoff, min=backoff, max=30)
                + tenacity.wait_random(0, 2 * backoff)
            ),
            stop=tenacity.stop_after_attempt(settings.provider_attempts),
            before_sleep=tenacity.before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        return retryer(fn, *args)

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    def run(
        self,
        session_ref: str,
        *,
        auto_apply: bool | None = None,
        confidence_threshold: Confidence | str | None = None,
        dry_run: bool = False,
        comment_id: str | None = None,
        cancel: threading.Event | None = None,
    ) -> ShepherdReport:
        """Run one shepherd sweep over the session's change request.

        Args:
            session_ref: Session name or id.
            auto_apply: Apply qualifying FIX analyses. Defaults to configuration.
            confidence_threshold: Minimum confidence for auto-apply.
            dry_run: Analyze only; never apply, post, or change comment state.
            comment_id: Restrict the sweep to one comment.
            cancel: Set to stop before the next comment.

        Returns:
            ShepherdReport with the phase trail and one outcome per comment.

        Raises:
            ValidationError: If the session has no linked change request.
            SessionLockedError: If the session is locked.
            CommentNotFoundError: If ``comment_id`` is not on the change request.
            ProviderUnavailableError: If fetching keeps failing after retries.
        """
        settings = self._config.shepherd
        auto_apply = settings.auto_apply if auto_apply is None else auto_apply
        threshold = (
            Confidence(confidence_threshold)
            if confidence_threshold is not None
            else settings.confidence_threshold
        )

        row = self._store.get_row(session_ref)
        if not row.change_request_ref:
            raise ValidationError(f"Session '{row.name}' has no linked change request")
        cr_ref = row.change_request_ref
        report = ShepherdReport(
            session=row.name,
            change_request_ref=cr_ref,
            phases=[ShepherdPhase.CREATED],
            dry_run=dry_run,
        )
        started = time.monotonic()

        with exclusive(self._store, [row], self._owner):
            report.phases.append(ShepherdPhase.FETCHING)
            work = self._fetch(row, cr_ref, comment_id)

            if work:
                report.phases.append(ShepherdPhase.ANALYZING)
                analyses = self._analyze(row, work, report, dry_run, cancel)

                report.phases.append(ShepherdPhase.DECIDING)
                to_apply = self._decide(
                    row, work, analyses, report, auto_apply, threshold, dry_run
                )

                if to_apply:
                    report.phases.append(ShepherdPhase.APPLYING)
                    for comment, analysis in to_apply:
                        if cancel is not None and cancel.is_set():
                            report.cancelled = True
                            report.outcomes.append(
                                CommentOutcome(
                                    comment_id=comment.id,
                                    state=CommentState.QUEUED,
                                    action=analysis.action,
                                    reason="cancelled",
                                )
                            )
                            self._set_state(row, comment.id, CommentState.QUEUED, "cancelled")
                            continue
                        report.outcomes.append(self._apply(row, comment, analysis))

            report.phases.append(ShepherdPhase.DONE)
            if not dry_run:
                self._recorder.record(
                    row.id,
                    ActivityKind.SHEPHERD_RUN,
                    f"{cr_ref}: {len(report.outcomes)} comment(s), {report.resolved} resolved",
                    duration_secs=time.monotonic() - started,
                )
            self._store.commit()

        order = {c.id: i for i, c in enumerate(work)}
        report.outcomes.sort(key=lambda o: order.get(o.comment_id, len(order)))
        logger.info(
            "shepherd %s: %d outcome(s), %d resolved",
            row.name, len(report.outcomes), report.resolved,
        )
        return report

    def _fetch(
        self, row: SessionRow, cr_ref: str, comment_id: str | None
    ) -> list[ReviewComment]:
        """Fetch comments and status, persist new comments, return the work list."""
        fetched = self._provider_call(self._provider.fetch_comments, cr_ref)
        status = self._provider_call(self._provider.get_status, cr_ref)
        if status != row.change_request_status:
            row.change_request_status = status
            self._recorder.record(
                row.id, ActivityKind.CHANGE_REQUEST_SYNCED, f"{cr_ref} ({status.value})"
            )

        now = utcnow()
        for comment in fetched:
            existing = self._store.reviews.get_comment(row.id, comment.id)
            if existing is None:
                self._store.reviews.save_comment(
                    ReviewCommentRow(
                        session_id=row.id,
                        comment_id=comment.id,
                        path=comment.path,
                        line=comment.line,
                        body=comment.body,
                        author=comment.author,
                        diff_hunk=comment.diff_hunk,
                        resolved=comment.resolved,
                        state=(
                            CommentState.RESOLVED if comment.resolved else CommentState.PENDING
                        ),
                        created_at=comment.created_at,
                        updated_at=now,
                    )
                )
            elif comment.resolved and not existing.resolved:
                existing.resolved = True
                existing.state = CommentState.RESOLVED
                existing.updated_at = now
        self._store.commit()
        logger.debug("Fetched %d comment(s) for %s", len(fetched), cr_ref)

        if comment_id is not None:
            target = self._store.reviews.get_comment(row.id, comment_id)
            if target is None:
                raise CommentNotFoundError(row.name, comment_id)
            return [] if target.resolved else [_to_comment(target)]
        return [_to_comment(r) for r in self._store.reviews.list_comments(row.id, _OPEN_STATES)]

    def _analyze(
        self,
        row: SessionRow,
        work: list[ReviewComment],
        report: ShepherdReport,
        dry_run: bool,
        cancel: threading.Event | None,
    ) -> dict[str, ShepherdAnalysis]:
        info = self._store.to_info(row)
        analyses: dict[str, ShepherdAnalysis] = {}
        fan_out = max(1, self._config.shepherd.fan_out)

        with ThreadPoolExecutor(max_workers=fan_out) as pool:
            for start in range(0, len(work), fan_out):
                batch: list[ReviewComment] = []
                for comment in work[start:start + fan_out]:
                    if cancel is not None and cancel.is_set():
                        report.cancelled = True
                        report.outcomes.append(
                            CommentOutcome(
                                comment_id=comment.id,
                                state=self._current_state(row, comment.id),
                                reason="cancelled",
                            )
                        )
                    else:
                        batch.append(comment)
                futures = [pool.submit(self._analyze_one, c, info) for c in batch]
                for comment, future in zip(batch, futures):
                    analysis, error = future.result()
                    if analysis is not None:
                        analyses[comment.id] = analysis
                        if not dry_run:
                            self._save_analysis(row, analysis)
                        continue
                    report.outcomes.append(
                        CommentOutcome(
                            comment_id=comment.id,
                            state=CommentState.ANALYSIS_FAILED,
                            kind=FailureKind.ANALYSIS_FAILED,
                            reason=str(error),
                        )
                    )
                    if not dry_run:
                        self._set_state(row, comment.id, CommentState.ANALYSIS_FAILED, str(error))
                        self._recorder.record(row.id, ActivityKind.ANALYSIS_FAILED, str(error))
        self._store.commit()
        return analyses

    def _analyze_one(
        self, comment: ReviewComment, info: SessionInfo
    ) -> tuple[Optional[ShepherdAnalysis], Optional[AnalysisFailedError]]:
        """Worker-thread step: never touches the store."""
        try:
            analysis = self._assistant.analyze(comment, info)
        except Exception as exc:  # any assistant failure is per-comment
            logger.warning("Analysis of comment %s failed: %s", comment.id, exc)
            return None, AnalysisFailedError(comment.id, str(exc))
        if analysis.comment_id != comment.id:
            analysis = analysis.model_copy(update={"comment_id": comment.id})
        return analysis, None

    def _decide(
        self,
        row: SessionRow,
        work: list[ReviewComment],
        analyses: dict[str, ShepherdAnalysis],
        report: ShepherdReport,
        auto_apply: bool,
        threshold: Confidence,
        dry_run: bool,
    ) -> list[tuple[ReviewComment, ShepherdAnalysis]]:
        to_apply: list[tuple[ReviewComment, ShepherdAnalysis]] = []
        for comment in work:
            analysis = analyses.get(comment.id)
            if analysis is None:
                continue
            qualifies = (
                analysis.action == ShepherdAction.FIX
                and auto_apply
                and analysis.confidence.meets(threshold)
            )
            if qualifies and not dry_run:
                to_apply.append((comment, analysis))
                continue

            state, kind = _ACTION_STATES[analysis.action]
            outcome = CommentOutcome(comment_id=comment.id, state=state, action=analysis.action)
            if dry_run:
                report.outcomes.append(outcome)
                continue

            if analysis.action in _POSTED_ACTIONS and analysis.response:
                try:
                    self._post(row, comment.id, analysis.response)
                    outcome.response_posted = True
                except HupasiyaError as exc:
                    # Without the reply the comment is not settled; retry next run.
                    logger.warning("Posting reply to %s failed: %s", comment.id, exc)
                    outcome.state = CommentState.PENDING
                    outcome.kind = exc.kind
                    outcome.reason = str(exc)
                    self._set_state(row, comment.id, CommentState.PENDING, str(exc))
                    report.outcomes.append(outcome)
                    continue

            self._set_state(row, comment.id, state, None)
            self._recorder.record(row.id, kind, f"#{comment.id} {analysis.summary}".strip())
            report.outcomes.append(outcome)
        self._store.commit()
        return to_apply

    # ------------------------------------------------------------------
    # Applying
    # ------------------------------------------------------------------

    def _apply(
        self, row: SessionRow, comment: ReviewComment, analysis: ShepherdAnalysis
    ) -> CommentOutcome:
        """Apply a FIX, then resolve the comment and post one reply.

        On failure the comment moves to awaiting_clarification so a human
        (or a later run) can pick it up.
        """
        info = self._store.to_info(row)
        try:
            payload = analysis.changes
            if payload is None:
                try:
                    payload = self._assistant.propose_change(comment, analysis, info)
                except Exception as exc:  # any assistant failure fails this apply
                    raise ApplyFailedError(comment.id, f"no change proposed: {exc}") from exc
            result = self._workspace.apply_change(info.workspace_ref, payload)
            if not result.ok:
                tail = result.output.strip().splitlines()[-1:] or [f"exit {result.exit_code}"]
                raise ApplyFailedError(comment.id, tail[0])
        except (HupasiyaError, OSError) as exc:
            reason = str(exc)
            logger.warning("Applying fix for %s failed: %s", comment.id, reason)
            self._set_state(row, comment.id, CommentState.AWAITING_CLARIFICATION, reason)
            self._recorder.record(row.id, ActivityKind.APPLY_FAILED, f"#{comment.id}: {reason}")
            self._recorder.record(
                row.id, ActivityKind.COMMENT_AWAITING_CLARIFICATION, f"#{comment.id}"
            )
            self._store.commit()
            return CommentOutcome(
                comment_id=comment.id,
                state=CommentState.AWAITING_CLARIFICATION,
                action=analysis.action,
                kind=FailureKind.APPLY_FAILED,
                reason=reason,
            )

        self._set_state(row, comment.id, CommentState.RESOLVED, None)
        self._recorder.record(
            row.id, ActivityKind.COMMENT_APPLIED, f"#{comment.id} {analysis.summary}".strip()
        )
        self._store.commit()

        outcome = CommentOutcome(
            comment_id=comment.id,
            state=CommentState.RESOLVED,
            action=analysis.action,
            applied=True,
        )
        body = analysis.response or f"Addressed: {analysis.summary or comment.location}"
        try:
            self._post(row, comment.id, body)
            outcome.response_posted = True
        except HupasiyaError as exc:
            logger.warning("Posting reply to %s failed: %s", comment.id, exc)
            outcome.kind = exc.kind
            outcome.reason = f"applied, but reply not posted: {exc}"
        self._store.commit()
        return outcome

    def apply(self, session_ref: str, comment_id: str) -> CommentOutcome:
        """Manually apply the latest analysis for one comment.

        Raises:
            CommentNotFoundError: If the comment is not tracked on the session.
            ValidationError: If the comment has never been analyzed.
            SessionLockedError: If the session is locked.
        """
        row = self._store.get_row(session_ref)
        comment_row = self._store.reviews.get_comment(row.id, comment_id)
        if comment_row is None:
            raise CommentNotFoundError(row.name, comment_id)
        if comment_row.state == CommentState.RESOLVED:
            return CommentOutcome(
                comment_id=comment_id, state=CommentState.RESOLVED, reason="already resolved"
            )
        analysis_row = self._store.reviews.latest_analysis(row.id, comment_id)
        if analysis_row is None:
            raise ValidationError(
                f"Comment {comment_id} has not been analyzed; run shepherd first"
            )
        with exclusive(self._store, [row], self._owner):
            return self._apply(row, _to_comment(comment_row), _to_analysis(analysis_row))

    # ------------------------------------------------------------------
    # Store helpers
    # ------------------------------------------------------------------

    def _post(self, row: SessionRow, comment_id: str, body: str) -> None:
        self._provider_call(
            self._provider.post_response, row.change_request_ref, comment_id, body
        )
        self._recorder.record(row.id, ActivityKind.RESPONSE_POSTED, f"#{comment_id}")

    def _save_analysis(self, row: SessionRow, analysis: ShepherdAnalysis) -> None:
        self._store.reviews.save_analysis(
            ShepherdAnalysisRow(
                session_id=row.id,
                comment_id=analysis.comment_id,
                action=analysis.action,
                confidence=analysis.confidence,
                summary=analysis.summary,
                assessment=analysis.assessment,
                changes_json=analysis.changes,
                response=analysis.response,
                created_at=utcnow(),
            )
        )
        self._recorder.record(row.id, ActivityKind.COMMENT_ANALYZED, str(analysis))

    def _set_state(
        self, row: SessionRow, comment_id: str, state: CommentState, reason: str | None
    ) -> None:
        comment = self._store.reviews.get_comment(row.id, comment_id)
        if comment is None:
            return
        comment.state = state
        comment.reason = reason
        comment.resolved = state == CommentState.RESOLVED
        comment.updated_at = utcnow()
        self._store.reviews.save_comment(comment)

    def _current_state(self, row: SessionRow, comment_id: str) -> CommentState:
        comment = self._store.reviews.get_comment(row.id, comment_id)
        return comment.state if comment is not None else CommentState.PENDING

    def status(self, session_ref: str) -> dict[CommentState, int]:
        """Count tracked comments per state (every state present, zeros included)."""
        return comment_counts(self._store, session_ref)


def comment_counts(store: SessionStore, session_ref: str) -> dict[CommentState, int]:
    """Per-state comment counts for a session, without any collaborator."""
    row = store.get_row(session_ref)
    counts = {state: 0 for state in CommentState}
    for comment in store.reviews.list_comments(row.id):
        counts[comment.state] += 1
    return counts
