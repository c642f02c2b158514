"""Hupasiya exception hierarchy.

All Hupasiya-specific exceptions inherit from HupasiyaError. Every class
carries a ``kind`` naming its entry in the failure taxonomy so per-target
results can report failures without holding on to exception objects.
"""

from __future__ import annotations

import enum


class FailureKind(str, enum.Enum):
    """Failure taxonomy shared by exceptions and per-target results."""

    NOT_FOUND = "not_found"
    INVALID_TREE_OPERATION = "invalid_tree_operation"
    LOCKED = "locked"
    WORKSPACE_MISSING = "workspace_missing"
    MERGE_CONFLICT = "merge_conflict"
    EXECUTOR_FAILURE = "executor_failure"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    ANALYSIS_FAILED = "analysis_failed"
    APPLY_FAILED = "apply_failed"
    VALIDATION = "validation"

    def __str__(self) -> str:
        return self.value


class HupasiyaError(Exception):
    """Base exception for all Hupasiya errors."""

    kind: FailureKind = FailureKind.VALIDATION


# ---------------------------------------------------------------------------
# Lookup failures
# ---------------------------------------------------------------------------


class NotFoundError(HupasiyaError):
    """Base for missing sessions, comments, and suspension tokens."""

    kind = FailureKind.NOT_FOUND


class SessionNotFoundError(NotFoundError):
    """Raised when a session lookup (by id or name) fails."""

    def __init__(self, ref: str) -> None:
        self.ref = ref
        super().__init__(f"Session '{ref}' not found")


class CommentNotFoundError(NotFoundError):
    """Raised when a review comment is not tracked on a session."""

    def __init__(self, session_name: str, comment_id: str) -> None:
        self.session_name = session_name
        self.comment_id = comment_id
        super().__init__(
            f"Comment {comment_id} not found on session '{session_name}'"
        )


class SuspensionNotFoundError(NotFoundError):
    """Raised when a resume token is unknown or already consumed."""

    def __init__(self, token: str) -> None:
        self.token = token
        super().__init__(f"No pending suspension for token: {token}")


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ValidationError(HupasiyaError):
    """Raised when an operation's inputs are rejected before any side effect.

    Named ValidationError in our namespace only; callers that also use
    pydantic should import it qualified.
    """

    kind = FailureKind.VALIDATION


class SessionExistsError(ValidationError):
    """Raised when registering a session whose name is taken."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Session '{name}' already exists")


class InvalidSessionNameError(ValidationError):
    """Raised when a session name violates naming rules."""

    def __init__(self, name: str, reason: str) -> None:
        self.name = name
        self.reason = reason
        super().__init__(f"Invalid session name '{name}': {reason}")


class TerminalSessionError(ValidationError):
    """Raised when an integrated/archived/abandoned session is targeted."""

    def __init__(self, name: str, status: str) -> None:
        self.name = name
        self.status = status
        super().__init__(
            f"Session '{name}' is {status} and cannot be a cascade or gather target"
        )


class InvalidTargetError(ValidationError):
    """Raised when a named target is not a descendant of the operating session."""

    def __init__(self, name: str, root: str) -> None:
        self.name = name
        self.root = root
        super().__init__(f"Session '{name}' is not a descendant of '{root}'")


class ConfigurationError(ValidationError):
    """Raised for configuration problems such as an unknown VCS kind."""


# ---------------------------------------------------------------------------
# Tree operations
# ---------------------------------------------------------------------------


class InvalidTreeOperationError(HupasiyaError):
    """Base for attach/detach operations that would break the forest."""

    kind = FailureKind.INVALID_TREE_OPERATION


class CycleDetectedError(InvalidTreeOperationError):
    """Raised when attaching would make a session its own ancestor."""

    def __init__(self, parent: str, child: str) -> None:
        self.parent = parent
        self.child = child
        super().__init__(
            f"Cannot attach '{child}' under '{parent}': "
            f"'{child}' is '{parent}' or one of its ancestors"
        )


class AlreadyAttachedError(InvalidTreeOperationError):
    """Raised when a child already has a different parent."""

    def __init__(self, child: str, current_parent: str) -> None:
        self.child = child
        self.current_parent = current_parent
        super().__init__(
            f"Session '{child}' is already attached to '{current_parent}'. "
            f"Detach it first."
        )


class HasChildrenError(InvalidTreeOperationError):
    """Raised when detaching a session that still has active children."""

    def __init__(self, name: str, children: list[str]) -> None:
        self.name = name
        self.children = children
        super().__init__(
            f"Session '{name}' has active children ({', '.join(children)}). "
            f"Use cascade_detach=True to re-parent them."
        )


# ---------------------------------------------------------------------------
# Locking
# ---------------------------------------------------------------------------


class SessionLockedError(HupasiyaError):
    """Raised when a session's lock is held by someone else."""

    kind = FailureKind.LOCKED

    def __init__(self, name: str, locked_by: str | None) -> None:
        self.name = name
        self.locked_by = locked_by
        holder = locked_by or "another operation"
        super().__init__(f"Session '{name}' is locked by {holder}")


# ---------------------------------------------------------------------------
# Workspace / executor
# ---------------------------------------------------------------------------


class WorkspaceMissingError(HupasiyaError):
    """Raised when the workspace collaborator cannot resolve a session's workspace."""

    kind = FailureKind.WORKSPACE_MISSING

    def __init__(self, workspace_ref: str) -> None:
        self.workspace_ref = workspace_ref
        super().__init__(f"Workspace '{workspace_ref}' not found")


class ExecutorError(HupasiyaError):
    """Raised when a workspace command fails for a reason other than a conflict."""

    kind = FailureKind.EXECUTOR_FAILURE

    def __init__(self, command: str, exit_code: int, output: str = "") -> None:
        self.command = command
        self.exit_code = exit_code
        self.output = output
        msg = f"Command '{command}' failed with exit code {exit_code}"
        tail = output.strip().splitlines()[-1:] if output.strip() else []
        if tail:
            msg += f": {tail[0]}"
        super().__init__(msg)


class MergeConflictError(HupasiyaError):
    """Raised when a merge leaves conflicts that policy did not resolve."""

    kind = FailureKind.MERGE_CONFLICT

    def __init__(self, source_branch: str, target: str, details: str = "") -> None:
        self.source_branch = source_branch
        self.target = target
        msg = f"Merging '{source_branch}' into '{target}' produced conflicts"
        if details:
            msg += f": {details}"
        super().__init__(msg)


# ---------------------------------------------------------------------------
# Review provider / assistant
# ---------------------------------------------------------------------------


class ProviderUnavailableError(HupasiyaError):
    """Transient review-provider failure (network, 5xx, rate limit). Retried."""

    kind = FailureKind.PROVIDER_UNAVAILABLE


class ProviderError(HupasiyaError):
    """Non-transient review-provider failure (auth, bad request). Not retried."""

    kind = FailureKind.PROVIDER_UNAVAILABLE


class AnalysisFailedError(HupasiyaError):
    """Raised when the assistant cannot analyze a single comment."""

    kind = FailureKind.ANALYSIS_FAILED

    def __init__(self, comment_id: str, reason: str) -> None:
        self.comment_id = comment_id
        self.reason = reason
        super().__init__(f"Analysis of comment {comment_id} failed: {reason}")


class ApplyFailedError(HupasiyaError):
    """Raised when a proposed change cannot be applied to the workspace."""

    kind = FailureKind.APPLY_FAILED

    def __init__(self, comment_id: str, reason: str) -> None:
        self.comment_id = comment_id
        self.reason = reason
        super().__init__(f"Applying fix for comment {comment_id} failed: {reason}")


class AssistantConfigError(HupasiyaError):
    """Missing or invalid assistant configuration (e.g., no API key)."""


class AssistantResponseError(HupasiyaError):
    """Unexpected response format from the assistant API."""

    kind = FailureKind.ANALYSIS_FAILED
