"""Hupasiya: orchestrate trees of agent sessions across version-controlled workspaces.

Sessions form a forest. Cascade pushes a parent's changes down to its
descendants, gather pulls descendants' work back up, and the shepherd
triages review feedback on a session's change request.
"""

from hupasiya._version import __version__

# Store and engines
from hupasiya.store import SessionStore
from hupasiya.sessions import SessionManager
from hupasiya.tree import SessionTree, TraversalOrder
from hupasiya.orchestration import Orchestrator
from hupasiya.shepherd import ShepherdEngine
from hupasiya.activity import ActivityRecorder

# Conflict resolution
from hupasiya.conflict import (
    ConflictContext,
    MergeSide,
    ResolutionAction,
    ResolutionDirective,
    resolve,
)

# Collaborator protocols
from hupasiya.protocols import (
    Assistant,
    ExecResult,
    ReviewProvider,
    Workspace,
    WorkspaceInfo,
)

# Models
from hupasiya.models.session import (
    ChangeRequestStatus,
    SessionInfo,
    SessionMetrics,
    SessionStatus,
    VcsKind,
)
from hupasiya.models.review import (
    CommentState,
    Confidence,
    ReviewComment,
    ShepherdAction,
    ShepherdAnalysis,
    ShepherdPhase,
)
from hupasiya.models.activity import ActivityEvent, ActivityKind, GlobalStats
from hupasiya.models.orchestration import (
    CommentOutcome,
    ConflictPolicy,
    GatherStrategy,
    MergeDirection,
    OperationReport,
    ResumeChoice,
    ShepherdReport,
    TargetResult,
    TargetStatus,
)
from hupasiya.models.config import HupasiyaConfig, OrchestrationConfig, ShepherdConfig

# Exceptions
from hupasiya.exceptions import (
    AlreadyAttachedError,
    AnalysisFailedError,
    ApplyFailedError,
    CommentNotFoundError,
    ConfigurationError,
    CycleDetectedError,
    ExecutorError,
    FailureKind,
    HasChildrenError,
    HupasiyaError,
    InvalidTargetError,
    InvalidTreeOperationError,
    MergeConflictError,
    NotFoundError,
    ProviderError,
    ProviderUnavailableError,
    SessionExistsError,
    SessionLockedError,
    SessionNotFoundError,
    SuspensionNotFoundError,
    TerminalSessionError,
    ValidationError,
    WorkspaceMissingError,
)

__all__ = [
    "__version__",
    # Store and engines
    "SessionStore",
    "SessionManager",
    "SessionTree",
    "TraversalOrder",
    "Orchestrator",
    "ShepherdEngine",
    "ActivityRecorder",
    # Conflict resolution
    "ConflictContext",
    "MergeSide",
    "ResolutionAction",
    "ResolutionDirective",
    "resolve",
    # Protocols
    "Assistant",
    "ExecResult",
    "ReviewProvider",
    "Workspace",
    "WorkspaceInfo",
    # Models
    "ChangeRequestStatus",
    "SessionInfo",
    "SessionMetrics",
    "SessionStatus",
    "VcsKind",
    "CommentState",
    "Confidence",
    "ReviewComment",
    "ShepherdAction",
    "ShepherdAnalysis",
    "ShepherdPhase",
    "ActivityEvent",
    "ActivityKind",
    "GlobalStats",
    "CommentOutcome",
    "ConflictPolicy",
    "GatherStrategy",
    "MergeDirection",
    "OperationReport",
    "ResumeChoice",
    "ShepherdReport",
    "TargetResult",
    "TargetStatus",
    "HupasiyaConfig",
    "OrchestrationConfig",
    "ShepherdConfig",
    # Exceptions
    "AlreadyAttachedError",
    "AnalysisFailedError",
    "ApplyFailedError",
    "CommentNotFoundError",
    "ConfigurationError",
    "CycleDetectedError",
    "ExecutorError",
    "FailureKind",
    "HasChildrenError",
    "HupasiyaError",
    "InvalidTargetError",
    "InvalidTreeOperationError",
    "MergeConflictError",
    "NotFoundError",
    "ProviderError",
    "ProviderUnavailableError",
    "SessionExistsError",
    "SessionLockedError",
    "SessionNotFoundError",
    "SuspensionNotFoundError",
    "TerminalSessionError",
    "ValidationError",
    "WorkspaceMissingError",
]
