"""
Intent Governance - intent-gated mutation control for AI coding agents

Philosophy: no code change without a declared, scoped, approved intent.

NOT an executor. The engine only judges and records:
- Mutating operations require an active intent (select or create first)
- File targets must sit inside the intent's owned scope
- Targets changed behind the session's back are refused (stale file)
- Every successful change lands in an append-only trace ledger

Architecture:
    Agent → select_intent → ContextBundle
        ↓
    GovernanceEngine.pre_check → ALLOW / DENY(StructuredError)
        ↓
    Caller performs the operation
        ↓
    GovernanceEngine.post_record → agent_trace.jsonl + intent_map.md

Key Principle: denials are structured and self-describing so an autonomous
caller can recover without a human in the loop.
"""

from .models import (
    Intent,
    IntentDescriptor,
    IntentStatus,
    InvalidStatusTransition,
    MutationClass,
    Confidence,
    MutationClassification,
    TraceEntry,
    TraceFile,
    TraceConversation,
    TraceRange,
    LessonCategory,
    ContextBundle
)

from .errors import (
    ErrorKind,
    StructuredError,
    GovernanceError,
    IntentNotSelected,
    IntentNotFound,
    IntentProtected,
    IntentAlreadyExists,
    InvalidIntentDescriptor,
    ScopeViolation,
    StaleFile,
    UserRejected,
    ArchitectureMissing,
    PlanningPrerequisiteMissing,
    GovernanceInternalError,
    SidecarError
)

from .hashing import (
    compute_content_hash,
    format_content_hash,
    extract_block
)

from .similarity import (
    levenshtein_distance,
    similarity
)

from .scope import (
    match_glob,
    is_in_scope,
    find_covering_intents
)

from .stale_guard import (
    StaleFileGuard,
    UnseenPolicy,
    FreshnessResult
)

from .classifier import (
    MutationClassifier,
    ClassifierThresholds
)

from .config import (
    GovernanceConfig,
    load_config
)

from .storage import SidecarStore

from .store_lock import (
    StoreLock,
    LockAcquisitionError
)

from .operations import (
    OperationKind,
    OperationCatalog,
    Target,
    Outcome
)

from .session import (
    GovernanceSession,
    SessionState
)

from .approval import (
    ApprovalRequest,
    AutoApprover,
    DenyAllApprover,
    ConsoleApprover
)

from .engine import (
    GovernanceEngine,
    GateDecision,
    Verdict
)

__all__ = [
    # Records
    "Intent",
    "IntentDescriptor",
    "IntentStatus",
    "InvalidStatusTransition",
    "MutationClass",
    "Confidence",
    "MutationClassification",
    "TraceEntry",
    "TraceFile",
    "TraceConversation",
    "TraceRange",
    "LessonCategory",
    "ContextBundle",

    # Errors
    "ErrorKind",
    "StructuredError",
    "GovernanceError",
    "IntentNotSelected",
    "IntentNotFound",
    "IntentProtected",
    "IntentAlreadyExists",
    "InvalidIntentDescriptor",
    "ScopeViolation",
    "StaleFile",
    "UserRejected",
    "ArchitectureMissing",
    "PlanningPrerequisiteMissing",
    "GovernanceInternalError",
    "SidecarError",

    # Primitives
    "compute_content_hash",
    "format_content_hash",
    "extract_block",
    "levenshtein_distance",
    "similarity",
    "match_glob",
    "is_in_scope",
    "find_covering_intents",

    # Components
    "StaleFileGuard",
    "UnseenPolicy",
    "FreshnessResult",
    "MutationClassifier",
    "ClassifierThresholds",
    "GovernanceConfig",
    "load_config",
    "SidecarStore",
    "StoreLock",
    "LockAcquisitionError",

    # Engine
    "OperationKind",
    "OperationCatalog",
    "Target",
    "Outcome",
    "GovernanceSession",
    "SessionState",
    "ApprovalRequest",
    "AutoApprover",
    "DenyAllApprover",
    "ConsoleApprover",
    "GovernanceEngine",
    "GateDecision",
    "Verdict"
]

__version__ = "1.0.0"
