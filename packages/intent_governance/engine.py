"""
Governance Engine - pre/post interception around mutating operations

Philosophy: the engine is the JUDGE and the RECORDER, never the EXECUTOR.
- pre_check decides ALLOW / DENY before the caller mutates anything
- post_record writes the trace after the caller reports success
- The caller performs the actual write / patch / command

Pre-check order for mutating operations:
    1. Active intent selected          -> IntentNotSelected
    2. Intent registered               -> IntentNotFound
    3. Intent not protected            -> IntentProtected
    4. File target fresh               -> StaleFile
    5. File target in owned scope      -> ScopeViolation
    6. Approved once per (session, intent) -> UserRejected

Failure policy:
- pre_check fails closed: a validator that itself errors yields DENY
  (GovernanceInternalError)
- post_record fails open: bookkeeping errors are logged and dropped, the
  completed operation is never undone
"""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Union

from pydantic import BaseModel

from . import errors
from .approval import ApprovalRequest, Approver, DenyAllApprover
from .classifier import MutationClassifier
from .config import GovernanceConfig, config_fingerprint, load_config
from .errors import StructuredError, raise_for
from .hashing import extract_block, format_content_hash, line_count
from .intent_inference import (
    default_intent_name,
    infer_acceptance_criteria,
    infer_constraints,
    infer_scope,
    next_intent_id,
)
from .models import (
    ContextBundle,
    Contributor,
    Intent,
    IntentDescriptor,
    IntentStatus,
    LessonCategory,
    MutationClassification,
    TraceConversation,
    TraceEntry,
    TraceFile,
    TraceRange,
    TraceRelation,
    VcsInfo,
    generate_trace_id,
    utc_now,
)
from .operations import OperationCatalog, OperationKind, Outcome, Target, operation_name
from .path_utils import resolve_in_workspace, to_workspace_relative
from .scope import find_covering_intents, is_in_scope
from .session import _MISSING, GovernanceSession
from .stale_guard import StaleFileGuard
from .storage import PROTECTED_FILE, SidecarStore
from .vcs import resolve_revision_id

logger = logging.getLogger(__name__)

_CREATE_ID_ATTEMPTS = 5


class Verdict(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


class GateDecision(BaseModel):
    """Outcome of pre_check."""
    verdict: Verdict
    operation: str
    intent_id: Optional[str] = None
    error: Optional[StructuredError] = None

    @property
    def allowed(self) -> bool:
        return self.verdict == Verdict.ALLOW

    @classmethod
    def allow(cls, operation: str, intent_id: Optional[str] = None) -> "GateDecision":
        return cls(verdict=Verdict.ALLOW, operation=operation, intent_id=intent_id)

    @classmethod
    def deny(cls, operation: str, error: StructuredError, intent_id: Optional[str] = None) -> "GateDecision":
        return cls(verdict=Verdict.DENY, operation=operation, intent_id=intent_id, error=error)


class GovernanceEngine:
    """
    Intent-gated mutation governance.

    Flow:
        1. select_intent(id, session) -> ContextBundle
        2. pre_check(op, target, session) -> GateDecision
        3. caller performs op
        4. post_record(op, target, outcome, session)
    """

    VERSION = "1.0.0"

    def __init__(
        self,
        workspace_root: Union[str, Path],
        config: Optional[GovernanceConfig] = None,
        approver: Optional[Approver] = None,
        store: Optional[SidecarStore] = None,
        classifier: Optional[MutationClassifier] = None,
        revision_resolver: Optional[Callable[[Path], str]] = None
    ):
        """
        Args:
            workspace_root: Workspace root (targets are relative to it)
            config: Engine configuration (default: loaded from the workspace)
            approver: Human approval callable (default: rejects everything)
            store: Sidecar store (default: built from config)
            classifier: Mutation classifier (default: built from config)
            revision_resolver: Returns the VCS revision for trace entries
        """
        self.workspace_root = Path(workspace_root).resolve()
        self.config = config or load_config(self.workspace_root)
        self.approver = approver or DenyAllApprover()
        self.store = store or SidecarStore(
            self.workspace_root,
            sidecar_dir=self.config.sidecar_dir,
            lock_timeout_seconds=self.config.lock_timeout_seconds,
            lock_stale_seconds=self.config.lock_stale_seconds,
            intent_map_max_files=self.config.intent_map_max_files,
        )
        self.classifier = classifier or MutationClassifier(self.config.classifier)
        self.catalog = OperationCatalog(self.config.extra_mutating_operations)
        self._revision_resolver = revision_resolver or resolve_revision_id

        logger.debug(
            f"GovernanceEngine {self.VERSION} for {self.workspace_root} "
            f"(config {config_fingerprint(self.config)})"
        )

    def initialize(self) -> None:
        """Create the sidecar files with defaults where missing."""
        self.store.initialize()

    def new_session(
        self,
        session_id: Optional[str] = None,
        model_identifier: Optional[str] = None
    ) -> GovernanceSession:
        """Session whose stale-file guard follows this engine's config."""
        guard = StaleFileGuard(
            freshness_window_seconds=self.config.freshness_window_seconds,
            unseen_policy=self.config.unseen_policy,
        )
        session = GovernanceSession(guard=guard, model_identifier=model_identifier)
        if session_id:
            session.session_id = session_id
        return session

    # ==================== Intent selection ====================

    def select_intent(self, intent_id: str, session: GovernanceSession) -> ContextBundle:
        """
        Make intent_id the session's active intent.

        Raises:
            IntentProtected: intent is on the protected list (checked first)
            IntentNotFound: intent is not registered
        """
        if self.store.is_protected(intent_id):
            logger.info(f"Session {session.session_id}: refused protected intent {intent_id}")
            raise_for(errors.intent_protected(intent_id, self._protected_display()))

        intent = self.store.get_intent(intent_id) if intent_id else None
        if intent is None:
            raise_for(errors.intent_not_found(intent_id, self.store.intent_ids()))

        history = self.store.recent_trace_for_intent(intent_id, self.config.recent_history_limit)
        session.activate(intent_id)
        logger.info(f"Session {session.session_id}: selected intent {intent_id} ({len(history)} recent changes)")

        return ContextBundle(intent=intent, recent_history=history)

    # ==================== Intent creation ====================

    def create_intent(
        self,
        descriptor: Union[IntentDescriptor, dict, str],
        session: Optional[GovernanceSession] = None
    ) -> Intent:
        """
        Register a new intent, inferring missing fields from the prompt.

        Raises:
            InvalidIntentDescriptor, ArchitectureMissing,
            PlanningPrerequisiteMissing, IntentProtected,
            IntentAlreadyExists, UserRejected
        """
        if isinstance(descriptor, str):
            descriptor = IntentDescriptor(prompt=descriptor)
        elif isinstance(descriptor, dict):
            descriptor = IntentDescriptor.model_validate(descriptor)

        prompt = (descriptor.prompt or "").strip()
        if not prompt:
            raise_for(errors.invalid_descriptor("prompt is required"))

        self._check_planning_artifacts()

        existing_ids = self.store.intent_ids()
        explicit_id = (descriptor.intent_id or "").strip() or None
        intent_id = explicit_id or next_intent_id(existing_ids)

        if self.store.is_protected(intent_id):
            raise_for(errors.intent_protected(intent_id, self._protected_display()))
        if intent_id in existing_ids:
            raise_for(errors.intent_already_exists(intent_id, existing_ids))

        intent = Intent(
            id=intent_id,
            name=descriptor.name or default_intent_name(intent_id, prompt),
            status=descriptor.status,
            owned_scope=descriptor.owned_scope or infer_scope(prompt),
            constraints=descriptor.constraints or infer_constraints(prompt),
            acceptance_criteria=descriptor.acceptance_criteria or infer_acceptance_criteria(prompt),
        )

        request = ApprovalRequest(
            kind="create_intent",
            intent_id=intent.id,
            intent_name=intent.name,
            operation=OperationKind.CREATE_INTENT.value,
        )
        if not self._ask_approval(request):
            raise_for(errors.user_rejected(intent.id, OperationKind.CREATE_INTENT.value))

        for _ in range(_CREATE_ID_ATTEMPTS):
            if self.store.add_intent(intent):
                break
            # Another session took the id between our read and our write
            existing_ids = self.store.intent_ids()
            if explicit_id:
                raise_for(errors.intent_already_exists(intent.id, existing_ids))
            previous_id = intent.id
            intent.id = next_intent_id(existing_ids)
            if descriptor.name is None:
                intent.name = default_intent_name(intent.id, prompt)
            logger.info(f"Intent id {previous_id} taken concurrently, retrying as {intent.id}")
        else:
            raise_for(errors.intent_already_exists(intent.id, self.store.intent_ids()))

        self._best_effort("intent map refresh", lambda: self.store.refresh_intent_map_status(intent))
        logger.info(
            f"Created intent {intent.id} with scope {intent.owned_scope}"
            + (f" (session {session.session_id})" if session else "")
        )
        return intent

    def _check_planning_artifacts(self) -> None:
        if self.config.require_architecture_doc:
            architecture = self.workspace_root / self.config.architecture_doc
            if not architecture.exists():
                raise_for(errors.architecture_missing(self.config.architecture_doc))

        missing = [
            artifact for artifact in self.config.planning_prerequisites
            if not (self.workspace_root / artifact).exists()
        ]
        if missing:
            raise_for(errors.planning_prerequisite_missing(missing))

    # ==================== Pre-check ====================

    def pre_check(
        self,
        operation: Union[OperationKind, str],
        target: Optional[Target],
        session: GovernanceSession
    ) -> GateDecision:
        """
        Decide whether an operation may proceed. Never raises.

        Returns:
            GateDecision; DENY carries a StructuredError
        """
        op = operation_name(operation)
        if not self.catalog.is_mutating(op):
            return GateDecision.allow(op, session.active_intent_id)

        target = target or Target()
        try:
            decision = self._check_mutation(op, target, session)
        except Exception as e:
            logger.exception(f"Pre-check for {op} failed internally; denying")
            decision = GateDecision.deny(op, errors.internal_error(op, e), session.active_intent_id)

        if not decision.allowed:
            self._best_effort("baseline cleanup", lambda: self._drop_baseline(target, session))
        return decision

    def _drop_baseline(self, target: Target, session: GovernanceSession) -> None:
        """Forget the pre-write content held for a denied file target."""
        if not target.is_file:
            return
        resolved = to_workspace_relative(target.path, self.workspace_root)
        if resolved.ok:
            session.take_baseline(resolved.rel_path)

    def _check_mutation(self, op: str, target: Target, session: GovernanceSession) -> GateDecision:
        intent_id = session.active_intent_id
        if not intent_id:
            return GateDecision.deny(op, errors.intent_not_selected(op))

        intent = self.store.get_intent(intent_id)
        if intent is None:
            return GateDecision.deny(op, errors.intent_not_found(intent_id, self.store.intent_ids()), intent_id)

        protected = self.store.read_protected()
        if intent_id in protected:
            return GateDecision.deny(op, errors.intent_protected(intent_id, self._protected_display()), intent_id)

        rel_path = None
        if target.is_file:
            resolved = to_workspace_relative(target.path, self.workspace_root)
            if not resolved.ok:
                error = errors.scope_violation(
                    intent_id, target.path, intent.owned_scope, [], reason=resolved.violation.value
                )
                return GateDecision.deny(op, error, intent_id)
            rel_path = resolved.rel_path

            freshness = session.guard.check_fresh(rel_path, self._read_bytes)
            if not freshness.fresh:
                logger.info(f"Session {session.session_id}: stale target {rel_path} ({freshness.reason})")
                error = errors.stale_file(
                    rel_path, freshness.expected_digest, freshness.actual_digest, freshness.reason
                )
                return GateDecision.deny(op, error, intent_id)

            if not is_in_scope(rel_path, intent.owned_scope):
                covering = find_covering_intents(
                    rel_path, self.store.list_intents(), exclude=[intent_id, *protected]
                )
                logger.info(f"Session {session.session_id}: {rel_path} outside scope of {intent_id}")
                error = errors.scope_violation(intent_id, rel_path, intent.owned_scope, covering)
                return GateDecision.deny(op, error, intent_id)

        if not session.is_approved(intent_id):
            request = ApprovalRequest.for_operation(intent, op, path=rel_path, command=target.command)
            if not self._ask_approval(request):
                logger.info(f"Session {session.session_id}: approval rejected for {intent_id}")
                return GateDecision.deny(op, errors.user_rejected(intent_id, op), intent_id)
            session.approve(intent_id)
            logger.info(f"Session {session.session_id}: intent {intent_id} approved")

        if rel_path is not None:
            session.remember_baseline(rel_path, self._read_text(rel_path))

        return GateDecision.allow(op, intent_id)

    def _ask_approval(self, request: ApprovalRequest) -> bool:
        try:
            return bool(self.approver(request))
        except Exception as e:
            logger.warning(f"Approver failed for {request.intent_id}, treating as rejection: {e}")
            return False

    # ==================== Post-record ====================

    def post_record(
        self,
        operation: Union[OperationKind, str],
        target: Optional[Target],
        outcome: Union[Outcome, bool],
        session: GovernanceSession
    ) -> Optional[TraceEntry]:
        """
        Record a completed operation. Never raises.

        Returns:
            The appended TraceEntry, or None when nothing was recorded
        """
        op = operation_name(operation)
        if isinstance(outcome, bool):
            outcome = Outcome(success=outcome)
        try:
            return self._record(op, target or Target(), outcome, session)
        except Exception as e:
            logger.warning(f"Failed to record trace entry for {op}: {e}", exc_info=True)
            return None

    def _record(
        self,
        op: str,
        target: Target,
        outcome: Outcome,
        session: GovernanceSession
    ) -> Optional[TraceEntry]:
        if not self.catalog.is_mutating(op):
            return None

        intent_id = session.active_intent_id
        rel_path = None
        if target.is_file:
            resolved = to_workspace_relative(target.path, self.workspace_root)
            rel_path = resolved.rel_path if resolved.ok else None

        if not intent_id:
            logger.warning(f"Skipping trace for {op}: no active intent on session {session.session_id}")
            return None
        if not outcome.success:
            logger.warning(f"Skipping trace for {op}: operation failed")
            if rel_path:
                session.take_baseline(rel_path)
            return None
        if rel_path is None:
            logger.debug(f"Skipping trace for {op}: no file target")
            return None

        try:
            raw = self._read_bytes(rel_path)
        except OSError as e:
            logger.warning(f"Skipping trace for {op}: cannot read {rel_path} after the operation ({e})")
            session.take_baseline(rel_path)
            return None
        new_content = raw.decode("utf-8", errors="replace")

        previous = session.take_baseline(rel_path)
        if previous is _MISSING:
            observation = session.guard.get(rel_path)
            previous = observation.content if observation else None

        classification = self.classifier.classify(previous, new_content, rel_path)

        if target.has_line_range:
            start_line, end_line = target.start_line, target.end_line
        else:
            start_line, end_line = 1, line_count(raw)
        block = extract_block(raw, start_line, end_line)

        entry = self._build_entry(op, rel_path, intent_id, session, classification, start_line, end_line, block)
        self.store.append_trace(entry)
        logger.info(
            f"Trace {entry.id}: {op} {rel_path} under {intent_id} "
            f"({classification.mutation_class.value}, {classification.confidence.value})"
        )

        session.guard.record_observation(rel_path, raw)
        self._best_effort("intent status promotion", lambda: self._promote_intent(intent_id))
        self._best_effort(
            "intent map update",
            lambda: self._update_map(intent_id, rel_path, entry),
        )
        return entry

    def _build_entry(
        self,
        op: str,
        rel_path: str,
        intent_id: str,
        session: GovernanceSession,
        classification: MutationClassification,
        start_line: int,
        end_line: int,
        block: bytes
    ) -> TraceEntry:
        return TraceEntry(
            id=generate_trace_id(),
            timestamp=utc_now(),
            tool_name=op,
            mutation_class=classification.mutation_class,
            vcs=VcsInfo(revision_id=self._revision_id()),
            files=[
                TraceFile(
                    relative_path=rel_path,
                    conversations=[
                        TraceConversation(
                            url=session.url,
                            contributor=Contributor(
                                entity_type="AI",
                                model_identifier=session.model_identifier,
                            ),
                            ranges=[
                                TraceRange(
                                    start_line=start_line,
                                    end_line=max(end_line, start_line),
                                    content_hash=format_content_hash(block),
                                )
                            ],
                            related=[TraceRelation(type="intent", value=intent_id)],
                        )
                    ],
                )
            ],
        )

    def _promote_intent(self, intent_id: str) -> None:
        intent = self.store.get_intent(intent_id)
        if intent is not None and intent.status == IntentStatus.TODO:
            self.store.transition_intent(intent_id, IntentStatus.IN_PROGRESS)

    def _update_map(self, intent_id: str, rel_path: str, entry: TraceEntry) -> None:
        intent = self.store.get_intent(intent_id)
        if intent is None:
            return
        self.store.update_intent_map(intent, rel_path, entry.timestamp, entry.mutation_class)

    def _revision_id(self) -> str:
        try:
            return self._revision_resolver(self.workspace_root)
        except Exception as e:
            logger.debug(f"Revision lookup failed: {e}")
            return "unknown"

    def _best_effort(self, description: str, action: Callable[[], object]) -> None:
        try:
            action()
        except Exception as e:
            logger.warning(f"Governance bookkeeping ({description}) failed: {e}")

    # ==================== Observations, lessons, lifecycle ====================

    def track_observation(
        self,
        path: str,
        content: Union[str, bytes],
        session: GovernanceSession
    ) -> None:
        """Seed the staleness baseline; call whenever the caller reads a target."""
        resolved = to_workspace_relative(path, self.workspace_root)
        key = resolved.rel_path if resolved.ok else path
        session.guard.record_observation(key, content)

    def record_lesson(
        self,
        text: str,
        category: Union[LessonCategory, str] = LessonCategory.OTHER,
        intent_id: Optional[str] = None
    ) -> str:
        """
        Append a lesson to the shared knowledge log.

        Raises:
            ValueError: If text is empty or category unknown
        """
        if not text or not text.strip():
            raise ValueError("lesson text is required")
        entry = self.store.append_lesson(text, LessonCategory(category), intent_id)
        logger.info(f"Recorded {LessonCategory(category).value} lesson" + (f" for {intent_id}" if intent_id else ""))
        return entry

    def complete_intent(self, intent_id: str) -> Intent:
        """IN_PROGRESS -> DONE."""
        return self._transition(intent_id, IntentStatus.DONE)

    def block_intent(self, intent_id: str) -> Intent:
        """Any state -> BLOCKED."""
        return self._transition(intent_id, IntentStatus.BLOCKED)

    def _transition(self, intent_id: str, status: IntentStatus) -> Intent:
        intent = self.store.transition_intent(intent_id, status)
        if intent is None:
            raise_for(errors.intent_not_found(intent_id, self.store.intent_ids()))
        self._best_effort("intent map refresh", lambda: self.store.refresh_intent_map_status(intent))
        return intent

    def protect_intent(self, intent_id: str) -> bool:
        return self.store.protect(intent_id)

    def rebuild_intent_map(self) -> None:
        self.store.rebuild_intent_map()

    def recent_history(self, intent_id: str, limit: Optional[int] = None) -> List[TraceEntry]:
        return self.store.recent_trace_for_intent(
            intent_id, self.config.recent_history_limit if limit is None else limit
        )

    # ==================== Helpers ====================

    def _read_bytes(self, rel_path: str) -> bytes:
        return resolve_in_workspace(rel_path, self.workspace_root).read_bytes()

    def _read_text(self, rel_path: str) -> Optional[str]:
        try:
            return self._read_bytes(rel_path).decode("utf-8", errors="replace")
        except OSError:
            return None

    def _protected_display(self) -> str:
        return f"{self.config.sidecar_dir}/{PROTECTED_FILE}"
