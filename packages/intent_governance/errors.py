"""
Structured governance errors.

Every blocking failure is self-describing so an autonomous caller can pick
its next action without help: {kind, message, details, recoverable,
suggested_action}, serialisable to JSON.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ErrorKind(str, Enum):
    INTENT_NOT_SELECTED = "IntentNotSelected"
    INTENT_NOT_FOUND = "IntentNotFound"
    INTENT_PROTECTED = "IntentProtected"
    INTENT_ALREADY_EXISTS = "IntentAlreadyExists"
    INVALID_INTENT_DESCRIPTOR = "InvalidIntentDescriptor"
    SCOPE_VIOLATION = "ScopeViolation"
    STALE_FILE = "StaleFile"
    USER_REJECTED = "UserRejected"
    ARCHITECTURE_MISSING = "ArchitectureMissing"
    PLANNING_PREREQUISITE_MISSING = "PlanningPrerequisiteMissing"
    GOVERNANCE_INTERNAL_ERROR = "GovernanceInternalError"


class StructuredError(BaseModel):
    """Machine-parseable description of why an operation was blocked."""
    kind: ErrorKind
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)
    recoverable: bool = True
    suggested_action: str = ""

    def to_dict(self) -> dict:
        return self.model_dump(mode="json")

    def to_json(self) -> str:
        return self.model_dump_json(indent=2)


class GovernanceError(Exception):
    """Base exception carrying a StructuredError."""

    def __init__(self, error: StructuredError):
        super().__init__(error.message)
        self.error = error

    @property
    def kind(self) -> ErrorKind:
        return self.error.kind


class IntentNotSelected(GovernanceError):
    pass


class IntentNotFound(GovernanceError):
    pass


class IntentProtected(GovernanceError):
    pass


class IntentAlreadyExists(GovernanceError):
    pass


class InvalidIntentDescriptor(GovernanceError):
    pass


class ScopeViolation(GovernanceError):
    pass


class StaleFile(GovernanceError):
    pass


class UserRejected(GovernanceError):
    pass


class ArchitectureMissing(GovernanceError):
    pass


class PlanningPrerequisiteMissing(GovernanceError):
    pass


class GovernanceInternalError(GovernanceError):
    pass


_EXCEPTIONS = {
    ErrorKind.INTENT_NOT_SELECTED: IntentNotSelected,
    ErrorKind.INTENT_NOT_FOUND: IntentNotFound,
    ErrorKind.INTENT_PROTECTED: IntentProtected,
    ErrorKind.INTENT_ALREADY_EXISTS: IntentAlreadyExists,
    ErrorKind.INVALID_INTENT_DESCRIPTOR: InvalidIntentDescriptor,
    ErrorKind.SCOPE_VIOLATION: ScopeViolation,
    ErrorKind.STALE_FILE: StaleFile,
    ErrorKind.USER_REJECTED: UserRejected,
    ErrorKind.ARCHITECTURE_MISSING: ArchitectureMissing,
    ErrorKind.PLANNING_PREREQUISITE_MISSING: PlanningPrerequisiteMissing,
    ErrorKind.GOVERNANCE_INTERNAL_ERROR: GovernanceInternalError,
}


def raise_for(error: StructuredError) -> None:
    """Raise the exception class matching error.kind."""
    raise _EXCEPTIONS[error.kind](error)


class SidecarError(Exception):
    """Raised when a sidecar document cannot be read or fails validation."""
    pass


# ==================== Error builders ====================

def intent_not_selected(operation: str) -> StructuredError:
    return StructuredError(
        kind=ErrorKind.INTENT_NOT_SELECTED,
        message=(
            "You must cite a valid active Intent ID. "
            "Call select_active_intent(intent_id) before making code changes."
        ),
        details={"operation": operation},
        recoverable=True,
        suggested_action=(
            "Call select_active_intent(intent_id) with an existing intent, "
            "or create_intent(prompt) if no intent covers this work"
        ),
    )


def intent_not_found(intent_id: str, available_ids: List[str]) -> StructuredError:
    return StructuredError(
        kind=ErrorKind.INTENT_NOT_FOUND,
        message=f"Intent \"{intent_id}\" not found in active_intents.yaml. Please use a valid intent ID.",
        details={
            "requested_intent_id": intent_id,
            "available_intent_ids": available_ids,
            "available_intents_count": len(available_ids),
        },
        recoverable=True,
        suggested_action=(
            f"Use one of the available intent IDs: {', '.join(available_ids)}"
            if available_ids
            else "No intents exist yet; call create_intent(prompt) first"
        ),
    )


def intent_protected(intent_id: str, protected_file: str) -> StructuredError:
    return StructuredError(
        kind=ErrorKind.INTENT_PROTECTED,
        message=(
            f"Intent \"{intent_id}\" is protected and cannot be modified. "
            f"This intent is listed in {protected_file}."
        ),
        details={
            "intent_id": intent_id,
            "reason": "intent_in_ignore_list",
            "file": protected_file,
        },
        recoverable=False,
        suggested_action="Select a different intent or ask an operator to remove this intent from the protected list",
    )


def intent_already_exists(intent_id: str, existing_ids: List[str]) -> StructuredError:
    return StructuredError(
        kind=ErrorKind.INTENT_ALREADY_EXISTS,
        message=f"Intent ID \"{intent_id}\" already exists. Please use a different ID.",
        details={"requested_intent_id": intent_id, "available_intent_ids": existing_ids},
        recoverable=True,
        suggested_action="Omit intent_id to get the next free INT-NNN id, or select the existing intent",
    )


def invalid_descriptor(reason: str) -> StructuredError:
    return StructuredError(
        kind=ErrorKind.INVALID_INTENT_DESCRIPTOR,
        message=f"Cannot create intent: {reason}",
        details={"reason": reason},
        recoverable=True,
        suggested_action="Provide a non-empty prompt describing the work",
    )


def scope_violation(
    intent_id: str,
    path: str,
    owned_scope: List[str],
    covering_intent_ids: List[str],
    reason: str = "outside_owned_scope",
) -> StructuredError:
    if covering_intent_ids:
        suggestion = (
            f"Call select_active_intent(\"{covering_intent_ids[0]}\"), which owns {path}"
        )
    else:
        suggestion = (
            f"No intent owns {path}; call create_intent(prompt) with a scope covering it"
        )
    return StructuredError(
        kind=ErrorKind.SCOPE_VIOLATION,
        message=f"Scope Violation: {intent_id} is not authorized to edit {path}.",
        details={
            "intent_id": intent_id,
            "path": path,
            "owned_scope": owned_scope,
            "covering_intent_ids": covering_intent_ids,
            "reason": reason,
        },
        recoverable=True,
        suggested_action=suggestion,
    )


def stale_file(path: str, expected: Optional[str], actual: Optional[str], reason: str) -> StructuredError:
    return StructuredError(
        kind=ErrorKind.STALE_FILE,
        message=(
            f"Stale File Error: {path} has been modified by another agent or process "
            "since it was last read."
        ),
        details={
            "path": path,
            "expected_digest": expected,
            "actual_digest": actual,
            "reason": reason,
        },
        recoverable=True,
        suggested_action=f"Re-read {path} and retry the change against its current content",
    )


def user_rejected(intent_id: str, operation: str) -> StructuredError:
    return StructuredError(
        kind=ErrorKind.USER_REJECTED,
        message="User rejected the intent evolution request.",
        details={"intent_id": intent_id, "operation": operation},
        recoverable=False,
        suggested_action="Ask the user for approval again or take a different approach",
    )


def architecture_missing(required_file: str) -> StructuredError:
    return StructuredError(
        kind=ErrorKind.ARCHITECTURE_MISSING,
        message=(
            f"{required_file} is required but not found. "
            f"Please create {required_file} with your project architecture and try again."
        ),
        details={
            "required_file": required_file,
            "reason": "file_not_found",
            "required_action": "create_architecture_file",
            "instructions": [
                f"Create {required_file} in your project root",
                "Document your project structure, directory layout, and intent areas",
                "Then try create_intent again",
            ],
        },
        recoverable=True,
        suggested_action=f"Create {required_file} with project architecture, then try again",
    )


def planning_prerequisite_missing(missing: List[str]) -> StructuredError:
    return StructuredError(
        kind=ErrorKind.PLANNING_PREREQUISITE_MISSING,
        message=f"Planning prerequisites missing: {', '.join(missing)}",
        details={"missing_artifacts": missing},
        recoverable=True,
        suggested_action=f"Create {', '.join(missing)} before creating intents",
    )


def internal_error(operation: str, exc: BaseException) -> StructuredError:
    return StructuredError(
        kind=ErrorKind.GOVERNANCE_INTERNAL_ERROR,
        message=f"Governance check failed internally for {operation}: {exc}",
        details={"operation": operation, "exception": type(exc).__name__},
        recoverable=False,
        suggested_action="Report this to an operator; the operation stays blocked until the check succeeds",
    )
