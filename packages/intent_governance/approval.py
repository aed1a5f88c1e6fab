"""
Human approval gate.

An approver is any callable taking an ApprovalRequest and returning True
(approve) or False (reject). It may block; timeouts and cancellation are
the approver's business.
"""

from __future__ import annotations

import sys
from typing import Callable, Optional, TextIO

from pydantic import BaseModel

from .models import Intent


class ApprovalRequest(BaseModel):
    kind: str  # "intent_evolution" | "create_intent"
    intent_id: str
    intent_name: str
    operation: str
    path: Optional[str] = None
    command: Optional[str] = None

    @property
    def message(self) -> str:
        if self.kind == "create_intent":
            return (
                "Create a new intent?\n\n"
                f"Intent: {self.intent_id} - {self.intent_name}\n"
            )

        details = []
        if self.path:
            details.append(f"File: {self.path}")
        if self.command:
            details.append(f"Command: {self.command}")
        if not details:
            details.append(f"Tool: {self.operation}")
        return (
            "Approve intent evolution for this session?\n\n"
            f"Intent: {self.intent_id} - {self.intent_name}\n"
            + "\n".join(details)
            + "\n\nThis will allow destructive actions under this intent for the current session."
        )

    @classmethod
    def for_operation(
        cls,
        intent: Intent,
        operation: str,
        path: Optional[str] = None,
        command: Optional[str] = None
    ) -> "ApprovalRequest":
        return cls(
            kind="intent_evolution",
            intent_id=intent.id,
            intent_name=intent.name,
            operation=operation,
            path=path,
            command=command,
        )


Approver = Callable[[ApprovalRequest], bool]


class AutoApprover:
    """Approves everything; records what it was asked."""

    def __init__(self):
        self.requests = []

    def __call__(self, request: ApprovalRequest) -> bool:
        self.requests.append(request)
        return True


class DenyAllApprover:
    """Rejects everything; records what it was asked."""

    def __init__(self):
        self.requests = []

    def __call__(self, request: ApprovalRequest) -> bool:
        self.requests.append(request)
        return False


class ConsoleApprover:
    """Approve/reject prompt on a text stream."""

    def __init__(self, stdin: Optional[TextIO] = None, stdout: Optional[TextIO] = None):
        self.stdin = stdin or sys.stdin
        self.stdout = stdout or sys.stdout

    def __call__(self, request: ApprovalRequest) -> bool:
        self.stdout.write(request.message + "\n[approve/reject]: ")
        self.stdout.flush()
        answer = self.stdin.readline().strip().lower()
        return answer in {"a", "approve", "y", "yes"}
