"""
Caller-owned session state.

Everything the engine remembers between calls for one working session
lives here and is passed into every call; nothing is global and nothing is
persisted. Discarding the session discards its cache.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Set

from .stale_guard import StaleFileGuard


class SessionState(str, Enum):
    NO_INTENT = "NO_INTENT"
    INTENT_SELECTED = "INTENT_SELECTED"
    AUTHORIZED = "AUTHORIZED"


_MISSING = object()


@dataclass
class GovernanceSession:
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    active_intent_id: Optional[str] = None
    approved_intent_ids: Set[str] = field(default_factory=set)
    guard: StaleFileGuard = field(default_factory=StaleFileGuard)
    model_identifier: Optional[str] = None
    # Content captured at pre-check time, consumed by post-record
    pending_baselines: Dict[str, Optional[str]] = field(default_factory=dict)

    @property
    def state(self) -> SessionState:
        if self.active_intent_id is None:
            return SessionState.NO_INTENT
        if self.active_intent_id in self.approved_intent_ids:
            return SessionState.AUTHORIZED
        return SessionState.INTENT_SELECTED

    @property
    def url(self) -> str:
        return f"session-{self.session_id}"

    def activate(self, intent_id: str) -> None:
        self.active_intent_id = intent_id

    def deactivate(self) -> None:
        self.active_intent_id = None

    def is_approved(self, intent_id: str) -> bool:
        return intent_id in self.approved_intent_ids

    def approve(self, intent_id: str) -> None:
        self.approved_intent_ids.add(intent_id)

    def remember_baseline(self, rel_path: str, content: Optional[str]) -> None:
        self.pending_baselines[rel_path] = content

    def take_baseline(self, rel_path: str):
        """Pop the pre-write content; returns _MISSING when none was captured."""
        return self.pending_baselines.pop(rel_path, _MISSING)
