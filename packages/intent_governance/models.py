"""
Data Models for Intent Governance

Records:
- Intent: declared unit of work (registry row in active_intents.yaml)
- TraceEntry: one append-only ledger line in agent_trace.jsonl
- MutationClassification: classifier verdict attached to a trace entry
- ContextBundle: what select_intent hands back to the agent

Philosophy:
- Registry rows are status-transitioned, never deleted
- Ledger rows are immutable once written
- Content hashes are spatially independent (block bytes only)
"""

from __future__ import annotations

import random
import string
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Iterator, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> str:
    """Current UTC time as ISO 8601."""
    return datetime.now(timezone.utc).isoformat()


def _parse_timestamp(value: str) -> Optional[datetime]:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class IntentStatus(str, Enum):
    """Intent lifecycle status."""
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"
    BLOCKED = "BLOCKED"


# TODO -> IN_PROGRESS -> DONE, anything -> BLOCKED
_ALLOWED_TRANSITIONS = {
    IntentStatus.TODO: {IntentStatus.IN_PROGRESS},
    IntentStatus.IN_PROGRESS: {IntentStatus.DONE},
    IntentStatus.DONE: set(),
    IntentStatus.BLOCKED: set(),
}


class InvalidStatusTransition(ValueError):
    """Raised when an intent status change breaks the lifecycle."""
    pass


class MutationClass(str, Enum):
    """Nature of a recorded change."""
    AST_REFACTOR = "AST_REFACTOR"
    INTENT_EVOLUTION = "INTENT_EVOLUTION"


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Intent(BaseModel):
    """A declared, scoped unit of work."""

    id: str = Field(..., min_length=1)
    name: str
    status: IntentStatus = IntentStatus.TODO
    owned_scope: List[str] = Field(default_factory=list)
    constraints: List[str] = Field(default_factory=list)
    acceptance_criteria: List[str] = Field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @field_validator("id", "name", mode="before")
    @classmethod
    def _coerce_text(cls, value):
        # YAML turns bare numbers into ints
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def _coerce_timestamp(cls, value):
        # YAML turns unquoted ISO timestamps into datetime objects
        if isinstance(value, datetime):
            if value.tzinfo is None:
                value = value.replace(tzinfo=timezone.utc)
            return value.isoformat()
        return value

    @field_validator("owned_scope", "constraints", "acceptance_criteria", mode="before")
    @classmethod
    def _none_to_list(cls, value):
        return [] if value is None else value

    @field_validator("owned_scope")
    @classmethod
    def _dedupe_scope(cls, value: List[str]) -> List[str]:
        # Ordered set: keep first occurrence
        seen = set()
        ordered = []
        for pattern in value:
            if pattern not in seen:
                seen.add(pattern)
                ordered.append(pattern)
        return ordered

    def can_transition(self, new_status: IntentStatus) -> bool:
        """Check whether moving to new_status respects the lifecycle."""
        if new_status == self.status:
            return True
        if new_status == IntentStatus.BLOCKED:
            return True
        return new_status in _ALLOWED_TRANSITIONS[self.status]

    def transition(self, new_status: IntentStatus) -> "Intent":
        """
        Move to new_status, bumping updated_at.

        Raises:
            InvalidStatusTransition: if the lifecycle forbids the change
        """
        new_status = IntentStatus(new_status)
        if not self.can_transition(new_status):
            raise InvalidStatusTransition(
                f"Intent {self.id}: cannot move from {self.status.value} to {new_status.value}"
            )
        self.status = new_status
        self.touch()
        return self

    def touch(self, now: Optional[str] = None) -> None:
        """Bump updated_at without ever moving it backwards."""
        now = now or utc_now()
        if self.created_at is None:
            self.created_at = now

        if self.updated_at is not None:
            previous = _parse_timestamp(self.updated_at)
            current = _parse_timestamp(now)
            if previous is not None and current is not None and current < previous:
                return
        self.updated_at = now

    def to_record(self) -> dict:
        """Plain dict for the YAML registry."""
        return self.model_dump(mode="json")


class IntentDescriptor(BaseModel):
    """Input for intent creation; missing fields are inferred from the prompt."""
    prompt: str
    intent_id: Optional[str] = None
    name: Optional[str] = None
    owned_scope: Optional[List[str]] = None
    constraints: Optional[List[str]] = None
    acceptance_criteria: Optional[List[str]] = None
    status: IntentStatus = IntentStatus.TODO


# ==================== Trace ledger ====================

class TraceRange(BaseModel):
    start_line: int = Field(..., ge=1)
    end_line: int = Field(..., ge=1)
    content_hash: str


class TraceRelation(BaseModel):
    type: str = "intent"  # intent | specification | requirement
    value: str


class Contributor(BaseModel):
    entity_type: str = "AI"  # AI | HUMAN
    model_identifier: Optional[str] = None


class TraceConversation(BaseModel):
    url: str
    contributor: Contributor = Field(default_factory=Contributor)
    ranges: List[TraceRange] = Field(default_factory=list)
    related: List[TraceRelation] = Field(default_factory=list)


class TraceFile(BaseModel):
    relative_path: str
    conversations: List[TraceConversation] = Field(default_factory=list)

    @property
    def ranges(self) -> List[TraceRange]:
        return [r for conv in self.conversations for r in conv.ranges]

    @property
    def related(self) -> List[TraceRelation]:
        return [rel for conv in self.conversations for rel in conv.related]


class VcsInfo(BaseModel):
    revision_id: str = "unknown"


class TraceEntry(BaseModel):
    """One immutable ledger record of a single mutating operation."""
    model_config = ConfigDict(extra="allow")

    id: str
    timestamp: str
    tool_name: Optional[str] = None
    mutation_class: Optional[MutationClass] = None
    vcs: VcsInfo = Field(default_factory=VcsInfo)
    files: List[TraceFile] = Field(default_factory=list)

    @property
    def revision_id(self) -> str:
        return self.vcs.revision_id

    def intent_ids(self) -> List[str]:
        ids = []
        for file in self.files:
            for rel in file.related:
                if rel.type == "intent" and rel.value not in ids:
                    ids.append(rel.value)
        return ids

    def references_intent(self, intent_id: str) -> bool:
        return intent_id in self.intent_ids()

    def iter_ranges(self) -> Iterator[tuple]:
        """Yield (relative_path, TraceRange) pairs."""
        for file in self.files:
            for rng in file.ranges:
                yield file.relative_path, rng

    def sort_key(self) -> float:
        parsed = _parse_timestamp(self.timestamp)
        return parsed.timestamp() if parsed else 0.0

    def to_json_line(self) -> str:
        """Compact single-line JSON (no trailing newline)."""
        return self.model_dump_json(exclude_none=True)


def generate_trace_id() -> str:
    """trace-<epoch ms>-<9 random chars>"""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"trace-{int(time.time() * 1000)}-{suffix}"


class MutationClassification(BaseModel):
    mutation_class: MutationClass
    confidence: Confidence
    reason: str = ""


# ==================== Knowledge log ====================

class LessonCategory(str, Enum):
    CODE_STYLE = "code_style"
    ARCHITECTURE = "architecture"
    BUG_FIX = "bug_fix"
    PERFORMANCE = "performance"
    TESTING = "testing"
    OTHER = "other"

    @property
    def heading(self) -> str:
        # "bug_fix" -> "Bug fix"
        text = self.value.replace("_", " ")
        return text[:1].upper() + text[1:]


# ==================== Selection context ====================

class ContextBundle(BaseModel):
    """Consolidated guidance returned when an intent is selected."""
    intent: Intent
    recent_history: List[TraceEntry] = Field(default_factory=list)

    @property
    def owned_scope(self) -> List[str]:
        return self.intent.owned_scope

    @property
    def constraints(self) -> List[str]:
        return self.intent.constraints

    @property
    def acceptance_criteria(self) -> List[str]:
        return self.intent.acceptance_criteria

    def to_prompt_block(self) -> str:
        """Render the <intent_context> block injected into the agent prompt."""
        intent = self.intent
        scope_list = "\n".join(f"  - {s}" for s in intent.owned_scope)
        constraints_list = "\n".join(f"  - {c}" for c in intent.constraints)
        criteria_list = "\n".join(f"  - {c}" for c in intent.acceptance_criteria)

        if self.recent_history:
            items = []
            for entry in self.recent_history:
                file_lines = []
                for file in entry.files:
                    ranges = file.ranges
                    if ranges:
                        file_lines.append(
                            f"    - {file.relative_path} (lines {ranges[0].start_line}-{ranges[0].end_line})"
                        )
                    else:
                        file_lines.append(f"    - {file.relative_path}")
                day = entry.timestamp.split("T")[0]
                items.append(f"  - {day}: Modified files:\n" + "\n".join(file_lines))
            history = "<recent_history>\n" + "\n".join(items) + "\n</recent_history>"
        else:
            history = "<recent_history>\n  No recent changes found for this intent.\n</recent_history>"

        return (
            "<intent_context>\n"
            f"<intent_id>{intent.id}</intent_id>\n"
            f"<intent_name>{intent.name}</intent_name>\n"
            f"<status>{intent.status.value}</status>\n"
            f"<owned_scope>\n{scope_list}\n</owned_scope>\n"
            f"<constraints>\n{constraints_list}\n</constraints>\n"
            f"<acceptance_criteria>\n{criteria_list}\n</acceptance_criteria>\n"
            f"{history}\n"
            "</intent_context>"
        )
