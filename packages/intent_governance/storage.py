"""
Sidecar Store - durable, machine-owned governance records

Files (under <workspace>/.orchestration/ by default):
- active_intents.yaml → intent registry
- agent_trace.jsonl   → append-only change ledger
- intent_map.md       → regenerable intent → files projection
- AGENT.md            → shared lessons learned
- .intentignore       → protected intent ids

Philosophy:
- Ledger is append-only: one os.write of one complete line per entry
- Registry / map / knowledge rewrites are read-modify-write under the
  sidecar lock, replaced atomically; last writer wins
- Corrupt ledger lines are skipped, never fatal
"""

import json
import logging
import os
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional, Union

import yaml
from pydantic import ValidationError

from .errors import SidecarError
from .intent_map import MAP_HEADER, IntentMap
from .models import (
    Intent,
    IntentStatus,
    LessonCategory,
    MutationClass,
    TraceEntry,
)
from .store_lock import StoreLock

logger = logging.getLogger(__name__)

INTENTS_FILE = "active_intents.yaml"
TRACE_FILE = "agent_trace.jsonl"
INTENT_MAP_FILE = "intent_map.md"
KNOWLEDGE_FILE = "AGENT.md"
PROTECTED_FILE = ".intentignore"

LESSONS_HEADER = "## Lessons Learned"

KNOWLEDGE_TEMPLATE = (
    "# Shared Knowledge Base\n"
    "\n"
    "This file contains persistent knowledge shared across parallel sessions "
    "(Architect/Builder/Tester).\n"
    "\n"
    f"{LESSONS_HEADER}\n"
    "\n"
)

PROTECTED_TEMPLATE = (
    "# Intent Ignore File\n"
    "# List intent IDs that should be protected from modifications\n"
    "# One intent ID per line\n"
    "# Lines starting with # are comments\n"
    "#\n"
    "# Example:\n"
    "# INT-005  # Legacy system - deprecated\n"
    "# INT-010  # Production critical - manual changes only\n"
    "\n"
)


class SidecarStore:
    """Persistence for intents, trace ledger, intent map, lessons and protected ids."""

    def __init__(
        self,
        workspace_root: Union[str, Path],
        sidecar_dir: str = ".orchestration",
        lock_timeout_seconds: float = 10,
        lock_stale_seconds: float = 60,
        intent_map_max_files: int = 20
    ):
        """
        Initialize store (does not touch the filesystem; see initialize()).

        Args:
            workspace_root: Workspace root directory
            sidecar_dir: Sidecar directory, relative to workspace_root
            lock_timeout_seconds: Max wait for the sidecar lock
            lock_stale_seconds: Age after which a held lock is taken over
            intent_map_max_files: Files kept per intent in intent_map.md
        """
        self.workspace_root = Path(workspace_root)
        self.sidecar_dir = self.workspace_root / sidecar_dir
        self.intent_map_max_files = intent_map_max_files

        self.intents_path = self.sidecar_dir / INTENTS_FILE
        self.trace_path = self.sidecar_dir / TRACE_FILE
        self.intent_map_path = self.sidecar_dir / INTENT_MAP_FILE
        self.knowledge_path = self.sidecar_dir / KNOWLEDGE_FILE
        self.protected_path = self.sidecar_dir / PROTECTED_FILE

        self._lock_timeout_seconds = lock_timeout_seconds
        self._lock_stale_seconds = lock_stale_seconds
        self._lock: Optional[StoreLock] = None
        self._append_lock = threading.Lock()

    @property
    def lock(self) -> StoreLock:
        if self._lock is None:
            self.sidecar_dir.mkdir(parents=True, exist_ok=True)
            self._lock = StoreLock(
                self.sidecar_dir,
                timeout_seconds=self._lock_timeout_seconds,
                stale_seconds=self._lock_stale_seconds,
            )
        return self._lock

    def initialize(self) -> None:
        """Create the sidecar directory and any missing file with its default."""
        self.sidecar_dir.mkdir(parents=True, exist_ok=True)

        defaults = [
            (self.intents_path, yaml.safe_dump({"active_intents": []}, sort_keys=False)),
            (self.trace_path, ""),
            (self.intent_map_path, MAP_HEADER + "\n"),
            (self.knowledge_path, KNOWLEDGE_TEMPLATE),
            (self.protected_path, PROTECTED_TEMPLATE),
        ]
        for path, content in defaults:
            if path.exists():
                continue
            try:
                # O_EXCL: never clobber a file another session just created
                fd = os.open(str(path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                continue
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            logger.info(f"Created sidecar file {path}")

    def _atomic_write(self, path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with open(temp_fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(temp_path, path)
        except BaseException:
            Path(temp_path).unlink(missing_ok=True)
            raise

    # ==================== Intent registry ====================

    def _read_registry_document(self) -> dict:
        if not self.intents_path.exists():
            return {"active_intents": []}

        try:
            data = yaml.safe_load(self.intents_path.read_text(encoding="utf-8"))
        except yaml.YAMLError as e:
            raise SidecarError(f"Invalid YAML in {self.intents_path}: {e}") from e

        if data is None:
            return {"active_intents": []}
        if not isinstance(data, dict):
            raise SidecarError(f"{self.intents_path} must contain a mapping with 'active_intents'")

        if data.get("active_intents") is None:
            data["active_intents"] = []
        if not isinstance(data["active_intents"], list):
            raise SidecarError(f"'active_intents' in {self.intents_path} must be a list")
        return data

    def _parse_intents(self, document: dict) -> List[Intent]:
        intents = []
        seen = set()
        for index, record in enumerate(document["active_intents"]):
            try:
                intent = Intent.model_validate(record)
            except ValidationError as e:
                raise SidecarError(f"Invalid intent #{index} in {self.intents_path}: {e}") from e
            if intent.id in seen:
                raise SidecarError(f"Duplicate intent id {intent.id!r} in {self.intents_path}")
            seen.add(intent.id)
            intents.append(intent)
        return intents

    def _write_registry(self, document: dict, intents: List[Intent]) -> None:
        # Unknown top-level keys ride along untouched
        document = dict(document)
        document["active_intents"] = [intent.to_record() for intent in intents]
        self._atomic_write(
            self.intents_path,
            yaml.safe_dump(document, sort_keys=False, allow_unicode=True),
        )

    def list_intents(self) -> List[Intent]:
        """
        All registered intents, in registry order.

        Raises:
            SidecarError: If the registry is malformed
        """
        return self._parse_intents(self._read_registry_document())

    def get_intent(self, intent_id: str) -> Optional[Intent]:
        for intent in self.list_intents():
            if intent.id == intent_id:
                return intent
        return None

    def intent_ids(self) -> List[str]:
        return [intent.id for intent in self.list_intents()]

    def upsert_intent(self, intent: Intent) -> Intent:
        """Insert or replace an intent by id (last writer wins)."""
        with self.lock:
            document = self._read_registry_document()
            intents = self._parse_intents(document)
            intent.touch()
            for index, existing in enumerate(intents):
                if existing.id == intent.id:
                    intent.created_at = existing.created_at or intent.created_at
                    intents[index] = intent
                    break
            else:
                intents.append(intent)
            self._write_registry(document, intents)
        return intent

    def add_intent(self, intent: Intent) -> bool:
        """
        Insert a new intent.

        Returns:
            False (and writes nothing) if the id is already registered
        """
        with self.lock:
            document = self._read_registry_document()
            intents = self._parse_intents(document)
            if any(existing.id == intent.id for existing in intents):
                return False
            intent.touch()
            intents.append(intent)
            self._write_registry(document, intents)
        logger.info(f"Registered intent {intent.id}")
        return True

    def transition_intent(self, intent_id: str, status: IntentStatus) -> Optional[Intent]:
        """
        Move an intent to a new status.

        Returns:
            Updated intent, or None if the id is unknown

        Raises:
            InvalidStatusTransition: If the lifecycle forbids the change
        """
        with self.lock:
            document = self._read_registry_document()
            intents = self._parse_intents(document)
            for intent in intents:
                if intent.id == intent_id:
                    if intent.status == IntentStatus(status):
                        return intent
                    intent.transition(status)
                    self._write_registry(document, intents)
                    logger.info(f"Intent {intent_id} moved to {intent.status.value}")
                    return intent
        return None

    # ==================== Trace ledger ====================

    def append_trace(self, entry: TraceEntry) -> None:
        """Append one entry as a single complete line."""
        self.sidecar_dir.mkdir(parents=True, exist_ok=True)
        line = (entry.to_json_line() + "\n").encode("utf-8")
        with self._append_lock:
            fd = os.open(str(self.trace_path), os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o644)
            try:
                written = os.write(fd, line)
            finally:
                os.close(fd)
        if written != len(line):
            raise OSError(f"Short write to {self.trace_path}: {written}/{len(line)} bytes")

    def iter_trace(self) -> Iterator[TraceEntry]:
        """Entries in ledger order; corrupt lines are logged and skipped."""
        if not self.trace_path.exists():
            return

        # Binary read: a torn append may leave invalid UTF-8 on one line
        with open(self.trace_path, "rb") as f:
            for line_number, raw_line in enumerate(f, start=1):
                raw_line = raw_line.strip()
                if not raw_line or raw_line.startswith(b"#"):
                    continue
                try:
                    entry = TraceEntry.model_validate(json.loads(raw_line.decode("utf-8")))
                except ValueError as e:
                    logger.warning(f"Skipping corrupt trace line {line_number} in {self.trace_path}: {e}")
                    continue
                yield entry

    def trace_count(self) -> int:
        return sum(1 for _ in self.iter_trace())

    def recent_trace_for_intent(self, intent_id: str, limit: int = 10) -> List[TraceEntry]:
        """Newest-first entries referencing intent_id (up to limit)."""
        if limit <= 0:
            return []
        entries = [entry for entry in self.iter_trace() if entry.references_intent(intent_id)]
        entries.sort(key=lambda entry: entry.sort_key(), reverse=True)
        return entries[:limit]

    # ==================== Protected intents ====================

    def read_protected(self) -> List[str]:
        if not self.protected_path.exists():
            return []
        protected = []
        for line in self.protected_path.read_text(encoding="utf-8").splitlines():
            clean = line.split("#", 1)[0].strip()
            if clean and clean not in protected:
                protected.append(clean)
        return protected

    def is_protected(self, intent_id: str) -> bool:
        return intent_id in self.read_protected()

    def protect(self, intent_id: str) -> bool:
        """Add intent_id to the protected list. Returns False if already there."""
        with self.lock:
            if intent_id in self.read_protected():
                return False
            current = self.protected_path.read_text(encoding="utf-8") if self.protected_path.exists() else PROTECTED_TEMPLATE
            if current and not current.endswith("\n"):
                current += "\n"
            self._atomic_write(self.protected_path, current + f"{intent_id}\n")
        logger.info(f"Intent {intent_id} added to {self.protected_path.name}")
        return True

    # ==================== Knowledge log ====================

    def append_lesson(
        self,
        lesson: str,
        category: LessonCategory = LessonCategory.OTHER,
        intent_id: Optional[str] = None,
        timestamp: Optional[datetime] = None
    ) -> str:
        """
        Insert a lesson directly beneath the Lessons Learned header.

        Returns:
            The rendered entry
        """
        category = LessonCategory(category)
        day = (timestamp or datetime.now(timezone.utc)).strftime("%Y-%m-%d")
        intent_ref = f"\n- **Related Intent:** {intent_id}" if intent_id else ""
        entry = f"### {day}: {category.heading}{intent_ref}\n\n{lesson.strip()}\n\n---\n\n"

        with self.lock:
            content = self.knowledge_path.read_text(encoding="utf-8") if self.knowledge_path.exists() else KNOWLEDGE_TEMPLATE
            index = content.find(LESSONS_HEADER)
            if index == -1:
                content = content.rstrip("\n") + f"\n\n{LESSONS_HEADER}\n\n{entry}"
            else:
                after_header = content.find("\n", index)
                if after_header == -1:
                    content = content + "\n\n" + entry
                else:
                    after_header += 1
                    # Keep the blank line that follows the header
                    if content[after_header:after_header + 1] == "\n":
                        after_header += 1
                    content = content[:after_header] + entry + content[after_header:]
            self._atomic_write(self.knowledge_path, content)
        return entry

    # ==================== Intent map ====================

    def _load_intent_map(self) -> Optional[IntentMap]:
        if not self.intent_map_path.exists():
            return None
        return IntentMap.parse(self.intent_map_path.read_text(encoding="utf-8"))

    def rebuild_intent_map(self) -> IntentMap:
        """Regenerate intent_map.md from the registry and the full ledger."""
        with self.lock:
            projection = IntentMap.from_ledger(
                self.list_intents(), self.iter_trace(), self.intent_map_max_files
            )
            self._atomic_write(self.intent_map_path, projection.render())
        return projection

    def update_intent_map(
        self,
        intent: Intent,
        relative_path: str,
        timestamp: str,
        mutation_class: MutationClass
    ) -> None:
        """Idempotent upsert of (intent, path) into intent_map.md."""
        projection = self._load_intent_map()
        if projection is None:
            logger.info(f"{self.intent_map_path.name} missing or unreadable, rebuilding from ledger")
            self.rebuild_intent_map()
            return

        with self.lock:
            projection = self._load_intent_map() or IntentMap()
            projection.record(
                intent, relative_path, timestamp, MutationClass(mutation_class).value,
                self.intent_map_max_files,
            )
            self._atomic_write(self.intent_map_path, projection.render())

    def refresh_intent_map_status(self, intent: Intent) -> None:
        """Sync name/status of one intent section after a status change."""
        with self.lock:
            projection = self._load_intent_map()
            if projection is None:
                projection = IntentMap.from_ledger(
                    self.list_intents(), self.iter_trace(), self.intent_map_max_files
                )
            projection.section_for(intent)
            self._atomic_write(self.intent_map_path, projection.render())
