"""
Intent Map - human-readable projection of the ledger

intent_map.md is a cache, not a source of truth: it can be deleted and
rebuilt from agent_trace.jsonl plus the registry at any time. Updates are
idempotent upserts keyed by (intent id, path).
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from .models import Intent, TraceEntry

MAP_HEADER = (
    "# Intent Map\n"
    "\n"
    "This file maps high-level business intents to physical files and AST nodes.\n"
    "\n"
    "## Intents\n"
)

_SECTION = re.compile(r"^### (\S+): (.*)$")
_STATUS = re.compile(r"^- \*\*Status:\*\* (.*)$")
_UPDATED = re.compile(r"^- \*\*Last Updated:\*\* (.*)$")
_FILE = re.compile(r"^  - `(.+)` \| (\S+) \| (\S+)$")


@dataclass
class FileTouch:
    timestamp: str
    mutation_class: str


@dataclass
class IntentMapSection:
    intent_id: str
    name: str
    status: str
    last_updated: str = ""
    files: Dict[str, FileTouch] = field(default_factory=dict)

    def upsert_file(self, path: str, timestamp: str, mutation_class: str, max_files: int) -> None:
        existing = self.files.get(path)
        if existing is None or existing.timestamp <= timestamp:
            self.files[path] = FileTouch(timestamp=timestamp, mutation_class=mutation_class)
        if timestamp > self.last_updated:
            self.last_updated = timestamp
        self._truncate(max_files)

    def _truncate(self, max_files: int) -> None:
        newest = sorted(self.files.items(), key=lambda item: item[1].timestamp, reverse=True)
        self.files = dict(newest[:max_files])


class IntentMap:
    """Ordered collection of sections, one per intent."""

    def __init__(self, sections: Optional[List[IntentMapSection]] = None):
        self.sections: Dict[str, IntentMapSection] = {}
        for section in sections or []:
            self.sections[section.intent_id] = section

    def section_for(self, intent: Intent) -> IntentMapSection:
        section = self.sections.get(intent.id)
        if section is None:
            section = IntentMapSection(
                intent_id=intent.id,
                name=intent.name,
                status=intent.status.value,
                last_updated=intent.updated_at or "",
            )
            self.sections[intent.id] = section
        else:
            section.name = intent.name
            section.status = intent.status.value
        return section

    def record(
        self,
        intent: Intent,
        path: str,
        timestamp: str,
        mutation_class: str,
        max_files: int = 20
    ) -> None:
        self.section_for(intent).upsert_file(path, timestamp, mutation_class, max_files)

    def render(self) -> str:
        lines = [MAP_HEADER]
        for section in self.sections.values():
            lines.append(f"### {section.intent_id}: {section.name}")
            lines.append(f"- **Status:** {section.status}")
            lines.append(f"- **Last Updated:** {section.last_updated or 'never'}")
            lines.append("- **Files:**")
            if section.files:
                for path, touch in section.files.items():
                    lines.append(f"  - `{path}` | {touch.timestamp} | {touch.mutation_class}")
            else:
                lines.append("  - (none yet)")
            lines.append("")
        return "\n".join(lines) + "\n"

    @classmethod
    def parse(cls, text: str) -> Optional["IntentMap"]:
        """
        Parse a rendered map. Returns None when text is not a map this
        module wrote (caller should rebuild from the ledger).
        """
        if not text.startswith("# Intent Map") or "## Intents" not in text:
            return None

        sections: List[IntentMapSection] = []
        current: Optional[IntentMapSection] = None
        for line in text.splitlines():
            match = _SECTION.match(line)
            if match:
                current = IntentMapSection(intent_id=match.group(1), name=match.group(2), status="")
                sections.append(current)
                continue
            if current is None:
                continue
            match = _STATUS.match(line)
            if match:
                current.status = match.group(1).strip()
                continue
            match = _UPDATED.match(line)
            if match:
                value = match.group(1).strip()
                current.last_updated = "" if value == "never" else value
                continue
            match = _FILE.match(line)
            if match:
                current.files[match.group(1)] = FileTouch(
                    timestamp=match.group(2), mutation_class=match.group(3)
                )

        return cls(sections)

    @classmethod
    def from_ledger(
        cls,
        intents: Iterable[Intent],
        entries: Iterable[TraceEntry],
        max_files: int = 20
    ) -> "IntentMap":
        """Rebuild the full projection from the registry and the ledger."""
        by_id = {intent.id: intent for intent in intents}
        projection = cls()
        for intent in by_id.values():
            projection.section_for(intent)

        for entry in sorted(entries, key=lambda e: e.sort_key()):
            mutation_class = entry.mutation_class.value if entry.mutation_class else "UNKNOWN"
            for intent_id in entry.intent_ids():
                intent = by_id.get(intent_id)
                if intent is None:
                    continue
                for file in entry.files:
                    projection.record(intent, file.relative_path, entry.timestamp, mutation_class, max_files)

        return projection
