"""
Tests for Sidecar Store

Validates:
- Sidecar initialization (defaults created, existing files untouched)
- Intent registry read/write, duplicate and malformed input handling
- Append-only ledger with corrupt-line tolerance
- Protected intent list
- Knowledge log insertion order
- Intent map upsert and rebuild
- Sidecar lock
"""

import json
import pytest
from datetime import datetime, timezone
from pathlib import Path

import yaml

# Add packages to path
import sys
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from intent_governance.errors import SidecarError
from intent_governance.models import (
    Intent,
    IntentStatus,
    InvalidStatusTransition,
    LessonCategory,
    MutationClass,
    TraceConversation,
    TraceEntry,
    TraceFile,
    TraceRange,
    TraceRelation
)
from intent_governance.storage import LESSONS_HEADER, SidecarStore
from intent_governance.store_lock import LockAcquisitionError, StoreLock


@pytest.fixture
def store(tmp_path):
    store = SidecarStore(tmp_path)
    store.initialize()
    return store


def make_entry(entry_id, intent_id, path="src/a.ts", timestamp="2026-01-01T00:00:00+00:00"):
    return TraceEntry(
        id=entry_id,
        timestamp=timestamp,
        tool_name="write_to_file",
        mutation_class=MutationClass.INTENT_EVOLUTION,
        files=[
            TraceFile(
                relative_path=path,
                conversations=[
                    TraceConversation(
                        url="session-test",
                        ranges=[TraceRange(start_line=1, end_line=1, content_hash="sha256:abc")],
                        related=[TraceRelation(type="intent", value=intent_id)],
                    )
                ],
            )
        ],
    )


# ========== Initialization ==========

def test_initialize_creates_sidecar_files(tmp_path):
    store = SidecarStore(tmp_path)
    store.initialize()

    for path in [store.intents_path, store.trace_path, store.intent_map_path,
                 store.knowledge_path, store.protected_path]:
        assert path.exists()

    assert yaml.safe_load(store.intents_path.read_text()) == {"active_intents": []}
    assert LESSONS_HEADER in store.knowledge_path.read_text()


def test_initialize_keeps_existing_files(store):
    store.knowledge_path.write_text("# Mine\n")
    store.initialize()
    assert store.knowledge_path.read_text() == "# Mine\n"


def test_custom_sidecar_dir(tmp_path):
    store = SidecarStore(tmp_path, sidecar_dir="gov")
    store.initialize()
    assert (tmp_path / "gov" / "active_intents.yaml").exists()


# ========== Intent registry ==========

def test_add_and_get_intent(store):
    intent = Intent(id="INT-001", name="Auth", owned_scope=["src/auth/**"])

    assert store.add_intent(intent) is True

    loaded = store.get_intent("INT-001")
    assert loaded.name == "Auth"
    assert loaded.owned_scope == ["src/auth/**"]
    assert loaded.created_at is not None
    assert store.intent_ids() == ["INT-001"]


def test_add_intent_rejects_duplicate(store):
    store.add_intent(Intent(id="INT-001", name="first"))
    assert store.add_intent(Intent(id="INT-001", name="second")) is False
    assert store.get_intent("INT-001").name == "first"


def test_get_unknown_intent(store):
    assert store.get_intent("INT-404") is None


def test_upsert_replaces_by_id(store):
    store.add_intent(Intent(id="INT-001", name="old"))
    store.upsert_intent(Intent(id="INT-001", name="new"))
    store.upsert_intent(Intent(id="INT-002", name="other"))

    assert [i.name for i in store.list_intents()] == ["new", "other"]


def test_registry_reads_hand_written_yaml(store):
    """Test the registry tolerates numbers, bare timestamps and null lists."""
    store.intents_path.write_text(
        "active_intents:\n"
        "  - id: 7\n"
        "    name: Legacy\n"
        "    status: IN_PROGRESS\n"
        "    owned_scope:\n"
        "      - lib/**\n"
        "      - lib/**\n"
        "    constraints:\n"
        "    created_at: 2026-01-01T10:00:00Z\n"
    )

    intent = store.get_intent("7")

    assert intent.status == IntentStatus.IN_PROGRESS
    assert intent.owned_scope == ["lib/**"]
    assert intent.constraints == []
    assert intent.created_at.startswith("2026-01-01T10:00:00")


def test_registry_preserves_unknown_keys(store):
    store.intents_path.write_text("project: demo\nactive_intents: []\n")
    store.add_intent(Intent(id="INT-001", name="x"))

    data = yaml.safe_load(store.intents_path.read_text())
    assert data["project"] == "demo"
    assert data["active_intents"][0]["id"] == "INT-001"


def test_malformed_registry_raises(store):
    store.intents_path.write_text("active_intents: [unclosed\n")
    with pytest.raises(SidecarError):
        store.list_intents()


def test_duplicate_ids_in_registry_raise(store):
    store.intents_path.write_text(
        "active_intents:\n  - {id: INT-001, name: a}\n  - {id: INT-001, name: b}\n"
    )
    with pytest.raises(SidecarError, match="Duplicate"):
        store.list_intents()


def test_transition_intent(store):
    store.add_intent(Intent(id="INT-001", name="x"))

    updated = store.transition_intent("INT-001", IntentStatus.IN_PROGRESS)

    assert updated.status == IntentStatus.IN_PROGRESS
    assert store.get_intent("INT-001").status == IntentStatus.IN_PROGRESS
    assert store.transition_intent("INT-404", IntentStatus.DONE) is None


def test_transition_enforces_lifecycle(store):
    store.add_intent(Intent(id="INT-001", name="x"))
    with pytest.raises(InvalidStatusTransition):
        store.transition_intent("INT-001", IntentStatus.DONE)


def test_blocked_reachable_from_any_state(store):
    store.add_intent(Intent(id="INT-001", name="x", status=IntentStatus.DONE))
    assert store.transition_intent("INT-001", IntentStatus.BLOCKED).status == IntentStatus.BLOCKED


# ========== Trace ledger ==========

def test_append_and_iterate_trace(store):
    store.append_trace(make_entry("t1", "INT-001"))
    store.append_trace(make_entry("t2", "INT-002"))

    lines = store.trace_path.read_text().splitlines()
    assert len(lines) == 2
    assert json.loads(lines[0])["id"] == "t1"
    assert [e.id for e in store.iter_trace()] == ["t1", "t2"]


def test_append_is_one_line_per_entry(store):
    """Test entries never contain embedded newlines."""
    entry = make_entry("t1", "INT-001", path="src/multi\nline.ts")
    store.append_trace(entry)
    assert store.trace_path.read_text().count("\n") == 1


def test_corrupt_trace_lines_skipped(store):
    store.append_trace(make_entry("t1", "INT-001"))
    with open(store.trace_path, "a") as f:
        f.write("{not json\n")
        f.write("# comment line\n")
        f.write("\n")
        f.write('{"id": "missing-timestamp"}\n')
    store.append_trace(make_entry("t2", "INT-001"))

    assert [e.id for e in store.iter_trace()] == ["t1", "t2"]
    assert store.trace_count() == 2


def test_invalid_utf8_trace_line_skipped(store):
    """Test a torn append with undecodable bytes does not break reads."""
    store.append_trace(make_entry("t1", "INT-001"))
    with open(store.trace_path, "ab") as f:
        f.write(b'{"id": "torn\xff\xfe", "timestamp": "x"}\n')
    store.append_trace(make_entry("t2", "INT-001"))

    assert [e.id for e in store.iter_trace()] == ["t1", "t2"]
    assert {e.id for e in store.recent_trace_for_intent("INT-001")} == {"t1", "t2"}


def test_unknown_trace_fields_preserved(store):
    with open(store.trace_path, "a") as f:
        f.write(json.dumps({"id": "ext", "timestamp": "2026-01-01T00:00:00Z", "extension": {"k": 1}}) + "\n")
    entry = next(store.iter_trace())
    assert entry.model_dump()["extension"] == {"k": 1}


def test_recent_trace_for_intent(store):
    store.append_trace(make_entry("old", "INT-001", timestamp="2026-01-01T00:00:00+00:00"))
    store.append_trace(make_entry("other", "INT-002", timestamp="2026-01-02T00:00:00+00:00"))
    store.append_trace(make_entry("new", "INT-001", timestamp="2026-01-03T00:00:00+00:00"))
    store.append_trace(make_entry("mid", "INT-001", timestamp="2026-01-02T00:00:00+00:00"))

    recent = store.recent_trace_for_intent("INT-001", limit=2)

    assert [e.id for e in recent] == ["new", "mid"]
    assert store.recent_trace_for_intent("INT-001", limit=0) == []


# ========== Protected list ==========

def test_protected_list_parsing(store):
    store.protected_path.write_text(
        "# header\n"
        "INT-005  # Legacy system\n"
        "\n"
        "  INT-010\n"
        "INT-005\n"
    )
    assert store.read_protected() == ["INT-005", "INT-010"]
    assert store.is_protected("INT-010")
    assert not store.is_protected("INT-001")


def test_protect_appends_once(store):
    assert store.protect("INT-003") is True
    assert store.protect("INT-003") is False
    assert store.read_protected() == ["INT-003"]


def test_missing_protected_file_means_none(tmp_path):
    assert SidecarStore(tmp_path).read_protected() == []


# ========== Knowledge log ==========

def test_append_lesson_newest_first(store):
    store.append_lesson(
        "Use snake_case", LessonCategory.CODE_STYLE, "INT-001",
        timestamp=datetime(2026, 3, 1, tzinfo=timezone.utc),
    )
    store.append_lesson(
        "Cache the parser", LessonCategory.PERFORMANCE,
        timestamp=datetime(2026, 3, 2, tzinfo=timezone.utc),
    )

    content = store.knowledge_path.read_text()

    assert content.index("Cache the parser") < content.index("Use snake_case")
    assert "### 2026-03-01: Code style\n- **Related Intent:** INT-001\n\nUse snake_case\n\n---\n" in content
    assert "### 2026-03-02: Performance\n\nCache the parser\n" in content
    assert content.index(LESSONS_HEADER) < content.index("Cache the parser")


def test_append_lesson_adds_missing_header(store):
    store.knowledge_path.write_text("# Notes\n")
    store.append_lesson("Keep it short", LessonCategory.OTHER)
    content = store.knowledge_path.read_text()
    assert content.startswith("# Notes\n")
    assert content.index(LESSONS_HEADER) < content.index("Keep it short")


# ========== Intent map ==========

def test_update_intent_map_upserts(store):
    intent = Intent(id="INT-001", name="Auth")
    store.add_intent(intent)

    store.update_intent_map(intent, "src/a.ts", "2026-01-01T00:00:00+00:00", MutationClass.INTENT_EVOLUTION)
    store.update_intent_map(intent, "src/a.ts", "2026-01-02T00:00:00+00:00", MutationClass.AST_REFACTOR)

    content = store.intent_map_path.read_text()
    assert content.count("`src/a.ts`") == 1
    assert "`src/a.ts` | 2026-01-02T00:00:00+00:00 | AST_REFACTOR" in content
    assert "### INT-001: Auth" in content


def test_intent_map_rebuilt_when_missing(store):
    intent = Intent(id="INT-001", name="Auth")
    store.add_intent(intent)
    store.append_trace(make_entry("t1", "INT-001", path="src/from_ledger.ts"))
    store.intent_map_path.unlink()

    store.update_intent_map(intent, "src/from_ledger.ts", "2026-01-01T00:00:00+00:00", MutationClass.INTENT_EVOLUTION)

    assert "`src/from_ledger.ts`" in store.intent_map_path.read_text()


def test_rebuild_matches_incremental(store):
    """Test the map is a pure projection of registry plus ledger."""
    intent = Intent(id="INT-001", name="Auth")
    store.add_intent(intent)
    for i, path in enumerate(["src/a.ts", "src/b.ts", "src/a.ts"]):
        timestamp = f"2026-01-0{i + 1}T00:00:00+00:00"
        store.append_trace(make_entry(f"t{i}", "INT-001", path=path, timestamp=timestamp))
        store.update_intent_map(store.get_intent("INT-001"), path, timestamp, MutationClass.INTENT_EVOLUTION)

    incremental = store.intent_map_path.read_text()
    store.rebuild_intent_map()

    assert store.intent_map_path.read_text() == incremental


# ========== Lock ==========

def test_store_lock_blocks_second_holder(tmp_path):
    first = StoreLock(tmp_path, timeout_seconds=5)
    second = StoreLock(tmp_path, timeout_seconds=0.1)

    with first:
        with pytest.raises(LockAcquisitionError):
            second.acquire()

    with second:
        assert (tmp_path / ".lock").exists()
    assert not (tmp_path / ".lock").exists()


def test_store_lock_takes_over_stale_lock(tmp_path):
    (tmp_path / ".lock").write_text(json.dumps({"token": "dead", "acquired_at": 0, "pid": 1}))
    lock = StoreLock(tmp_path, timeout_seconds=1, stale_seconds=60)

    with lock:
        holder = json.loads((tmp_path / ".lock").read_text())
        assert holder["token"] != "dead"
