"""
Tests for records, structured errors and intent inference

Validates:
- Intent lifecycle transitions and monotonic updated_at
- Trace entry helpers
- Structured error payloads
- Intent id allocation and field inference
"""

import json
import pytest
from pathlib import Path

# Add packages to path
import sys
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from intent_governance import errors
from intent_governance.errors import ErrorKind, IntentNotFound, raise_for
from intent_governance.intent_inference import (
    default_intent_name,
    infer_acceptance_criteria,
    infer_constraints,
    infer_scope,
    next_intent_id
)
from intent_governance.models import (
    Intent,
    IntentStatus,
    InvalidStatusTransition,
    TraceEntry,
    generate_trace_id
)
from intent_governance.operations import OperationCatalog, Target


# ========== Intent lifecycle ==========

@pytest.mark.parametrize("start,end,allowed", [
    (IntentStatus.TODO, IntentStatus.IN_PROGRESS, True),
    (IntentStatus.IN_PROGRESS, IntentStatus.DONE, True),
    (IntentStatus.TODO, IntentStatus.DONE, False),
    (IntentStatus.DONE, IntentStatus.IN_PROGRESS, False),
    (IntentStatus.DONE, IntentStatus.BLOCKED, True),
    (IntentStatus.BLOCKED, IntentStatus.TODO, False),
])
def test_status_transitions(start, end, allowed):
    intent = Intent(id="INT-001", name="x", status=start)
    assert intent.can_transition(end) is allowed
    if not allowed:
        with pytest.raises(InvalidStatusTransition):
            intent.transition(end)


def test_touch_never_moves_backwards():
    intent = Intent(id="INT-001", name="x", updated_at="2026-05-01T00:00:00+00:00")
    intent.touch("2026-04-01T00:00:00+00:00")
    assert intent.updated_at == "2026-05-01T00:00:00+00:00"
    intent.touch("2026-06-01T00:00:00+00:00")
    assert intent.updated_at == "2026-06-01T00:00:00+00:00"
    assert intent.created_at == "2026-04-01T00:00:00+00:00"


def test_to_record_is_plain_data():
    record = Intent(id="INT-001", name="x", owned_scope=["a/**"]).to_record()
    assert record["status"] == "TODO"
    assert json.dumps(record)


# ========== Trace entries ==========

def test_trace_id_format():
    trace_id = generate_trace_id()
    prefix, millis, suffix = trace_id.split("-")
    assert prefix == "trace"
    assert millis.isdigit()
    assert len(suffix) == 9


def test_trace_entry_json_line_is_compact():
    entry = TraceEntry(id="t1", timestamp="2026-01-01T00:00:00Z")
    line = entry.to_json_line()
    assert "\n" not in line
    assert "tool_name" not in line
    assert json.loads(line)["vcs"] == {"revision_id": "unknown"}


# ========== Structured errors ==========

def test_structured_error_round_trip():
    error = errors.scope_violation("INT-001", "src/x.ts", ["src/auth/**"], ["INT-002"])
    payload = json.loads(error.to_json())

    assert payload["kind"] == "ScopeViolation"
    assert set(payload) == {"kind", "message", "details", "recoverable", "suggested_action"}
    assert payload["details"]["owned_scope"] == ["src/auth/**"]


def test_raise_for_maps_kind_to_exception():
    with pytest.raises(IntentNotFound) as exc_info:
        raise_for(errors.intent_not_found("INT-9", []))
    assert exc_info.value.kind == ErrorKind.INTENT_NOT_FOUND
    assert "create_intent" in exc_info.value.error.suggested_action


# ========== Operations ==========

def test_target_rejects_inverted_range():
    with pytest.raises(ValueError):
        Target.file("a.ts", start_line=5, end_line=2)


def test_operation_catalog():
    catalog = OperationCatalog(["custom_write"])
    assert catalog.is_mutating("apply_diff")
    assert catalog.is_mutating("custom_write")
    assert not catalog.is_mutating("read_file")


# ========== Inference ==========

def test_next_intent_id():
    assert next_intent_id([]) == "INT-001"
    assert next_intent_id(["INT-002", "INT-010", "misc", "INT-x"]) == "INT-011"
    assert next_intent_id(["INT-999"]) == "INT-1000"


def test_default_intent_name_truncates():
    name = default_intent_name("INT-001", "a" * 60)
    assert name == "INT-001 — " + "a" * 50 + "..."


def test_infer_scope_keywords():
    assert infer_scope("Add a new endpoint") == ["src/api/**"]
    assert infer_scope("Polish the button component") == ["src/components/**"]
    assert infer_scope("Write a hook for auth") == ["src/hooks/**"]
    assert infer_scope("General cleanup") == ["src/**"]


def test_infer_constraints_default():
    assert infer_constraints("General cleanup") == [
        "Must follow project architecture and coding standards"
    ]


def test_infer_acceptance_criteria():
    criteria = infer_acceptance_criteria("Ship it")
    assert criteria[0] == "Implementation matches the requirements: Ship it"
    assert len(criteria) == 3
