"""
Tests for the intent map projection

Validates:
- Render / parse stability
- Idempotent (intent, path) upserts
- Per-intent file cap keeps the newest entries
- Foreign documents are rejected for rebuild
"""

from pathlib import Path

# Add packages to path
import sys
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from intent_governance.intent_map import MAP_HEADER, IntentMap
from intent_governance.models import Intent, IntentStatus


def make_intent(intent_id="INT-001", name="Auth", status=IntentStatus.IN_PROGRESS):
    return Intent(id=intent_id, name=name, status=status, updated_at="2026-01-01T00:00:00+00:00")


def test_render_parse_stable():
    projection = IntentMap()
    projection.record(make_intent(), "src/a.ts", "2026-01-02T00:00:00+00:00", "INTENT_EVOLUTION")
    projection.record(make_intent("INT-002", "Api"), "src/api/x.ts", "2026-01-03T00:00:00+00:00", "AST_REFACTOR")

    rendered = projection.render()
    reparsed = IntentMap.parse(rendered)

    assert reparsed is not None
    assert reparsed.render() == rendered


def test_record_is_idempotent():
    projection = IntentMap()
    intent = make_intent()
    for _ in range(3):
        projection.record(intent, "src/a.ts", "2026-01-02T00:00:00+00:00", "INTENT_EVOLUTION")

    section = projection.sections["INT-001"]
    assert list(section.files) == ["src/a.ts"]
    assert section.last_updated == "2026-01-02T00:00:00+00:00"


def test_older_touch_does_not_overwrite_newer():
    projection = IntentMap()
    intent = make_intent()
    projection.record(intent, "src/a.ts", "2026-01-05T00:00:00+00:00", "AST_REFACTOR")
    projection.record(intent, "src/a.ts", "2026-01-02T00:00:00+00:00", "INTENT_EVOLUTION")

    touch = projection.sections["INT-001"].files["src/a.ts"]
    assert touch.mutation_class == "AST_REFACTOR"


def test_file_cap_keeps_newest():
    projection = IntentMap()
    intent = make_intent()
    for day in range(1, 6):
        projection.record(intent, f"src/f{day}.ts", f"2026-01-0{day}T00:00:00+00:00", "INTENT_EVOLUTION", max_files=2)

    assert list(projection.sections["INT-001"].files) == ["src/f5.ts", "src/f4.ts"]


def test_section_follows_status():
    projection = IntentMap()
    projection.section_for(make_intent(status=IntentStatus.TODO))
    projection.section_for(make_intent(status=IntentStatus.DONE))

    rendered = projection.render()
    assert "- **Status:** DONE" in rendered
    assert rendered.count("### INT-001") == 1


def test_empty_section_rendering():
    projection = IntentMap()
    projection.section_for(make_intent())
    assert "  - (none yet)" in projection.render()


def test_parse_rejects_foreign_document():
    assert IntentMap.parse("# Something else\n") is None
    assert IntentMap.parse(MAP_HEADER) is not None
