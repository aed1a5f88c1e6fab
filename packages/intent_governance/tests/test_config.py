"""
Tests for governance configuration loading

Validates:
- Defaults without a config file
- YAML overrides (multi-document merge)
- Environment overrides
- Invalid input surfaces as SidecarError
"""

import pytest
from pathlib import Path

# Add packages to path
import sys
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from intent_governance.config import (
    GovernanceConfig,
    config_fingerprint,
    load_config
)
from intent_governance.errors import SidecarError
from intent_governance.stale_guard import UnseenPolicy

ENV_VARS = [
    "INTENT_GOVERNANCE_SIDECAR_DIR",
    "INTENT_GOVERNANCE_UNSEEN_POLICY",
    "INTENT_GOVERNANCE_FRESHNESS_WINDOW",
    "INTENT_GOVERNANCE_REQUIRE_ARCHITECTURE",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def write_config(workspace: Path, text: str, sidecar: str = ".orchestration") -> Path:
    path = workspace / sidecar / "governance.yaml"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path


def test_defaults_without_file(tmp_path):
    config = load_config(tmp_path)

    assert config.sidecar_dir == ".orchestration"
    assert config.freshness_window_seconds == 3600
    assert config.unseen_policy == UnseenPolicy.ALLOW
    assert config.recent_history_limit == 5
    assert config.require_architecture_doc is True
    assert config.classifier.refactor_similarity == 0.8


def test_yaml_overrides(tmp_path):
    write_config(tmp_path, (
        "unseen_policy: deny\n"
        "recent_history_limit: 2\n"
        "planning_prerequisites: [docs/plan.md]\n"
        "classifier:\n"
        "  refactor_similarity: 0.7\n"
    ))

    config = load_config(tmp_path)

    assert config.unseen_policy == UnseenPolicy.DENY
    assert config.recent_history_limit == 2
    assert config.planning_prerequisites == ["docs/plan.md"]
    assert config.classifier.refactor_similarity == 0.7
    assert config.classifier.low_similarity == 0.5


def test_multi_document_merge(tmp_path):
    """Test later YAML documents win."""
    write_config(tmp_path, "recent_history_limit: 2\n---\nrecent_history_limit: 9\n")
    assert load_config(tmp_path).recent_history_limit == 9


def test_explicit_config_path(tmp_path):
    path = tmp_path / "custom.yaml"
    path.write_text("intent_map_max_files: 3\n")
    assert load_config(tmp_path, config_path=path).intent_map_max_files == 3


def test_env_overrides(tmp_path, monkeypatch):
    write_config(tmp_path, "unseen_policy: allow\n")
    monkeypatch.setenv("INTENT_GOVERNANCE_UNSEEN_POLICY", "DENY")
    monkeypatch.setenv("INTENT_GOVERNANCE_FRESHNESS_WINDOW", "30")
    monkeypatch.setenv("INTENT_GOVERNANCE_REQUIRE_ARCHITECTURE", "false")

    config = load_config(tmp_path)

    assert config.unseen_policy == UnseenPolicy.DENY
    assert config.freshness_window_seconds == 30
    assert config.require_architecture_doc is False


def test_env_sidecar_dir_moves_config_lookup(tmp_path, monkeypatch):
    write_config(tmp_path, "recent_history_limit: 1\n", sidecar="gov")
    monkeypatch.setenv("INTENT_GOVERNANCE_SIDECAR_DIR", "gov")

    config = load_config(tmp_path)

    assert config.sidecar_dir == "gov"
    assert config.recent_history_limit == 1


def test_bad_env_values_ignored(tmp_path, monkeypatch):
    monkeypatch.setenv("INTENT_GOVERNANCE_UNSEEN_POLICY", "sometimes")
    monkeypatch.setenv("INTENT_GOVERNANCE_FRESHNESS_WINDOW", "soon")
    monkeypatch.setenv("INTENT_GOVERNANCE_REQUIRE_ARCHITECTURE", "maybe")

    config = load_config(tmp_path)

    assert config.unseen_policy == UnseenPolicy.ALLOW
    assert config.freshness_window_seconds == 3600
    assert config.require_architecture_doc is True


def test_use_env_false(tmp_path, monkeypatch):
    monkeypatch.setenv("INTENT_GOVERNANCE_UNSEEN_POLICY", "deny")
    assert load_config(tmp_path, use_env=False).unseen_policy == UnseenPolicy.ALLOW


def test_invalid_yaml_raises(tmp_path):
    write_config(tmp_path, "recent_history_limit: [\n")
    with pytest.raises(SidecarError):
        load_config(tmp_path)


def test_invalid_values_raise(tmp_path):
    write_config(tmp_path, "freshness_window_seconds: -5\n")
    with pytest.raises(SidecarError):
        load_config(tmp_path)


def test_fingerprint_tracks_changes():
    base = GovernanceConfig()
    assert config_fingerprint(base) == config_fingerprint(GovernanceConfig())
    assert config_fingerprint(base) != config_fingerprint(GovernanceConfig(recent_history_limit=1))
