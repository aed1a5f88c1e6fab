"""
Governance configuration.

Loaded from <sidecar>/governance.yaml when present (multi-document YAML is
merged, later documents win), then overridden from the environment.
"""

from __future__ import annotations

import hashlib
import logging
import os
from pathlib import Path
from typing import List, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError

from .classifier import ClassifierThresholds
from .errors import SidecarError
from .stale_guard import UnseenPolicy

logger = logging.getLogger(__name__)

DEFAULT_SIDECAR_DIR = ".orchestration"
CONFIG_FILENAME = "governance.yaml"


def _read_bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    normalized = raw.strip().lower()
    if normalized in {"0", "false", "off", "no"}:
        return False
    if normalized in {"1", "true", "on", "yes"}:
        return True
    return default


class GovernanceConfig(BaseModel):
    sidecar_dir: str = DEFAULT_SIDECAR_DIR
    freshness_window_seconds: float = Field(3600, gt=0)
    unseen_policy: UnseenPolicy = UnseenPolicy.ALLOW
    recent_history_limit: int = Field(5, ge=0)
    intent_map_max_files: int = Field(20, ge=1)
    architecture_doc: str = "docs/Architecture.md"
    require_architecture_doc: bool = True
    planning_prerequisites: List[str] = Field(default_factory=list)
    lock_timeout_seconds: float = Field(10, gt=0)
    lock_stale_seconds: float = Field(60, gt=0)
    classifier: ClassifierThresholds = Field(default_factory=ClassifierThresholds)
    extra_mutating_operations: List[str] = Field(default_factory=list)

    def apply_env(self) -> "GovernanceConfig":
        """Return a copy with INTENT_GOVERNANCE_* overrides applied."""
        updates = {}

        sidecar = os.getenv("INTENT_GOVERNANCE_SIDECAR_DIR")
        if sidecar:
            updates["sidecar_dir"] = sidecar

        policy = os.getenv("INTENT_GOVERNANCE_UNSEEN_POLICY")
        if policy:
            try:
                updates["unseen_policy"] = UnseenPolicy(policy.strip().lower())
            except ValueError:
                logger.warning(f"Ignoring INTENT_GOVERNANCE_UNSEEN_POLICY={policy!r}")

        window = os.getenv("INTENT_GOVERNANCE_FRESHNESS_WINDOW")
        if window:
            try:
                updates["freshness_window_seconds"] = float(window)
            except ValueError:
                logger.warning(f"Ignoring INTENT_GOVERNANCE_FRESHNESS_WINDOW={window!r}")

        updates["require_architecture_doc"] = _read_bool_env(
            "INTENT_GOVERNANCE_REQUIRE_ARCHITECTURE", self.require_architecture_doc
        )

        return self.model_copy(update=updates)


def _load_yaml_documents(path: Path) -> dict:
    content = path.read_text(encoding="utf-8")
    merged = {}
    for doc in yaml.safe_load_all(content):
        if isinstance(doc, dict):
            merged.update(doc)
    return merged


def load_config(
    workspace_root: Union[str, Path],
    config_path: Optional[Union[str, Path]] = None,
    use_env: bool = True
) -> GovernanceConfig:
    """
    Load configuration for a workspace.

    Args:
        workspace_root: Workspace root directory
        config_path: Explicit YAML file (default: <sidecar>/governance.yaml)
        use_env: Apply INTENT_GOVERNANCE_* environment overrides

    Raises:
        SidecarError: If the YAML is malformed or fails validation
    """
    workspace_root = Path(workspace_root)
    if config_path is None:
        sidecar = os.getenv("INTENT_GOVERNANCE_SIDECAR_DIR") or DEFAULT_SIDECAR_DIR
        config_path = workspace_root / sidecar / CONFIG_FILENAME
    config_path = Path(config_path)

    data = {}
    if config_path.exists():
        try:
            data = _load_yaml_documents(config_path)
        except yaml.YAMLError as e:
            raise SidecarError(f"Invalid YAML in {config_path}: {e}") from e

    try:
        config = GovernanceConfig.model_validate(data)
    except ValidationError as e:
        raise SidecarError(f"Invalid governance config {config_path}: {e}") from e

    return config.apply_env() if use_env else config


def config_fingerprint(config: GovernanceConfig) -> str:
    """Short hash of the effective configuration, logged for audit replay."""
    payload = config.model_dump_json()
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:12]
