"""Version-control marker for trace entries."""

import logging
import subprocess
from pathlib import Path
from typing import Union

logger = logging.getLogger(__name__)

UNKNOWN_REVISION = "unknown"


def resolve_revision_id(workspace_root: Union[str, Path], timeout: float = 5) -> str:
    """HEAD commit of the workspace, or "unknown" when git is unavailable."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            cwd=str(workspace_root),
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug(f"git rev-parse unavailable: {e}")
        return UNKNOWN_REVISION

    if result.returncode != 0:
        return UNKNOWN_REVISION
    return result.stdout.strip() or UNKNOWN_REVISION
