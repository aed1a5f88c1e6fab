"""
Stale File Guard - optimistic locking per session

Remembers the digest of each target as this session last saw it. At the
moment of a write, the current content is hashed and compared; a mismatch
means another writer (human or another agent session) got there first and
the caller must re-read before retrying.

No distributed lock: conflicts are detected at commit time, never prevented.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Union

from .hashing import compute_content_hash
from .path_utils import normalize_relative_path

logger = logging.getLogger(__name__)

ContentReader = Callable[[str], Union[str, bytes]]


class UnseenPolicy(str, Enum):
    """What to do when there is no usable observation for a target."""
    ALLOW = "allow"  # fail open: unseen / expired entries never block
    DENY = "deny"    # fail closed: unseen / expired entries count as stale


@dataclass
class Observation:
    digest: str
    observed_at: float
    content: Optional[str] = None


@dataclass
class FreshnessResult:
    fresh: bool
    expected_digest: Optional[str] = None
    actual_digest: Optional[str] = None
    reason: str = ""


def _cache_key(path: str) -> str:
    result = normalize_relative_path(path)
    return result.rel_path if result.ok else path.replace("\\", "/")


class StaleFileGuard:
    """Per-session map of path -> last observed digest."""

    def __init__(
        self,
        freshness_window_seconds: float = 3600,
        unseen_policy: UnseenPolicy = UnseenPolicy.ALLOW,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            freshness_window_seconds: Observations older than this are ignored
            unseen_policy: Behaviour for missing or expired observations
            clock: Time source (seconds); injectable for tests
        """
        self.freshness_window_seconds = freshness_window_seconds
        self.unseen_policy = UnseenPolicy(unseen_policy)
        self._clock = clock
        self._observations: Dict[str, Observation] = {}

    def record_observation(self, path: str, content: Union[str, bytes]) -> Observation:
        """Store hash(content) for path, replacing any earlier observation."""
        text = content if isinstance(content, str) else None
        if text is None:
            try:
                text = content.decode("utf-8")
            except UnicodeDecodeError:
                text = None
        observation = Observation(
            digest=compute_content_hash(content),
            observed_at=self._clock(),
            content=text,
        )
        self._observations[_cache_key(path)] = observation
        return observation

    def get(self, path: str) -> Optional[Observation]:
        return self._observations.get(_cache_key(path))

    def forget(self, path: str) -> None:
        self._observations.pop(_cache_key(path), None)

    def clear(self) -> None:
        self._observations.clear()

    def __len__(self) -> int:
        return len(self._observations)

    def _is_expired(self, observation: Observation) -> bool:
        return self._clock() - observation.observed_at > self.freshness_window_seconds

    def check_fresh(self, path: str, reader: ContentReader) -> FreshnessResult:
        """
        Compare the current content of path with the last observation.

        Args:
            path: Target path (any form; canonicalized for the lookup)
            reader: Returns current content; raises OSError if unreadable

        Returns:
            FreshnessResult (fresh=False on mismatch or vanished target)
        """
        observation = self.get(path)

        if observation is None or self._is_expired(observation):
            reason = "not_observed" if observation is None else "observation_expired"
            if self.unseen_policy == UnseenPolicy.ALLOW:
                return FreshnessResult(fresh=True, reason=reason)
            return FreshnessResult(
                fresh=False,
                expected_digest=observation.digest if observation else None,
                reason=reason,
            )

        try:
            current = reader(path)
        except OSError as e:
            logger.info(f"Target {path} unreadable during freshness check: {e}")
            return FreshnessResult(
                fresh=False,
                expected_digest=observation.digest,
                actual_digest=None,
                reason="target_missing",
            )

        actual = compute_content_hash(current)
        if actual != observation.digest:
            return FreshnessResult(
                fresh=False,
                expected_digest=observation.digest,
                actual_digest=actual,
                reason="content_changed",
            )

        return FreshnessResult(
            fresh=True,
            expected_digest=observation.digest,
            actual_digest=actual,
            reason="unchanged",
        )
