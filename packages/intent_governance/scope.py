"""
Scope Validator - ownership glob matching

Pattern language (case-sensitive, over canonical relative paths):
- "**"  matches any sequence of whole path segments, including none
- "*"   matches any run of characters inside one segment
- anything else is literal, "/" included

A path is in scope when it matches ANY pattern. No negative patterns.
Unmatched (or uncanonicalizable) paths are out of scope.
"""

from functools import lru_cache
from typing import Iterable, List, Optional, Sequence, Tuple

from .models import Intent
from .path_utils import normalize_relative_path

GLOBSTAR = "**"


def _match_segment(segment: str, pattern: str) -> bool:
    """Match one path segment against a segment pattern with "*" wildcards."""
    if "*" not in pattern:
        return segment == pattern

    chunks = pattern.split("*")
    head, tail = chunks[0], chunks[-1]
    if len(segment) < len(head) + len(tail):
        return False
    if not segment.startswith(head) or not segment.endswith(tail):
        return False

    position = len(head)
    end = len(segment) - len(tail)
    for chunk in chunks[1:-1]:
        if not chunk:
            continue
        found = segment.find(chunk, position, end)
        if found < 0:
            return False
        position = found + len(chunk)
    return True


class ScopePattern:
    """A compiled ownership pattern."""

    def __init__(self, pattern: str):
        self.pattern = pattern
        self.segments = self._compile(pattern)

    @staticmethod
    def _compile(pattern: str) -> Tuple[str, ...]:
        text = pattern.replace("\\", "/").strip()
        segments = []
        for segment in text.split("/"):
            if segment in ("", "."):
                continue
            if "**" in segment and segment != GLOBSTAR:
                # "a**b" has no cross-segment meaning; treat as "a*b"
                while "**" in segment:
                    segment = segment.replace("**", "*")
            if segment == GLOBSTAR and segments and segments[-1] == GLOBSTAR:
                continue
            segments.append(segment)
        return tuple(segments)

    def matches(self, rel_path: str) -> bool:
        """Match an already-canonical relative path."""
        if not self.segments:
            return False
        parts = tuple(rel_path.split("/")) if rel_path else ()
        if not parts:
            return False
        return _match_parts(parts, self.segments)

    def __repr__(self) -> str:
        return f"ScopePattern({self.pattern!r})"


def _match_parts(parts: Tuple[str, ...], segments: Tuple[str, ...]) -> bool:
    memo = {}

    def match(pi: int, si: int) -> bool:
        key = (pi, si)
        if key in memo:
            return memo[key]

        if si == len(segments):
            result = pi == len(parts)
        elif segments[si] == GLOBSTAR:
            # Consume zero or more whole segments
            result = any(match(k, si + 1) for k in range(pi, len(parts) + 1))
        elif pi == len(parts):
            result = False
        else:
            result = _match_segment(parts[pi], segments[si]) and match(pi + 1, si + 1)

        memo[key] = result
        return result

    return match(0, 0)


@lru_cache(maxsize=512)
def compile_pattern(pattern: str) -> ScopePattern:
    return ScopePattern(pattern)


def match_glob(path: str, pattern: str) -> bool:
    """
    Check a single path against a single pattern.

    The path is canonicalized first; paths escaping the workspace never match.
    """
    result = normalize_relative_path(path)
    if not result.ok:
        return False
    return compile_pattern(pattern).matches(result.rel_path)


def is_in_scope(path: str, patterns: Iterable[str]) -> bool:
    """True when path matches any pattern (logical OR). Fails closed."""
    result = normalize_relative_path(path)
    if not result.ok:
        return False
    return any(compile_pattern(p).matches(result.rel_path) for p in patterns)


def matching_patterns(path: str, patterns: Sequence[str]) -> List[str]:
    """Patterns in the set that cover path (for diagnostics)."""
    result = normalize_relative_path(path)
    if not result.ok:
        return []
    return [p for p in patterns if compile_pattern(p).matches(result.rel_path)]


def find_covering_intents(
    path: str,
    intents: Iterable[Intent],
    exclude: Optional[Iterable[str]] = None
) -> List[str]:
    """Ids of intents whose owned_scope covers path, in registry order."""
    excluded = set(exclude or ())
    return [
        intent.id
        for intent in intents
        if intent.id not in excluded and is_in_scope(path, intent.owned_scope)
    ]
