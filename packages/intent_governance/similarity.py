"""
Text Similarity - normalized edit distance between two blobs

Feeds the mutation classifier:
- Levenshtein distance over characters (insert, delete, substitute)
- similarity = 1 - distance / max(len(a), len(b)) over whitespace-normalized text

Philosophy:
- Lightweight: no diff libraries, plain dynamic programming
- Deterministic: same inputs -> same score
- Bounded: common prefix/suffix are trimmed first and the remaining
  changed region can be capped, so large files with small edits stay cheap
"""

import re
from typing import Optional, Tuple

_WHITESPACE = re.compile(r"\s+")


def normalize_whitespace(text: str) -> str:
    """Collapse whitespace runs to single spaces and trim."""
    return _WHITESPACE.sub(" ", text).strip()


class EditDistance:
    """
    Classic Levenshtein distance.

    Uses two rows instead of the full matrix, so memory is O(min(n, m)).
    """

    @staticmethod
    def trim_common(a: str, b: str) -> Tuple[str, str]:
        """
        Strip the shared prefix and suffix.

        Edit distance is unchanged by this; only the changed region is left.
        """
        limit = min(len(a), len(b))
        prefix = 0
        while prefix < limit and a[prefix] == b[prefix]:
            prefix += 1

        suffix = 0
        while (
            suffix < limit - prefix
            and a[len(a) - 1 - suffix] == b[len(b) - 1 - suffix]
        ):
            suffix += 1

        return a[prefix:len(a) - suffix], b[prefix:len(b) - suffix]

    @staticmethod
    def distance(a: str, b: str) -> int:
        """Minimum number of single-character edits turning a into b."""
        a, b = EditDistance.trim_common(a, b)

        if not a:
            return len(b)
        if not b:
            return len(a)

        # Keep the shorter string on the row axis
        if len(a) < len(b):
            a, b = b, a

        previous = list(range(len(b) + 1))
        for i, char_a in enumerate(a, start=1):
            current = [i] + [0] * len(b)
            for j, char_b in enumerate(b, start=1):
                if char_a == char_b:
                    current[j] = previous[j - 1]
                else:
                    current[j] = min(
                        previous[j] + 1,      # deletion
                        current[j - 1] + 1,   # insertion
                        previous[j - 1] + 1,  # substitution
                    )
            previous = current

        return previous[len(b)]


def levenshtein_distance(a: str, b: str) -> int:
    return EditDistance.distance(a, b)


def similarity(a: str, b: str, max_chars: Optional[int] = None) -> float:
    """
    Normalized similarity in [0.0, 1.0], compared after whitespace normalization.

    Args:
        a: First text
        b: Second text
        max_chars: Cap on the changed region of each side (None = no cap).
            The cap bounds the O(n*m) cost; the score becomes an estimate
            when it kicks in.

    Returns:
        1.0 for texts equal up to whitespace (and for empty vs empty),
        0.0 for empty vs non-empty
    """
    a = normalize_whitespace(a)
    b = normalize_whitespace(b)

    max_len = max(len(a), len(b))
    if max_len == 0:
        return 1.0
    if not a or not b:
        return 0.0

    trimmed_a, trimmed_b = EditDistance.trim_common(a, b)
    if max_chars is not None and max_chars > 0:
        trimmed_a = trimmed_a[:max_chars]
        trimmed_b = trimmed_b[:max_chars]

    distance = EditDistance.distance(trimmed_a, trimmed_b)
    return max(0.0, 1.0 - distance / max_len)
