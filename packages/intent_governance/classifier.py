"""
Mutation Classifier - AST_REFACTOR vs INTENT_EVOLUTION

Heuristic, evaluated in order:
1. No previous content                       -> EVOLUTION (high)
2. Equal after whitespace collapse            -> REFACTOR (high)
3. similarity > 0.8:
   - line count changed by > 30%              -> EVOLUTION (medium)
   - otherwise                                -> REFACTOR (high if > 0.9 else medium)
4. More declaration-like constructs than before -> EVOLUTION (high)
5. Byte growth > 50%                          -> EVOLUTION (medium)
6. similarity < 0.5 ? EVOLUTION : REFACTOR    (low)

Not an oracle: rare misclassification is acceptable, raising is not.
"""

import logging
import re
from typing import Optional

from pydantic import BaseModel, Field

from .hashing import line_count
from .models import Confidence, MutationClass, MutationClassification
from .similarity import normalize_whitespace, similarity

logger = logging.getLogger(__name__)

DECLARATION_PATTERN = re.compile(r"(?:function|class|def|const|let|var)\s+\w+\s*[=:(]")


class ClassifierThresholds(BaseModel):
    """Tunable heuristic constants (defaults mirror the source behaviour)."""
    refactor_similarity: float = Field(0.8, ge=0.0, le=1.0)
    high_confidence_similarity: float = Field(0.9, ge=0.0, le=1.0)
    line_change_ratio: float = Field(0.3, ge=0.0)
    growth_ratio: float = Field(0.5, ge=0.0)
    low_similarity: float = Field(0.5, ge=0.0, le=1.0)
    max_compare_chars: Optional[int] = Field(20000, gt=0)


def count_declarations(content: str) -> int:
    return len(DECLARATION_PATTERN.findall(content))


class MutationClassifier:
    """Labels a change as structural refactor or functional evolution."""

    def __init__(self, thresholds: Optional[ClassifierThresholds] = None):
        self.thresholds = thresholds or ClassifierThresholds()

    def classify(
        self,
        previous_content: Optional[str],
        new_content: str,
        path: str = ""
    ) -> MutationClassification:
        """
        Classify a change. Never raises.

        Args:
            previous_content: Content before the change (None/"" if absent)
            new_content: Content after the change
            path: Target path (diagnostics only)
        """
        try:
            return self._classify(previous_content, new_content or "")
        except Exception as e:
            logger.warning(f"Mutation classification failed for {path or '<unknown>'}: {e}")
            return MutationClassification(
                mutation_class=MutationClass.INTENT_EVOLUTION,
                confidence=Confidence.LOW,
                reason=f"Classification failed: {e}",
            )

    def _classify(self, previous: Optional[str], new: str) -> MutationClassification:
        t = self.thresholds

        if not previous:
            return MutationClassification(
                mutation_class=MutationClass.INTENT_EVOLUTION,
                confidence=Confidence.HIGH,
                reason="New content",
            )

        old_normalized = normalize_whitespace(previous)
        new_normalized = normalize_whitespace(new)

        if old_normalized == new_normalized:
            return MutationClassification(
                mutation_class=MutationClass.AST_REFACTOR,
                confidence=Confidence.HIGH,
                reason="No semantic change detected",
            )

        score = similarity(old_normalized, new_normalized, max_chars=t.max_compare_chars)

        if score > t.refactor_similarity:
            old_lines = line_count(previous)
            new_lines = line_count(new)
            line_ratio = abs(old_lines - new_lines) / max(old_lines, 1)

            if line_ratio > t.line_change_ratio:
                return MutationClassification(
                    mutation_class=MutationClass.INTENT_EVOLUTION,
                    confidence=Confidence.MEDIUM,
                    reason=(
                        f"Significant line count change ({round(line_ratio * 100)}%) "
                        "despite high similarity"
                    ),
                )

            return MutationClassification(
                mutation_class=MutationClass.AST_REFACTOR,
                confidence=Confidence.HIGH if score > t.high_confidence_similarity else Confidence.MEDIUM,
                reason=f"High similarity ({round(score * 100)}%) suggests refactoring",
            )

        old_declarations = count_declarations(previous)
        new_declarations = count_declarations(new)
        if new_declarations > old_declarations:
            return MutationClassification(
                mutation_class=MutationClass.INTENT_EVOLUTION,
                confidence=Confidence.HIGH,
                reason=f"New declarations detected ({new_declarations - old_declarations} new)",
            )

        growth = (len(new) - len(previous)) / max(len(previous), 1)
        if growth > t.growth_ratio:
            return MutationClassification(
                mutation_class=MutationClass.INTENT_EVOLUTION,
                confidence=Confidence.MEDIUM,
                reason=f"Significant content growth ({round(growth * 100)}%)",
            )

        return MutationClassification(
            mutation_class=(
                MutationClass.INTENT_EVOLUTION if score < t.low_similarity else MutationClass.AST_REFACTOR
            ),
            confidence=Confidence.LOW,
            reason=f"Similarity: {round(score * 100)}%",
        )
