"""
Fallback inference for intent fields the creator left out.

Keyword heuristics only; the agent is expected to refine the result.
"""

import re
from typing import Iterable, List

INTENT_ID_PATTERN = re.compile(r"^INT-(\d+)$")
_PATH_TOKEN = re.compile(r"(?:src|lib|app|components|api|utils|hooks|core|shared)/[^\s,]+")


def next_intent_id(existing_ids: Iterable[str]) -> str:
    """INT-NNN after the highest numeric INT id in use."""
    highest = 0
    for intent_id in existing_ids:
        match = INTENT_ID_PATTERN.match(intent_id)
        if match:
            highest = max(highest, int(match.group(1)))
    return f"INT-{highest + 1:03d}"


def default_intent_name(intent_id: str, prompt: str) -> str:
    summary = prompt[:50] + ("..." if len(prompt) > 50 else "")
    return f"{intent_id} — {summary}"


def infer_scope(prompt: str) -> List[str]:
    scope: List[str] = []
    for match in _PATH_TOKEN.findall(prompt):
        match = match.rstrip(".;:)")
        last_segment = match.rsplit("/", 1)[-1]
        if "." in last_segment:
            # A file: own its directory
            pattern = f"{match.rsplit('/', 1)[0]}/**"
        else:
            pattern = f"{match.rstrip('/')}/**"
        if pattern not in scope:
            scope.append(pattern)

    if scope:
        return scope

    lowered = prompt.lower()
    if "api" in lowered or "endpoint" in lowered:
        return ["src/api/**"]
    if "component" in lowered or "ui" in lowered:
        return ["src/components/**"]
    if "hook" in lowered:
        return ["src/hooks/**"]
    return ["src/**"]


def infer_constraints(prompt: str) -> List[str]:
    lowered = prompt.lower()
    constraints = []
    if "test" in lowered:
        constraints.append("Must include unit tests")
    if "api" in lowered or "endpoint" in lowered:
        constraints.append("Must follow REST API conventions")
    if "hook" in lowered:
        constraints.append("Must integrate with existing hook system")
    if not constraints:
        constraints.append("Must follow project architecture and coding standards")
    return constraints


def infer_acceptance_criteria(prompt: str) -> List[str]:
    summary = prompt[:100] + ("..." if len(prompt) > 100 else "")
    return [
        f"Implementation matches the requirements: {summary}",
        "Code follows project architecture and coding standards",
        "All tests pass (if applicable)",
    ]
