"""
Operation catalogue and call shapes passed across the engine boundary.
"""

from __future__ import annotations

from enum import Enum
from typing import FrozenSet, Iterable, Optional, Union

from pydantic import BaseModel, Field, model_validator


class OperationKind(str, Enum):
    # Mutating
    WRITE_TO_FILE = "write_to_file"
    EDIT_FILE = "edit_file"
    APPLY_DIFF = "apply_diff"
    APPLY_PATCH = "apply_patch"
    EDIT = "edit"
    SEARCH_REPLACE = "search_replace"
    SEARCH_AND_REPLACE = "search_and_replace"
    EXECUTE_COMMAND = "execute_command"

    # Non-mutating
    READ_FILE = "read_file"
    LIST_FILES = "list_files"
    SEARCH_FILES = "search_files"
    SELECT_ACTIVE_INTENT = "select_active_intent"
    CREATE_INTENT = "create_intent"
    RECORD_LESSON = "record_lesson"


MUTATING_OPERATIONS: FrozenSet[str] = frozenset({
    OperationKind.WRITE_TO_FILE.value,
    OperationKind.EDIT_FILE.value,
    OperationKind.APPLY_DIFF.value,
    OperationKind.APPLY_PATCH.value,
    OperationKind.EDIT.value,
    OperationKind.SEARCH_REPLACE.value,
    OperationKind.SEARCH_AND_REPLACE.value,
    OperationKind.EXECUTE_COMMAND.value,
})


def operation_name(operation: Union[OperationKind, str]) -> str:
    return operation.value if isinstance(operation, OperationKind) else str(operation)


class OperationCatalog:
    """Which operation names mutate the workspace."""

    def __init__(self, extra_mutating: Optional[Iterable[str]] = None):
        self.mutating = MUTATING_OPERATIONS | frozenset(extra_mutating or ())

    def is_mutating(self, operation: Union[OperationKind, str]) -> bool:
        # Unknown names are non-mutating unless configured
        return operation_name(operation) in self.mutating


class Target(BaseModel):
    """What an operation acts on."""
    path: Optional[str] = None
    command: Optional[str] = None
    start_line: Optional[int] = Field(None, ge=1)
    end_line: Optional[int] = Field(None, ge=1)

    @model_validator(mode="after")
    def _check_range(self) -> "Target":
        if self.start_line is not None and self.end_line is not None and self.end_line < self.start_line:
            raise ValueError("end_line must be >= start_line")
        return self

    @property
    def is_file(self) -> bool:
        return bool(self.path)

    @property
    def has_line_range(self) -> bool:
        return self.start_line is not None and self.end_line is not None

    @classmethod
    def file(cls, path: str, start_line: Optional[int] = None, end_line: Optional[int] = None) -> "Target":
        return cls(path=path, start_line=start_line, end_line=end_line)

    @classmethod
    def shell(cls, command: str) -> "Target":
        return cls(command=command)


class Outcome(BaseModel):
    """Result of the externally performed operation."""
    success: bool
    message: Optional[str] = None

    @classmethod
    def ok(cls) -> "Outcome":
        return cls(success=True)

    @classmethod
    def failed(cls, message: str = "") -> "Outcome":
        return cls(success=False, message=message)
