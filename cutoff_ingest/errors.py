"""Pipeline error taxonomy.

Only FileParseError is fatal to an import session. Every other error is
recorded against its row or record and processing continues.
"""

from __future__ import annotations

from typing import Any


class FileParseError(Exception):
    """Raised when an input file cannot be read at all."""

    def __init__(self, message: str, file_name: str) -> None:
        super().__init__(message)
        self.file_name = file_name


class RowValidationError(Exception):
    """Raised when an input row is missing a required field."""

    def __init__(self, message: str, row_number: int, field: str | None = None) -> None:
        super().__init__(message)
        self.row_number = row_number
        self.field = field


class RankParseError(Exception):
    """Raised when a rank string yields no (category, rank) pairs."""

    def __init__(self, message: str, row_number: int, raw_value: str | None) -> None:
        super().__init__(message)
        self.row_number = row_number
        self.raw_value = raw_value


class RuleApplicationError(Exception):
    """Raised when a correction rule's regex cannot be compiled or applied."""

    def __init__(self, message: str, rule_id: Any, pattern: str) -> None:
        super().__init__(message)
        self.rule_id = rule_id
        self.pattern = pattern


class MigrationConflictError(Exception):
    """Raised when a canonical-store write fails for one staged record."""

    def __init__(self, message: str, record_id: Any) -> None:
        super().__init__(message)
        self.record_id = record_id


class StagingRecordNotFound(Exception):
    """Raised when a staged record or session id does not exist."""

    def __init__(self, record_id: Any) -> None:
        super().__init__(f"Staging record not found: {record_id}")
        self.record_id = record_id


class InvalidStatusTransition(Exception):
    """Raised on a state change the staging state machine does not allow."""

    def __init__(self, record_id: Any, current: str, target: str) -> None:
        super().__init__(f"Record {record_id} cannot move from {current} to {target}")
        self.record_id = record_id
        self.current = current
        self.target = target


def error_entry(kind: str, message: str, row: int | None = None, **extra: Any) -> dict[str, Any]:
    """Build a JSON-safe error/warning entry for session logs and summaries."""
    entry: dict[str, Any] = {"kind": kind, "message": message}
    if row is not None:
        entry["row"] = row
    entry.update({k: v for k, v in extra.items() if v is not None})
    return entry
