"""Pydantic schemas for import requests and results."""

from __future__ import annotations

import uuid
from typing import Any

from pydantic import BaseModel, Field, computed_field


class ImportDefaults(BaseModel):
    """Caller-supplied context used when the filename carries no metadata."""

    authority: str | None = None
    year: int | None = None
    round: str | None = None
    quota: str | None = None
    auto_migrate: bool = False
    actor: str = "system"


class ImportSummary(BaseModel):
    """Per-session outcome handed back to the upload layer."""

    session_id: uuid.UUID | None = None
    file_name: str
    status: str = "active"
    authority: str | None = None
    year: int | None = None
    round: str | None = None
    raw_imported: int = 0
    processed: int = 0
    successful: int = 0
    fully_resolved: int = 0
    auto_verified: int = 0
    errors: list[dict[str, Any]] = Field(default_factory=list)
    warnings: list[dict[str, Any]] = Field(default_factory=list)
    fatal_error: str | None = None
    migration: dict[str, Any] | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def error_count(self) -> int:
        return len(self.errors)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def success_rate(self) -> float:
        """Share of raw rows that produced processed records, in percent."""
        if not self.raw_imported:
            return 0.0
        return round(self.successful / self.raw_imported * 100, 2)
