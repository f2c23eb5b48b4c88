"""Correction rules and the per-import history of applied corrections."""

from __future__ import annotations

import uuid

from sqlalchemy import Boolean, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from cutoff_ingest.models.base import Base, CreatedAtMixin, TimestampMixin
from cutoff_ingest.models.enums import PRIORITY_VALUES, RulePriority


class CorrectionRule(TimestampMixin, Base):
    """A regex pattern → replacement rule for one input field category."""

    __tablename__ = "correction_rules"
    __table_args__ = (UniqueConstraint("category", "regex_pattern", name="uq_correction_rule_category_regex"),)

    category: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    error_type: Mapped[str] = mapped_column(String(30), nullable=False)

    # Literal form, kept for search and documentation
    pattern: Mapped[str] = mapped_column(String(255), nullable=False)
    correction: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)

    regex_pattern: Mapped[str] = mapped_column(String(500), nullable=False)
    replacement: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    flags: Mapped[str] = mapped_column(String(10), nullable=False, default="")

    priority: Mapped[int] = mapped_column(
        Integer, nullable=False, default=PRIORITY_VALUES[RulePriority.MEDIUM], index=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    success_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    examples: Mapped[list[str] | None] = mapped_column(JSONB)
    created_by: Mapped[str] = mapped_column(String(100), nullable=False, default="system")
    notes: Mapped[str | None] = mapped_column(Text)

    def __repr__(self) -> str:
        return f"<CorrectionRule {self.category} {self.pattern!r}→{self.correction!r}>"


class CorrectionHistory(CreatedAtMixin, Base):
    """One correction applied to one field during an import."""

    __tablename__ = "correction_history"

    session_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("import_sessions.id", ondelete="CASCADE"), index=True
    )
    rule_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("correction_rules.id", ondelete="SET NULL")
    )
    field_name: Mapped[str] = mapped_column(String(30), nullable=False)
    original_value: Mapped[str] = mapped_column(Text, nullable=False)
    corrected_value: Mapped[str] = mapped_column(Text, nullable=False)
