"""AuditLog model: immutable audit trail for events and canonical writes.

Every SystemEvent is persisted here, and the migration engine records the
before/after payload of each college, program, and cutoff it touches.
This table is append-only, no updates or deletes.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import String
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from cutoff_ingest.models.base import Base, CreatedAtMixin


class AuditLog(CreatedAtMixin, Base):
    """Immutable audit trail entry."""

    __tablename__ = "audit_log"

    # Event classification
    event_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    # Context (all nullable, not every entry relates to an import session or entity)
    session_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), index=True, comment="Import session, if any"
    )
    actor_id: Mapped[str | None] = mapped_column(String(100), comment="Operator name or 'system'")
    actor_role: Mapped[str | None] = mapped_column(String(50), comment="operator, system")
    entity_type: Mapped[str | None] = mapped_column(String(50), comment="college, program, cutoff")
    entity_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), index=True)

    # Payload: {"before": {...}, "after": {...}} for canonical writes
    data: Mapped[dict[str, Any] | None] = mapped_column(JSONB)

    def __repr__(self) -> str:
        return f"<AuditLog event={self.event_type} entity={self.entity_type}:{self.entity_id}>"
