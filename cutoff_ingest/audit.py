"""Audit log subscriber and direct audit writers.

`audit_on_event` is registered as a global subscriber and persists every
SystemEvent. `record_change` is used inside a caller's transaction (the
migration engine) to store before/after payloads of canonical writes.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from cutoff_ingest.models.audit import AuditLog
from cutoff_ingest.schemas.events import SystemEvent

logger = logging.getLogger(__name__)


def _actor_role(actor_id: str | None) -> str | None:
    if actor_id is None:
        return None
    return "system" if actor_id == "system" else "operator"


def event_to_audit(event: SystemEvent) -> AuditLog:
    """Map an event onto an audit row. Record-level events point at the staged record."""
    return AuditLog(
        event_type=event.event_type.value,
        session_id=event.session_id,
        actor_id=event.actor_id,
        actor_role=event.actor_role or _actor_role(event.actor_id),
        entity_type="processed_cutoff" if event.record_id else None,
        entity_id=event.record_id,
        data={**event.data, "source": event.source_module} if event.source_module else dict(event.data),
    )


async def audit_on_event(event: SystemEvent) -> None:
    """Global subscriber: persist one event in its own short transaction.

    Errors are logged, never raised, so a broken audit table cannot stop
    an import.
    """
    from cutoff_ingest.db.engine import async_session_factory

    try:
        async with async_session_factory() as db:
            db.add(event_to_audit(event))
            await db.commit()
    except Exception:
        logger.exception("Audit write failed for %s (session=%s)", event.event_type.value, event.session_id)


def record_change(
    db: AsyncSession,
    *,
    entity_type: str,
    entity_id: uuid.UUID | None,
    action: str,
    before: dict[str, Any] | None,
    after: dict[str, Any] | None,
    session_id: uuid.UUID | None = None,
    actor_id: str = "system",
) -> AuditLog:
    """Stage an audit row for a canonical create/update in the caller's session."""
    audit = AuditLog(
        event_type=f"{entity_type}.{action}",
        session_id=session_id,
        actor_id=actor_id,
        actor_role=_actor_role(actor_id),
        entity_type=entity_type,
        entity_id=entity_id,
        data={"before": before, "after": after},
    )
    db.add(audit)
    return audit
