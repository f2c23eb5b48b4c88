"""SystemEvent schema: the event type that flows through the pipeline."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """All event types emitted by the system."""

    # Import session lifecycle
    IMPORT_STARTED = "import.started"
    IMPORT_RAW_STAGED = "import.raw_staged"
    IMPORT_PROCESSED = "import.processed"
    IMPORT_COMPLETED = "import.completed"
    IMPORT_FAILED = "import.failed"

    # Manual verification
    RECORD_VERIFIED = "record.verified"
    RECORD_REJECTED = "record.rejected"
    RECORD_CORRECTED = "record.corrected"

    # Migration
    MIGRATION_COMPLETED = "migration.completed"
    MIGRATION_RECORD_FAILED = "migration.record_failed"

    # Staging maintenance
    STAGING_RESET = "staging.reset"

    # Correction rules
    RULE_CREATED = "rule.created"
    RULE_UPDATED = "rule.updated"
    RULE_DELETED = "rule.deleted"
    RULES_SEEDED = "rule.seeded"

    # Reference data
    REFERENCE_LOADED = "reference.loaded"

    # CLI command lifecycle
    COMMAND_STARTED = "command.started"
    COMMAND_FINISHED = "command.finished"
    COMMAND_FAILED = "command.failed"


class SystemEvent(BaseModel):
    """Immutable pipeline event. `audit_on_event` persists each one."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    event_type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Context, all optional
    session_id: uuid.UUID | None = None
    record_id: uuid.UUID | None = Field(default=None, description="Staged record the event concerns")
    actor_id: str | None = None
    actor_role: str | None = None

    # Flexible payload
    data: dict[str, Any] = Field(default_factory=dict)

    source_module: str | None = Field(default=None, description="Module that emitted this event")

    model_config = {"frozen": True}
