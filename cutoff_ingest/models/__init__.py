"""SQLAlchemy ORM models for the cutoff ingestion pipeline.

Import all models here so Alembic and Base.metadata.create_all() discover them.
"""

from __future__ import annotations

from cutoff_ingest.models.audit import AuditLog
from cutoff_ingest.models.base import Base
from cutoff_ingest.models.canonical import College, Cutoff, Program
from cutoff_ingest.models.correction_rule import CorrectionHistory, CorrectionRule
from cutoff_ingest.models.enums import (
    PRIORITY_VALUES,
    CollegeType,
    CorrectionCategory,
    CorrectionErrorType,
    CourseLevel,
    CutoffStatus,
    EntityType,
    ImportSessionStatus,
    ManualCorrectionType,
    MatchTier,
    RecordStatus,
    RulePriority,
)
from cutoff_ingest.models.staging import (
    ImportSession,
    ManualCorrection,
    ProcessedCutoffRecord,
    RawCutoffRecord,
)

__all__ = [
    # Base
    "Base",
    # Models
    "AuditLog",
    "CorrectionRule",
    "CorrectionHistory",
    "ImportSession",
    "RawCutoffRecord",
    "ProcessedCutoffRecord",
    "ManualCorrection",
    "College",
    "Program",
    "Cutoff",
    # Enums
    "ImportSessionStatus",
    "RecordStatus",
    "CorrectionCategory",
    "CorrectionErrorType",
    "RulePriority",
    "PRIORITY_VALUES",
    "ManualCorrectionType",
    "EntityType",
    "CollegeType",
    "CourseLevel",
    "CutoffStatus",
    "MatchTier",
]
