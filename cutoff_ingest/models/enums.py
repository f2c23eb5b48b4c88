"""Domain enums used across SQLAlchemy models and Pydantic schemas.

All enums use str mixin for JSON serialization; columns store the `.value`.
"""

from __future__ import annotations

from enum import Enum, IntEnum


class ImportSessionStatus(str, Enum):
    """Lifecycle of one uploaded file."""

    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class RecordStatus(str, Enum):
    """State machine of a ProcessedCutoffRecord."""

    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"
    MIGRATED = "migrated"  # terminal


class CorrectionCategory(str, Enum):
    """Which input field a correction rule applies to."""

    COLLEGE_NAME = "college_name"
    PROGRAM_NAME = "program_name"
    LOCATION = "location"
    QUOTA = "quota"
    CATEGORY = "category"


class CorrectionErrorType(str, Enum):
    """Kind of source defect a rule repairs."""

    OCR_ERROR = "ocr_error"
    FORMAT_ERROR = "format_error"
    OCR_DUPLICATION = "ocr_duplication"


class RulePriority(str, Enum):
    """Named priority levels; stored as integers (see PRIORITY_VALUES)."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


PRIORITY_VALUES: dict[RulePriority, int] = {
    RulePriority.CRITICAL: 40,
    RulePriority.HIGH: 30,
    RulePriority.MEDIUM: 20,
    RulePriority.LOW: 10,
}


class ManualCorrectionType(str, Enum):
    """How a human changed a staged field."""

    FIELD_EDIT = "field_edit"
    ENTITY_REMAP = "entity_remap"
    STATUS_CHANGE = "status_change"


class EntityType(str, Enum):
    """Reference entity kinds the matcher resolves."""

    COLLEGE = "college"
    PROGRAM = "program"


class CollegeType(str, Enum):
    """College classification derived from seed data or the name."""

    MEDICAL = "MEDICAL"
    DENTAL = "DENTAL"
    DNB = "DNB"


class CourseLevel(str, Enum):
    """Program level derived from the course name."""

    UG = "UG"
    PG = "PG"
    DIPLOMA = "DIPLOMA"
    DNB = "DNB"
    FELLOWSHIP = "FELLOWSHIP"


class CutoffStatus(str, Enum):
    """Status of a canonical cutoff row."""

    ACTIVE = "active"
    INACTIVE = "inactive"


class MatchTier(IntEnum):
    """Matcher cascade tiers, in the order they are tried."""

    EXACT = 1
    EXACT_CLEANED = 2
    CONTAINMENT = 3
    MULTI_KEYWORD = 4
    SINGLE_KEYWORD = 5
