"""Domain enums used across SQLAlchemy models and Pydantic schemas.

All enums use str mixin for JSON serialization and storage as plain strings.
"""

from __future__ import annotations

from enum import Enum


class DocumentStatus(str, Enum):
    """Lifecycle status of an ingested delivery document."""

    REVIEW = "REVIEW"
    OUT = "OUT"
    QUARANTINE = "QUARANTINE"
    ARCHIVED = "ARCHIVED"
    PENDING_DELETE = "PENDING_DELETE"
    DELETED = "DELETED"
    RESTORED = "RESTORED"


class HoldStatus(str, Enum):
    """Legal hold status. ACTIVE does not imply currently protecting (see expires_at)."""

    ACTIVE = "ACTIVE"
    RELEASED = "RELEASED"


class ArchiveStatus(str, Enum):
    """Archive record status."""

    ARCHIVED = "ARCHIVED"
    RESTORED = "RESTORED"


class MatchType(str, Enum):
    """How a job was matched. Ordering: EXACT > FUZZY > NO_MATCH."""

    EXACT_JOB_REF = "EXACT_JOB_REF"
    EXACT_VEHICLE_REG = "EXACT_VEHICLE_REG"
    FUZZY_JOB_REF = "FUZZY_JOB_REF"
    FUZZY_VEHICLE_REG = "FUZZY_VEHICLE_REG"
    NO_MATCH = "NO_MATCH"

    @property
    def is_exact(self) -> bool:
        return self in (MatchType.EXACT_JOB_REF, MatchType.EXACT_VEHICLE_REG)


class MatchStatus(str, Enum):
    """Outcome of a find_match call."""

    MATCHED = "MATCHED"
    NO_MATCH = "NO_MATCH"
    NO_JOBS_FOUND = "NO_JOBS_FOUND"


class MatchConfidence(str, Enum):
    """Coarse banding of a match score for display."""

    HIGH_CONFIDENCE = "HIGH_CONFIDENCE"
    MEDIUM_CONFIDENCE = "MEDIUM_CONFIDENCE"
    LOW_CONFIDENCE = "LOW_CONFIDENCE"


class ReviewStatus(str, Enum):
    """Whether a match alone is strong enough to skip review."""

    AUTO_APPROVE = "AUTO_APPROVE"
    REVIEW_REQUIRED = "REVIEW_REQUIRED"


class DecisionType(str, Enum):
    """Routing decision."""

    AUTO_SEND = "AUTO_SEND"
    MANUAL_REVIEW = "MANUAL_REVIEW"
    FORCE_SEND = "FORCE_SEND"
    REJECT = "REJECT"


class ReasonCode(str, Enum):
    """Why the routing engine reached its decision."""

    DISABLED = "DISABLED"
    NO_MATCH = "NO_MATCH"
    LOW_CLASSIFICATION = "LOW_CLASSIFICATION"
    HIGH_CONFIDENCE = "HIGH_CONFIDENCE"
    BELOW_THRESHOLD = "BELOW_THRESHOLD"
    FORCE_OVERRIDE = "FORCE_OVERRIDE"
    MANUAL_REJECT = "MANUAL_REJECT"


class NextAction(str, Enum):
    """What should happen to the document after a routing decision."""

    READY_FOR_EXPORT = "READY_FOR_EXPORT"
    REVIEW = "REVIEW"
    REJECTED = "REJECTED"


class RetentionAction(str, Enum):
    """Single transition chosen by apply_retention."""

    ARCHIVE = "archive"
    SOFT_DELETE = "soft_delete"
    HARD_DELETE = "hard_delete"


class StageStatus(str, Enum):
    """Tagged outcome of a pipeline stage."""

    SUCCESS = "success"
    SKIP = "skip"
    FAIL = "fail"


class FailurePolicy(str, Enum):
    """What the pipeline runner does when a stage fails."""

    HALT = "halt"
    DEGRADE = "degrade"
