"""SQLAlchemy ORM models for the POD engine.

Import all models here so Alembic and Base.metadata.create_all() discover them.
"""

from __future__ import annotations

from src.models.archive import ArchiveRecord
from src.models.audit import AuditLog
from src.models.base import Base
from src.models.document import Document
from src.models.enums import (
    ArchiveStatus,
    DecisionType,
    DocumentStatus,
    HoldStatus,
    MatchType,
    NextAction,
    ReasonCode,
)
from src.models.legal_hold import LegalHold

__all__ = [
    # Base
    "Base",
    # Models
    "Document",
    "LegalHold",
    "ArchiveRecord",
    "AuditLog",
    # Enums
    "DocumentStatus",
    "HoldStatus",
    "ArchiveStatus",
    "MatchType",
    "DecisionType",
    "ReasonCode",
    "NextAction",
]
