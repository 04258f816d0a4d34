"""Job matching result schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field

from src.models.enums import MatchStatus, MatchType
from src.schemas.documents import ExtractedFields


class MatchCandidate(BaseModel):
    """One job scored against the extracted fields."""

    job_id: str | None = None
    job_ref: str | None = None
    score: float = Field(default=0.0, ge=0.0, le=1.0)
    match_type: MatchType = MatchType.NO_MATCH


class MatchSummary(BaseModel):
    status: MatchStatus
    best_score: float = 0.0
    jobs_searched: int = 0
    duration_ms: int = 0
    extracted_fields: ExtractedFields = Field(default_factory=ExtractedFields)


class MatchResult(BaseModel):
    """Outcome of find_match. Never raised as an error: no-match is data."""

    match: MatchCandidate | None = None
    candidates: list[MatchCandidate] = Field(default_factory=list)
    summary: MatchSummary

    @property
    def found(self) -> bool:
        return self.match is not None and self.match.match_type != MatchType.NO_MATCH

    @property
    def confidence(self) -> float:
        return self.match.score if self.found and self.match is not None else 0.0
