"""Routing rule configuration and decision schemas."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from src.models.enums import DecisionType, NextAction, ReasonCode

WEIGHT_TOLERANCE = 0.001

# Rule files may be written in camelCase (supplierRules, reviewRequired ...)
_RULES_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ConfidenceWeights(BaseModel):
    """Relative weight of each pipeline score. Must sum to 1.0."""

    model_config = _RULES_CONFIG

    classification: float = Field(default=0.25, ge=0.0, le=1.0)
    extraction: float = Field(default=0.35, ge=0.0, le=1.0)
    matching: float = Field(default=0.40, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def check_sum(self) -> ConfidenceWeights:
        total = self.classification + self.extraction + self.matching
        if abs(total - 1.0) > WEIGHT_TOLERANCE:
            msg = f"confidenceWeights must sum to 1.0 (current: {total:.3f})"
            raise ValueError(msg)
        return self


class ReviewRequired(BaseModel):
    model_config = _RULES_CONFIG

    below_threshold: bool = True
    low_classification: bool = True
    no_match: bool = True


class SupplierRule(BaseModel):
    model_config = _RULES_CONFIG

    threshold: float = Field(ge=0.0, le=1.0)


def _default_supplier_rules() -> dict[str, SupplierRule]:
    return {
        "CEMEX": SupplierRule(threshold=0.90),
        "TARMAC": SupplierRule(threshold=0.92),
        "CPI_EUROMIX": SupplierRule(threshold=0.95),
        "ECOCEM": SupplierRule(threshold=0.90),
        "HEIDELBERG": SupplierRule(threshold=0.92),
        "SMARTFLOW": SupplierRule(threshold=0.95),
        "*": SupplierRule(threshold=0.95),
    }


class RoutingRules(BaseModel):
    """Auto-send configuration, validated at load time."""

    model_config = _RULES_CONFIG

    enabled: bool = True
    default_threshold: float = Field(default=0.95, ge=0.0, le=1.0)
    supplier_rules: dict[str, SupplierRule] = Field(default_factory=_default_supplier_rules)
    review_required: ReviewRequired = Field(default_factory=ReviewRequired)
    confidence_weights: ConfidenceWeights = Field(default_factory=ConfidenceWeights)

    @field_validator("supplier_rules")
    @classmethod
    def upper_supplier_keys(cls, v: dict[str, SupplierRule]) -> dict[str, SupplierRule]:
        """Supplier lookups are case-insensitive; store keys upper-cased."""
        return {key.upper(): rule for key, rule in v.items()}


class ConfidenceScores(BaseModel):
    classification: float = Field(default=0.0, ge=0.0, le=1.0)
    extraction: float = Field(default=0.0, ge=0.0, le=1.0)
    matching: float = Field(default=0.0, ge=0.0, le=1.0)


class RoutingDecision(BaseModel):
    """Decision produced by the routing table or a manual override."""

    decision: DecisionType
    reason_code: ReasonCode
    reason: str
    next_action: NextAction
    overall_confidence: float | None = None
    threshold: float | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
