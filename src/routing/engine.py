"""Routing decision engine: auto-send, manual review, force-send, reject.

decide() is an ordered decision table, first matching rule wins:

    1. engine disabled                       -> MANUAL_REVIEW / DISABLED
    2. no job match and no-match review set  -> MANUAL_REVIEW / NO_MATCH
    3. classification confidence < 0.5       -> MANUAL_REVIEW / LOW_CLASSIFICATION
    4. overall >= supplier threshold         -> AUTO_SEND / HIGH_CONFIDENCE
    5. otherwise                             -> MANUAL_REVIEW / BELOW_THRESHOLD

force_send() and reject() bypass the table entirely.
"""

from __future__ import annotations

import logging
from typing import Any

from src.audit.events import emit
from src.models.enums import DecisionType, NextAction, ReasonCode
from src.routing.rules import RuleCache
from src.schemas.context import OperationContext
from src.schemas.documents import Document
from src.schemas.events import EventType, SystemEvent
from src.schemas.matching import MatchResult
from src.schemas.routing import ConfidenceScores, ConfidenceWeights, RoutingDecision, RoutingRules

logger = logging.getLogger(__name__)

LOW_CLASSIFICATION_THRESHOLD = 0.5
WILDCARD_SUPPLIER = "*"

_NEXT_ACTION: dict[DecisionType, NextAction] = {
    DecisionType.AUTO_SEND: NextAction.READY_FOR_EXPORT,
    DecisionType.FORCE_SEND: NextAction.READY_FOR_EXPORT,
    DecisionType.MANUAL_REVIEW: NextAction.REVIEW,
    DecisionType.REJECT: NextAction.REJECTED,
}


def next_action_for(decision: DecisionType) -> NextAction:
    return _NEXT_ACTION[decision]


def calculate_overall_confidence(scores: ConfidenceScores, weights: ConfidenceWeights) -> float:
    """Weighted sum of the three pipeline scores, clamped to [0, 1]."""
    overall = (
        scores.classification * weights.classification
        + scores.extraction * weights.extraction
        + scores.matching * weights.matching
    )
    return min(max(overall, 0.0), 1.0)


def _decision(
    decision: DecisionType,
    reason_code: ReasonCode,
    reason: str,
    *,
    overall: float | None = None,
    threshold: float | None = None,
) -> RoutingDecision:
    return RoutingDecision(
        decision=decision,
        reason_code=reason_code,
        reason=reason,
        next_action=next_action_for(decision),
        overall_confidence=overall,
        threshold=threshold,
    )


class RoutingEngine:
    """Evaluates routing rules held in a RuleCache."""

    def __init__(self, cache: RuleCache | None = None) -> None:
        self._cache = cache or RuleCache()

    @property
    def rules(self) -> RoutingRules:
        return self._cache.get()

    def supplier_threshold(self, supplier: str | None) -> float:
        """Exact supplier key (case-insensitive), then '*', then the default."""
        rules = self.rules
        if not supplier:
            return rules.default_threshold

        rule = rules.supplier_rules.get(supplier.upper())
        if rule is not None:
            return rule.threshold

        wildcard = rules.supplier_rules.get(WILDCARD_SUPPLIER)
        if wildcard is not None:
            return wildcard.threshold

        return rules.default_threshold

    def overall_confidence(self, scores: ConfidenceScores) -> float:
        return calculate_overall_confidence(scores, self.rules.confidence_weights)

    def evaluate(self, document: Document, match: MatchResult) -> RoutingDecision:
        """Pure decision table, no audit."""
        rules = self.rules

        if not rules.enabled:
            return _decision(
                DecisionType.MANUAL_REVIEW,
                ReasonCode.DISABLED,
                "Auto-send is disabled in configuration",
            )

        scores = ConfidenceScores(
            classification=document.classification_confidence,
            extraction=document.extraction_confidence,
            matching=match.confidence,
        )
        overall = calculate_overall_confidence(scores, rules.confidence_weights)
        threshold = self.supplier_threshold(document.supplier)
        supplier_label = document.supplier or "default"

        if not match.found and rules.review_required.no_match:
            return _decision(
                DecisionType.MANUAL_REVIEW,
                ReasonCode.NO_MATCH,
                f"No job match found - requires manual review (threshold: {threshold})",
                overall=overall,
                threshold=threshold,
            )

        if scores.classification < LOW_CLASSIFICATION_THRESHOLD and rules.review_required.low_classification:
            return _decision(
                DecisionType.MANUAL_REVIEW,
                ReasonCode.LOW_CLASSIFICATION,
                f"Classification confidence too low ({scores.classification:.2f}) - requires manual review",
                overall=overall,
                threshold=threshold,
            )

        if overall >= threshold:
            return _decision(
                DecisionType.AUTO_SEND,
                ReasonCode.HIGH_CONFIDENCE,
                f"Overall confidence {overall:.3f} meets threshold {threshold} for {supplier_label}",
                overall=overall,
                threshold=threshold,
            )

        return _decision(
            DecisionType.MANUAL_REVIEW,
            ReasonCode.BELOW_THRESHOLD,
            f"Overall confidence {overall:.3f} below threshold {threshold} for {supplier_label}",
            overall=overall,
            threshold=threshold,
        )

    async def decide(self, ctx: OperationContext, document: Document, match: MatchResult) -> RoutingDecision:
        decision = self.evaluate(document, match)
        logger.info(
            "Routing %s: %s/%s (correlation=%s)",
            document.id,
            decision.decision.value,
            decision.reason_code.value,
            ctx.correlation_id,
        )
        await self._audit(ctx, EventType.ROUTING_DECIDED, document, decision)
        return decision

    async def force_send(self, ctx: OperationContext, document: Document, override_reason: str) -> RoutingDecision:
        decision = _decision(
            DecisionType.FORCE_SEND,
            ReasonCode.FORCE_OVERRIDE,
            f"Force send override: {override_reason}",
        )
        await self._audit(ctx, EventType.ROUTING_OVERRIDDEN, document, decision, override_reason=override_reason)
        return decision

    async def reject(self, ctx: OperationContext, document: Document, reason: str | None = None) -> RoutingDecision:
        decision = _decision(
            DecisionType.REJECT,
            ReasonCode.MANUAL_REJECT,
            reason or "Manual rejection",
        )
        await self._audit(ctx, EventType.ROUTING_OVERRIDDEN, document, decision, override_reason=decision.reason)
        return decision

    def config_summary(self) -> dict[str, Any]:
        rules = self.rules
        return {
            "enabled": rules.enabled,
            "default_threshold": rules.default_threshold,
            "supplier_thresholds": {
                supplier: {"threshold": rule.threshold, "is_default": supplier == WILDCARD_SUPPLIER}
                for supplier, rule in rules.supplier_rules.items()
            },
            "confidence_weights": rules.confidence_weights.model_dump(),
            "review_required": rules.review_required.model_dump(),
        }

    async def reload(self, ctx: OperationContext) -> RoutingRules:
        """Force a fresh load. A rules file that fails validation keeps the old rules."""
        rules = self._cache.reload()
        await emit(SystemEvent(
            event_type=EventType.ROUTING_RULES_RELOADED,
            correlation_id=ctx.correlation_id,
            actor_id=ctx.actor,
            data={"enabled": rules.enabled, "supplier_rules": len(rules.supplier_rules)},
            source_module="routing.engine",
        ))
        return rules

    async def _audit(
        self,
        ctx: OperationContext,
        event_type: EventType,
        document: Document,
        decision: RoutingDecision,
        **extra: Any,
    ) -> None:
        await emit(SystemEvent(
            event_type=event_type,
            entity_id=document.id,
            correlation_id=ctx.correlation_id,
            actor_id=ctx.actor,
            data={
                "decision": decision.decision.value,
                "reason_code": decision.reason_code.value,
                "reason": decision.reason,
                "next_action": decision.next_action.value,
                "overall_confidence": decision.overall_confidence,
                "threshold": decision.threshold,
                "supplier": document.supplier,
                **extra,
            },
            source_module="routing.engine",
        ))
