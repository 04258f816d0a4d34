"""Routing rule loading and the TTL rule cache.

Rules come from an optional JSON file (camelCase or snake_case keys) and
fall back to the built-in defaults when no file is configured. A file that
exists but does not validate is rejected; the engine never runs on
half-valid rules.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pydantic

from src.config import settings
from src.errors import ValidationError
from src.schemas.routing import ConfidenceWeights, RoutingRules

logger = logging.getLogger(__name__)

RulesLoader = Callable[[], RoutingRules]


def validate_rules(payload: dict[str, Any]) -> RoutingRules:
    """Validate a raw rules mapping.

    Raises:
        ValidationError: thresholds outside [0, 1] or weights not summing to 1.0.
    """
    try:
        return RoutingRules.model_validate(payload)
    except pydantic.ValidationError as exc:
        errors = "; ".join(err["msg"] for err in exc.errors())
        raise ValidationError(f"Invalid routing rules: {errors}", operation="load_rules") from exc


def validate_weights(classification: float, extraction: float, matching: float) -> ConfidenceWeights:
    """Build confidence weights, rejecting a set that does not sum to 1.0."""
    try:
        return ConfidenceWeights(classification=classification, extraction=extraction, matching=matching)
    except pydantic.ValidationError as exc:
        errors = "; ".join(err["msg"] for err in exc.errors())
        raise ValidationError(f"Invalid confidence weights: {errors}", operation="load_rules") from exc


def load_rules(path: str | None = None) -> RoutingRules:
    """Read rules from path (or settings), defaults if no file is configured."""
    rules_path = path if path is not None else settings.routing.routing_rules_path
    if not rules_path:
        logger.info("No routing rules file configured, using defaults")
        return RoutingRules()

    file = Path(rules_path)
    if not file.exists():
        logger.info("Routing rules file %s not found, using defaults", file)
        return RoutingRules()

    try:
        payload = json.loads(file.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise ValidationError(f"Cannot read routing rules {file}: {exc}", operation="load_rules") from exc

    if not isinstance(payload, dict):
        raise ValidationError(f"Routing rules {file} must be a JSON object", operation="load_rules")

    rules = validate_rules(payload)
    logger.info("Routing rules loaded from %s (%d supplier rules)", file, len(rules.supplier_rules))
    return rules


class RuleCache:
    """Holds the current RoutingRules for ttl seconds.

    get() reloads lazily once the entry is stale; invalidate() drops it;
    reload() forces a fresh load immediately. A failed reload leaves the
    previous rules in place and re-raises.
    """

    def __init__(
        self,
        loader: RulesLoader = load_rules,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._loader = loader
        self._ttl = ttl_seconds if ttl_seconds is not None else settings.routing.rule_cache_ttl_seconds
        self._clock = clock
        self._rules: RoutingRules | None = None
        self._loaded_at: float = 0.0

    @property
    def is_fresh(self) -> bool:
        return self._rules is not None and (self._clock() - self._loaded_at) < self._ttl

    def get(self) -> RoutingRules:
        rules = self._rules
        if rules is None or not self.is_fresh:
            return self.reload()
        return rules

    def invalidate(self) -> None:
        self._rules = None
        self._loaded_at = 0.0

    def reload(self) -> RoutingRules:
        rules = self._loader()
        self._rules = rules
        self._loaded_at = self._clock()
        return rules
