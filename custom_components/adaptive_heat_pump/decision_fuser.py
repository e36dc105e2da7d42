"""Confidence-weighted fusion of the advisor outputs into one adjustment.

This module is intentionally free of Home Assistant imports so it can be unit-tested.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
import logging
from typing import Any

from .actions import (
    ACTION_DECREASE,
    ACTION_MAINTAIN,
    ACTION_REDUCE,
    ComfortAction,
    CostAction,
    EfficiencyAction,
    ThermalAction,
    priority_rank,
)
from .const import (
    DEFAULT_PRIORITY_COMFORT,
    DEFAULT_PRIORITY_COST,
    DEFAULT_PRIORITY_EFFICIENCY,
    DEFAULT_PRIORITY_THERMAL,
    PRIORITY_LOW,
)
from .schemas import PRIORITY_WEIGHTS_SCHEMA, validate

_LOGGER = logging.getLogger(__name__)

CATEGORIES = ("comfort", "efficiency", "cost", "thermal")


@dataclass(frozen=True)
class PriorityWeights:
    """Static category weights; instances built through ``normalized`` sum to 1.0."""

    comfort: float = DEFAULT_PRIORITY_COMFORT
    efficiency: float = DEFAULT_PRIORITY_EFFICIENCY
    cost: float = DEFAULT_PRIORITY_COST
    thermal: float = DEFAULT_PRIORITY_THERMAL

    @classmethod
    def normalized(
        cls,
        *,
        comfort: float,
        efficiency: float,
        cost: float,
        thermal: float = 0.0,
    ) -> PriorityWeights:
        """Validate and renormalise; negative or all-zero weights raise."""
        weights = validate(
            PRIORITY_WEIGHTS_SCHEMA,
            {"comfort": comfort, "efficiency": efficiency, "cost": cost, "thermal": thermal},
            "priority weights",
        )
        total = sum(weights.values())
        return cls(**{name: value / total for name, value in weights.items()})

    def as_dict(self) -> dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class ConfidenceMetrics:
    """Per-cycle confidence inputs for the effective weights."""

    cop_confidence: float = 0.0
    building_model_confidence: float = 1.0
    price_data_available: bool = False

    def for_category(self, category: str) -> float:
        if category == "efficiency":
            return max(0.0, min(1.0, self.cop_confidence))
        if category == "cost":
            return 1.0 if self.price_data_available else 0.0
        if category == "thermal":
            return max(0.0, min(1.0, self.building_model_confidence))
        return 1.0


@dataclass(frozen=True)
class CombinedAction:
    final_adjustment: float
    breakdown: dict[str, float]
    effective_weights: dict[str, float]
    reasoning: list[str] = field(default_factory=list)
    priority: str = PRIORITY_LOW


def signed_adjustment(action: Any) -> float:
    """Signed degrees from any action variant; maintain contributes zero."""
    if action is None:
        return 0.0
    if isinstance(action, (ComfortAction, ThermalAction)):
        return action.adjustment
    if action.action == ACTION_MAINTAIN:
        return 0.0
    if action.action in (ACTION_DECREASE, ACTION_REDUCE):
        return -abs(action.magnitude)
    return abs(action.magnitude)


def _is_active(action: Any) -> bool:
    if action is None:
        return False
    if isinstance(action, (ComfortAction, ThermalAction)):
        return True
    return action.action != ACTION_MAINTAIN


class DecisionFuser:
    """Weighted decision maker over the comfort, efficiency, cost and thermal channels."""

    def __init__(self, weights: PriorityWeights | None = None) -> None:
        self._weights = weights or PriorityWeights()

    @property
    def priorities(self) -> PriorityWeights:
        return self._weights

    def set_priorities(
        self,
        *,
        comfort: float,
        efficiency: float,
        cost: float,
        thermal: float = 0.0,
    ) -> PriorityWeights:
        self._weights = PriorityWeights.normalized(
            comfort=comfort, efficiency=efficiency, cost=cost, thermal=thermal
        )
        _LOGGER.info("Priorities updated: %s", self._weights.as_dict())
        return self._weights

    def effective_weights(self, confidence: ConfidenceMetrics) -> dict[str, float]:
        """Static weights scaled by confidence and renormalised; static weights when all vanish."""
        static = self._weights.as_dict()
        scaled = {name: static[name] * confidence.for_category(name) for name in CATEGORIES}
        total = sum(scaled.values())
        if total <= 0:
            _LOGGER.debug("All confidence-weighted priorities are zero; using static priorities")
            static_total = sum(static.values())
            return {name: static[name] / static_total for name in CATEGORIES}
        return {name: value / total for name, value in scaled.items()}

    def fuse(
        self,
        comfort: ComfortAction | None,
        efficiency: EfficiencyAction | None = None,
        cost: CostAction | None = None,
        thermal: ThermalAction | None = None,
        confidence: ConfidenceMetrics | None = None,
    ) -> CombinedAction:
        weights = self.effective_weights(confidence or ConfidenceMetrics())
        actions = {"comfort": comfort, "efficiency": efficiency, "cost": cost, "thermal": thermal}

        breakdown = {name: signed_adjustment(action) * weights[name] for name, action in actions.items()}
        final = sum(breakdown.values())

        priority = PRIORITY_LOW
        for action in (comfort, efficiency, cost):
            if _is_active(action) and priority_rank(action.priority) > priority_rank(priority):  # type: ignore[union-attr]
                priority = action.priority  # type: ignore[union-attr]

        prefixes = {"comfort": "Comfort", "efficiency": "Efficiency", "cost": "Cost", "thermal": "Thermal"}
        reasoning = [
            f"{prefixes[name]}: {action.reason}" for name, action in actions.items() if _is_active(action)
        ]

        return CombinedAction(
            final_adjustment=final,
            breakdown=breakdown,
            effective_weights=weights,
            reasoning=reasoning,
            priority=priority,
        )

    def destroy(self) -> None:
        self._weights = PriorityWeights()
