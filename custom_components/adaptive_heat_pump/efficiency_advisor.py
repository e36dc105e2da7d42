"""Recommends supply-temperature moves that raise the heat pump's COP.

This module is intentionally free of Home Assistant imports so it can be unit-tested.
"""

from __future__ import annotations

from datetime import datetime
import logging

from .actions import ACTION_DECREASE, ACTION_INCREASE, ACTION_MAINTAIN, EfficiencyAction
from .const import (
    DEFAULT_COP_STRATEGY,
    DEFAULT_MIN_ACCEPTABLE_COP,
    DEFAULT_TARGET_COP,
    PRIORITY_HIGH,
    PRIORITY_LOW,
    PRIORITY_MEDIUM,
    STRATEGY_AGGRESSIVE,
    STRATEGY_CONSERVATIVE,
)
from .efficiency_learner import EfficiencyLearner, fallback_supply_step

_LOGGER = logging.getLogger(__name__)

# Deviation from the learned optimum needed before acting, per branch.
LOW_COP_GATE = 2.0
NEAR_TARGET_GATE = 3.0

MAX_STEP_CONSERVATIVE = 1.0
MAX_STEP_BALANCED = 2.0
MAX_STEP_AGGRESSIVE = 3.0

DEFAULT_MIN_SUPPLY = 25.0
DEFAULT_MAX_SUPPLY = 55.0


def max_step_for(strategy: str) -> float:
    if strategy == STRATEGY_CONSERVATIVE:
        return MAX_STEP_CONSERVATIVE
    if strategy == STRATEGY_AGGRESSIVE:
        return MAX_STEP_AGGRESSIVE
    return MAX_STEP_BALANCED


class EfficiencyAdvisor:
    """COP optimiser backed by an EfficiencyLearner."""

    def __init__(
        self,
        learner: EfficiencyLearner,
        *,
        min_acceptable_cop: float = DEFAULT_MIN_ACCEPTABLE_COP,
        target_cop: float = DEFAULT_TARGET_COP,
        strategy: str = DEFAULT_COP_STRATEGY,
        min_supply: float = DEFAULT_MIN_SUPPLY,
        max_supply: float = DEFAULT_MAX_SUPPLY,
        low_cop_gate: float = LOW_COP_GATE,
        near_target_gate: float = NEAR_TARGET_GATE,
    ) -> None:
        self._learner = learner
        self.min_acceptable_cop = min_acceptable_cop
        self.target_cop = target_cop
        self.strategy = strategy
        self.min_supply = min_supply
        self.max_supply = max_supply
        self.low_cop_gate = low_cop_gate
        self.near_target_gate = near_target_gate

    @property
    def learner(self) -> EfficiencyLearner:
        return self._learner

    def update_settings(self, *, min_acceptable_cop: float, target_cop: float, strategy: str) -> None:
        self.min_acceptable_cop = min_acceptable_cop
        self.target_cop = target_cop
        self.strategy = strategy

    def _step_toward(self, current: float, optimum: float) -> float:
        goal = max(self.min_supply, min(self.max_supply, optimum))
        limit = max_step_for(self.strategy)
        return max(-limit, min(limit, goal - current))

    def _toward_optimum(self, step: float, priority: str, reason: str, current_cop: float) -> EfficiencyAction:
        if step == 0:
            return self._maintain(current_cop, reason)
        return EfficiencyAction(
            action=ACTION_INCREASE if step > 0 else ACTION_DECREASE,
            magnitude=abs(step),
            priority=priority,
            reason=reason,
            current_cop=current_cop,
            target_cop=self.target_cop,
        )

    def _maintain(self, current_cop: float, reason: str) -> EfficiencyAction:
        return EfficiencyAction(
            action=ACTION_MAINTAIN,
            magnitude=0.0,
            priority=PRIORITY_LOW,
            reason=reason,
            current_cop=current_cop,
            target_cop=self.target_cop,
        )

    def compute_action(
        self,
        current_cop: float,
        daily_cop: float,
        outdoor_temp: float,
        current_setpoint: float,
    ) -> EfficiencyAction:
        """Return the efficiency recommendation for this cycle."""
        optimum = self._learner.optimal_supply_temp(outdoor_temp)

        if current_cop < self.min_acceptable_cop:
            if optimum is not None and abs(current_setpoint - optimum) > self.low_cop_gate:
                return self._toward_optimum(
                    self._step_toward(current_setpoint, optimum),
                    PRIORITY_HIGH,
                    f"COP {current_cop:.1f} below minimum {self.min_acceptable_cop:.1f}; "
                    f"historical optimum at {outdoor_temp:.0f}°C is {optimum:.0f}°C supply",
                    current_cop,
                )
            step = fallback_supply_step(self.strategy)
            return EfficiencyAction(
                action=ACTION_DECREASE,
                magnitude=abs(step),
                priority=PRIORITY_HIGH,
                reason=f"COP {current_cop:.1f} below minimum; reducing supply temperature to improve efficiency",
                current_cop=current_cop,
                target_cop=self.target_cop,
            )

        if current_cop < self.target_cop and daily_cop < self.target_cop:
            if optimum is not None and abs(current_setpoint - optimum) > self.near_target_gate:
                return self._toward_optimum(
                    self._step_toward(current_setpoint, optimum),
                    PRIORITY_MEDIUM,
                    f"COP {current_cop:.1f} below target {self.target_cop:.1f}; optimising toward historical best",
                    current_cop,
                )

        return self._maintain(current_cop, f"COP {current_cop:.1f} acceptable")

    def record_measurement(
        self,
        *,
        outdoor_temp: float,
        supply_temp: float,
        cop: float,
        compressor_frequency: float,
        now: datetime | None = None,
    ) -> bool:
        """Feed a running measurement back into the learner."""
        if cop <= 0 or compressor_frequency <= 0:
            return False
        return self._learner.add_measurement(
            outdoor_temp=outdoor_temp,
            supply_temp=supply_temp,
            cop=cop,
            compressor_frequency=compressor_frequency,
            now=now,
        )
