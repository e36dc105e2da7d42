"""Turns the current price band into a bounded preheat or reduce recommendation.

This module is intentionally free of Home Assistant imports so it can be unit-tested.
"""

from __future__ import annotations

from datetime import datetime
import logging

from .actions import ACTION_MAINTAIN, ACTION_PREHEAT, ACTION_REDUCE, CostAction
from .const import (
    DEFAULT_MAX_PREHEAT_OFFSET,
    DEFAULT_MAX_REDUCE_OFFSET,
    DEFAULT_PRICE_LOOKAHEAD_HOURS,
    PRIORITY_HIGH,
    PRIORITY_LOW,
    PRIORITY_MEDIUM,
)
from .price_utils import PRICE_HIGH, PRICE_LOW, PRICE_VERY_HIGH, PRICE_VERY_LOW, PriceClassifier

_LOGGER = logging.getLogger(__name__)


class PriceAdvisor:
    """Preheats in cheap hours and backs off in expensive ones.

    ``max_reduce_offset`` is a positive magnitude; reducing lowers the indoor
    temperature that is tolerated below the target.
    """

    def __init__(
        self,
        classifier: PriceClassifier,
        *,
        max_preheat_offset: float = DEFAULT_MAX_PREHEAT_OFFSET,
        max_reduce_offset: float = DEFAULT_MAX_REDUCE_OFFSET,
        lookahead_hours: int = DEFAULT_PRICE_LOOKAHEAD_HOURS,
    ) -> None:
        self._classifier = classifier
        self._max_preheat = abs(max_preheat_offset)
        self._max_reduce = abs(max_reduce_offset)
        self._lookahead_hours = lookahead_hours

    def update_settings(
        self,
        *,
        max_preheat_offset: float,
        max_reduce_offset: float,
        lookahead_hours: int,
    ) -> None:
        self._max_preheat = abs(max_preheat_offset)
        self._max_reduce = abs(max_reduce_offset)
        self._lookahead_hours = lookahead_hours

    def compute_action(self, indoor_temp: float, target_temp: float, now: datetime) -> CostAction | None:
        """Return a cost action, or None without price data for the current hour."""
        if not self._classifier.has_data:
            _LOGGER.debug("No price data available")
            return None
        current = self._classifier.current_price(now)
        if current is None:
            _LOGGER.debug("No price for the current hour")
            return None

        future = self._classifier.average_price(now, self._lookahead_hours)
        future_price = future.price if future else None
        band = current.category
        price = current.price

        def _action(action: str, magnitude: float, priority: str, reason: str) -> CostAction:
            return CostAction(
                action=action,
                magnitude=magnitude,
                priority=priority,
                reason=reason,
                current_price=price,
                future_price=future_price,
            )

        if band == PRICE_VERY_LOW and indoor_temp < target_temp + self._max_preheat:
            return _action(
                ACTION_PREHEAT, self._max_preheat, PRIORITY_HIGH, f"Very low price ({price:.4f}/kWh), pre-heating maximally"
            )
        if band == PRICE_LOW and indoor_temp < target_temp + self._max_preheat / 2:
            return _action(
                ACTION_PREHEAT, self._max_preheat / 2, PRIORITY_MEDIUM, f"Low price ({price:.4f}/kWh), pre-heating moderately"
            )
        if band == PRICE_HIGH and indoor_temp > target_temp - self._max_reduce / 2:
            return _action(
                ACTION_REDUCE, self._max_reduce / 2, PRIORITY_MEDIUM, f"High price ({price:.4f}/kWh), reducing moderately"
            )
        if band == PRICE_VERY_HIGH and indoor_temp > target_temp - self._max_reduce:
            return _action(
                ACTION_REDUCE, self._max_reduce, PRIORITY_HIGH, f"Very high price ({price:.4f}/kWh), reducing maximally"
            )
        return _action(ACTION_MAINTAIN, 0.0, PRIORITY_LOW, f"{band.replace('_', ' ').capitalize()} price ({price:.4f}/kWh), maintaining")
