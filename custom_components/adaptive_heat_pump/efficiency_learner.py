"""COP-versus-outdoor-temperature learner.

This module is intentionally free of Home Assistant imports so it can be unit-tested.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from typing import Any

from .bucketed_learner import HIGH_CONFIDENCE_SAMPLES, BucketedLearner, bucket_key, coerce_float, mean
from .const import STRATEGY_AGGRESSIVE

_LOGGER = logging.getLogger(__name__)

MAX_HISTORY = 1000
COP_RANGE = (1.0, 8.0)
SUPPLY_BUCKET_WIDTH = 2.0
DEFAULT_OPTIMAL_SUPPLY = 40.0

# Heuristic used when nothing has been learned: a lower supply temperature raises COP.
FALLBACK_SUPPLY_STEP = -2.0
FALLBACK_SUPPLY_STEP_AGGRESSIVE = -3.0


@dataclass(frozen=True)
class EfficiencySample:
    """One COP measurement."""

    timestamp: float  # POSIX seconds.
    outdoor_temp: float
    supply_temp: float
    cop: float
    compressor_frequency: float


def fallback_supply_step(strategy: str) -> float:
    """Supply temperature step used when no optimum has been learned."""
    if strategy == STRATEGY_AGGRESSIVE:
        return FALLBACK_SUPPLY_STEP_AGGRESSIVE
    return FALLBACK_SUPPLY_STEP


class EfficiencyLearner(BucketedLearner[EfficiencySample]):
    """Learns mean COP and the best supply temperature per outdoor bucket."""

    def __init__(self, *, max_history: int = MAX_HISTORY) -> None:
        super().__init__(max_history=max_history, value_range=COP_RANGE)

    def _control_value(self, observation: EfficiencySample) -> float:
        return observation.outdoor_temp

    def _aggregate(self, observations: list[EfficiencySample]) -> tuple[float, dict[str, float]]:
        by_supply: dict[float, list[float]] = {}
        for sample in observations:
            by_supply.setdefault(bucket_key(sample.supply_temp, SUPPLY_BUCKET_WIDTH), []).append(sample.cop)

        best_supply = DEFAULT_OPTIMAL_SUPPLY
        best_cop = 0.0
        for supply in sorted(by_supply):
            average = mean(by_supply[supply])
            if average > best_cop:
                best_cop = average
                best_supply = supply

        return mean(sample.cop for sample in observations), {
            "optimal_supply_temp": best_supply,
            "optimal_cop": best_cop,
        }

    def _serialize(self, observation: EfficiencySample) -> dict[str, Any]:
        return {
            "timestamp": observation.timestamp,
            "outdoor_temp": observation.outdoor_temp,
            "supply_temp": observation.supply_temp,
            "cop": observation.cop,
            "compressor_frequency": observation.compressor_frequency,
        }

    def _deserialize(self, payload: Any) -> EfficiencySample | None:
        if not isinstance(payload, dict):
            return None
        values = [
            coerce_float(payload.get(name))
            for name in ("timestamp", "outdoor_temp", "supply_temp", "cop", "compressor_frequency")
        ]
        if any(value is None for value in values):
            return None
        return EfficiencySample(*values)  # type: ignore[arg-type]

    def add_measurement(
        self,
        *,
        outdoor_temp: float,
        supply_temp: float,
        cop: float,
        compressor_frequency: float,
        now: datetime | None = None,
    ) -> bool:
        """Record one measurement; returns False when it is not usable for learning."""
        values = [coerce_float(value) for value in (outdoor_temp, supply_temp, cop, compressor_frequency)]
        if any(value is None for value in values):
            _LOGGER.debug("Skipping COP sample with missing values: %s", values)
            return False
        outdoor, supply, cop_value, frequency = values  # type: ignore[misc]
        if cop_value <= 0 or frequency <= 0:
            return False
        timestamp = (now or datetime.now(timezone.utc)).timestamp()
        self.add_observation(EfficiencySample(timestamp, outdoor, supply, cop_value, frequency))
        return True

    def optimal_supply_temp(self, outdoor_temp: float) -> float | None:
        """Best learned supply temperature for the outdoor bucket, if it qualifies."""
        bucket = self.buckets().get(self.bucket_for(outdoor_temp))
        if bucket is None or bucket.sample_count < self.min_samples:
            return None
        return bucket.details["optimal_supply_temp"]

    def estimated_cop(self, outdoor_temp: float) -> float | None:
        return self.lookup(outdoor_temp)

    def learning_confidence(self) -> float:
        """Share of a high-confidence sample count backed by qualifying buckets."""
        qualifying_samples = sum(bucket.sample_count for bucket in self.qualifying_buckets())
        return min(1.0, qualifying_samples / HIGH_CONFIDENCE_SAMPLES)
