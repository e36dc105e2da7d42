"""Defrost COP penalty learner.

Each bucket turns observed defrost cycles into a multiplicative COP factor:
minutes spent defrosting per operational hour reduce useful heating time.

This module is intentionally free of Home Assistant imports so it can be unit-tested.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from typing import Any

from .bucketed_learner import BucketedLearner, coerce_float, mean

_LOGGER = logging.getLogger(__name__)

MAX_HISTORY = 500
PENALTY_RANGE = (0.80, 1.0)
MIN_DURATION_SECONDS = 10.0
MAX_DURATION_SECONDS = 1200.0

# Icing band; no penalty outside it.
TEMP_LOW = -7.0
TEMP_HIGH = 7.0

DEFAULT_INTERVAL_MINUTES = 60.0
SESSION_GAP_SECONDS = 4 * 3600  # Longer gaps belong to a different operating session.
MAX_DEFROST_MINUTES_PER_HOUR = 15.0

# Static fallback model.
FALLBACK_MAX_PENALTY = 0.15
HUMIDITY_THRESHOLD = 80.0


@dataclass(frozen=True)
class DefrostEvent:
    """One completed defrost cycle."""

    timestamp: float  # POSIX seconds.
    outdoor_temp: float
    duration_sec: float
    humidity: float | None = None


def static_defrost_penalty(outdoor_temp: float, humidity: float | None = None) -> float:
    """Tent model centred at 0°C, scaled by humidity above the threshold."""
    temp_factor = max(0.0, 1.0 - abs(outdoor_temp) / TEMP_HIGH)
    if humidity is None:
        return 1.0 - FALLBACK_MAX_PENALTY * 0.5 * temp_factor
    if humidity <= HUMIDITY_THRESHOLD:
        return 1.0
    humidity_factor = (min(humidity, 100.0) - HUMIDITY_THRESHOLD) / (100.0 - HUMIDITY_THRESHOLD)
    return 1.0 - FALLBACK_MAX_PENALTY * temp_factor * humidity_factor


class DefrostPenaltyLearner(BucketedLearner[DefrostEvent]):
    """Learns the COP penalty caused by defrosting per outdoor temperature bucket."""

    def __init__(self, *, max_history: int = MAX_HISTORY) -> None:
        super().__init__(max_history=max_history, value_range=PENALTY_RANGE)

    def _control_value(self, observation: DefrostEvent) -> float:
        return observation.outdoor_temp

    def _aggregate(self, observations: list[DefrostEvent]) -> tuple[float, dict[str, float]]:
        avg_duration = mean(event.duration_sec for event in observations)

        avg_interval_min = DEFAULT_INTERVAL_MINUTES
        ordered = sorted(event.timestamp for event in observations)
        intervals = [
            later - earlier
            for earlier, later in zip(ordered, ordered[1:])
            if later - earlier < SESSION_GAP_SECONDS
        ]
        if intervals:
            avg_interval_min = mean(intervals) / 60.0

        # Seconds per defrost divided by minutes between defrosts equals minutes per hour.
        if avg_interval_min > 0:
            minutes_per_hour = min(MAX_DEFROST_MINUTES_PER_HOUR, avg_duration / avg_interval_min)
        else:
            minutes_per_hour = MAX_DEFROST_MINUTES_PER_HOUR
        penalty = max(PENALTY_RANGE[0], 1.0 - minutes_per_hour / 60.0)
        return penalty, {
            "avg_duration_sec": avg_duration,
            "avg_interval_min": avg_interval_min,
            "defrost_min_per_hour": minutes_per_hour,
        }

    def _serialize(self, observation: DefrostEvent) -> dict[str, Any]:
        return {
            "timestamp": observation.timestamp,
            "outdoor_temp": observation.outdoor_temp,
            "duration_sec": observation.duration_sec,
            "humidity": observation.humidity,
        }

    def _deserialize(self, payload: Any) -> DefrostEvent | None:
        if not isinstance(payload, dict):
            return None
        timestamp = coerce_float(payload.get("timestamp"))
        outdoor = coerce_float(payload.get("outdoor_temp"))
        duration = coerce_float(payload.get("duration_sec"))
        if timestamp is None or outdoor is None or duration is None:
            return None
        return DefrostEvent(timestamp, outdoor, duration, coerce_float(payload.get("humidity")))

    def record_event(
        self,
        outdoor_temp: float,
        duration_sec: float,
        humidity: float | None = None,
        *,
        now: datetime | None = None,
    ) -> bool:
        """Record a completed defrost; implausible durations are logged and skipped."""
        outdoor = coerce_float(outdoor_temp)
        duration = coerce_float(duration_sec)
        if outdoor is None or duration is None:
            _LOGGER.warning("Defrost event without usable temperature or duration skipped")
            return False
        if not MIN_DURATION_SECONDS <= duration <= MAX_DURATION_SECONDS:
            _LOGGER.warning(
                "Defrost duration %.0fs outside valid range (%.0f-%.0fs); skipped",
                duration,
                MIN_DURATION_SECONDS,
                MAX_DURATION_SECONDS,
            )
            return False
        timestamp = (now or datetime.now(timezone.utc)).timestamp()
        self.add_observation(DefrostEvent(timestamp, outdoor, duration, coerce_float(humidity)))
        _LOGGER.debug(
            "Defrost recorded: %.0fs at %.1f°C (%d events)", duration, outdoor, len(self.history())
        )
        return True

    def penalty(self, outdoor_temp: float, humidity: float | None = None) -> float:
        """Multiplicative COP factor in [0.80, 1.0]; 1.0 means no defrost losses."""
        if outdoor_temp < TEMP_LOW or outdoor_temp > TEMP_HIGH:
            return 1.0
        learned = self.lookup(outdoor_temp)
        if learned is not None:
            return learned
        return static_defrost_penalty(outdoor_temp, humidity)

    def event_count(self) -> int:
        return len(self.history())

    def qualified_bucket_count(self) -> int:
        return len(self.qualifying_buckets())
