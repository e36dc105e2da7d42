"""Rolling bucketed learner shared by the efficiency and defrost estimators.

Observations are kept in a bounded FIFO history and grouped into fixed-width
buckets of a control variable (outdoor temperature). Bucket statistics are
always recomputed from the full history so that exporting and restoring the
history reproduces the learner exactly.

This module is intentionally free of Home Assistant imports so it can be unit-tested.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
import logging
import math
from typing import Any, Generic, Iterable, TypeVar

_LOGGER = logging.getLogger(__name__)

DEFAULT_BUCKET_WIDTH = 2.0
DEFAULT_MIN_SAMPLES = 5

# Sample-count thresholds for the confidence tiers.
MEDIUM_CONFIDENCE_SAMPLES = 10
HIGH_CONFIDENCE_SAMPLES = 30

CONFIDENCE_LOW = "low"
CONFIDENCE_MEDIUM = "medium"
CONFIDENCE_HIGH = "high"

ObservationT = TypeVar("ObservationT")


def bucket_key(value: float, width: float) -> float:
    """Round to the nearest bucket, halves away from negative infinity."""
    return math.floor(value / width + 0.5) * width


def confidence_tier(sample_count: int) -> str:
    if sample_count < MEDIUM_CONFIDENCE_SAMPLES:
        return CONFIDENCE_LOW
    if sample_count < HIGH_CONFIDENCE_SAMPLES:
        return CONFIDENCE_MEDIUM
    return CONFIDENCE_HIGH


def _clamp(value: float, minimum: float, maximum: float) -> float:
    return max(minimum, min(maximum, value))


@dataclass(frozen=True)
class LearningBucket:
    """Aggregate of all observations that fall into one bucket."""

    key: float
    sample_count: int
    statistic: float
    details: dict[str, float]

    @property
    def confidence_tier(self) -> str:
        return confidence_tier(self.sample_count)

    def as_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "sample_count": self.sample_count,
            "statistic": self.statistic,
            "confidence": self.confidence_tier,
            **self.details,
        }


class BucketedLearner(Generic[ObservationT]):
    """Bounded-history learner with exact/interpolate/extrapolate lookup.

    Subclasses provide how an observation maps to its control value, how a
    group of observations aggregates into a statistic, and how observations
    are serialised.
    """

    def __init__(
        self,
        *,
        max_history: int,
        value_range: tuple[float, float],
        bucket_width: float = DEFAULT_BUCKET_WIDTH,
        min_samples: int = DEFAULT_MIN_SAMPLES,
    ) -> None:
        self._max_history = max(1, int(max_history))
        self._bucket_width = float(bucket_width)
        self._min_samples = max(1, int(min_samples))
        self._value_min, self._value_max = value_range
        self._history: deque[ObservationT] = deque(maxlen=self._max_history)
        self._buckets: dict[float, LearningBucket] = {}

    # -- hooks -------------------------------------------------------------

    def _control_value(self, observation: ObservationT) -> float:
        raise NotImplementedError

    def _aggregate(self, observations: list[ObservationT]) -> tuple[float, dict[str, float]]:
        """Return (statistic, extra details) for one bucket."""
        raise NotImplementedError

    def _serialize(self, observation: ObservationT) -> dict[str, Any]:
        raise NotImplementedError

    def _deserialize(self, payload: Any) -> ObservationT | None:
        raise NotImplementedError

    # -- core --------------------------------------------------------------

    @property
    def bucket_width(self) -> float:
        return self._bucket_width

    @property
    def max_history(self) -> int:
        return self._max_history

    @property
    def min_samples(self) -> int:
        return self._min_samples

    def bucket_for(self, value: float) -> float:
        return bucket_key(value, self._bucket_width)

    def add_observation(self, observation: ObservationT) -> None:
        """Append to the FIFO history and rebuild every bucket."""
        self._history.append(observation)
        self._rebuild()

    def _rebuild(self) -> None:
        grouped: dict[float, list[ObservationT]] = {}
        for observation in self._history:
            grouped.setdefault(self.bucket_for(self._control_value(observation)), []).append(observation)

        buckets: dict[float, LearningBucket] = {}
        for key in sorted(grouped):
            observations = grouped[key]
            statistic, details = self._aggregate(observations)
            buckets[key] = LearningBucket(
                key=key,
                sample_count=len(observations),
                statistic=statistic,
                details=details,
            )
        self._buckets = buckets

    def history(self) -> list[ObservationT]:
        return list(self._history)

    def buckets(self) -> dict[float, LearningBucket]:
        return dict(self._buckets)

    def qualifying_buckets(self) -> list[LearningBucket]:
        """Buckets with enough samples, sorted by key."""
        return [bucket for bucket in self._buckets.values() if bucket.sample_count >= self._min_samples]

    def lookup(self, value: float) -> float | None:
        """Return the learned statistic at ``value`` or None when nothing qualifies."""
        qualifying = self.qualifying_buckets()
        if not qualifying:
            return None

        query_key = self.bucket_for(value)
        for bucket in qualifying:
            if bucket.key == query_key:
                return bucket.statistic

        if len(qualifying) < 2:
            return qualifying[0].statistic

        lower: LearningBucket | None = None
        upper: LearningBucket | None = None
        for bucket in qualifying:
            if bucket.key <= query_key:
                lower = bucket
            if bucket.key >= query_key and upper is None:
                upper = bucket

        if lower is not None and upper is not None and lower.key != upper.key:
            fraction = (value - lower.key) / (upper.key - lower.key)
            return lower.statistic + fraction * (upper.statistic - lower.statistic)

        if value < qualifying[0].key:
            edge, neighbour = qualifying[0], qualifying[1]
        else:
            edge, neighbour = qualifying[-1], qualifying[-2]
        slope = (neighbour.statistic - edge.statistic) / (neighbour.key - edge.key)
        extrapolated = edge.statistic + slope * (value - edge.key)
        return _clamp(extrapolated, self._value_min, self._value_max)

    # -- persistence ---------------------------------------------------------

    def export_state(self) -> dict[str, Any]:
        """Return a JSON-friendly payload of the history and derived buckets."""
        return {
            "history": [self._serialize(observation) for observation in self._history],
            "buckets": [bucket.as_dict() for bucket in self._buckets.values()],
        }

    def restore(self, payload: Any) -> bool:
        """Restore from an exported payload; buckets are recomputed from history."""
        if not isinstance(payload, dict):
            return False
        raw_history = payload.get("history")
        if not isinstance(raw_history, list):
            return False

        restored: list[ObservationT] = []
        skipped = 0
        for item in raw_history:
            observation = self._deserialize(item)
            if observation is None:
                skipped += 1
                continue
            restored.append(observation)
        if skipped:
            _LOGGER.warning("Dropped %d malformed observations while restoring %s", skipped, type(self).__name__)

        self._history = deque(restored[-self._max_history :], maxlen=self._max_history)
        self._rebuild()
        return True

    def destroy(self) -> None:
        self._history.clear()
        self._buckets = {}

    def diagnostics(self) -> dict[str, Any]:
        size = len(self._history)
        return {
            "samples_collected": size,
            "history_capacity": self._max_history,
            "fill_percentage": round(100.0 * size / self._max_history, 1),
            "qualified_buckets": len(self.qualifying_buckets()),
            "bucket_details": [bucket.as_dict() for bucket in self._buckets.values()],
        }


def coerce_float(value: Any) -> float | None:
    """Return a finite float or None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(numeric):
        return None
    return numeric


def mean(values: Iterable[float]) -> float:
    items = list(values)
    return sum(items) / len(items) if items else 0.0
