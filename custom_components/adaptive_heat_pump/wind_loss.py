"""Wind-induced heat loss estimator.

A single sensitivity coefficient ``alpha`` links wind speed and the indoor to
outdoor temperature difference to extra heat loss. It is learned with an
exponential moving average from positive heat-loss residuals of the building
model.

This module is intentionally free of Home Assistant imports so it can be unit-tested.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import Any

from .bucketed_learner import coerce_float
from .const import DEFAULT_WIND_MAX_CORRECTION
from .errors import ParameterValidationError

_LOGGER = logging.getLogger(__name__)

DEFAULT_ALPHA = 0.006
MIN_ALPHA = 0.001
MAX_ALPHA = 0.02
LEARNING_RATE = 0.01
MIN_WIND_SPEED = 5.0  # km/h
MIN_DELTA_T = 5.0  # °C
WIND_SCALE = 100.0
MAX_WIND_SPEED = 200.0
MIN_LEARNING_SAMPLES = 10
WIND_DATA_MAX_AGE = timedelta(minutes=15)

LOOKUP_WIND_SPEEDS = (10.0, 20.0, 30.0, 40.0, 50.0)
LOOKUP_DELTA_TS = (10.0, 15.0, 20.0, 25.0)

ALPHA_SOURCE_MANUAL = "manual"
ALPHA_SOURCE_LEARNED = "learned"
ALPHA_SOURCE_DEFAULT = "default"


@dataclass(frozen=True)
class WindCorrection:
    """Setpoint correction for the current wind conditions."""

    correction: float
    raw_correction: float
    capped: bool
    alpha: float
    alpha_source: str
    wind_speed: float
    delta_t: float


class WindLossEstimator:
    """EMA learner for the wind sensitivity coefficient."""

    def __init__(
        self,
        *,
        manual_alpha: float | None = None,
        max_correction: float = DEFAULT_WIND_MAX_CORRECTION,
    ) -> None:
        self._alpha = DEFAULT_ALPHA
        self._sample_count = 0
        self._manual_alpha = manual_alpha
        self._max_correction = max_correction
        self._wind_speed: float | None = None
        self._wind_updated: datetime | None = None

    @property
    def learned_alpha(self) -> float:
        return self._alpha

    @property
    def sample_count(self) -> int:
        return self._sample_count

    @property
    def wind_speed(self) -> float | None:
        return self._wind_speed

    def update_settings(self, *, manual_alpha: float | None, max_correction: float) -> None:
        self._manual_alpha = manual_alpha
        self._max_correction = max_correction

    def receive_wind_speed(self, wind_speed: Any, now: datetime) -> float:
        """Store an externally pushed wind speed; invalid values raise."""
        value = coerce_float(wind_speed)
        if value is None:
            raise ParameterValidationError(f"Invalid wind speed value: {wind_speed!r}")
        if not 0.0 <= value <= MAX_WIND_SPEED:
            raise ParameterValidationError(
                f"Wind speed out of valid range: {value} km/h (must be 0-{MAX_WIND_SPEED:.0f} km/h)"
            )
        self._wind_speed = value
        self._wind_updated = now
        _LOGGER.debug("Received wind speed %.1f km/h", value)
        return value

    def effective_alpha(self) -> tuple[float, str]:
        """Return (alpha, source): manual override, then learned, then default."""
        if self._manual_alpha is not None and self._manual_alpha > 0:
            return self._manual_alpha, ALPHA_SOURCE_MANUAL
        if self._sample_count > MIN_LEARNING_SAMPLES and self._alpha > 0:
            return self._alpha, ALPHA_SOURCE_LEARNED
        return DEFAULT_ALPHA, ALPHA_SOURCE_DEFAULT

    def calculate_correction(
        self,
        indoor_temp: float,
        outdoor_temp: float,
        wind_speed: float | None = None,
    ) -> WindCorrection | None:
        """Return the wind correction, or None when wind or ΔT is too small."""
        wind = self._wind_speed if wind_speed is None else wind_speed
        if wind is None or wind < MIN_WIND_SPEED or wind > MAX_WIND_SPEED:
            return None
        delta_t = indoor_temp - outdoor_temp
        if delta_t <= MIN_DELTA_T:
            return None

        alpha, source = self.effective_alpha()
        raw = alpha * wind * delta_t / WIND_SCALE
        correction = min(raw, self._max_correction)
        _LOGGER.debug(
            "Wind correction %.2f (raw %.2f, alpha %.4f/%s, wind %.1f, dT %.1f)",
            correction,
            raw,
            alpha,
            source,
            wind,
            delta_t,
        )
        return WindCorrection(
            correction=correction,
            raw_correction=raw,
            capped=raw > self._max_correction,
            alpha=alpha,
            alpha_source=source,
            wind_speed=wind,
            delta_t=delta_t,
        )

    def learn_from_residual(
        self,
        *,
        predicted_loss: float,
        actual_loss: float,
        heat_loss_coefficient: float,
        indoor_temp: float,
        outdoor_temp: float,
        wind_speed: float | None = None,
    ) -> bool:
        """Blend the alpha implied by an under-predicted heat loss; returns True when learned."""
        wind = self._wind_speed if wind_speed is None else wind_speed
        if wind is None or wind < MIN_WIND_SPEED:
            return False
        delta_t = indoor_temp - outdoor_temp
        if delta_t < MIN_DELTA_T or heat_loss_coefficient <= 0:
            return False

        residual = actual_loss - predicted_loss
        if residual <= 0:
            return False

        implied = residual * WIND_SCALE / (wind * delta_t * heat_loss_coefficient)
        if not MIN_ALPHA <= implied <= MAX_ALPHA:
            _LOGGER.warning(
                "Implied wind alpha %.4f outside %.3f-%.3f; sample dropped", implied, MIN_ALPHA, MAX_ALPHA
            )
            return False

        previous = self._alpha
        self._alpha = (1 - LEARNING_RATE) * self._alpha + LEARNING_RATE * implied
        self._sample_count += 1
        _LOGGER.debug(
            "Wind alpha %.4f -> %.4f (implied %.4f, samples %d)", previous, self._alpha, implied, self._sample_count
        )
        return True

    def lookup_table(self) -> list[dict[str, float]]:
        """Corrections for a grid of typical wind speeds and temperature differences."""
        alpha, _source = self.effective_alpha()
        return [
            {
                "wind_speed": wind,
                "delta_t": delta_t,
                "correction": min(alpha * wind * delta_t / WIND_SCALE, self._max_correction),
            }
            for wind in LOOKUP_WIND_SPEEDS
            for delta_t in LOOKUP_DELTA_TS
        ]

    def data_health(self, now: datetime, max_age: timedelta = WIND_DATA_MAX_AGE) -> dict[str, Any]:
        if self._wind_speed is None or self._wind_updated is None:
            return {"has_valid_data": False, "wind_speed": None, "last_updated": None, "error": "No wind data"}
        age = now - self._wind_updated
        if age > max_age:
            return {
                "has_valid_data": False,
                "wind_speed": self._wind_speed,
                "last_updated": self._wind_updated.isoformat(),
                "error": f"Data is stale ({int(age.total_seconds() // 60)} minutes old)",
            }
        return {
            "has_valid_data": True,
            "wind_speed": self._wind_speed,
            "last_updated": self._wind_updated.isoformat(),
            "error": None,
        }

    def diagnostics(self, now: datetime) -> dict[str, Any]:
        alpha, source = self.effective_alpha()
        return {
            "effective_alpha": alpha,
            "alpha_source": source,
            "learned_alpha": self._alpha,
            "learning_count": self._sample_count,
            "max_correction": self._max_correction,
            "health": self.data_health(now),
        }

    def export_state(self) -> dict[str, Any]:
        return {"alpha": self._alpha, "sample_count": self._sample_count}

    def restore(self, alpha: Any, sample_count: Any) -> bool:
        """Restore learned state; values outside the sane band are ignored."""
        alpha_value = coerce_float(alpha)
        count_value = coerce_float(sample_count)
        if alpha_value is None or not MIN_ALPHA <= alpha_value <= MAX_ALPHA:
            return False
        self._alpha = alpha_value
        self._sample_count = max(0, int(count_value)) if count_value is not None else 0
        return True

    def destroy(self) -> None:
        self._alpha = DEFAULT_ALPHA
        self._sample_count = 0
        self._wind_speed = None
        self._wind_updated = None
