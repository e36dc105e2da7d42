"""Proportional-integral comfort loop on indoor temperature error.

This module is intentionally free of Home Assistant imports so it can be unit-tested.
"""

from __future__ import annotations

from collections import deque
import logging
import math
from typing import Any, Iterable

from .actions import ComfortAction
from .const import DEFAULT_DEADBAND, DEFAULT_KI, DEFAULT_KP, PRIORITY_HIGH, PRIORITY_LOW, PRIORITY_MEDIUM
from .schemas import PI_PARAMETERS_SCHEMA, validate

_LOGGER = logging.getLogger(__name__)

MAX_ERROR_HISTORY = 24  # Two hours at the default 5-minute cycle.
MAX_ADJUSTMENT = 3.0  # Degrees per cycle in either direction.
MIN_ADJUSTMENT = 0.1
HIGH_PRIORITY_ERROR = 2.0
LOW_PRIORITY_ERROR = 0.5

# Overshoot suppression: assumed heating rate (°C/h) and the share of tau it applies to.
ASSUMED_HEATING_RATE = 0.3
OVERSHOOT_FRACTION = 0.2
OVERSHOOT_MAX_ERROR = 2.0

# Deadband widening from the building heat-loss coefficient (kW/°C).
UA_DEADBAND_GAIN = 0.5
UA_DEADBAND_OFFSET = 0.25
UA_DEADBAND_CAP = 0.8


def _clamp(value: float, minimum: float, maximum: float) -> float:
    return max(minimum, min(maximum, value))


class ComfortController:
    """PI controller turning indoor error into a bounded setpoint adjustment."""

    def __init__(
        self,
        *,
        kp: float = DEFAULT_KP,
        ki: float = DEFAULT_KI,
        deadband: float = DEFAULT_DEADBAND,
    ) -> None:
        params = validate(PI_PARAMETERS_SCHEMA, {"kp": kp, "ki": ki, "deadband": deadband}, "PI parameters")
        self._kp = params["kp"]
        self._ki = params["ki"]
        self._deadband = params["deadband"]
        self._error_history: deque[float] = deque(maxlen=MAX_ERROR_HISTORY)

    @property
    def kp(self) -> float:
        return self._kp

    @property
    def ki(self) -> float:
        return self._ki

    @property
    def deadband(self) -> float:
        return self._deadband

    def effective_deadband(self, heat_loss_coefficient: float | None = None) -> float:
        """Return the deadband, widened for leaky buildings when UA is known."""
        if heat_loss_coefficient is None or not math.isfinite(heat_loss_coefficient) or heat_loss_coefficient <= 0:
            return self._deadband
        widened = min(UA_DEADBAND_CAP, heat_loss_coefficient * UA_DEADBAND_GAIN + UA_DEADBAND_OFFSET)
        return max(self._deadband, widened)

    def compute_action(
        self,
        indoor_temp: float,
        target_temp: float,
        thermal_inertia_hours: float | None = None,
        heat_loss_coefficient: float | None = None,
    ) -> ComfortAction | None:
        """Return the PI adjustment for this cycle, or None when no action is needed."""
        error = target_temp - indoor_temp

        if thermal_inertia_hours is not None and thermal_inertia_hours > 0 and 0 < error < OVERSHOOT_MAX_ERROR:
            margin = thermal_inertia_hours * ASSUMED_HEATING_RATE * OVERSHOOT_FRACTION
            if error <= margin:
                _LOGGER.debug(
                    "Error %.2f within overshoot margin %.2f (tau %.1fh); stopping early",
                    error,
                    margin,
                    thermal_inertia_hours,
                )
                return None

        deadband = self.effective_deadband(heat_loss_coefficient)
        if abs(error) < deadband:
            _LOGGER.debug("Error %.2f within deadband %.2f; no action", error, deadband)
            return None

        self._error_history.append(error)
        p_term = self._kp * error
        i_term = self._ki * (sum(self._error_history) / len(self._error_history))
        raw = p_term + i_term
        adjustment = _clamp(raw, -MAX_ADJUSTMENT, MAX_ADJUSTMENT)

        _LOGGER.debug(
            "PI terms: p=%.2f i=%.2f raw=%.2f clamped=%.2f history=%d",
            p_term,
            i_term,
            raw,
            adjustment,
            len(self._error_history),
        )

        if abs(adjustment) < MIN_ADJUSTMENT:
            return None

        if abs(error) > HIGH_PRIORITY_ERROR:
            priority = PRIORITY_HIGH
        elif abs(error) < LOW_PRIORITY_ERROR:
            priority = PRIORITY_LOW
        else:
            priority = PRIORITY_MEDIUM

        return ComfortAction(
            adjustment=adjustment,
            reason=f"PI Control: Error={error:+.1f}°C, P={p_term:.1f}°C, I={i_term:.1f}°C",
            priority=priority,
        )

    def update_parameters(self, *, kp: float, ki: float, deadband: float) -> None:
        """Replace gains and deadband; invalid values leave the controller untouched."""
        params = validate(PI_PARAMETERS_SCHEMA, {"kp": kp, "ki": ki, "deadband": deadband}, "PI parameters")
        self._kp = params["kp"]
        self._ki = params["ki"]
        self._deadband = params["deadband"]
        _LOGGER.info("PI parameters updated: kp=%.2f ki=%.2f deadband=%.2f", self._kp, self._ki, self._deadband)

    def reset_history(self) -> None:
        self._error_history.clear()

    def error_history(self) -> list[float]:
        return list(self._error_history)

    def restore_history(self, values: Iterable[Any] | None) -> bool:
        """Restore persisted errors, keeping only the most recent finite samples."""
        if not isinstance(values, (list, tuple)):
            return False
        restored: list[float] = []
        for value in values:
            try:
                numeric = float(value)
            except (TypeError, ValueError):
                continue
            if math.isfinite(numeric):
                restored.append(numeric)
        self._error_history = deque(restored[-MAX_ERROR_HISTORY:], maxlen=MAX_ERROR_HISTORY)
        return True

    def status(self) -> dict[str, Any]:
        history = self._error_history
        return {
            "kp": self._kp,
            "ki": self._ki,
            "deadband": self._deadband,
            "history_size": len(history),
            "max_history_size": MAX_ERROR_HISTORY,
            "current_error": history[-1] if history else None,
            "average_error": sum(history) / len(history) if history else None,
        }

    def destroy(self) -> None:
        self._error_history.clear()
