"""Voluptuous schemas for options and runtime parameter updates.

This module is intentionally free of Home Assistant imports so it can be unit-tested.
"""

from __future__ import annotations

import math
from typing import Any, Mapping

import voluptuous as vol

from .const import (
    CONF_COMPRESSOR_FREQUENCY,
    CONF_CONTROL_INTERVAL_SECONDS,
    CONF_COP,
    CONF_COP_STRATEGY,
    CONF_DAILY_COP,
    CONF_DEADBAND,
    CONF_EFFICIENCY_ENABLED,
    CONF_ENERGY_TAX,
    CONF_EXECUTION_MODE,
    CONF_HUMIDITY,
    CONF_INDOOR_TEMP,
    CONF_KI,
    CONF_KP,
    CONF_MAX_PREHEAT_OFFSET,
    CONF_MAX_REDUCE_OFFSET,
    CONF_MIN_ACCEPTABLE_COP,
    CONF_MIN_WAIT_MINUTES,
    CONF_MONITORING_MODE,
    CONF_OUTDOOR_TEMP,
    CONF_PRICE_ENABLED,
    CONF_PRICE_HIGH,
    CONF_PRICE_LOOKAHEAD_HOURS,
    CONF_PRICE_LOW,
    CONF_PRICE_MODE,
    CONF_PRICE_NORMAL,
    CONF_PRICE_VERY_LOW,
    CONF_PRIORITY_COMFORT,
    CONF_PRIORITY_COST,
    CONF_PRIORITY_EFFICIENCY,
    CONF_PRIORITY_THERMAL,
    CONF_SETPOINT_ENTITY,
    CONF_SETPOINT_MAX,
    CONF_SETPOINT_MIN,
    CONF_STORAGE_FEE,
    CONF_SUPPLY_TEMP,
    CONF_TARGET_COP,
    CONF_TARGET_INDOOR_TEMP,
    CONF_VAT_PERCENTAGE,
    CONF_WIND_ENABLED,
    CONF_WIND_MANUAL_ALPHA,
    CONF_WIND_MAX_CORRECTION,
    CONF_WIND_SPEED,
    COP_STRATEGIES,
    DEFAULT_CONTROL_INTERVAL_SECONDS,
    DEFAULT_COP_STRATEGY,
    DEFAULT_DEADBAND,
    DEFAULT_EFFICIENCY_ENABLED,
    DEFAULT_EXECUTION_MODE,
    DEFAULT_KI,
    DEFAULT_KP,
    DEFAULT_MAX_PREHEAT_OFFSET,
    DEFAULT_MAX_REDUCE_OFFSET,
    DEFAULT_MIN_ACCEPTABLE_COP,
    DEFAULT_MIN_WAIT_MINUTES,
    DEFAULT_MONITORING_MODE,
    DEFAULT_PRICE_ENABLED,
    DEFAULT_PRICE_HIGH,
    DEFAULT_PRICE_LOOKAHEAD_HOURS,
    DEFAULT_PRICE_LOW,
    DEFAULT_PRICE_MODE,
    DEFAULT_PRICE_NORMAL,
    DEFAULT_PRICE_VERY_LOW,
    DEFAULT_PRIORITY_COMFORT,
    DEFAULT_PRIORITY_COST,
    DEFAULT_PRIORITY_EFFICIENCY,
    DEFAULT_PRIORITY_THERMAL,
    DEFAULT_SETPOINT_MAX,
    DEFAULT_SETPOINT_MIN,
    DEFAULT_TARGET_COP,
    DEFAULT_WIND_ENABLED,
    DEFAULT_WIND_MAX_CORRECTION,
    EXECUTION_MODES,
    PRICE_MODES,
)
from .errors import ParameterValidationError

KP_RANGE = (0.1, 10.0)
KI_RANGE = (0.1, 10.0)
DEADBAND_RANGE = (0.1, 2.0)


def _finite_float(value: Any) -> float:
    try:
        numeric = float(value)
    except (TypeError, ValueError) as err:
        raise vol.Invalid(f"expected a number, got {value!r}") from err
    if not math.isfinite(numeric):
        raise vol.Invalid(f"expected a finite number, got {value!r}")
    return numeric


def _bounded(minimum: float | None = None, maximum: float | None = None) -> vol.All:
    return vol.All(_finite_float, vol.Range(min=minimum, max=maximum))


def _require_positive_total(weights: dict[str, float]) -> dict[str, float]:
    if sum(weights.values()) <= 0:
        raise vol.Invalid("at least one priority weight must be positive")
    return weights


def _require_ascending_thresholds(thresholds: dict[str, float]) -> dict[str, float]:
    ordered = [thresholds["very_low"], thresholds["low"], thresholds["normal"], thresholds["high"]]
    if any(lower >= upper for lower, upper in zip(ordered, ordered[1:])):
        raise vol.Invalid("price thresholds must be strictly ascending")
    return thresholds


def _require_setpoint_range(options: dict[str, Any]) -> dict[str, Any]:
    if options[CONF_SETPOINT_MIN] >= options[CONF_SETPOINT_MAX]:
        raise vol.Invalid("setpoint_min must be below setpoint_max")
    return options


PI_PARAMETERS_SCHEMA = vol.Schema(
    {
        vol.Required("kp"): _bounded(*KP_RANGE),
        vol.Required("ki"): _bounded(*KI_RANGE),
        vol.Required("deadband"): _bounded(*DEADBAND_RANGE),
    }
)

PRIORITY_WEIGHTS_SCHEMA = vol.All(
    vol.Schema(
        {
            vol.Required("comfort"): _bounded(0.0),
            vol.Required("efficiency"): _bounded(0.0),
            vol.Required("cost"): _bounded(0.0),
            vol.Optional("thermal", default=0.0): _bounded(0.0),
        }
    ),
    _require_positive_total,
)

PRICE_THRESHOLDS_SCHEMA = vol.All(
    vol.Schema(
        {
            vol.Required("very_low"): _bounded(0.0),
            vol.Required("low"): _bounded(0.0),
            vol.Required("normal"): _bounded(0.0),
            vol.Required("high"): _bounded(0.0),
        }
    ),
    _require_ascending_thresholds,
)

OPTIONS_SCHEMA = vol.All(
    vol.Schema(
        {
            vol.Required(CONF_INDOOR_TEMP): str,
            vol.Required(CONF_SETPOINT_ENTITY): str,
            vol.Required(CONF_TARGET_INDOOR_TEMP): str,
            vol.Optional(CONF_OUTDOOR_TEMP): vol.Any(None, str),
            vol.Optional(CONF_SUPPLY_TEMP): vol.Any(None, str),
            vol.Optional(CONF_COMPRESSOR_FREQUENCY): vol.Any(None, str),
            vol.Optional(CONF_COP): vol.Any(None, str),
            vol.Optional(CONF_DAILY_COP): vol.Any(None, str),
            vol.Optional(CONF_HUMIDITY): vol.Any(None, str),
            vol.Optional(CONF_WIND_SPEED): vol.Any(None, str),
            vol.Optional(CONF_CONTROL_INTERVAL_SECONDS, default=DEFAULT_CONTROL_INTERVAL_SECONDS): vol.All(
                vol.Coerce(int), vol.Range(min=30, max=3600)
            ),
            vol.Optional(CONF_EXECUTION_MODE, default=DEFAULT_EXECUTION_MODE): vol.In(EXECUTION_MODES),
            vol.Optional(CONF_MONITORING_MODE, default=DEFAULT_MONITORING_MODE): bool,
            vol.Optional(CONF_EFFICIENCY_ENABLED, default=DEFAULT_EFFICIENCY_ENABLED): bool,
            vol.Optional(CONF_PRICE_ENABLED, default=DEFAULT_PRICE_ENABLED): bool,
            vol.Optional(CONF_WIND_ENABLED, default=DEFAULT_WIND_ENABLED): bool,
            vol.Optional(CONF_KP, default=DEFAULT_KP): _bounded(*KP_RANGE),
            vol.Optional(CONF_KI, default=DEFAULT_KI): _bounded(*KI_RANGE),
            vol.Optional(CONF_DEADBAND, default=DEFAULT_DEADBAND): _bounded(*DEADBAND_RANGE),
            vol.Optional(CONF_PRIORITY_COMFORT, default=DEFAULT_PRIORITY_COMFORT): _bounded(0.0),
            vol.Optional(CONF_PRIORITY_EFFICIENCY, default=DEFAULT_PRIORITY_EFFICIENCY): _bounded(0.0),
            vol.Optional(CONF_PRIORITY_COST, default=DEFAULT_PRIORITY_COST): _bounded(0.0),
            vol.Optional(CONF_PRIORITY_THERMAL, default=DEFAULT_PRIORITY_THERMAL): _bounded(0.0),
            vol.Optional(CONF_MIN_ACCEPTABLE_COP, default=DEFAULT_MIN_ACCEPTABLE_COP): _bounded(0.5, 10.0),
            vol.Optional(CONF_TARGET_COP, default=DEFAULT_TARGET_COP): _bounded(0.5, 10.0),
            vol.Optional(CONF_COP_STRATEGY, default=DEFAULT_COP_STRATEGY): vol.In(COP_STRATEGIES),
            vol.Optional(CONF_PRICE_VERY_LOW, default=DEFAULT_PRICE_VERY_LOW): _bounded(0.0),
            vol.Optional(CONF_PRICE_LOW, default=DEFAULT_PRICE_LOW): _bounded(0.0),
            vol.Optional(CONF_PRICE_NORMAL, default=DEFAULT_PRICE_NORMAL): _bounded(0.0),
            vol.Optional(CONF_PRICE_HIGH, default=DEFAULT_PRICE_HIGH): _bounded(0.0),
            vol.Optional(CONF_MAX_PREHEAT_OFFSET, default=DEFAULT_MAX_PREHEAT_OFFSET): _bounded(0.0, 5.0),
            vol.Optional(CONF_MAX_REDUCE_OFFSET, default=DEFAULT_MAX_REDUCE_OFFSET): _bounded(0.0, 5.0),
            vol.Optional(CONF_PRICE_LOOKAHEAD_HOURS, default=DEFAULT_PRICE_LOOKAHEAD_HOURS): vol.All(
                vol.Coerce(int), vol.Range(min=1, max=24)
            ),
            vol.Optional(CONF_PRICE_MODE, default=DEFAULT_PRICE_MODE): vol.In(PRICE_MODES),
            vol.Optional(CONF_VAT_PERCENTAGE, default=0.0): _bounded(0.0, 100.0),
            vol.Optional(CONF_STORAGE_FEE, default=0.0): _bounded(0.0),
            vol.Optional(CONF_ENERGY_TAX, default=0.0): _bounded(0.0),
            vol.Optional(CONF_MIN_WAIT_MINUTES, default=DEFAULT_MIN_WAIT_MINUTES): _bounded(0.0, 240.0),
            vol.Optional(CONF_SETPOINT_MIN, default=DEFAULT_SETPOINT_MIN): _bounded(),
            vol.Optional(CONF_SETPOINT_MAX, default=DEFAULT_SETPOINT_MAX): _bounded(),
            vol.Optional(CONF_WIND_MANUAL_ALPHA): vol.Any(None, _bounded(0.0, 1.0)),
            vol.Optional(CONF_WIND_MAX_CORRECTION, default=DEFAULT_WIND_MAX_CORRECTION): _bounded(0.0, 10.0),
        },
        extra=vol.ALLOW_EXTRA,
    ),
    _require_setpoint_range,
)


def validate(schema: vol.Schema | vol.All, data: Mapping[str, Any], what: str) -> dict[str, Any]:
    """Run a schema and translate voluptuous errors into ParameterValidationError."""
    try:
        return schema(dict(data))
    except vol.Invalid as err:
        raise ParameterValidationError(f"Invalid {what}: {err}") from err
