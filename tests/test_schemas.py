"""Tests for option validation and loop configuration."""

from __future__ import annotations

from datetime import timedelta

import pytest

from custom_components.adaptive_heat_pump.const import (
    CONF_INDOOR_TEMP,
    CONF_KP,
    CONF_PRIORITY_COMFORT,
    CONF_PRIORITY_COST,
    CONF_PRIORITY_EFFICIENCY,
    CONF_SETPOINT_ENTITY,
    CONF_SETPOINT_MAX,
    CONF_SETPOINT_MIN,
    CONF_TARGET_INDOOR_TEMP,
)
from custom_components.adaptive_heat_pump.control_loop import ControlLoopConfig
from custom_components.adaptive_heat_pump.errors import ParameterValidationError
from custom_components.adaptive_heat_pump.schemas import OPTIONS_SCHEMA, PI_PARAMETERS_SCHEMA, validate

BASE_OPTIONS = {
    CONF_INDOOR_TEMP: "sensor.living_room",
    CONF_TARGET_INDOOR_TEMP: "input_number.comfort_target",
    CONF_SETPOINT_ENTITY: "number.heat_pump_supply_setpoint",
}


def test_options_fill_defaults() -> None:
    options = validate(OPTIONS_SCHEMA, BASE_OPTIONS, "options")

    config = ControlLoopConfig.from_options(options)

    assert config == ControlLoopConfig()
    assert config.min_wait == timedelta(minutes=20)
    assert config.weights.comfort == pytest.approx(0.6)


def test_priorities_from_options_are_normalised() -> None:
    options = validate(
        OPTIONS_SCHEMA,
        {**BASE_OPTIONS, CONF_PRIORITY_COMFORT: 3, CONF_PRIORITY_EFFICIENCY: 1, CONF_PRIORITY_COST: 0},
        "options",
    )

    config = ControlLoopConfig.from_options(options)

    assert config.weights.comfort == pytest.approx(0.75)
    assert config.weights.efficiency == pytest.approx(0.25)


def test_missing_required_entity_is_rejected() -> None:
    with pytest.raises(ParameterValidationError):
        validate(OPTIONS_SCHEMA, {CONF_INDOOR_TEMP: "sensor.living_room"}, "options")


def test_setpoint_range_must_be_ordered() -> None:
    with pytest.raises(ParameterValidationError):
        validate(OPTIONS_SCHEMA, {**BASE_OPTIONS, CONF_SETPOINT_MIN: 50, CONF_SETPOINT_MAX: 40}, "options")


def test_out_of_range_gain_is_rejected() -> None:
    with pytest.raises(ParameterValidationError):
        validate(OPTIONS_SCHEMA, {**BASE_OPTIONS, CONF_KP: 20}, "options")


def test_pi_schema_rejects_non_finite_values() -> None:
    with pytest.raises(ParameterValidationError):
        validate(PI_PARAMETERS_SCHEMA, {"kp": float("nan"), "ki": 1.0, "deadband": 0.3}, "PI parameters")
