"""Tests for the Home Assistant backed Setpoint I/O."""

from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from custom_components.adaptive_heat_pump.const import (
    CHANNEL_INDOOR_TEMP,
    CHANNEL_SETPOINT,
    CHANNEL_SIMULATED_SETPOINT,
    CHANNEL_TARGET_INDOOR_TEMP,
)
from custom_components.adaptive_heat_pump.setpoint_io import HassSetpointIO

UPDATED = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


def _hass(states: dict[str, SimpleNamespace]) -> MagicMock:
    hass = MagicMock()
    hass.states.get.side_effect = states.get
    hass.services.async_call = AsyncMock()
    return hass


def _state(state: str, **attributes) -> SimpleNamespace:
    return SimpleNamespace(state=state, attributes=attributes, last_updated=UPDATED, last_reported=None)


@pytest.mark.asyncio
async def test_reads_sensor_and_climate_values() -> None:
    hass = _hass(
        {
            "sensor.indoor": _state("20.4"),
            "climate.living_room": _state("heat", temperature=21.5),
        }
    )
    io = HassSetpointIO(
        hass, {CHANNEL_INDOOR_TEMP: "sensor.indoor", CHANNEL_TARGET_INDOOR_TEMP: "climate.living_room"}
    )

    assert await io.async_get_value(CHANNEL_INDOOR_TEMP) == pytest.approx(20.4)
    assert await io.async_get_value(CHANNEL_TARGET_INDOOR_TEMP) == pytest.approx(21.5)
    assert io.last_updated(CHANNEL_INDOOR_TEMP) == UPDATED


@pytest.mark.asyncio
async def test_unavailable_states_read_as_none() -> None:
    hass = _hass({"sensor.indoor": _state("unavailable")})
    io = HassSetpointIO(hass, {CHANNEL_INDOOR_TEMP: "sensor.indoor", CHANNEL_SETPOINT: "number.missing"})

    assert await io.async_get_value(CHANNEL_INDOOR_TEMP) is None
    assert await io.async_get_value(CHANNEL_SETPOINT) is None


@pytest.mark.asyncio
async def test_writes_number_and_climate_entities() -> None:
    hass = _hass({})
    io = HassSetpointIO(hass, {CHANNEL_SETPOINT: "number.supply_setpoint"})

    await io.async_set_value(CHANNEL_SETPOINT, 43.0)

    hass.services.async_call.assert_awaited_once_with(
        "number", "set_value", {"entity_id": "number.supply_setpoint", "value": 43.0}, blocking=True
    )

    hass.services.async_call.reset_mock()
    climate_io = HassSetpointIO(hass, {CHANNEL_SETPOINT: "climate.heat_pump"})
    await climate_io.async_set_value(CHANNEL_SETPOINT, 44.0)

    hass.services.async_call.assert_awaited_once_with(
        "climate", "set_temperature", {"entity_id": "climate.heat_pump", "temperature": 44.0}, blocking=True
    )


@pytest.mark.asyncio
async def test_unmapped_channel_is_kept_in_memory() -> None:
    hass = _hass({})
    io = HassSetpointIO(hass, {CHANNEL_SIMULATED_SETPOINT: None})

    await io.async_set_value(CHANNEL_SIMULATED_SETPOINT, 42.0)

    assert await io.async_get_value(CHANNEL_SIMULATED_SETPOINT) == 42.0
    hass.services.async_call.assert_not_awaited()
