"""Tests for config entry setup, unload, option updates and services."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from homeassistant.exceptions import ConfigEntryError, HomeAssistantError

import custom_components.adaptive_heat_pump as integration
from custom_components.adaptive_heat_pump.const import (
    ATTR_ENTRY_ID,
    CONF_INDOOR_TEMP,
    CONF_KP,
    CONF_SETPOINT_ENTITY,
    CONF_TARGET_INDOOR_TEMP,
    DOMAIN,
    SERVICE_RECORD_ENERGY_CONSUMPTION,
    SERVICE_SET_EXTERNAL_PRICES,
    SERVICE_START,
    SERVICE_STOP,
)
from custom_components.adaptive_heat_pump.control_loop import ControlState

ENTRY_ID = "heat_pump_1"
BASE_OPTIONS = {
    CONF_INDOOR_TEMP: "sensor.living_room",
    CONF_TARGET_INDOOR_TEMP: "input_number.comfort_target",
    CONF_SETPOINT_ENTITY: "number.heat_pump_supply_setpoint",
}


@pytest.fixture
def timer(monkeypatch) -> MagicMock:
    tracker = MagicMock(return_value=MagicMock())
    monkeypatch.setattr(integration, "async_track_time_interval", tracker)
    return tracker


@pytest.fixture
def hass(tmp_path) -> MagicMock:
    hass = MagicMock()
    hass.data = {}
    hass.config.path.side_effect = lambda *parts: str(tmp_path.joinpath(*parts))
    hass.states.get.return_value = None
    hass.config_entries.async_reload = AsyncMock()

    async def _executor(func, *args):
        return func(*args)

    hass.async_add_executor_job = _executor

    registered: dict[str, Any] = {}
    hass.services.has_service.side_effect = lambda domain, service: service in registered
    hass.services.async_register.side_effect = lambda domain, service, handler, schema=None: registered.__setitem__(
        service, (handler, schema)
    )
    hass.services.async_remove.side_effect = lambda domain, service: registered.pop(service, None)
    hass.registered_services = registered
    return hass


def _entry(options: dict[str, Any] | None = None) -> MagicMock:
    entry = MagicMock()
    entry.entry_id = ENTRY_ID
    entry.data = dict(BASE_OPTIONS)
    entry.options = dict(options or {})
    entry.add_update_listener.return_value = MagicMock()
    return entry


def _loop(hass):
    return hass.data[DOMAIN][ENTRY_ID]["loop"]


async def _call(hass, service: str, **data: Any) -> None:
    handler, schema = hass.registered_services[service]
    await handler(SimpleNamespace(service=service, data=schema(data)))


@pytest.mark.asyncio
async def test_setup_starts_loop_and_registers_services(hass, timer) -> None:
    entry = _entry()

    assert await integration.async_setup_entry(hass, entry) is True

    assert _loop(hass).state is ControlState.ENABLED
    assert timer.call_count == 1
    assert set(hass.registered_services) == set(integration.SERVICE_SCHEMAS)
    entry.add_update_listener.assert_called_once_with(integration.async_update_listener)


@pytest.mark.asyncio
async def test_reload_keeps_control_enabled(hass, timer) -> None:
    entry = _entry()
    await integration.async_setup_entry(hass, entry)

    assert await integration.async_unload_entry(hass, entry) is True
    assert DOMAIN not in hass.data or ENTRY_ID not in hass.data[DOMAIN]
    assert hass.registered_services == {}

    await integration.async_setup_entry(hass, entry)

    assert _loop(hass).state is ControlState.ENABLED


@pytest.mark.asyncio
async def test_stop_service_survives_reload_until_started(hass, timer) -> None:
    entry = _entry()
    await integration.async_setup_entry(hass, entry)

    await _call(hass, SERVICE_STOP)
    assert _loop(hass).state is ControlState.DISABLED

    await integration.async_unload_entry(hass, entry)
    await integration.async_setup_entry(hass, entry)
    assert _loop(hass).state is ControlState.DISABLED

    await _call(hass, SERVICE_START, **{ATTR_ENTRY_ID: ENTRY_ID})
    assert _loop(hass).state is ControlState.ENABLED


@pytest.mark.asyncio
async def test_invalid_options_fail_setup(hass, timer) -> None:
    entry = _entry({CONF_KP: 50})

    with pytest.raises(ConfigEntryError):
        await integration.async_setup_entry(hass, entry)


@pytest.mark.asyncio
async def test_option_change_updates_running_loop(hass, timer) -> None:
    entry = _entry()
    await integration.async_setup_entry(hass, entry)
    loop = _loop(hass)

    entry.options = {CONF_KP: 1.5}
    await integration.async_update_listener(hass, entry)

    assert loop.comfort.kp == 1.5
    hass.config_entries.async_reload.assert_not_awaited()


@pytest.mark.asyncio
async def test_entity_change_reloads_entry(hass, timer) -> None:
    entry = _entry()
    await integration.async_setup_entry(hass, entry)

    entry.options = {CONF_INDOOR_TEMP: "sensor.hallway"}
    await integration.async_update_listener(hass, entry)

    hass.config_entries.async_reload.assert_awaited_once_with(ENTRY_ID)


@pytest.mark.asyncio
async def test_services_dispatch_to_loop(hass, timer) -> None:
    await integration.async_setup_entry(hass, _entry())

    await _call(hass, SERVICE_SET_EXTERNAL_PRICES, prices={0: 0.5, 1: 0.5})
    await _call(hass, SERVICE_RECORD_ENERGY_CONSUMPTION, energy_kwh=2.0)

    assert _loop(hass).status()["price"]["daily_cost"] == pytest.approx(1.0)

    with pytest.raises(HomeAssistantError):
        await _call(hass, SERVICE_STOP, **{ATTR_ENTRY_ID: "unknown"})
