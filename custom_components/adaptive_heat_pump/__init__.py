"""Setup for the Adaptive Heat Pump integration."""

from __future__ import annotations

from functools import partial
import logging
from typing import Any

import voluptuous as vol

from homeassistant.config_entries import ConfigEntry
from homeassistant.core import HomeAssistant, ServiceCall
from homeassistant.exceptions import ConfigEntryError, HomeAssistantError
from homeassistant.helpers.event import async_track_time_interval

from .const import (
    ATTR_ENTRY_ID,
    CHANNEL_COMPRESSOR_FREQUENCY,
    CHANNEL_COP,
    CHANNEL_DAILY_COP,
    CHANNEL_HUMIDITY,
    CHANNEL_INDOOR_TEMP,
    CHANNEL_OUTDOOR_TEMP,
    CHANNEL_SETPOINT,
    CHANNEL_SUPPLY_TEMP,
    CHANNEL_TARGET_INDOOR_TEMP,
    CHANNEL_WIND_SPEED,
    CONF_COMPRESSOR_FREQUENCY,
    CONF_COP,
    CONF_DAILY_COP,
    CONF_HUMIDITY,
    CONF_INDOOR_TEMP,
    CONF_OUTDOOR_TEMP,
    CONF_SETPOINT_ENTITY,
    CONF_SUPPLY_TEMP,
    CONF_TARGET_INDOOR_TEMP,
    CONF_WIND_SPEED,
    DOMAIN,
    SERVICE_RECORD_DEFROST_EVENT,
    SERVICE_RECORD_ENERGY_CONSUMPTION,
    SERVICE_RESET_DAILY_COST,
    SERVICE_RESET_PI_HISTORY,
    SERVICE_SET_BUILDING_MODEL,
    SERVICE_SET_EXTERNAL_PRICES,
    SERVICE_SET_PI_PARAMETERS,
    SERVICE_SET_PRIORITIES,
    SERVICE_SET_WIND_SPEED,
    SERVICE_START,
    SERVICE_STOP,
)
from .control_loop import ControlLoop, ControlLoopConfig
from .errors import AdaptiveHeatPumpError
from .schemas import OPTIONS_SCHEMA, validate
from .setpoint_io import HassSetpointIO
from .storage import ExecutorKeyValueStore, JsonKeyValueStorage

_LOGGER = logging.getLogger(__name__)

ENTITY_CHANNELS = {
    CONF_INDOOR_TEMP: CHANNEL_INDOOR_TEMP,
    CONF_TARGET_INDOOR_TEMP: CHANNEL_TARGET_INDOOR_TEMP,
    CONF_SETPOINT_ENTITY: CHANNEL_SETPOINT,
    CONF_OUTDOOR_TEMP: CHANNEL_OUTDOOR_TEMP,
    CONF_SUPPLY_TEMP: CHANNEL_SUPPLY_TEMP,
    CONF_COMPRESSOR_FREQUENCY: CHANNEL_COMPRESSOR_FREQUENCY,
    CONF_COP: CHANNEL_COP,
    CONF_DAILY_COP: CHANNEL_DAILY_COP,
    CONF_HUMIDITY: CHANNEL_HUMIDITY,
    CONF_WIND_SPEED: CHANNEL_WIND_SPEED,
}

_ENTRY_SCHEMA = {vol.Optional(ATTR_ENTRY_ID): str}

SERVICE_SCHEMAS: dict[str, vol.Schema] = {
    SERVICE_SET_PRIORITIES: vol.Schema(
        {
            **_ENTRY_SCHEMA,
            vol.Required("comfort"): vol.Coerce(float),
            vol.Required("efficiency"): vol.Coerce(float),
            vol.Required("cost"): vol.Coerce(float),
            vol.Optional("thermal", default=0.0): vol.Coerce(float),
        }
    ),
    SERVICE_SET_PI_PARAMETERS: vol.Schema(
        {
            **_ENTRY_SCHEMA,
            vol.Required("kp"): vol.Coerce(float),
            vol.Required("ki"): vol.Coerce(float),
            vol.Required("deadband"): vol.Coerce(float),
        }
    ),
    SERVICE_RESET_PI_HISTORY: vol.Schema(_ENTRY_SCHEMA),
    SERVICE_SET_EXTERNAL_PRICES: vol.Schema({**_ENTRY_SCHEMA, vol.Required("prices"): dict}),
    SERVICE_SET_WIND_SPEED: vol.Schema({**_ENTRY_SCHEMA, vol.Required("wind_speed"): vol.Coerce(float)}),
    SERVICE_RECORD_DEFROST_EVENT: vol.Schema(
        {
            **_ENTRY_SCHEMA,
            vol.Required("outdoor_temp"): vol.Coerce(float),
            vol.Required("duration_sec"): vol.Coerce(float),
            vol.Optional("humidity"): vol.Coerce(float),
        }
    ),
    SERVICE_SET_BUILDING_MODEL: vol.Schema(
        {
            **_ENTRY_SCHEMA,
            vol.Optional("tau_hours"): vol.Coerce(float),
            vol.Optional("heat_loss_coefficient"): vol.Coerce(float),
            vol.Optional("confidence", default=1.0): vol.All(vol.Coerce(float), vol.Range(min=0, max=1)),
        }
    ),
    SERVICE_RECORD_ENERGY_CONSUMPTION: vol.Schema(
        {**_ENTRY_SCHEMA, vol.Required("energy_kwh"): vol.All(vol.Coerce(float), vol.Range(min=0))}
    ),
    SERVICE_RESET_DAILY_COST: vol.Schema(_ENTRY_SCHEMA),
    SERVICE_START: vol.Schema(_ENTRY_SCHEMA),
    SERVICE_STOP: vol.Schema(_ENTRY_SCHEMA),
}


def _build_loop(hass: HomeAssistant, entry: ConfigEntry, options: dict[str, Any]) -> ControlLoop:
    entities = {channel: options.get(key) for key, channel in ENTITY_CHANNELS.items()}
    storage = JsonKeyValueStorage(hass.config.path(".storage", f"{DOMAIN}_{entry.entry_id}.json"))
    return ControlLoop(
        setpoint_io=HassSetpointIO(hass, entities),
        store=ExecutorKeyValueStore(storage, hass.async_add_executor_job),
        schedule_interval=partial(async_track_time_interval, hass),
        config=ControlLoopConfig.from_options(options),
    )


async def async_setup_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    """Set up Adaptive Heat Pump from a config entry."""
    try:
        options = validate(OPTIONS_SCHEMA, {**entry.data, **entry.options}, "options")
        loop = _build_loop(hass, entry, options)
    except AdaptiveHeatPumpError as err:
        raise ConfigEntryError(str(err)) from err

    enabled = await loop.async_restore()

    hass.data.setdefault(DOMAIN, {})
    hass.data[DOMAIN][entry.entry_id] = {"loop": loop, "options": options}
    _async_register_services(hass)

    if enabled is not False:
        await loop.async_start()
    else:
        _LOGGER.info("Adaptive control was disabled before restart; not starting")

    update_unsub = entry.add_update_listener(async_update_listener)
    hass.data[DOMAIN][entry.entry_id]["update_unsub"] = update_unsub
    return True


async def async_unload_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    """Unload a config entry."""
    entry_data = hass.data.get(DOMAIN, {}).pop(entry.entry_id, None)
    if entry_data:
        update_unsub = entry_data.get("update_unsub")
        if update_unsub:
            update_unsub()
        await entry_data["loop"].async_shutdown()
    if not hass.data.get(DOMAIN):
        for service in SERVICE_SCHEMAS:
            hass.services.async_remove(DOMAIN, service)
    return True


async def async_update_listener(hass: HomeAssistant, entry: ConfigEntry) -> None:
    """Apply changed options to the running control loop."""
    entry_data = hass.data.setdefault(DOMAIN, {}).get(entry.entry_id)
    if entry_data is None:
        return
    try:
        options = validate(OPTIONS_SCHEMA, {**entry.data, **entry.options}, "options")
        config = ControlLoopConfig.from_options(options)
    except AdaptiveHeatPumpError as err:
        _LOGGER.warning("Ignoring invalid options update: %s", err)
        return
    previous = entry_data["options"]
    entry_data["options"] = options
    if any(previous.get(key) != options.get(key) for key in ENTITY_CHANNELS):
        await hass.config_entries.async_reload(entry.entry_id)
        return
    entry_data["loop"].update_config(config)


def _loops_for_call(hass: HomeAssistant, call: ServiceCall) -> list[ControlLoop]:
    entries = hass.data.get(DOMAIN, {})
    entry_id = call.data.get(ATTR_ENTRY_ID)
    if entry_id is None:
        return [data["loop"] for data in entries.values()]
    if entry_id not in entries:
        raise HomeAssistantError(f"Unknown {DOMAIN} entry: {entry_id}")
    return [entries[entry_id]["loop"]]


def _async_register_services(hass: HomeAssistant) -> None:
    if hass.services.has_service(DOMAIN, SERVICE_SET_PRIORITIES):
        return

    async def _handle(call: ServiceCall) -> None:
        data = {key: value for key, value in call.data.items() if key != ATTR_ENTRY_ID}
        try:
            for loop in _loops_for_call(hass, call):
                await _dispatch(loop, call.service, data)
        except AdaptiveHeatPumpError as err:
            raise HomeAssistantError(str(err)) from err

    for service, schema in SERVICE_SCHEMAS.items():
        hass.services.async_register(DOMAIN, service, _handle, schema=schema)


async def _dispatch(loop: ControlLoop, service: str, data: dict[str, Any]) -> None:
    if service == SERVICE_SET_PRIORITIES:
        loop.update_priorities(**data)
    elif service == SERVICE_SET_PI_PARAMETERS:
        loop.update_pi_parameters(data["kp"], data["ki"], data["deadband"])
    elif service == SERVICE_RESET_PI_HISTORY:
        await loop.async_reset_pi_history()
    elif service == SERVICE_SET_EXTERNAL_PRICES:
        await loop.async_receive_external_price(data["prices"])
    elif service == SERVICE_SET_WIND_SPEED:
        loop.receive_external_wind_speed(data["wind_speed"])
    elif service == SERVICE_RECORD_DEFROST_EVENT:
        await loop.async_record_defrost_event(data["outdoor_temp"], data["duration_sec"], data.get("humidity"))
    elif service == SERVICE_SET_BUILDING_MODEL:
        loop.receive_building_model(
            tau_hours=data.get("tau_hours"),
            heat_loss_coefficient=data.get("heat_loss_coefficient"),
            confidence=data["confidence"],
        )
    elif service == SERVICE_RECORD_ENERGY_CONSUMPTION:
        await loop.async_record_energy_consumption(data["energy_kwh"])
    elif service == SERVICE_RESET_DAILY_COST:
        await loop.async_reset_daily_cost()
    elif service == SERVICE_START:
        await loop.async_start()
    elif service == SERVICE_STOP:
        await loop.async_stop()
