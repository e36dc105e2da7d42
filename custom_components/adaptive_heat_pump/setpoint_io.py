"""Home Assistant backed Setpoint I/O: logical channels mapped onto entities."""

from __future__ import annotations

from datetime import datetime
import logging
from typing import Any, Mapping

from homeassistant.const import ATTR_TEMPERATURE, STATE_UNAVAILABLE, STATE_UNKNOWN
from homeassistant.core import HomeAssistant
from homeassistant.helpers.typing import StateType

_LOGGER = logging.getLogger(__name__)


class HassSetpointIO:
    """Reads channels from entity states and writes them through entity services.

    Channels without a mapped entity (such as the simulated mirror setpoint)
    are kept in memory so the recommend-only mode still has somewhere to write.
    """

    def __init__(self, hass: HomeAssistant, entities: Mapping[str, str | None]) -> None:
        self._hass = hass
        self._entities = {channel: entity for channel, entity in entities.items() if entity}
        self._local_values: dict[str, float] = {}

    async def async_get_value(self, channel: str) -> float | None:
        entity_id = self._entities.get(channel)
        if entity_id is None:
            return self._local_values.get(channel)
        state_obj = self._hass.states.get(entity_id)
        if state_obj is None:
            return None
        if entity_id.split(".")[0] == "climate":
            return self._state_to_float(state_obj.attributes.get(ATTR_TEMPERATURE))
        return self._state_to_float(state_obj.state)

    def last_updated(self, channel: str) -> datetime | None:
        entity_id = self._entities.get(channel)
        if entity_id is None:
            return None
        state_obj = self._hass.states.get(entity_id)
        if state_obj is None:
            return None
        return getattr(state_obj, "last_reported", None) or state_obj.last_updated

    async def async_set_value(self, channel: str, value: float) -> None:
        entity_id = self._entities.get(channel)
        if entity_id is None:
            self._local_values[channel] = value
            return

        domain = entity_id.split(".")[0]
        if domain in ("number", "input_number"):
            await self._hass.services.async_call(
                domain, "set_value", {"entity_id": entity_id, "value": value}, blocking=True
            )
            return
        if domain in ("climate", "water_heater"):
            await self._hass.services.async_call(
                domain,
                "set_temperature",
                {"entity_id": entity_id, ATTR_TEMPERATURE: value},
                blocking=True,
            )
            return
        _LOGGER.warning("Entity %s cannot receive a setpoint (unsupported domain %s)", entity_id, domain)

    @staticmethod
    def _state_to_float(value: StateType | Any) -> float | None:
        """Convert a state to float if possible."""
        if value is None or value in (STATE_UNAVAILABLE, STATE_UNKNOWN):
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            return None
