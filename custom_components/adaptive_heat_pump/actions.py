"""Value types exchanged between the advisors and the decision fuser."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Union

from .const import PRIORITY_ORDER

ACTION_INCREASE = "increase"
ACTION_DECREASE = "decrease"
ACTION_PREHEAT = "preheat"
ACTION_REDUCE = "reduce"
ACTION_MAINTAIN = "maintain"


def priority_rank(priority: str) -> int:
    """Return the sort rank of a priority label (unknown labels rank lowest)."""
    try:
        return PRIORITY_ORDER.index(priority)
    except ValueError:
        return 0


@dataclass(frozen=True)
class SensorSnapshot:
    """Inputs gathered at the top of one control cycle."""

    indoor_temp: float | None
    target_indoor_temp: float | None
    setpoint: float | None
    outdoor_temp: float | None = None
    compressor_frequency: float | None = None
    cop: float | None = None
    daily_cop: float | None = None
    humidity: float | None = None
    supply_temp: float | None = None
    wind_speed: float | None = None
    indoor_updated: datetime | None = None


@dataclass(frozen=True)
class ComfortAction:
    """PI loop output in degrees of setpoint change."""

    adjustment: float
    reason: str
    priority: str
    kind: str = field(default="comfort", init=False)


@dataclass(frozen=True)
class EfficiencyAction:
    """Supply-temperature recommendation from the COP advisor."""

    action: str  # "increase" | "decrease" | "maintain"
    magnitude: float
    priority: str
    reason: str
    current_cop: float | None = None
    target_cop: float | None = None
    kind: str = field(default="efficiency", init=False)


@dataclass(frozen=True)
class CostAction:
    """Preheat or reduce recommendation from the price advisor."""

    action: str  # "preheat" | "reduce" | "maintain"
    magnitude: float
    priority: str
    reason: str
    current_price: float | None = None
    future_price: float | None = None
    kind: str = field(default="cost", init=False)


@dataclass(frozen=True)
class ThermalAction:
    """Externally supplied adjustment from the building model or wind correction."""

    adjustment: float
    reason: str
    kind: str = field(default="thermal", init=False)


ControllerAction = Union[ComfortAction, EfficiencyAction, CostAction, ThermalAction]
