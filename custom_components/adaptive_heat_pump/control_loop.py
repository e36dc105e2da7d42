"""Timer-driven orchestrator for the adaptive heat pump controller.

Each cycle pulls a sensor snapshot, asks every advisor for a recommendation,
fuses them, and turns the fused value into integer setpoint steps through a
persisted accumulator with a minimum-wait throttle.

This module is intentionally free of Home Assistant imports so it can be unit-tested;
the timer, Setpoint I/O and persistence collaborators are injected.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
import logging
import math
from typing import Any, Awaitable, Callable, Mapping, Protocol

from .actions import ComfortAction, CostAction, EfficiencyAction, SensorSnapshot, ThermalAction
from .comfort_controller import ComfortController
from .const import (
    CHANNEL_COMPRESSOR_FREQUENCY,
    CHANNEL_COP,
    CHANNEL_DAILY_COP,
    CHANNEL_HUMIDITY,
    CHANNEL_INDOOR_TEMP,
    CHANNEL_OUTDOOR_TEMP,
    CHANNEL_SETPOINT,
    CHANNEL_SIMULATED_SETPOINT,
    CHANNEL_SUPPLY_TEMP,
    CHANNEL_TARGET_INDOOR_TEMP,
    CHANNEL_WIND_SPEED,
    CONF_CONTROL_INTERVAL_SECONDS,
    CONF_COP_STRATEGY,
    CONF_DEADBAND,
    CONF_EFFICIENCY_ENABLED,
    CONF_ENERGY_TAX,
    CONF_EXECUTION_MODE,
    CONF_KI,
    CONF_KP,
    CONF_MAX_PREHEAT_OFFSET,
    CONF_MAX_REDUCE_OFFSET,
    CONF_MIN_ACCEPTABLE_COP,
    CONF_MIN_WAIT_MINUTES,
    CONF_MONITORING_MODE,
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
    CONF_SETPOINT_MAX,
    CONF_SETPOINT_MIN,
    CONF_STORAGE_FEE,
    CONF_TARGET_COP,
    CONF_VAT_PERCENTAGE,
    CONF_WIND_ENABLED,
    CONF_WIND_MANUAL_ALPHA,
    CONF_WIND_MAX_CORRECTION,
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
    EXECUTION_MODE_RECOMMEND,
    INDOOR_READING_MAX_AGE_MINUTES,
    STORE_KEY_ACCUMULATED_ADJUSTMENT,
    STORE_KEY_DEFROST_STATE,
    STORE_KEY_EFFICIENCY_STATE,
    STORE_KEY_ENABLED,
    STORE_KEY_LAST_ADJUSTMENT,
    STORE_KEY_PI_HISTORY,
    STORE_KEY_PRICE_STATE,
    STORE_KEY_WIND_ALPHA,
    STORE_KEY_WIND_COUNT,
)
from .decision_fuser import CombinedAction, ConfidenceMetrics, DecisionFuser, PriorityWeights
from .defrost_learner import DefrostPenaltyLearner
from .efficiency_advisor import EfficiencyAdvisor
from .efficiency_learner import EfficiencyLearner
from .price_advisor import PriceAdvisor
from .price_utils import PriceBlock, PriceClassifier, PriceThresholds
from .storage import KeyValueStore
from .wind_loss import WindLossEstimator

_LOGGER = logging.getLogger(__name__)

MIN_FUSED_ADJUSTMENT = 0.1
ANALYTICS_BLOCK_HOURS = 3

OUTCOME_DISABLED = "disabled"
OUTCOME_BUSY = "busy"
OUTCOME_SKIPPED = "skipped"
OUTCOME_MONITORING = "monitoring"
OUTCOME_IDLE = "idle"
OUTCOME_ACCUMULATING = "accumulating"
OUTCOME_THROTTLED = "throttled"
OUTCOME_AT_LIMIT = "at_limit"
OUTCOME_APPLIED = "applied"
OUTCOME_RECOMMENDED = "recommended"
OUTCOME_FAILED = "failed"


class ControlState(str, Enum):
    DISABLED = "disabled"
    ENABLED = "enabled"


class SetpointIO(Protocol):
    """Narrow device boundary: read and write numeric values by logical channel."""

    async def async_get_value(self, channel: str) -> float | None:
        ...

    async def async_set_value(self, channel: str, value: float) -> None:
        ...


IntervalCallback = Callable[[datetime], Awaitable[None]]
ScheduleInterval = Callable[[IntervalCallback, timedelta], Callable[[], None]]
ThermalAdvisor = Callable[[SensorSnapshot], "ThermalAction | None"]


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _block_status(block: PriceBlock | None) -> dict[str, Any] | None:
    if block is None:
        return None
    return {
        "start": block.start.isoformat(),
        "end": block.end.isoformat(),
        "average_price": block.average_price,
        "hours": block.hours,
    }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


@dataclass(frozen=True)
class BuildingParameters:
    """Outputs of the external building thermal model."""

    tau_hours: float | None = None
    heat_loss_coefficient: float | None = None
    confidence: float = 1.0


@dataclass(frozen=True)
class ControlLoopConfig:
    control_interval_seconds: int = DEFAULT_CONTROL_INTERVAL_SECONDS
    execution_mode: str = DEFAULT_EXECUTION_MODE
    monitoring_mode: bool = DEFAULT_MONITORING_MODE
    efficiency_enabled: bool = DEFAULT_EFFICIENCY_ENABLED
    price_enabled: bool = DEFAULT_PRICE_ENABLED
    wind_enabled: bool = DEFAULT_WIND_ENABLED
    kp: float = DEFAULT_KP
    ki: float = DEFAULT_KI
    deadband: float = DEFAULT_DEADBAND
    weights: PriorityWeights = field(default_factory=PriorityWeights)
    min_acceptable_cop: float = DEFAULT_MIN_ACCEPTABLE_COP
    target_cop: float = DEFAULT_TARGET_COP
    cop_strategy: str = DEFAULT_COP_STRATEGY
    price_thresholds: PriceThresholds = field(default_factory=PriceThresholds)
    max_preheat_offset: float = DEFAULT_MAX_PREHEAT_OFFSET
    max_reduce_offset: float = DEFAULT_MAX_REDUCE_OFFSET
    price_lookahead_hours: int = DEFAULT_PRICE_LOOKAHEAD_HOURS
    price_mode: str = DEFAULT_PRICE_MODE
    vat_percentage: float = 0.0
    storage_fee: float = 0.0
    energy_tax: float = 0.0
    min_wait: timedelta = timedelta(minutes=DEFAULT_MIN_WAIT_MINUTES)
    setpoint_min: float = DEFAULT_SETPOINT_MIN
    setpoint_max: float = DEFAULT_SETPOINT_MAX
    wind_manual_alpha: float | None = None
    wind_max_correction: float = DEFAULT_WIND_MAX_CORRECTION

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> ControlLoopConfig:
        """Build from options already validated by OPTIONS_SCHEMA."""
        return cls(
            control_interval_seconds=int(options.get(CONF_CONTROL_INTERVAL_SECONDS, DEFAULT_CONTROL_INTERVAL_SECONDS)),
            execution_mode=options.get(CONF_EXECUTION_MODE, DEFAULT_EXECUTION_MODE),
            monitoring_mode=bool(options.get(CONF_MONITORING_MODE, DEFAULT_MONITORING_MODE)),
            efficiency_enabled=bool(options.get(CONF_EFFICIENCY_ENABLED, DEFAULT_EFFICIENCY_ENABLED)),
            price_enabled=bool(options.get(CONF_PRICE_ENABLED, DEFAULT_PRICE_ENABLED)),
            wind_enabled=bool(options.get(CONF_WIND_ENABLED, DEFAULT_WIND_ENABLED)),
            kp=options.get(CONF_KP, DEFAULT_KP),
            ki=options.get(CONF_KI, DEFAULT_KI),
            deadband=options.get(CONF_DEADBAND, DEFAULT_DEADBAND),
            weights=PriorityWeights.normalized(
                comfort=options.get(CONF_PRIORITY_COMFORT, DEFAULT_PRIORITY_COMFORT),
                efficiency=options.get(CONF_PRIORITY_EFFICIENCY, DEFAULT_PRIORITY_EFFICIENCY),
                cost=options.get(CONF_PRIORITY_COST, DEFAULT_PRIORITY_COST),
                thermal=options.get(CONF_PRIORITY_THERMAL, DEFAULT_PRIORITY_THERMAL),
            ),
            min_acceptable_cop=options.get(CONF_MIN_ACCEPTABLE_COP, DEFAULT_MIN_ACCEPTABLE_COP),
            target_cop=options.get(CONF_TARGET_COP, DEFAULT_TARGET_COP),
            cop_strategy=options.get(CONF_COP_STRATEGY, DEFAULT_COP_STRATEGY),
            price_thresholds=PriceThresholds.from_mapping(
                {
                    "very_low": options.get(CONF_PRICE_VERY_LOW, DEFAULT_PRICE_VERY_LOW),
                    "low": options.get(CONF_PRICE_LOW, DEFAULT_PRICE_LOW),
                    "normal": options.get(CONF_PRICE_NORMAL, DEFAULT_PRICE_NORMAL),
                    "high": options.get(CONF_PRICE_HIGH, DEFAULT_PRICE_HIGH),
                }
            ),
            max_preheat_offset=options.get(CONF_MAX_PREHEAT_OFFSET, DEFAULT_MAX_PREHEAT_OFFSET),
            max_reduce_offset=options.get(CONF_MAX_REDUCE_OFFSET, DEFAULT_MAX_REDUCE_OFFSET),
            price_lookahead_hours=int(options.get(CONF_PRICE_LOOKAHEAD_HOURS, DEFAULT_PRICE_LOOKAHEAD_HOURS)),
            price_mode=options.get(CONF_PRICE_MODE, DEFAULT_PRICE_MODE),
            vat_percentage=options.get(CONF_VAT_PERCENTAGE, 0.0),
            storage_fee=options.get(CONF_STORAGE_FEE, 0.0),
            energy_tax=options.get(CONF_ENERGY_TAX, 0.0),
            min_wait=timedelta(minutes=options.get(CONF_MIN_WAIT_MINUTES, DEFAULT_MIN_WAIT_MINUTES)),
            setpoint_min=options.get(CONF_SETPOINT_MIN, DEFAULT_SETPOINT_MIN),
            setpoint_max=options.get(CONF_SETPOINT_MAX, DEFAULT_SETPOINT_MAX),
            wind_manual_alpha=options.get(CONF_WIND_MANUAL_ALPHA),
            wind_max_correction=options.get(CONF_WIND_MAX_CORRECTION, DEFAULT_WIND_MAX_CORRECTION),
        )


@dataclass(frozen=True)
class CycleResult:
    """What one control cycle decided."""

    outcome: str
    combined: CombinedAction | None = None
    requested_delta: int = 0
    applied_delta: float = 0.0
    new_setpoint: float | None = None


class ControlLoop:
    """Owns every sub-controller and learned state for one heat pump."""

    def __init__(
        self,
        *,
        setpoint_io: SetpointIO,
        store: KeyValueStore,
        schedule_interval: ScheduleInterval,
        config: ControlLoopConfig | None = None,
        thermal_advisor: ThermalAdvisor | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._io = setpoint_io
        self._store = store
        self._schedule_interval = schedule_interval
        self._thermal_advisor = thermal_advisor
        self._clock = clock
        self._config = config or ControlLoopConfig()

        cfg = self._config
        self.comfort = ComfortController(kp=cfg.kp, ki=cfg.ki, deadband=cfg.deadband)
        self.efficiency_learner = EfficiencyLearner()
        self.efficiency_advisor = EfficiencyAdvisor(
            self.efficiency_learner,
            min_acceptable_cop=cfg.min_acceptable_cop,
            target_cop=cfg.target_cop,
            strategy=cfg.cop_strategy,
        )
        self.defrost_learner = DefrostPenaltyLearner()
        self.price_classifier = PriceClassifier(
            thresholds=cfg.price_thresholds,
            price_mode=cfg.price_mode,
            vat_percentage=cfg.vat_percentage,
            storage_fee=cfg.storage_fee,
            energy_tax=cfg.energy_tax,
        )
        self.price_advisor = PriceAdvisor(
            self.price_classifier,
            max_preheat_offset=cfg.max_preheat_offset,
            max_reduce_offset=cfg.max_reduce_offset,
            lookahead_hours=cfg.price_lookahead_hours,
        )
        self.wind = WindLossEstimator(manual_alpha=cfg.wind_manual_alpha, max_correction=cfg.wind_max_correction)
        self.fuser = DecisionFuser(cfg.weights)

        self._state = ControlState.DISABLED
        self._timer_unsub: Callable[[], None] | None = None
        self._lock = asyncio.Lock()
        self._accumulated = 0.0
        self._last_adjustment_time: datetime | None = None
        self._recommended_setpoint: float | None = None
        self._building = BuildingParameters()
        self._last_snapshot: SensorSnapshot | None = None
        self._last_result: CycleResult | None = None
        self._last_cycle_time: datetime | None = None
        self._price_band: str | None = None
        self._price_band_changed_at: datetime | None = None
        self._efficiency_learned = False

    # -- properties ----------------------------------------------------------

    @property
    def state(self) -> ControlState:
        return self._state

    @property
    def config(self) -> ControlLoopConfig:
        return self._config

    @property
    def accumulated_adjustment(self) -> float:
        return self._accumulated

    @property
    def last_adjustment_time(self) -> datetime | None:
        return self._last_adjustment_time

    @property
    def recommended_setpoint(self) -> float | None:
        return self._recommended_setpoint

    @property
    def last_result(self) -> CycleResult | None:
        return self._last_result

    # -- lifecycle -----------------------------------------------------------

    async def async_restore(self) -> bool | None:
        """Load persisted state; returns the persisted enabled flag (None if unknown)."""
        self.comfort.restore_history(await self._async_load(STORE_KEY_PI_HISTORY))

        accumulated = await self._async_load(STORE_KEY_ACCUMULATED_ADJUSTMENT)
        if isinstance(accumulated, (int, float)) and math.isfinite(accumulated):
            self._accumulated = float(accumulated)
        self._last_adjustment_time = _parse_timestamp(await self._async_load(STORE_KEY_LAST_ADJUSTMENT))

        efficiency_state = await self._async_load(STORE_KEY_EFFICIENCY_STATE)
        if efficiency_state is not None and not self.efficiency_learner.restore(efficiency_state):
            _LOGGER.warning("Ignoring malformed efficiency learner state")
        defrost_state = await self._async_load(STORE_KEY_DEFROST_STATE)
        if defrost_state is not None and not self.defrost_learner.restore(defrost_state):
            _LOGGER.warning("Ignoring malformed defrost learner state")
        price_state = await self._async_load(STORE_KEY_PRICE_STATE)
        if price_state is not None and not self.price_classifier.restore(price_state):
            _LOGGER.warning("Ignoring malformed price state")

        alpha = await self._async_load(STORE_KEY_WIND_ALPHA)
        if alpha is not None:
            self.wind.restore(alpha, await self._async_load(STORE_KEY_WIND_COUNT))

        enabled = await self._async_load(STORE_KEY_ENABLED)
        _LOGGER.debug(
            "Restored state: accumulator=%.2f, pi_history=%d, cop_samples=%d, defrost_events=%d",
            self._accumulated,
            len(self.comfort.error_history()),
            len(self.efficiency_learner.history()),
            self.defrost_learner.event_count(),
        )
        return enabled if isinstance(enabled, bool) else None

    async def async_start(self) -> None:
        """Enable the loop, schedule the timer and run the first cycle immediately."""
        if self._state is ControlState.ENABLED:
            _LOGGER.debug("Adaptive control already running")
            return
        self._state = ControlState.ENABLED
        await self._async_save(STORE_KEY_ENABLED, True)
        self._schedule()
        _LOGGER.info("Adaptive control started (interval %ss)", self._config.control_interval_seconds)
        await self.async_run_cycle()

    async def async_stop(self) -> None:
        """Disable control; the disabled flag survives restarts until the next start."""
        await self._async_halt(remember_disabled=True)
        _LOGGER.info("Adaptive control stopped")

    async def async_shutdown(self) -> None:
        """Halt for an unload or reload; the persisted enabled flag is left as it is."""
        await self._async_halt(remember_disabled=False)
        _LOGGER.debug("Adaptive control shut down")

    async def _async_halt(self, *, remember_disabled: bool) -> None:
        if self._timer_unsub is not None:
            self._timer_unsub()
            self._timer_unsub = None
        self._state = ControlState.DISABLED
        async with self._lock:
            if remember_disabled:
                await self._async_save(STORE_KEY_ENABLED, False)
            await self._async_persist_accumulator()
            await self._async_persist_learning()
            self._accumulated = 0.0
            self._recommended_setpoint = None

    def _schedule(self) -> None:
        if self._timer_unsub is not None:
            self._timer_unsub()
        interval = timedelta(seconds=max(1, int(self._config.control_interval_seconds)))
        self._timer_unsub = self._schedule_interval(self._handle_interval, interval)

    async def _handle_interval(self, _now: datetime) -> None:
        await self.async_run_cycle()

    def update_config(self, config: ControlLoopConfig) -> None:
        """Apply new options to every sub-component; reschedules on interval change."""
        previous = self._config
        self._config = config
        self.comfort.update_parameters(kp=config.kp, ki=config.ki, deadband=config.deadband)
        self.fuser.set_priorities(**config.weights.as_dict())
        self.efficiency_advisor.update_settings(
            min_acceptable_cop=config.min_acceptable_cop,
            target_cop=config.target_cop,
            strategy=config.cop_strategy,
        )
        self.price_classifier.set_thresholds(config.price_thresholds)
        self.price_classifier.set_financials(
            price_mode=config.price_mode,
            vat_percentage=config.vat_percentage,
            storage_fee=config.storage_fee,
            energy_tax=config.energy_tax,
        )
        self.price_advisor.update_settings(
            max_preheat_offset=config.max_preheat_offset,
            max_reduce_offset=config.max_reduce_offset,
            lookahead_hours=config.price_lookahead_hours,
        )
        self.wind.update_settings(manual_alpha=config.wind_manual_alpha, max_correction=config.wind_max_correction)
        if self._state is ControlState.ENABLED and previous.control_interval_seconds != config.control_interval_seconds:
            self._schedule()

    # -- control cycle -------------------------------------------------------

    async def async_run_cycle(self, now: datetime | None = None) -> CycleResult:
        """Run one control cycle unless disabled or another cycle is in flight."""
        if self._state is not ControlState.ENABLED:
            return CycleResult(OUTCOME_DISABLED)
        if self._lock.locked():
            _LOGGER.debug("Previous control cycle still running; skipping tick")
            return CycleResult(OUTCOME_BUSY)
        async with self._lock:
            now = now or self._clock()
            result = await self._async_cycle(now)
            self._last_result = result
            self._last_cycle_time = now
            return result

    async def _async_read(self, channel: str) -> float | None:
        try:
            value = await self._io.async_get_value(channel)
        except Exception as err:
            _LOGGER.debug("Reading %s failed: %s", channel, err)
            return None
        if value is None or isinstance(value, bool):
            return None
        try:
            numeric = float(value)
        except (TypeError, ValueError):
            return None
        return numeric if math.isfinite(numeric) else None

    async def async_read_snapshot(self, now: datetime) -> SensorSnapshot:
        indoor = await self._async_read(CHANNEL_INDOOR_TEMP)
        indoor_updated = None
        last_updated = getattr(self._io, "last_updated", None)
        if callable(last_updated):
            indoor_updated = last_updated(CHANNEL_INDOOR_TEMP)
        wind = await self._async_read(CHANNEL_WIND_SPEED)
        if wind is not None:
            try:
                self.wind.receive_wind_speed(wind, now)
            except ValueError as err:
                _LOGGER.debug("Ignoring wind reading: %s", err)
                wind = None
        return SensorSnapshot(
            indoor_temp=indoor,
            target_indoor_temp=await self._async_read(CHANNEL_TARGET_INDOOR_TEMP),
            setpoint=await self._async_read(CHANNEL_SETPOINT),
            outdoor_temp=await self._async_read(CHANNEL_OUTDOOR_TEMP),
            compressor_frequency=await self._async_read(CHANNEL_COMPRESSOR_FREQUENCY),
            cop=await self._async_read(CHANNEL_COP),
            daily_cop=await self._async_read(CHANNEL_DAILY_COP),
            humidity=await self._async_read(CHANNEL_HUMIDITY),
            supply_temp=await self._async_read(CHANNEL_SUPPLY_TEMP),
            wind_speed=wind,
            indoor_updated=indoor_updated,
        )

    def _missing_inputs(self, snapshot: SensorSnapshot, now: datetime) -> list[str]:
        missing = []
        if snapshot.indoor_temp is None:
            missing.append("indoor temperature")
        elif snapshot.indoor_updated is not None and now - snapshot.indoor_updated > timedelta(
            minutes=INDOOR_READING_MAX_AGE_MINUTES
        ):
            missing.append("recent indoor temperature")
        if snapshot.setpoint is None:
            missing.append("current setpoint")
        if snapshot.target_indoor_temp is None:
            missing.append("desired indoor temperature")
        return missing

    @staticmethod
    def _call_advisor(name: str, func: Callable[[], Any]) -> Any:
        try:
            return func()
        except Exception:
            _LOGGER.exception("%s advisor failed; continuing without it", name)
            return None

    def _efficiency_action(self, snapshot: SensorSnapshot, now: datetime) -> EfficiencyAction | None:
        if snapshot.cop is None or snapshot.outdoor_temp is None or snapshot.setpoint is None:
            return None
        daily_cop = snapshot.daily_cop if snapshot.daily_cop is not None else snapshot.cop
        action = self.efficiency_advisor.compute_action(
            snapshot.cop, daily_cop, snapshot.outdoor_temp, snapshot.setpoint
        )
        if snapshot.compressor_frequency is not None:
            self._efficiency_learned = self.efficiency_advisor.record_measurement(
                outdoor_temp=snapshot.outdoor_temp,
                supply_temp=snapshot.supply_temp if snapshot.supply_temp is not None else snapshot.setpoint,
                cop=snapshot.cop,
                compressor_frequency=snapshot.compressor_frequency,
                now=now,
            )
        return action

    def _cost_action(self, snapshot: SensorSnapshot, now: datetime) -> CostAction | None:
        current = self.price_classifier.current_price(now)
        band = current.category if current else None
        if band != self._price_band:
            if band is not None:
                _LOGGER.info("Price band changed: %s -> %s", self._price_band, band)
            self._price_band = band
            self._price_band_changed_at = now
        return self.price_advisor.compute_action(snapshot.indoor_temp, snapshot.target_indoor_temp, now)  # type: ignore[arg-type]

    def _thermal_action(self, snapshot: SensorSnapshot, now: datetime) -> ThermalAction | None:
        adjustments: list[float] = []
        reasons: list[str] = []
        if self._thermal_advisor is not None:
            external = self._thermal_advisor(snapshot)
            if external is not None:
                adjustments.append(external.adjustment)
                reasons.append(external.reason)
        wind_fresh = self.wind.data_health(now)["has_valid_data"]
        if self._config.wind_enabled and wind_fresh and snapshot.outdoor_temp is not None:
            correction = self.wind.calculate_correction(snapshot.indoor_temp, snapshot.outdoor_temp)  # type: ignore[arg-type]
            if correction is not None and correction.correction > 0:
                adjustments.append(correction.correction)
                reasons.append(
                    f"Wind {correction.wind_speed:.0f} km/h adds {correction.correction:.2f}°C "
                    f"({correction.alpha_source} alpha{', capped' if correction.capped else ''})"
                )
        if not adjustments:
            return None
        return ThermalAction(adjustment=sum(adjustments), reason="; ".join(reasons))

    async def _async_cycle(self, now: datetime) -> CycleResult:
        snapshot = await self.async_read_snapshot(now)
        missing = self._missing_inputs(snapshot, now)
        if missing:
            _LOGGER.debug("Skipping control cycle; missing %s", ", ".join(missing))
            return CycleResult(OUTCOME_SKIPPED)
        indoor = snapshot.indoor_temp
        target = snapshot.target_indoor_temp
        setpoint = snapshot.setpoint
        if indoor is None or target is None or setpoint is None:
            return CycleResult(OUTCOME_SKIPPED)
        self._last_snapshot = snapshot

        building = self._building
        self._efficiency_learned = False
        comfort: ComfortAction | None = self._call_advisor(
            "Comfort",
            lambda: self.comfort.compute_action(
                indoor, target, building.tau_hours, building.heat_loss_coefficient
            ),
        )
        efficiency = None
        if self._config.efficiency_enabled:
            efficiency = self._call_advisor("Efficiency", lambda: self._efficiency_action(snapshot, now))
        cost = None
        if self._config.price_enabled:
            cost = self._call_advisor("Price", lambda: self._cost_action(snapshot, now))
        thermal = self._call_advisor("Thermal", lambda: self._thermal_action(snapshot, now))

        confidence = ConfidenceMetrics(
            cop_confidence=self.efficiency_learner.learning_confidence(),
            building_model_confidence=building.confidence,
            price_data_available=self.price_classifier.current_price(now) is not None,
        )
        combined = self.fuser.fuse(comfort, efficiency, cost, thermal, confidence)
        _LOGGER.debug(
            "Fused %.2f°C (%s priority) from %s: %s",
            combined.final_adjustment,
            combined.priority,
            {name: round(value, 2) for name, value in combined.breakdown.items()},
            "; ".join(combined.reasoning) or "no active advisors",
        )

        await self._async_save(STORE_KEY_PI_HISTORY, self.comfort.error_history())
        if self._efficiency_learned:
            await self._async_save(STORE_KEY_EFFICIENCY_STATE, self.efficiency_learner.export_state())

        if self._config.monitoring_mode:
            _LOGGER.info(
                "Monitoring mode: would adjust by %.2f°C (%s)", combined.final_adjustment, "; ".join(combined.reasoning)
            )
            return CycleResult(OUTCOME_MONITORING, combined)

        if comfort is None and abs(combined.final_adjustment) < MIN_FUSED_ADJUSTMENT:
            self._recommended_setpoint = setpoint
            return CycleResult(OUTCOME_IDLE, combined)

        self._accumulated += combined.final_adjustment
        step = round_half_up(self._accumulated)
        if step == 0:
            _LOGGER.debug("Accumulating adjustment: %.2f°C", self._accumulated)
            await self._async_persist_accumulator()
            return CycleResult(OUTCOME_ACCUMULATING, combined)

        if self._last_adjustment_time is not None and now - self._last_adjustment_time < self._config.min_wait:
            remaining = self._config.min_wait - (now - self._last_adjustment_time)
            _LOGGER.debug(
                "Adjustment of %+d°C throttled for another %d min (accumulated %.2f)",
                step,
                math.ceil(remaining.total_seconds() / 60),
                self._accumulated,
            )
            await self._async_persist_accumulator()
            return CycleResult(OUTCOME_THROTTLED, combined, requested_delta=step)

        new_setpoint = max(self._config.setpoint_min, min(self._config.setpoint_max, setpoint + step))
        applied = new_setpoint - setpoint
        if applied == 0:
            _LOGGER.debug("Setpoint %.1f already at safety limit; %+d°C not applied", setpoint, step)
            await self._async_persist_accumulator()
            return CycleResult(OUTCOME_AT_LIMIT, combined, requested_delta=step, new_setpoint=setpoint)

        previous_time = self._last_adjustment_time
        self._accumulated -= applied
        self._last_adjustment_time = now
        await self._async_persist_accumulator()

        recommend_only = self._config.execution_mode == EXECUTION_MODE_RECOMMEND
        channel = CHANNEL_SIMULATED_SETPOINT if recommend_only else CHANNEL_SETPOINT
        try:
            await self._io.async_set_value(channel, new_setpoint)
        except Exception:
            _LOGGER.exception("Writing setpoint %.1f failed; adjustment rolled back", new_setpoint)
            self._accumulated += applied
            self._last_adjustment_time = previous_time
            await self._async_persist_accumulator()
            return CycleResult(OUTCOME_FAILED, combined, requested_delta=step)

        self._recommended_setpoint = new_setpoint
        _LOGGER.info(
            "%s setpoint %.1f -> %.1f (%+.0f°C, remaining %.2f): %s",
            "Recommended" if recommend_only else "Adjusted",
            setpoint,
            new_setpoint,
            applied,
            self._accumulated,
            "; ".join(combined.reasoning),
        )
        return CycleResult(
            OUTCOME_RECOMMENDED if recommend_only else OUTCOME_APPLIED,
            combined,
            requested_delta=step,
            applied_delta=applied,
            new_setpoint=new_setpoint,
        )

    # -- external inputs -----------------------------------------------------

    def update_priorities(
        self, *, comfort: float, efficiency: float, cost: float, thermal: float = 0.0
    ) -> PriorityWeights:
        return self.fuser.set_priorities(comfort=comfort, efficiency=efficiency, cost=cost, thermal=thermal)

    def update_pi_parameters(self, kp: float, ki: float, deadband: float) -> None:
        self.comfort.update_parameters(kp=kp, ki=ki, deadband=deadband)

    async def async_reset_pi_history(self) -> None:
        """Clear the PI error history and the pending accumulator."""
        self.comfort.reset_history()
        self._accumulated = 0.0
        await self._async_save(STORE_KEY_PI_HISTORY, [])
        await self._async_persist_accumulator()

    async def async_receive_external_price(self, series: Mapping[Any, Any]) -> int:
        """Replace the price series from ``{datetime: price}`` or ``{hour_offset: price}``."""
        now = self._clock()
        if series and all(isinstance(key, datetime) for key in series):
            count = self.price_classifier.set_prices(series, now=now)
        else:
            count = self.price_classifier.set_external_prices(series, now)
        await self._async_save(STORE_KEY_PRICE_STATE, self.price_classifier.export_state())
        return count

    async def async_record_energy_consumption(self, delta_kwh: float) -> float:
        """Add consumed energy to today's cost at the current effective price."""
        increment = self.price_classifier.accumulate_cost(delta_kwh, self._clock())
        await self._async_save(STORE_KEY_PRICE_STATE, self.price_classifier.export_state())
        return increment

    async def async_reset_daily_cost(self) -> None:
        self.price_classifier.reset_daily_cost()
        await self._async_save(STORE_KEY_PRICE_STATE, self.price_classifier.export_state())

    def receive_external_wind_speed(self, wind_speed: float) -> float:
        return self.wind.receive_wind_speed(wind_speed, self._clock())

    async def async_record_defrost_event(
        self, outdoor_temp: float, duration_sec: float, humidity: float | None = None
    ) -> bool:
        recorded = self.defrost_learner.record_event(outdoor_temp, duration_sec, humidity, now=self._clock())
        if recorded:
            await self._async_save(STORE_KEY_DEFROST_STATE, self.defrost_learner.export_state())
        return recorded

    def receive_building_model(
        self,
        *,
        tau_hours: float | None,
        heat_loss_coefficient: float | None,
        confidence: float = 1.0,
    ) -> None:
        self._building = BuildingParameters(
            tau_hours=tau_hours,
            heat_loss_coefficient=heat_loss_coefficient,
            confidence=max(0.0, min(1.0, confidence)),
        )

    async def async_record_heat_loss_residual(self, predicted_kw: float, actual_kw: float) -> bool:
        """Feed a building-model heat-loss residual to the wind estimator."""
        snapshot = self._last_snapshot
        ua = self._building.heat_loss_coefficient
        if snapshot is None or snapshot.indoor_temp is None or snapshot.outdoor_temp is None or ua is None:
            return False
        learned = self.wind.learn_from_residual(
            predicted_loss=predicted_kw,
            actual_loss=actual_kw,
            heat_loss_coefficient=ua,
            indoor_temp=snapshot.indoor_temp,
            outdoor_temp=snapshot.outdoor_temp,
        )
        if learned:
            state = self.wind.export_state()
            await self._async_save(STORE_KEY_WIND_ALPHA, state["alpha"])
            await self._async_save(STORE_KEY_WIND_COUNT, state["sample_count"])
        return learned

    def expected_cop(self, outdoor_temp: float, humidity: float | None = None) -> float | None:
        """Learned COP at ``outdoor_temp`` reduced by the expected defrost losses."""
        cop = self.efficiency_learner.estimated_cop(outdoor_temp)
        if cop is None:
            return None
        return cop * self.defrost_learner.penalty(outdoor_temp, humidity)

    def _price_status(self, now: datetime) -> dict[str, Any]:
        classifier = self.price_classifier
        current_price = classifier.current_price(now)
        lookahead = self._config.price_lookahead_hours
        trend = classifier.forecast_trend(now, lookahead)
        return {
            "current": current_price.price if current_price else None,
            "effective": classifier.current_effective_price(now),
            "band": current_price.category if current_price else None,
            "band_changed_at": self._price_band_changed_at.isoformat() if self._price_band_changed_at else None,
            "daily_cost": classifier.daily_cost,
            "cheapest_block": _block_status(classifier.cheapest_block(ANALYTICS_BLOCK_HOURS, now)),
            "most_expensive_block": _block_status(classifier.most_expensive_block(ANALYTICS_BLOCK_HOURS, now)),
            "trend": {"trend": trend.trend, "slope": trend.slope, "confidence": trend.confidence} if trend else None,
            "daily_average_deviation": classifier.daily_average_deviation(now),
            "local_minimum": classifier.is_local_minimum(now, lookahead),
            "local_maximum": classifier.is_local_maximum(now, lookahead),
        }

    def status(self) -> dict[str, Any]:
        now = self._clock()
        snapshot = self._last_snapshot
        result = self._last_result
        return {
            "state": self._state.value,
            "execution_mode": self._config.execution_mode,
            "monitoring_mode": self._config.monitoring_mode,
            "accumulated_adjustment": self._accumulated,
            "last_adjustment_time": self._last_adjustment_time.isoformat() if self._last_adjustment_time else None,
            "last_cycle_time": self._last_cycle_time.isoformat() if self._last_cycle_time else None,
            "last_outcome": result.outcome if result else None,
            "last_adjustment": result.combined.final_adjustment if result and result.combined else None,
            "recommended_setpoint": self._recommended_setpoint,
            "priorities": self.fuser.priorities.as_dict(),
            "pi": self.comfort.status(),
            "efficiency": self.efficiency_learner.diagnostics(),
            "defrost": {
                "events": self.defrost_learner.event_count(),
                "qualified_buckets": self.defrost_learner.qualified_bucket_count(),
            },
            "wind": self.wind.diagnostics(now),
            "price": self._price_status(now),
            "expected_cop": (
                self.expected_cop(snapshot.outdoor_temp, snapshot.humidity)
                if snapshot and snapshot.outdoor_temp is not None
                else None
            ),
        }

    def destroy(self) -> None:
        """Drop all learned state; used when the device is removed."""
        self.comfort.destroy()
        self.efficiency_learner.destroy()
        self.defrost_learner.destroy()
        self.price_classifier.destroy()
        self.wind.destroy()
        self.fuser.destroy()

    # -- persistence ---------------------------------------------------------

    async def _async_load(self, key: str) -> Any:
        try:
            return await self._store.async_get(key)
        except Exception as err:
            _LOGGER.warning("Could not load %s, starting fresh: %s", key, err)
            return None

    async def _async_save(self, key: str, value: Any) -> None:
        try:
            await self._store.async_set(key, value)
        except Exception as err:
            _LOGGER.warning("Could not persist %s: %s", key, err)

    async def _async_persist_accumulator(self) -> None:
        await self._async_save(STORE_KEY_ACCUMULATED_ADJUSTMENT, self._accumulated)
        await self._async_save(
            STORE_KEY_LAST_ADJUSTMENT,
            self._last_adjustment_time.isoformat() if self._last_adjustment_time else None,
        )

    async def _async_persist_learning(self) -> None:
        await self._async_save(STORE_KEY_PI_HISTORY, self.comfort.error_history())
        await self._async_save(STORE_KEY_EFFICIENCY_STATE, self.efficiency_learner.export_state())
        await self._async_save(STORE_KEY_PRICE_STATE, self.price_classifier.export_state())
