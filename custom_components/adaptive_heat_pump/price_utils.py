"""Hourly price series, price bands and read-only price analytics.

This module is intentionally free of Home Assistant imports so it can be unit-tested.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta
import logging
import math
from statistics import median
from typing import Any, Iterable, Mapping

from .const import (
    DEFAULT_PRICE_HIGH,
    DEFAULT_PRICE_LOW,
    DEFAULT_PRICE_MODE,
    DEFAULT_PRICE_NORMAL,
    DEFAULT_PRICE_VERY_LOW,
    PRICE_MODE_MARKET,
    PRICE_MODE_MARKET_PLUS,
)
from .errors import PriceDataError
from .schemas import PRICE_THRESHOLDS_SCHEMA, validate

_LOGGER = logging.getLogger(__name__)

PRICE_VERY_LOW = "very_low"
PRICE_LOW = "low"
PRICE_NORMAL = "normal"
PRICE_HIGH = "high"
PRICE_VERY_HIGH = "very_high"

MIN_BLOCK_HOURS = 1
MAX_BLOCK_HOURS = 12
MIN_TREND_POINTS = 3
TREND_SLOPE_THRESHOLD = 1e-4  # Price units per hour.
TREND_MIN_CONFIDENCE = 0.5

TREND_RISING = "rising"
TREND_FALLING = "falling"
TREND_STABLE = "stable"

ONE_HOUR = timedelta(hours=1)


def _coerce_price(value: object) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        numeric = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    if not math.isfinite(numeric) or numeric < 0:
        return None
    return numeric


def hour_start(moment: datetime) -> datetime:
    return moment.replace(minute=0, second=0, microsecond=0)


@dataclass(frozen=True)
class PriceThresholds:
    """Upper bounds (exclusive) of the four lowest price bands."""

    very_low: float = DEFAULT_PRICE_VERY_LOW
    low: float = DEFAULT_PRICE_LOW
    normal: float = DEFAULT_PRICE_NORMAL
    high: float = DEFAULT_PRICE_HIGH

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> PriceThresholds:
        return cls(**validate(PRICE_THRESHOLDS_SCHEMA, data, "price thresholds"))


def classify_price(price: float, thresholds: PriceThresholds) -> str:
    """Map a price to one of the five ordered bands."""
    if price < thresholds.very_low:
        return PRICE_VERY_LOW
    if price < thresholds.low:
        return PRICE_LOW
    if price < thresholds.normal:
        return PRICE_NORMAL
    if price < thresholds.high:
        return PRICE_HIGH
    return PRICE_VERY_HIGH


@dataclass(frozen=True)
class PriceDataPoint:
    timestamp: datetime
    price: float
    category: str


@dataclass(frozen=True)
class PriceBlock:
    start: datetime
    end: datetime
    average_price: float
    hours: int


@dataclass(frozen=True)
class PriceStatistics:
    minimum: float
    maximum: float
    average: float
    median: float
    std_dev: float
    sample_size: int


@dataclass(frozen=True)
class PriceTrend:
    trend: str
    slope: float
    confidence: float


class PriceClassifier:
    """Owns the hourly price series and answers band and analytics questions."""

    def __init__(
        self,
        *,
        thresholds: PriceThresholds | None = None,
        price_mode: str = DEFAULT_PRICE_MODE,
        vat_percentage: float = 0.0,
        storage_fee: float = 0.0,
        energy_tax: float = 0.0,
    ) -> None:
        self._thresholds = thresholds or PriceThresholds()
        self._price_mode = price_mode
        self._vat_percentage = vat_percentage
        self._storage_fee = storage_fee
        self._energy_tax = energy_tax
        self._series: list[tuple[datetime, float]] = []
        self._last_update: datetime | None = None
        self._daily_cost = 0.0
        self._cost_date: date | None = None

    @property
    def thresholds(self) -> PriceThresholds:
        return self._thresholds

    @property
    def price_mode(self) -> str:
        return self._price_mode

    @property
    def has_data(self) -> bool:
        return bool(self._series)

    @property
    def last_update(self) -> datetime | None:
        return self._last_update

    def set_thresholds(self, thresholds: PriceThresholds) -> None:
        self._thresholds = thresholds
        _LOGGER.info("Price thresholds updated: %s", asdict(thresholds))

    def set_financials(
        self,
        *,
        price_mode: str,
        vat_percentage: float,
        storage_fee: float,
        energy_tax: float,
    ) -> None:
        self._price_mode = price_mode
        self._vat_percentage = vat_percentage
        self._storage_fee = storage_fee
        self._energy_tax = energy_tax

    def classify(self, price: float) -> str:
        return classify_price(price, self._thresholds)

    # -- series ------------------------------------------------------------

    def set_prices(
        self,
        series: Mapping[datetime, Any] | Iterable[tuple[datetime, Any]],
        *,
        now: datetime | None = None,
    ) -> int:
        """Replace the whole series; invalid entries are skipped.

        Raises PriceDataError when no usable entry remains, leaving the previous
        series in place.
        """
        items = series.items() if isinstance(series, Mapping) else series
        by_hour: dict[datetime, float] = {}
        skipped = 0
        for timestamp, raw_price in items:
            price = _coerce_price(raw_price)
            if not isinstance(timestamp, datetime) or price is None:
                skipped += 1
                continue
            by_hour[hour_start(timestamp)] = price
        if skipped:
            _LOGGER.debug("Skipped %d invalid price entries", skipped)
        if not by_hour:
            raise PriceDataError("No valid price entries found in input")

        self._series = sorted(by_hour.items())
        self._last_update = now
        _LOGGER.debug("Price series replaced with %d hourly entries", len(self._series))
        return len(self._series)

    def set_external_prices(self, prices: Mapping[Any, Any], now: datetime) -> int:
        """Replace the series from ``{hour_offset: price}`` relative to the current hour."""
        if not isinstance(prices, Mapping) or not prices:
            raise PriceDataError("Prices must be a non-empty mapping of hour offsets to prices")
        base = hour_start(now)
        series: list[tuple[datetime, float]] = []
        for raw_offset, raw_price in prices.items():
            try:
                offset = int(raw_offset)
            except (TypeError, ValueError):
                _LOGGER.debug("Skipping invalid hour offset: %s", raw_offset)
                continue
            if offset < 0:
                _LOGGER.debug("Skipping negative hour offset: %s", raw_offset)
                continue
            price = _coerce_price(raw_price)
            if price is None:
                _LOGGER.debug("Skipping invalid price for hour %s: %s", offset, raw_price)
                continue
            series.append((base + offset * ONE_HOUR, price))
        return self.set_prices(series, now=now)

    def prices(self) -> list[PriceDataPoint]:
        return [PriceDataPoint(ts, price, self.classify(price)) for ts, price in self._series]

    def current_price(self, now: datetime) -> PriceDataPoint | None:
        """Price of the hour containing ``now``; the band uses the current thresholds."""
        target = hour_start(now)
        for timestamp, price in self._series:
            if timestamp == target:
                return PriceDataPoint(timestamp, price, self.classify(price))
        return None

    def _window(self, start: datetime, end: datetime) -> list[tuple[datetime, float]]:
        return [(ts, price) for ts, price in self._series if start <= ts <= end]

    # -- effective price and cost -----------------------------------------

    def effective_price(self, raw_price: float) -> float:
        """Raw market price with VAT and, depending on the mode, fees and tax."""
        with_vat = raw_price * (1 + self._vat_percentage / 100)
        if self._price_mode == PRICE_MODE_MARKET:
            return with_vat
        if self._price_mode == PRICE_MODE_MARKET_PLUS:
            return with_vat + self._storage_fee
        return with_vat + self._storage_fee + self._energy_tax

    def current_effective_price(self, now: datetime) -> float | None:
        current = self.current_price(now)
        return self.effective_price(current.price) if current else None

    def accumulate_cost(self, delta_kwh: float, now: datetime) -> float:
        """Add the cost of consumed energy to today's total and return the increment."""
        if self._cost_date != now.date():
            if self._cost_date is not None:
                _LOGGER.debug("Day changed; daily cost %.2f reset", self._daily_cost)
            self._daily_cost = 0.0
            self._cost_date = now.date()
        if delta_kwh <= 0:
            return 0.0
        price = self.current_effective_price(now)
        if price is None:
            _LOGGER.debug("No price for the current hour; cost not accumulated")
            return 0.0
        increment = delta_kwh * price
        self._daily_cost += increment
        return increment

    @property
    def daily_cost(self) -> float:
        return self._daily_cost

    def reset_daily_cost(self) -> None:
        self._daily_cost = 0.0

    # -- analytics ---------------------------------------------------------

    def average_price(self, now: datetime, hours_ahead: int) -> PriceDataPoint | None:
        window = self._window(hour_start(now), now + hours_ahead * ONE_HOUR)
        if not window:
            return None
        average = sum(self.effective_price(price) for _ts, price in window) / len(window)
        return PriceDataPoint(now + (hours_ahead / 2) * ONE_HOUR, average, self.classify(average))

    def _find_block(self, hours: int, now: datetime | None, *, cheapest: bool) -> PriceBlock | None:
        if not MIN_BLOCK_HOURS <= hours <= MAX_BLOCK_HOURS:
            _LOGGER.debug("Invalid block length: %s hours", hours)
            return None
        series = self._series
        if now is not None:
            start = hour_start(now)
            series = [(ts, price) for ts, price in series if ts >= start]
        if len(series) < hours:
            return None

        best: PriceBlock | None = None
        for index in range(len(series) - hours + 1):
            window = series[index : index + hours]
            if window[-1][0] - window[0][0] != (hours - 1) * ONE_HOUR:
                continue
            average = sum(self.effective_price(price) for _ts, price in window) / hours
            if best is None or (average < best.average_price if cheapest else average > best.average_price):
                best = PriceBlock(window[0][0], window[-1][0] + ONE_HOUR, average, hours)
        return best

    def cheapest_block(self, hours: int, now: datetime | None = None) -> PriceBlock | None:
        """Cheapest contiguous block of ``hours`` (1-12) by effective price."""
        return self._find_block(hours, now, cheapest=True)

    def most_expensive_block(self, hours: int, now: datetime | None = None) -> PriceBlock | None:
        return self._find_block(hours, now, cheapest=False)

    def statistics(self, now: datetime | None = None, hours_ahead: int | None = None) -> PriceStatistics | None:
        if now is not None and hours_ahead is not None:
            window = self._window(hour_start(now), now + hours_ahead * ONE_HOUR)
        else:
            window = self._series
        if not window:
            return None
        prices = [self.effective_price(price) for _ts, price in window]
        average = sum(prices) / len(prices)
        variance = sum((price - average) ** 2 for price in prices) / len(prices)
        return PriceStatistics(
            minimum=min(prices),
            maximum=max(prices),
            average=average,
            median=median(prices),
            std_dev=math.sqrt(variance),
            sample_size=len(prices),
        )

    def price_trend(self, now: datetime, hours_ahead: int) -> PriceTrend | None:
        """Least-squares slope over hour index with R² as confidence."""
        window = self._window(hour_start(now), now + hours_ahead * ONE_HOUR)
        if len(window) < MIN_TREND_POINTS:
            return None
        y = [self.effective_price(price) for _ts, price in window]
        n = len(y)
        x = list(range(n))
        sum_x = sum(x)
        sum_y = sum(y)
        sum_xy = sum(xi * yi for xi, yi in zip(x, y))
        sum_x2 = sum(xi * xi for xi in x)
        slope = (n * sum_xy - sum_x * sum_y) / (n * sum_x2 - sum_x * sum_x)
        intercept = (sum_y - slope * sum_x) / n
        mean_y = sum_y / n
        ss_total = sum((yi - mean_y) ** 2 for yi in y)
        ss_residual = sum((yi - (slope * xi + intercept)) ** 2 for xi, yi in zip(x, y))
        r_squared = 1 - ss_residual / ss_total if ss_total > 0 else 0.0

        if slope > TREND_SLOPE_THRESHOLD:
            trend = TREND_RISING
        elif slope < -TREND_SLOPE_THRESHOLD:
            trend = TREND_FALLING
        else:
            trend = TREND_STABLE
        return PriceTrend(trend=trend, slope=slope, confidence=max(0.0, min(1.0, r_squared)))

    def forecast_trend(self, now: datetime, hours_ahead: int) -> PriceTrend | None:
        """Trend only when the regression explains more than half of the variance."""
        trend = self.price_trend(now, hours_ahead)
        if trend is None or trend.confidence <= TREND_MIN_CONFIDENCE:
            return None
        return trend

    def is_local_minimum(self, now: datetime, window_hours: int) -> bool:
        current = self.current_price(now)
        if current is None:
            return False
        window = self._window(now - window_hours * ONE_HOUR, now + window_hours * ONE_HOUR)
        return bool(window) and current.price <= min(price for _ts, price in window)

    def is_local_maximum(self, now: datetime, window_hours: int) -> bool:
        current = self.current_price(now)
        if current is None:
            return False
        window = self._window(now - window_hours * ONE_HOUR, now + window_hours * ONE_HOUR)
        return bool(window) and current.price >= max(price for _ts, price in window)

    def daily_average_deviation(self, now: datetime) -> float | None:
        """Relative deviation of the current price from the average of its calendar day."""
        current = self.current_price(now)
        if current is None:
            return None
        same_day = [price for ts, price in self._series if ts.date() == current.timestamp.date()]
        average = sum(same_day) / len(same_day)
        if average <= 0:
            return None
        return (current.price - average) / average

    # -- persistence ---------------------------------------------------------

    def export_state(self) -> dict[str, Any]:
        return {
            "prices": [[ts.isoformat(), price] for ts, price in self._series],
            "last_update": self._last_update.isoformat() if self._last_update else None,
            "daily_cost": self._daily_cost,
            "cost_date": self._cost_date.isoformat() if self._cost_date else None,
        }

    def restore(self, payload: Any) -> bool:
        if not isinstance(payload, dict):
            return False
        raw_prices = payload.get("prices")
        if not isinstance(raw_prices, list):
            return False
        series: list[tuple[datetime, float]] = []
        for item in raw_prices:
            if not isinstance(item, (list, tuple)) or len(item) != 2:
                continue
            price = _coerce_price(item[1])
            try:
                timestamp = datetime.fromisoformat(str(item[0]))
            except ValueError:
                continue
            if price is not None:
                series.append((hour_start(timestamp), price))
        self._series = sorted(dict(series).items())

        last_update = payload.get("last_update")
        try:
            self._last_update = datetime.fromisoformat(last_update) if isinstance(last_update, str) else None
        except ValueError:
            self._last_update = None
        cost = _coerce_price(payload.get("daily_cost"))
        self._daily_cost = cost or 0.0
        cost_date = payload.get("cost_date")
        try:
            self._cost_date = date.fromisoformat(cost_date) if isinstance(cost_date, str) else None
        except ValueError:
            self._cost_date = None
        return True

    def destroy(self) -> None:
        self._series = []
        self._last_update = None
