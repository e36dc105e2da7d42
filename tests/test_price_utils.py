"""Unit tests for price bands, series handling and price analytics."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from custom_components.adaptive_heat_pump.const import PRICE_MODE_MARKET, PRICE_MODE_MARKET_PLUS
from custom_components.adaptive_heat_pump.errors import ParameterValidationError, PriceDataError
from custom_components.adaptive_heat_pump.price_utils import (
    PRICE_HIGH,
    PRICE_LOW,
    PRICE_NORMAL,
    PRICE_VERY_HIGH,
    PRICE_VERY_LOW,
    PriceClassifier,
    PriceThresholds,
    classify_price,
)

NOW = datetime(2024, 1, 15, 12, 20, tzinfo=timezone.utc)
HOUR = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


def _series(prices: list[float], start: datetime = HOUR) -> dict[datetime, float]:
    return {start + timedelta(hours=index): price for index, price in enumerate(prices)}


def test_classify_price_boundaries_are_exclusive() -> None:
    thresholds = PriceThresholds()

    assert classify_price(0.0999, thresholds) == PRICE_VERY_LOW
    assert classify_price(0.10, thresholds) == PRICE_LOW
    assert classify_price(0.15, thresholds) == PRICE_NORMAL
    assert classify_price(0.25, thresholds) == PRICE_HIGH
    assert classify_price(0.3499, thresholds) == PRICE_HIGH
    assert classify_price(0.35, thresholds) == PRICE_VERY_HIGH


def test_thresholds_must_ascend() -> None:
    with pytest.raises(ParameterValidationError):
        PriceThresholds.from_mapping({"very_low": 0.2, "low": 0.1, "normal": 0.3, "high": 0.4})


def test_current_price_uses_the_containing_hour() -> None:
    classifier = PriceClassifier()
    classifier.set_prices(_series([0.05, 0.40]), now=NOW)

    current = classifier.current_price(NOW)

    assert current.price == pytest.approx(0.05)
    assert current.category == PRICE_VERY_LOW
    assert classifier.current_price(NOW + timedelta(hours=1)).category == PRICE_VERY_HIGH
    assert classifier.current_price(NOW + timedelta(hours=3)) is None


def test_set_prices_skips_invalid_entries_and_keeps_previous_on_failure() -> None:
    classifier = PriceClassifier()
    classifier.set_prices({HOUR: 0.2, HOUR + timedelta(hours=1): "n/a"}, now=NOW)
    assert len(classifier.prices()) == 1

    with pytest.raises(PriceDataError):
        classifier.set_prices({HOUR: None}, now=NOW)

    assert classifier.current_price(NOW).price == pytest.approx(0.2)


def test_external_prices_are_relative_to_the_current_hour() -> None:
    classifier = PriceClassifier()

    count = classifier.set_external_prices({"0": 0.12, 1: 0.3, -1: 0.5, "x": 0.1}, NOW)

    assert count == 2
    assert [point.timestamp for point in classifier.prices()] == [HOUR, HOUR + timedelta(hours=1)]
    with pytest.raises(PriceDataError):
        classifier.set_external_prices({}, NOW)


def test_effective_price_modes() -> None:
    classifier = PriceClassifier(vat_percentage=25.0, storage_fee=0.02, energy_tax=0.05)

    assert classifier.effective_price(0.10) == pytest.approx(0.125 + 0.02 + 0.05)
    classifier.set_financials(price_mode=PRICE_MODE_MARKET_PLUS, vat_percentage=25.0, storage_fee=0.02, energy_tax=0.05)
    assert classifier.effective_price(0.10) == pytest.approx(0.145)
    classifier.set_financials(price_mode=PRICE_MODE_MARKET, vat_percentage=25.0, storage_fee=0.02, energy_tax=0.05)
    assert classifier.effective_price(0.10) == pytest.approx(0.125)


def test_daily_cost_accumulates_and_resets_on_new_day() -> None:
    classifier = PriceClassifier()
    classifier.set_prices(_series([0.2] * 24, start=HOUR - timedelta(hours=12)), now=NOW)

    assert classifier.accumulate_cost(2.0, NOW) == pytest.approx(0.4)
    classifier.accumulate_cost(1.0, NOW)
    assert classifier.daily_cost == pytest.approx(0.6)

    classifier.accumulate_cost(0.0, NOW + timedelta(days=1))
    assert classifier.daily_cost == 0.0


def test_cheapest_block_requires_contiguous_hours() -> None:
    classifier = PriceClassifier()
    prices = _series([0.30, 0.10, 0.12, 0.40, 0.05])
    # Drop hour 3 so the cheap tail is not contiguous with hour 2.
    del prices[HOUR + timedelta(hours=3)]
    classifier.set_prices(prices, now=NOW)

    block = classifier.cheapest_block(2, NOW)

    assert block.start == HOUR + timedelta(hours=1)
    assert block.end == HOUR + timedelta(hours=3)
    assert block.average_price == pytest.approx(0.11)
    assert classifier.cheapest_block(0, NOW) is None
    assert classifier.cheapest_block(13, NOW) is None


def test_most_expensive_block() -> None:
    classifier = PriceClassifier()
    classifier.set_prices(_series([0.30, 0.10, 0.12, 0.40, 0.45]), now=NOW)

    block = classifier.most_expensive_block(2, NOW)

    assert block.start == HOUR + timedelta(hours=3)
    assert block.average_price == pytest.approx(0.425)


def test_statistics_over_the_series() -> None:
    classifier = PriceClassifier()
    classifier.set_prices(_series([0.1, 0.2, 0.3, 0.4]), now=NOW)

    stats = classifier.statistics()

    assert stats.minimum == pytest.approx(0.1)
    assert stats.maximum == pytest.approx(0.4)
    assert stats.average == pytest.approx(0.25)
    assert stats.median == pytest.approx(0.25)
    assert stats.sample_size == 4


def test_price_trend_detects_rising_prices() -> None:
    classifier = PriceClassifier()
    classifier.set_prices(_series([0.10, 0.12, 0.14, 0.16, 0.18]), now=NOW)

    trend = classifier.forecast_trend(NOW, 4)

    assert trend.trend == "rising"
    assert trend.slope == pytest.approx(0.02)
    assert trend.confidence == pytest.approx(1.0)


def test_price_trend_needs_three_points() -> None:
    classifier = PriceClassifier()
    classifier.set_prices(_series([0.10, 0.12]), now=NOW)

    assert classifier.price_trend(NOW, 4) is None


def test_local_extremes_and_daily_deviation() -> None:
    classifier = PriceClassifier()
    classifier.set_prices(_series([0.2, 0.1, 0.3], start=HOUR - timedelta(hours=1)), now=NOW)

    assert classifier.is_local_minimum(NOW, 2) is True
    assert classifier.is_local_maximum(NOW, 2) is False
    assert classifier.daily_average_deviation(NOW) == pytest.approx(-0.5)


def test_export_restore_round_trip() -> None:
    classifier = PriceClassifier()
    classifier.set_prices(_series([0.1, 0.2]), now=NOW)
    classifier.accumulate_cost(1.0, NOW)

    restored = PriceClassifier()
    assert restored.restore(classifier.export_state())

    assert restored.prices() == classifier.prices()
    assert restored.last_update == NOW
    assert restored.daily_cost == pytest.approx(0.1)
    assert restored.restore(None) is False
