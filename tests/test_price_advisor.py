"""Unit tests for the price-driven preheat/reduce advisor."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from custom_components.adaptive_heat_pump.actions import ACTION_MAINTAIN, ACTION_PREHEAT, ACTION_REDUCE
from custom_components.adaptive_heat_pump.const import PRIORITY_HIGH, PRIORITY_LOW, PRIORITY_MEDIUM
from custom_components.adaptive_heat_pump.price_advisor import PriceAdvisor
from custom_components.adaptive_heat_pump.price_utils import PriceClassifier

NOW = datetime(2024, 1, 15, 12, 10, tzinfo=timezone.utc)
HOUR = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


def _advisor(current_price: float) -> PriceAdvisor:
    classifier = PriceClassifier()
    classifier.set_prices({HOUR: current_price, HOUR + timedelta(hours=1): 0.2}, now=NOW)
    return PriceAdvisor(classifier, max_preheat_offset=1.5, max_reduce_offset=1.0, lookahead_hours=4)


def test_no_price_data_gives_no_action() -> None:
    advisor = PriceAdvisor(PriceClassifier())

    assert advisor.compute_action(20.0, 21.0, NOW) is None


def test_very_low_price_preheats_maximally() -> None:
    action = _advisor(0.05).compute_action(21.0, 21.0, NOW)

    assert action.action == ACTION_PREHEAT
    assert action.magnitude == pytest.approx(1.5)
    assert action.priority == PRIORITY_HIGH
    assert action.current_price == pytest.approx(0.05)
    assert action.future_price == pytest.approx(0.125)


def test_preheat_stops_once_indoor_is_above_the_offset() -> None:
    action = _advisor(0.05).compute_action(22.6, 21.0, NOW)

    assert action.action == ACTION_MAINTAIN
    assert action.priority == PRIORITY_LOW


def test_low_price_preheats_moderately() -> None:
    action = _advisor(0.12).compute_action(21.0, 21.0, NOW)

    assert action.action == ACTION_PREHEAT
    assert action.magnitude == pytest.approx(0.75)
    assert action.priority == PRIORITY_MEDIUM


def test_high_price_reduces_moderately() -> None:
    action = _advisor(0.30).compute_action(21.0, 21.0, NOW)

    assert action.action == ACTION_REDUCE
    assert action.magnitude == pytest.approx(0.5)
    assert action.priority == PRIORITY_MEDIUM


def test_very_high_price_reduces_maximally_until_floor() -> None:
    advisor = _advisor(0.50)

    reduce = advisor.compute_action(21.0, 21.0, NOW)
    floor = advisor.compute_action(19.9, 21.0, NOW)

    assert reduce.action == ACTION_REDUCE
    assert reduce.magnitude == pytest.approx(1.0)
    assert reduce.priority == PRIORITY_HIGH
    assert floor.action == ACTION_MAINTAIN


def test_normal_price_maintains() -> None:
    action = _advisor(0.20).compute_action(21.0, 21.0, NOW)

    assert action.action == ACTION_MAINTAIN
    assert "Normal price" in action.reason


def test_missing_current_hour_gives_no_action() -> None:
    advisor = _advisor(0.05)

    assert advisor.compute_action(21.0, 21.0, NOW + timedelta(hours=5)) is None
