"""Unit tests for the COP learner and the efficiency advisor."""

from __future__ import annotations

from datetime import datetime, timezone
import json

import pytest

from custom_components.adaptive_heat_pump.actions import ACTION_DECREASE, ACTION_INCREASE, ACTION_MAINTAIN
from custom_components.adaptive_heat_pump.const import (
    PRIORITY_HIGH,
    PRIORITY_LOW,
    PRIORITY_MEDIUM,
    STRATEGY_AGGRESSIVE,
    STRATEGY_CONSERVATIVE,
)
from custom_components.adaptive_heat_pump.efficiency_advisor import EfficiencyAdvisor
from custom_components.adaptive_heat_pump.efficiency_learner import EfficiencyLearner

NOW = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


def _learner_with_optimum(outdoor: float = 0.0, best_supply: float = 34.0) -> EfficiencyLearner:
    learner = EfficiencyLearner()
    for _ in range(5):
        learner.add_measurement(outdoor_temp=outdoor, supply_temp=best_supply, cop=4.0, compressor_frequency=40, now=NOW)
        learner.add_measurement(outdoor_temp=outdoor, supply_temp=44.0, cop=3.0, compressor_frequency=50, now=NOW)
    return learner


def test_learner_tracks_best_supply_per_bucket() -> None:
    learner = _learner_with_optimum()

    assert learner.optimal_supply_temp(0.5) == pytest.approx(34.0)
    assert learner.estimated_cop(0.0) == pytest.approx(3.5)
    assert learner.optimal_supply_temp(10.0) is None


def test_learner_ignores_idle_samples() -> None:
    learner = EfficiencyLearner()

    assert learner.add_measurement(outdoor_temp=0, supply_temp=35, cop=0.0, compressor_frequency=40) is False
    assert learner.add_measurement(outdoor_temp=0, supply_temp=35, cop=3.0, compressor_frequency=0) is False
    assert learner.add_measurement(outdoor_temp=None, supply_temp=35, cop=3.0, compressor_frequency=40) is False
    assert learner.history() == []


def test_learning_confidence_grows_with_qualifying_samples() -> None:
    learner = EfficiencyLearner()
    assert learner.learning_confidence() == 0.0

    for _ in range(15):
        learner.add_measurement(outdoor_temp=0, supply_temp=35, cop=3.0, compressor_frequency=40, now=NOW)
    assert learner.learning_confidence() == pytest.approx(0.5)

    for _ in range(20):
        learner.add_measurement(outdoor_temp=0, supply_temp=35, cop=3.0, compressor_frequency=40, now=NOW)
    assert learner.learning_confidence() == 1.0


def test_low_cop_moves_toward_learned_optimum() -> None:
    advisor = EfficiencyAdvisor(_learner_with_optimum(), min_acceptable_cop=2.5, target_cop=3.5)

    action = advisor.compute_action(2.0, 2.2, 0.0, 40.0)

    assert action.action == ACTION_DECREASE
    assert action.magnitude == pytest.approx(2.0)
    assert action.priority == PRIORITY_HIGH


def test_low_cop_without_history_uses_heuristic_step() -> None:
    advisor = EfficiencyAdvisor(EfficiencyLearner(), strategy=STRATEGY_AGGRESSIVE)

    action = advisor.compute_action(2.0, 2.2, 0.0, 40.0)

    assert action.action == ACTION_DECREASE
    assert action.magnitude == pytest.approx(3.0)
    assert action.priority == PRIORITY_HIGH


def test_below_target_only_acts_beyond_three_degrees() -> None:
    advisor = EfficiencyAdvisor(_learner_with_optimum(best_supply=34.0), strategy=STRATEGY_CONSERVATIVE)

    near = advisor.compute_action(3.0, 3.0, 0.0, 36.0)
    far = advisor.compute_action(3.0, 3.0, 0.0, 30.0)

    assert near.action == ACTION_MAINTAIN
    assert near.priority == PRIORITY_LOW
    assert far.action == ACTION_INCREASE
    assert far.magnitude == pytest.approx(1.0)
    assert far.priority == PRIORITY_MEDIUM


def test_good_cop_maintains() -> None:
    advisor = EfficiencyAdvisor(_learner_with_optimum())

    action = advisor.compute_action(4.2, 3.0, 0.0, 45.0)

    assert action.action == ACTION_MAINTAIN
    assert action.magnitude == 0.0


def test_record_measurement_feeds_learner() -> None:
    learner = EfficiencyLearner()
    advisor = EfficiencyAdvisor(learner)

    assert advisor.record_measurement(outdoor_temp=1.0, supply_temp=38.0, cop=3.2, compressor_frequency=35, now=NOW)
    assert len(learner.history()) == 1


def test_exported_state_restores_learned_optimum() -> None:
    learner = _learner_with_optimum()
    payload = json.loads(json.dumps(learner.export_state()))

    restored = EfficiencyLearner()

    assert restored.restore(payload) is True
    assert len(restored.history()) == 10
    assert restored.optimal_supply_temp(0.0) == pytest.approx(34.0)
    assert restored.estimated_cop(0.0) == pytest.approx(3.5)
    assert restored.learning_confidence() == pytest.approx(learner.learning_confidence())


def test_malformed_state_is_rejected() -> None:
    learner = _learner_with_optimum()

    assert learner.restore({"history": "nope"}) is False
    assert len(learner.history()) == 10
