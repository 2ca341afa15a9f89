"""Tests for the priority-ordered exit rule evaluator."""
from datetime import timedelta

import pytest

from gamma_paper.paper_trading.exit_conditions import (
    ConditionState,
    ExitConditionConfig,
    ExitConditionType,
    ExitRuleEvaluator,
)
from gamma_paper.paper_trading.models import ExitReason, Urgency

from conftest import NOW, make_position


def registered(evaluator, **kwargs):
    position = make_position(**kwargs)
    evaluator.register_position(position)
    return position


def fired_types(evaluation):
    return {s.condition_type for s in evaluation.signals}


@pytest.fixture
def evaluator():
    return ExitRuleEvaluator()


def test_no_signal_for_quiet_position(evaluator):
    position = registered(evaluator)
    position.update_price(2.60, NOW)

    evaluation = evaluator.evaluate(position, NOW)

    assert evaluation.signals == []
    assert evaluation.selected is None
    assert not evaluation.should_exit


def test_profit_target(evaluator):
    position = registered(evaluator)
    position.update_price(3.75, NOW)

    evaluation = evaluator.evaluate(position, NOW)

    assert evaluation.selected.condition_type == ExitConditionType.PROFIT_TARGET
    assert evaluation.selected.reason == ExitReason.PROFIT_TARGET
    assert evaluation.selected.urgency == Urgency.HIGH
    assert evaluation.selected.confidence == 0.9
    assert evaluation.selected.exit_price == 3.75
    assert evaluation.should_exit


def test_stop_loss(evaluator):
    position = registered(evaluator)
    position.update_price(1.25, NOW)

    evaluation = evaluator.evaluate(position, NOW)

    assert evaluation.selected.reason == ExitReason.STOP_LOSS
    assert evaluation.selected.urgency == Urgency.CRITICAL
    assert evaluation.selected.confidence == 0.95
    assert evaluation.should_exit


def test_stop_loss_beats_profit_target_when_both_fire(evaluator):
    position = registered(evaluator)
    evaluator.update_condition(position.position_id, ExitConditionType.PROFIT_TARGET, {"target_percent": -60})
    position.update_price(1.25, NOW)

    evaluation = evaluator.evaluate(position, NOW)

    assert {ExitConditionType.PROFIT_TARGET, ExitConditionType.STOP_LOSS} <= fired_types(evaluation)
    assert evaluation.selected.condition_type == ExitConditionType.STOP_LOSS


def test_equal_urgency_resolved_by_priority(evaluator):
    position = registered(evaluator, expiration=NOW + timedelta(hours=2))
    position.update_price(3.75, NOW)

    evaluation = evaluator.evaluate(position, NOW)

    assert {ExitConditionType.PROFIT_TARGET, ExitConditionType.EXPIRATION} <= fired_types(evaluation)
    assert evaluation.selected.condition_type == ExitConditionType.PROFIT_TARGET


class TestTrailingStop:

    def test_fires_on_drop_from_high_while_profitable(self, evaluator):
        position = registered(evaluator, entry_price=2.00)
        evaluator.update_condition(position.position_id, ExitConditionType.PROFIT_TARGET, {"target_percent": 100})

        position.update_price(3.00, NOW)
        assert evaluator.evaluate(position, NOW).selected is None

        position.update_price(2.34, NOW + timedelta(minutes=1))
        evaluation = evaluator.evaluate(position, NOW + timedelta(minutes=1))

        assert evaluation.selected.condition_type == ExitConditionType.TRAILING_STOP
        assert evaluation.selected.reason == ExitReason.STOP_LOSS
        assert evaluation.selected.urgency == Urgency.HIGH
        assert evaluation.selected.confidence == 0.8
        assert evaluation.should_exit

    def test_high_water_mark_starts_at_entry(self, evaluator):
        position = registered(evaluator, entry_price=2.00)

        trailing = {c.condition_type: c for c in evaluator.get_conditions(position.position_id)}[
            ExitConditionType.TRAILING_STOP
        ]
        assert trailing.parameters["high_water_mark"] == 2.00

        position.update_price(2.40, NOW)
        evaluator.evaluate(position, NOW)
        assert trailing.parameters["high_water_mark"] == 2.40

    def test_silent_when_not_profitable(self, evaluator):
        position = registered(evaluator, entry_price=2.00)
        evaluator.disable_condition(position.position_id, ExitConditionType.BREAKEVEN_STOP)

        position.update_price(2.10, NOW)
        evaluator.evaluate(position, NOW)
        position.update_price(1.60, NOW)

        assert ExitConditionType.TRAILING_STOP not in fired_types(evaluator.evaluate(position, NOW))


class TestBreakevenStop:

    def test_state_machine(self, evaluator):
        position = registered(evaluator, entry_price=2.00)
        breakeven = evaluator.get_conditions(position.position_id)[-1]
        assert breakeven.condition_type == ExitConditionType.BREAKEVEN_STOP
        assert breakeven.state == ConditionState.DISABLED

        position.update_price(2.10, NOW)
        evaluator.evaluate(position, NOW)
        assert breakeven.state == ConditionState.ARMED

        position.update_price(1.60, NOW)
        evaluation = evaluator.evaluate(position, NOW)
        assert breakeven.state == ConditionState.FIRED
        assert evaluation.selected.condition_type == ExitConditionType.BREAKEVEN_STOP
        assert evaluation.selected.reason == ExitReason.STOP_LOSS
        assert evaluation.selected.urgency == Urgency.MEDIUM
        # 0.7 is below the auto-exit confidence floor
        assert not evaluation.should_exit

        # Fires once per transition
        assert evaluator.evaluate(position, NOW).signals == []

        position.update_price(2.20, NOW)
        evaluator.evaluate(position, NOW)
        assert breakeven.state == ConditionState.ARMED

    def test_never_fires_before_profit(self, evaluator):
        position = registered(evaluator, entry_price=2.00)

        position.update_price(1.90, NOW)

        assert ExitConditionType.BREAKEVEN_STOP not in fired_types(evaluator.evaluate(position, NOW))

    def test_disabled_by_config(self):
        evaluator = ExitRuleEvaluator(ExitConditionConfig(breakeven_stop_enabled=False))
        position = registered(evaluator, entry_price=2.00)

        position.update_price(2.10, NOW)
        evaluator.evaluate(position, NOW)
        position.update_price(1.90, NOW)

        assert evaluator.evaluate(position, NOW).signals == []


class TestTimeRules:

    def test_small_loss_near_expiry_is_not_an_exit(self, evaluator):
        position = registered(evaluator, expiration=NOW + timedelta(days=5))
        position.update_price(2.00, NOW)

        assert evaluator.evaluate(position, NOW).signals == []

    def test_theta_share_of_price_near_expiry(self, evaluator):
        position = registered(evaluator, expiration=NOW + timedelta(days=5))
        position.current_greeks.theta = -1.00

        evaluation = evaluator.evaluate(position, NOW)

        assert evaluation.selected.reason == ExitReason.TIME_DECAY
        assert evaluation.selected.urgency == Urgency.HIGH
        assert evaluation.selected.confidence == 0.85
        assert evaluation.should_exit

    def test_expiration_owns_the_force_exit_window(self, evaluator):
        position = registered(evaluator, expiration=NOW + timedelta(hours=2))
        position.current_greeks.theta = -1.00
        position.update_price(2.40, NOW)

        evaluation = evaluator.evaluate(position, NOW)

        assert ExitConditionType.TIME_DECAY not in fired_types(evaluation)
        assert evaluation.selected.reason == ExitReason.EXPIRATION
        assert evaluation.should_exit

    def test_holding_period(self, evaluator):
        position = registered(evaluator)

        evaluation = evaluator.evaluate(position, NOW + timedelta(hours=80))

        assert evaluation.selected.condition_type == ExitConditionType.TIME_DECAY
        assert evaluation.selected.urgency == Urgency.MEDIUM
        assert evaluation.selected.confidence == 0.8
        assert evaluation.should_exit

    def test_force_exit_before_expiration(self, evaluator):
        position = registered(evaluator, expiration=NOW + timedelta(hours=2))

        evaluation = evaluator.evaluate(position, NOW)

        assert evaluation.selected.reason == ExitReason.EXPIRATION
        assert evaluation.selected.urgency == Urgency.HIGH
        assert evaluation.selected.confidence == 0.9
        assert evaluation.should_exit

    def test_expired(self, evaluator):
        position = registered(evaluator, expiration=NOW + timedelta(hours=2))

        evaluation = evaluator.evaluate(position, NOW + timedelta(hours=2, minutes=1))

        assert evaluation.selected.reason == ExitReason.EXPIRATION
        assert evaluation.selected.urgency == Urgency.CRITICAL
        assert evaluation.selected.confidence == 1.0

    def test_expiration_warning_does_not_auto_exit(self, evaluator):
        position = registered(evaluator, expiration=NOW + timedelta(hours=36))

        evaluation = evaluator.evaluate(position, NOW)

        assert evaluation.selected.condition_type == ExitConditionType.EXPIRATION
        assert evaluation.selected.urgency == Urgency.LOW
        assert not evaluation.should_exit


def test_auto_exit_can_be_disabled():
    evaluator = ExitRuleEvaluator(ExitConditionConfig(enable_auto_exit=False))
    position = registered(evaluator)
    position.update_price(1.00, NOW)

    evaluation = evaluator.evaluate(position, NOW)

    assert evaluation.selected.reason == ExitReason.STOP_LOSS
    assert not evaluation.should_exit


def test_unregistered_position_has_no_signals(evaluator):
    position = make_position()
    position.update_price(0.10, NOW)

    assert evaluator.evaluate(position, NOW).signals == []


class TestConditionManagement:

    def test_conditions_ordered_by_priority(self, evaluator):
        position = registered(evaluator)

        types = [c.condition_type for c in evaluator.get_conditions(position.position_id)]

        assert types == [
            ExitConditionType.PROFIT_TARGET,
            ExitConditionType.STOP_LOSS,
            ExitConditionType.TRAILING_STOP,
            ExitConditionType.TIME_DECAY,
            ExitConditionType.EXPIRATION,
            ExitConditionType.BREAKEVEN_STOP,
        ]

    def test_disable_and_enable(self, evaluator):
        position = registered(evaluator)
        position.update_price(3.75, NOW)

        assert evaluator.disable_condition(position.position_id, ExitConditionType.PROFIT_TARGET)
        assert ExitConditionType.PROFIT_TARGET not in fired_types(evaluator.evaluate(position, NOW))

        assert evaluator.enable_condition(position.position_id, ExitConditionType.PROFIT_TARGET)
        assert ExitConditionType.PROFIT_TARGET in fired_types(evaluator.evaluate(position, NOW))

    def test_unknown_position_or_condition(self, evaluator):
        assert not evaluator.update_condition("missing", ExitConditionType.STOP_LOSS, {"stop_percent": 10})
        assert not evaluator.enable_condition("missing", ExitConditionType.STOP_LOSS)
        assert evaluator.get_conditions("missing") == []

    def test_update_merges_parameters(self, evaluator):
        position = registered(evaluator)

        evaluator.update_condition(position.position_id, ExitConditionType.STOP_LOSS, {"stop_percent": 10})
        position.update_price(2.20, NOW)

        assert evaluator.evaluate(position, NOW).selected.reason == ExitReason.STOP_LOSS

    def test_stats(self, evaluator):
        first = registered(evaluator, position_id="a")
        registered(evaluator, position_id="b")
        evaluator.disable_condition("b", ExitConditionType.TIME_DECAY)
        first.update_price(3.75, NOW)
        evaluator.evaluate(first, NOW)

        stats = evaluator.get_stats()

        assert stats["positions_monitored"] == 2
        assert stats["active_conditions"] == 11
        assert stats["signals_generated"] == 1
        assert stats["auto_exits_recommended"] == 1

        evaluator.remove_position("a")
        assert evaluator.get_stats()["positions_monitored"] == 1


class TestConfidenceTiers:

    @pytest.fixture
    def tiered(self):
        return ExitRuleEvaluator(ExitConditionConfig(confidence_based_exits=True))

    def parameters(self, evaluator, position):
        return {c.condition_type: c for c in evaluator.get_conditions(position.position_id)}

    def test_high_confidence_profile(self, tiered):
        position = registered(tiered, confidence=0.9)

        conditions = self.parameters(tiered, position)

        assert conditions[ExitConditionType.PROFIT_TARGET].parameters["target_percent"] == 75.0
        assert conditions[ExitConditionType.STOP_LOSS].parameters["stop_percent"] == 40.0
        assert conditions[ExitConditionType.TRAILING_STOP].parameters["trailing_percent"] == 25.0
        assert conditions[ExitConditionType.BREAKEVEN_STOP].enabled

    def test_low_confidence_profile(self, tiered):
        position = registered(tiered, confidence=0.5)

        conditions = self.parameters(tiered, position)

        assert conditions[ExitConditionType.PROFIT_TARGET].parameters["target_percent"] == 30.0
        assert conditions[ExitConditionType.STOP_LOSS].parameters["stop_percent"] == 60.0
        assert not conditions[ExitConditionType.BREAKEVEN_STOP].enabled

    @pytest.mark.parametrize("confidence, threshold", [(0.9, 0.25), (0.7, 0.30), (0.4, 0.35)])
    def test_decay_threshold_by_tier(self, tiered, confidence, threshold):
        position = registered(tiered, confidence=confidence)

        conditions = self.parameters(tiered, position)

        assert conditions[ExitConditionType.TIME_DECAY].parameters["decay_threshold"] == threshold

    def test_decay_threshold_decides_exit(self, tiered):
        # 0.75 / 2.50 = 30% of value per day
        high = registered(tiered, position_id="high", confidence=0.9, expiration=NOW + timedelta(days=5))
        low = registered(tiered, position_id="low", confidence=0.4, expiration=NOW + timedelta(days=5))
        for position in (high, low):
            position.current_greeks.theta = -0.75

        assert tiered.evaluate(high, NOW).selected.reason == ExitReason.TIME_DECAY
        assert tiered.evaluate(low, NOW).signals == []

    def test_flat_thresholds_when_tiers_disabled(self, evaluator):
        position = registered(evaluator, confidence=0.95)

        conditions = self.parameters(evaluator, position)

        assert conditions[ExitConditionType.PROFIT_TARGET].parameters["target_percent"] == 50.0
