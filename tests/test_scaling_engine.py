"""
Tests for position scaling and trailing stops.
"""

import pytest

from src.adaptive_trader.config import ScalingConfig
from src.adaptive_trader.models import Position, PositionSide
from src.adaptive_trader.scaling_engine import ScalingAction, ScalingEngine

from conftest import START


def open_position(side=PositionSide.LONG, size=1.0, entry=100.0, leverage=1.0, position_id="p1"):
    return Position(
        id=position_id,
        symbol="BTCUSDT",
        side=side,
        size=size,
        entry_price=entry,
        current_price=entry,
        timestamp=START,
        leverage=leverage,
    )


def tick(engine, position, price):
    position.update_price(price)
    return engine.evaluate(position)


def fill(engine, position, decision):
    """Apply a proposed scale as a complete fill."""
    position.size += decision.size_delta
    engine.commit(position.id, decision, abs(decision.size_delta))


def tick_and_fill(engine, position, price):
    decision = tick(engine, position, price)
    if decision.should_scale_in or decision.should_scale_out:
        fill(engine, position, decision)
    return decision


@pytest.fixture
def engine():
    return ScalingEngine()


@pytest.fixture
def trailing_only():
    return ScalingEngine(ScalingConfig(enable_auto_rebalance=False))


class TestScaleIn:

    def test_three_percent_gain_scales_in(self, engine):
        position = open_position()
        engine.initialize(position)

        decision = tick(engine, position, 103.0)

        assert decision.action == ScalingAction.SCALE_IN
        assert decision.size_delta == pytest.approx(0.5)
        assert decision.new_size == pytest.approx(1.5)
        assert engine.get_state("p1").scale_in_count == 0

        fill(engine, position, decision)

        assert engine.get_state("p1").scale_in_count == 1
        assert engine.get_state("p1").current_size == pytest.approx(1.5)

    def test_unfilled_proposal_leaves_state_untouched(self, engine):
        position = open_position()
        engine.initialize(position)

        for _ in range(4):
            assert tick(engine, position, 103.0).action == ScalingAction.SCALE_IN

        state = engine.get_state("p1")
        assert state.scale_in_count == 0
        assert state.current_size == pytest.approx(1.0)

    def test_scale_in_capped(self, engine):
        position = open_position()
        engine.initialize(position)

        actions = [tick_and_fill(engine, position, 103.0 + i).action for i in range(5)]

        assert actions.count(ScalingAction.SCALE_IN) == 3
        assert engine.get_state("p1").scale_in_count == 3
        # Always half of the original size
        assert engine.get_state("p1").current_size == pytest.approx(2.5)

    def test_exactly_at_threshold_does_not_scale(self, engine):
        position = open_position()
        engine.initialize(position)

        assert tick(engine, position, 102.0).action == ScalingAction.NONE

    def test_leverage_measured_against_notional(self, engine):
        position = open_position(leverage=5)
        engine.initialize(position)

        decision = tick(engine, position, 100.5)

        assert position.pnl_percent == pytest.approx(2.5)
        assert decision.pnl_fraction == pytest.approx(0.005)
        assert decision.action == ScalingAction.NONE


class TestScaleOut:

    def test_loss_scales_out_of_current_size(self, engine):
        position = open_position()
        engine.initialize(position)

        first = tick_and_fill(engine, position, 98.0)
        second = tick_and_fill(engine, position, 98.0)
        third = tick_and_fill(engine, position, 98.0)

        assert first.action == ScalingAction.SCALE_OUT
        assert first.size_delta == pytest.approx(-0.3)
        assert second.size_delta == pytest.approx(-0.21)
        assert third.action == ScalingAction.NONE
        assert engine.get_state("p1").current_size == pytest.approx(0.49)
        assert engine.get_state("p1").scale_out_count == 2

    def test_scale_out_sized_from_live_position(self, engine):
        position = open_position(size=2.0)
        engine.initialize(position)
        # Size changed outside the engine, e.g. a partial fill
        position.size = 1.0

        decision = tick(engine, position, 98.0)

        assert decision.size_delta == pytest.approx(-0.3)
        assert engine.get_state("p1").current_size == pytest.approx(1.0)

    def test_commit_ignores_unknown_position_and_empty_fill(self, engine):
        position = open_position()
        engine.initialize(position)
        decision = tick(engine, position, 98.0)

        assert engine.commit("missing", decision, 0.3) is None
        engine.commit("p1", decision, 0.0)

        assert engine.get_state("p1").scale_out_count == 0

    def test_never_scale_in_and_out_together(self, engine):
        position = open_position()
        engine.initialize(position)

        for price in (103.0, 97.0, 104.0, 96.0, 100.0, 105.0):
            decision = tick_and_fill(engine, position, price)
            assert not (decision.should_scale_in and decision.should_scale_out)


class TestTrailingStop:

    def test_inactive_until_activation(self, trailing_only):
        position = open_position()
        trailing_only.initialize(position)

        decision = tick(trailing_only, position, 100.5)

        assert decision.trailing_stop_price is None

    def test_long_stop_ratchets_up_only(self, trailing_only):
        position = open_position()
        trailing_only.initialize(position)

        stops = []
        for price in (102.0, 101.5, 105.0, 103.5):
            stops.append(tick(trailing_only, position, price).trailing_stop_price)

        assert stops[0] == pytest.approx(102.0 * 0.98)
        assert stops == sorted(stops)
        assert stops[-1] == pytest.approx(105.0 * 0.98)

        decision = tick(trailing_only, position, 102.5)
        assert decision.action == ScalingAction.CLOSE
        assert decision.should_close

    def test_short_stop_ratchets_down_only(self, trailing_only):
        position = open_position(side=PositionSide.SHORT)
        trailing_only.initialize(position)

        stops = []
        for price in (97.0, 95.0, 96.0):
            stops.append(tick(trailing_only, position, price).trailing_stop_price)

        assert stops[0] == pytest.approx(97.0 * 1.02)
        assert stops[1] == pytest.approx(95.0 * 1.02)
        assert stops[2] == stops[1]

        assert tick(trailing_only, position, 97.0).action == ScalingAction.CLOSE

    def test_stop_takes_priority_over_scaling(self, engine):
        position = open_position()
        engine.initialize(position)
        tick(engine, position, 110.0)

        # Still above scale-in threshold but through the stop
        decision = tick(engine, position, 107.0)

        assert decision.action == ScalingAction.CLOSE


class TestLifecycle:

    def test_both_disabled(self):
        engine = ScalingEngine(ScalingConfig(enable_auto_rebalance=False, enable_trailing_stop=False))
        position = open_position()
        engine.initialize(position)

        decision = tick(engine, position, 120.0)

        assert decision.action == ScalingAction.NONE
        assert "disabled" in decision.reason

    def test_unknown_position_is_initialized(self, engine):
        position = open_position()

        decision = tick(engine, position, 103.0)

        assert decision.action == ScalingAction.NONE
        assert engine.get_state("p1") is not None

    def test_remove_and_summary(self, engine):
        engine.initialize(open_position(position_id="a"))
        engine.initialize(open_position(position_id="b"))

        engine.remove("a")

        assert set(engine.get_summary()) == {"b"}
