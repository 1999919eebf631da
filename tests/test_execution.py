"""
Tests for order validation, retries and venue routing.
"""

import pytest
from dataclasses import replace

from src.adaptive_trader.config import BotConfig, ExecutionConfig, TradingMode
from src.adaptive_trader.exceptions import AuthorizationError, OrderValidationError, TransientError
from src.adaptive_trader.execution_engine import (
    ExecutionEngine,
    ExecutionVenue,
    OrderResult,
    SimulatedVenue,
    SymbolRules,
    validate_order_quantity,
)
from src.adaptive_trader.models import OrderSide, OrderStatus, Trade

from conftest import START


RULES = SymbolRules(min_qty=0.001, step_size=0.001, min_notional=10.0)


class ScriptedVenue(ExecutionVenue):
    """Venue that raises the queued errors before filling."""

    def __init__(self, errors=(), status=OrderStatus.FILLED):
        self.errors = list(errors)
        self.status = status
        self.calls = 0

    def place_order(self, symbol, side, quantity, price=None):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return Trade(
            id=f"LIVE-{self.calls}",
            symbol=symbol,
            side=side,
            quantity=quantity,
            price=price,
            status=self.status,
            timestamp=START,
        )

    def get_account_balance(self):
        return 2500.0


@pytest.fixture
def sleeps():
    return []


def make_engine(venue=None, mode=TradingMode.SIMULATION, has_credentials=False, sleeps=None, live=None):
    bot = replace(BotConfig(), mode=mode)
    return ExecutionEngine(
        bot=bot,
        simulated_venue=venue,
        live_venue=live,
        has_credentials=has_credentials,
        sleep=(sleeps.append if sleeps is not None else lambda _: None),
    )


class TestValidateOrderQuantity:

    def test_floors_to_step_size(self):
        assert validate_order_quantity("BTCUSDT", 0.12345, 100.0, RULES) == pytest.approx(0.123)

    def test_coarse_step(self):
        rules = SymbolRules(min_qty=1.0, step_size=1.0, min_notional=10.0)

        assert validate_order_quantity("DOGEUSDT", 157.9, 0.1, rules) == 157.0

    def test_below_min_quantity(self):
        with pytest.raises(OrderValidationError, match="below minimum"):
            validate_order_quantity("BTCUSDT", 0.0005, 50000.0, RULES)

    def test_below_min_notional(self):
        with pytest.raises(OrderValidationError, match="Notional"):
            validate_order_quantity("BTCUSDT", 0.05, 100.0, RULES)

    def test_leverage_counts_toward_notional(self):
        assert validate_order_quantity("BTCUSDT", 0.05, 100.0, RULES, leverage=3) == pytest.approx(0.05)

    @pytest.mark.parametrize("quantity,price", [(0.0, 100.0), (-1.0, 100.0), (1.0, 0.0)])
    def test_non_positive_inputs(self, quantity, price):
        with pytest.raises(OrderValidationError):
            validate_order_quantity("BTCUSDT", quantity, price, RULES)


class TestSubmitOrder:

    def test_simulated_fill(self):
        engine = ExecutionEngine()

        execution = engine.submit_order("BTCUSDT", OrderSide.BUY, 0.12345, 100.0)

        assert execution.is_success
        assert execution.quantity == pytest.approx(0.123)
        assert execution.trade.status == OrderStatus.FILLED
        assert execution.trade.id.startswith("SIM-")

    def test_venue_rules_override_defaults(self):
        venue = SimulatedVenue(rules={"BTCUSDT": SymbolRules(min_qty=0.01, step_size=0.01, min_notional=5.0)})
        engine = make_engine(venue=venue)

        execution = engine.submit_order("BTCUSDT", OrderSide.BUY, 0.129, 100.0)

        assert execution.quantity == pytest.approx(0.12)

    def test_validation_failure_does_not_reach_venue(self):
        venue = ScriptedVenue()
        engine = make_engine(venue=venue)

        execution = engine.submit_order("BTCUSDT", OrderSide.BUY, 0.01, 100.0)

        assert execution.result == OrderResult.FAILED_VALIDATION
        assert venue.calls == 0

    def test_reduce_only_skips_minimums(self):
        engine = ExecutionEngine()

        execution = engine.submit_order("BTCUSDT", OrderSide.SELL, 0.0004, 100.0, reduce_only=True)

        assert execution.is_success
        assert execution.quantity == pytest.approx(0.0004)

    def test_reduce_only_still_rejects_nonsense(self):
        engine = ExecutionEngine()

        execution = engine.submit_order("BTCUSDT", OrderSide.SELL, 0.0, 100.0, reduce_only=True)

        assert execution.result == OrderResult.FAILED_VALIDATION

    def test_cancelled_order_is_rejected(self):
        engine = make_engine(venue=ScriptedVenue(status=OrderStatus.CANCELLED))

        execution = engine.submit_order("BTCUSDT", OrderSide.BUY, 1.0, 100.0)

        assert execution.result == OrderResult.FAILED_REJECTED


class TestRetries:

    def test_transient_errors_are_retried(self, sleeps):
        venue = ScriptedVenue(errors=[TransientError("timeout"), TransientError("timeout")])
        engine = make_engine(venue=venue, sleeps=sleeps)

        execution = engine.submit_order("BTCUSDT", OrderSide.BUY, 1.0, 100.0)

        assert execution.is_success
        assert venue.calls == 3
        assert sleeps == [1.0, 2.0]

    def test_gives_up_after_max_attempts(self, sleeps):
        venue = ScriptedVenue(errors=[TransientError("down")] * 5)
        engine = make_engine(venue=venue, sleeps=sleeps)

        execution = engine.submit_order("BTCUSDT", OrderSide.BUY, 1.0, 100.0)

        assert execution.result == OrderResult.FAILED_UNAVAILABLE
        assert venue.calls == ExecutionConfig().max_order_retries

    def test_authorization_error_never_retried(self, sleeps):
        venue = ScriptedVenue(errors=[AuthorizationError("bad key"), TransientError("x")])
        engine = make_engine(venue=venue, sleeps=sleeps)

        execution = engine.submit_order("BTCUSDT", OrderSide.BUY, 1.0, 100.0)

        assert execution.result == OrderResult.FAILED_UNAUTHORIZED
        assert venue.calls == 1
        assert sleeps == []


class TestModeRouting:

    def test_real_mode_without_credentials_places_nothing(self):
        live = ScriptedVenue()
        engine = make_engine(mode=TradingMode.REAL, live=live)

        execution = engine.submit_order("BTCUSDT", OrderSide.BUY, 1.0, 100.0)

        assert execution.result == OrderResult.FAILED_NOT_CONFIGURED
        assert live.calls == 0
        assert engine.get_account_balance() is None

    def test_real_mode_without_live_venue(self):
        engine = make_engine(mode=TradingMode.REAL, has_credentials=True)

        execution = engine.submit_order("BTCUSDT", OrderSide.BUY, 1.0, 100.0)

        assert execution.result == OrderResult.FAILED_NOT_CONFIGURED

    def test_real_mode_routes_to_live_venue(self):
        sim = ScriptedVenue()
        live = ScriptedVenue()
        engine = make_engine(venue=sim, mode=TradingMode.REAL, has_credentials=True, live=live)

        execution = engine.submit_order("BTCUSDT", OrderSide.BUY, 1.0, 100.0)

        assert execution.is_success
        assert live.calls == 1
        assert sim.calls == 0
        assert engine.get_account_balance() == 2500.0

    def test_simulation_ignores_credentials(self):
        engine = ExecutionEngine(has_credentials=False)

        assert engine.is_simulation
        assert engine.get_account_balance() == BotConfig().simulation_balance
