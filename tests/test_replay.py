"""
Tests for the bar-to-bar signal replay.
"""

from dataclasses import replace
from datetime import timedelta

import numpy as np
import pytest

from src.adaptive_trader.config import BotConfig, TradeMode
from src.adaptive_trader.models import SignalAction
from src.adaptive_trader.replay import ReplayEngine

from conftest import START, build_test_snapshot


STRONG_BUY = dict(rsi=25.0, macd=0.002)
STRONG_SELL = dict(rsi=75.0, macd=-0.002)


def bars(*specs, symbol="BTCUSDT"):
    """(price, indicator overrides) pairs -> snapshots one minute apart."""
    return [
        build_test_snapshot(symbol=symbol, price=price, timestamp=START + timedelta(minutes=i), **extra)
        for i, (price, extra) in enumerate(specs)
    ]


@pytest.fixture
def bot():
    return replace(BotConfig(), enable_news_sentiment=False, enable_volume_spike=False)


class TestReplay:

    def test_bar_to_bar_trades(self, bot):
        snapshots = bars(
            (100.0, STRONG_BUY),
            (102.0, {}),
            (102.0, STRONG_BUY),
            (101.0, {}),
            (101.0, {}),
        )

        result = ReplayEngine(bot).run(snapshots)

        assert result.total_trades == 2
        first, second = result.trades
        assert first.quantity == pytest.approx(10.0)
        assert first.pnl == pytest.approx(20.0)
        assert first.exit_time == START + timedelta(minutes=1)
        assert second.quantity == pytest.approx(10020.0 * 0.1 / 102.0)
        assert result.final_balance == pytest.approx(10020.0 - second.quantity)
        assert result.win_rate == pytest.approx(0.5)
        assert result.profit_factor == pytest.approx(20.0 / second.quantity)
        assert result.max_drawdown == pytest.approx((result.final_balance - 10020.0) / 10020.0)

    def test_strategy_stats(self, bot):
        snapshots = bars((100.0, STRONG_BUY), (101.0, {}))

        result = ReplayEngine(bot).run(snapshots)

        assert set(result.strategy_stats) == {"RSI_MACD"}
        stats = result.strategy_stats["RSI_MACD"]
        assert stats.trades == 1
        assert stats.wins == 1
        assert stats.win_rate == 1.0
        assert result.profit_factor == np.inf

    def test_low_confidence_skipped(self, bot):
        # Weak oversold -> 0.6, not above the replay threshold
        snapshots = bars((100.0, dict(rsi=35.0, macd=0.002)), (101.0, {}))

        assert ReplayEngine(bot).run(snapshots).total_trades == 0

    def test_spot_never_sells(self, bot):
        snapshots = bars((100.0, STRONG_SELL), (98.0, {}))

        assert ReplayEngine(bot).run(snapshots).total_trades == 0

    def test_futures_short_with_leverage(self, bot):
        futures = replace(bot, trade_mode=TradeMode.FUTURES, leverage=2)
        snapshots = bars((100.0, STRONG_SELL), (98.0, {}))

        result = ReplayEngine(futures).run(snapshots)

        trade = result.trades[0]
        assert trade.action == SignalAction.SELL
        assert trade.leverage == 2
        assert trade.pnl == pytest.approx(40.0)

    def test_empty_sequence(self, bot):
        result = ReplayEngine(bot).run([])

        assert result.total_trades == 0
        assert result.total_pnl == 0.0
        assert result.max_drawdown == 0.0
        assert result.profit_factor == 0.0

    def test_initial_balance_override(self, bot):
        result = ReplayEngine(bot).run(bars((100.0, STRONG_BUY), (110.0, {})), initial_balance=1000.0)

        assert result.trades[0].pnl == pytest.approx(10.0)
        assert result.summary()["total_pnl"] == pytest.approx(10.0)

    def test_run_many_is_independent_per_symbol(self, bot):
        results = ReplayEngine(bot).run_many({
            "BTCUSDT": bars((100.0, STRONG_BUY), (110.0, {})),
            "ETHUSDT": bars((50.0, STRONG_BUY), (45.0, {}), symbol="ETHUSDT"),
        })

        assert results["BTCUSDT"].total_pnl == pytest.approx(100.0)
        assert results["ETHUSDT"].total_pnl == pytest.approx(-100.0)

    def test_trades_frame(self, bot):
        result = ReplayEngine(bot).run(bars((100.0, STRONG_BUY), (101.0, {})))

        frame = result.trades_frame()

        assert len(frame) == 1
        assert frame.loc[0, "action"] == "BUY"
        assert frame.loc[0, "strategy"] == "RSI_MACD"
