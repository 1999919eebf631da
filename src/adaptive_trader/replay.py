"""
Simulation Replay

Runs the multi-strategy combiner over a recorded snapshot sequence.
A trade opens at bar i and closes at bar i + 1 whenever the blended
signal is actionable with confidence above the replay threshold.

No risk gate, scaling or learning: this measures the raw signal layer.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

from .config import BotConfig
from .models import MarketSnapshot, NewsItem, SignalAction
from .signal_engine import SignalCombiner, SignalStrategy


logger = logging.getLogger(__name__)


@dataclass
class ReplayTrade:
    """One bar-to-bar replay trade."""
    symbol: str
    entry_time: datetime
    exit_time: datetime
    action: SignalAction
    entry_price: float
    exit_price: float
    quantity: float
    leverage: float
    pnl: float
    strategy: str
    confidence: float

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "entry_time": self.entry_time,
            "exit_time": self.exit_time,
            "action": self.action.value,
            "entry_price": self.entry_price,
            "exit_price": self.exit_price,
            "quantity": self.quantity,
            "leverage": self.leverage,
            "pnl": self.pnl,
            "strategy": self.strategy,
            "confidence": self.confidence,
        }


@dataclass
class StrategyReplayStats:
    name: str
    trades: int = 0
    wins: int = 0
    pnl: float = 0.0

    @property
    def win_rate(self) -> float:
        return self.wins / self.trades if self.trades > 0 else 0.0


@dataclass
class ReplayResult:
    """Complete replay results."""
    initial_balance: float
    final_balance: float
    trades: List[ReplayTrade] = field(default_factory=list)
    strategy_stats: Dict[str, StrategyReplayStats] = field(default_factory=dict)
    equity_curve: Optional[pd.Series] = None

    @property
    def total_pnl(self) -> float:
        return self.final_balance - self.initial_balance

    @property
    def total_trades(self) -> int:
        return len(self.trades)

    @property
    def win_rate(self) -> float:
        if not self.trades:
            return 0.0
        return sum(1 for t in self.trades if t.pnl > 0) / len(self.trades)

    @property
    def profit_factor(self) -> float:
        gross_profit = sum(t.pnl for t in self.trades if t.pnl > 0)
        gross_loss = abs(sum(t.pnl for t in self.trades if t.pnl <= 0))
        if gross_loss == 0:
            return np.inf if gross_profit > 0 else 0.0
        return gross_profit / gross_loss

    @property
    def max_drawdown(self) -> float:
        if self.equity_curve is None or self.equity_curve.empty:
            return 0.0
        cummax = self.equity_curve.cummax()
        drawdown = (self.equity_curve - cummax) / cummax
        return float(drawdown.min())

    def trades_frame(self) -> pd.DataFrame:
        columns = [
            "symbol", "entry_time", "exit_time", "action", "entry_price", "exit_price",
            "quantity", "leverage", "pnl", "strategy", "confidence",
        ]
        return pd.DataFrame([t.to_dict() for t in self.trades], columns=columns)

    def summary(self) -> dict:
        return {
            "initial_balance": self.initial_balance,
            "final_balance": self.final_balance,
            "total_pnl": self.total_pnl,
            "total_trades": self.total_trades,
            "win_rate": self.win_rate,
            "max_drawdown": self.max_drawdown,
            "strategies": {
                name: {"trades": s.trades, "wins": s.wins, "pnl": s.pnl, "win_rate": s.win_rate}
                for name, s in self.strategy_stats.items()
            },
        }


class ReplayEngine:
    """
    Bar-to-bar replay of the signal combiner.

    Position size is trade_fraction of the running balance. Leverage
    applies only in futures mode.
    """

    def __init__(
        self,
        bot: Optional[BotConfig] = None,
        combiner: Optional[SignalCombiner] = None,
        min_confidence: float = 0.6,
        trade_fraction: float = 0.1,
    ):
        self.bot = bot or BotConfig()
        self.combiner = combiner or SignalCombiner()
        self.min_confidence = min_confidence
        self.trade_fraction = trade_fraction

    def _enabled_strategies(self) -> List[str]:
        bot = self.bot
        enabled = []
        if bot.enable_rsi_macd:
            enabled.append(SignalStrategy.RSI_MACD.value)
        if bot.enable_news_sentiment:
            enabled.append(SignalStrategy.NEWS_SENTIMENT.value)
        if bot.enable_volume_spike:
            enabled.append(SignalStrategy.VOLUME_SPIKE.value)
        return enabled

    def run(
        self,
        snapshots: Sequence[MarketSnapshot],
        news: Iterable[NewsItem] = (),
        initial_balance: Optional[float] = None,
    ) -> ReplayResult:
        """Replay one symbol's snapshot sequence."""
        bot = self.bot
        news = list(news)
        balance = initial_balance if initial_balance is not None else bot.simulation_balance
        start_balance = balance
        leverage = bot.effective_leverage

        stats = {name: StrategyReplayStats(name) for name in self._enabled_strategies()}
        trades: List[ReplayTrade] = []
        equity = [balance]
        times = [snapshots[0].timestamp] if snapshots else []

        for current, following in zip(snapshots, snapshots[1:]):
            signal = self.combiner.generate(current, news, bot)
            if not signal.is_actionable or signal.confidence <= self.min_confidence:
                continue
            if signal.action is SignalAction.SELL and not bot.is_futures:
                continue

            entry, exit_ = current.price, following.price
            quantity = balance * self.trade_fraction / entry
            direction = 1 if signal.action is SignalAction.BUY else -1
            pnl = (exit_ - entry) * quantity * direction * leverage
            balance += pnl

            trades.append(ReplayTrade(
                symbol=current.symbol,
                entry_time=current.timestamp,
                exit_time=following.timestamp,
                action=signal.action,
                entry_price=entry,
                exit_price=exit_,
                quantity=quantity,
                leverage=leverage,
                pnl=pnl,
                strategy=signal.best_strategy,
                confidence=signal.confidence,
            ))
            equity.append(balance)
            times.append(following.timestamp)

            strategy = stats.get(signal.best_strategy)
            if strategy is not None:
                strategy.trades += 1
                strategy.pnl += pnl
                if pnl > 0:
                    strategy.wins += 1

        result = ReplayResult(
            initial_balance=start_balance,
            final_balance=balance,
            trades=trades,
            strategy_stats=stats,
            equity_curve=pd.Series(equity, index=times) if times else pd.Series([start_balance]),
        )
        logger.info(
            f"Replay complete: {result.total_trades} trades, P&L {result.total_pnl:+,.2f}, "
            f"win rate {result.win_rate:.1%}"
        )
        return result

    def run_many(
        self,
        snapshots_by_symbol: Dict[str, Sequence[MarketSnapshot]],
        news: Iterable[NewsItem] = (),
    ) -> Dict[str, ReplayResult]:
        """Replay each symbol independently from the configured balance."""
        news = list(news)
        return {symbol: self.run(snapshots, news) for symbol, snapshots in snapshots_by_symbol.items()}
