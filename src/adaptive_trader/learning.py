"""
Learning / Outcome Recorder

Keeps a record of every trade with its market context, derives coarse
insights from completed trades, and asks the advisory service for exit
and entry opinions once enough history exists.

Insight recomputation runs every 10 closed trades, off the event loop,
behind an OperationGuard: a refresh requested while one is in flight is
skipped.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional

from .advisory import AdvisoryOpinion, AdvisoryService
from .market_condition import bollinger_position
from .models import (
    BollingerPosition,
    MarketSnapshot,
    Position,
    PositionSide,
    SignalAction,
    Trade,
    utc_now,
)
from .persistence import KeyValueStore, load_json, save_json
from .signal_engine import CombinedSignal
from .throttling import OperationGuard


class TradeResult(Enum):
    PROFIT = "PROFIT"
    LOSS = "LOSS"
    BREAKEVEN = "BREAKEVEN"


@dataclass(frozen=True)
class MarketContext:
    """What the orchestrator knew when it opened a position."""
    snapshot: MarketSnapshot
    confidence: float
    best_strategy: str
    news_count: int = 0
    portfolio_value: float = 0.0


@dataclass
class TradeRecord:
    id: str
    symbol: str
    side: PositionSide
    entry_price: float
    quantity: float
    timestamp: datetime
    snapshot: MarketSnapshot
    confidence: float
    best_strategy: str
    exit_price: Optional[float] = None
    profit: Optional[float] = None
    profit_percent: Optional[float] = None
    duration_seconds: Optional[float] = None
    reason: Optional[str] = None
    outcome: TradeResult = TradeResult.BREAKEVEN

    @property
    def is_closed(self) -> bool:
        return self.exit_price is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "side": self.side.value,
            "entry_price": self.entry_price,
            "quantity": self.quantity,
            "timestamp": self.timestamp.isoformat(),
            "snapshot": self.snapshot.to_dict(),
            "confidence": self.confidence,
            "best_strategy": self.best_strategy,
            "exit_price": self.exit_price,
            "profit": self.profit,
            "profit_percent": self.profit_percent,
            "duration_seconds": self.duration_seconds,
            "reason": self.reason,
            "outcome": self.outcome.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TradeRecord":
        return cls(
            id=data["id"],
            symbol=data["symbol"],
            side=PositionSide(data["side"]),
            entry_price=data["entry_price"],
            quantity=data["quantity"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            snapshot=MarketSnapshot.from_dict(data["snapshot"]),
            confidence=data["confidence"],
            best_strategy=data["best_strategy"],
            exit_price=data.get("exit_price"),
            profit=data.get("profit"),
            profit_percent=data.get("profit_percent"),
            duration_seconds=data.get("duration_seconds"),
            reason=data.get("reason"),
            outcome=TradeResult(data.get("outcome", "BREAKEVEN")),
        )


@dataclass
class LearningInsights:
    successful_patterns: List[str] = field(default_factory=list)
    failed_patterns: List[str] = field(default_factory=list)
    best_durations: List[float] = field(default_factory=list)     # seconds
    profitable_indicators: List[str] = field(default_factory=list)
    market_conditions: Dict[str, Dict[str, float]] = field(default_factory=dict)

    @classmethod
    def default(cls) -> "LearningInsights":
        return cls(
            successful_patterns=["RSI_OVERSOLD", "MACD_POSITIVE"],
            failed_patterns=["RSI_OVERBOUGHT", "MACD_NEGATIVE"],
            best_durations=[300.0, 600.0, 900.0],
            profitable_indicators=["RSI_OVERSOLD_BUY"],
            market_conditions={
                "bullish": {"win_rate": 0.6, "avg_profit": 2.5},
                "bearish": {"win_rate": 0.4, "avg_profit": 1.2},
                "neutral": {"win_rate": 0.5, "avg_profit": 1.8},
            },
        )

    def to_dict(self) -> dict:
        return {
            "successful_patterns": self.successful_patterns,
            "failed_patterns": self.failed_patterns,
            "best_durations": self.best_durations,
            "profitable_indicators": self.profitable_indicators,
            "market_conditions": self.market_conditions,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LearningInsights":
        return cls(**data)


class OutcomeRecorder(ABC):
    """External learning/analytics sink fed by the orchestrator."""

    @abstractmethod
    def record_open(self, trade: Trade, position: Position, context: MarketContext) -> None:
        pass

    @abstractmethod
    def record_close(self, position: Position, close_trade: Trade, reason: str) -> None:
        pass

    def reset(self) -> None:
        """Forget recorded history. Optional."""


def _pattern_tags(record: TradeRecord) -> List[str]:
    s = record.snapshot
    tags = []
    if s.rsi < 30:
        tags.append("RSI_OVERSOLD")
    if s.rsi > 70:
        tags.append("RSI_OVERBOUGHT")
    if s.macd > 0:
        tags.append("MACD_POSITIVE")
    if s.macd < 0:
        tags.append("MACD_NEGATIVE")
    band = bollinger_position(s)
    if band is BollingerPosition.LOWER:
        tags.append("BOLLINGER_LOWER")
    elif band is BollingerPosition.UPPER:
        tags.append("BOLLINGER_UPPER")
    return tags


def compute_insights(records: List[TradeRecord]) -> LearningInsights:
    """Derive insights from closed trades."""
    closed = [r for r in records if r.is_closed]
    winners = [r for r in closed if r.outcome is TradeResult.PROFIT]
    losers = [r for r in closed if r.outcome is TradeResult.LOSS]

    def common(group: List[TradeRecord]) -> List[str]:
        counts = Counter(tag for r in group for tag in _pattern_tags(r))
        return [tag for tag, _ in counts.most_common(5)]

    durations = sorted(r.duration_seconds for r in winners if r.duration_seconds)
    if durations:
        median = durations[len(durations) // 2]
        best_durations = [median * 0.5, median, median * 1.5]
    else:
        best_durations = [300.0]

    indicators = []
    for r in winners:
        if r.snapshot.rsi < 30 and "RSI_OVERSOLD_BUY" not in indicators:
            indicators.append("RSI_OVERSOLD_BUY")
        if r.snapshot.rsi > 70 and "RSI_OVERBOUGHT_SELL" not in indicators:
            indicators.append("RSI_OVERBOUGHT_SELL")

    def stats(group: List[TradeRecord]) -> Dict[str, float]:
        if not group:
            return {"win_rate": 0.0, "avg_profit": 0.0}
        wins = sum(1 for r in group if r.outcome is TradeResult.PROFIT)
        return {
            "win_rate": wins / len(group),
            "avg_profit": sum(r.profit_percent or 0.0 for r in group) / len(group),
        }

    return LearningInsights(
        successful_patterns=common(winners),
        failed_patterns=common(losers),
        best_durations=best_durations,
        profitable_indicators=indicators,
        market_conditions={
            "bullish": stats([r for r in closed if r.snapshot.macd > 0]),
            "bearish": stats([r for r in closed if r.snapshot.macd < 0]),
            "neutral": stats([r for r in closed if abs(r.snapshot.macd) < 0.1]),
        },
    )


class LearningRecorder(OutcomeRecorder):
    """
    Trade history + insights + advisory-backed opinions.

    Persisted under HISTORY_KEY and INSIGHTS_KEY.
    """

    HISTORY_KEY = "trade_history"
    INSIGHTS_KEY = "learning_insights"

    INSIGHT_INTERVAL = 10        # closed trades between refreshes
    MIN_TRADES_FOR_EXIT = 3
    MIN_TRADES_FOR_ENHANCE = 5
    SIMILAR_RSI_DISTANCE = 10.0
    MAX_HISTORY = 500

    def __init__(
        self,
        advisory: Optional[AdvisoryService] = None,
        store: Optional[KeyValueStore] = None,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.advisory = advisory or AdvisoryService(None)
        self.store = store
        self.logger = logger or logging.getLogger(__name__)
        self._clock = clock
        self._history: List[TradeRecord] = []
        self._insights: Optional[LearningInsights] = None
        self._insights_stale = False
        self.guard = OperationGuard("learning-insights")
        self._load_state()

    @property
    def history(self) -> List[TradeRecord]:
        return list(self._history)

    @property
    def insights(self) -> LearningInsights:
        return self._insights or LearningInsights.default()

    @property
    def insights_stale(self) -> bool:
        return self._insights_stale

    def closed_trades(self) -> List[TradeRecord]:
        return [r for r in self._history if r.is_closed]

    def find_record(self, position_id: str) -> Optional[TradeRecord]:
        for record in reversed(self._history):
            if record.id == position_id:
                return record
        return None

    def record_open(self, trade: Trade, position: Position, context: MarketContext) -> None:
        self._history.append(TradeRecord(
            id=position.id,
            symbol=position.symbol,
            side=position.side,
            entry_price=trade.price,
            quantity=trade.quantity,
            timestamp=trade.timestamp,
            snapshot=context.snapshot,
            confidence=context.confidence,
            best_strategy=context.best_strategy,
        ))
        if len(self._history) > self.MAX_HISTORY:
            self._history = self._history[-self.MAX_HISTORY:]
        self._save_history()
        self.logger.debug(f"Trade recorded for learning: {position.symbol} {position.side.value}")

    def record_close(self, position: Position, close_trade: Trade, reason: str) -> None:
        record = self.find_record(position.id)
        if record is None:
            self.logger.debug(f"No open record for position {position.id}")
            return

        record.exit_price = close_trade.price
        record.profit = position.pnl
        record.profit_percent = position.pnl_percent
        record.duration_seconds = (close_trade.timestamp - record.timestamp).total_seconds()
        record.reason = reason
        if position.pnl > 0:
            record.outcome = TradeResult.PROFIT
        elif position.pnl < 0:
            record.outcome = TradeResult.LOSS
        else:
            record.outcome = TradeResult.BREAKEVEN

        self._save_history()
        if len(self.closed_trades()) % self.INSIGHT_INTERVAL == 0:
            self._insights_stale = True

    async def refresh_insights(self, force: bool = False) -> bool:
        """Recompute insights off the loop. Returns False when skipped."""
        if not (force or self._insights_stale):
            return False

        with self.guard.hold() as acquired:
            if not acquired:
                return False
            snapshot = list(self._history)
            insights = await asyncio.to_thread(compute_insights, snapshot)
            self._insights = insights
            self._insights_stale = False
            if self.store is not None:
                save_json(self.store, self.INSIGHTS_KEY, insights.to_dict(), self.logger)
            self.logger.info(
                f"Learning insights updated from {len(self.closed_trades())} closed trades"
            )
            return True

    def similar_trades(self, position: Position, snapshot: MarketSnapshot) -> List[TradeRecord]:
        return [
            r for r in self.closed_trades()
            if abs(r.snapshot.rsi - snapshot.rsi) < self.SIMILAR_RSI_DISTANCE
            and (r.symbol == position.symbol or r.side is position.side)
        ]

    async def should_exit(self, position: Position, snapshot: MarketSnapshot) -> Optional[AdvisoryOpinion]:
        """Advisory exit opinion backed by similar history, or None."""
        if len(self.closed_trades()) < self.MIN_TRADES_FOR_EXIT or not self.advisory.available:
            return None

        similar = self.similar_trades(position, snapshot)
        if not similar:
            return None

        hold_rate = sum(1 for r in similar if r.outcome is TradeResult.PROFIT) / len(similar)
        age_minutes = (self._clock() - position.timestamp).total_seconds() / 60
        prompt = (
            "Position analysis:\n"
            f"Symbol: {position.symbol}\n"
            f"Current P&L: {position.pnl_percent:.2f}%\n"
            f"Position age: {age_minutes:.0f} minutes\n"
            f"Market RSI: {snapshot.rsi:.1f}\n"
            f"Similar trades success rate: {hold_rate * 100:.1f}%\n\n"
            "Should we exit this position? Respond with: EXIT/HOLD CONFIDENCE REASON"
        )
        return await self.advisory.advise_exit(prompt)

    async def enhance_signal(self, signal: CombinedSignal, snapshot: MarketSnapshot) -> CombinedSignal:
        """Let the advisory service revise an entry signal. Falls back to the input."""
        if len(self._history) < self.MIN_TRADES_FOR_ENHANCE or not self.advisory.available:
            return signal

        insights = self.insights
        prompt = (
            "Based on trading history analysis:\n"
            f"Successful patterns: {', '.join(insights.successful_patterns)}\n"
            f"Failed patterns: {', '.join(insights.failed_patterns)}\n"
            f"Current market: RSI {snapshot.rsi:.1f}, MACD {snapshot.macd:.5f}\n"
            f"Original signal: {signal.action.value} with {signal.confidence:.2f} confidence\n\n"
            "Should we modify this signal? Respond with: ACTION CONFIDENCE REASONING\n"
            "Where ACTION is BUY/SELL/HOLD, CONFIDENCE is 0.0-1.0, and REASONING explains why."
        )
        opinion = await self.advisory.advise_signal(prompt)
        if opinion is None:
            return signal

        return replace(
            signal,
            action=opinion.signal_action,
            confidence=min(0.95, opinion.confidence),
            reasoning=f"{signal.reasoning}; AI: {opinion.reasoning}",
        )

    def learning_stats(self) -> dict:
        closed = self.closed_trades()
        wins = [r for r in closed if r.outcome is TradeResult.PROFIT]
        return {
            "total_trades": len(self._history),
            "closed_trades": len(closed),
            "win_rate": len(wins) / len(closed) if closed else 0.0,
            "avg_profit_percent": (
                sum(r.profit_percent or 0.0 for r in closed) / len(closed) if closed else 0.0
            ),
            "insights": self.insights.to_dict(),
        }

    def reset(self) -> None:
        self._history = []
        self._insights = None
        self._insights_stale = False
        if self.store is not None:
            self.store.delete(self.INSIGHTS_KEY)
        self._save_history()
        self.logger.info("Learning history cleared")

    def _save_history(self) -> None:
        if self.store is None:
            return
        save_json(self.store, self.HISTORY_KEY, [r.to_dict() for r in self._history], self.logger)

    def _load_state(self) -> None:
        if self.store is None:
            return
        try:
            self._history = [
                TradeRecord.from_dict(entry)
                for entry in load_json(self.store, self.HISTORY_KEY, self.logger) or []
            ]
            insights = load_json(self.store, self.INSIGHTS_KEY, self.logger)
            if insights:
                self._insights = LearningInsights.from_dict(insights)
        except (KeyError, TypeError, ValueError) as e:
            self.logger.error(f"Discarding unreadable learning state: {e}")
            self._history = []
            self._insights = None
