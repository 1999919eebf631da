"""
Pattern Memory

Bounded store of learned market-condition patterns and their outcomes.

LEARNING:
- Only materially profitable (> profit threshold) or materially losing
  (< loss threshold) trades are learned
- Candidate ranges are centred on the entry indicators:
  RSI +-5, MACD +-0.002, volume ratio +-0.3
- A similar existing pattern (every range bound within tolerance, equal
  categorical fields) is merged with running averages; otherwise appended

CAPACITY:
- After every insertion, sort by profitability descending and keep 50
- Eviction always drops the least profitable patterns (not FIFO)

LOOKUP:
- First pattern matching the current snapshot yields
  profitability * 0.2 * recency, recency decaying linearly to 0.1 over 7 days
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from .config import PatternConfig
from .market_condition import bollinger_position, trading_session
from .models import (
    MarketSnapshot,
    EmaTrend,
    BollingerPosition,
    TradingSession,
    utc_now,
)
from .persistence import KeyValueStore, load_json, save_json


@dataclass(frozen=True)
class NumericRange:
    min: float
    max: float

    @classmethod
    def around(cls, value: float, half_width: float) -> "NumericRange":
        return cls(min=value - half_width, max=value + half_width)

    def contains(self, value: float) -> bool:
        return self.min <= value <= self.max

    def close_to(self, other: "NumericRange", tolerance: float) -> bool:
        return abs(self.min - other.min) <= tolerance and abs(self.max - other.max) <= tolerance


@dataclass(frozen=True)
class PatternConditions:
    rsi: NumericRange
    macd: NumericRange
    volume_ratio: NumericRange
    ema_trend: EmaTrend
    bollinger_position: BollingerPosition
    time_of_day: TradingSession


@dataclass
class PatternOutcome:
    win_rate: float
    avg_profit: float       # percent
    avg_duration: float     # seconds
    trade_count: int


@dataclass
class TradePattern:
    """A remembered cluster of entry conditions and its outcome."""
    id: str
    conditions: PatternConditions
    outcome: PatternOutcome
    last_used: datetime
    profitability: float

    def matches(
        self,
        snapshot: MarketSnapshot,
        session: TradingSession,
        band_position: BollingerPosition,
    ) -> bool:
        """True when the snapshot falls inside every range of this pattern."""
        c = self.conditions
        return (
            c.rsi.contains(snapshot.rsi)
            and c.macd.contains(snapshot.macd)
            and c.volume_ratio.contains(snapshot.volume_ratio)
            and c.ema_trend is snapshot.ema_trend
            and c.bollinger_position is band_position
            and c.time_of_day is session
        )

    def to_dict(self) -> dict:
        c = self.conditions
        return {
            "id": self.id,
            "conditions": {
                "rsi": [c.rsi.min, c.rsi.max],
                "macd": [c.macd.min, c.macd.max],
                "volume_ratio": [c.volume_ratio.min, c.volume_ratio.max],
                "ema_trend": c.ema_trend.value,
                "bollinger_position": c.bollinger_position.value,
                "time_of_day": c.time_of_day.value,
            },
            "outcome": {
                "win_rate": self.outcome.win_rate,
                "avg_profit": self.outcome.avg_profit,
                "avg_duration": self.outcome.avg_duration,
                "trade_count": self.outcome.trade_count,
            },
            "last_used": self.last_used.isoformat(),
            "profitability": self.profitability,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TradePattern":
        c = data["conditions"]
        o = data["outcome"]
        return cls(
            id=data["id"],
            conditions=PatternConditions(
                rsi=NumericRange(*c["rsi"]),
                macd=NumericRange(*c["macd"]),
                volume_ratio=NumericRange(*c["volume_ratio"]),
                ema_trend=EmaTrend(c["ema_trend"]),
                bollinger_position=BollingerPosition(c["bollinger_position"]),
                time_of_day=TradingSession(c["time_of_day"]),
            ),
            outcome=PatternOutcome(
                win_rate=o["win_rate"],
                avg_profit=o["avg_profit"],
                avg_duration=o["avg_duration"],
                trade_count=o["trade_count"],
            ),
            last_used=datetime.fromisoformat(data["last_used"]),
            profitability=data["profitability"],
        )


class PatternMemory:
    """
    Capacity-bounded priority store of TradePatterns.

    Mutated only through learn_from_trade() and reset().
    """

    STATE_KEY = "learned_patterns"

    def __init__(
        self,
        config: Optional[PatternConfig] = None,
        store: Optional[KeyValueStore] = None,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config = config or PatternConfig()
        self.store = store
        self.logger = logger or logging.getLogger(__name__)
        self._clock = clock
        self._patterns: List[TradePattern] = []
        self._load_state()

    @property
    def patterns(self) -> List[TradePattern]:
        return list(self._patterns)

    def __len__(self) -> int:
        return len(self._patterns)

    def is_material(self, pnl_percent: float, fast_learning: bool = False) -> bool:
        cfg = self.config
        profit_threshold = cfg.fast_learning_profit_threshold if fast_learning else cfg.profit_threshold
        return pnl_percent > profit_threshold or pnl_percent < cfg.loss_threshold

    def build_conditions(self, snapshot: MarketSnapshot, opened_at: datetime) -> PatternConditions:
        cfg = self.config
        return PatternConditions(
            rsi=NumericRange.around(snapshot.rsi, cfg.rsi_range),
            macd=NumericRange.around(snapshot.macd, cfg.macd_range),
            volume_ratio=NumericRange.around(snapshot.volume_ratio, cfg.volume_ratio_range),
            ema_trend=snapshot.ema_trend,
            bollinger_position=bollinger_position(snapshot),
            time_of_day=trading_session(opened_at),
        )

    def _is_similar(self, a: PatternConditions, b: PatternConditions) -> bool:
        cfg = self.config
        return (
            a.rsi.close_to(b.rsi, cfg.rsi_tolerance)
            and a.macd.close_to(b.macd, cfg.macd_tolerance)
            and a.volume_ratio.close_to(b.volume_ratio, cfg.volume_ratio_tolerance)
            and a.ema_trend is b.ema_trend
            and a.bollinger_position is b.bollinger_position
            and a.time_of_day is b.time_of_day
        )

    def find_similar(self, conditions: PatternConditions) -> Optional[TradePattern]:
        for pattern in self._patterns:
            if self._is_similar(pattern.conditions, conditions):
                return pattern
        return None

    def learn_from_trade(
        self,
        entry_snapshot: MarketSnapshot,
        pnl_percent: float,
        duration_seconds: float,
        opened_at: Optional[datetime] = None,
        fast_learning: bool = False,
    ) -> Optional[TradePattern]:
        """
        Learn from one closed trade.

        Returns the created or updated pattern, or None when the outcome
        was not material.
        """
        if not self.is_material(pnl_percent, fast_learning):
            return None

        now = self._clock()
        conditions = self.build_conditions(entry_snapshot, opened_at or entry_snapshot.timestamp)
        win = 1.0 if pnl_percent > 0 else 0.0

        pattern = self.find_similar(conditions)
        if pattern is not None:
            o = pattern.outcome
            n = o.trade_count
            o.avg_profit = (o.avg_profit * n + pnl_percent) / (n + 1)
            o.avg_duration = (o.avg_duration * n + duration_seconds) / (n + 1)
            o.win_rate = (o.win_rate * n + win) / (n + 1)
            o.trade_count = n + 1
            pattern.last_used = now
            pattern.profitability = o.avg_profit / 100
            self.logger.info(
                f"Pattern {pattern.id[:8]} updated: {o.trade_count} trades, "
                f"avg {o.avg_profit:.2f}%"
            )
        else:
            pattern = TradePattern(
                id=uuid.uuid4().hex,
                conditions=conditions,
                outcome=PatternOutcome(
                    win_rate=win,
                    avg_profit=pnl_percent,
                    avg_duration=duration_seconds,
                    trade_count=1,
                ),
                last_used=now,
                profitability=pnl_percent / 100,
            )
            self._patterns.append(pattern)
            self.logger.info(
                f"New pattern learned ({pnl_percent:+.2f}%): "
                f"{conditions.ema_trend.value}/{conditions.bollinger_position.value}/"
                f"{conditions.time_of_day.value}"
            )

        self._prune()
        self._save_state()
        return pattern

    def _prune(self) -> None:
        """Keep the most profitable patterns only."""
        self._patterns.sort(key=lambda p: p.profitability, reverse=True)
        evicted = len(self._patterns) - self.config.max_patterns
        if evicted > 0:
            del self._patterns[self.config.max_patterns:]
            self.logger.debug(f"Evicted {evicted} least profitable pattern(s)")

    def get_pattern_match_bonus(self, snapshot: MarketSnapshot, now: Optional[datetime] = None) -> float:
        """Confidence bonus from the first pattern matching the snapshot."""
        cfg = self.config
        moment = now or self._clock()
        session = trading_session(moment)
        band_position = bollinger_position(snapshot)

        for pattern in self._patterns:
            if pattern.matches(snapshot, session, band_position):
                age_days = (moment - pattern.last_used).total_seconds() / 86400
                recency = max(cfg.min_recency_factor, min(1.0, 1 - age_days / cfg.recency_window_days))
                return pattern.profitability * cfg.bonus_factor * recency

        return 0.0

    def reset(self) -> None:
        self._patterns = []
        self._save_state()
        self.logger.info("Pattern memory cleared")

    def _save_state(self) -> None:
        if self.store is None:
            return
        save_json(self.store, self.STATE_KEY, [p.to_dict() for p in self._patterns], self.logger)

    def _load_state(self) -> None:
        if self.store is None:
            return
        data = load_json(self.store, self.STATE_KEY, self.logger)
        if not data:
            return
        try:
            self._patterns = [TradePattern.from_dict(entry) for entry in data]
        except (KeyError, TypeError, ValueError) as e:
            self.logger.error(f"Discarding unreadable pattern state: {e}")
            self._patterns = []
            return
        self._prune()
        self.logger.info(f"Loaded {len(self._patterns)} learned patterns")
