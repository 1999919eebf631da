"""
Adaptive Risk Engine - Go/No-Go Governor

CRITICAL COMPONENT - single gate for every new entry.

Owns RiskMetrics and the rolling window of the last 20 outcomes.
Mutated only after a position closes.

SHOULD_TRADE PRECEDENCE (exact order, first match wins):
1. Cooldown active             -> refuse, CONSERVATIVE, confidence 0
2. Leverage > 1, conf < 0.6    -> refuse
3. OVERNIGHT + UNCERTAIN       -> refuse
4. Confidence below threshold  -> refuse
5. Otherwise                   -> approve with the selected strategy

CIRCUIT BREAKER:
5 consecutive losses -> no entries for 1 hour. Hard stop, not advisory.
"""

import logging
import math
from collections import deque
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Deque, List, Optional

from .config import RiskConfig
from .market_condition import MarketConditionClassifier, bollinger_position
from .models import (
    MarketSnapshot,
    MarketCondition,
    MarketRegime,
    TradingSession,
    BollingerPosition,
    EmaTrend,
    PositionSide,
    StrategyArchetype,
    StrategyParameters,
    ARCHETYPE_PARAMETERS,
    utc_now,
)
from .pattern_memory import PatternMemory
from .persistence import KeyValueStore, load_json, save_json


ACTIVE_SESSIONS = (TradingSession.EUROPEAN, TradingSession.AMERICAN)


class OutcomeType(Enum):
    WIN = "WIN"
    LOSS = "LOSS"


@dataclass
class RiskMetrics:
    """Adaptive risk state - persisted after every closed trade."""
    recent_win_rate: float = 0.5
    consecutive_losses: int = 0
    current_risk_level: float = 1.0
    last_cooldown_end: Optional[datetime] = None
    total_trades: int = 0
    profitable_trades: int = 0

    def to_dict(self) -> dict:
        return {
            "recent_win_rate": self.recent_win_rate,
            "consecutive_losses": self.consecutive_losses,
            "current_risk_level": self.current_risk_level,
            "last_cooldown_end": self.last_cooldown_end.isoformat() if self.last_cooldown_end else None,
            "total_trades": self.total_trades,
            "profitable_trades": self.profitable_trades,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RiskMetrics":
        cooldown = data.get("last_cooldown_end")
        return cls(
            recent_win_rate=data.get("recent_win_rate", 0.5),
            consecutive_losses=data.get("consecutive_losses", 0),
            current_risk_level=data.get("current_risk_level", 1.0),
            last_cooldown_end=datetime.fromisoformat(cooldown) if cooldown else None,
            total_trades=data.get("total_trades", 0),
            profitable_trades=data.get("profitable_trades", 0),
        )


@dataclass(frozen=True)
class TradeOutcome:
    outcome: OutcomeType
    timestamp: datetime
    profit: float

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome.value,
            "timestamp": self.timestamp.isoformat(),
            "profit": self.profit,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TradeOutcome":
        return cls(
            outcome=OutcomeType(data["outcome"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            profit=data["profit"],
        )


@dataclass(frozen=True)
class TradeDecision:
    """Result of the go/no-go gate."""
    should_trade: bool
    reason: str
    confidence: float
    strategy: StrategyParameters
    condition: Optional[MarketCondition] = None

    def to_dict(self) -> dict:
        return {
            "should_trade": self.should_trade,
            "reason": self.reason,
            "confidence": self.confidence,
            "strategy": self.strategy.to_dict(),
            "condition": self.condition.to_dict() if self.condition else None,
        }


@dataclass(frozen=True)
class TradeReflection:
    """Short post-mortem of a closed trade."""
    timestamp: datetime
    symbol: str
    side: str
    pnl: float
    pnl_percent: float
    duration_seconds: float
    text: str

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "symbol": self.symbol,
            "side": self.side,
            "pnl": self.pnl,
            "pnl_percent": self.pnl_percent,
            "duration_seconds": self.duration_seconds,
            "text": self.text,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TradeReflection":
        return cls(
            timestamp=datetime.fromisoformat(data["timestamp"]),
            symbol=data["symbol"],
            side=data["side"],
            pnl=data["pnl"],
            pnl_percent=data["pnl_percent"],
            duration_seconds=data["duration_seconds"],
            text=data["text"],
        )


@dataclass(frozen=True)
class ExitLevels:
    """Staged take-profit targets and stop-loss price."""
    tp1: float
    tp2: float
    tp3: float
    sl: float


# (tp1, tp2, tp3, sl) as price fractions per regime
EXIT_LEVEL_TABLE = {
    None: (0.01, 0.025, 0.05, 0.015),
    MarketRegime.HIGH_VOLATILITY: (0.015, 0.035, 0.07, 0.025),
    MarketRegime.SIDEWAYS: (0.008, 0.015, 0.025, 0.01),
    MarketRegime.TRENDING_UP: (0.012, 0.03, 0.08, 0.012),
    MarketRegime.TRENDING_DOWN: (0.012, 0.03, 0.08, 0.012),
    MarketRegime.UNCERTAIN: (0.008, 0.018, 0.035, 0.012),
}


class RiskEngine:
    """
    Adaptive risk management engine.

    ALL entries must pass through should_trade().
    """

    METRICS_KEY = "risk_metrics"
    OUTCOMES_KEY = "recent_outcomes"
    REFLECTIONS_KEY = "trade_reflections"

    def __init__(
        self,
        config: Optional[RiskConfig] = None,
        classifier: Optional[MarketConditionClassifier] = None,
        pattern_memory: Optional[PatternMemory] = None,
        store: Optional[KeyValueStore] = None,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config = config or RiskConfig()
        self._clock = clock
        self.classifier = classifier or MarketConditionClassifier(clock=clock)
        self.pattern_memory = pattern_memory
        self.store = store
        self.logger = logger or logging.getLogger(__name__)

        self.metrics = RiskMetrics()
        self._outcomes: Deque[TradeOutcome] = deque(maxlen=self.config.outcome_window)
        self._reflections: Deque[TradeReflection] = deque(maxlen=self.config.reflections_kept)

        self._load_state()

    # ------------------------------------------------------------------
    # Outcome feedback
    # ------------------------------------------------------------------

    def record_trade_outcome(self, pnl: float) -> RiskMetrics:
        """Update risk metrics after a closed trade. A win is pnl > 0."""
        cfg = self.config
        m = self.metrics
        now = self._clock()
        is_win = pnl > 0

        self._outcomes.append(TradeOutcome(
            outcome=OutcomeType.WIN if is_win else OutcomeType.LOSS,
            timestamp=now,
            profit=pnl,
        ))

        m.total_trades += 1
        if is_win:
            m.profitable_trades += 1
            m.consecutive_losses = 0
        else:
            m.consecutive_losses += 1

        wins = sum(1 for o in self._outcomes if o.outcome is OutcomeType.WIN)
        m.recent_win_rate = wins / len(self._outcomes)

        prev_level = m.current_risk_level
        if m.recent_win_rate < cfg.low_win_rate:
            m.current_risk_level = max(cfg.min_risk_level, m.current_risk_level * cfg.risk_decrease_factor)
        elif m.recent_win_rate > cfg.high_win_rate:
            m.current_risk_level = min(cfg.max_risk_level, m.current_risk_level * cfg.risk_increase_factor)

        if m.current_risk_level != prev_level:
            self.logger.info(
                f"Risk level {prev_level:.2f} -> {m.current_risk_level:.2f} "
                f"(win rate {m.recent_win_rate:.0%})"
            )

        if m.consecutive_losses >= cfg.max_consecutive_losses:
            m.last_cooldown_end = now + timedelta(minutes=cfg.cooldown_minutes)
            self.logger.warning(
                f"COOLDOWN: {m.consecutive_losses} consecutive losses, "
                f"no entries until {m.last_cooldown_end.isoformat()}"
            )

        self._save_state()
        return m

    def is_in_cooldown(self, now: Optional[datetime] = None) -> bool:
        end = self.metrics.last_cooldown_end
        return end is not None and (now or self._clock()) < end

    def reflect_on_trade(
        self,
        symbol: str,
        side: PositionSide,
        pnl: float,
        pnl_percent: float,
        duration_seconds: float,
        entry_snapshot: MarketSnapshot,
    ) -> TradeReflection:
        """Keep a short text post-mortem of the last closed trades."""
        s = entry_snapshot
        minutes = duration_seconds / 60
        if pnl > 0:
            text = (
                f"{symbol} {side.value} worked ({pnl_percent:+.2f}% in {minutes:.0f}m). "
                f"RSI {s.rsi:.1f}, MACD {s.macd:.4f}, {s.ema_trend.value} trend, "
                f"volume {s.volume_ratio:.1f}x. Pattern worth remembering."
            )
        else:
            if s.rsi > 70 and side is PositionSide.LONG:
                cause = "Bought at overbought levels"
            elif s.rsi < 30 and side is PositionSide.SHORT:
                cause = "Sold at oversold levels"
            elif s.volume_ratio < 1:
                cause = "Low volume confirmation"
            elif s.ema_trend is EmaTrend.NEUTRAL:
                cause = "Unclear trend direction"
            else:
                cause = "Market moved against position"
            text = (
                f"{symbol} {side.value} failed ({pnl_percent:+.2f}% in {minutes:.0f}m). "
                f"{cause}. RSI {s.rsi:.1f}, MACD {s.macd:.4f}. Avoid similar setups."
            )

        reflection = TradeReflection(
            timestamp=self._clock(),
            symbol=symbol,
            side=side.value,
            pnl=pnl,
            pnl_percent=pnl_percent,
            duration_seconds=duration_seconds,
            text=text,
        )
        self._reflections.append(reflection)
        self.logger.info(f"Trade reflection: {text}")
        self._save_state()
        return reflection

    @property
    def reflections(self) -> List[TradeReflection]:
        return list(self._reflections)

    @property
    def recent_outcomes(self) -> List[TradeOutcome]:
        return list(self._outcomes)

    # ------------------------------------------------------------------
    # Strategy selection and confidence
    # ------------------------------------------------------------------

    def select_optimal_strategy(self, condition: MarketCondition, leverage: float = 1) -> StrategyParameters:
        """Map regime to archetype, then dampen risk for session, track record and leverage."""
        cfg = self.config
        session = condition.time_of_day
        active = session in ACTIVE_SESSIONS
        overnight = session is TradingSession.OVERNIGHT

        if condition.type in (MarketRegime.TRENDING_UP, MarketRegime.TRENDING_DOWN):
            archetype = StrategyArchetype.TREND_FOLLOWING
        elif condition.type is MarketRegime.SIDEWAYS:
            archetype = StrategyArchetype.SCALPING if active else StrategyArchetype.MEAN_REVERSION
        elif condition.type is MarketRegime.HIGH_VOLATILITY:
            archetype = StrategyArchetype.CONSERVATIVE
        else:
            archetype = StrategyArchetype.CONSERVATIVE if overnight else StrategyArchetype.MEAN_REVERSION

        base = ARCHETYPE_PARAMETERS[archetype]
        risk = base.risk_multiplier
        entry = base.entry_threshold

        if active:
            risk *= cfg.active_session_risk_factor
            entry += cfg.active_session_entry_bump
        elif overnight:
            risk *= cfg.overnight_risk_factor
            entry += cfg.overnight_entry_bump

        risk *= self.metrics.current_risk_level

        if leverage > 1:
            risk *= max(cfg.min_leverage_dampening, 1 / math.log2(leverage + 1))

        return replace(base, risk_multiplier=risk, entry_threshold=entry)

    def calculate_signal_confidence(
        self,
        snapshot: MarketSnapshot,
        condition: MarketCondition,
        now: Optional[datetime] = None,
    ) -> float:
        """Blend indicator sub-scores, scale by regime confidence and pattern bonus."""
        cfg = self.config

        rsi_score = min(1.0, abs(snapshot.rsi - 50) / 30)
        macd_score = math.tanh(abs(snapshot.macd) / cfg.macd_scale)
        ema_score = 0.3 if snapshot.ema_trend is EmaTrend.NEUTRAL else 1.0
        volume_score = min(1.0, max(0.0, snapshot.volume_ratio) / 2)
        bb_score = 0.4 if bollinger_position(snapshot) is BollingerPosition.MIDDLE else 1.0

        total_weight = cfg.rsi_weight + cfg.macd_weight + cfg.ema_weight + cfg.volume_weight + cfg.bollinger_weight
        blend = (
            rsi_score * cfg.rsi_weight
            + macd_score * cfg.macd_weight
            + ema_score * cfg.ema_weight
            + volume_score * cfg.volume_weight
            + bb_score * cfg.bollinger_weight
        ) / total_weight if total_weight > 0 else 0.0

        confidence = blend * condition.confidence * (1 + self._pattern_bonus(snapshot, now))
        return max(0.0, min(1.0, confidence))

    def _pattern_bonus(self, snapshot: MarketSnapshot, now: Optional[datetime]) -> float:
        if self.pattern_memory is None:
            return 0.0
        return self.pattern_memory.get_pattern_match_bonus(snapshot, now)

    def should_trade(
        self,
        snapshot: MarketSnapshot,
        confidence_threshold: float,
        leverage: float = 1,
        base_confidence: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> TradeDecision:
        """
        The go/no-go gate.

        base_confidence, when given, replaces the indicator blend (e.g. the
        combined multi-strategy confidence); the pattern bonus still applies.
        """
        cfg = self.config
        moment = now or self._clock()

        # Check 1: circuit breaker
        if self.is_in_cooldown(moment):
            return TradeDecision(
                should_trade=False,
                reason=(
                    "In cooldown after consecutive losses until "
                    f"{self.metrics.last_cooldown_end.isoformat()}"
                ),
                confidence=0.0,
                strategy=ARCHETYPE_PARAMETERS[StrategyArchetype.CONSERVATIVE],
            )

        condition = self.classifier.classify(snapshot, moment)
        strategy = self.select_optimal_strategy(condition, leverage)
        if base_confidence is None:
            confidence = self.calculate_signal_confidence(snapshot, condition, moment)
        else:
            bonus = self._pattern_bonus(snapshot, moment)
            confidence = max(0.0, min(1.0, base_confidence * (1 + bonus)))

        # Check 2: leveraged floor
        if leverage > 1 and confidence < cfg.leveraged_confidence_floor:
            return TradeDecision(
                should_trade=False,
                reason=(
                    f"Leveraged trade ({leverage}x) needs confidence >= "
                    f"{cfg.leveraged_confidence_floor:.2f}, got {confidence:.2f}"
                ),
                confidence=confidence,
                strategy=strategy,
                condition=condition,
            )

        # Check 3: thin overnight market with no clear regime
        if condition.time_of_day is TradingSession.OVERNIGHT and condition.type is MarketRegime.UNCERTAIN:
            return TradeDecision(
                should_trade=False,
                reason="Low liquidity overnight period with uncertain conditions",
                confidence=confidence,
                strategy=strategy,
                condition=condition,
            )

        # Check 4: caller threshold
        if confidence < confidence_threshold:
            return TradeDecision(
                should_trade=False,
                reason=f"Confidence {confidence:.2f} below threshold {confidence_threshold:.2f}",
                confidence=confidence,
                strategy=strategy,
                condition=condition,
            )

        return TradeDecision(
            should_trade=True,
            reason=f"{strategy.name.value} strategy selected for {condition.type.value} market",
            confidence=confidence,
            strategy=strategy,
            condition=condition,
        )

    def get_multi_exit_levels(
        self,
        entry_price: float,
        side: PositionSide,
        condition: Optional[MarketCondition] = None,
    ) -> ExitLevels:
        """Staged exits scaled by regime and volatility."""
        tp1, tp2, tp3, sl = EXIT_LEVEL_TABLE[condition.type if condition else None]
        if condition is not None:
            scale = max(0.7, min(1.5, condition.volatility * 25))
            tp1, tp2, tp3, sl = tp1 * scale, tp2 * scale, tp3 * scale, sl * scale

        d = side.direction
        return ExitLevels(
            tp1=entry_price * (1 + tp1 * d),
            tp2=entry_price * (1 + tp2 * d),
            tp3=entry_price * (1 + tp3 * d),
            sl=entry_price * (1 - sl * d),
        )

    # ------------------------------------------------------------------
    # Status and persistence
    # ------------------------------------------------------------------

    def get_status_summary(self) -> dict:
        m = self.metrics
        return {
            **m.to_dict(),
            "in_cooldown": self.is_in_cooldown(),
            "recent_outcomes": len(self._outcomes),
        }

    def reset(self) -> None:
        """Forget all learned risk state."""
        self.metrics = RiskMetrics()
        self._outcomes.clear()
        self._reflections.clear()
        self._save_state()
        self.logger.info("Risk engine reset to defaults")

    def _save_state(self) -> None:
        if self.store is None:
            return
        save_json(self.store, self.METRICS_KEY, self.metrics.to_dict(), self.logger)
        save_json(self.store, self.OUTCOMES_KEY, [o.to_dict() for o in self._outcomes], self.logger)
        save_json(self.store, self.REFLECTIONS_KEY, [r.to_dict() for r in self._reflections], self.logger)

    def _load_state(self) -> None:
        if self.store is None:
            return
        try:
            metrics = load_json(self.store, self.METRICS_KEY, self.logger)
            if metrics:
                self.metrics = RiskMetrics.from_dict(metrics)
            for entry in load_json(self.store, self.OUTCOMES_KEY, self.logger) or []:
                self._outcomes.append(TradeOutcome.from_dict(entry))
            for entry in load_json(self.store, self.REFLECTIONS_KEY, self.logger) or []:
                self._reflections.append(TradeReflection.from_dict(entry))
        except (KeyError, TypeError, ValueError) as e:
            self.logger.error(f"Discarding unreadable risk state: {e}")
            self.metrics = RiskMetrics()
            self._outcomes.clear()
            self._reflections.clear()
            return

        self.logger.info(
            f"Risk state loaded: level {self.metrics.current_risk_level:.2f}, "
            f"{self.metrics.total_trades} trades"
        )
