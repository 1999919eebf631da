"""
Market Condition Classifier

Pure classification: one MarketSnapshot (+ wall clock) -> regime + confidence.

SCORING (one point each):
- trend_up:   EMA trend BULLISH, RSI > 60, MACD > 0, volume ratio > 1.2
- trend_down: EMA trend BEARISH, RSI < 40, MACD < 0, volume ratio > 1.2
- sideways:   EMA trend NEUTRAL, 40 <= RSI <= 60, |MACD| < 0.001,
              volume ratio < 1.0, +1 bonus when volatility < 0.02

PRIORITY ORDER:
1. Volatility > 0.05 -> HIGH_VOLATILITY (0.8), whatever the scores say
2. Best score >= 2.5 -> that regime, confidence 0.7 + (score / 5) * 0.2
3. Otherwise         -> UNCERTAIN (0.3)

Confidence is capped at 0.95. No side effects.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from .config import ClassifierConfig
from .models import (
    MarketSnapshot,
    MarketCondition,
    MarketRegime,
    TradingSession,
    BollingerPosition,
    EmaTrend,
    utc_now,
)


def trading_session(moment: datetime) -> TradingSession:
    """Bucket a UTC instant into its trading session."""
    hour = moment.hour
    if 0 <= hour < 6:
        return TradingSession.ASIAN
    if 6 <= hour < 14:
        return TradingSession.EUROPEAN
    if 14 <= hour < 22:
        return TradingSession.AMERICAN
    return TradingSession.OVERNIGHT


def bollinger_position(snapshot: MarketSnapshot) -> BollingerPosition:
    """Locate price relative to the Bollinger bands (1% proximity)."""
    bands = snapshot.bollinger
    if bands is None:
        return BollingerPosition.MIDDLE
    if snapshot.price > bands.upper * 0.99:
        return BollingerPosition.UPPER
    if snapshot.price < bands.lower * 1.01:
        return BollingerPosition.LOWER
    return BollingerPosition.MIDDLE


@dataclass(frozen=True)
class RegimeScores:
    """Raw scores behind a classification, kept for audit."""
    trend_up: float
    trend_down: float
    sideways: float

    def best(self) -> tuple:
        """(regime, score) of the highest score. Ties favour trend_up, then trend_down."""
        ranked = [
            (MarketRegime.TRENDING_UP, self.trend_up),
            (MarketRegime.TRENDING_DOWN, self.trend_down),
            (MarketRegime.SIDEWAYS, self.sideways),
        ]
        return max(ranked, key=lambda item: item[1])


class MarketConditionClassifier:
    """
    Classifies one snapshot into a market regime.

    Deterministic given identical input and wall-clock hour.
    The clock is injectable for reproducible tests.
    """

    def __init__(
        self,
        config: Optional[ClassifierConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config = config or ClassifierConfig()
        self._clock = clock

    def volatility(self, snapshot: MarketSnapshot) -> float:
        """Bollinger band width relative to the middle band."""
        bands = snapshot.bollinger
        if bands is None or bands.middle <= 0:
            return self.config.default_volatility
        return (bands.upper - bands.lower) / bands.middle

    def score(self, snapshot: MarketSnapshot, volatility: float) -> RegimeScores:
        cfg = self.config
        trend_up = 0.0
        trend_down = 0.0
        sideways = 0.0

        # EMA trend
        if snapshot.ema_trend is EmaTrend.BULLISH:
            trend_up += 1
        elif snapshot.ema_trend is EmaTrend.BEARISH:
            trend_down += 1
        else:
            sideways += 1

        # RSI
        if snapshot.rsi > cfg.rsi_bullish:
            trend_up += 1
        elif snapshot.rsi < cfg.rsi_bearish:
            trend_down += 1
        else:
            sideways += 1

        # MACD
        if abs(snapshot.macd) < cfg.macd_flat:
            sideways += 1
        if snapshot.macd > 0:
            trend_up += 1
        elif snapshot.macd < 0:
            trend_down += 1

        # Volume
        if snapshot.volume_ratio > cfg.trend_volume_ratio:
            trend_up += 1
            trend_down += 1
        elif snapshot.volume_ratio < cfg.quiet_volume_ratio:
            sideways += 1

        if volatility < cfg.low_volatility_threshold:
            sideways += 1

        return RegimeScores(trend_up=trend_up, trend_down=trend_down, sideways=sideways)

    def classify(
        self,
        snapshot: MarketSnapshot,
        now: Optional[datetime] = None,
    ) -> MarketCondition:
        """Classify the snapshot. `now` defaults to the injected clock."""
        cfg = self.config
        moment = now or self._clock()
        session = trading_session(moment)
        volatility = self.volatility(snapshot)

        if volatility > cfg.high_volatility_threshold:
            regime = MarketRegime.HIGH_VOLATILITY
            confidence = cfg.high_volatility_confidence
        else:
            best_regime, best_score = self.score(snapshot, volatility).best()
            if best_score >= cfg.decisive_score:
                regime = best_regime
                confidence = 0.7 + (best_score / 5) * 0.2
            else:
                regime = MarketRegime.UNCERTAIN
                confidence = cfg.uncertain_confidence

        return MarketCondition(
            type=regime,
            confidence=min(cfg.max_confidence, confidence),
            volatility=volatility,
            volume_ratio=snapshot.volume_ratio,
            time_of_day=session,
        )
