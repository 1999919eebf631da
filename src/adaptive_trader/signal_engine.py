"""
Multi-Strategy Signal Combiner

Evaluates each enabled signal strategy independently, then blends the
results into one action.

STRATEGIES:
- RSI_MACD:       rule table on (rsi, macd); SELL downgraded to HOLD in spot mode
- NEWS_SENTIMENT: mean of +1/0/-1 sentiment over news relevant to the base asset
- VOLUME_SPIKE:   volume spike near a Bollinger extreme with wide bands

COMBINATION:
- Sum confidences per action
- An action wins when its sum > 0.5 and exceeds the opposite sum
- Final confidence = winning sum / number of results, capped at 0.95
- Zero results -> HOLD, confidence 0, best strategy "NONE"

Per-strategy outcomes are tracked so the best strategy can be attributed.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from .config import SignalConfig, BotConfig
from .models import (
    MarketSnapshot,
    NewsItem,
    SignalAction,
    StrategyResult,
    utc_now,
)
from .persistence import KeyValueStore, load_json, save_json


class SignalStrategy(Enum):
    """Independent signal strategies."""
    RSI_MACD = "RSI_MACD"
    NEWS_SENTIMENT = "NEWS_SENTIMENT"
    VOLUME_SPIKE = "VOLUME_SPIKE"


QUOTE_ASSETS = ("USDT", "BUSD", "USDC")

# Assets that also accept general crypto-market headlines in fast learning mode
POPULAR_ASSETS = ("BTC", "ETH", "BNB", "ADA", "SOL", "DOT", "MATIC", "AVAX")
MARKET_KEYWORDS = (
    "crypto", "coin", "market", "bullish", "bearish",
    "bitcoin", "ethereum", "trading",
)


def base_asset(symbol: str) -> str:
    """BTCUSDT -> BTC."""
    for quote in QUOTE_ASSETS:
        if symbol.endswith(quote) and len(symbol) > len(quote):
            return symbol[:-len(quote)]
    return symbol


def relevant_news(news: Iterable[NewsItem], symbol: str, fast_learning: bool = False) -> List[NewsItem]:
    """
    Filter news relevant to a symbol's base asset.

    Strict coin match normally; in fast learning mode popular assets
    also accept general market headlines.
    """
    asset = base_asset(symbol)
    selected = []
    for item in news:
        if asset in item.coins:
            selected.append(item)
            continue
        if fast_learning and asset in POPULAR_ASSETS:
            text = f"{item.title} {item.content}".lower()
            if any(word in text for word in MARKET_KEYWORDS):
                selected.append(item)
    return selected


@dataclass
class CombinedSignal:
    """Blended signal from all enabled strategies."""
    action: SignalAction
    confidence: float
    best_strategy: str
    reasoning: str
    results: List[StrategyResult] = field(default_factory=list)

    @property
    def is_actionable(self) -> bool:
        return self.action is not SignalAction.HOLD

    def to_dict(self) -> dict:
        return {
            "action": self.action.value,
            "confidence": self.confidence,
            "best_strategy": self.best_strategy,
            "reasoning": self.reasoning,
            "results": [r.to_dict() for r in self.results],
        }


def combine_strategy_results(
    results: List[StrategyResult],
    min_aggregate: float = 0.5,
    max_confidence: float = 0.95,
) -> CombinedSignal:
    """Blend per-strategy results into one signal."""
    if not results:
        return CombinedSignal(
            action=SignalAction.HOLD,
            confidence=0.0,
            best_strategy="NONE",
            reasoning="No strategies enabled",
        )

    buy_score = 0.0
    sell_score = 0.0
    best = results[0]
    parts = []

    for result in results:
        if result.action is SignalAction.BUY:
            buy_score += result.confidence
        elif result.action is SignalAction.SELL:
            sell_score += result.confidence

        if result.confidence > best.confidence:
            best = result

        parts.append(f"{result.strategy_name}: {result.action.value} ({result.confidence:.2f})")

    action = SignalAction.HOLD
    confidence = 0.0
    if buy_score > sell_score and buy_score > min_aggregate:
        action = SignalAction.BUY
        confidence = buy_score / len(results)
    elif sell_score > buy_score and sell_score > min_aggregate:
        action = SignalAction.SELL
        confidence = sell_score / len(results)

    return CombinedSignal(
        action=action,
        confidence=min(max_confidence, confidence),
        best_strategy=best.strategy_name,
        reasoning="; ".join(parts),
        results=list(results),
    )


class SignalCombiner:
    """
    Runs the enabled signal strategies for one snapshot.

    Stateless apart from configuration.
    """

    def __init__(self, config: Optional[SignalConfig] = None, logger: Optional[logging.Logger] = None):
        self.config = config or SignalConfig()
        self.logger = logger or logging.getLogger(__name__)

    @staticmethod
    def _weighted(confidence: float, weight: float) -> float:
        return max(0.0, min(1.0, confidence * weight))

    def rsi_macd(self, snapshot: MarketSnapshot, weight: float = 1.0, spot_only: bool = True) -> StrategyResult:
        """RSI + MACD rule table."""
        cfg = self.config
        rsi, macd = snapshot.rsi, snapshot.macd
        action = SignalAction.HOLD
        confidence = cfg.neutral_confidence
        reasoning = "RSI/MACD neutral"

        if rsi < cfg.rsi_oversold and macd > 0:
            action, confidence = SignalAction.BUY, cfg.strong_confidence
            reasoning = "RSI oversold + MACD bullish"
        elif rsi > cfg.rsi_overbought and macd < 0:
            action, confidence = SignalAction.SELL, cfg.strong_confidence
            reasoning = "RSI overbought + MACD bearish"
        elif rsi < cfg.rsi_weak_oversold and macd > cfg.macd_confirm:
            action, confidence = SignalAction.BUY, cfg.weak_confidence
            reasoning = "RSI low + MACD positive momentum"
        elif rsi > cfg.rsi_weak_overbought and macd < -cfg.macd_confirm:
            action, confidence = SignalAction.SELL, cfg.weak_confidence
            reasoning = "RSI high + MACD negative momentum"

        if spot_only and action is SignalAction.SELL:
            action, confidence = SignalAction.HOLD, 0.0
            reasoning += " (SELL skipped in spot mode)"

        return StrategyResult(
            strategy_name=SignalStrategy.RSI_MACD.value,
            action=action,
            confidence=self._weighted(confidence, weight),
            reasoning=reasoning,
            weight=weight,
        )

    def news_sentiment(
        self,
        snapshot: MarketSnapshot,
        news: Iterable[NewsItem],
        weight: float = 1.0,
        fast_learning: bool = False,
    ) -> StrategyResult:
        """Average sentiment of relevant news."""
        cfg = self.config
        items = relevant_news(news, snapshot.symbol, fast_learning)
        score = 0.0
        action = SignalAction.HOLD
        confidence = cfg.neutral_confidence

        if items:
            score = sum(item.sentiment.score for item in items) / len(items)
            if score > cfg.news_score_threshold:
                action = SignalAction.BUY
                confidence = min(cfg.news_max_confidence, 0.5 + abs(score))
            elif score < -cfg.news_score_threshold:
                action = SignalAction.SELL
                confidence = min(cfg.news_max_confidence, 0.5 + abs(score))

        return StrategyResult(
            strategy_name=SignalStrategy.NEWS_SENTIMENT.value,
            action=action,
            confidence=self._weighted(confidence, weight),
            reasoning=f"News sentiment: {score:.2f} ({len(items)} articles)",
            weight=weight,
        )

    def volume_spike(
        self,
        snapshot: MarketSnapshot,
        weight: float = 1.0,
        futures: bool = False,
        leverage: float = 1.0,
    ) -> StrategyResult:
        """Volume spike near a Bollinger extreme."""
        cfg = self.config
        bands = snapshot.bollinger
        action = SignalAction.HOLD
        confidence = cfg.neutral_confidence
        reasoning = "Volume normal"

        spike = snapshot.volume_ratio > cfg.spike_volume_ratio
        if spike and bands is not None:
            width = bands.width
            if snapshot.price < bands.lower * (1 + cfg.band_proximity) and width > cfg.min_band_width:
                action, confidence = SignalAction.BUY, cfg.spike_confidence
                reasoning = "Volume spike + price near lower Bollinger band"
            elif snapshot.price > bands.upper * (1 - cfg.band_proximity) and width > cfg.min_band_width:
                action, confidence = SignalAction.SELL, cfg.spike_confidence
                reasoning = "Volume spike + price near upper Bollinger band"
            else:
                reasoning = "Volume spike away from band extremes"
        elif snapshot.volume_ratio > cfg.elevated_volume_ratio:
            confidence = cfg.elevated_confidence
            reasoning = "Moderate volume increase"

        if futures:
            confidence = min(cfg.max_confidence, confidence * (1 + leverage * cfg.leverage_boost_per_unit))

        return StrategyResult(
            strategy_name=SignalStrategy.VOLUME_SPIKE.value,
            action=action,
            confidence=self._weighted(confidence, weight),
            reasoning=reasoning,
            weight=weight,
        )

    def evaluate(
        self,
        snapshot: MarketSnapshot,
        news: Iterable[NewsItem],
        bot: BotConfig,
    ) -> List[StrategyResult]:
        """Run every enabled strategy for one snapshot."""
        weights = bot.strategy_weights
        results = []

        if bot.enable_rsi_macd:
            results.append(self.rsi_macd(
                snapshot,
                weights.get(SignalStrategy.RSI_MACD.value, 1.0),
                spot_only=not bot.is_futures,
            ))
        if bot.enable_news_sentiment:
            results.append(self.news_sentiment(
                snapshot,
                list(news),
                weights.get(SignalStrategy.NEWS_SENTIMENT.value, 1.0),
                fast_learning=bot.fast_learning,
            ))
        if bot.enable_volume_spike:
            results.append(self.volume_spike(
                snapshot,
                weights.get(SignalStrategy.VOLUME_SPIKE.value, 1.0),
                futures=bot.is_futures,
                leverage=bot.effective_leverage,
            ))

        return results

    def generate(
        self,
        snapshot: MarketSnapshot,
        news: Iterable[NewsItem],
        bot: BotConfig,
    ) -> CombinedSignal:
        """Evaluate and blend in one step."""
        signal = combine_strategy_results(
            self.evaluate(snapshot, news, bot),
            self.config.min_aggregate,
            self.config.max_confidence,
        )
        self.logger.debug(
            f"{snapshot.symbol} combined signal: {signal.action.value} "
            f"{signal.confidence:.2f} (best {signal.best_strategy})"
        )
        return signal


@dataclass
class StrategyPerformance:
    """Running outcome statistics for one signal strategy."""
    name: str
    total_trades: int = 0
    winning_trades: int = 0
    total_pnl: float = 0.0
    win_rate: float = 0.0
    avg_trade_duration: float = 0.0   # seconds
    last_used: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "total_trades": self.total_trades,
            "winning_trades": self.winning_trades,
            "total_pnl": self.total_pnl,
            "win_rate": self.win_rate,
            "avg_trade_duration": self.avg_trade_duration,
            "last_used": self.last_used.isoformat() if self.last_used else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "StrategyPerformance":
        last_used = data.get("last_used")
        return cls(
            name=data["name"],
            total_trades=data.get("total_trades", 0),
            winning_trades=data.get("winning_trades", 0),
            total_pnl=data.get("total_pnl", 0.0),
            win_rate=data.get("win_rate", 0.0),
            avg_trade_duration=data.get("avg_trade_duration", 0.0),
            last_used=datetime.fromisoformat(last_used) if last_used else None,
        )


class StrategyPerformanceTracker:
    """
    Attributes closed-trade outcomes to the strategy that drove the entry.

    Persisted under STATE_KEY after every update.
    """

    STATE_KEY = "strategy_performance"

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        config: Optional[SignalConfig] = None,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.config = config or SignalConfig()
        self.logger = logger or logging.getLogger(__name__)
        self._clock = clock
        self._stats: Dict[str, StrategyPerformance] = {}
        self._init_strategies()
        self._load_state()

    def _init_strategies(self) -> None:
        for strategy in SignalStrategy:
            self._stats.setdefault(strategy.value, StrategyPerformance(name=strategy.value))

    def record_outcome(self, strategy_name: str, profit: float, duration_seconds: float) -> None:
        """Record one closed trade for a strategy. Unknown names are ignored."""
        perf = self._stats.get(strategy_name)
        if perf is None:
            self.logger.debug(f"No performance slot for strategy '{strategy_name}'")
            return

        perf.total_trades += 1
        perf.total_pnl += profit
        perf.last_used = self._clock()
        if profit > 0:
            perf.winning_trades += 1
        perf.win_rate = perf.winning_trades / perf.total_trades
        n = perf.total_trades
        perf.avg_trade_duration = (perf.avg_trade_duration * (n - 1) + duration_seconds) / n

        self._save_state()

    def best_performing(self) -> Optional[StrategyPerformance]:
        """Highest win_rate*0.6 + total_pnl/1000*0.4 among strategies with enough trades."""
        best = None
        best_score = float("-inf")
        for perf in self._stats.values():
            if perf.total_trades < self.config.min_trades_for_ranking:
                continue
            score = perf.win_rate * 0.6 + (perf.total_pnl / 1000) * 0.4
            if score > best_score:
                best, best_score = perf, score
        return best

    def get(self, strategy_name: str) -> Optional[StrategyPerformance]:
        return self._stats.get(strategy_name)

    def all(self) -> List[StrategyPerformance]:
        return list(self._stats.values())

    def reset(self) -> None:
        self._stats.clear()
        self._init_strategies()
        self._save_state()
        self.logger.info("Strategy performance reset")

    def _save_state(self) -> None:
        if self.store is None:
            return
        save_json(self.store, self.STATE_KEY, [p.to_dict() for p in self._stats.values()], self.logger)

    def _load_state(self) -> None:
        if self.store is None:
            return
        data = load_json(self.store, self.STATE_KEY, self.logger)
        if not data:
            return
        for entry in data:
            perf = StrategyPerformance.from_dict(entry)
            self._stats[perf.name] = perf
        self.logger.info(f"Loaded performance data for {len(self._stats)} strategies")
