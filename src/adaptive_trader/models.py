"""
Core data model shared by every component.

Snapshots and trades are immutable once created. Positions are mutated
only by the orchestrator on each monitoring tick.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Tuple


def utc_now() -> datetime:
    """Default wall clock used by all components."""
    return datetime.now(timezone.utc)


class EmaTrend(Enum):
    """Direction of EMA12 relative to EMA26."""
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    NEUTRAL = "NEUTRAL"


class MarketRegime(Enum):
    """Classified market behavior bucket."""
    TRENDING_UP = "TRENDING_UP"
    TRENDING_DOWN = "TRENDING_DOWN"
    SIDEWAYS = "SIDEWAYS"
    UNCERTAIN = "UNCERTAIN"
    HIGH_VOLATILITY = "HIGH_VOLATILITY"


class TradingSession(Enum):
    """UTC trading session buckets."""
    ASIAN = "ASIAN"             # 00:00 - 06:00
    EUROPEAN = "EUROPEAN"       # 06:00 - 14:00
    AMERICAN = "AMERICAN"       # 14:00 - 22:00
    OVERNIGHT = "OVERNIGHT"     # 22:00 - 24:00


class BollingerPosition(Enum):
    """Where price sits within the Bollinger envelope."""
    UPPER = "UPPER"
    MIDDLE = "MIDDLE"
    LOWER = "LOWER"


class SignalAction(Enum):
    """Proposed action from a strategy."""
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class OrderSide(Enum):
    BUY = "BUY"
    SELL = "SELL"


class OrderStatus(Enum):
    FILLED = "FILLED"
    PENDING = "PENDING"
    CANCELLED = "CANCELLED"


class PositionSide(Enum):
    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def direction(self) -> int:
        return 1 if self is PositionSide.LONG else -1


class Sentiment(Enum):
    """Precomputed news sentiment label."""
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"

    @property
    def score(self) -> int:
        if self is Sentiment.POSITIVE:
            return 1
        if self is Sentiment.NEGATIVE:
            return -1
        return 0


@dataclass(frozen=True)
class BollingerBands:
    upper: float
    middle: float
    lower: float

    @property
    def width(self) -> float:
        """Band width relative to the middle band."""
        if self.middle <= 0:
            return 0.0
        return (self.upper - self.lower) / self.middle


@dataclass(frozen=True)
class MarketSnapshot:
    """Indicator snapshot for one symbol at one instant."""
    symbol: str
    price: float
    timestamp: datetime
    volume: float
    rsi: float
    macd: float
    ema12: float
    ema26: float
    ema_trend: EmaTrend
    volume_ratio: float
    bollinger: Optional[BollingerBands] = None

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "price": self.price,
            "timestamp": self.timestamp.isoformat(),
            "volume": self.volume,
            "rsi": self.rsi,
            "macd": self.macd,
            "ema12": self.ema12,
            "ema26": self.ema26,
            "ema_trend": self.ema_trend.value,
            "volume_ratio": self.volume_ratio,
            "bollinger": {
                "upper": self.bollinger.upper,
                "middle": self.bollinger.middle,
                "lower": self.bollinger.lower,
            } if self.bollinger else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MarketSnapshot":
        bands = data.get("bollinger")
        return cls(
            symbol=data["symbol"],
            price=data["price"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            volume=data["volume"],
            rsi=data["rsi"],
            macd=data["macd"],
            ema12=data["ema12"],
            ema26=data["ema26"],
            ema_trend=EmaTrend(data["ema_trend"]),
            volume_ratio=data["volume_ratio"],
            bollinger=BollingerBands(**bands) if bands else None,
        )


@dataclass(frozen=True)
class MarketCondition:
    """Classifier output. Derived, never stored."""
    type: MarketRegime
    confidence: float
    volatility: float
    volume_ratio: float
    time_of_day: TradingSession

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "confidence": self.confidence,
            "volatility": self.volatility,
            "volume_ratio": self.volume_ratio,
            "time_of_day": self.time_of_day.value,
        }


@dataclass(frozen=True)
class NewsItem:
    id: str
    title: str
    content: str
    source: str
    timestamp: datetime
    sentiment: Sentiment
    impact: float
    coins: Tuple[str, ...] = ()


@dataclass
class StrategyResult:
    """One strategy's opinion for one evaluation."""
    strategy_name: str
    action: SignalAction
    confidence: float
    reasoning: str
    weight: float = 1.0

    def to_dict(self) -> dict:
        return {
            "strategy_name": self.strategy_name,
            "action": self.action.value,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "weight": self.weight,
        }


@dataclass(frozen=True)
class Trade:
    """Immutable execution record."""
    id: str
    symbol: str
    side: OrderSide
    quantity: float
    price: float
    status: OrderStatus
    timestamp: datetime
    profit: Optional[float] = None

    @property
    def is_filled(self) -> bool:
        return self.status is OrderStatus.FILLED

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "side": self.side.value,
            "quantity": self.quantity,
            "price": self.price,
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
            "profit": self.profit,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Trade":
        return cls(
            id=data["id"],
            symbol=data["symbol"],
            side=OrderSide(data["side"]),
            quantity=data["quantity"],
            price=data["price"],
            status=OrderStatus(data["status"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            profit=data.get("profit"),
        )


@dataclass
class Position:
    """
    Open position. One per symbol.

    pnl is leveraged: (price - entry) * size * direction * leverage.
    pnl_percent is expressed in percent of the unleveraged entry notional.
    """
    id: str
    symbol: str
    side: PositionSide
    size: float
    entry_price: float
    current_price: float
    timestamp: datetime
    leverage: float = 1.0
    pnl: float = 0.0
    pnl_percent: float = 0.0

    @property
    def notional(self) -> float:
        """Leveraged notional exposure."""
        return self.size * self.entry_price * self.leverage

    def update_price(self, price: float) -> None:
        """Revalue at a new market price."""
        self.current_price = price
        self.pnl = (price - self.entry_price) * self.size * self.side.direction * self.leverage
        cost = self.entry_price * self.size
        self.pnl_percent = (self.pnl / cost) * 100 if cost > 0 else 0.0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "side": self.side.value,
            "size": self.size,
            "entry_price": self.entry_price,
            "current_price": self.current_price,
            "timestamp": self.timestamp.isoformat(),
            "leverage": self.leverage,
            "pnl": self.pnl,
            "pnl_percent": self.pnl_percent,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Position":
        return cls(
            id=data["id"],
            symbol=data["symbol"],
            side=PositionSide(data["side"]),
            size=data["size"],
            entry_price=data["entry_price"],
            current_price=data["current_price"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            leverage=data.get("leverage", 1.0),
            pnl=data.get("pnl", 0.0),
            pnl_percent=data.get("pnl_percent", 0.0),
        )


@dataclass
class Portfolio:
    total_value: float
    available_balance: float
    total_pnl: float = 0.0
    total_pnl_percent: float = 0.0
    positions: List[Position] = field(default_factory=list)
    trades: List[Trade] = field(default_factory=list)

    def position_for(self, symbol: str) -> Optional[Position]:
        for pos in self.positions:
            if pos.symbol == symbol:
                return pos
        return None

    def to_dict(self) -> dict:
        return {
            "total_value": self.total_value,
            "available_balance": self.available_balance,
            "total_pnl": self.total_pnl,
            "total_pnl_percent": self.total_pnl_percent,
            "positions": [p.to_dict() for p in self.positions],
            "trades": [t.to_dict() for t in self.trades],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Portfolio":
        return cls(
            total_value=data["total_value"],
            available_balance=data["available_balance"],
            total_pnl=data.get("total_pnl", 0.0),
            total_pnl_percent=data.get("total_pnl_percent", 0.0),
            positions=[Position.from_dict(p) for p in data.get("positions", [])],
            trades=[Trade.from_dict(t) for t in data.get("trades", [])],
        )


class StrategyArchetype(Enum):
    """The four fixed trading strategy archetypes."""
    TREND_FOLLOWING = "TREND_FOLLOWING"
    MEAN_REVERSION = "MEAN_REVERSION"
    SCALPING = "SCALPING"
    CONSERVATIVE = "CONSERVATIVE"


@dataclass(frozen=True)
class StrategyParameters:
    """Adjustable parameters of an archetype. Cloned per decision."""
    name: StrategyArchetype
    entry_threshold: float
    exit_threshold: float
    risk_multiplier: float
    max_positions: int
    preferred_timeframes: Tuple[str, ...]

    def to_dict(self) -> dict:
        return {
            "name": self.name.value,
            "entry_threshold": self.entry_threshold,
            "exit_threshold": self.exit_threshold,
            "risk_multiplier": self.risk_multiplier,
            "max_positions": self.max_positions,
            "preferred_timeframes": list(self.preferred_timeframes),
        }


ARCHETYPE_PARAMETERS = {
    StrategyArchetype.TREND_FOLLOWING: StrategyParameters(
        name=StrategyArchetype.TREND_FOLLOWING,
        entry_threshold=0.7,
        exit_threshold=0.3,
        risk_multiplier=1.2,
        max_positions=3,
        preferred_timeframes=("1h", "4h"),
    ),
    StrategyArchetype.MEAN_REVERSION: StrategyParameters(
        name=StrategyArchetype.MEAN_REVERSION,
        entry_threshold=0.6,
        exit_threshold=0.4,
        risk_multiplier=0.8,
        max_positions=5,
        preferred_timeframes=("15m", "1h"),
    ),
    StrategyArchetype.SCALPING: StrategyParameters(
        name=StrategyArchetype.SCALPING,
        entry_threshold=0.5,
        exit_threshold=0.3,
        risk_multiplier=0.6,
        max_positions=8,
        preferred_timeframes=("1m", "5m"),
    ),
    StrategyArchetype.CONSERVATIVE: StrategyParameters(
        name=StrategyArchetype.CONSERVATIVE,
        entry_threshold=0.8,
        exit_threshold=0.2,
        risk_multiplier=0.4,
        max_positions=2,
        preferred_timeframes=("4h", "1d"),
    ),
}
