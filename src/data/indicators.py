"""
Technical indicators for MarketSnapshot construction.

All functions take a price/volume history (oldest first) and return the
latest value only. Short histories degrade to neutral values instead of
raising.
"""

from datetime import datetime
from typing import Optional, Sequence

import numpy as np
import pandas as pd

from src.adaptive_trader.models import BollingerBands, EmaTrend, MarketSnapshot, utc_now


RSI_PERIOD = 14
BOLLINGER_PERIOD = 20
BOLLINGER_STD = 2.0
VOLUME_PERIOD = 20
EMA_TREND_THRESHOLD = 0.001   # Relative to EMA26


def calculate_rsi(prices: Sequence[float], period: int = RSI_PERIOD) -> float:
    """Simple-average RSI over the last `period` changes. 50 when history is short."""
    if len(prices) < period:
        return 50.0

    changes = np.diff(np.asarray(prices, dtype=float))[-period:]
    avg_gain = np.clip(changes, 0, None).sum() / period
    avg_loss = -np.clip(changes, None, 0).sum() / period

    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return float(100 - 100 / (1 + rs))


def calculate_ema(prices: Sequence[float], period: int) -> float:
    """EMA seeded with the first price. Last price when history is short."""
    if len(prices) == 0:
        return 0.0
    if len(prices) < period:
        return float(prices[-1])
    series = pd.Series(prices, dtype=float)
    return float(series.ewm(span=period, adjust=False).mean().iloc[-1])


def calculate_macd(prices: Sequence[float]) -> float:
    """EMA12 - EMA26. 0 when history is short."""
    if len(prices) < 26:
        return 0.0
    return calculate_ema(prices, 12) - calculate_ema(prices, 26)


def calculate_ema_trend(ema12: float, ema26: float) -> EmaTrend:
    threshold = ema26 * EMA_TREND_THRESHOLD
    diff = ema12 - ema26
    if diff > threshold:
        return EmaTrend.BULLISH
    if diff < -threshold:
        return EmaTrend.BEARISH
    return EmaTrend.NEUTRAL


def calculate_volume_ratio(volumes: Sequence[float], period: int = VOLUME_PERIOD) -> float:
    """Latest volume over the trailing mean. 1 when history is short."""
    if len(volumes) < period:
        return 1.0
    avg = float(np.mean(np.asarray(volumes[-period:], dtype=float)))
    return float(volumes[-1]) / avg if avg > 0 else 1.0


def calculate_bollinger(
    prices: Sequence[float],
    period: int = BOLLINGER_PERIOD,
    num_std: float = BOLLINGER_STD,
) -> BollingerBands:
    """Population-std bands. Collapsed onto the last price when history is short."""
    if len(prices) < period:
        last = float(prices[-1]) if len(prices) else 0.0
        return BollingerBands(upper=last, middle=last, lower=last)

    window = np.asarray(prices[-period:], dtype=float)
    sma = float(window.mean())
    std = float(window.std())
    return BollingerBands(upper=sma + num_std * std, middle=sma, lower=sma - num_std * std)


def build_snapshot(
    symbol: str,
    closes: Sequence[float],
    volumes: Sequence[float],
    price: Optional[float] = None,
    volume: Optional[float] = None,
    timestamp: Optional[datetime] = None,
) -> MarketSnapshot:
    """Compute every indicator and assemble a snapshot."""
    if len(closes) == 0:
        raise ValueError(f"No price history for {symbol}")

    ema12 = calculate_ema(closes, 12)
    ema26 = calculate_ema(closes, 26)
    return MarketSnapshot(
        symbol=symbol,
        price=float(price if price is not None else closes[-1]),
        timestamp=timestamp or utc_now(),
        volume=float(volume if volume is not None else (volumes[-1] if len(volumes) else 0.0)),
        rsi=calculate_rsi(closes),
        macd=calculate_macd(closes),
        ema12=ema12,
        ema26=ema26,
        ema_trend=calculate_ema_trend(ema12, ema26),
        volume_ratio=calculate_volume_ratio(volumes),
        bollinger=calculate_bollinger(closes),
    )
