"""
Shared fixtures for the Adaptive Trader tests.
"""

import pytest
from datetime import datetime, timedelta, timezone

import sys
from pathlib import Path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src.adaptive_trader.advisory import AdvisoryClient
from src.adaptive_trader.learning import MarketContext
from src.adaptive_trader.models import (
    BollingerBands,
    EmaTrend,
    MarketSnapshot,
    OrderSide,
    OrderStatus,
    Position,
    PositionSide,
    Trade,
)
from src.adaptive_trader.persistence import MemoryStore


# 10:00 UTC on a Monday -> EUROPEAN session
START = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)


class FixedClock:
    """Injectable wall clock that only moves when told to."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


def build_test_snapshot(
    symbol="BTCUSDT",
    price=100.0,
    rsi=50.0,
    macd=0.0,
    ema_trend=EmaTrend.NEUTRAL,
    volume_ratio=1.0,
    bands=(101.0, 100.0, 99.0),
    timestamp=START,
    volume=1000.0,
):
    return MarketSnapshot(
        symbol=symbol,
        price=price,
        timestamp=timestamp,
        volume=volume,
        rsi=rsi,
        macd=macd,
        ema12=price,
        ema26=price,
        ema_trend=ema_trend,
        volume_ratio=volume_ratio,
        bollinger=BollingerBands(*bands) if bands else None,
    )


@pytest.fixture
def clock():
    """Clock fixed at 2024-01-15 10:00 UTC."""
    return FixedClock()


@pytest.fixture
def make_snapshot():
    """Factory for MarketSnapshots with neutral defaults."""
    return build_test_snapshot


@pytest.fixture
def store():
    return MemoryStore()


class CannedClient(AdvisoryClient):
    """Advisory client returning a fixed reply; .text may be swapped mid-test."""

    def __init__(self, text):
        self.text = text
        self.prompts = []

    def query(self, prompt):
        self.prompts.append(prompt)
        return self.text


def trade(symbol, side, price, when, quantity=1.0):
    return Trade(
        id=f"T-{symbol}-{when.isoformat()}",
        symbol=symbol,
        side=side,
        quantity=quantity,
        price=price,
        status=OrderStatus.FILLED,
        timestamp=when,
    )


def run_round_trip(recorder, idx, exit_price, rsi=25.0, symbol="BTCUSDT", hold_minutes=10):
    """Open and close one LONG 1 @ 100 through an OutcomeRecorder."""
    opened = START + timedelta(hours=idx)
    position = Position(
        id=f"pos{idx}",
        symbol=symbol,
        side=PositionSide.LONG,
        size=1.0,
        entry_price=100.0,
        current_price=100.0,
        timestamp=opened,
    )
    snapshot = build_test_snapshot(symbol=symbol, rsi=rsi, macd=0.002, timestamp=opened)
    recorder.record_open(
        trade(symbol, OrderSide.BUY, 100.0, opened),
        position,
        MarketContext(snapshot=snapshot, confidence=0.8, best_strategy="RSI_MACD"),
    )
    position.update_price(exit_price)
    recorder.record_close(
        position,
        trade(symbol, OrderSide.SELL, exit_price, opened + timedelta(minutes=hold_minutes)),
        "TAKE_PROFIT" if exit_price > 100 else "STOP_LOSS",
    )
    return position
