"""Data module - market data, news and indicators."""

from src.data.indicators import build_snapshot
from src.data.market_data import (
    MarketDataProvider,
    RestMarketDataProvider,
    SimulatedMarketDataProvider,
    snapshots_from_frame,
)
from src.data.news_provider import NewsProvider, RestNewsProvider, StaticNewsProvider

__all__ = [
    'build_snapshot',
    'MarketDataProvider',
    'RestMarketDataProvider',
    'SimulatedMarketDataProvider',
    'snapshots_from_frame',
    'NewsProvider',
    'RestNewsProvider',
    'StaticNewsProvider',
]
