"""
Collaborator interfaces for market data and news.

Concrete implementations live in src.data.
"""

from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

import pandas as pd

from .models import MarketSnapshot, NewsItem


SnapshotCallback = Callable[[MarketSnapshot], None]


class MarketDataProvider(ABC):
    """Source of indicator snapshots. Polled via get_snapshot or pushed to subscribers."""

    def __init__(self):
        self._subscribers: Dict[str, List[SnapshotCallback]] = {}

    def subscribe(self, symbol: str, callback: SnapshotCallback) -> None:
        """Invoke callback with every fresh snapshot for symbol."""
        self._subscribers.setdefault(symbol, []).append(callback)

    def unsubscribe(self, symbol: str) -> None:
        self._subscribers.pop(symbol, None)

    def _publish(self, snapshot: MarketSnapshot) -> None:
        for callback in self._subscribers.get(snapshot.symbol, []):
            callback(snapshot)

    @abstractmethod
    def get_snapshot(self, symbol: str) -> Optional[MarketSnapshot]:
        """Latest snapshot, or None when the symbol has no data."""

    @abstractmethod
    def get_history(self, symbol: str, limit: int = 500) -> pd.DataFrame:
        """OHLCV bars indexed by time, oldest first."""


class NewsProvider(ABC):
    """Source of recent headlines."""

    @abstractmethod
    def fetch_news(self) -> List[NewsItem]:
        pass
