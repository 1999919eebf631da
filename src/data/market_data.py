"""
Market Data Providers

Supply MarketSnapshots to the orchestrator:
- RestMarketDataProvider:      Binance-compatible REST (klines + 24h ticker)
- SimulatedMarketDataProvider: seeded random walk for paper runs and replay

Requests are throttled per symbol; inside the window the last snapshot
is returned.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

import numpy as np
import pandas as pd
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from src.adaptive_trader.exceptions import AuthorizationError, TransientError
from src.adaptive_trader.models import MarketSnapshot, utc_now
from src.adaptive_trader.providers import MarketDataProvider
from src.adaptive_trader.throttling import KeyedThrottle
from src.data.indicators import build_snapshot


logger = logging.getLogger(__name__)

HISTORY_BARS = 50


def klines_to_frame(klines: List[list]) -> pd.DataFrame:
    """Binance kline rows -> OHLCV DataFrame."""
    if not klines:
        return pd.DataFrame(columns=["open", "high", "low", "close", "volume"])

    df = pd.DataFrame(
        [row[:6] for row in klines],
        columns=["time", "open", "high", "low", "close", "volume"],
    )
    df["time"] = pd.to_datetime(df["time"], unit="ms", utc=True)
    for col in ("open", "high", "low", "close", "volume"):
        df[col] = df[col].astype(float)
    df.set_index("time", inplace=True)
    df.sort_index(inplace=True)
    return df


class RestMarketDataProvider(MarketDataProvider):
    """
    Public market data over REST.

    HTTP 401/403 -> AuthorizationError, other request failures -> TransientError.
    """

    def __init__(
        self,
        base_url: str = "https://api.binance.com",
        interval: str = "1m",
        min_interval_seconds: float = 5.0,
        request_timeout: float = 10.0,
        max_retries: int = 3,
        clock: Callable[[], datetime] = utc_now,
    ):
        super().__init__()
        self.base_url = base_url.rstrip("/")
        self.interval = interval
        self.request_timeout = request_timeout
        self.max_retries = max_retries
        self.throttle = KeyedThrottle(min_interval_seconds)
        self._clock = clock
        self._session: Optional[requests.Session] = None

    @property
    def session(self) -> requests.Session:
        """Get or create HTTP session with retry logic."""
        if self._session is None:
            self._session = requests.Session()
            retry_strategy = Retry(
                total=self.max_retries,
                backoff_factor=1.0,
                status_forcelist=[429, 500, 502, 503, 504],
                allowed_methods=["GET"],
            )
            adapter = HTTPAdapter(max_retries=retry_strategy)
            self._session.mount("https://", adapter)
            self._session.mount("http://", adapter)
        return self._session

    def _get(self, endpoint: str, params: Dict) -> object:
        url = f"{self.base_url}{endpoint}"
        try:
            response = self.session.get(url, params=params, timeout=self.request_timeout)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            logger.error(f"HTTP Error: {status} on {endpoint}")
            if status in (401, 403):
                raise AuthorizationError(f"Market data forbidden: {status}") from e
            raise TransientError(f"HTTP {status} on {endpoint}") from e
        except requests.exceptions.ConnectionError as e:
            logger.error(f"Connection Error: {e}")
            raise TransientError(str(e)) from e
        except requests.exceptions.Timeout as e:
            logger.error(f"Timeout Error: {e}")
            raise TransientError(str(e)) from e
        except ValueError as e:
            raise TransientError(f"Invalid JSON from {endpoint}: {e}") from e

    def get_history(self, symbol: str, limit: int = 500) -> pd.DataFrame:
        klines = self._get("/api/v3/klines", {"symbol": symbol, "interval": self.interval, "limit": limit})
        return klines_to_frame(klines)

    def _fetch_snapshot(self, symbol: str) -> Optional[MarketSnapshot]:
        bars = self.get_history(symbol, HISTORY_BARS)
        if bars.empty:
            logger.warning(f"No klines for {symbol}")
            return None
        ticker = self._get("/api/v3/ticker/24hr", {"symbol": symbol})
        snapshot = build_snapshot(
            symbol,
            bars["close"].tolist(),
            bars["volume"].tolist(),
            price=float(ticker["lastPrice"]),
            volume=float(ticker["volume"]),
            timestamp=self._clock(),
        )
        self._publish(snapshot)
        return snapshot

    def get_snapshot(self, symbol: str) -> Optional[MarketSnapshot]:
        return self.throttle.call(symbol, lambda: self._fetch_snapshot(symbol))


class SimulatedMarketDataProvider(MarketDataProvider):
    """
    Geometric random walk per symbol.

    Deterministic for a given seed. Each get_snapshot() call advances the
    walk by one bar.
    """

    DEFAULT_PRICES = {"BTCUSDT": 65000.0, "ETHUSDT": 3200.0, "BNBUSDT": 580.0}

    def __init__(
        self,
        seed: int = 42,
        volatility: float = 0.004,
        start_prices: Optional[Dict[str, float]] = None,
        bar_interval: timedelta = timedelta(minutes=1),
        clock: Callable[[], datetime] = utc_now,
    ):
        super().__init__()
        self.rng = np.random.default_rng(seed)
        self.volatility = volatility
        self.start_prices = dict(self.DEFAULT_PRICES, **(start_prices or {}))
        self.bar_interval = bar_interval
        self._clock = clock
        self._closes: Dict[str, List[float]] = {}
        self._volumes: Dict[str, List[float]] = {}

    def _seed_symbol(self, symbol: str) -> None:
        price = self.start_prices.get(symbol, 100.0)
        closes, volumes = [], []
        for _ in range(HISTORY_BARS):
            price *= float(np.exp(self.rng.normal(0, self.volatility)))
            closes.append(price)
            volumes.append(float(self.rng.lognormal(3, 0.5)))
        self._closes[symbol] = closes
        self._volumes[symbol] = volumes

    def _advance(self, symbol: str) -> None:
        if symbol not in self._closes:
            self._seed_symbol(symbol)
        closes = self._closes[symbol]
        volumes = self._volumes[symbol]
        closes.append(closes[-1] * float(np.exp(self.rng.normal(0, self.volatility))))
        volumes.append(float(self.rng.lognormal(3, 0.5)))
        del closes[:-HISTORY_BARS * 2]
        del volumes[:-HISTORY_BARS * 2]

    def get_snapshot(self, symbol: str) -> Optional[MarketSnapshot]:
        self._advance(symbol)
        snapshot = build_snapshot(symbol, self._closes[symbol], self._volumes[symbol], timestamp=self._clock())
        self._publish(snapshot)
        return snapshot

    def get_history(self, symbol: str, limit: int = 500) -> pd.DataFrame:
        """Fresh random-walk bars ending now."""
        price = self.start_prices.get(symbol, 100.0)
        returns = self.rng.normal(0, self.volatility, limit)
        closes = price * np.exp(np.cumsum(returns))
        opens = np.concatenate([[price], closes[:-1]])
        spread = np.abs(self.rng.normal(0, self.volatility / 2, limit)) * closes
        end = self._clock()
        index = pd.date_range(end=end, periods=limit, freq=pd.Timedelta(self.bar_interval))
        return pd.DataFrame(
            {
                "open": opens,
                "high": np.maximum(opens, closes) + spread,
                "low": np.minimum(opens, closes) - spread,
                "close": closes,
                "volume": self.rng.lognormal(3, 0.5, limit),
            },
            index=index,
        )


def snapshots_from_frame(symbol: str, bars: pd.DataFrame, warmup: int = 26) -> List[MarketSnapshot]:
    """Rolling snapshots over a bar history, one per bar after warmup."""
    closes = bars["close"].tolist()
    volumes = bars["volume"].tolist()
    snapshots = []
    for i in range(max(warmup, 1), len(bars) + 1):
        window = slice(max(0, i - HISTORY_BARS), i)
        ts = bars.index[i - 1]
        timestamp = ts.to_pydatetime() if hasattr(ts, "to_pydatetime") else ts
        snapshots.append(build_snapshot(symbol, closes[window], volumes[window], timestamp=timestamp))
    return snapshots
