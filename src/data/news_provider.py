"""
News Providers

Headlines with a precomputed sentiment label and coin tags.

RestNewsProvider fetches at most once per interval (6h by default) and
serves the cached batch otherwise. Rate limiting (HTTP 429) and request
failures also fall back to the cache.
"""

import logging
import time
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Tuple

import pandas as pd
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from src.adaptive_trader.models import NewsItem, Sentiment, utc_now
from src.adaptive_trader.providers import NewsProvider


logger = logging.getLogger(__name__)

BULLISH_WORDS = ("surge", "rise", "bull", "positive", "growth", "adoption", "upgrade")
BEARISH_WORDS = ("drop", "fall", "bear", "negative", "decline", "crash", "regulation")

TRACKED_COINS = ("BTC", "ETH", "BNB", "ADA", "SOL", "DOT", "LINK", "MATIC", "AVAX", "UNI", "LTC")
COIN_NAMES = {"BITCOIN": "BTC", "ETHEREUM": "ETH", "SOLANA": "SOL", "CARDANO": "ADA"}


def keyword_sentiment(text: str) -> Tuple[Sentiment, float]:
    """
    Keyword-count sentiment.

    Returns the label and a confidence in [0.5, 0.95].
    """
    lower = text.lower()
    bullish = sum(1 for word in BULLISH_WORDS if word in lower)
    bearish = sum(1 for word in BEARISH_WORDS if word in lower)

    if bullish > bearish:
        return Sentiment.POSITIVE, min(0.5 + bullish * 0.1, 0.95)
    if bearish > bullish:
        return Sentiment.NEGATIVE, min(0.5 + bearish * 0.1, 0.95)
    return Sentiment.NEUTRAL, 0.5


def extract_coins(text: str) -> Tuple[str, ...]:
    """Ticker and name mentions, deduplicated, in first-seen order."""
    upper = text.upper()
    found = [coin for coin in TRACKED_COINS if coin in upper]
    found.extend(ticker for name, ticker in COIN_NAMES.items() if name in upper)
    return tuple(dict.fromkeys(found))


class StaticNewsProvider(NewsProvider):
    """Fixed headline list; used in simulation and tests."""

    def __init__(self, items: Optional[Iterable[NewsItem]] = None):
        self.items = list(items or [])

    def fetch_news(self) -> List[NewsItem]:
        return list(self.items)


class RestNewsProvider(NewsProvider):
    """Headlines from a newsdata.io-compatible endpoint."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://newsdata.io/api/1/news",
        query: str = "bitcoin OR ethereum OR crypto",
        min_interval_seconds: float = 6 * 3600,
        request_timeout: float = 10.0,
        monotonic: Callable[[], float] = time.monotonic,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.query = query
        self.min_interval_seconds = min_interval_seconds
        self.request_timeout = request_timeout
        self._monotonic = monotonic
        self._clock = clock
        self._cached: List[NewsItem] = []
        self._last_fetch: Optional[float] = None
        self._session: Optional[requests.Session] = None

    @property
    def session(self) -> requests.Session:
        """Get or create HTTP session with retry logic."""
        if self._session is None:
            self._session = requests.Session()
            retry_strategy = Retry(
                total=2,
                backoff_factor=1.0,
                status_forcelist=[500, 502, 503, 504],
                allowed_methods=["GET"],
            )
            adapter = HTTPAdapter(max_retries=retry_strategy)
            self._session.mount("https://", adapter)
        return self._session

    def _due(self) -> bool:
        if self._last_fetch is None or not self._cached:
            return True
        return self._monotonic() - self._last_fetch >= self.min_interval_seconds

    def parse_item(self, raw: dict, index: int) -> NewsItem:
        title = raw.get("title") or "Untitled"
        content = raw.get("description") or title
        text = f"{title} {content}"
        sentiment, confidence = keyword_sentiment(text)

        published = pd.to_datetime(raw.get("pubDate"), utc=True, errors="coerce")
        timestamp = self._clock() if pd.isna(published) else published.to_pydatetime()

        return NewsItem(
            id=raw.get("link") or f"news-{index}",
            title=title,
            content=content,
            source=raw.get("source_id") or "Unknown",
            timestamp=timestamp,
            sentiment=sentiment,
            impact=round(confidence * 10, 2),
            coins=extract_coins(text),
        )

    def fetch_news(self) -> List[NewsItem]:
        if not self._due():
            logger.debug("Using cached news")
            return list(self._cached)

        params = {"apikey": self.api_key, "q": self.query, "language": "en", "category": "business"}
        try:
            response = self.session.get(self.base_url, params=params, timeout=self.request_timeout)
            if response.status_code == 429:
                logger.warning("News rate limit reached, using cached news")
                return list(self._cached)
            response.raise_for_status()
            payload = response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"News fetch failed: {e}")
            return list(self._cached)
        except ValueError as e:
            logger.error(f"News payload is not JSON: {e}")
            return list(self._cached)

        results = payload.get("results") if isinstance(payload, dict) else None
        if not isinstance(results, list):
            logger.warning("Invalid news data received")
            return list(self._cached)

        self._cached = [self.parse_item(raw, i) for i, raw in enumerate(results)]
        self._last_fetch = self._monotonic()
        logger.info(f"Fetched {len(self._cached)} news items")
        return list(self._cached)
