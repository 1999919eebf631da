"""
Language-model advisory service.

Best-effort oracle: latent, unreliable, optional. Callers only ever see
a structured AdvisoryOpinion or "no opinion" (None); raw text never
leaves this module.

RESPONSE FORMATS:
- signal: "ACTION CONFIDENCE REASONING"  (ACTION in BUY/SELL/HOLD)
- exit:   "EXIT|HOLD CONFIDENCE REASON"
"""

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .exceptions import TradingError, TransientError, UnparseableAdvice
from .models import SignalAction


SIGNAL_ACTIONS = ("BUY", "SELL", "HOLD")
EXIT_ACTIONS = ("EXIT", "HOLD")


@dataclass(frozen=True)
class AdvisoryOpinion:
    """Parsed advisory answer."""
    action: str
    confidence: float
    reasoning: str

    @property
    def signal_action(self) -> SignalAction:
        return SignalAction(self.action)

    @property
    def wants_exit(self) -> bool:
        return self.action == "EXIT"

    def to_dict(self) -> dict:
        return {
            "action": self.action,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
        }


def parse_opinion(text: Optional[str], allowed_actions: tuple, default_reason: str = "AI analysis") -> AdvisoryOpinion:
    """
    Parse "ACTION CONFIDENCE REASONING".

    Raises UnparseableAdvice when the action is unknown or the confidence
    is missing or outside [0, 1].
    """
    if not text or not text.strip():
        raise UnparseableAdvice(text, "Empty advisory response")

    parts = text.strip().split()
    action = re.sub(r"[^A-Z]", "", parts[0].upper())
    if action not in allowed_actions:
        raise UnparseableAdvice(text, f"Unknown advisory action '{parts[0]}'")

    if len(parts) < 2:
        raise UnparseableAdvice(text, "Advisory confidence missing")
    try:
        confidence = float(parts[1].strip(",;:"))
    except ValueError:
        raise UnparseableAdvice(text, f"Advisory confidence '{parts[1]}' is not a number")
    if not 0.0 <= confidence <= 1.0:
        raise UnparseableAdvice(text, f"Advisory confidence {confidence} outside [0, 1]")

    reasoning = " ".join(parts[2:]) or default_reason
    return AdvisoryOpinion(action=action, confidence=confidence, reasoning=reasoning)


def parse_signal_advice(text: Optional[str]) -> AdvisoryOpinion:
    return parse_opinion(text, SIGNAL_ACTIONS)


def parse_exit_advice(text: Optional[str]) -> AdvisoryOpinion:
    return parse_opinion(text, EXIT_ACTIONS)


class AdvisoryClient(ABC):
    """Raw text oracle."""

    @abstractmethod
    def query(self, prompt: str) -> str:
        """Return free text; raise TradingError subclasses on failure."""


class OllamaAdvisoryClient(AdvisoryClient):
    """
    Client for a local Ollama-compatible /api/generate endpoint.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "llama3",
        request_timeout: float = 15.0,
        max_retries: int = 1,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.request_timeout = request_timeout
        self.max_retries = max_retries
        self._session: Optional[requests.Session] = None

    @property
    def session(self) -> requests.Session:
        """Get or create HTTP session with retry logic."""
        if self._session is None:
            self._session = requests.Session()
            retry_strategy = Retry(
                total=self.max_retries,
                backoff_factor=0.5,
                status_forcelist=[429, 500, 502, 503, 504],
                allowed_methods=["POST"],
            )
            adapter = HTTPAdapter(max_retries=retry_strategy)
            self._session.mount("https://", adapter)
            self._session.mount("http://", adapter)
            self._session.headers.update({"Content-Type": "application/json"})
        return self._session

    def query(self, prompt: str) -> str:
        try:
            response = self.session.post(
                f"{self.base_url}/api/generate",
                json={"model": self.model, "prompt": prompt, "stream": False},
                timeout=self.request_timeout,
            )
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.RequestException as e:
            raise TransientError(f"Advisory request failed: {e}") from e
        except ValueError as e:
            raise UnparseableAdvice(None, f"Advisory returned invalid JSON: {e}") from e

        text = data.get("response") if isinstance(data, dict) else None
        if not isinstance(text, str):
            raise UnparseableAdvice(None, "Advisory payload has no 'response' text")
        return text.strip()


class AdvisoryService:
    """
    Timeout-bounded, failure-tolerant wrapper around an AdvisoryClient.

    The blocking query runs in a worker thread; on timeout the result is
    abandoned and None is returned.
    """

    def __init__(
        self,
        client: Optional[AdvisoryClient],
        timeout_seconds: float = 15.0,
        logger: Optional[logging.Logger] = None,
    ):
        self.client = client
        self.timeout_seconds = timeout_seconds
        self.logger = logger or logging.getLogger(__name__)
        self.failures = 0

    @property
    def available(self) -> bool:
        return self.client is not None

    async def _ask(self, prompt: str, parser) -> Optional[AdvisoryOpinion]:
        if self.client is None:
            return None
        try:
            text = await asyncio.wait_for(
                asyncio.to_thread(self.client.query, prompt),
                timeout=self.timeout_seconds,
            )
            return parser(text)
        except asyncio.TimeoutError:
            self.failures += 1
            self.logger.warning(f"Advisory timed out after {self.timeout_seconds:.0f}s, no opinion")
        except UnparseableAdvice as e:
            self.failures += 1
            self.logger.info(f"Advisory response ignored: {e}")
        except TradingError as e:
            self.failures += 1
            self.logger.warning(f"Advisory unavailable: {e}")
        return None

    async def advise_signal(self, prompt: str) -> Optional[AdvisoryOpinion]:
        return await self._ask(prompt, parse_signal_advice)

    async def advise_exit(self, prompt: str) -> Optional[AdvisoryOpinion]:
        return await self._ask(prompt, parse_exit_advice)
