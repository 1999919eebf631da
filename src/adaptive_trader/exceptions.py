"""
Adaptive Trader - Exception Hierarchy

Every error raised by the decision engine derives from TradingError.

HANDLING RULES:
- OrderValidationError  -> block that single trade, log, continue the cycle
- TransientError        -> retried with capped backoff, then symbol skipped
- AuthorizationError    -> never retried, propagates immediately
- ConfigurationError    -> real orders refused, simulation unaffected
- UnparseableAdvice     -> advisory opinion treated as "no opinion"
- InvalidTransitionError -> programming error in the position lifecycle
"""

from typing import Optional


class TradingError(Exception):
    """Base class for all engine errors."""
    pass


class OrderValidationError(TradingError):
    """Order rejected before reaching the venue (quantity, notional, symbol)."""

    def __init__(self, symbol: str, message: str):
        self.symbol = symbol
        super().__init__(f"{symbol}: {message}")


class TransientError(TradingError):
    """Network or venue failure that may succeed on retry."""
    pass


class AuthorizationError(TradingError):
    """Credentials rejected by the venue. Never retried."""
    pass


class ConfigurationError(TradingError):
    """Configuration makes the requested operation impossible."""
    pass


class UnparseableAdvice(TradingError):
    """Advisory service returned text that could not be interpreted."""

    def __init__(self, raw_text: Optional[str], message: str = "Unparseable advisory response"):
        self.raw_text = raw_text
        super().__init__(message)


class InvalidTransitionError(TradingError):
    """Position lifecycle transition not allowed."""

    def __init__(self, symbol: str, from_state: str, to_state: str):
        self.symbol = symbol
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"Invalid lifecycle transition for {symbol}: {from_state} -> {to_state}"
        )
