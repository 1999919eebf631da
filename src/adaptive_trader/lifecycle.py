"""
Position Lifecycle State Machine

One lifecycle per symbol:

    NONE -> OPEN -> MONITORED -> (SCALED)* -> CLOSED -> NONE

Rules:
    - A symbol holds at most one open position
    - Invalid transitions raise InvalidTransitionError
    - All transitions are logged
"""

import logging
from enum import Enum
from typing import Dict, Optional, Set

from .exceptions import InvalidTransitionError


class LifecycleState(Enum):
    NONE = "NONE"
    OPEN = "OPEN"
    MONITORED = "MONITORED"
    SCALED = "SCALED"
    CLOSED = "CLOSED"


VALID_TRANSITIONS: Dict[LifecycleState, Set[LifecycleState]] = {
    LifecycleState.NONE: {LifecycleState.OPEN},
    LifecycleState.OPEN: {LifecycleState.MONITORED, LifecycleState.CLOSED},
    LifecycleState.MONITORED: {LifecycleState.SCALED, LifecycleState.CLOSED},
    LifecycleState.SCALED: {LifecycleState.SCALED, LifecycleState.CLOSED},
    LifecycleState.CLOSED: {LifecycleState.NONE},
}

# States in which the symbol holds a live position
ACTIVE_STATES = (LifecycleState.OPEN, LifecycleState.MONITORED, LifecycleState.SCALED)


class PositionLifecycle:
    """Per-symbol lifecycle tracker."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self._states: Dict[str, LifecycleState] = {}

    def state(self, symbol: str) -> LifecycleState:
        return self._states.get(symbol, LifecycleState.NONE)

    def is_active(self, symbol: str) -> bool:
        return self.state(symbol) in ACTIVE_STATES

    def can_transition(self, symbol: str, target: LifecycleState) -> bool:
        return target in VALID_TRANSITIONS[self.state(symbol)]

    def transition(self, symbol: str, target: LifecycleState) -> None:
        current = self.state(symbol)
        if target not in VALID_TRANSITIONS[current]:
            raise InvalidTransitionError(symbol, current.value, target.value)
        if target is LifecycleState.NONE:
            self._states.pop(symbol, None)
        else:
            self._states[symbol] = target
        self.logger.debug(f"{symbol} lifecycle {current.value} -> {target.value}")

    def close(self, symbol: str) -> None:
        """Active -> CLOSED -> NONE."""
        self.transition(symbol, LifecycleState.CLOSED)
        self.transition(symbol, LifecycleState.NONE)

    def restore(self, symbol: str, state: LifecycleState) -> None:
        """Adopt a state without validation, used when reloading open positions."""
        self._states[symbol] = state

    def clear(self) -> None:
        self._states.clear()

    def summary(self) -> Dict[str, str]:
        return {symbol: state.value for symbol, state in self._states.items()}
