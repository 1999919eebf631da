"""
Position Scaling / Trailing-Stop Engine

One ScalingState per open position, created with the position and
dropped when it closes.

RULES:
- pnl fraction is measured against leveraged notional (size * entry * leverage)
- Scale-in:  fraction > +2%   and fewer than 3 scale-ins  -> +50% of original size
- Scale-out: fraction < -1.5% and fewer than 2 scale-outs -> -30% of current size
- Trailing stop: once fraction > +1%, stop trails 2% behind the high-water mark
- The stop only ratchets in the position's favour, never loosens

PRIORITY ORDER (one outcome per tick):
1. Trailing stop crossed -> CLOSE
2. Scale-in
3. Scale-out

evaluate() only proposes a scale. Counters and current size move in
commit(), once the order has filled.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from .config import ScalingConfig
from .models import Position, PositionSide


class ScalingAction(Enum):
    NONE = "NONE"
    SCALE_IN = "SCALE_IN"
    SCALE_OUT = "SCALE_OUT"
    CLOSE = "CLOSE"


@dataclass
class ScalingState:
    """Per-position scaling bookkeeping."""
    side: PositionSide
    original_size: float
    current_size: float
    high_water_mark: float
    scale_in_count: int = 0
    scale_out_count: int = 0
    trailing_stop_price: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "side": self.side.value,
            "original_size": self.original_size,
            "current_size": self.current_size,
            "high_water_mark": self.high_water_mark,
            "scale_in_count": self.scale_in_count,
            "scale_out_count": self.scale_out_count,
            "trailing_stop_price": self.trailing_stop_price,
        }


@dataclass(frozen=True)
class ScalingDecision:
    """Outcome of one evaluation tick."""
    action: ScalingAction
    reason: str
    pnl_fraction: float = 0.0
    size_delta: float = 0.0
    new_size: Optional[float] = None
    trailing_stop_price: Optional[float] = None

    @property
    def should_scale_in(self) -> bool:
        return self.action is ScalingAction.SCALE_IN

    @property
    def should_scale_out(self) -> bool:
        return self.action is ScalingAction.SCALE_OUT

    @property
    def should_close(self) -> bool:
        return self.action is ScalingAction.CLOSE

    def to_dict(self) -> dict:
        return {
            "action": self.action.value,
            "reason": self.reason,
            "pnl_fraction": self.pnl_fraction,
            "size_delta": self.size_delta,
            "new_size": self.new_size,
            "trailing_stop_price": self.trailing_stop_price,
        }


class ScalingEngine:
    """Evaluates scale-in, scale-out and trailing stops for open positions."""

    def __init__(self, config: Optional[ScalingConfig] = None, logger: Optional[logging.Logger] = None):
        self.config = config or ScalingConfig()
        self.logger = logger or logging.getLogger(__name__)
        self._states: Dict[str, ScalingState] = {}

    def initialize(self, position: Position) -> ScalingState:
        """Create scaling state alongside a new position."""
        state = ScalingState(
            side=position.side,
            original_size=position.size,
            current_size=position.size,
            high_water_mark=position.current_price,
        )
        self._states[position.id] = state
        return state

    def get_state(self, position_id: str) -> Optional[ScalingState]:
        return self._states.get(position_id)

    def remove(self, position_id: str) -> None:
        self._states.pop(position_id, None)

    def clear(self) -> None:
        self._states.clear()

    @staticmethod
    def pnl_fraction(position: Position) -> float:
        """Leveraged pnl relative to leveraged notional exposure."""
        notional = position.notional
        if notional <= 0:
            return 0.0
        return position.pnl / notional

    def evaluate(self, position: Position) -> ScalingDecision:
        """
        Evaluate one tick for a position.

        Mutates the high-water mark and trailing stop only. Scale proposals
        are sized from the live position and applied by commit().
        """
        cfg = self.config

        if not cfg.enable_auto_rebalance and not cfg.enable_trailing_stop:
            return ScalingDecision(
                action=ScalingAction.NONE,
                reason="Auto-rebalance and trailing stop disabled",
            )

        state = self._states.get(position.id)
        if state is None:
            self.initialize(position)
            return ScalingDecision(action=ScalingAction.NONE, reason="Position initialized")

        state.current_size = position.size
        price = position.current_price
        if position.side is PositionSide.LONG:
            state.high_water_mark = max(state.high_water_mark, price)
        else:
            state.high_water_mark = min(state.high_water_mark, price)

        fraction = self.pnl_fraction(position)

        # Priority 1: trailing stop
        if cfg.enable_trailing_stop:
            self._update_trailing_stop(state, fraction)
            if self._stop_crossed(state, price):
                self.logger.info(
                    f"{position.symbol} trailing stop hit at {price:.6f} "
                    f"(stop {state.trailing_stop_price:.6f})"
                )
                return ScalingDecision(
                    action=ScalingAction.CLOSE,
                    reason=f"Trailing stop hit at {state.trailing_stop_price:.6f}",
                    pnl_fraction=fraction,
                    trailing_stop_price=state.trailing_stop_price,
                )

        # Priority 2/3: scale-in or scale-out, never both
        if cfg.enable_auto_rebalance:
            if fraction > cfg.scale_in_threshold and state.scale_in_count < cfg.max_scale_ins:
                delta = state.original_size * cfg.scale_in_fraction
                return ScalingDecision(
                    action=ScalingAction.SCALE_IN,
                    reason=(
                        f"Profit {fraction:.2%} above {cfg.scale_in_threshold:.2%}, "
                        f"scale-in {state.scale_in_count + 1}/{cfg.max_scale_ins}"
                    ),
                    pnl_fraction=fraction,
                    size_delta=delta,
                    new_size=position.size + delta,
                    trailing_stop_price=state.trailing_stop_price,
                )
            elif fraction < cfg.scale_out_threshold and state.scale_out_count < cfg.max_scale_outs:
                delta = position.size * cfg.scale_out_fraction
                return ScalingDecision(
                    action=ScalingAction.SCALE_OUT,
                    reason=(
                        f"Loss {fraction:.2%} below {cfg.scale_out_threshold:.2%}, "
                        f"scale-out {state.scale_out_count + 1}/{cfg.max_scale_outs}"
                    ),
                    pnl_fraction=fraction,
                    size_delta=-delta,
                    new_size=position.size - delta,
                    trailing_stop_price=state.trailing_stop_price,
                )

        return ScalingDecision(
            action=ScalingAction.NONE,
            reason="No scaling conditions met",
            pnl_fraction=fraction,
            trailing_stop_price=state.trailing_stop_price,
        )

    def commit(self, position_id: str, decision: ScalingDecision, filled_qty: float) -> Optional[ScalingState]:
        """Record a filled scale-in or scale-out against the position's state."""
        state = self._states.get(position_id)
        if state is None or filled_qty <= 0:
            return state

        if decision.should_scale_in:
            state.current_size += filled_qty
            state.scale_in_count += 1
        elif decision.should_scale_out:
            state.current_size = max(state.current_size - filled_qty, 0.0)
            state.scale_out_count += 1
        return state

    def _update_trailing_stop(self, state: ScalingState, fraction: float) -> None:
        """Ratchet the stop in the favourable direction only."""
        if fraction <= self.config.trailing_activation:
            return

        distance = self.config.trailing_stop_distance
        if state.side is PositionSide.LONG:
            candidate = state.high_water_mark * (1 - distance)
            if state.trailing_stop_price is None or candidate > state.trailing_stop_price:
                state.trailing_stop_price = candidate
        else:
            candidate = state.high_water_mark * (1 + distance)
            if state.trailing_stop_price is None or candidate < state.trailing_stop_price:
                state.trailing_stop_price = candidate

    @staticmethod
    def _stop_crossed(state: ScalingState, price: float) -> bool:
        stop = state.trailing_stop_price
        if stop is None:
            return False
        if state.side is PositionSide.LONG:
            return price <= stop
        return price >= stop

    def get_summary(self) -> dict:
        return {position_id: state.to_dict() for position_id, state in self._states.items()}
