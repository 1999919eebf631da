"""
Execution Engine - Order Submission

Routes orders to the simulated venue or a live venue and enforces
order validity before anything leaves the process.

RULES:
- Quantity is floored to the symbol's step size
- Quantity below the symbol minimum -> rejected
- Notional (quantity * price * leverage) below the minimum -> rejected
- Transient venue failures are retried with capped backoff
- Authorization failures are never retried
- REAL mode without credentials never places an order

Validation failures block one trade only; the cycle carries on.
"""

import itertools
import logging
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Optional

from .config import BotConfig, ExecutionConfig, TradingMode
from .exceptions import (
    AuthorizationError,
    ConfigurationError,
    OrderValidationError,
    TransientError,
)
from .models import OrderSide, OrderStatus, Trade, utc_now
from .throttling import retry_with_backoff


class OrderResult(Enum):
    """Order submission result."""
    SUCCESS = "SUCCESS"
    FAILED_VALIDATION = "FAILED_VALIDATION"
    FAILED_UNAVAILABLE = "FAILED_UNAVAILABLE"
    FAILED_UNAUTHORIZED = "FAILED_UNAUTHORIZED"
    FAILED_NOT_CONFIGURED = "FAILED_NOT_CONFIGURED"
    FAILED_REJECTED = "FAILED_REJECTED"


@dataclass(frozen=True)
class SymbolRules:
    """Exchange lot rules for one symbol."""
    min_qty: float
    step_size: float
    min_notional: float


@dataclass
class OrderExecution:
    """Order submission result details."""
    result: OrderResult
    symbol: str = ""
    side: Optional[OrderSide] = None
    quantity: float = 0.0
    price: float = 0.0
    trade: Optional[Trade] = None
    timestamp: datetime = None
    error_message: Optional[str] = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = utc_now()

    @property
    def is_success(self) -> bool:
        return self.result == OrderResult.SUCCESS

    def to_dict(self) -> dict:
        return {
            "result": self.result.value,
            "symbol": self.symbol,
            "side": self.side.value if self.side else None,
            "quantity": self.quantity,
            "price": self.price,
            "trade_id": self.trade.id if self.trade else None,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "error": self.error_message,
        }


def validate_order_quantity(
    symbol: str,
    quantity: float,
    price: float,
    rules: SymbolRules,
    leverage: float = 1,
) -> float:
    """
    Floor quantity to the step size and check exchange minimums.

    Returns the adjusted quantity or raises OrderValidationError.
    """
    if price <= 0:
        raise OrderValidationError(symbol, f"Invalid price {price}")
    if quantity <= 0:
        raise OrderValidationError(symbol, f"Invalid quantity {quantity}")

    steps = math.floor(quantity / rules.step_size + 1e-9)
    decimals = max(0, -int(math.floor(math.log10(rules.step_size)))) if rules.step_size < 1 else 0
    adjusted = round(steps * rules.step_size, decimals)

    if adjusted < rules.min_qty:
        raise OrderValidationError(
            symbol, f"Quantity {adjusted} below minimum {rules.min_qty}"
        )

    notional = adjusted * price * leverage
    if notional < rules.min_notional:
        raise OrderValidationError(
            symbol, f"Notional {notional:.2f} below minimum {rules.min_notional:.2f}"
        )

    return adjusted


class ExecutionVenue(ABC):
    """Where orders are filled."""

    @abstractmethod
    def place_order(
        self,
        symbol: str,
        side: OrderSide,
        quantity: float,
        price: Optional[float] = None,
    ) -> Trade:
        """Submit an order; raise TransientError / AuthorizationError on failure."""

    @abstractmethod
    def get_account_balance(self) -> float:
        """Free quote balance."""

    def get_symbol_rules(self, symbol: str) -> Optional[SymbolRules]:
        """Lot rules for symbol, or None to use defaults."""
        return None


class SimulatedVenue(ExecutionVenue):
    """
    Deterministic paper venue.

    Market orders fill immediately at the supplied price.
    """

    def __init__(
        self,
        balance: float = 10000.0,
        rules: Optional[Dict[str, SymbolRules]] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.balance = balance
        self.rules = rules or {}
        self._clock = clock
        self._ids = itertools.count(1)

    def place_order(
        self,
        symbol: str,
        side: OrderSide,
        quantity: float,
        price: Optional[float] = None,
    ) -> Trade:
        if price is None or price <= 0:
            raise OrderValidationError(symbol, "Simulated fills need a reference price")
        return Trade(
            id=f"SIM-{next(self._ids):06d}",
            symbol=symbol,
            side=side,
            quantity=quantity,
            price=price,
            status=OrderStatus.FILLED,
            timestamp=self._clock(),
        )

    def get_account_balance(self) -> float:
        return self.balance

    def get_symbol_rules(self, symbol: str) -> Optional[SymbolRules]:
        return self.rules.get(symbol)


class ExecutionEngine:
    """
    Order submission with validation, retries and mode routing.

    SIMULATION orders go to the simulated venue. REAL orders go to the
    injected live venue, and only when credentials are configured.
    """

    def __init__(
        self,
        config: Optional[ExecutionConfig] = None,
        bot: Optional[BotConfig] = None,
        simulated_venue: Optional[ExecutionVenue] = None,
        live_venue: Optional[ExecutionVenue] = None,
        has_credentials: bool = False,
        logger: Optional[logging.Logger] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config or ExecutionConfig()
        self.bot = bot or BotConfig()
        self.simulated_venue = simulated_venue or SimulatedVenue(self.bot.simulation_balance)
        self.live_venue = live_venue
        self.has_credentials = has_credentials
        self.logger = logger or logging.getLogger(__name__)
        self._sleep = sleep

    @property
    def is_simulation(self) -> bool:
        return self.bot.mode is TradingMode.SIMULATION

    @property
    def venue(self) -> ExecutionVenue:
        """Active venue. Raises ConfigurationError when REAL mode is not usable."""
        if self.is_simulation:
            return self.simulated_venue
        if not self.has_credentials:
            raise ConfigurationError("REAL mode requires API credentials")
        if self.live_venue is None:
            raise ConfigurationError("REAL mode requires a live execution venue")
        return self.live_venue

    def rules_for(self, symbol: str, venue: Optional[ExecutionVenue] = None) -> SymbolRules:
        """Venue lot rules for symbol, falling back to configured defaults."""
        cfg = self.config
        rules = venue.get_symbol_rules(symbol) if venue is not None else None
        return rules or SymbolRules(
            min_qty=cfg.default_min_qty,
            step_size=cfg.default_step_size,
            min_notional=cfg.default_min_notional,
        )

    def validate_order(self, symbol: str, quantity: float, price: float, leverage: float = 1) -> float:
        """Adjusted quantity for the active venue's rules. Raises OrderValidationError."""
        return validate_order_quantity(symbol, quantity, price, self.rules_for(symbol, self.venue), leverage)

    def get_account_balance(self) -> Optional[float]:
        try:
            return self.venue.get_account_balance()
        except ConfigurationError as e:
            self.logger.error(f"Balance unavailable: {e}")
            return None

    def submit_order(
        self,
        symbol: str,
        side: OrderSide,
        quantity: float,
        price: float,
        leverage: float = 1,
        reduce_only: bool = False,
    ) -> OrderExecution:
        """
        Validate and place one order.

        reduce_only orders close existing exposure and skip the minimum
        quantity and notional checks.
        """
        cfg = self.config

        try:
            venue = self.venue
        except ConfigurationError as e:
            self.logger.error(f"Refusing real order for {symbol}: {e}")
            return OrderExecution(
                result=OrderResult.FAILED_NOT_CONFIGURED,
                symbol=symbol, side=side, quantity=quantity, price=price,
                error_message=str(e),
            )

        try:
            if not reduce_only:
                quantity = validate_order_quantity(symbol, quantity, price, self.rules_for(symbol, venue), leverage)
            elif quantity <= 0 or price <= 0:
                raise OrderValidationError(symbol, f"Invalid close {quantity} @ {price}")
        except OrderValidationError as e:
            self.logger.warning(f"Order blocked: {e}")
            return OrderExecution(
                result=OrderResult.FAILED_VALIDATION,
                symbol=symbol, side=side, quantity=quantity, price=price,
                error_message=str(e),
            )

        try:
            trade = retry_with_backoff(
                lambda: venue.place_order(symbol, side, quantity, price),
                max_attempts=cfg.max_order_retries,
                base_delay=cfg.retry_base_delay,
                max_delay=cfg.retry_max_delay,
                sleep=self._sleep,
                log=self.logger,
            )
        except AuthorizationError as e:
            self.logger.critical(f"Venue rejected credentials: {e}")
            return OrderExecution(
                result=OrderResult.FAILED_UNAUTHORIZED,
                symbol=symbol, side=side, quantity=quantity, price=price,
                error_message=str(e),
            )
        except TransientError as e:
            return OrderExecution(
                result=OrderResult.FAILED_UNAVAILABLE,
                symbol=symbol, side=side, quantity=quantity, price=price,
                error_message=str(e),
            )
        except OrderValidationError as e:
            self.logger.warning(f"Order rejected by venue: {e}")
            return OrderExecution(
                result=OrderResult.FAILED_VALIDATION,
                symbol=symbol, side=side, quantity=quantity, price=price,
                error_message=str(e),
            )

        if trade.status is OrderStatus.CANCELLED:
            return OrderExecution(
                result=OrderResult.FAILED_REJECTED,
                symbol=symbol, side=side, quantity=quantity, price=price,
                trade=trade, error_message="Order cancelled by venue",
            )

        mode = "SIM" if self.is_simulation else "LIVE"
        self.logger.info(f"{mode} {side.value} {trade.quantity} {symbol} @ {trade.price:.6f} ({trade.id})")
        return OrderExecution(
            result=OrderResult.SUCCESS,
            symbol=symbol,
            side=side,
            quantity=trade.quantity,
            price=trade.price,
            trade=trade,
        )
