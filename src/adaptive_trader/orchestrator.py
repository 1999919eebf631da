"""
Adaptive Trading Orchestrator

Owns the portfolio and the per-symbol position lifecycle and sequences
every component once per cycle.

CYCLE ORDER (exits always before entries):
1. Revalue open positions from fresh snapshots
2. Per open position, first matching exit wins:
   a. Fixed stop-loss / take-profit (percent of entry notional)
   b. Trailing stop (scaling engine)
   c. Learning/advisory exit, only above 0.7 confidence
   otherwise apply the scaling engine's scale-in / scale-out
3. Entries for symbols without a position while under the position cap:
   snapshot -> blended signal -> advisory enhancement -> risk gate -> order
4. Every close feeds Pattern Memory, Risk Engine, strategy tracker and
   outcome recorders before the next cycle starts

SAFETY: defaults to SIMULATION. REAL mode without credentials never
places an order.
"""

import asyncio
import logging
import uuid
from dataclasses import replace
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional

from .advisory import AdvisoryService
from .config import SystemConfig, TradingMode
from .exceptions import TradingError
from .execution_engine import ExecutionEngine, SimulatedVenue
from .learning import LearningRecorder, MarketContext, OutcomeRecorder
from .lifecycle import LifecycleState, PositionLifecycle
from .logging_module import RiskLogger, TradeLogger
from .market_condition import MarketConditionClassifier
from .models import (
    MarketSnapshot,
    NewsItem,
    OrderSide,
    Portfolio,
    Position,
    PositionSide,
    SignalAction,
    Trade,
    utc_now,
)
from .pattern_memory import PatternMemory
from .persistence import KeyValueStore, MemoryStore, load_json, save_json
from .providers import MarketDataProvider, NewsProvider
from .risk_engine import RiskEngine
from .scaling_engine import ScalingDecision, ScalingEngine
from .signal_engine import (
    CombinedSignal,
    SignalCombiner,
    StrategyPerformanceTracker,
    combine_strategy_results,
)
from .throttling import OperationGuard


class ExitReason(str, Enum):
    STOP_LOSS = "STOP_LOSS"
    TAKE_PROFIT = "TAKE_PROFIT"
    TRAILING_STOP = "TRAILING_STOP"
    LEARNING_EXIT = "LEARNING_EXIT"
    MANUAL_CLOSE = "MANUAL_CLOSE"
    EMERGENCY = "EMERGENCY_CLOSE"


AI_EXIT_MIN_CONFIDENCE = 0.7


class TradingOrchestrator:
    """
    Adaptive trading orchestrator.

    All collaborators are injected; anything omitted gets a simulation
    default so the orchestrator can run standalone.
    """

    PORTFOLIO_KEY = "portfolio"

    def __init__(
        self,
        market_data: MarketDataProvider,
        config: Optional[SystemConfig] = None,
        news: Optional[NewsProvider] = None,
        store: Optional[KeyValueStore] = None,
        execution: Optional[ExecutionEngine] = None,
        advisory: Optional[AdvisoryService] = None,
        recorder: Optional[OutcomeRecorder] = None,
        trade_logger: Optional[TradeLogger] = None,
        risk_logger: Optional[RiskLogger] = None,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config = config or SystemConfig()
        self.market_data = market_data
        self.news = news
        self.store = store if store is not None else MemoryStore()
        self.logger = logger or logging.getLogger(__name__)
        self._clock = clock

        cfg = self.config
        self.classifier = MarketConditionClassifier(cfg.classifier, clock=clock)
        self.combiner = SignalCombiner(cfg.signals, self.logger)
        self.pattern_memory = PatternMemory(cfg.patterns, self.store, self.logger, clock)
        self.risk = RiskEngine(cfg.risk, self.classifier, self.pattern_memory, self.store, self.logger, clock)
        self.scaling = ScalingEngine(cfg.scaling, self.logger)
        self.strategy_tracker = StrategyPerformanceTracker(self.store, cfg.signals, self.logger, clock)
        self.execution = execution or ExecutionEngine(
            cfg.execution,
            cfg.bot,
            simulated_venue=SimulatedVenue(cfg.bot.simulation_balance, clock=clock),
            logger=self.logger,
        )
        self.learning = LearningRecorder(advisory, self.store, self.logger, clock)
        self.recorders: List[OutcomeRecorder] = [self.learning] + ([recorder] if recorder else [])
        self.trade_logger = trade_logger
        self.risk_logger = risk_logger

        self.lifecycle = PositionLifecycle(self.logger)
        self.portfolio = Portfolio(
            total_value=cfg.bot.simulation_balance,
            available_balance=cfg.bot.simulation_balance,
        )
        self._initial_balance = cfg.bot.simulation_balance
        self._realized: Dict[str, float] = {}     # partial pnl from scale-outs, by position id
        self._last_news: List[NewsItem] = []

        self._running = False
        self._generation = 0
        self._task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._cycle_guard = OperationGuard("trading-cycle")

        self.stats = {
            "cycles": 0,
            "signals": 0,
            "entries": 0,
            "exits": 0,
            "blocked": 0,
            "failed_orders": 0,
            "scale_ins": 0,
            "scale_outs": 0,
        }

        self._load_portfolio()

    # ------------------------------------------------------------------
    # Control surface
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Schedule the periodic trading loop on the running event loop."""
        if self._running:
            return

        self._running = True
        self._generation += 1
        self._loop = asyncio.get_running_loop()
        bot = self.config.bot

        self.logger.info("=" * 60)
        self.logger.info(f"ADAPTIVE TRADER STARTED ({bot.mode.value}, {bot.trade_mode.value})")
        self.logger.info("=" * 60)

        for symbol in bot.symbols:
            self.market_data.subscribe(symbol, self.on_market_update)

        if bot.mode is TradingMode.REAL:
            await self._sync_real_balance()

        self._task = asyncio.create_task(self._run_loop(self._generation))

    async def stop(self) -> None:
        """Cancel the loop. Results of in-flight calls are ignored afterwards."""
        if not self._running:
            return

        self._running = False
        self._generation += 1
        for symbol in self.config.bot.symbols:
            self.market_data.unsubscribe(symbol)

        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        self._save_portfolio()
        self.logger.info("Adaptive trader stopped")

    async def _run_loop(self, generation: int) -> None:
        while self._running and generation == self._generation:
            try:
                await self.run_cycle()
            except Exception as e:
                self.logger.exception(f"Error in trading loop: {e}")
            await asyncio.sleep(self.config.bot.cycle_interval)

    def set_config(self, config: SystemConfig) -> None:
        """Replace configuration wholesale. Takes effect from the next cycle."""
        old_bot = self.config.bot
        self.config = config

        self.classifier.config = config.classifier
        self.combiner.config = config.signals
        self.pattern_memory.config = config.patterns
        self.risk.config = config.risk
        self.scaling.config = config.scaling
        self.strategy_tracker.config = config.signals
        self.execution.config = config.execution
        self.execution.bot = config.bot

        if (
            config.bot.mode is TradingMode.SIMULATION
            and config.bot.simulation_balance != old_bot.simulation_balance
        ):
            self.logger.warning(
                f"Simulation balance changed to {config.bot.simulation_balance:,.2f}, portfolio reset"
            )
            self._reset_portfolio(config.bot.simulation_balance)

        self.logger.info(
            f"Configuration updated: {config.bot.mode.value}/{config.bot.trade_mode.value}, "
            f"threshold {config.bot.effective_confidence_threshold:.2f}, "
            f"fast learning {'on' if config.bot.fast_learning else 'off'}"
        )

    def get_portfolio(self) -> Portfolio:
        """Detached copy of the current portfolio."""
        return Portfolio.from_dict(self.portfolio.to_dict())

    async def close_position(self, position_id: str) -> bool:
        """Manually close one position at a fresh price."""
        position = next((p for p in self.portfolio.positions if p.id == position_id), None)
        if position is None:
            self.logger.warning(f"No open position {position_id}")
            return False

        snapshot = await self._fetch_snapshot(position.symbol)
        if snapshot is not None:
            position.update_price(snapshot.price)
        return await self._close_position(position, ExitReason.MANUAL_CLOSE)

    async def emergency_close_all(self) -> int:
        """Close every open position. Returns the number closed."""
        self.logger.warning("EMERGENCY: closing all positions")
        closed = 0
        for position in list(self.portfolio.positions):
            if await self._close_position(position, ExitReason.EMERGENCY):
                closed += 1
        return closed

    def reset_learning(self) -> None:
        """Forget patterns, risk state, strategy stats and learning history."""
        self.pattern_memory.reset()
        self.risk.reset()
        self.strategy_tracker.reset()
        for recorder in self.recorders:
            recorder.reset()
        self.logger.info("All learned state reset")

    def on_market_update(self, snapshot: MarketSnapshot) -> None:
        """Push-mode callback. Safe to call from worker threads."""
        loop = self._loop
        if loop is not None and loop.is_running():
            loop.call_soon_threadsafe(self._apply_market_update, snapshot)
        else:
            self._apply_market_update(snapshot)

    def _apply_market_update(self, snapshot: MarketSnapshot) -> None:
        position = self.portfolio.position_for(snapshot.symbol)
        if position is not None:
            position.update_price(snapshot.price)
            self._update_portfolio_metrics()

    def get_status(self) -> dict:
        bot = self.config.bot
        return {
            "running": self._running,
            "mode": bot.mode.value,
            "trade_mode": bot.trade_mode.value,
            "fast_learning": bot.fast_learning,
            "portfolio": {
                "total_value": self.portfolio.total_value,
                "available_balance": self.portfolio.available_balance,
                "total_pnl": self.portfolio.total_pnl,
                "open_positions": len(self.portfolio.positions),
            },
            "lifecycle": self.lifecycle.summary(),
            "risk": self.risk.get_status_summary(),
            "patterns": len(self.pattern_memory),
            "scaling": self.scaling.get_summary(),
            "learning": self.learning.learning_stats(),
            "stats": dict(self.stats),
        }

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    async def run_cycle(self) -> None:
        """One full cycle. Skipped when another cycle is still in flight."""
        with self._cycle_guard.hold() as acquired:
            if not acquired:
                return
            generation = self._generation
            self.stats["cycles"] += 1

            snapshots = await self._revalue_positions()
            closed = await self._monitor_positions(snapshots, generation)
            if generation != self._generation:
                return
            await self._look_for_entries(closed, generation)

            self._update_portfolio_metrics()
            self._save_portfolio()
            await self.learning.refresh_insights()

            self.logger.info(
                f"Portfolio: {len(self.portfolio.positions)} positions, "
                f"value {self.portfolio.total_value:,.2f}, P&L {self.portfolio.total_pnl:+,.2f}"
            )

    async def _fetch_snapshot(self, symbol: str) -> Optional[MarketSnapshot]:
        try:
            return await asyncio.to_thread(self.market_data.get_snapshot, symbol)
        except TradingError as e:
            self.logger.warning(f"{symbol} unavailable this tick: {e}")
            return None

    async def _fetch_news(self) -> List[NewsItem]:
        if self.news is None or not self.config.bot.enable_news_sentiment:
            return []
        try:
            self._last_news = await asyncio.to_thread(self.news.fetch_news)
        except TradingError as e:
            self.logger.warning(f"News unavailable, using last batch: {e}")
        return self._last_news

    async def _revalue_positions(self) -> Dict[str, MarketSnapshot]:
        snapshots = {}
        for position in list(self.portfolio.positions):
            snapshot = await self._fetch_snapshot(position.symbol)
            if snapshot is None:
                continue
            position.update_price(snapshot.price)
            snapshots[position.symbol] = snapshot
        self._update_portfolio_metrics()
        return snapshots

    async def _monitor_positions(self, snapshots: Dict[str, MarketSnapshot], generation: int) -> set:
        """Exit checks for every open position. Returns symbols closed this cycle."""
        closed = set()
        for position in list(self.portfolio.positions):
            snapshot = snapshots.get(position.symbol)
            if snapshot is None:
                continue
            try:
                if self.lifecycle.state(position.symbol) is LifecycleState.OPEN:
                    self.lifecycle.transition(position.symbol, LifecycleState.MONITORED)
                reason = await self._exit_reason(position, snapshot, generation)
                if generation != self._generation:
                    return closed
                if isinstance(reason, ExitReason):
                    if await self._close_position(position, reason):
                        closed.add(position.symbol)
                elif reason is not None:
                    await self._apply_scaling(position, reason)
            except TradingError as e:
                self.logger.error(f"{position.symbol} monitoring failed: {e}")
            except Exception as e:
                self.logger.exception(f"{position.symbol} monitoring error: {e}")
        return closed

    async def _exit_reason(self, position: Position, snapshot: MarketSnapshot, generation: int):
        """
        An ExitReason, a ScalingDecision to apply, or None.

        Priority: fixed SL/TP -> trailing stop -> learning exit -> scaling.
        """
        bot = self.config.bot

        if position.pnl_percent <= -bot.stop_loss_percent:
            return ExitReason.STOP_LOSS
        if position.pnl_percent >= bot.take_profit_percent:
            return ExitReason.TAKE_PROFIT

        decision = self.scaling.evaluate(position)
        if decision.should_close:
            return ExitReason.TRAILING_STOP

        if bot.enable_ai_exit:
            opinion = await self.learning.should_exit(position, snapshot)
            if generation != self._generation:
                return None
            if opinion is not None and opinion.wants_exit and opinion.confidence > AI_EXIT_MIN_CONFIDENCE:
                self.logger.info(
                    f"{position.symbol} learning exit ({opinion.confidence:.2f}): {opinion.reasoning}"
                )
                return ExitReason.LEARNING_EXIT

        if decision.should_scale_in or decision.should_scale_out:
            return decision
        return None

    async def _look_for_entries(self, closed_this_cycle: set, generation: int) -> None:
        bot = self.config.bot
        news = await self._fetch_news()

        for symbol in bot.symbols:
            if len(self.portfolio.positions) >= bot.max_positions:
                self.logger.debug("Position cap reached")
                break
            if symbol in closed_this_cycle or self.lifecycle.is_active(symbol):
                continue
            if self.portfolio.position_for(symbol) is not None:
                continue
            try:
                await self._evaluate_entry(symbol, news, generation)
            except TradingError as e:
                self.logger.error(f"{symbol} entry failed: {e}")
            except Exception as e:
                self.logger.exception(f"{symbol} entry error: {e}")
            if generation != self._generation:
                return

    def _build_signal(self, snapshot: MarketSnapshot, news: List[NewsItem]) -> CombinedSignal:
        bot = self.config.bot
        if bot.enable_multi_strategy:
            return self.combiner.generate(snapshot, news, bot)
        result = self.combiner.rsi_macd(snapshot, spot_only=not bot.is_futures)
        return combine_strategy_results(
            [result], self.config.signals.min_aggregate, self.config.signals.max_confidence
        )

    async def _evaluate_entry(self, symbol: str, news: List[NewsItem], generation: int) -> None:
        bot = self.config.bot
        snapshot = await self._fetch_snapshot(symbol)
        if snapshot is None:
            return

        signal = self._build_signal(snapshot, news)
        signal = await self.learning.enhance_signal(signal, snapshot)
        if generation != self._generation:
            return
        if not signal.is_actionable:
            return
        self.stats["signals"] += 1

        if signal.action is SignalAction.SELL and not bot.is_futures:
            self.logger.debug(f"{symbol} SELL ignored in spot mode")
            return

        threshold = bot.effective_confidence_threshold
        leverage = bot.effective_leverage
        if bot.enable_adaptive_strategy:
            decision = self.risk.should_trade(
                snapshot, threshold, leverage, base_confidence=signal.confidence
            )
            if not decision.should_trade:
                self.stats["blocked"] += 1
                self.logger.info(f"{symbol} entry refused: {decision.reason}")
                return
            risk_multiplier = decision.strategy.risk_multiplier
            confidence = decision.confidence
        else:
            if self.risk.is_in_cooldown():
                self.stats["blocked"] += 1
                self.logger.info(f"{symbol} entry refused: cooldown active")
                return
            if signal.confidence < threshold:
                self.stats["blocked"] += 1
                self.logger.info(
                    f"{symbol} entry refused: confidence {signal.confidence:.2f} below {threshold:.2f}"
                )
                return
            risk_multiplier = 1.0
            confidence = signal.confidence

        side = PositionSide.LONG if signal.action is SignalAction.BUY else PositionSide.SHORT
        self.logger.info(
            f"Trading signal: {signal.action.value} {symbol} "
            f"(confidence {confidence:.2f}, best {signal.best_strategy})"
        )
        await self._open_position(symbol, side, snapshot, signal, confidence, risk_multiplier, len(news))

    # ------------------------------------------------------------------
    # Position changes
    # ------------------------------------------------------------------

    async def _open_position(
        self,
        symbol: str,
        side: PositionSide,
        snapshot: MarketSnapshot,
        signal: CombinedSignal,
        confidence: float,
        risk_multiplier: float,
        news_count: int,
    ) -> Optional[Position]:
        bot = self.config.bot
        price = snapshot.price
        leverage = bot.effective_leverage

        quantity = self.portfolio.available_balance * bot.max_risk_per_trade * risk_multiplier / price
        if quantity * price > self.portfolio.available_balance:
            self.logger.warning(f"{symbol} insufficient balance for {quantity:.6f}")
            return None

        order_side = OrderSide.BUY if side is PositionSide.LONG else OrderSide.SELL
        execution = await asyncio.to_thread(
            self.execution.submit_order, symbol, order_side, quantity, price, leverage
        )
        if not execution.is_success:
            self.stats["failed_orders"] += 1
            return None

        trade = execution.trade
        position = Position(
            id=uuid.uuid4().hex,
            symbol=symbol,
            side=side,
            size=trade.quantity,
            entry_price=trade.price,
            current_price=trade.price,
            timestamp=trade.timestamp,
            leverage=leverage,
        )

        self.lifecycle.transition(symbol, LifecycleState.OPEN)
        self.portfolio.positions.append(position)
        self.portfolio.trades.append(trade)
        self.portfolio.available_balance -= position.size * position.entry_price
        self.scaling.initialize(position)
        self.stats["entries"] += 1

        context = MarketContext(
            snapshot=snapshot,
            confidence=confidence,
            best_strategy=signal.best_strategy,
            news_count=news_count,
            portfolio_value=self.portfolio.total_value,
        )
        for recorder in self.recorders:
            recorder.record_open(trade, position, context)
        if self.trade_logger:
            self.trade_logger.log_open(position, trade, signal.reasoning)

        self._update_portfolio_metrics()
        self._save_portfolio()
        self.logger.info(
            f"{bot.mode.value} {side.value} opened: {position.size:.6f} {symbol} @ {position.entry_price:.6f}"
        )
        return position

    async def _apply_scaling(self, position: Position, decision: ScalingDecision) -> None:
        price = position.current_price
        if decision.should_scale_in:
            delta = abs(decision.size_delta)
            if delta * price > self.portfolio.available_balance:
                self.logger.info(f"{position.symbol} scale-in skipped: insufficient balance")
                return
            order_side = OrderSide.BUY if position.side is PositionSide.LONG else OrderSide.SELL
        else:
            delta = min(abs(decision.size_delta), position.size)
            order_side = OrderSide.SELL if position.side is PositionSide.LONG else OrderSide.BUY

        execution = await asyncio.to_thread(
            self.execution.submit_order, position.symbol, order_side, delta, price, position.leverage
        )
        if not execution.is_success:
            self.stats["failed_orders"] += 1
            return

        trade = execution.trade
        filled = trade.quantity
        if decision.should_scale_in:
            total = position.size + filled
            position.entry_price = (position.entry_price * position.size + trade.price * filled) / total
            position.size = total
            self.portfolio.available_balance -= filled * trade.price
            self.stats["scale_ins"] += 1
        else:
            realized = (trade.price - position.entry_price) * filled * position.side.direction * position.leverage
            self._realized[position.id] = self._realized.get(position.id, 0.0) + realized
            position.size -= filled
            self.portfolio.available_balance += filled * position.entry_price + realized
            self.stats["scale_outs"] += 1

        self.scaling.commit(position.id, decision, filled)
        position.update_price(trade.price)
        self.portfolio.trades.append(trade)
        self.lifecycle.transition(position.symbol, LifecycleState.SCALED)
        if self.trade_logger:
            self.trade_logger.log_scale(position, trade, decision.reason)
        self.logger.info(f"{position.symbol} {decision.action.value}: {decision.reason}")
        self._update_portfolio_metrics()
        self._save_portfolio()

    async def _close_position(self, position: Position, reason: ExitReason) -> bool:
        close_side = OrderSide.SELL if position.side is PositionSide.LONG else OrderSide.BUY
        execution = await asyncio.to_thread(
            self.execution.submit_order,
            position.symbol,
            close_side,
            position.size,
            position.current_price,
            position.leverage,
            True,
        )
        if not execution.is_success:
            self.stats["failed_orders"] += 1
            self.logger.error(f"Failed to close {position.symbol} ({reason.value}): {execution.error_message}")
            return False

        position.update_price(execution.trade.price)
        realized = position.pnl + self._realized.pop(position.id, 0.0)
        cost = position.entry_price * position.size
        realized_percent = realized / cost * 100 if cost > 0 else 0.0
        trade = replace(execution.trade, profit=realized)

        self.portfolio.available_balance += position.size * position.entry_price + position.pnl
        self.portfolio.trades.append(trade)
        self.portfolio.positions = [p for p in self.portfolio.positions if p.id != position.id]
        self.scaling.remove(position.id)
        if self.lifecycle.is_active(position.symbol):
            self.lifecycle.close(position.symbol)
        self.stats["exits"] += 1

        self._record_outcome(position, trade, reason.value, realized, realized_percent)

        if self.trade_logger:
            self.trade_logger.log_close(position, trade, reason.value)
        self._update_portfolio_metrics()
        self._save_portfolio()
        self.logger.info(
            f"Position closed ({reason.value}): {position.symbol} P&L {realized:+.2f} ({realized_percent:+.2f}%)"
        )
        return True

    def _record_outcome(
        self,
        position: Position,
        trade: Trade,
        reason: str,
        realized: float,
        realized_percent: float,
    ) -> None:
        """Feed a closed trade back into every learning component."""
        duration = (trade.timestamp - position.timestamp).total_seconds()
        record = self.learning.find_record(position.id)

        if record is not None:
            self.pattern_memory.learn_from_trade(
                record.snapshot,
                realized_percent,
                duration,
                opened_at=position.timestamp,
                fast_learning=self.config.bot.fast_learning,
            )
            self.strategy_tracker.record_outcome(record.best_strategy, realized, duration)
            self.risk.reflect_on_trade(
                position.symbol, position.side, realized, realized_percent, duration, record.snapshot
            )

        self.risk.record_trade_outcome(realized)
        if self.risk_logger:
            self.risk_logger.log_state(self.risk.metrics, self._clock().isoformat())

        for recorder in self.recorders:
            recorder.record_close(position, trade, reason)

    # ------------------------------------------------------------------
    # Portfolio bookkeeping
    # ------------------------------------------------------------------

    def _update_portfolio_metrics(self) -> None:
        p = self.portfolio
        positions_value = sum(pos.size * pos.entry_price + pos.pnl for pos in p.positions)
        p.total_value = p.available_balance + positions_value
        p.total_pnl = p.total_value - self._initial_balance
        p.total_pnl_percent = (
            p.total_pnl / self._initial_balance * 100 if self._initial_balance > 0 else 0.0
        )

    def _reset_portfolio(self, balance: float) -> None:
        for position in self.portfolio.positions:
            if self.lifecycle.is_active(position.symbol):
                self.lifecycle.close(position.symbol)
        self.scaling.clear()
        self._realized.clear()
        self.portfolio = Portfolio(total_value=balance, available_balance=balance)
        self._initial_balance = balance
        self._save_portfolio()

    async def _sync_real_balance(self) -> None:
        try:
            balance = await asyncio.to_thread(self.execution.get_account_balance)
        except TradingError as e:
            self.logger.error(f"Wallet balance unavailable: {e}")
            return
        if balance is None:
            return
        self.portfolio.available_balance = balance
        self._initial_balance = balance
        self._update_portfolio_metrics()
        self.logger.info(f"Real wallet balance: {balance:,.2f}")

    def _save_portfolio(self) -> None:
        data = self.portfolio.to_dict()
        data["initial_balance"] = self._initial_balance
        data["realized"] = self._realized
        save_json(self.store, self.PORTFOLIO_KEY, data, self.logger)

    def _load_portfolio(self) -> None:
        data = load_json(self.store, self.PORTFOLIO_KEY, self.logger)
        if not data:
            return
        try:
            portfolio = Portfolio.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            self.logger.error(f"Discarding unreadable portfolio state: {e}")
            return

        self.portfolio = portfolio
        self._initial_balance = data.get("initial_balance", self._initial_balance)
        self._realized = dict(data.get("realized", {}))
        for position in portfolio.positions:
            self.lifecycle.restore(position.symbol, LifecycleState.MONITORED)
        self.logger.info(f"Restored portfolio with {len(portfolio.positions)} open position(s)")

