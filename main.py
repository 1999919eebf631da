"""
Adaptive Trader - Main Entry Point

Adaptive crypto trading decision engine (simulation first).

Usage:
    python main.py run --cycles 30
    python main.py run --config settings.yaml --fast
    python main.py replay --symbols BTCUSDT,ETHUSDT --bars 500
    python main.py validate --config settings.yaml
    python main.py init-config --output settings.yaml
"""

import argparse
import asyncio
import logging
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd

from config.settings import Settings, load_settings, DEFAULT_CONFIG_YAML
from config.venue_config import VenueConfig
from src.adaptive_trader.advisory import AdvisoryService, OllamaAdvisoryClient
from src.adaptive_trader.config import SystemConfig, TradingMode
from src.adaptive_trader.execution_engine import ExecutionEngine, SimulatedVenue
from src.adaptive_trader.logging_module import RiskLogger, TradeLogger, setup_logging
from src.adaptive_trader.orchestrator import TradingOrchestrator
from src.adaptive_trader.persistence import JsonFileStore
from src.adaptive_trader.providers import MarketDataProvider, NewsProvider
from src.adaptive_trader.replay import ReplayEngine, ReplayResult
from src.data import (
    RestMarketDataProvider,
    RestNewsProvider,
    SimulatedMarketDataProvider,
    StaticNewsProvider,
    snapshots_from_frame,
)


logger = logging.getLogger(__name__)


class AdaptiveTraderSystem:
    """
    Wires configuration, providers and the orchestrator together.

    Components are created lazily on first use.
    """

    def __init__(
        self,
        config: Optional[SystemConfig] = None,
        venue: Optional[VenueConfig] = None,
        live_data: bool = False,
        seed: int = 42,
    ):
        self.config = config or SystemConfig()
        self.venue = venue or VenueConfig.from_env()
        self.live_data = live_data
        self.seed = seed

        self._market_data: Optional[MarketDataProvider] = None
        self._news: Optional[NewsProvider] = None
        self._orchestrator: Optional[TradingOrchestrator] = None

    @property
    def market_data(self) -> MarketDataProvider:
        """Get or create the market data provider."""
        if self._market_data is None:
            if self.live_data:
                self._market_data = RestMarketDataProvider(
                    base_url=self.venue.market_data_url,
                    interval=self.venue.kline_interval,
                    min_interval_seconds=self.config.execution.market_data_interval_seconds,
                    request_timeout=self.venue.request_timeout,
                    max_retries=self.venue.max_retries,
                )
            else:
                self._market_data = SimulatedMarketDataProvider(seed=self.seed)
        return self._market_data

    @property
    def news(self) -> NewsProvider:
        """Get or create the news provider."""
        if self._news is None:
            if self.venue.news_api_key:
                self._news = RestNewsProvider(
                    self.venue.news_api_key,
                    min_interval_seconds=self.config.execution.news_interval_seconds,
                )
            else:
                self._news = StaticNewsProvider()
        return self._news

    @property
    def orchestrator(self) -> TradingOrchestrator:
        """Get or create the orchestrator."""
        if self._orchestrator is None:
            cfg = self.config
            cfg.ensure_directories()
            app_logger = setup_logging(cfg.paths, cfg.verbose)

            if cfg.bot.mode is TradingMode.REAL and not self.venue.has_credentials:
                app_logger.warning("REAL mode without API credentials: orders will be refused")

            advisory_client = None
            if self.venue.advisory_enabled:
                advisory_client = OllamaAdvisoryClient(
                    self.venue.advisory_url,
                    self.venue.advisory_model,
                    request_timeout=cfg.execution.advisory_timeout_seconds,
                )

            execution = ExecutionEngine(
                cfg.execution,
                cfg.bot,
                simulated_venue=SimulatedVenue(cfg.bot.simulation_balance),
                has_credentials=self.venue.has_credentials,
                logger=app_logger,
            )
            self._orchestrator = TradingOrchestrator(
                self.market_data,
                config=cfg,
                news=self.news,
                store=JsonFileStore(cfg.paths.state_dir),
                execution=execution,
                advisory=AdvisoryService(
                    advisory_client, cfg.execution.advisory_timeout_seconds, app_logger
                ),
                trade_logger=TradeLogger(cfg.paths.trade_log),
                risk_logger=RiskLogger(cfg.paths.risk_log),
                logger=app_logger,
            )
        return self._orchestrator

    async def run_trading(self, cycles: Optional[int] = None) -> dict:
        """
        Run the trading loop.

        With cycles, runs exactly that many cycles; otherwise runs until
        interrupted.
        """
        orchestrator = self.orchestrator

        if cycles:
            for i in range(cycles):
                await orchestrator.run_cycle()
                if i < cycles - 1:
                    await asyncio.sleep(orchestrator.config.bot.cycle_interval)
            return orchestrator.get_status()

        await orchestrator.start()
        try:
            while orchestrator.is_running:
                await asyncio.sleep(1)
        finally:
            await orchestrator.stop()
        return orchestrator.get_status()

    def run_replay(self, symbols: List[str], bars: int = 500) -> Dict[str, ReplayResult]:
        """Replay the signal layer over generated history."""
        engine = ReplayEngine(self.config.bot)
        news = self.news.fetch_news()
        snapshots = {
            symbol: snapshots_from_frame(symbol, self.market_data.get_history(symbol, bars))
            for symbol in symbols
        }
        return engine.run_many(snapshots, news)

    def shutdown(self):
        """Clean shutdown of all components."""
        logger.info("System shutdown complete")


def _load_config(args) -> SystemConfig:
    settings = load_settings(args.config)
    ok, errors = settings.validate()
    if not ok:
        raise SystemExit("Invalid configuration:\n  " + "\n  ".join(errors))
    config = settings.system
    if getattr(args, 'fast', False):
        config.bot = replace(config.bot, fast_learning=True)
    return config


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description='Adaptive crypto trading decision engine'
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # Run command
    run_parser = subparsers.add_parser('run', help='Run the trading loop')
    run_parser.add_argument('--config', type=str, default=None, help='YAML settings file')
    run_parser.add_argument('--cycles', type=int, default=None, help='Stop after N cycles')
    run_parser.add_argument('--fast', action='store_true', help='Enable fast learning')
    run_parser.add_argument('--live-data', action='store_true', help='Use REST market data')
    run_parser.add_argument('--seed', type=int, default=42, help='Simulated market seed')

    # Replay command
    replay_parser = subparsers.add_parser('replay', help='Replay signals over history')
    replay_parser.add_argument('--config', type=str, default=None, help='YAML settings file')
    replay_parser.add_argument('--symbols', type=str, default=None, help='e.g. BTCUSDT,ETHUSDT')
    replay_parser.add_argument('--bars', type=int, default=500, help='Bars of history')
    replay_parser.add_argument('--seed', type=int, default=42, help='Simulated market seed')
    replay_parser.add_argument('--output', type=str, default=None, help='CSV file for trades')

    # Validate command
    validate_parser = subparsers.add_parser('validate', help='Validate a settings file')
    validate_parser.add_argument('--config', type=str, required=True, help='YAML settings file')

    # Init config command
    init_parser = subparsers.add_parser('init-config', help='Write a default settings file')
    init_parser.add_argument('--output', type=str, default='settings.yaml', help='Output path')

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    if args.command == 'init-config':
        Path(args.output).write_text(DEFAULT_CONFIG_YAML.lstrip())
        print(f"Default settings written to {args.output}")
        return

    if args.command == 'validate':
        settings = Settings.from_yaml(args.config)
        ok, errors = settings.validate()
        print(settings.get_summary())
        if ok:
            print("Configuration OK")
        else:
            print("Configuration errors:")
            for error in errors:
                print(f"  - {error}")
        return

    config = _load_config(args)
    system = AdaptiveTraderSystem(
        config,
        live_data=getattr(args, 'live_data', False),
        seed=args.seed,
    )

    try:
        if args.command == 'run':
            status = asyncio.run(system.run_trading(args.cycles))

            portfolio = status['portfolio']
            print("\n" + "=" * 60)
            print("TRADING SESSION SUMMARY")
            print("=" * 60)
            print(f"Total Value: ${portfolio['total_value']:,.2f}")
            print(f"Total P&L: ${portfolio['total_pnl']:+,.2f}")
            print(f"Open Positions: {portfolio['open_positions']}")
            print(f"Entries / Exits: {status['stats']['entries']} / {status['stats']['exits']}")
            print(f"Learned Patterns: {status['patterns']}")

        elif args.command == 'replay':
            symbols = args.symbols.split(',') if args.symbols else list(config.bot.symbols)
            results = system.run_replay(symbols, args.bars)

            print("\n" + "=" * 60)
            print("REPLAY RESULTS")
            print("=" * 60)
            for symbol, result in results.items():
                print(f"\n{symbol}:")
                print(f"  Total P&L: ${result.total_pnl:+,.2f}")
                print(f"  Trades: {result.total_trades}")
                print(f"  Win Rate: {result.win_rate:.1%}")
                print(f"  Max Drawdown: {result.max_drawdown:.2%}")
                for name, stats in result.strategy_stats.items():
                    print(f"  {name}: {stats.trades} trades, {stats.win_rate:.1%} wins, ${stats.pnl:+,.2f}")

            if args.output:
                frames = [r.trades_frame() for r in results.values()]
                frames = [f for f in frames if not f.empty]
                if frames:
                    pd.concat(frames, ignore_index=True).to_csv(args.output, index=False)
                    print(f"\nTrades saved to {args.output}")

    except KeyboardInterrupt:
        print("\nInterrupted.")
    except Exception as e:
        logger.error(f"Error: {e}")
        raise
    finally:
        system.shutdown()


if __name__ == '__main__':
    main()
