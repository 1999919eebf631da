"""
Settings and Configuration for the Adaptive Trader.

YAML load/save and validation on top of the SystemConfig dataclasses.
"""

from dataclasses import dataclass, field, fields, is_dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Tuple, Type

import yaml

from src.adaptive_trader.config import (
    BotConfig,
    ClassifierConfig,
    ExecutionConfig,
    PathConfig,
    PatternConfig,
    RiskConfig,
    ScalingConfig,
    SignalConfig,
    SystemConfig,
    TradeMode,
    TradingMode,
)
from src.adaptive_trader.exceptions import ConfigurationError


SECTIONS: Dict[str, Type] = {
    'bot': BotConfig,
    'classifier': ClassifierConfig,
    'signals': SignalConfig,
    'patterns': PatternConfig,
    'risk': RiskConfig,
    'scaling': ScalingConfig,
    'execution': ExecutionConfig,
    'paths': PathConfig,
}

# Fields needing conversion from plain YAML values
_CONVERTERS = {
    'mode': TradingMode,
    'trade_mode': TradeMode,
    'symbols': tuple,
    'base_dir': Path,
}


def _to_plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, tuple):
        return list(value)
    if isinstance(value, dict):
        return dict(value)
    return value


def section_to_dict(section: Any) -> Dict[str, Any]:
    """Dataclass section -> YAML-safe dict."""
    return {f.name: _to_plain(getattr(section, f.name)) for f in fields(section)}


def section_from_dict(cls: Type, data: Dict[str, Any]) -> Any:
    """YAML dict -> dataclass section. Unknown keys are rejected."""
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigurationError(f"Unknown {cls.__name__} keys: {', '.join(unknown)}")

    kwargs = {}
    for key, value in data.items():
        converter = _CONVERTERS.get(key)
        try:
            kwargs[key] = converter(value) if converter else value
        except ValueError as e:
            raise ConfigurationError(f"Invalid {cls.__name__}.{key}: {value!r}") from e
    return cls(**kwargs)


@dataclass
class Settings:
    """Main settings container."""

    system: SystemConfig = field(default_factory=SystemConfig)

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> 'Settings':
        config = config or {}
        kwargs = {
            name: section_from_dict(section_cls, config.get(name) or {})
            for name, section_cls in SECTIONS.items()
        }
        return cls(system=SystemConfig(verbose=config.get('verbose', True), **kwargs))

    @classmethod
    def from_yaml(cls, path: str) -> 'Settings':
        """Load settings from YAML file."""
        with open(path, 'r') as f:
            config = yaml.safe_load(f)
        if config is not None and not isinstance(config, dict):
            raise ConfigurationError(f"{path}: expected a mapping at the top level")
        return cls.from_dict(config)

    def to_dict(self) -> Dict[str, Any]:
        config = {
            name: section_to_dict(getattr(self.system, name))
            for name in SECTIONS
        }
        config['verbose'] = self.system.verbose
        return config

    def to_yaml(self, path: str):
        """Save settings to YAML file."""
        with open(path, 'w') as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)

    def validate(self) -> Tuple[bool, List[str]]:
        """Validate settings configuration."""
        errors = []
        bot = self.system.bot

        # Bot validation
        if bot.simulation_balance <= 0:
            errors.append("simulation_balance must be positive")

        if bot.max_risk_per_trade <= 0 or bot.max_risk_per_trade > 1:
            errors.append("max_risk_per_trade must be between 0 and 1")

        if bot.leverage < 1:
            errors.append("leverage must be at least 1")

        if bot.stop_loss_percent <= 0 or bot.take_profit_percent <= 0:
            errors.append("stop_loss_percent and take_profit_percent must be positive")

        if not 0 <= bot.confidence_threshold <= 1:
            errors.append("confidence_threshold must be between 0 and 1")

        if bot.max_positions < 1:
            errors.append("max_positions must be at least 1")

        if not bot.symbols:
            errors.append("at least one symbol is required")

        if any(w < 0 for w in bot.strategy_weights.values()):
            errors.append("strategy weights must be non-negative")

        if bot.cycle_interval_seconds <= 0 or bot.fast_cycle_interval_seconds <= 0:
            errors.append("cycle intervals must be positive")

        # Risk validation
        risk = self.system.risk
        if risk.min_risk_level > risk.max_risk_level:
            errors.append("min_risk_level must be <= max_risk_level")

        if risk.max_consecutive_losses < 1:
            errors.append("max_consecutive_losses must be at least 1")

        # Scaling validation
        scaling = self.system.scaling
        if scaling.scale_out_threshold >= scaling.scale_in_threshold:
            errors.append("scale_out_threshold must be < scale_in_threshold")

        # Pattern validation
        if self.system.patterns.max_patterns < 1:
            errors.append("max_patterns must be at least 1")

        return len(errors) == 0, errors

    def get_summary(self) -> str:
        """Get settings summary string."""
        bot = self.system.bot
        return f"""
Adaptive Trader Settings Summary
================================
Mode: {bot.mode.value} / {bot.trade_mode.value} (leverage {bot.effective_leverage}x)
Symbols: {', '.join(bot.symbols)}

Risk Parameters:
  Balance: ${bot.simulation_balance:,.0f}
  Max Risk/Trade: {bot.max_risk_per_trade:.1%}
  Stop Loss: {bot.stop_loss_percent:.1f}%
  Take Profit: {bot.take_profit_percent:.1f}%
  Max Positions: {bot.max_positions}
  Confidence Threshold: {bot.effective_confidence_threshold:.2f}

Features:
  Adaptive Strategy: {bot.enable_adaptive_strategy}
  Multi Strategy: {bot.enable_multi_strategy}
  AI Exit: {bot.enable_ai_exit}
  Fast Learning: {bot.fast_learning}
"""


def load_settings(path: str = None) -> Settings:
    """Settings from path, or defaults when no path is given."""
    if path is None:
        return Settings()
    return Settings.from_yaml(path)


# Default configuration template
DEFAULT_CONFIG_YAML = """
# Adaptive Trader Configuration

bot:
  mode: SIMULATION
  trade_mode: spot
  leverage: 1
  simulation_balance: 10000
  max_risk_per_trade: 0.05
  stop_loss_percent: 3.0
  take_profit_percent: 6.0
  max_positions: 8
  confidence_threshold: 0.7
  symbols: [BTCUSDT, ETHUSDT, BNBUSDT]
  enable_adaptive_strategy: true
  enable_multi_strategy: true
  enable_ai_exit: true
  enable_rsi_macd: true
  enable_news_sentiment: true
  enable_volume_spike: true
  strategy_weights:
    RSI_MACD: 1.0
    NEWS_SENTIMENT: 1.0
    VOLUME_SPIKE: 1.0
  fast_learning: false

risk:
  max_consecutive_losses: 5
  cooldown_minutes: 60

scaling:
  enable_auto_rebalance: true
  enable_trailing_stop: true

paths:
  base_dir: adaptive_trader_data
"""
