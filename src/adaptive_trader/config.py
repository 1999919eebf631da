"""
Adaptive Trader Configuration

Single source of truth for all engine parameters.
Numeric constants are tunable defaults, grouped per component.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Tuple
from pathlib import Path


class TradingMode(Enum):
    """Where orders go."""
    SIMULATION = "SIMULATION"
    REAL = "REAL"


class TradeMode(Enum):
    """Spot positions cannot be shorted."""
    SPOT = "spot"
    FUTURES = "futures"


@dataclass(frozen=True)
class ClassifierConfig:
    """Market condition classifier thresholds."""
    high_volatility_threshold: float = 0.05
    low_volatility_threshold: float = 0.02    # Sideways bonus below this
    default_volatility: float = 0.02          # Used when bands are unusable

    rsi_bullish: float = 60.0
    rsi_bearish: float = 40.0
    macd_flat: float = 0.001
    trend_volume_ratio: float = 1.2
    quiet_volume_ratio: float = 1.0

    decisive_score: float = 2.5
    high_volatility_confidence: float = 0.8
    uncertain_confidence: float = 0.3
    max_confidence: float = 0.95


@dataclass(frozen=True)
class SignalConfig:
    """Multi-strategy signal combiner thresholds."""
    # RSI + MACD rule table
    rsi_oversold: float = 30.0
    rsi_overbought: float = 70.0
    rsi_weak_oversold: float = 40.0
    rsi_weak_overbought: float = 60.0
    macd_confirm: float = 0.001
    strong_confidence: float = 0.8
    weak_confidence: float = 0.6
    neutral_confidence: float = 0.5

    # News sentiment
    news_score_threshold: float = 0.3
    news_max_confidence: float = 0.9

    # Volume spike
    spike_volume_ratio: float = 2.0
    elevated_volume_ratio: float = 1.5
    band_proximity: float = 0.02
    min_band_width: float = 0.04
    spike_confidence: float = 0.85
    elevated_confidence: float = 0.6
    leverage_boost_per_unit: float = 0.02

    # Combination
    min_aggregate: float = 0.5
    max_confidence: float = 0.95

    # Strategy performance ranking
    min_trades_for_ranking: int = 3


@dataclass(frozen=True)
class PatternConfig:
    """Pattern memory parameters."""
    max_patterns: int = 50
    profit_threshold: float = 2.0             # pnl percent
    fast_learning_profit_threshold: float = 1.0
    loss_threshold: float = -2.0

    # Candidate ranges (half width)
    rsi_range: float = 5.0
    macd_range: float = 0.002
    volume_ratio_range: float = 0.3

    # Similarity tolerance on every range bound
    rsi_tolerance: float = 10.0
    macd_tolerance: float = 0.004
    volume_ratio_tolerance: float = 0.5

    bonus_factor: float = 0.2
    recency_window_days: float = 7.0
    min_recency_factor: float = 0.1


@dataclass(frozen=True)
class RiskConfig:
    """Adaptive risk engine parameters."""
    outcome_window: int = 20
    max_consecutive_losses: int = 5
    cooldown_minutes: int = 60

    low_win_rate: float = 0.4
    high_win_rate: float = 0.6
    risk_decrease_factor: float = 0.8
    risk_increase_factor: float = 1.1
    min_risk_level: float = 0.3
    max_risk_level: float = 1.5

    leveraged_confidence_floor: float = 0.6
    min_leverage_dampening: float = 0.5

    # Session dampening
    active_session_risk_factor: float = 0.8
    active_session_entry_bump: float = 0.1
    overnight_risk_factor: float = 0.6
    overnight_entry_bump: float = 0.2

    # Signal confidence sub-score weights (sum to 1)
    rsi_weight: float = 0.25
    macd_weight: float = 0.25
    ema_weight: float = 0.20
    volume_weight: float = 0.15
    bollinger_weight: float = 0.15
    macd_scale: float = 0.002

    reflections_kept: int = 10


@dataclass(frozen=True)
class ScalingConfig:
    """Position scaling and trailing stop parameters."""
    enable_auto_rebalance: bool = True
    enable_trailing_stop: bool = True

    scale_in_threshold: float = 0.02          # pnl fraction of notional
    scale_out_threshold: float = -0.015
    max_scale_ins: int = 3
    max_scale_outs: int = 2
    scale_in_fraction: float = 0.5            # Of original size
    scale_out_fraction: float = 0.3           # Of current size

    trailing_stop_distance: float = 0.02
    trailing_activation: float = 0.01


@dataclass(frozen=True)
class ExecutionConfig:
    """Execution, retry and throttle parameters."""
    max_order_retries: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 5.0

    # Default symbol rules when the venue provides none
    default_min_qty: float = 0.001
    default_step_size: float = 0.001
    default_min_notional: float = 10.0

    market_data_interval_seconds: float = 5.0
    news_interval_seconds: float = 6 * 3600
    advisory_timeout_seconds: float = 15.0


@dataclass(frozen=True)
class BotConfig:
    """Operator-facing settings, replaced wholesale via set_config."""
    mode: TradingMode = TradingMode.SIMULATION
    trade_mode: TradeMode = TradeMode.SPOT
    leverage: int = 1

    simulation_balance: float = 10000.0
    max_risk_per_trade: float = 0.05
    stop_loss_percent: float = 3.0
    take_profit_percent: float = 6.0
    max_positions: int = 8
    confidence_threshold: float = 0.7

    symbols: Tuple[str, ...] = ("BTCUSDT", "ETHUSDT", "BNBUSDT")

    # Feature toggles
    enable_adaptive_strategy: bool = True
    enable_multi_strategy: bool = True
    enable_ai_exit: bool = True

    # Signal strategies and weights
    enable_rsi_macd: bool = True
    enable_news_sentiment: bool = True
    enable_volume_spike: bool = True
    strategy_weights: Dict[str, float] = field(default_factory=lambda: {
        "RSI_MACD": 1.0,
        "NEWS_SENTIMENT": 1.0,
        "VOLUME_SPIKE": 1.0,
    })

    # Fast learning
    fast_learning: bool = False
    fast_learning_confidence_threshold: float = 0.5
    cycle_interval_seconds: float = 10.0
    fast_cycle_interval_seconds: float = 2.0

    @property
    def is_futures(self) -> bool:
        return self.trade_mode is TradeMode.FUTURES

    @property
    def effective_leverage(self) -> int:
        """Spot trading is never leveraged."""
        return self.leverage if self.is_futures else 1

    @property
    def effective_confidence_threshold(self) -> float:
        if self.fast_learning:
            return min(self.confidence_threshold, self.fast_learning_confidence_threshold)
        return self.confidence_threshold

    @property
    def cycle_interval(self) -> float:
        if self.fast_learning:
            return self.fast_cycle_interval_seconds
        return self.cycle_interval_seconds


@dataclass(frozen=True)
class PathConfig:
    """File paths for persistence and logging."""
    base_dir: Path = Path("adaptive_trader_data")

    @property
    def logs_dir(self) -> Path:
        return self.base_dir / "logs"

    @property
    def state_dir(self) -> Path:
        return self.base_dir / "state"

    @property
    def trade_log(self) -> Path:
        return self.logs_dir / "trades.csv"

    @property
    def risk_log(self) -> Path:
        return self.logs_dir / "risk_state.csv"

    @property
    def system_log(self) -> Path:
        return self.logs_dir / "system.log"


@dataclass
class SystemConfig:
    """Master configuration - aggregates all configs."""
    bot: BotConfig = field(default_factory=BotConfig)
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    signals: SignalConfig = field(default_factory=SignalConfig)
    patterns: PatternConfig = field(default_factory=PatternConfig)
    risk: RiskConfig = field(default_factory=RiskConfig)
    scaling: ScalingConfig = field(default_factory=ScalingConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    paths: PathConfig = field(default_factory=PathConfig)

    verbose: bool = True

    def ensure_directories(self) -> None:
        """Create required directories."""
        self.paths.logs_dir.mkdir(parents=True, exist_ok=True)
        self.paths.state_dir.mkdir(parents=True, exist_ok=True)


# Default configuration instance
DEFAULT_CONFIG = SystemConfig()
