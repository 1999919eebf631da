"""
Adaptive Crypto Trader

Decision engine that classifies market conditions, blends signal
strategies, gates entries through an adaptive risk engine, learns from
closed trades and manages open positions with scaling and trailing stops.
"""

from .config import (
    BotConfig,
    SystemConfig,
    TradeMode,
    TradingMode,
    DEFAULT_CONFIG,
)
from .exceptions import (
    TradingError,
    OrderValidationError,
    TransientError,
    AuthorizationError,
    ConfigurationError,
    UnparseableAdvice,
    InvalidTransitionError,
)
from .models import (
    MarketSnapshot,
    MarketCondition,
    MarketRegime,
    NewsItem,
    Position,
    Portfolio,
    Trade,
    SignalAction,
    StrategyArchetype,
)
from .market_condition import MarketConditionClassifier
from .signal_engine import SignalCombiner, CombinedSignal, StrategyPerformanceTracker
from .pattern_memory import PatternMemory
from .risk_engine import RiskEngine, TradeDecision
from .scaling_engine import ScalingEngine, ScalingDecision
from .execution_engine import ExecutionEngine, ExecutionVenue, SimulatedVenue, OrderResult
from .advisory import AdvisoryService, AdvisoryClient, OllamaAdvisoryClient
from .learning import LearningRecorder, OutcomeRecorder
from .lifecycle import PositionLifecycle, LifecycleState
from .persistence import KeyValueStore, MemoryStore, JsonFileStore
from .providers import MarketDataProvider, NewsProvider
from .orchestrator import TradingOrchestrator
from .replay import ReplayEngine, ReplayResult

__all__ = [
    'BotConfig', 'SystemConfig', 'TradeMode', 'TradingMode', 'DEFAULT_CONFIG',
    'TradingError', 'OrderValidationError', 'TransientError', 'AuthorizationError',
    'ConfigurationError', 'UnparseableAdvice', 'InvalidTransitionError',
    'MarketSnapshot', 'MarketCondition', 'MarketRegime', 'NewsItem', 'Position',
    'Portfolio', 'Trade', 'SignalAction', 'StrategyArchetype',
    'MarketConditionClassifier', 'SignalCombiner', 'CombinedSignal',
    'StrategyPerformanceTracker', 'PatternMemory', 'RiskEngine', 'TradeDecision',
    'ScalingEngine', 'ScalingDecision', 'ExecutionEngine', 'ExecutionVenue',
    'SimulatedVenue', 'OrderResult', 'AdvisoryService', 'AdvisoryClient',
    'OllamaAdvisoryClient', 'LearningRecorder', 'OutcomeRecorder',
    'PositionLifecycle', 'LifecycleState', 'KeyValueStore', 'MemoryStore',
    'JsonFileStore', 'MarketDataProvider', 'NewsProvider', 'TradingOrchestrator',
    'ReplayEngine', 'ReplayResult',
]
