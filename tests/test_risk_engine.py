"""
Tests for the adaptive risk engine.

These cover the entry gate's hard refusals: cooldown after a losing
streak, the leveraged confidence floor and the caller's threshold.
"""

import pytest
from datetime import timedelta

from src.adaptive_trader.market_condition import MarketConditionClassifier
from src.adaptive_trader.models import (
    EmaTrend,
    MarketCondition,
    MarketRegime,
    PositionSide,
    StrategyArchetype,
    TradingSession,
)
from src.adaptive_trader.pattern_memory import PatternMemory
from src.adaptive_trader.risk_engine import RiskEngine, RiskMetrics


@pytest.fixture
def engine(store, clock):
    classifier = MarketConditionClassifier(clock=clock)
    memory = PatternMemory(store=store, clock=clock)
    return RiskEngine(classifier=classifier, pattern_memory=memory, store=store, clock=clock)


def condition(regime, session=TradingSession.ASIAN, confidence=0.8):
    return MarketCondition(
        type=regime,
        confidence=confidence,
        volatility=0.02,
        volume_ratio=1.0,
        time_of_day=session,
    )


class TestCooldown:

    def test_five_losses_trigger_cooldown(self, engine, clock):
        for _ in range(5):
            engine.record_trade_outcome(-10.0)

        assert engine.metrics.consecutive_losses == 5
        assert engine.metrics.last_cooldown_end >= clock.now + timedelta(hours=1)
        assert engine.is_in_cooldown()

    def test_four_losses_do_not(self, engine):
        for _ in range(4):
            engine.record_trade_outcome(-10.0)

        assert not engine.is_in_cooldown()

    def test_win_resets_loss_streak(self, engine):
        for _ in range(5):
            engine.record_trade_outcome(-10.0)

        engine.record_trade_outcome(5.0)

        assert engine.metrics.consecutive_losses == 0

    def test_breakeven_counts_as_loss(self, engine):
        engine.record_trade_outcome(0.0)

        assert engine.metrics.consecutive_losses == 1

    def test_should_trade_refused_during_cooldown(self, engine, clock, make_snapshot):
        for _ in range(5):
            engine.record_trade_outcome(-10.0)
        strong = make_snapshot(rsi=20.0, macd=0.01, ema_trend=EmaTrend.BULLISH, volume_ratio=2.0)

        decision = engine.should_trade(strong, 0.0, base_confidence=1.0)
        assert not decision.should_trade
        assert "cooldown" in decision.reason.lower()

        clock.advance(minutes=59)
        assert not engine.should_trade(strong, 0.0, base_confidence=1.0).should_trade

        clock.advance(minutes=2)
        assert engine.should_trade(strong, 0.0, base_confidence=1.0).should_trade


class TestRiskLevel:

    def test_low_win_rate_reduces_risk(self, engine):
        engine.record_trade_outcome(-1.0)

        # win rate 0 -> 1.0 * 0.8
        assert engine.metrics.current_risk_level == pytest.approx(0.8)

    def test_risk_level_floor(self, engine):
        for _ in range(20):
            engine.record_trade_outcome(-1.0)

        assert engine.metrics.current_risk_level == pytest.approx(0.3)

    def test_high_win_rate_raises_risk_to_cap(self, engine):
        for _ in range(20):
            engine.record_trade_outcome(1.0)

        assert engine.metrics.current_risk_level == pytest.approx(1.5)
        assert engine.metrics.recent_win_rate == pytest.approx(1.0)

    def test_win_rate_uses_rolling_window(self, engine):
        for _ in range(20):
            engine.record_trade_outcome(-1.0)
        for _ in range(10):
            engine.record_trade_outcome(1.0)

        assert engine.metrics.recent_win_rate == pytest.approx(0.5)
        assert engine.metrics.total_trades == 30
        assert engine.metrics.profitable_trades == 10


class TestShouldTrade:

    def test_threshold_comparison_refuses(self, engine, make_snapshot):
        decision = engine.should_trade(make_snapshot(), 0.7, base_confidence=0.65)

        assert not decision.should_trade
        assert decision.confidence == pytest.approx(0.65)
        assert "0.65" in decision.reason and "0.70" in decision.reason

    def test_confident_signal_passes(self, engine, make_snapshot):
        decision = engine.should_trade(make_snapshot(), 0.7, base_confidence=0.8)

        assert decision.should_trade
        assert decision.condition is not None

    def test_leveraged_floor(self, engine, make_snapshot):
        decision = engine.should_trade(make_snapshot(), 0.5, leverage=5, base_confidence=0.55)

        assert not decision.should_trade
        assert "Leveraged" in decision.reason

    def test_overnight_uncertain_refused(self, engine, clock, make_snapshot):
        clock.now = clock.now.replace(hour=23)
        uncertain = make_snapshot(rsi=50.0, macd=-0.005, ema_trend=EmaTrend.BULLISH, volume_ratio=1.1)

        decision = engine.should_trade(uncertain, 0.1, base_confidence=0.9)

        assert not decision.should_trade
        assert "overnight" in decision.reason.lower()

    def test_pattern_bonus_scales_base_confidence(self, engine, make_snapshot):
        engine.pattern_memory.learn_from_trade(make_snapshot(rsi=35.0), 10.0, 600)

        decision = engine.should_trade(make_snapshot(rsi=35.0), 0.0, base_confidence=0.5)

        # bonus = 0.10 * 0.2 = 0.02
        assert decision.confidence == pytest.approx(0.5 * 1.02)

    def test_indicator_blend_without_base_confidence(self, engine, make_snapshot):
        decision = engine.should_trade(make_snapshot(), 0.0)

        assert 0.0 <= decision.confidence <= 1.0


class TestStrategySelection:

    @pytest.mark.parametrize("regime,session,expected", [
        (MarketRegime.TRENDING_UP, TradingSession.ASIAN, StrategyArchetype.TREND_FOLLOWING),
        (MarketRegime.TRENDING_DOWN, TradingSession.ASIAN, StrategyArchetype.TREND_FOLLOWING),
        (MarketRegime.SIDEWAYS, TradingSession.EUROPEAN, StrategyArchetype.SCALPING),
        (MarketRegime.SIDEWAYS, TradingSession.ASIAN, StrategyArchetype.MEAN_REVERSION),
        (MarketRegime.HIGH_VOLATILITY, TradingSession.AMERICAN, StrategyArchetype.CONSERVATIVE),
        (MarketRegime.UNCERTAIN, TradingSession.OVERNIGHT, StrategyArchetype.CONSERVATIVE),
        (MarketRegime.UNCERTAIN, TradingSession.ASIAN, StrategyArchetype.MEAN_REVERSION),
    ])
    def test_regime_to_archetype(self, engine, regime, session, expected):
        assert engine.select_optimal_strategy(condition(regime, session)).name == expected

    def test_active_session_dampens_risk(self, engine):
        strategy = engine.select_optimal_strategy(condition(MarketRegime.TRENDING_UP, TradingSession.EUROPEAN))

        assert strategy.risk_multiplier == pytest.approx(1.2 * 0.8)
        assert strategy.entry_threshold == pytest.approx(0.8)

    def test_overnight_dampens_more(self, engine):
        strategy = engine.select_optimal_strategy(condition(MarketRegime.TRENDING_UP, TradingSession.OVERNIGHT))

        assert strategy.risk_multiplier == pytest.approx(1.2 * 0.6)
        assert strategy.entry_threshold == pytest.approx(0.9)

    def test_leverage_dampening(self, engine):
        plain = engine.select_optimal_strategy(condition(MarketRegime.TRENDING_UP), leverage=1)
        levered = engine.select_optimal_strategy(condition(MarketRegime.TRENDING_UP), leverage=3)

        # 1 / log2(4) = 0.5
        assert levered.risk_multiplier == pytest.approx(plain.risk_multiplier * 0.5)

    def test_base_parameters_untouched(self, engine):
        from src.adaptive_trader.models import ARCHETYPE_PARAMETERS

        engine.select_optimal_strategy(condition(MarketRegime.TRENDING_UP, TradingSession.EUROPEAN))

        assert ARCHETYPE_PARAMETERS[StrategyArchetype.TREND_FOLLOWING].risk_multiplier == 1.2


class TestReflection:

    def test_winning_reflection(self, engine, make_snapshot):
        reflection = engine.reflect_on_trade(
            "BTCUSDT", PositionSide.LONG, 25.0, 2.5, 1800, make_snapshot(ema_trend=EmaTrend.BULLISH)
        )

        assert "worked" in reflection.text
        assert engine.reflections[-1] is reflection

    def test_losing_reflection_names_cause(self, engine, make_snapshot):
        reflection = engine.reflect_on_trade(
            "BTCUSDT", PositionSide.LONG, -25.0, -2.5, 1800, make_snapshot(rsi=75.0)
        )

        assert "overbought" in reflection.text

    def test_only_last_ten_kept(self, engine, make_snapshot):
        for i in range(12):
            engine.reflect_on_trade("BTCUSDT", PositionSide.LONG, 1.0, 0.1, 60, make_snapshot())

        assert len(engine.reflections) == 10


class TestExitLevels:

    def test_long_levels_bracket_entry(self, engine):
        levels = engine.get_multi_exit_levels(100.0, PositionSide.LONG)

        assert levels.sl < 100.0 < levels.tp1 < levels.tp2 < levels.tp3

    def test_short_levels_mirror(self, engine):
        levels = engine.get_multi_exit_levels(100.0, PositionSide.SHORT, condition(MarketRegime.TRENDING_DOWN))

        assert levels.tp3 < levels.tp2 < levels.tp1 < 100.0 < levels.sl


class TestPersistence:

    def test_metrics_round_trip(self, engine, store, clock):
        for pnl in (-5.0, 3.0, -1.0, -2.0, -4.0, -6.0, -7.0):
            engine.record_trade_outcome(pnl)

        reloaded = RiskEngine(store=store, clock=clock)

        assert reloaded.metrics == engine.metrics
        assert [o.to_dict() for o in reloaded.recent_outcomes] == [o.to_dict() for o in engine.recent_outcomes]
        assert reloaded.is_in_cooldown()

    def test_metrics_dict_round_trip(self, clock):
        metrics = RiskMetrics(
            recent_win_rate=0.35,
            consecutive_losses=2,
            current_risk_level=0.64,
            last_cooldown_end=clock.now,
            total_trades=9,
            profitable_trades=3,
        )

        assert RiskMetrics.from_dict(metrics.to_dict()) == metrics

    def test_reset(self, engine, store, clock):
        for _ in range(5):
            engine.record_trade_outcome(-1.0)

        engine.reset()

        assert not engine.is_in_cooldown()
        assert RiskEngine(store=store, clock=clock).metrics == RiskMetrics()
