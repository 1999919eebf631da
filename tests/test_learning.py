"""
Tests for the learning recorder: history, insights and advisory opinions.
"""

import asyncio

import pytest

from src.adaptive_trader.advisory import AdvisoryService
from src.adaptive_trader.learning import (
    LearningInsights,
    LearningRecorder,
    TradeResult,
    compute_insights,
)
from src.adaptive_trader.models import SignalAction
from src.adaptive_trader.signal_engine import CombinedSignal

from conftest import CannedClient, build_test_snapshot, run_round_trip


@pytest.fixture
def recorder(store, clock):
    return LearningRecorder(store=store, clock=clock)


class TestHistory:

    def test_open_and_close_recorded(self, recorder):
        run_round_trip(recorder, 0, 106.0, hold_minutes=15)

        record = recorder.find_record("pos0")
        assert record.is_closed
        assert record.outcome == TradeResult.PROFIT
        assert record.profit == pytest.approx(6.0)
        assert record.profit_percent == pytest.approx(6.0)
        assert record.duration_seconds == pytest.approx(900)
        assert record.reason == "TAKE_PROFIT"
        assert record.best_strategy == "RSI_MACD"

    def test_loss_and_breakeven(self, recorder):
        run_round_trip(recorder, 0, 97.0)
        run_round_trip(recorder, 1, 100.0)

        assert recorder.find_record("pos0").outcome == TradeResult.LOSS
        assert recorder.find_record("pos1").outcome == TradeResult.BREAKEVEN

    def test_history_survives_reload(self, recorder, store, clock):
        run_round_trip(recorder, 0, 106.0)

        reloaded = LearningRecorder(store=store, clock=clock)

        assert [r.to_dict() for r in reloaded.history] == [r.to_dict() for r in recorder.history]

    def test_reset(self, recorder, store, clock):
        run_round_trip(recorder, 0, 106.0)

        recorder.reset()

        assert recorder.history == []
        assert LearningRecorder(store=store, clock=clock).history == []


class TestInsights:

    def test_defaults_before_any_refresh(self, recorder):
        assert recorder.insights == LearningInsights.default()

    def test_stale_every_ten_closed_trades(self, recorder):
        for i in range(9):
            run_round_trip(recorder, i, 106.0)
        assert not recorder.insights_stale

        run_round_trip(recorder, 9, 106.0)
        assert recorder.insights_stale

    def test_refresh_only_when_stale(self, recorder):
        assert asyncio.run(recorder.refresh_insights()) is False

        for i in range(10):
            run_round_trip(recorder, i, 106.0 if i % 2 else 97.0)

        assert asyncio.run(recorder.refresh_insights()) is True
        assert not recorder.insights_stale
        assert "RSI_OVERSOLD" in recorder.insights.successful_patterns
        assert recorder.insights.profitable_indicators == ["RSI_OVERSOLD_BUY"]

    def test_refresh_skipped_while_in_flight(self, recorder):
        with recorder.guard.hold():
            assert asyncio.run(recorder.refresh_insights(force=True)) is False

    def test_insights_persisted(self, recorder, store, clock):
        run_round_trip(recorder, 0, 106.0)
        asyncio.run(recorder.refresh_insights(force=True))

        reloaded = LearningRecorder(store=store, clock=clock)

        assert reloaded.insights == recorder.insights

    def test_compute_insights_durations_and_conditions(self, recorder):
        run_round_trip(recorder, 0, 106.0, hold_minutes=10)
        run_round_trip(recorder, 1, 104.0, hold_minutes=20)
        run_round_trip(recorder, 2, 95.0, rsi=75.0)

        insights = compute_insights(recorder.history)

        assert insights.best_durations == pytest.approx([600.0, 1200.0, 1800.0])
        assert insights.market_conditions["bullish"]["win_rate"] == pytest.approx(2 / 3)
        assert "RSI_OVERBOUGHT" in insights.failed_patterns


class TestAdvisoryOpinions:

    def test_no_exit_opinion_without_history(self, store, clock):
        recorder = LearningRecorder(AdvisoryService(CannedClient("EXIT 0.9 fading")), store=store, clock=clock)
        position = run_round_trip(recorder, 0, 106.0)

        assert asyncio.run(recorder.should_exit(position, build_test_snapshot(rsi=25.0))) is None

    def test_exit_opinion_with_similar_history(self, store, clock):
        client = CannedClient("EXIT 0.85 momentum fading")
        recorder = LearningRecorder(AdvisoryService(client), store=store, clock=clock)
        for i in range(3):
            position = run_round_trip(recorder, i, 106.0)

        opinion = asyncio.run(recorder.should_exit(position, build_test_snapshot(rsi=28.0)))

        assert opinion.wants_exit
        assert opinion.confidence == pytest.approx(0.85)
        assert "Similar trades success rate: 100.0%" in client.prompts[0]

    def test_no_similar_trades_no_opinion(self, store, clock):
        client = CannedClient("EXIT 0.85 momentum fading")
        recorder = LearningRecorder(AdvisoryService(client), store=store, clock=clock)
        for i in range(3):
            position = run_round_trip(recorder, i, 106.0)

        assert asyncio.run(recorder.should_exit(position, build_test_snapshot(rsi=70.0))) is None
        assert client.prompts == []

    def test_enhance_signal_rewrites_action(self, store, clock):
        recorder = LearningRecorder(AdvisoryService(CannedClient("HOLD 0.99 wait")), store=store, clock=clock)
        for i in range(5):
            run_round_trip(recorder, i, 106.0)
        signal = CombinedSignal(SignalAction.BUY, 0.7, "RSI_MACD", "oversold")

        enhanced = asyncio.run(recorder.enhance_signal(signal, build_test_snapshot()))

        assert enhanced.action == SignalAction.HOLD
        assert enhanced.confidence == pytest.approx(0.95)
        assert enhanced.best_strategy == "RSI_MACD"
        assert "AI: wait" in enhanced.reasoning

    def test_enhance_signal_falls_back_on_garbage(self, store, clock):
        recorder = LearningRecorder(AdvisoryService(CannedClient("no idea")), store=store, clock=clock)
        for i in range(5):
            run_round_trip(recorder, i, 106.0)
        signal = CombinedSignal(SignalAction.BUY, 0.7, "RSI_MACD", "oversold")

        assert asyncio.run(recorder.enhance_signal(signal, build_test_snapshot())) is signal

    def test_enhance_signal_needs_history(self, recorder):
        signal = CombinedSignal(SignalAction.BUY, 0.7, "RSI_MACD", "oversold")

        assert asyncio.run(recorder.enhance_signal(signal, build_test_snapshot())) is signal
