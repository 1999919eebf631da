"""
Tests for call-rate helpers.
"""

import pytest

from src.adaptive_trader.exceptions import AuthorizationError, TransientError
from src.adaptive_trader.throttling import (
    KeyedThrottle,
    OperationGuard,
    backoff_delay,
    retry_with_backoff,
)


class TickClock:
    def __init__(self):
        self.t = 0.0

    def __call__(self):
        return self.t


class TestKeyedThrottle:

    def test_second_call_inside_window_returns_cached(self):
        clock = TickClock()
        throttle = KeyedThrottle(5.0, clock=clock)
        calls = []

        def fetch():
            calls.append(clock.t)
            return len(calls)

        assert throttle.call("BTCUSDT", fetch) == 1
        clock.t = 4.9
        assert throttle.call("BTCUSDT", fetch) == 1
        clock.t = 5.0
        assert throttle.call("BTCUSDT", fetch) == 2
        assert calls == [0.0, 5.0]

    def test_keys_are_independent(self):
        throttle = KeyedThrottle(5.0, clock=TickClock())

        assert throttle.call("a", lambda: "A") == "A"
        assert throttle.call("b", lambda: "B") == "B"
        assert throttle.cached("a") == "A"

    def test_reset(self):
        throttle = KeyedThrottle(5.0, clock=TickClock())
        throttle.record("a", 1)

        assert not throttle.ready("a")
        throttle.reset("a")
        assert throttle.ready("a")
        assert throttle.cached("a") is None


class TestRetry:

    def test_backoff_is_capped(self):
        assert [backoff_delay(n, 1.0, 5.0) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_succeeds_after_transient_failures(self):
        attempts = []
        sleeps = []

        def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise TransientError("timeout")
            return "ok"

        assert retry_with_backoff(flaky, max_attempts=3, sleep=sleeps.append) == "ok"
        assert sleeps == [1.0, 2.0]

    def test_last_error_propagates(self):
        def down():
            raise TransientError("down")

        with pytest.raises(TransientError):
            retry_with_backoff(down, max_attempts=2, sleep=lambda _: None)

    def test_authorization_error_not_retried(self):
        attempts = []

        def denied():
            attempts.append(1)
            raise AuthorizationError("nope")

        with pytest.raises(AuthorizationError):
            retry_with_backoff(denied, max_attempts=5, sleep=lambda _: None)
        assert len(attempts) == 1

    def test_other_errors_not_retried(self):
        attempts = []

        def broken():
            attempts.append(1)
            raise KeyError("x")

        with pytest.raises(KeyError):
            retry_with_backoff(broken, sleep=lambda _: None)
        assert len(attempts) == 1


class TestOperationGuard:

    def test_overlapping_hold_is_skipped(self):
        guard = OperationGuard("trading-cycle")

        with guard.hold() as outer:
            assert outer
            assert guard.busy
            with guard.hold() as inner:
                assert not inner

        assert not guard.busy
        assert guard.skipped == 1

    def test_released_after_exception(self):
        guard = OperationGuard("trading-cycle")

        with pytest.raises(RuntimeError):
            with guard.hold():
                raise RuntimeError("boom")

        assert not guard.busy
