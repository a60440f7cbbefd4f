# tests/test_retry.py
"""Tests for retry with exponential backoff."""

import threading

import pytest


class Flaky:
    def __init__(self, failures, exc=None):
        self.failures = failures
        self.calls = 0
        self.exc = exc

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            from unstruct.errors import GenerationError

            raise self.exc or GenerationError(f"failure {self.calls}")
        return b"ok"


class TestCallWithRetry:
    def test_scenario_b_sleeps_10_then_20_ms(self):
        from unstruct.retry import call_with_retry

        sleeps = []
        call = Flaky(failures=2)
        result = call_with_retry(call, max_retries=3, backoff=0.01, sleep=sleeps.append)
        assert result == b"ok"
        assert call.calls == 3
        assert sleeps == pytest.approx([0.01, 0.02])

    def test_zero_retries_calls_once(self):
        from unstruct.errors import GenerationError
        from unstruct.retry import call_with_retry

        call = Flaky(failures=1)
        with pytest.raises(GenerationError):
            call_with_retry(call, max_retries=0, backoff=0.01)
        assert call.calls == 1

    def test_exhausted_retries_reraise_last_error(self):
        from unstruct.errors import GenerationError
        from unstruct.retry import call_with_retry

        sleeps = []
        call = Flaky(failures=10)
        with pytest.raises(GenerationError, match="failure 3"):
            call_with_retry(call, max_retries=2, backoff=0.01, sleep=sleeps.append)
        assert call.calls == 3
        assert len(sleeps) == 2

    def test_non_retryable_error_stops_immediately(self):
        from unstruct.errors import InvalidParameterError
        from unstruct.retry import call_with_retry

        call = Flaky(failures=5, exc=InvalidParameterError("bad temperature"))
        with pytest.raises(InvalidParameterError):
            call_with_retry(call, max_retries=3, backoff=0.01, sleep=lambda s: None)
        assert call.calls == 1

    def test_foreign_exceptions_are_retried(self):
        from unstruct.retry import call_with_retry

        call = Flaky(failures=1, exc=ConnectionError("reset"))
        assert call_with_retry(call, max_retries=1, backoff=0.0, sleep=lambda s: None) == b"ok"

    def test_cancel_set_before_attempt(self):
        from unstruct.errors import GenerationCancelled
        from unstruct.retry import call_with_retry

        cancel = threading.Event()
        cancel.set()
        call = Flaky(failures=0)
        with pytest.raises(GenerationCancelled):
            call_with_retry(call, max_retries=2, backoff=0.01, cancel=cancel)
        assert call.calls == 0

    def test_cancel_wakes_backoff_sleep(self):
        import time

        from unstruct.errors import GenerationCancelled
        from unstruct.retry import call_with_retry

        cancel = threading.Event()
        threading.Timer(0.05, cancel.set).start()
        call = Flaky(failures=10)
        start = time.monotonic()
        with pytest.raises(GenerationCancelled):
            call_with_retry(call, max_retries=5, backoff=30.0, cancel=cancel)
        assert time.monotonic() - start < 5.0
        assert call.calls == 1
