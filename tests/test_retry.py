"""Tests for the retry combinator."""

import pytest

from qa.errors import LLMError, LLMRateLimitError, LLMTimeoutError
from qa.retry import exponential_backoff, with_retry


def _flaky(*outcomes):
    calls = []

    def operation():
        calls.append(1)
        outcome = outcomes[len(calls) - 1]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    operation.calls = calls
    return operation


class TestWithRetry:

    def test_first_success(self, no_sleep):
        result = with_retry(_flaky("done"), sleep=no_sleep)

        assert result.ok is True
        assert result.value == "done"
        assert result.attempts == 1
        assert no_sleep.delays == []

    def test_retries_transient_errors_with_backoff(self, no_sleep):
        operation = _flaky(LLMTimeoutError("slow"), LLMRateLimitError("busy"), "done")

        result = with_retry(operation, max_attempts=3, backoff_fn=exponential_backoff(1.0), sleep=no_sleep)

        assert result.ok is True
        assert result.attempts == 3
        assert no_sleep.delays == [1.0, 2.0]

    def test_gives_up_after_max_attempts(self, no_sleep):
        operation = _flaky(*[LLMTimeoutError("slow")] * 3)

        result = with_retry(operation, max_attempts=3, sleep=no_sleep)

        assert result.ok is False
        assert isinstance(result.error, LLMTimeoutError)
        assert result.attempts == 3
        assert len(operation.calls) == 3

    def test_non_retryable_error_stops_immediately(self, no_sleep):
        operation = _flaky(LLMError("bad request", status_code=400), "never")

        result = with_retry(operation, max_attempts=3, sleep=no_sleep)

        assert result.ok is False
        assert result.attempts == 1
        assert no_sleep.delays == []

    def test_custom_retry_predicate(self, no_sleep):
        operation = _flaky(ValueError("flaky"), "done")

        result = with_retry(operation, is_retryable=lambda e: isinstance(e, ValueError), sleep=no_sleep)

        assert result.ok is True


@pytest.mark.parametrize("attempt, delay", [(1, 1.0), (2, 2.0), (3, 4.0)])
def test_exponential_backoff_doubles(attempt, delay):
    assert exponential_backoff(1.0)(attempt) == delay
