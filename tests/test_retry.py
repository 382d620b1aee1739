from __future__ import annotations

import pytest

from polyglot_crawl.errors import RetryExhaustedError
from polyglot_crawl.retry import RetryPolicy, call_with_retry


def test_retry_gives_up_after_max_attempts_and_names_the_count():
    calls = []
    sleeps = []

    def always_fails():
        calls.append(1)
        raise ValueError("no units")

    with pytest.raises(RetryExhaustedError) as exc_info:
        call_with_retry(
            always_fails,
            policy=RetryPolicy(max_retries=3, base_delay_s=2.0),
            context="Extract section id=7",
            sleep=sleeps.append,
        )

    assert len(calls) == 3
    assert sleeps == [2.0, 4.0]
    err = exc_info.value
    assert err.attempts == 3
    assert str(err) == "Extract section id=7 failed after 3 attempts: no units"
    assert isinstance(err.__cause__, ValueError)


def test_retry_returns_first_success_and_reports_retries():
    outcomes = [RuntimeError("flaky"), "ok"]
    retries = []

    def flaky():
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    result = call_with_retry(
        flaky,
        policy=RetryPolicy(max_retries=3, base_delay_s=1.0),
        context="op",
        sleep=lambda s: None,
        on_retry=lambda attempt, delay, e: retries.append((attempt, delay, str(e))),
    )

    assert result == "ok"
    assert retries == [(1, 1.0, "flaky")]


def test_backoff_is_capped():
    policy = RetryPolicy(max_retries=10, base_delay_s=2.0, max_delay_s=30.0)
    assert [policy.delay_for(n) for n in (1, 2, 3, 4, 5, 6)] == [
        2.0,
        4.0,
        8.0,
        16.0,
        30.0,
        30.0,
    ]
