"""Unit tests for RetryPolicy"""

from __future__ import annotations

import pytest

from inboxq.infrastructure.errors import UpstreamError, UpstreamTransient
from inboxq.infrastructure.retry import RetryPolicy
from inboxq.observability.telemetry import _COUNTERS


def _policy(max_attempts: int = 2) -> tuple[RetryPolicy, list[float]]:
    delays: list[float] = []
    return RetryPolicy(stage="test", max_attempts=max_attempts, sleep_fn=delays.append), delays


def test_success_needs_no_retry():
    policy, delays = _policy()

    assert policy.execute(lambda: "ok") == "ok"
    assert delays == []


def test_transient_error_is_retried():
    policy, delays = _policy()
    attempts = []

    def flaky() -> str:
        attempts.append(1)
        if len(attempts) == 1:
            raise UpstreamTransient("503", status_code=503)
        return "ok"

    assert policy.execute(flaky) == "ok"
    assert len(attempts) == 2
    assert len(delays) == 1
    assert _COUNTERS["retry_count"] == 1


def test_retries_stop_at_max_attempts():
    policy, delays = _policy(max_attempts=3)
    attempts = []

    def always_down() -> None:
        attempts.append(1)
        raise UpstreamTransient("down")

    with pytest.raises(UpstreamTransient):
        policy.execute(always_down)

    assert len(attempts) == 3
    assert len(delays) == 2
    assert delays[1] > delays[0]


def test_permanent_error_is_not_retried():
    policy, delays = _policy()
    attempts = []

    def broken() -> None:
        attempts.append(1)
        raise UpstreamError("bad request", status_code=400)

    with pytest.raises(UpstreamError):
        policy.execute(broken)

    assert len(attempts) == 1
    assert delays == []


def test_delay_doubles_up_to_the_cap():
    delays: list[float] = []
    policy = RetryPolicy(
        stage="test",
        max_attempts=5,
        base_delay=1.0,
        max_delay=3.0,
        jitter=0.0,
        sleep_fn=delays.append,
    )

    def always_down() -> None:
        raise UpstreamTransient("down")

    with pytest.raises(UpstreamTransient):
        policy.execute(always_down)

    assert delays == [1.0, 2.0, 3.0, 3.0]


def test_at_least_one_attempt_is_required():
    with pytest.raises(ValueError):
        RetryPolicy(stage="test", max_attempts=0)
