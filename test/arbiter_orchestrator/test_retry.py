import pytest

from arbiter_orchestrator.errors import AuthenticationError, TransientNetworkError
from arbiter_orchestrator.retry import RetryPolicy


def test_retries_transient_errors_until_success(sleeper):
    attempts = []

    def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise TransientNetworkError("node unreachable")
        return "ok"

    policy = RetryPolicy(attempts=5, delay=2.0, sleep=sleeper)
    assert policy.call(flaky, description="login") == "ok"
    assert len(attempts) == 3
    assert sleeper.calls == [2.0, 2.0]


def test_gives_up_after_budget(sleeper):
    policy = RetryPolicy(attempts=5, delay=2.0, sleep=sleeper)

    def always_down():
        raise TransientNetworkError("down")

    with pytest.raises(TransientNetworkError):
        policy.call(always_down)
    assert len(sleeper.calls) == 4


def test_non_retryable_errors_propagate_immediately(sleeper):
    policy = RetryPolicy(attempts=5, sleep=sleeper)

    def rejected():
        raise AuthenticationError("bad password")

    with pytest.raises(AuthenticationError):
        policy.call(rejected)
    assert sleeper.calls == []


def test_custom_backoff(sleeper):
    policy = RetryPolicy(attempts=3, backoff=lambda attempt: 1.5 * attempt, sleep=sleeper)

    with pytest.raises(TransientNetworkError):
        policy.call(lambda: (_ for _ in ()).throw(TransientNetworkError("x")))
    assert sleeper.calls == [1.5, 3.0]


def test_attempts_must_be_positive():
    with pytest.raises(ValueError):
        RetryPolicy(attempts=0)
