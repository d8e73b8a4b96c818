"""Tests for the bounded retry policy."""
from __future__ import annotations

import pytest

from envctl.utils import random_password, sh_quote, user_password_hash
from envctl.utils.retry import RetryPolicy


def test_call_returns_first_success() -> None:
    """The wrapped call stops as soon as it succeeds."""
    calls: list[int] = []
    sleeps: list[float] = []

    def flaky() -> str:
        calls.append(1)
        if len(calls) < 3:
            raise KeyError("not yet")
        return "ok"

    policy = RetryPolicy(attempts=5, delay=0.5)
    assert policy.call(flaky, retry_on=(KeyError,), sleep=sleeps.append) == "ok"
    assert len(calls) == 3
    assert sleeps == [0.5, 0.5]


def test_call_surfaces_last_error_after_exhaustion() -> None:
    """Only the final failure is raised once attempts run out."""
    attempts: list[int] = []

    def always_fails() -> None:
        attempts.append(len(attempts))
        raise ValueError(f"failure {len(attempts)}")

    with pytest.raises(ValueError, match="failure 4"):
        RetryPolicy.fast(4).call(always_fails, retry_on=(ValueError,))
    assert len(attempts) == 4


@pytest.mark.parametrize("attempts", [1, 3])
def test_final_failure_propagates_without_trailing_sleep(attempts: int) -> None:
    """The last attempt raises its own error and is not followed by a sleep."""
    calls: list[int] = []
    sleeps: list[float] = []
    errors: list[KeyError] = []

    def always_fails() -> None:
        calls.append(1)
        errors.append(KeyError(len(calls)))
        raise errors[-1]

    with pytest.raises(KeyError) as excinfo:
        RetryPolicy(attempts=attempts, delay=0.1).call(always_fails, retry_on=(KeyError,), sleep=sleeps.append)
    assert excinfo.value is errors[-1]
    assert len(calls) == attempts
    assert sleeps == [0.1] * (attempts - 1)


def test_unlisted_errors_are_not_retried() -> None:
    """Exceptions outside ``retry_on`` propagate immediately."""
    attempts: list[int] = []

    def boom() -> None:
        attempts.append(1)
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        RetryPolicy.fast(5).call(boom, retry_on=(KeyError,))
    assert attempts == [1]


def test_policy_rejects_invalid_values() -> None:
    """Zero attempts or a negative delay are refused."""
    with pytest.raises(ValueError):
        RetryPolicy(attempts=0)
    with pytest.raises(ValueError):
        RetryPolicy(delay=-1)


def test_total_delay() -> None:
    """Sleeps only happen between attempts."""
    assert RetryPolicy(attempts=25, delay=0.2).total_delay == pytest.approx(4.8)
    assert RetryPolicy.fast().total_delay == 0


def test_password_helpers() -> None:
    """Passwords are random; hashes are stable for a given salt."""
    first, second = random_password(), random_password()
    assert first != second
    assert len(first) == 24

    digest = user_password_hash("sekrit")
    assert digest == user_password_hash("sekrit")
    assert digest != user_password_hash("sekrit", salt=b"other")
    assert len(digest) == 24


def test_sh_quote() -> None:
    """Values containing shell metacharacters become one quoted word."""
    assert sh_quote("plain") == "plain"
    assert sh_quote("it's here") == "'it'\"'\"'s here'"
