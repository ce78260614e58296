"""Tests for retry_with_backoff."""
import pytest

from tanda_planner.retry_helper import backoff_delays, retry_with_backoff


class Flaky:
    """Fails `failures` times, then returns "ok"."""

    def __init__(self, failures, exc=ConnectionError):
        self.failures = failures
        self.exc = exc
        self.calls = 0

    def create_completion(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc(f"failure {self.calls}")
        return "ok"


def test_succeeds_after_transient_failures():
    delays = []
    func = Flaky(2)
    wrapped = retry_with_backoff(max_retries=3, initial_delay=1.0, exceptions=(ConnectionError,), sleep=delays.append)(func.create_completion)

    assert wrapped() == "ok"
    assert func.calls == 3
    assert delays == [1.0, 2.0]


def test_gives_up_after_max_retries():
    delays = []
    func = Flaky(10)
    wrapped = retry_with_backoff(max_retries=2, exceptions=(ConnectionError,), sleep=delays.append)(func.create_completion)

    with pytest.raises(ConnectionError, match="failure 3"):
        wrapped()
    assert func.calls == 3
    assert len(delays) == 2


def test_delay_is_capped():
    delays = []
    wrapped = retry_with_backoff(
        max_retries=4, initial_delay=10.0, backoff_multiplier=3.0, max_delay=25.0,
        exceptions=(ConnectionError,), sleep=delays.append,
    )(Flaky(4).create_completion)
    wrapped()
    assert delays == [10.0, 25.0, 25.0, 25.0]


def test_unlisted_exception_is_not_retried():
    func = Flaky(1, exc=KeyError)
    wrapped = retry_with_backoff(exceptions=(ConnectionError,), sleep=lambda s: None)(func.create_completion)
    with pytest.raises(KeyError):
        wrapped()
    assert func.calls == 1


def test_give_up_on_subclass():
    class Timeout(ConnectionError):
        pass

    func = Flaky(1, exc=Timeout)
    wrapped = retry_with_backoff(exceptions=(ConnectionError,), give_up_on=(Timeout,), sleep=lambda s: None)(func.create_completion)
    with pytest.raises(Timeout):
        wrapped()
    assert func.calls == 1


def test_backoff_delays_schedule():
    assert list(backoff_delays(4)) == [1.0, 2.0, 4.0, 8.0]
    assert list(backoff_delays(3, initial_delay=5.0, max_delay=8.0)) == [5.0, 8.0, 8.0]
    assert list(backoff_delays(0)) == []
