"""
수렴 폴러 테스트
"""

import pytest

from k8s_cluster_installer.poller import (
    Cancelled,
    Converged,
    Exhausted,
    NotReady,
    PredicateError,
    Ready,
    RetryWindow,
    describe,
    poll,
)


class Sequence:
    """정해진 결과를 순서대로 반환하는 프로브"""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0]


def test_ready_first_call():
    """첫 평가에서 Ready면 대기 없이 Converged"""
    sleeps = []
    predicate = Sequence(Ready("up"))
    outcome = poll(predicate, 5, 10, sleep=sleeps.append)
    assert outcome == Converged("up", 1)
    assert predicate.calls == 1
    assert sleeps == []


def test_always_not_ready_exhausts():
    sleeps = []
    predicate = Sequence(NotReady("pending"))
    outcome = poll(predicate, 5, 0, sleep=sleeps.append)
    assert isinstance(outcome, Exhausted)
    assert outcome.attempts == 5
    assert outcome.last_observed_state == NotReady("pending")
    assert predicate.calls == 5
    assert sleeps == [0, 0, 0, 0]


def test_predicate_error_retried_and_kept_distinct():
    """PredicateError도 재시도하지만 마지막 상태로 구분되어 남음"""
    predicate = Sequence(NotReady("x"), PredicateError("kubectl not found"))
    outcome = poll(predicate, 3, 0, sleep=lambda _: None)
    assert outcome.last_observed_state == PredicateError("kubectl not found")
    assert "probe error" in describe(outcome.last_observed_state)


def test_converges_after_retries():
    sleeps = []
    predicate = Sequence(NotReady(), NotReady(), Ready(3))
    outcome = poll(predicate, 10, 2.5, sleep=sleeps.append)
    assert outcome == Converged(3, 3)
    assert sleeps == [2.5, 2.5]


def test_cancel_before_first_evaluation():
    predicate = Sequence(Ready())
    outcome = poll(predicate, 5, 0, on_cancel=lambda: True, sleep=lambda _: None)
    assert outcome == Cancelled(0, None)
    assert predicate.calls == 0


def test_cancel_between_iterations():
    checks = iter([False, False, True])
    predicate = Sequence(NotReady("waiting"))
    outcome = poll(predicate, 10, 0, on_cancel=lambda: next(checks), sleep=lambda _: None)
    assert isinstance(outcome, Cancelled)
    assert outcome.attempts == 2
    assert outcome.last_observed_state == NotReady("waiting")


@pytest.mark.parametrize("max_attempts,interval", [(0, 1), (-1, 1), (3, -0.5)])
def test_invalid_budget(max_attempts, interval):
    with pytest.raises(ValueError):
        poll(Sequence(Ready()), max_attempts, interval)


def test_retry_window_ceiling():
    assert RetryWindow(30, 10).ceiling == 300
    assert RetryWindow(3, 15).ceiling == 45


@pytest.mark.parametrize("max_attempts,interval", [(0, 5), (-2, 5), (3, -1)])
def test_retry_window_rejects_bad_budget(max_attempts, interval):
    with pytest.raises(ValueError):
        RetryWindow(max_attempts, interval)


def test_describe():
    assert describe(None) == "nothing observed"
    assert describe(Ready()) == "ready"
    assert describe(NotReady("pending")) == "not ready (pending)"
