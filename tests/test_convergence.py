"""
서비스 수렴 드라이버 테스트
"""

import signal

import pytest

from k8s_cluster_installer.convergence import (
    CancelSignal,
    ConvergenceDriver,
    RemedialAction,
    ServiceCheckpoint,
)
from k8s_cluster_installer.errors import CheckpointFailed, InstallCancelled, RemediationFailed
from k8s_cluster_installer.poller import Cancelled, Converged, NotReady, Ready, RetryWindow


def failing_then_ready(failures):
    calls = []

    def predicate():
        calls.append(1)
        if len(calls) <= failures:
            return NotReady(f"attempt {len(calls)}")
        return Ready("running")

    return predicate, calls


def test_remedy_then_converge():
    """3번 실패 후 성공, 구간당 2회: 복구 한 번 후 Converged"""
    predicate, calls = failing_then_ready(3)
    remedies = []
    checkpoint = ServiceCheckpoint(
        name="kubelet active",
        predicate=predicate,
        remedies=[RemedialAction("restart kubelet", lambda: remedies.append("restart"))],
        window=RetryWindow(max_attempts=2, interval=0),
    )
    outcome = ConvergenceDriver(sleep=lambda _: None).converge(checkpoint)

    assert isinstance(outcome, Converged)
    assert outcome.final_state == "running"
    assert outcome.attempts == 4
    assert remedies == ["restart"]
    assert len(calls) == 4


def test_no_remedy_raises_checkpoint_failed():
    checkpoint = ServiceCheckpoint(
        name="API server reachable",
        predicate=lambda: NotReady("connection refused"),
        window=RetryWindow(max_attempts=3, interval=0),
    )
    with pytest.raises(CheckpointFailed) as excinfo:
        ConvergenceDriver(sleep=lambda _: None).converge(checkpoint)

    error = excinfo.value
    assert error.name == "API server reachable"
    assert error.exhausted_after_attempts == 3
    assert "connection refused" in error.last_observed_state
    assert "3 attempts" in str(error)


def test_remedies_applied_in_order_once_each():
    order = []
    checkpoint = ServiceCheckpoint(
        name="containerd active",
        predicate=lambda: NotReady("inactive"),
        remedies=[
            RemedialAction("start", lambda: order.append("start")),
            RemedialAction("restart", lambda: order.append("restart")),
        ],
        window=RetryWindow(max_attempts=2, interval=0),
    )
    with pytest.raises(CheckpointFailed) as excinfo:
        ConvergenceDriver(sleep=lambda _: None).converge(checkpoint)

    assert order == ["start", "restart"]
    assert excinfo.value.exhausted_after_attempts == 6
    assert excinfo.value.windows == 3


def test_remedy_exception_is_remediation_failed():
    def broken():
        raise OSError("disk full")

    checkpoint = ServiceCheckpoint(
        name="containerd active",
        predicate=lambda: NotReady("inactive"),
        remedies=[RemedialAction("regenerate config", broken)],
        window=RetryWindow(max_attempts=1, interval=0),
    )
    with pytest.raises(RemediationFailed) as excinfo:
        ConvergenceDriver(sleep=lambda _: None).converge(checkpoint)

    assert excinfo.value.action == "regenerate config"
    assert isinstance(excinfo.value.cause, OSError)


def test_remedy_returning_false_is_remediation_failed():
    attempts = []
    checkpoint = ServiceCheckpoint(
        name="kubelet active",
        predicate=lambda: attempts.append(1) or NotReady(),
        remedies=[RemedialAction("start kubelet", lambda: False)],
        window=RetryWindow(max_attempts=1, interval=0),
    )
    with pytest.raises(RemediationFailed):
        ConvergenceDriver(sleep=lambda _: None).converge(checkpoint)
    assert len(attempts) == 1


def test_cancel_returns_cancelled_and_run_stops():
    second = []
    driver = ConvergenceDriver(on_cancel=lambda: True, sleep=lambda _: None)
    outcomes = driver.run([
        ServiceCheckpoint("first", lambda: Ready()),
        ServiceCheckpoint("second", lambda: second.append(1) or Ready()),
    ])
    assert outcomes == [Cancelled(0, None)]
    assert second == []


def test_run_in_order():
    seen = []
    driver = ConvergenceDriver(sleep=lambda _: None)
    outcomes = driver.run([
        ServiceCheckpoint("a", lambda: seen.append("a") or Ready("a")),
        ServiceCheckpoint("b", lambda: seen.append("b") or Ready("b")),
    ])
    assert seen == ["a", "b"]
    assert [o.final_state for o in outcomes] == ["a", "b"]


def test_require_raises_when_cancelled():
    driver = ConvergenceDriver(on_cancel=lambda: True, sleep=lambda _: None)
    with pytest.raises(InstallCancelled):
        driver.require(ServiceCheckpoint("nodes Ready", lambda: Ready()))


def test_require_returns_final_state():
    driver = ConvergenceDriver(sleep=lambda _: None)
    assert driver.require(ServiceCheckpoint("ip", lambda: Ready("192.168.1.241"))) == "192.168.1.241"


def test_cancel_signal_flag():
    cancel = CancelSignal()
    assert cancel() is False
    with cancel.installed():
        assert signal.getsignal(signal.SIGINT) == cancel.request
        cancel.request(signal.SIGINT, None)
    assert cancel() is True
    assert signal.getsignal(signal.SIGINT) != cancel.request
