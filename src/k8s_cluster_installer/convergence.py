"""
서비스 수렴 드라이버
체크포인트 단위로 폴러를 실행하고, 예산 소진 시 복구 조치를 순서대로 한 번씩 적용
"""

import signal
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from rich.console import Console

from .errors import CheckpointFailed, InstallCancelled, RemediationFailed
from .logger import get_logger
from .poller import (
    Cancelled,
    Converged,
    ConvergenceOutcome,
    PredicateResult,
    RetryWindow,
    describe,
    poll,
)

console = Console()


@dataclass
class RemedialAction:
    """체크포인트가 수렴하지 않을 때 한 번 실행하는 복구 조치

    action은 성공 시 None 또는 True, 실패 시 False를 반환하거나 예외를 발생시킨다.
    """
    name: str
    action: Callable[[], Any]


@dataclass
class ServiceCheckpoint:
    """설치 순서 중 준비 조건으로 막혀 있는 지점"""
    name: str
    predicate: Callable[[], PredicateResult]
    remedies: List[RemedialAction] = field(default_factory=list)
    window: RetryWindow = field(default_factory=RetryWindow)


class ConvergenceDriver:
    """체크포인트 수렴 드라이버 (단일 스레드, 단일 작업자 전제)"""

    def __init__(self, on_cancel: Optional[Callable[[], bool]] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.on_cancel = on_cancel
        self.sleep = sleep
        self.logger = get_logger()

    def converge(self, checkpoint: ServiceCheckpoint) -> ConvergenceOutcome:
        """체크포인트 하나를 Converged 또는 Cancelled 상태로 이끈다

        Raises:
            CheckpointFailed: 모든 폴링 구간이 소진되고 남은 복구 조치가 없음
            RemediationFailed: 복구 조치 실행 자체가 실패함
        """
        self.logger.info(f"Checkpoint '{checkpoint.name}': probing")
        remaining = list(checkpoint.remedies)
        total_attempts = 0
        windows = 0

        while True:
            windows += 1
            outcome = poll(
                checkpoint.predicate,
                checkpoint.window.max_attempts,
                checkpoint.window.interval,
                on_cancel=self.on_cancel,
                sleep=self.sleep,
                label=checkpoint.name,
            )
            total_attempts += outcome.attempts

            if isinstance(outcome, Converged):
                self.logger.info(
                    f"Checkpoint '{checkpoint.name}' converged after {total_attempts} attempts"
                )
                return Converged(outcome.final_state, total_attempts)

            if isinstance(outcome, Cancelled):
                self.logger.warning(f"Checkpoint '{checkpoint.name}' cancelled")
                return Cancelled(total_attempts, outcome.last_observed_state)

            self.logger.warning(
                f"Checkpoint '{checkpoint.name}' exhausted window {windows} "
                f"({outcome.attempts} attempts): {describe(outcome.last_observed_state)}"
            )

            if not remaining:
                self.logger.error(
                    f"Checkpoint '{checkpoint.name}' failed after {total_attempts} attempts; "
                    f"last observed: {describe(outcome.last_observed_state)}"
                )
                raise CheckpointFailed(
                    checkpoint.name,
                    describe(outcome.last_observed_state),
                    total_attempts,
                    windows,
                )

            remedy = remaining.pop(0)
            self._remediate(checkpoint, remedy)

    def _remediate(self, checkpoint: ServiceCheckpoint, remedy: RemedialAction):
        """복구 조치 실행. 실패는 재시도하지 않고 바로 전파"""
        console.print(f"[yellow]⚠ {checkpoint.name}: {remedy.name}[/yellow]")
        self.logger.info(f"Checkpoint '{checkpoint.name}': running remedy '{remedy.name}'")
        try:
            result = remedy.action()
        except Exception as e:
            self.logger.error(f"Remedy '{remedy.name}' for '{checkpoint.name}' failed: {e}")
            raise RemediationFailed(checkpoint.name, remedy.name, e) from e

        if result is False:
            self.logger.error(f"Remedy '{remedy.name}' for '{checkpoint.name}' reported failure")
            raise RemediationFailed(checkpoint.name, remedy.name, "action reported failure")

    def require(self, checkpoint: ServiceCheckpoint) -> Any:
        """수렴한 최종 상태를 반환. 취소되면 InstallCancelled 발생"""
        outcome = self.converge(checkpoint)
        if isinstance(outcome, Cancelled):
            raise InstallCancelled(checkpoint.name, outcome.attempts)
        return outcome.final_state

    def run(self, checkpoints: List[ServiceCheckpoint]) -> List[ConvergenceOutcome]:
        """선언된 순서대로 체크포인트 실행. 취소되면 이후 체크포인트는 시작하지 않음"""
        outcomes = []
        for checkpoint in checkpoints:
            outcome = self.converge(checkpoint)
            outcomes.append(outcome)
            if isinstance(outcome, Cancelled):
                break
        return outcomes


class CancelSignal:
    """Ctrl+C(SIGINT)를 협조적 취소 플래그로 변환

    폴링 반복 사이에서만 확인되며, 이미 실행 중인 복구 조치는 끝까지 실행된다.
    """

    def __init__(self):
        self.requested = False

    def __call__(self) -> bool:
        return self.requested

    def request(self, signum=None, frame=None):
        if not self.requested:
            console.print("\n[yellow]취소 요청됨. 현재 단계가 끝나면 중단합니다...[/yellow]")
        self.requested = True

    @contextmanager
    def installed(self):
        previous = signal.signal(signal.SIGINT, self.request)
        try:
            yield self
        finally:
            signal.signal(signal.SIGINT, previous)
