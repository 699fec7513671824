"""
수렴 폴러 모듈
최종적으로 일관성을 갖는 외부 상태(서비스, 클러스터 API, 주소 할당 등)를
정해진 시도 횟수와 간격 안에서 반복 확인
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

from .logger import get_logger


@dataclass(frozen=True)
class Ready:
    """원하는 상태에 도달함"""
    state: Any = None


@dataclass(frozen=True)
class NotReady:
    """외부 시스템이 응답했지만 아직 원하는 상태가 아님"""
    state: Any = None


@dataclass(frozen=True)
class PredicateError:
    """프로브 자체가 상태를 판단하지 못함 (명령 없음, 출력 해석 불가 등)"""
    cause: Any = None


PredicateResult = Union[Ready, NotReady, PredicateError]


@dataclass(frozen=True)
class RetryWindow:
    """한 번의 폴링 구간 예산"""
    max_attempts: int = 30
    interval: float = 10.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1 (got {self.max_attempts})")
        if self.interval < 0:
            raise ValueError(f"interval must not be negative (got {self.interval})")

    @property
    def ceiling(self) -> float:
        """최대 대기 시간 (초)"""
        return self.max_attempts * self.interval


@dataclass
class ConvergenceAttempt:
    """poll 호출 한 번 동안의 진행 상황"""
    budget_total: int
    interval_seconds: float
    attempt_index: int = 0
    last_observed_state: Optional[PredicateResult] = None


@dataclass(frozen=True)
class Converged:
    final_state: Any
    attempts: int


@dataclass(frozen=True)
class Exhausted:
    last_observed_state: Optional[PredicateResult]
    attempts: int


@dataclass(frozen=True)
class Cancelled:
    attempts: int
    last_observed_state: Optional[PredicateResult] = None


ConvergenceOutcome = Union[Converged, Exhausted, Cancelled]


def describe(result: Optional[PredicateResult]) -> str:
    """진단 메시지용 결과 설명"""
    if result is None:
        return "nothing observed"
    if isinstance(result, Ready):
        return f"ready ({result.state})" if result.state is not None else "ready"
    if isinstance(result, NotReady):
        return f"not ready ({result.state})" if result.state is not None else "not ready"
    return f"probe error ({result.cause})"


def poll(predicate: Callable[[], PredicateResult],
         max_attempts: int,
         interval: float,
         on_cancel: Optional[Callable[[], bool]] = None,
         sleep: Callable[[float], None] = time.sleep,
         label: str = "condition") -> ConvergenceOutcome:
    """조건이 Ready가 되거나, 시도 횟수를 소진하거나, 취소될 때까지 반복 확인

    Args:
        predicate: Ready / NotReady / PredicateError 중 하나를 반환하는 프로브
        max_attempts: 최대 평가 횟수 (1 이상)
        interval: 평가 사이 대기 시간 (초, 고정 간격)
        on_cancel: 매 반복 시작 시 호출, True면 즉시 Cancelled 반환
        sleep: 대기 함수
        label: 로그에 표시할 이름

    Returns:
        Converged, Exhausted, Cancelled 중 하나
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")
    if interval < 0:
        raise ValueError("interval must not be negative")

    logger = get_logger()
    attempt = ConvergenceAttempt(budget_total=max_attempts, interval_seconds=interval)

    while True:
        if on_cancel is not None and on_cancel():
            logger.warning(f"Polling for {label} cancelled after {attempt.attempt_index} attempts")
            return Cancelled(attempt.attempt_index, attempt.last_observed_state)

        attempt.attempt_index += 1
        result = predicate()
        attempt.last_observed_state = result

        if isinstance(result, Ready):
            logger.debug(f"{label}: ready on attempt {attempt.attempt_index}/{max_attempts}")
            return Converged(result.state, attempt.attempt_index)

        logger.debug(
            f"{label}: attempt {attempt.attempt_index}/{max_attempts} -> {describe(result)}"
        )

        if attempt.attempt_index == max_attempts:
            return Exhausted(result, attempt.attempt_index)

        sleep(interval)
