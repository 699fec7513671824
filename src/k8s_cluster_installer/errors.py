"""
설치 과정에서 발생하는 예외 정의
"""

from typing import Any, List, Optional


class InstallerError(Exception):
    """설치 도구 공통 예외"""
    pass


class MalformedRange(InstallerError, ValueError):
    """IP 범위 또는 주소 입력 파싱 실패"""

    def __init__(self, text: str, reason: str = ""):
        self.text = text
        self.reason = reason
        message = f"Malformed IP range {text!r}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class CommandError(InstallerError):
    """외부 명령 실행 실패"""

    def __init__(self, cmd: List[str], returncode: int, stderr: str = ""):
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = (stderr or "").strip()
        message = f"Command failed ({returncode}): {' '.join(cmd)}"
        if self.stderr:
            message += f"\n{self.stderr}"
        super().__init__(message)


class CheckpointFailed(InstallerError):
    """체크포인트가 재시도 예산 안에 수렴하지 못함

    Attributes:
        name: 체크포인트 이름
        last_observed_state: 마지막으로 관찰된 프로브 결과
        exhausted_after_attempts: 실제로 사용한 총 시도 횟수
    """

    def __init__(self, name: str, last_observed_state: Any, exhausted_after_attempts: int,
                 windows: int = 1):
        self.name = name
        self.last_observed_state = last_observed_state
        self.exhausted_after_attempts = exhausted_after_attempts
        self.windows = windows
        super().__init__(
            f"Checkpoint '{name}' did not converge after {exhausted_after_attempts} attempts "
            f"({windows} polling window(s)); last observed: {last_observed_state}"
        )


class RemediationFailed(InstallerError):
    """복구 조치 자체가 실패함 (자동 재시도하지 않음)"""

    def __init__(self, name: str, action: str, cause: Optional[BaseException] = None):
        self.name = name
        self.action = action
        self.cause = cause
        super().__init__(
            f"Remedial action '{action}' for checkpoint '{name}' failed: {cause}"
        )


class InstallCancelled(InstallerError):
    """사용자 요청(Ctrl+C)으로 체크포인트 대기가 중단됨"""

    def __init__(self, name: str, attempts: int = 0):
        self.name = name
        self.attempts = attempts
        super().__init__(f"Cancelled while waiting for '{name}' ({attempts} attempts)")


class InvalidRetryWindow(InstallerError, ValueError):
    """재시도 구간 설정값이 올바르지 않음"""

    def __init__(self, name: str, reason: str):
        self.name = name
        self.reason = reason
        super().__init__(f"Invalid retry window '{name}': {reason}")
