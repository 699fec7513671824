"""
로깅 시스템
파일 및 콘솔 로깅, 디버그 모드 지원
"""

import logging
import os
from datetime import datetime
from typing import Optional
from rich.logging import RichHandler
from rich.console import Console

console = Console()

DEFAULT_LOG_DIR = "/var/log/k8s-cluster-installer"
FALLBACK_LOG_DIR = "~/.k8s-cluster-installer/logs"


class InstallerLogger:
    """설치 도구 로거"""

    def __init__(self, log_dir: str = DEFAULT_LOG_DIR, log_level: str = "INFO", debug: bool = False):
        self.log_level = logging.DEBUG if debug else getattr(logging, log_level.upper())
        self.debug_mode = debug

        # root가 아니면 /var/log에 쓸 수 없으므로 홈 디렉토리로 대체
        try:
            os.makedirs(log_dir, exist_ok=True)
        except PermissionError:
            log_dir = os.path.expanduser(FALLBACK_LOG_DIR)
            os.makedirs(log_dir, exist_ok=True)
        self.log_dir = log_dir

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        self.log_file = os.path.join(log_dir, f"installer_{timestamp}.log")
        self.error_file = os.path.join(log_dir, f"error_{timestamp}.log")

        self.logger = logging.getLogger("k8s_cluster_installer")
        self.logger.setLevel(self.log_level)
        self.logger.propagate = False

        for handler in list(self.logger.handlers):
            handler.close()
        self.logger.handlers.clear()

        # 파일 핸들러
        file_handler = logging.FileHandler(self.log_file, encoding='utf-8')
        file_handler.setLevel(self.log_level)
        file_formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        file_handler.setFormatter(file_formatter)
        self.logger.addHandler(file_handler)

        # 에러 파일 핸들러
        error_handler = logging.FileHandler(self.error_file, encoding='utf-8')
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(file_formatter)
        self.logger.addHandler(error_handler)

        # 콘솔 핸들러 (Rich)
        rich_handler = RichHandler(
            console=console,
            rich_tracebacks=True,
            show_time=False,
            show_path=debug
        )
        # 콘솔에는 경고 이상만, 진행 상황은 console.print로 출력
        rich_handler.setLevel(logging.DEBUG if debug else logging.WARNING)
        self.logger.addHandler(rich_handler)

    def debug(self, message: str):
        """디버그 로그"""
        self.logger.debug(message)

    def info(self, message: str):
        """정보 로그"""
        self.logger.info(message)

    def warning(self, message: str):
        """경고 로그"""
        self.logger.warning(message)

    def error(self, message: str):
        """에러 로그"""
        self.logger.error(message)

    def exception(self, message: str):
        """예외 로그 (트레이스백 포함)"""
        self.logger.exception(message)

    def get_log_files(self) -> dict:
        """로그 파일 경로 반환"""
        return {
            "main_log": self.log_file,
            "error_log": self.error_file,
            "log_dir": self.log_dir
        }


# 글로벌 로거 인스턴스
_logger: Optional[InstallerLogger] = None


def get_logger(log_dir: str = DEFAULT_LOG_DIR,
               log_level: str = "INFO",
               debug: bool = False) -> InstallerLogger:
    """로거 인스턴스 가져오기"""
    global _logger
    if _logger is None:
        _logger = InstallerLogger(log_dir, log_level, debug)
    return _logger


def init_logger(log_dir: str, log_level: str, debug: bool) -> InstallerLogger:
    """로거 초기화"""
    global _logger
    _logger = InstallerLogger(log_dir, log_level, debug)
    return _logger
