"""
공통 테스트 픽스처
"""

import subprocess

import pytest

from k8s_cluster_installer import system
from k8s_cluster_installer.logger import init_logger


@pytest.fixture(autouse=True)
def logger(tmp_path):
    """테스트마다 임시 디렉토리에 로그 기록"""
    return init_logger(str(tmp_path / "logs"), "DEBUG", False)


class FakeRun:
    """subprocess.run 대체. 명령 문자열에 포함된 키워드로 응답 결정"""

    def __init__(self):
        self.calls = []
        self.rules = []

    def on(self, fragment, stdout="", returncode=0, stderr="", raises=None):
        self.rules.append((fragment, stdout, returncode, stderr, raises))
        return self

    def __call__(self, cmd, **kwargs):
        text = cmd if isinstance(cmd, str) else " ".join(cmd)
        self.calls.append(text)
        for fragment, stdout, returncode, stderr, raises in self.rules:
            if fragment in text:
                if raises is not None:
                    raise raises
                out = stdout() if callable(stdout) else stdout
                return subprocess.CompletedProcess(cmd, returncode, out, stderr)
        return subprocess.CompletedProcess(cmd, 0, "", "")

    def ran(self, fragment):
        return [call for call in self.calls if fragment in call]


@pytest.fixture
def fake_run(monkeypatch):
    """외부 명령 실행을 가짜로 대체"""
    fake = FakeRun()
    monkeypatch.setattr(system.subprocess, "run", fake)
    return fake

