"""
로거 테스트
"""

import logging
import os

from k8s_cluster_installer import logger as logger_module
from k8s_cluster_installer.logger import get_logger, init_logger


def test_log_files_created(tmp_path):
    log = init_logger(str(tmp_path / "logs"), "INFO", False)
    log.info("kubeadm init finished")
    log.error("kubelet failed to start")

    files = log.get_log_files()
    assert files["log_dir"] == str(tmp_path / "logs")
    with open(files["main_log"], encoding="utf-8") as f:
        main = f.read()
    with open(files["error_log"], encoding="utf-8") as f:
        errors = f.read()
    assert "kubeadm init finished" in main
    assert "kubelet failed to start" in errors
    assert "kubeadm init finished" not in errors
    assert get_logger() is log


def test_console_shows_warnings_unless_debug(tmp_path):
    quiet = init_logger(str(tmp_path / "quiet"), "INFO", False)
    console_levels = [h.level for h in quiet.logger.handlers if not isinstance(h, logging.FileHandler)]
    assert console_levels == [logging.WARNING]

    verbose = init_logger(str(tmp_path / "verbose"), "INFO", True)
    assert verbose.logger.level == logging.DEBUG
    console_levels = [h.level for h in verbose.logger.handlers if not isinstance(h, logging.FileHandler)]
    assert console_levels == [logging.DEBUG]


def test_falls_back_when_log_dir_not_writable(tmp_path, monkeypatch):
    fallback = tmp_path / "fallback"
    real_makedirs = os.makedirs

    def makedirs(path, exist_ok=False):
        if str(path).startswith("/var/log"):
            raise PermissionError(13, "Permission denied", path)
        real_makedirs(path, exist_ok=exist_ok)

    monkeypatch.setattr(logger_module.os, "makedirs", makedirs)
    monkeypatch.setattr(logger_module, "FALLBACK_LOG_DIR", str(fallback))

    log = init_logger("/var/log/k8s-cluster-installer", "INFO", False)

    assert log.log_dir == str(fallback)
    assert os.path.dirname(log.log_file) == str(fallback)
