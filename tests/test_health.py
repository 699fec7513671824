"""
헬스체크 모듈 테스트
"""

import json

from k8s_cluster_installer.config import Config
from k8s_cluster_installer.health import HealthChecker


def test_check_all_unhealthy_when_kubectl_missing(tmp_path, fake_run):
    fake_run.on("is-active", stdout="active\n")
    fake_run.on("kubectl", raises=FileNotFoundError("kubectl"))

    checker = HealthChecker(Config(str(tmp_path / "absent.yaml")), str(tmp_path))
    results = checker.check_all()

    assert results["overall_status"] == "unhealthy"
    assert results["checks"]["kubelet"]["healthy"]
    assert results["checks"]["api_server"]["status"] == "error"
    assert "api_server" in results["failed_checks"]


def test_addon_not_installed_is_not_a_failure(tmp_path, fake_run):
    fake_run.on("get pods", stdout="")
    checker = HealthChecker(Config(str(tmp_path / "absent.yaml")), str(tmp_path))
    result = checker.check_addon("argocd", "ArgoCD")
    assert result["healthy"]
    assert result["status"] == "not_installed"


def test_save_health_report(tmp_path):
    checker = HealthChecker(Config(str(tmp_path / "absent.yaml")), str(tmp_path / "reports"))
    report = checker.save_health_report({"overall_status": "healthy", "checks": {}})
    assert json.loads(report.read_text(encoding="utf-8"))["overall_status"] == "healthy"


def test_addon_reported_unhealthy_when_api_server_down(tmp_path, fake_run):
    fake_run.on("get pods", returncode=1,
                stderr="The connection to the server 10.0.0.10:6443 was refused")
    checker = HealthChecker(Config(str(tmp_path / "absent.yaml")), str(tmp_path))

    result = checker.check_addon("metallb-system", "MetalLB")

    assert not result["healthy"]
    assert result["status"] == "error"
    assert "refused" in result["message"]


def test_addon_running(tmp_path, fake_run):
    fake_run.on("get pods", stdout="argocd-server-5d   1/1   Running   0   3m\n")
    checker = HealthChecker(Config(str(tmp_path / "absent.yaml")), str(tmp_path))
    result = checker.check_addon("argocd", "ArgoCD")
    assert result["healthy"]
    assert result["status"] == "ok"
