"""
서비스 관리 및 복구 조치 테스트
"""

from k8s_cluster_installer import services
from k8s_cluster_installer.convergence import ConvergenceDriver
from k8s_cluster_installer.poller import RetryWindow
from k8s_cluster_installer.services import (
    ServiceManager,
    kubelet_config_valid,
    regenerate_containerd_config,
    reset_kubelet_state,
)


def test_checkpoint_starts_then_converges(fake_run):
    states = iter(["inactive", "inactive", "active"])
    fake_run.on("is-active containerd", stdout=lambda: next(states) + "\n")

    checkpoint = ServiceManager().checkpoint("containerd", RetryWindow(2, 0))
    assert checkpoint.name == "containerd active"
    assert [r.name for r in checkpoint.remedies] == ["start containerd", "restart containerd"]

    outcome = ConvergenceDriver(sleep=lambda _: None).converge(checkpoint)
    assert outcome.final_state == "active"
    assert fake_run.ran("systemctl start containerd")
    assert not fake_run.ran("systemctl restart containerd")


def test_ensure_enabled_reports_failure(fake_run):
    fake_run.on("is-enabled --quiet containerd", returncode=0)
    fake_run.on("is-enabled --quiet kubelet", returncode=1)

    assert ServiceManager().ensure_enabled(["containerd", "kubelet"]) is False
    assert fake_run.ran("systemctl enable kubelet")
    assert not fake_run.ran("systemctl enable containerd")


def test_regenerate_containerd_config(tmp_path, fake_run):
    config_path = tmp_path / "containerd" / "config.toml"
    fake_run.on("containerd config default", stdout="[plugins]\n  SystemdCgroup = false\n")

    regenerate_containerd_config(config_path=str(config_path), restart=False)
    assert "SystemdCgroup = true" in config_path.read_text()


def test_kubelet_config_valid(tmp_path):
    path = tmp_path / "config.yaml"
    assert kubelet_config_valid(str(path))
    path.write_text("kind: KubeletConfiguration\n")
    assert kubelet_config_valid(str(path))
    path.write_text("kind: [unclosed\n")
    assert not kubelet_config_valid(str(path))


def test_reset_kubelet_state(tmp_path, fake_run):
    (tmp_path / "pods" / "abc").mkdir(parents=True)
    (tmp_path / "cpu_manager_state").write_text("{}")
    (tmp_path / "config.yaml").write_text("kind: [broken\n")

    reset_kubelet_state(str(tmp_path))

    assert not (tmp_path / "pods" / "abc").exists()
    assert not (tmp_path / "cpu_manager_state").exists()
    assert not (tmp_path / "config.yaml").exists()
    assert list(tmp_path.glob("config.yaml.backup.*"))
    assert fake_run.ran("systemctl stop kubelet")
    assert not fake_run.ran("swapoff")


def test_delete_object(fake_run):
    services.delete_object("pod", namespace="metallb-system", selector="component=speaker")
    assert fake_run.ran("kubectl delete pod -n metallb-system -l component=speaker --ignore-not-found=true")
