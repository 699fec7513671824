"""
MetalLB 설치 모듈 테스트
"""

import pytest

from k8s_cluster_installer import metallb
from k8s_cluster_installer.config import Config
from k8s_cluster_installer.convergence import ConvergenceDriver
from k8s_cluster_installer.errors import CheckpointFailed, MalformedRange
from k8s_cluster_installer.iprange import BoundedRange, CIDRRange
from k8s_cluster_installer.metallb import MetalLBInstaller, prompt_ip_range, speakers_running
from k8s_cluster_installer.poller import NotReady, Ready


def answers(*values):
    queue = list(values)
    return lambda _prompt: queue.pop(0)


@pytest.fixture
def config(tmp_path):
    cfg = Config(str(tmp_path / "absent.yaml"))
    cfg.convergence.external_ip = {"max_attempts": 3, "interval": 0}
    cfg.convergence.speaker_restart = {"max_attempts": 2, "interval": 0}
    return cfg


def test_prompt_reprompts_until_valid():
    """잘못된 입력은 다시 묻고 올바른 범위를 반환"""
    ask = answers("", "999.1.1.1/24", "10.0.0.1/33", "192.168.1.240/28")
    assert prompt_ip_range(ask) == CIDRRange("192.168.1.240", 28)


def test_choose_range_from_config(config):
    config.metallb.ip_range = "192.168.1.200-192.168.1.207"
    installer = MetalLBInstaller(config, ConvergenceDriver())
    assert installer.choose_range(ask=answers()) == BoundedRange("192.168.1.200", "192.168.1.207")


def test_choose_range_rejects_bad_config(config):
    config.metallb.ip_range = "10.0.0.1-abc"
    with pytest.raises(MalformedRange):
        MetalLBInstaller(config, ConvergenceDriver()).choose_range(ask=answers())


def test_detect_network_from_nodes(config, fake_run):
    fake_run.on("InternalIP", stdout="192.168.10.5 192.168.10.6")
    assert MetalLBInstaller(config, ConvergenceDriver()).detect_network() == "192.168.10"


def test_detect_network_falls_back_to_route(config, fake_run):
    fake_run.on("get nodes", returncode=1)
    fake_run.on("ip route get", stdout="8.8.8.8 via 10.1.1.1 dev eth0 src 10.1.1.23 uid 0\n")
    assert MetalLBInstaller(config, ConvergenceDriver()).detect_network() == "10.1.1"


def test_verify_with_test_service(config, fake_run, monkeypatch):
    ips = iter(["", "", "192.168.1.241"])
    fake_run.on("jsonpath={.status.loadBalancer.ingress[0].ip}", stdout=lambda: next(ips))
    installer = MetalLBInstaller(config, ConvergenceDriver(sleep=lambda _: None))
    monkeypatch.setattr(installer.network, "check_http", lambda url, timeout=5: (True, "ok"))

    assert installer.verify_with_test_service() == "192.168.1.241"
    assert fake_run.ran("apply -f -")


def test_external_ip_never_assigned(config, fake_run):
    fake_run.on("jsonpath={.status.loadBalancer.ingress[0].ip}", stdout="")
    installer = MetalLBInstaller(config, ConvergenceDriver(sleep=lambda _: None))
    with pytest.raises(CheckpointFailed) as excinfo:
        installer.verify_with_test_service()
    assert excinfo.value.exhausted_after_attempts == 3
    assert "pending" in excinfo.value.last_observed_state


def test_speakers_running(fake_run):
    fake_run.on("component=speaker", stdout="Running Pending")
    assert speakers_running() == NotReady("Running Pending")


def test_open_memberlist_ports(config, fake_run, monkeypatch):
    monkeypatch.setattr(metallb.FirewallManager, "configure", lambda self, profile: (True, profile))
    phases = iter(["", "Running Running"])
    fake_run.on("jsonpath={.items[*].status.phase}", stdout=lambda: next(phases))

    MetalLBInstaller(config, ConvergenceDriver(sleep=lambda _: None)).open_memberlist_ports()

    assert len(fake_run.ran("delete pod")) == 1


def test_speakers_all_running(fake_run):
    fake_run.on("component=speaker", stdout="Running Running")
    assert speakers_running() == Ready(2)


def test_cleanup_with_assume_yes_deletes_without_asking(config, fake_run, monkeypatch):
    def no_prompt(*args, **kwargs):
        raise AssertionError("confirmation should be skipped")

    monkeypatch.setattr(metallb.Confirm, "ask", no_prompt)
    MetalLBInstaller(config, ConvergenceDriver(), assume_yes=True).cleanup_test_service()

    deleted = fake_run.ran("delete")
    assert len(deleted) == 2
    assert fake_run.ran("delete service metallb-test-service")
    assert fake_run.ran("delete deployment metallb-test-deployment")


def test_cleanup_keeps_service_when_declined(config, fake_run, monkeypatch):
    monkeypatch.setattr(metallb.Confirm, "ask", lambda *args, **kwargs: False)
    MetalLBInstaller(config, ConvergenceDriver()).cleanup_test_service()
    assert fake_run.ran("delete") == []
