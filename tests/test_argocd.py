"""
ArgoCD 설치 모듈 테스트
"""

import base64

import pytest

from k8s_cluster_installer.argocd import ArgoCDInstaller, parse_pools, validate_loadbalancer_ip
from k8s_cluster_installer.config import Config
from k8s_cluster_installer.convergence import ConvergenceDriver
from k8s_cluster_installer.errors import InstallerError
from k8s_cluster_installer.iprange import parse_ip_range

POOLS = [parse_ip_range("192.168.1.240/28"), parse_ip_range("10.0.0.100-10.0.0.105")]


@pytest.fixture
def config(tmp_path):
    cfg = Config(str(tmp_path / "absent.yaml"))
    cfg.convergence.admin_secret = {"max_attempts": 2, "interval": 0}
    return cfg


@pytest.mark.parametrize("text,ok", [
    ("192.168.1.241", True),
    (" 10.0.0.105 ", True),
    ("", False),
    ("192.168.1", False),
    ("192.168.1.300", False),
    ("192.168.1.239", False),
    ("10.0.0.106", False),
    ("192.168.1.250", False),
])
def test_validate_loadbalancer_ip(text, ok):
    assert validate_loadbalancer_ip(text, POOLS, {"192.168.1.250"})[0] is ok


def test_parse_pools_skips_bad_entries():
    pools = parse_pools(["192.168.1.240/28", "garbage", "10.0.0.1-10.0.0.2"])
    assert [str(p) for p in pools] == ["192.168.1.240/28", "10.0.0.1-10.0.0.2"]


def test_choose_ip_reprompts(config, fake_run):
    fake_run.on("get svc --all-namespaces", stdout="192.168.1.241\n\n")
    installer = ArgoCDInstaller(config, ConvergenceDriver())
    installer.pools = POOLS

    queue = ["192.168.1.241", "172.16.0.1", "192.168.1.242"]
    assert installer.choose_ip(lambda _prompt: queue.pop(0)) == "192.168.1.242"
    assert queue == []


def test_choose_ip_rejects_configured_address_outside_pools(config, fake_run):
    config.argocd.loadbalancer_ip = "172.16.0.1"
    installer = ArgoCDInstaller(config, ConvergenceDriver())
    installer.pools = POOLS
    with pytest.raises(InstallerError):
        installer.choose_ip()


def test_load_pools_requires_a_pool(config, fake_run):
    fake_run.on("get ipaddresspool", stdout="")
    with pytest.raises(InstallerError):
        ArgoCDInstaller(config, ConvergenceDriver()).load_pools()


def test_read_admin_password(config, fake_run):
    fake_run.on("get secret argocd-initial-admin-secret -n argocd", returncode=0)
    fake_run.on("jsonpath={.data.password}", stdout=base64.b64encode(b"s3cret").decode())
    installer = ArgoCDInstaller(config, ConvergenceDriver(sleep=lambda _: None))
    assert installer.read_admin_password() == "s3cret"
