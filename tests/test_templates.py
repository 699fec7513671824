"""
설정 파일 템플릿 테스트
"""

import os
import stat

import pytest

from k8s_cluster_installer.templates import render, unit_path, write_file


def test_startup_service():
    content = render("kubernetes-startup.service", services=["containerd"], delay=30, settle=10)
    assert "After=network.target containerd.service" in content
    assert "Wants=containerd.service" in content
    assert "sleep 30 && systemctl restart kubelet && sleep 10'" in content
    assert content.endswith("WantedBy=multi-user.target\n")


def test_startup_service_without_settle():
    content = render("kubernetes-startup.service", services=["containerd.service"], delay=30, settle=None)
    assert "sleep 30 && systemctl restart kubelet'" in content
    assert "containerd.service.service" not in content


def test_recovery_service():
    content = render("k8s-recovery.service", command="/usr/local/bin/k8s-installer fix-startup --yes", timeout=600)
    assert "ExecStart=/usr/local/bin/k8s-installer fix-startup --yes" in content
    assert "TimeoutStartSec=600" in content


def test_modules_and_sysctl():
    assert render("modules-load.conf", modules=["overlay", "br_netfilter"]) == "overlay\nbr_netfilter\n"
    sysctl = render("sysctl.conf", params={"net.ipv4.ip_forward": 1})
    assert sysctl.split() == ["net.ipv4.ip_forward", "=", "1"]


def test_unknown_template():
    with pytest.raises(KeyError):
        render("nope.service")


def test_write_file(tmp_path):
    path = str(tmp_path / "etc" / "join.txt")
    write_file(path, "kubeadm join ...\n", mode=0o644)
    assert open(path).read() == "kubeadm join ...\n"
    assert stat.S_IMODE(os.stat(path).st_mode) == 0o644


def test_unit_path():
    assert unit_path("disable-swap.service", "/tmp/systemd") == "/tmp/systemd/disable-swap.service"
