"""
준비 상태 프로브 테스트
"""

import json
import socket
import subprocess

from k8s_cluster_installer import probes
from k8s_cluster_installer.poller import NotReady, PredicateError, Ready


def node(name, ready):
    return {
        "metadata": {"name": name},
        "status": {"conditions": [{"type": "Ready", "status": "True" if ready else "False"}]},
    }


def test_service_active(fake_run):
    fake_run.on("is-active kubelet", stdout="active\n")
    assert probes.service_active("kubelet") == Ready("active")


def test_service_inactive(fake_run):
    fake_run.on("is-active kubelet", stdout="activating\n", returncode=3)
    result = probes.service_active("kubelet")
    assert isinstance(result, NotReady)
    assert "activating" in result.state


def test_missing_binary_is_predicate_error(fake_run):
    fake_run.on("kubectl", raises=FileNotFoundError("kubectl"))
    assert isinstance(probes.api_server_reachable(), PredicateError)
    assert isinstance(probes.nodes_ready(), PredicateError)


def test_timeout_is_not_ready(fake_run):
    fake_run.on("cluster-info", raises=subprocess.TimeoutExpired("kubectl", 30))
    assert isinstance(probes.api_server_reachable(), NotReady)


def test_nodes_ready(fake_run):
    fake_run.on("get nodes", stdout=json.dumps({"items": [node("master", True), node("gpu-1", True)]}))
    assert probes.nodes_ready("/etc/kubernetes/admin.conf") == Ready(["master", "gpu-1"])
    assert fake_run.ran("--kubeconfig=/etc/kubernetes/admin.conf")


def test_nodes_not_ready(fake_run):
    fake_run.on("get nodes", stdout=json.dumps({"items": [node("master", True), node("worker-1", False)]}))
    result = probes.nodes_ready()
    assert isinstance(result, NotReady)
    assert "worker-1" in result.state


def test_nodes_unreadable_output(fake_run):
    fake_run.on("get nodes", stdout="not json")
    assert isinstance(probes.nodes_ready(), PredicateError)


def test_external_ip_pending(fake_run):
    fake_run.on("get svc", stdout="")
    assert probes.external_ip_assigned("metallb-test-service") == NotReady("pending")


def test_external_ip_assigned(fake_run):
    fake_run.on("get svc", stdout="192.168.1.241")
    assert probes.external_ip_assigned("metallb-test-service") == Ready("192.168.1.241")


def test_pods_present(fake_run):
    fake_run.on("get pods", stdout="controller-1   1/1   Running   0   1m\nspeaker-x   1/1   Running   0   1m\n")
    assert probes.pods_present("metallb-system", "app=metallb") == Ready(2)
    assert fake_run.ran("-l app=metallb")


def test_pods_present_distinguishes_empty_from_failure(fake_run):
    fake_run.on("get pods -n argocd", stdout="")
    fake_run.on("get pods -n metallb-system", returncode=1, stderr="connection refused")
    assert probes.pods_present("argocd") == NotReady("no pods in argocd")
    assert probes.pods_present("metallb-system") == PredicateError("connection refused")


def test_secret_not_yet_present(fake_run):
    fake_run.on("get secret", returncode=1, stderr="NotFound")
    assert isinstance(probes.secret_present("argocd-initial-admin-secret", "argocd"), NotReady)


def test_path_and_socket(tmp_path):
    regular = tmp_path / "file"
    regular.write_text("x")
    assert probes.path_present(str(regular)) == Ready(str(regular))
    assert isinstance(probes.path_present(str(tmp_path / "missing")), NotReady)
    assert isinstance(probes.socket_present(str(regular)), NotReady)

    sock_path = str(tmp_path / "c.sock")
    server = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        server.bind(sock_path)
        assert probes.socket_present(sock_path) == Ready(sock_path)
    finally:
        server.close()


def test_nvidia_driver_missing(fake_run):
    fake_run.on("nvidia-smi", raises=FileNotFoundError("nvidia-smi"))
    assert isinstance(probes.nvidia_driver_working(), PredicateError)
