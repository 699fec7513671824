"""
준비 상태 프로브
외부 명령 결과를 Ready / NotReady / PredicateError 세 가지로 해석

종료 코드만으로는 "명령이 없음"과 "명령은 실행됐지만 아직 준비 안 됨"을
구분할 수 없으므로 여기서 구분한다.
"""

import json
import os
import stat
import subprocess
from typing import Optional

from .poller import NotReady, PredicateError, PredicateResult, Ready
from .system import kubectl, run_command


def service_active(name: str) -> PredicateResult:
    """systemd 서비스 실행 여부"""
    try:
        result = run_command(["systemctl", "is-active", name], timeout=15)
    except FileNotFoundError:
        return PredicateError("systemctl not found")
    except subprocess.TimeoutExpired:
        return PredicateError(f"systemctl is-active {name} timed out")

    state = result.stdout.strip() or "unknown"
    if result.returncode == 0 and state == "active":
        return Ready(state)
    return NotReady(f"{name} is {state}")


def service_enabled(name: str) -> PredicateResult:
    """systemd 서비스 자동 시작 설정 여부"""
    try:
        result = run_command(["systemctl", "is-enabled", name], timeout=15)
    except FileNotFoundError:
        return PredicateError("systemctl not found")

    state = result.stdout.strip() or "unknown"
    if result.returncode == 0 and state == "enabled":
        return Ready(state)
    if "No such file" in result.stderr or state == "not-found":
        return PredicateError(f"{name} unit not found")
    return NotReady(f"{name} is {state}")


def api_server_reachable(kubeconfig: Optional[str] = None) -> PredicateResult:
    """kubectl cluster-info 응답 여부"""
    try:
        result = kubectl("cluster-info", kubeconfig=kubeconfig, timeout=30)
    except FileNotFoundError:
        return PredicateError("kubectl not found")
    except subprocess.TimeoutExpired:
        return NotReady("kubectl cluster-info timed out")

    if result.returncode == 0:
        return Ready("API server reachable")
    return NotReady(result.stderr.strip().splitlines()[-1] if result.stderr.strip() else "API server not reachable")


def nodes_ready(kubeconfig: Optional[str] = None) -> PredicateResult:
    """모든 노드의 Ready 조건이 True인지 확인"""
    try:
        result = kubectl("get", "nodes", "-o", "json", kubeconfig=kubeconfig, timeout=30)
    except FileNotFoundError:
        return PredicateError("kubectl not found")
    except subprocess.TimeoutExpired:
        return NotReady("kubectl get nodes timed out")

    if result.returncode != 0:
        return NotReady(result.stderr.strip() or "cannot list nodes")

    try:
        items = json.loads(result.stdout).get("items", [])
    except json.JSONDecodeError as e:
        return PredicateError(f"unreadable kubectl output: {e}")

    if not items:
        return NotReady("no nodes registered")

    not_ready = []
    for node in items:
        conditions = node.get("status", {}).get("conditions", [])
        ready = next((c for c in conditions if c.get("type") == "Ready"), None)
        if not ready or ready.get("status") != "True":
            not_ready.append(node["metadata"]["name"])

    if not_ready:
        return NotReady(f"not Ready: {', '.join(not_ready)}")
    return Ready([node["metadata"]["name"] for node in items])


def path_present(path: str) -> PredicateResult:
    """파일 또는 디렉토리 존재 여부"""
    if os.path.exists(path):
        return Ready(path)
    return NotReady(f"{path} missing")


def socket_present(path: str) -> PredicateResult:
    """유닉스 소켓 존재 여부"""
    try:
        mode = os.stat(path).st_mode
    except FileNotFoundError:
        return NotReady(f"{path} missing")
    except PermissionError as e:
        return PredicateError(str(e))
    if stat.S_ISSOCK(mode):
        return Ready(path)
    return NotReady(f"{path} is not a socket")


def secret_present(name: str, namespace: str) -> PredicateResult:
    """Kubernetes 시크릿 존재 여부"""
    try:
        result = kubectl("get", "secret", name, "-n", namespace, timeout=30)
    except FileNotFoundError:
        return PredicateError("kubectl not found")
    except subprocess.TimeoutExpired:
        return NotReady(f"kubectl get secret {name} timed out")

    if result.returncode == 0:
        return Ready(name)
    return NotReady(f"secret {namespace}/{name} not found yet")


def external_ip_assigned(service: str, namespace: str = "default") -> PredicateResult:
    """LoadBalancer 서비스에 외부 IP가 할당되었는지 확인"""
    try:
        result = kubectl(
            "get", "svc", service, "-n", namespace,
            "-o", "jsonpath={.status.loadBalancer.ingress[0].ip}",
            timeout=30,
        )
    except FileNotFoundError:
        return PredicateError("kubectl not found")
    except subprocess.TimeoutExpired:
        return NotReady(f"kubectl get svc {service} timed out")

    if result.returncode != 0:
        return NotReady(result.stderr.strip() or f"service {service} not found")

    address = result.stdout.strip()
    if address and address != "null":
        return Ready(address)
    return NotReady("pending")


def pods_present(namespace: str, selector: Optional[str] = None) -> PredicateResult:
    """네임스페이스에 파드가 하나 이상 있는지 확인"""
    args = ["get", "pods", "-n", namespace, "--no-headers"]
    if selector:
        args.extend(["-l", selector])
    try:
        result = kubectl(*args, timeout=30)
    except FileNotFoundError:
        return PredicateError("kubectl not found")
    except subprocess.TimeoutExpired:
        return PredicateError("kubectl get pods timed out")

    # 없는 네임스페이스도 kubectl은 0으로 응답함
    if result.returncode != 0:
        return PredicateError(result.stderr.strip() or f"cannot list pods in {namespace}")

    pods = [line for line in result.stdout.splitlines() if line.strip()]
    if pods:
        return Ready(len(pods))
    return NotReady(f"no pods in {namespace}")


def nvidia_driver_working() -> PredicateResult:
    """nvidia-smi 실행 가능 여부"""
    try:
        result = run_command(["nvidia-smi"], timeout=30)
    except FileNotFoundError:
        return PredicateError("nvidia-smi not installed")
    except subprocess.TimeoutExpired:
        return NotReady("nvidia-smi timed out")

    if result.returncode == 0:
        return Ready(result.stdout)
    return NotReady(result.stderr.strip() or result.stdout.strip() or "driver not loaded")
