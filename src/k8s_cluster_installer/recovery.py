"""
노드 복구 및 진단 모듈
재부팅 후 시작 문제 해결, kubelet 트러블슈팅, 자동 시작 확인
"""

import glob
import os
import shutil
from functools import partial
from typing import Dict, List, Optional, Tuple

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .config import Config
from .convergence import ConvergenceDriver, RemedialAction, ServiceCheckpoint
from .k8s import K8sInstaller, STARTUP_SERVICE
from .logger import get_logger
from .probes import socket_present
from .services import (
    KUBELET_DIR,
    ServiceManager,
    disable_swap,
    kubelet_config_valid,
    reset_kubelet_state,
    swap_enabled,
)
from .system import command_exists, kubectl, run_command
from .templates import unit_path

console = Console()

CONTAINERD_SOCKET = "/run/containerd/containerd.sock"
KUBELET_PKI_DIR = os.path.join(KUBELET_DIR, "pki")
USAGE_WARNING_PERCENT = 90


def parse_meminfo(text: str) -> Dict[str, int]:
    """/proc/meminfo 내용을 kB 단위 딕셔너리로 변환"""
    values = {}
    for line in text.splitlines():
        key, _, rest = line.partition(":")
        fields = rest.split()
        if fields and fields[0].isdigit():
            values[key.strip()] = int(fields[0])
    return values


def memory_usage_percent(meminfo_path: str = "/proc/meminfo") -> Optional[int]:
    try:
        with open(meminfo_path, "r", encoding="utf-8") as f:
            info = parse_meminfo(f.read())
    except OSError:
        return None
    total = info.get("MemTotal")
    available = info.get("MemAvailable")
    if not total or available is None:
        return None
    return round((total - available) * 100 / total)


def disk_usage_percent(path: str) -> Optional[int]:
    try:
        usage = shutil.disk_usage(path)
    except OSError:
        return None
    return round(usage.used * 100 / usage.total) if usage.total else None


def addon_pods(namespace: str, selector: Optional[str] = None) -> Tuple[int, int]:
    """(전체 파드 수, Running 파드 수)"""
    args = ["get", "pods", "-n", namespace, "--no-headers"]
    if selector:
        args.extend(["-l", selector])
    result = kubectl(*args)
    if result.returncode != 0:
        return 0, 0
    lines = [line for line in result.stdout.splitlines() if line.strip()]
    running = sum(1 for line in lines if "Running" in line.split())
    return len(lines), running


class RecoveryManager:
    """노드 복구 클래스"""

    def __init__(self, config: Config, driver: ConvergenceDriver, debug: bool = False):
        self.config = config
        self.driver = driver
        self.debug = debug
        self.logger = get_logger()
        self.services = ServiceManager(debug)
        self.installer = K8sInstaller(config, driver, debug)

    def fix_startup(self):
        """재부팅 후 containerd/kubelet 및 클러스터 상태 복구"""
        console.print("\n[bold cyan]Kubernetes 시작 문제 복구 중...[/bold cyan]\n")
        self.logger.info("Fixing Kubernetes startup...")

        self.driver.require(self.services.checkpoint("containerd", self.config.window("service_start")))
        console.print("  [green]✓[/green] containerd 실행 중")
        self.driver.require(self.services.checkpoint("kubelet", self.config.window("kubelet_start")))
        console.print("  [green]✓[/green] kubelet 실행 중")

        if not os.path.exists(self.config.cluster.admin_kubeconfig):
            console.print("[cyan]워커 노드입니다. 클러스터 확인은 건너뜁니다.[/cyan]")
            self.logger.info("admin.conf not present, skipping control-plane checks")
            return

        self.services.restart("kubelet")
        self.driver.require(self.installer.api_server_checkpoint())
        console.print("  [green]✓[/green] API 서버 응답")
        nodes = self.driver.require(self.installer.nodes_ready_checkpoint())
        console.print(f"  [green]✓[/green] 노드 Ready: {', '.join(nodes)}")

        self.delete_failed_pods()
        self.installer.setup_kubeconfig()
        console.print("[green]✓ 시작 문제 복구 완료[/green]")

    def delete_failed_pods(self) -> int:
        """Failed 상태 파드 정리"""
        kubeconfig = self.config.cluster.admin_kubeconfig
        result = kubectl(
            "get", "pods", "--all-namespaces", "--field-selector=status.phase=Failed",
            "-o", "jsonpath={range .items[*]}{.metadata.namespace} {.metadata.name}{\"\\n\"}{end}",
            kubeconfig=kubeconfig,
        )
        deleted = 0
        for line in result.stdout.splitlines():
            fields = line.split()
            if len(fields) != 2:
                continue
            namespace, name = fields
            kubectl("delete", "pod", name, "-n", namespace, kubeconfig=kubeconfig)
            deleted += 1
        if deleted:
            console.print(f"  [green]✓[/green] Failed 파드 {deleted}개 삭제")
            self.logger.info(f"Deleted {deleted} failed pods")
        return deleted

    def certificate_expiry(self, pki_dir: str = KUBELET_PKI_DIR) -> List[Tuple[str, str]]:
        """kubelet 인증서 만료일 목록"""
        expiries = []
        for cert in sorted(glob.glob(os.path.join(pki_dir, "*.crt"))):
            result = run_command(["openssl", "x509", "-in", cert, "-noout", "-enddate"])
            if result.returncode == 0:
                expiries.append((os.path.basename(cert), result.stdout.strip().partition("=")[2]))
        return expiries

    def show_diagnostics(self, name: str) -> Tuple[str, str]:
        """systemctl status와 최근 journal 로그 출력"""
        status = self.services.status_text(name)
        journal = self.services.journal_tail(name)
        console.print(Panel(Text(status or "(출력 없음)"), title=f"systemctl status {name}", border_style="yellow"))
        console.print(Panel(Text(journal or "(최근 로그 없음)"), title=f"journalctl -u {name}", border_style="yellow"))
        self.logger.debug(f"{name} journal tail:\n{journal}")
        return status, journal

    def troubleshoot_kubelet(self):
        """kubelet 시작 실패 원인 점검 및 복구"""
        console.print("\n[bold cyan]kubelet 트러블슈팅...[/bold cyan]\n")
        self.logger.info("Troubleshooting kubelet...")

        if not self.services.is_active("kubelet"):
            self.show_diagnostics("kubelet")

        if swap_enabled():
            console.print("  [yellow]⚠[/yellow] swap이 활성화되어 있습니다. 비활성화합니다.")
            disable_swap()
        else:
            console.print("  [green]✓[/green] swap 비활성화됨")

        self.driver.require(ServiceCheckpoint(
            name="containerd socket present",
            predicate=partial(socket_present, CONTAINERD_SOCKET),
            remedies=[RemedialAction("restart containerd", partial(self.services.restart, "containerd"))],
            window=self.config.window("service_start"),
        ))
        console.print(f"  [green]✓[/green] containerd 소켓: {CONTAINERD_SOCKET}")

        if kubelet_config_valid():
            console.print("  [green]✓[/green] kubelet 설정 YAML 정상")
        else:
            console.print("  [yellow]⚠[/yellow] kubelet 설정이 손상되었습니다. 백업 후 제거합니다.")
            self.logger.warning("Corrupted kubelet config.yaml")

        if os.path.exists("/etc/kubernetes/kubelet.conf"):
            console.print("  [green]✓[/green] kubelet kubeconfig 존재")
        else:
            console.print("  [yellow]⚠[/yellow] /etc/kubernetes/kubelet.conf 없음 (조인 전 노드)")

        for name, expiry in self.certificate_expiry():
            console.print(f"  • 인증서 {name}: {expiry}")

        disk = disk_usage_percent(KUBELET_DIR)
        if disk is not None and disk > USAGE_WARNING_PERCENT:
            console.print(f"  [yellow]⚠[/yellow] 디스크 사용률 {disk}%")
            self.logger.warning(f"Disk usage of {KUBELET_DIR} at {disk}%")
        memory = memory_usage_percent()
        if memory is not None and memory > USAGE_WARNING_PERCENT:
            console.print(f"  [yellow]⚠[/yellow] 메모리 사용률 {memory}%")
            self.logger.warning(f"Memory usage at {memory}%")

        reset_kubelet_state()
        self.services.daemon_reload()
        self.driver.require(self.services.checkpoint("kubelet", self.config.window("kubelet_start")))
        console.print("[green]✓ kubelet 실행 중[/green]")

    def verify_autostart(self) -> Dict[str, bool]:
        """서비스 자동 시작 및 애드온 상태 확인"""
        console.print("\n[bold cyan]자동 시작 설정 확인 중...[/bold cyan]\n")
        report = {}

        installed = [name for name in ("containerd", "kubelet") if self.services.exists(name)]
        report["services_enabled"] = self.services.ensure_enabled(installed)
        for name in installed:
            if not self.services.is_active(name):
                console.print(f"  [yellow]⚠[/yellow] {name} 실행 중이 아님, 시작합니다...")
                run_command(["systemctl", "start", name])
            report[f"{name}_active"] = self.services.is_active(name)

        if not os.path.exists(unit_path(STARTUP_SERVICE)):
            self.installer.ensure_autostart(settle=10)
        report["startup_unit"] = self.services.is_enabled(STARTUP_SERVICE)

        if command_exists("kubectl"):
            table = Table(title="애드온 상태", show_header=True, header_style="bold magenta")
            table.add_column("애드온", style="cyan")
            table.add_column("파드 (Running/전체)")
            addons = [
                ("MetalLB", self.config.metallb.namespace, None),
                ("ArgoCD", self.config.argocd.namespace, None),
                ("NVIDIA device plugin", "kube-system", "name=nvidia-device-plugin-ds"),
            ]
            for label, namespace, selector in addons:
                total, running = addon_pods(namespace, selector)
                if total:
                    report[label] = running == total
                    table.add_row(label, f"{running}/{total}")
                else:
                    table.add_row(label, "[dim]미설치[/dim]")
            console.print(table)

        ok = all(report.values())
        color = "green" if ok else "yellow"
        console.print(f"\n[{color}]자동 시작 확인 {'완료' if ok else '일부 실패'}[/{color}]")
        self.logger.info(f"Autostart verification: {report}")
        return report
