"""
NVIDIA GPU 지원 모듈
드라이버, 컨테이너 툴킷, 디바이스 플러그인 설치 및 재부팅 후 복구
"""

import os
import re
import shutil
from functools import partial
from typing import List, Optional

import requests
import yaml
from rich.console import Console
from rich.table import Table

from .config import Config
from .convergence import ConvergenceDriver, RemedialAction
from .errors import CommandError, InstallerError
from .logger import get_logger
from .manifests import gpu_test_pod, nvidia_device_plugin
from .poller import Ready
from .probes import api_server_reachable, nvidia_driver_working
from .services import ServiceManager, regenerate_containerd_config, reset_kubelet_state
from .system import apply_manifests, apt_install, command_exists, kubectl, run_command
from .templates import render, unit_path, write_file

console = Console()

PREREQUISITES = (
    "build-essential", "dkms", "pkg-config", "libglvnd-dev", "curl",
    "gnupg", "ca-certificates", "software-properties-common",
)
TOOLKIT_KEYRING = "/usr/share/keyrings/nvidia-container-toolkit-keyring.gpg"
TOOLKIT_LIST_URL = "https://nvidia.github.io/libnvidia-container/stable/deb/nvidia-container-toolkit.list"
TOOLKIT_GPG_URL = "https://nvidia.github.io/libnvidia-container/gpgkey"
TOOLKIT_SOURCE_PATH = "/etc/apt/sources.list.d/nvidia-container-toolkit.list"
REBOOT_REQUIRED = "/var/run/reboot-required"
RECOVERY_SERVICE = "k8s-recovery.service"

_VGA_RE = re.compile(r"(VGA compatible controller|3D controller).*NVIDIA", re.IGNORECASE)


def _download(url: str) -> str:
    response = requests.get(url, timeout=30)
    response.raise_for_status()
    return response.text


def detect_nvidia_devices(lspci_output: str) -> List[str]:
    """lspci 출력에서 NVIDIA GPU 항목 추출"""
    return [line.strip() for line in lspci_output.splitlines() if _VGA_RE.search(line)]


class NvidiaInstaller:
    """NVIDIA 드라이버 및 Kubernetes GPU 지원 설치 클래스"""

    def __init__(self, config: Config, driver: ConvergenceDriver, debug: bool = False):
        self.config = config
        self.gpu = config.gpu
        self.driver = driver
        self.debug = debug
        self.logger = get_logger()
        self.services = ServiceManager(debug)
        self.k8s_available = False

    def detect(self) -> List[str]:
        """NVIDIA GPU 감지"""
        result = run_command(["lspci"], check=True)
        devices = detect_nvidia_devices(result.stdout)
        if not devices:
            raise InstallerError("No NVIDIA GPU detected (lspci)")
        for device in devices:
            console.print(f"  [green]✓[/green] {device}")
        self.logger.info(f"Detected {len(devices)} NVIDIA device(s)")
        return devices

    def check_kubernetes(self) -> bool:
        """Kubernetes 사용 가능 여부 (없으면 드라이버만 설치)"""
        checks = [
            command_exists("kubectl"),
            self.services.is_active("kubelet"),
            isinstance(api_server_reachable(), Ready),
        ]
        if all(checks):
            checks.append(kubectl("get", "nodes").returncode == 0)
        self.k8s_available = all(checks)

        if self.k8s_available:
            console.print("[green]✓ Kubernetes 클러스터 사용 가능[/green]")
        else:
            console.print("[yellow]⚠ Kubernetes를 사용할 수 없어 GPU 드라이버만 설치합니다.[/yellow]")
        self.logger.info(f"Kubernetes available: {self.k8s_available}")
        return self.k8s_available

    def install_prerequisites(self):
        kernel = run_command(["uname", "-r"], check=True).stdout.strip()
        apt_install(*PREREQUISITES, f"linux-headers-{kernel}", update=True)
        console.print("  ✓ 필수 패키지 설치 완료")

    def install_driver(self):
        """graphics-drivers PPA에서 드라이버 브랜치 설치"""
        version = self.gpu.driver_version
        console.print(f"\n[bold cyan]NVIDIA 드라이버 {version} 설치 중...[/bold cyan]")
        run_command(["add-apt-repository", "-y", "ppa:graphics-drivers/ppa"], check=True)
        apt_install(f"nvidia-driver-{version}", "nvidia-settings", "nvidia-prime", update=True)
        console.print(f"[green]✓ nvidia-driver-{version} 설치 완료[/green]")
        self.logger.info(f"Installed nvidia-driver-{version}")

    def install_container_toolkit(self):
        """NVIDIA Container Toolkit 설치 (실패 시 apt-get install -f 후 한 번 재시도)"""
        console.print("\n[bold cyan]NVIDIA Container Toolkit 설치 중...[/bold cyan]")
        key = _download(TOOLKIT_GPG_URL)
        run_command(["gpg", "--dearmor", "--yes", "-o", TOOLKIT_KEYRING], check=True, input=key)

        source = _download(TOOLKIT_LIST_URL)
        source = re.sub(r"deb https://", f"deb [signed-by={TOOLKIT_KEYRING}] https://", source)
        write_file(TOOLKIT_SOURCE_PATH, source)

        try:
            apt_install("nvidia-container-toolkit", update=True)
        except CommandError as e:
            self.logger.warning(f"Container toolkit install failed, fixing dependencies: {e}")
            run_command(["apt-get", "install", "-f", "-y"], check=True)
            apt_install("nvidia-container-toolkit")
        console.print("[green]✓ NVIDIA Container Toolkit 설치 완료[/green]")

    def configure_containerd(self):
        """containerd에 NVIDIA 런타임 설정 후 실행 확인"""
        run_command(["nvidia-ctk", "runtime", "configure", "--runtime=containerd"], check=True)
        self.services.restart("containerd")
        self.driver.require(self.services.checkpoint(
            "containerd",
            self.config.window("service_start"),
            extra_remedies=[
                RemedialAction("regenerate containerd config",
                               partial(regenerate_containerd_config, nvidia=True)),
            ],
        ))
        console.print("[green]✓ containerd NVIDIA 런타임 설정 완료[/green]")

    def deploy_device_plugin(self):
        """디바이스 플러그인 DaemonSet 적용 및 사본 저장"""
        manifest = nvidia_device_plugin(self.gpu.device_plugin_version)
        apply_manifests([manifest], validate=False)
        write_file(self.gpu.manifest_copy, yaml.safe_dump(manifest, default_flow_style=False, sort_keys=False))
        console.print(f"[green]✓ 디바이스 플러그인 배포 (사본: {self.gpu.manifest_copy})[/green]")
        self.logger.info(f"Applied NVIDIA device plugin {self.gpu.device_plugin_version}")

    def create_test_pod(self):
        apply_manifests([gpu_test_pod(self.gpu.test_image)])
        console.print("[cyan]GPU 테스트 파드 생성: kubectl logs gpu-test 로 결과를 확인하세요.[/cyan]")

    def verify(self) -> dict:
        """재부팅 필요 여부, nvidia-smi, 커널 모듈 확인"""
        lsmod = run_command(["lsmod"])
        status = {
            "reboot_required": os.path.exists(REBOOT_REQUIRED),
            "nvidia_smi": isinstance(nvidia_driver_working(), Ready),
            "kernel_module": any(line.startswith("nvidia") for line in lsmod.stdout.splitlines()),
        }

        table = Table(title="NVIDIA 설치 확인", show_header=True, header_style="bold magenta")
        table.add_column("항목", style="cyan")
        table.add_column("상태")
        table.add_row("nvidia-smi", "[green]✓[/green]" if status["nvidia_smi"] else "[red]✗[/red]")
        table.add_row("nvidia 커널 모듈", "[green]✓[/green]" if status["kernel_module"] else "[red]✗[/red]")
        table.add_row("재부팅 필요", "[yellow]예[/yellow]" if status["reboot_required"] else "아니오")
        console.print(table)

        if status["reboot_required"] or not status["nvidia_smi"]:
            console.print("[yellow]⚠ 드라이버 적용을 위해 재부팅이 필요합니다. 재부팅 후 "
                          "'k8s-installer fix-startup'을 실행하세요.[/yellow]")
        self.logger.info(f"NVIDIA verification: {status}")
        return status

    def run(self, test_pod: bool = False) -> dict:
        """전체 설치 순서"""
        console.print("\n[bold cyan]NVIDIA GPU 감지 중...[/bold cyan]")
        self.detect()
        self.check_kubernetes()
        self.install_prerequisites()
        self.install_driver()
        self.install_container_toolkit()
        if self.k8s_available:
            self.configure_containerd()
            self.deploy_device_plugin()
            if test_pod:
                self.create_test_pod()
        return self.verify()

    def recover(self, command: Optional[str] = None):
        """재부팅 후 containerd/kubelet 복구 및 복구 유닛 설치"""
        console.print("\n[bold cyan]GPU 노드 복구 중...[/bold cyan]")

        self.driver.require(self.services.checkpoint(
            "containerd",
            self.config.window("service_start"),
            extra_remedies=[
                RemedialAction("regenerate containerd config",
                               partial(regenerate_containerd_config, nvidia=True)),
            ],
        ))
        self.driver.require(self.services.checkpoint(
            "kubelet",
            self.config.window("kubelet_start"),
            extra_remedies=[RemedialAction("reset kubelet state", reset_kubelet_state)],
        ))

        self.install_recovery_unit(command)
        console.print("[green]✓ GPU 노드 복구 완료[/green]")

    def install_recovery_unit(self, command: Optional[str] = None):
        """부팅 시 fix-startup을 실행하는 systemd 유닛 설치"""
        if command is None:
            binary = shutil.which("k8s-installer") or "/usr/local/bin/k8s-installer"
            command = f"{binary} fix-startup --yes"
        write_file(unit_path(RECOVERY_SERVICE), render(RECOVERY_SERVICE, command=command, timeout=600))
        self.services.daemon_reload()
        self.services.enable(RECOVERY_SERVICE)
        console.print(f"  [green]✓[/green] {RECOVERY_SERVICE} 설치됨")
        self.logger.info(f"Installed {RECOVERY_SERVICE}: {command}")
