"""
Kubernetes 클러스터 설치 모듈
호스트 준비, containerd, kubeadm 기반 컨트롤 플레인 초기화 및 워커 조인
"""

import os
import re
import shlex
import shutil
from functools import partial
from typing import List, Optional

import requests
from rich.console import Console

from .config import Config
from .convergence import ConvergenceDriver, RemedialAction, ServiceCheckpoint
from .errors import InstallerError
from .logger import get_logger
from .probes import api_server_reachable, nodes_ready
from .services import (
    ServiceManager,
    backup_file,
    disable_swap,
    regenerate_containerd_config,
)
from .system import apt_install, kubectl, run_command, sudo_user_home
from .templates import render, unit_path, write_file

console = Console()

BASE_PACKAGES = ("apt-transport-https", "ca-certificates", "curl", "gpg")
KERNEL_MODULES = ("overlay", "br_netfilter")
SYSCTL_PARAMS = {
    "net.bridge.bridge-nf-call-iptables": 1,
    "net.bridge.bridge-nf-call-ip6tables": 1,
    "net.ipv4.ip_forward": 1,
}
SWAP_FILES = ("/swap.img", "/swapfile")

KEYRING_PATH = "/etc/apt/keyrings/kubernetes-apt-keyring.gpg"
APT_SOURCE_PATH = "/etc/apt/sources.list.d/kubernetes.list"
K8S_REPO_URL = "https://pkgs.k8s.io/core:/stable:/v{version}/deb/"
KUBELET_KUBECONFIG = "/etc/kubernetes/kubelet.conf"
STARTUP_SERVICE = "kubernetes-startup.service"

JOIN_COMMAND_RE = re.compile(
    r"^kubeadm join [0-9]+\.[0-9]+\.[0-9]+\.[0-9]+:6443 "
    r"--token [a-z0-9]+\.[a-z0-9]+ "
    r"--discovery-token-ca-cert-hash sha256:[a-f0-9]+$"
)


def validate_join_command(command: str) -> List[str]:
    """kubeadm join 명령 검증 후 인자 목록으로 분리

    Raises:
        InstallerError: 형식이 맞지 않는 경우
    """
    command = command.strip()
    if not JOIN_COMMAND_RE.match(command):
        raise InstallerError(
            "Invalid join command format. Expected: kubeadm join <ip>:6443 "
            "--token <token> --discovery-token-ca-cert-hash sha256:<hash>"
        )
    return shlex.split(command)


def comment_swap_entries(fstab_path: str = "/etc/fstab") -> int:
    """fstab의 swap 항목을 주석 처리하고 변경된 줄 수 반환"""
    if not os.path.exists(fstab_path):
        return 0

    with open(fstab_path, "r", encoding="utf-8") as f:
        lines = f.readlines()

    changed = 0
    for i, line in enumerate(lines):
        fields = line.split()
        if len(fields) >= 3 and not fields[0].startswith("#") and fields[2] == "swap":
            lines[i] = f"# {line}"
            changed += 1

    if changed:
        backup_file(fstab_path)
        with open(fstab_path, "w", encoding="utf-8") as f:
            f.writelines(lines)
    return changed


class K8sInstaller:
    """kubeadm 기반 클러스터 설치 클래스"""

    def __init__(self, config: Config, driver: ConvergenceDriver, debug: bool = False):
        self.config = config
        self.cluster = config.cluster
        self.driver = driver
        self.debug = debug
        self.logger = get_logger()
        self.services = ServiceManager(debug)

    # ----- 호스트 준비 -----

    def prepare_host(self, full_swap_disable: bool = True):
        """패키지 업데이트, swap 비활성화, 커널 모듈 및 sysctl 설정"""
        console.print("\n[bold cyan]호스트 준비 중...[/bold cyan]\n")
        self.logger.info("Preparing host...")

        env = dict(os.environ, DEBIAN_FRONTEND="noninteractive")
        run_command(["apt-get", "update", "-y"], check=True, env=env)
        run_command(["apt-get", "upgrade", "-y"], check=True, env=env)
        apt_install(*BASE_PACKAGES)
        console.print("  ✓ 기본 패키지 설치 완료")

        self.disable_swap(full_swap_disable)
        self.configure_kernel()

    def disable_swap(self, full: bool = True):
        """swap 비활성화 (full=True면 재부팅 후에도 유지)"""
        disable_swap()
        changed = comment_swap_entries()
        self.logger.info(f"Swap disabled ({changed} fstab entries commented)")

        if full:
            for swap_file in SWAP_FILES:
                if os.path.isfile(swap_file):
                    os.remove(swap_file)
                    self.logger.info(f"Removed swap file {swap_file}")

            run_command(["systemctl", "mask", "swap.target"])
            write_file(unit_path("disable-swap.service"), render("disable-swap.service"))
            self.services.daemon_reload()
            self.services.enable("disable-swap.service")
            write_file("/etc/sysctl.d/99-swappiness.conf",
                       render("sysctl.conf", params={"vm.swappiness": 0}))

        console.print("  ✓ swap 비활성화 완료")

    def configure_kernel(self):
        """커널 모듈 로드 및 네트워크 sysctl 적용"""
        write_file("/etc/modules-load.d/k8s.conf", render("modules-load.conf", modules=KERNEL_MODULES))
        for module in KERNEL_MODULES:
            run_command(["modprobe", module], check=True)

        write_file("/etc/sysctl.d/k8s.conf", render("sysctl.conf", params=SYSCTL_PARAMS))
        run_command(["sysctl", "--system"], check=True)
        console.print("  ✓ 커널 모듈 및 sysctl 설정 완료")
        self.logger.info("Kernel modules and sysctl configured")

    # ----- 런타임 및 패키지 -----

    def containerd_checkpoint(self) -> ServiceCheckpoint:
        return self.services.checkpoint(
            "containerd",
            self.config.window("service_start"),
            extra_remedies=[
                RemedialAction("regenerate containerd config", regenerate_containerd_config),
            ],
        )

    def install_containerd(self):
        """containerd 설치 및 SystemdCgroup 설정"""
        console.print("\n[bold cyan]containerd 설치 중...[/bold cyan]")
        self.logger.info("Installing containerd...")

        apt_install("containerd")
        regenerate_containerd_config()
        self.driver.require(self.containerd_checkpoint())
        console.print("[green]✓ containerd 실행 중[/green]")

    def install_kubernetes_packages(self):
        """pkgs.k8s.io 저장소 등록 후 kubelet/kubeadm/kubectl 설치 및 고정"""
        version = self.cluster.kubernetes_version
        repo_url = K8S_REPO_URL.format(version=version)
        console.print(f"\n[bold cyan]Kubernetes v{version} 패키지 설치 중...[/bold cyan]")
        self.logger.info(f"Installing Kubernetes packages from {repo_url}")

        response = requests.get(f"{repo_url}Release.key", timeout=30)
        response.raise_for_status()

        os.makedirs(os.path.dirname(KEYRING_PATH), mode=0o755, exist_ok=True)
        run_command(["gpg", "--dearmor", "--yes", "-o", KEYRING_PATH], check=True, input=response.text)
        write_file(APT_SOURCE_PATH, f"deb [signed-by={KEYRING_PATH}] {repo_url} /\n")

        apt_install("kubelet", "kubeadm", "kubectl", update=True)
        run_command(["apt-mark", "hold", "kubelet", "kubeadm", "kubectl"], check=True)
        self.services.enable("kubelet")
        console.print("[green]✓ kubelet, kubeadm, kubectl 설치 완료[/green]")

    # ----- 컨트롤 플레인 -----

    def api_server_checkpoint(self) -> ServiceCheckpoint:
        return ServiceCheckpoint(
            name="API server reachable",
            predicate=partial(api_server_reachable, self.cluster.admin_kubeconfig),
            remedies=[RemedialAction("restart kubelet", partial(self.services.restart, "kubelet"))],
            window=self.config.window("api_server"),
        )

    def nodes_ready_checkpoint(self) -> ServiceCheckpoint:
        return ServiceCheckpoint(
            name="nodes Ready",
            predicate=partial(nodes_ready, self.cluster.admin_kubeconfig),
            remedies=[RemedialAction("restart kubelet", partial(self.services.restart, "kubelet"))],
            window=self.config.window("node_ready"),
        )

    def init_control_plane(self, single_node: bool = False) -> str:
        """kubeadm init 부터 노드 Ready까지. 조인 명령 반환"""
        console.print("\n[bold cyan]컨트롤 플레인 초기화 중...[/bold cyan]")
        admin_conf = self.cluster.admin_kubeconfig

        if os.path.exists(admin_conf):
            console.print("[yellow]⚠ 이미 초기화된 클러스터입니다. kubeadm init을 건너뜁니다.[/yellow]")
            self.logger.warning(f"{admin_conf} exists, skipping kubeadm init")
        else:
            self.logger.info(f"Running kubeadm init (pod CIDR {self.cluster.pod_cidr})")
            run_command(
                ["kubeadm", "init",
                 f"--pod-network-cidr={self.cluster.pod_cidr}",
                 f"--cri-socket={self.cluster.cri_socket}"],
                check=True,
                timeout=900,
            )
            console.print("  ✓ kubeadm init 완료")

        self.setup_kubeconfig()
        self.driver.require(self.api_server_checkpoint())

        if single_node:
            # 이미 제거된 taint면 실패하므로 결과는 무시
            kubectl("taint", "nodes", "--all", "node-role.kubernetes.io/control-plane-",
                    kubeconfig=admin_conf)
            console.print("  ✓ 컨트롤 플레인 taint 제거 (단일 노드)")
            self.logger.info("Removed control-plane taint")

        kubectl("apply", "-f", self.cluster.cni_manifest, kubeconfig=admin_conf, check=True)
        console.print("  ✓ CNI 적용 완료")
        self.logger.info(f"Applied CNI manifest {self.cluster.cni_manifest}")

        join_command = self.write_join_command()

        nodes = self.driver.require(self.nodes_ready_checkpoint())
        console.print(f"  ✓ 노드 Ready: {', '.join(nodes)}")

        self.ensure_autostart()
        console.print("[green]✓ 컨트롤 플레인 설치 완료[/green]")
        return join_command

    def write_join_command(self) -> str:
        """워커 조인 명령 생성 후 파일로 저장 (0644)"""
        result = run_command(["kubeadm", "token", "create", "--print-join-command"], check=True)
        join_command = result.stdout.strip()
        write_file(self.cluster.join_command_file, join_command + "\n", mode=0o644)
        console.print(f"  ✓ 조인 명령 저장: {self.cluster.join_command_file}")
        self.logger.info(f"Join command written to {self.cluster.join_command_file}")
        return join_command

    def setup_kubeconfig(self):
        """root 및 SUDO_USER 계정에 kubeconfig 복사"""
        targets = [("root", os.path.expanduser("~root"))]
        sudo_user = sudo_user_home()
        if sudo_user:
            targets.append(sudo_user)

        for user, home in targets:
            kube_dir = os.path.join(home, ".kube")
            os.makedirs(kube_dir, exist_ok=True)
            target = os.path.join(kube_dir, "config")
            shutil.copyfile(self.cluster.admin_kubeconfig, target)
            if user != "root":
                shutil.chown(kube_dir, user, user)
                shutil.chown(target, user, user)
            os.chmod(target, 0o600)
            self.logger.info(f"kubeconfig installed for {user}: {target}")

    # ----- 워커 -----

    def join_worker(self, join_command: str):
        """검증된 kubeadm join 명령으로 클러스터 조인"""
        argv = validate_join_command(join_command)

        if os.path.exists(KUBELET_KUBECONFIG):
            raise InstallerError(
                f"This node already belongs to a cluster ({KUBELET_KUBECONFIG} exists); "
                "run 'kubeadm reset' first"
            )

        console.print("\n[bold cyan]클러스터 조인 중...[/bold cyan]")
        self.logger.info(f"Joining cluster: {' '.join(argv[:3])}")
        run_command(argv + [f"--cri-socket={self.cluster.cri_socket}"], check=True, timeout=600)

        self.driver.require(self.services.checkpoint("kubelet", self.config.window("kubelet_start")))
        self.ensure_autostart()
        console.print("[green]✓ 워커 노드 조인 완료[/green]")
        console.print("[cyan]마스터 노드에서 'kubectl get nodes'로 확인하세요.[/cyan]")

    # ----- 자동 시작 -----

    def ensure_autostart(self, delay: int = 30, settle: Optional[int] = None):
        """kubelet/containerd 자동 시작 및 부팅 후 kubelet 재시작 유닛 설치"""
        console.print("\n[cyan]자동 시작 설정 확인 중...[/cyan]")
        self.services.ensure_enabled(["containerd", "kubelet"])

        content = render(STARTUP_SERVICE, services=["containerd"], delay=delay, settle=settle)
        write_file(unit_path(STARTUP_SERVICE), content)
        self.services.daemon_reload()
        self.services.enable(STARTUP_SERVICE)
        console.print(f"  [green]✓[/green] {STARTUP_SERVICE} 설치됨")
        self.logger.info(f"Installed {STARTUP_SERVICE}")
