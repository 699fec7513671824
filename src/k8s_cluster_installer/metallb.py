"""
MetalLB 설치 모듈
L2 모드 IP 풀 구성, 외부 IP 할당 확인 및 memberlist 포트 복구
"""

import subprocess
from dataclasses import asdict
from functools import partial
from typing import Callable, Optional

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table

from .config import Config
from .convergence import ConvergenceDriver, RemedialAction, ServiceCheckpoint
from .errors import InstallerError, MalformedRange
from .firewall import FirewallManager
from .iprange import IPRange, parse_ip_range, sample_addresses
from .logger import get_logger
from .manifests import METALLB_NATIVE_URL, TEST_DEPLOYMENT, TEST_SERVICE, loadbalancer_test, metallb_pool
from .network import NetworkChecker, network_base
from .poller import NotReady, PredicateError, PredicateResult, Ready
from .probes import api_server_reachable, external_ip_assigned, pods_present
from .services import delete_object
from .system import apply_manifests, command_exists, kubectl

console = Console()

SPEAKER_SELECTOR = "component=speaker"
CONTROLLER_SELECTOR = "app=metallb"


def speakers_running(namespace: str = "metallb-system") -> PredicateResult:
    """모든 speaker 파드가 Running 상태인지 확인"""
    try:
        result = kubectl(
            "get", "pods", "-n", namespace, "-l", SPEAKER_SELECTOR,
            "-o", "jsonpath={.items[*].status.phase}",
            timeout=30,
        )
    except FileNotFoundError:
        return PredicateError("kubectl not found")
    except subprocess.TimeoutExpired:
        return NotReady("kubectl get pods timed out")

    if result.returncode != 0:
        return NotReady(result.stderr.strip() or "cannot list speaker pods")

    phases = result.stdout.split()
    if not phases:
        return NotReady("no speaker pods")
    if all(phase == "Running" for phase in phases):
        return Ready(len(phases))
    return NotReady(" ".join(phases))


def prompt_ip_range(ask: Callable[[str], str] = Prompt.ask) -> IPRange:
    """올바른 범위가 입력될 때까지 반복해서 묻는다"""
    logger = get_logger()
    while True:
        text = ask("MetalLB IP 주소 범위")
        if not text or not text.strip():
            console.print("[red]IP 범위는 비워둘 수 없습니다. 다시 입력하세요.[/red]")
            continue
        try:
            return parse_ip_range(text)
        except MalformedRange as e:
            logger.warning(str(e))
            console.print("[red]잘못된 IP 범위 형식입니다. 다음 형식을 사용하세요:[/red]")
            console.print("[red]  • CIDR 표기: 192.168.1.240/28[/red]")
            console.print("[red]  • 범위 표기: 192.168.1.240-192.168.1.250[/red]")


class MetalLBInstaller:
    """MetalLB 설치 클래스"""

    def __init__(self, config: Config, driver: ConvergenceDriver, debug: bool = False,
                 assume_yes: bool = False):
        self.config = config
        self.metallb = config.metallb
        self.driver = driver
        self.debug = debug
        self.assume_yes = assume_yes
        self.logger = get_logger()
        self.network = NetworkChecker(debug)
        self.ip_range: Optional[IPRange] = None
        self.external_ip: Optional[str] = None

    def preflight(self):
        """kubectl 및 클러스터 접근 확인"""
        if not command_exists("kubectl"):
            raise InstallerError("kubectl is not installed. Install Kubernetes first.")

        result = api_server_reachable()
        if not isinstance(result, Ready):
            raise InstallerError(
                "Cannot connect to the Kubernetes cluster. Make sure the cluster is running "
                "and kubeconfig is configured."
            )
        console.print("[green]✓ Kubernetes 클러스터 연결 확인[/green]")
        self.logger.info("Kubernetes cluster is accessible")

    def detect_network(self) -> Optional[str]:
        """노드 InternalIP 또는 로컬 출발지 주소로 /24 대역 추정"""
        node_ips = self.network.node_internal_ips()
        if node_ips:
            console.print(f"[cyan]클러스터 노드 IP: {' '.join(node_ips)}[/cyan]")
            base = network_base(node_ips[0])
        else:
            local_ip = self.network.local_source_ip()
            if not local_ip:
                self.logger.warning("Could not detect the cluster network")
                return None
            console.print(f"[cyan]로컬 IP: {local_ip}[/cyan]")
            base = network_base(local_ip)

        self.logger.info(f"Detected network base {base}.x")
        return base

    def choose_range(self, base: Optional[str] = None,
                     ask: Callable[[str], str] = Prompt.ask) -> IPRange:
        """설정값이 있으면 그대로 사용, 없으면 안내 후 입력받음"""
        if self.metallb.ip_range:
            self.ip_range = parse_ip_range(self.metallb.ip_range)
            console.print(f"[cyan]설정 파일의 IP 범위 사용: {self.ip_range}[/cyan]")
            return self.ip_range

        console.print(Panel(
            "MetalLB는 LoadBalancer 서비스에 할당할 IP 주소 범위가 필요합니다.\n"
            "  • 네트워크 서브넷 내의 주소\n"
            "  • DHCP 범위나 고정 IP와 겹치지 않는 주소\n\n"
            "CIDR 표기 예: 192.168.1.240/28 (16개)\n"
            "범위 표기 예: 192.168.1.200-192.168.1.210 (11개)",
            title="MetalLB IP 주소 설정",
            border_style="cyan",
        ))
        if base:
            console.print(f"[cyan]클러스터 네트워크: {base}.x 대역 안에서 사용하지 않는 범위를 선택하세요.[/cyan]")
        console.print("[yellow]⚠ 라우터/DHCP 설정을 확인하고 사용할 IP에 ping 테스트를 먼저 하세요.[/yellow]\n")

        self.ip_range = prompt_ip_range(ask)
        console.print(f"[green]✓ IP 범위 설정: {self.ip_range}[/green]")
        self.logger.info(f"MetalLB IP range: {self.ip_range}")
        return self.ip_range

    def install(self):
        """업스트림 매니페스트 적용 후 컨트롤러 파드 대기"""
        url = METALLB_NATIVE_URL.format(version=self.metallb.version)
        console.print(f"\n[bold cyan]MetalLB {self.metallb.version} 설치 중...[/bold cyan]")
        self.logger.info(f"Applying {url}")
        kubectl("apply", "-f", url, check=True)

        self.driver.require(ServiceCheckpoint(
            name="MetalLB pods created",
            predicate=partial(pods_present, self.metallb.namespace, CONTROLLER_SELECTOR),
            window=self.config.window("pods_ready"),
        ))
        kubectl(
            "wait", "--namespace", self.metallb.namespace,
            "--for=condition=ready", "pod",
            f"--selector={CONTROLLER_SELECTOR}",
            "--timeout=300s",
            check=True,
            timeout=330,
        )
        console.print("[green]✓ MetalLB 파드 준비 완료[/green]")

    def configure_pool(self):
        """IPAddressPool 및 L2Advertisement 적용"""
        apply_manifests(metallb_pool(str(self.ip_range), self.metallb.namespace, self.metallb.pool_name))
        console.print(f"[green]✓ IP 풀 구성 완료: {self.ip_range}[/green]")
        self.logger.info(f"Applied IPAddressPool {self.metallb.pool_name}")

    def external_ip_checkpoint(self, service: str, namespace: str = "default") -> ServiceCheckpoint:
        return ServiceCheckpoint(
            name=f"{service} external IP assigned",
            predicate=partial(external_ip_assigned, service, namespace),
            window=self.config.window("external_ip"),
        )

    def verify_with_test_service(self) -> Optional[str]:
        """테스트 LoadBalancer 서비스로 외부 IP 할당 확인"""
        console.print("\n[cyan]테스트 서비스로 MetalLB 동작 확인 중...[/cyan]")
        apply_manifests(loadbalancer_test())
        self.external_ip = self.driver.require(self.external_ip_checkpoint(TEST_SERVICE))

        console.print(f"[green]✓ 외부 IP 할당: {self.external_ip}[/green]")
        ok, message = self.network.check_http(f"http://{self.external_ip}", timeout=5)
        console.print(f"  {message}")
        return self.external_ip

    def cleanup_test_service(self):
        """테스트 서비스 제거 (확인 후)"""
        if not self.assume_yes and not Confirm.ask("테스트 서비스를 삭제하시겠습니까?", default=False):
            console.print(f"[cyan]테스트 서비스 유지: {TEST_SERVICE}[/cyan]")
            return
        delete_object("service", TEST_SERVICE, "default")
        delete_object("deployment", TEST_DEPLOYMENT, "default")
        console.print("[green]✓ 테스트 서비스 삭제 완료[/green]")
        self.logger.info("Removed MetalLB test service")

    def show_summary(self):
        table = Table(title="MetalLB 설치 요약", show_header=True, header_style="bold magenta")
        table.add_column("항목", style="cyan")
        table.add_column("값")
        table.add_row("버전", self.metallb.version)
        table.add_row("IP 범위", str(self.ip_range))
        table.add_row("예시 주소", ", ".join(sample_addresses(self.ip_range)))
        table.add_row("네임스페이스", self.metallb.namespace)
        if self.external_ip:
            table.add_row("테스트 외부 IP", self.external_ip)
        console.print(table)
        console.print("\n[bold]사용 예:[/bold]")
        console.print("  kubectl expose deployment <name> --type=LoadBalancer --port=80")
        console.print(f"  kubectl get pods -n {self.metallb.namespace}")

    def run(self, ask: Callable[[str], str] = Prompt.ask):
        """전체 설치 순서"""
        console.print(Panel.fit(
            f"[bold cyan]MetalLB {self.metallb.version} 설치[/bold cyan]",
            border_style="cyan",
        ))
        self.preflight()
        base = self.detect_network()
        self.choose_range(base, ask)
        self.install()
        self.configure_pool()
        if self.metallb.create_test_service:
            self.verify_with_test_service()
            self.cleanup_test_service()
        self.show_summary()

    def open_memberlist_ports(self):
        """memberlist 포트 개방 후 speaker 파드 재생성"""
        console.print("\n[bold cyan]MetalLB memberlist 포트 설정 중...[/bold cyan]")
        firewall = FirewallManager(asdict(self.config.firewall), self.debug)
        ok, message = firewall.configure("metallb")
        if not ok:
            firewall.rollback()
            raise InstallerError(f"Failed to open memberlist ports: {message}")

        restart = partial(delete_object, "pod", namespace=self.metallb.namespace, selector=SPEAKER_SELECTOR)
        console.print("[cyan]speaker 파드 재시작 중...[/cyan]")
        restart()

        count = self.driver.require(ServiceCheckpoint(
            name="MetalLB speakers running",
            predicate=partial(speakers_running, self.metallb.namespace),
            remedies=[RemedialAction("restart speaker pods", restart)],
            window=self.config.window("speaker_restart"),
        ))
        console.print(f"[green]✓ speaker 파드 {count}개 실행 중[/green]")
        self.logger.info(f"{count} MetalLB speakers running after restart")
