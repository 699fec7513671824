"""
ArgoCD 설치 모듈
MetalLB 풀 안의 고정 LoadBalancer IP로 ArgoCD 서버 노출
"""

import base64
import binascii
from functools import partial
from typing import Callable, Iterable, List, Optional, Set, Tuple

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt

from .config import Config
from .convergence import ConvergenceDriver, ServiceCheckpoint
from .errors import InstallerError, MalformedRange
from .iprange import IPRange, contains, is_valid_address, parse_ip_range, sample_addresses
from .logger import get_logger
from .manifests import ARGOCD_INSTALL_URL, argocd_loadbalancer, guestbook_application
from .network import NetworkChecker
from .probes import api_server_reachable, external_ip_assigned, secret_present
from .poller import Ready
from .system import apply_manifests, command_exists, kubectl

console = Console()

ADMIN_SECRET = "argocd-initial-admin-secret"
SERVER_SELECTOR = "app.kubernetes.io/name=argocd-server"


def validate_loadbalancer_ip(text: str, pools: List[IPRange], used: Set[str]) -> Tuple[bool, str]:
    """입력 주소가 올바르고, 어떤 풀 안에 있으며, 사용 중이 아닌지 확인"""
    address = text.strip()
    if not address:
        return False, "IP 주소는 비워둘 수 없습니다."
    if not is_valid_address(address):
        return False, f"잘못된 IP 주소 형식입니다: {address} (예: 192.168.1.100)"
    if not any(contains(pool, address) for pool in pools):
        return False, f"{address}는 MetalLB 풀 범위 안에 있지 않습니다."
    if address in used:
        return False, f"{address}는 이미 다른 서비스가 사용 중입니다."
    return True, address


def parse_pools(addresses: Iterable[str]) -> List[IPRange]:
    """풀 주소 문자열 목록 파싱 (해석할 수 없는 항목은 건너뜀)"""
    logger = get_logger()
    pools = []
    for text in addresses:
        try:
            pools.append(parse_ip_range(text))
        except MalformedRange as e:
            logger.warning(f"Ignoring MetalLB pool entry: {e}")
    return pools


class ArgoCDInstaller:
    """ArgoCD 설치 클래스"""

    def __init__(self, config: Config, driver: ConvergenceDriver, debug: bool = False,
                 assume_yes: bool = False):
        self.config = config
        self.argocd = config.argocd
        self.metallb_namespace = config.metallb.namespace
        self.driver = driver
        self.debug = debug
        self.assume_yes = assume_yes
        self.logger = get_logger()
        self.network = NetworkChecker(debug)
        self.pools: List[IPRange] = []
        self.address: Optional[str] = None
        self.admin_password: Optional[str] = None
        self.guestbook = False

    def preflight(self):
        """kubectl, 클러스터, MetalLB 설치 여부 확인"""
        if not command_exists("kubectl"):
            raise InstallerError("kubectl is not installed or not in PATH")
        if not isinstance(api_server_reachable(), Ready):
            raise InstallerError("Cannot connect to the Kubernetes cluster")

        result = kubectl("get", "namespace", self.metallb_namespace)
        if result.returncode != 0:
            raise InstallerError("MetalLB namespace not found. Install MetalLB first (k8s-installer metallb)")

        result = kubectl("get", "pods", "-n", self.metallb_namespace, "--no-headers")
        if not result.stdout.strip():
            raise InstallerError("No MetalLB pods found. Make sure MetalLB is installed and running")

        console.print("[green]✓ MetalLB 설치 확인[/green]")
        self.logger.info("MetalLB is installed")

    def load_pools(self) -> List[IPRange]:
        """설정된 MetalLB IPAddressPool 주소 목록 조회"""
        result = kubectl(
            "get", "ipaddresspool", "-n", self.metallb_namespace,
            "-o", "jsonpath={.items[*].spec.addresses[*]}",
        )
        self.pools = parse_pools(result.stdout.split()) if result.returncode == 0 else []
        if not self.pools:
            raise InstallerError("No MetalLB IP address pools found. Configure a pool first")

        for pool in self.pools:
            console.print(f"  • {pool} (예: {', '.join(sample_addresses(pool))})")
        self.logger.info(f"MetalLB pools: {', '.join(str(p) for p in self.pools)}")
        return self.pools

    def used_addresses(self) -> Set[str]:
        """이미 서비스에 할당된 LoadBalancer IP 목록"""
        result = kubectl(
            "get", "svc", "--all-namespaces",
            "-o", 'jsonpath={range .items[*]}{.status.loadBalancer.ingress[0].ip}{"\\n"}{end}',
        )
        return {line.strip() for line in result.stdout.splitlines() if line.strip()}

    def choose_ip(self, ask: Callable[[str], str] = Prompt.ask) -> str:
        """설정값 또는 입력값을 검증하여 LoadBalancer IP 결정"""
        used = self.used_addresses()

        if self.argocd.loadbalancer_ip:
            ok, message = validate_loadbalancer_ip(self.argocd.loadbalancer_ip, self.pools, used)
            if not ok:
                raise InstallerError(f"Configured ArgoCD LoadBalancer IP rejected: {message}")
            self.address = message
            console.print(f"[cyan]설정 파일의 IP 사용: {self.address}[/cyan]")
            return self.address

        console.print("[yellow]⚠ 다른 서비스에 할당되지 않은 IP를 선택하세요 "
                      "(kubectl get svc --all-namespaces -o wide).[/yellow]")
        while True:
            ok, message = validate_loadbalancer_ip(ask("ArgoCD LoadBalancer IP"), self.pools, used)
            if ok:
                self.address = message
                break
            console.print(f"[red]{message}[/red]")

        console.print(f"[green]✓ ArgoCD IP: {self.address}[/green]")
        self.logger.info(f"ArgoCD LoadBalancer IP: {self.address}")
        return self.address

    def install(self):
        """네임스페이스 생성, 업스트림 매니페스트 적용, 서버 파드 대기"""
        namespace = self.argocd.namespace
        console.print(f"\n[bold cyan]ArgoCD {self.argocd.version} 설치 중...[/bold cyan]")

        apply_manifests([{"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": namespace}}])
        url = ARGOCD_INSTALL_URL.format(version=self.argocd.version)
        self.logger.info(f"Applying {url}")
        kubectl("apply", "-n", namespace, "-f", url, check=True, timeout=300)

        kubectl(
            "wait", "--for=condition=ready", "pod", "-l", SERVER_SELECTOR,
            "-n", namespace, "--timeout=300s",
            check=True,
            timeout=330,
        )
        console.print("[green]✓ ArgoCD 서버 파드 준비 완료[/green]")

    def expose(self):
        """고정 IP LoadBalancer 서비스 생성"""
        apply_manifests([argocd_loadbalancer(self.address, self.argocd.namespace, self.argocd.service_name)])
        console.print(f"[green]✓ LoadBalancer 서비스 생성: {self.argocd.service_name}[/green]")
        self.logger.info(f"Created {self.argocd.service_name} with loadBalancerIP {self.address}")

    def read_admin_password(self) -> Optional[str]:
        """초기 관리자 시크릿이 생길 때까지 기다린 후 비밀번호 디코딩"""
        namespace = self.argocd.namespace
        self.driver.require(ServiceCheckpoint(
            name="ArgoCD admin secret present",
            predicate=partial(secret_present, ADMIN_SECRET, namespace),
            window=self.config.window("admin_secret"),
        ))

        result = kubectl("-n", namespace, "get", "secret", ADMIN_SECRET, "-o", "jsonpath={.data.password}")
        try:
            self.admin_password = base64.b64decode(result.stdout.strip(), validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            self.logger.warning(f"Could not decode ArgoCD admin password: {e}")
            self.admin_password = None

        if not self.admin_password:
            console.print("[yellow]⚠ 관리자 비밀번호를 자동으로 가져오지 못했습니다.[/yellow]")
        return self.admin_password

    def create_guestbook(self):
        """예제 애플리케이션 생성 (확인 후)"""
        if not self.assume_yes and not Confirm.ask("예제 guestbook 애플리케이션을 생성하시겠습니까?", default=False):
            return
        apply_manifests([guestbook_application(self.argocd.namespace)])
        self.guestbook = True
        console.print("[green]✓ guestbook 애플리케이션 생성[/green]")

    def verify(self) -> bool:
        """LoadBalancer IP 할당 및 HTTPS 접근 확인"""
        assigned = self.driver.require(ServiceCheckpoint(
            name="ArgoCD LoadBalancer IP assigned",
            predicate=partial(external_ip_assigned, self.argocd.service_name, self.argocd.namespace),
            window=self.config.window("external_ip"),
        ))
        if assigned != self.address:
            self.logger.warning(f"Requested {self.address} but MetalLB assigned {assigned}")
            console.print(f"[yellow]⚠ 요청한 IP와 다른 주소가 할당되었습니다: {assigned}[/yellow]")
            self.address = assigned

        ok, message = self.network.check_http(f"https://{self.address}", timeout=10)
        console.print(f"  {message}")
        return ok

    def show_summary(self):
        lines = [
            f"URL: https://{self.address}",
            "사용자: admin",
            f"비밀번호: {self.admin_password or '(아래 명령으로 확인)'}",
        ]
        if not self.admin_password:
            lines.append(
                f"  kubectl -n {self.argocd.namespace} get secret {ADMIN_SECRET} "
                "-o jsonpath=\"{.data.password}\" | base64 -d"
            )
        if self.guestbook:
            lines.append("guestbook: kubectl port-forward svc/guestbook-ui 8081:80")
        console.print(Panel("\n".join(lines), title="ArgoCD 접속 정보", border_style="green"))
        console.print("[yellow]⚠ ArgoCD는 자체 서명 인증서를 사용하므로 브라우저 경고가 표시됩니다.[/yellow]")

    def run(self, ask: Callable[[str], str] = Prompt.ask):
        """전체 설치 순서"""
        console.print(Panel.fit(
            f"[bold cyan]ArgoCD {self.argocd.version} 설치[/bold cyan]",
            border_style="cyan",
        ))
        self.preflight()
        self.load_pools()
        self.choose_ip(ask)
        self.install()
        self.expose()
        self.read_admin_password()
        self.create_guestbook()
        self.verify()
        self.show_summary()
