"""
CLI 메인 인터페이스
Click 및 Rich 기반 사용자 친화적 CLI
"""

import sys
from dataclasses import asdict
from typing import Callable

import click
import requests
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table

from . import __version__
from .argocd import ArgoCDInstaller
from .config import Config
from .convergence import CancelSignal, ConvergenceDriver
from .errors import (
    CheckpointFailed,
    CommandError,
    InstallCancelled,
    InstallerError,
    MalformedRange,
    RemediationFailed,
)
from .firewall import FirewallManager
from .gpu import NvidiaInstaller
from .health import HealthChecker
from .iprange import BoundedRange, contains, int_to_address, parse_ip_range, sample_addresses
from .k8s import K8sInstaller, validate_join_command
from .logger import get_logger, init_logger
from .metallb import MetalLBInstaller
from .recovery import RecoveryManager
from .system import check_debian_family, require_root

console = Console()


def _load(config_path, debug: bool, assume_yes: bool = False) -> Config:
    """설정 로드 및 로거 초기화"""
    cfg = Config(config_path)
    if assume_yes:
        cfg.installer.assume_yes = True
    init_logger(cfg.installer.log_dir, cfg.installer.log_level, debug)
    get_logger().info(f"Loaded configuration from {cfg.config_path or 'defaults'}")
    return cfg


def _show_log_files():
    log_files = get_logger().get_log_files()
    console.print("\n[bold]로그 파일:[/bold]")
    console.print(f"  Main: {log_files['main_log']}")
    console.print(f"  Error: {log_files['error_log']}")


def _error_panel(error: InstallerError):
    """실패 원인과 진단 정보 출력"""
    lines = [str(error)]
    if isinstance(error, CheckpointFailed):
        lines = [
            f"체크포인트: {error.name}",
            f"시도 횟수: {error.exhausted_after_attempts} ({error.windows}개 구간)",
            f"마지막 상태: {error.last_observed_state}",
        ]
    elif isinstance(error, RemediationFailed):
        lines = [
            f"체크포인트: {error.name}",
            f"복구 조치: {error.action}",
            f"원인: {error.cause}",
        ]
    elif isinstance(error, CommandError):
        lines = [f"명령: {' '.join(error.cmd)}", f"종료 코드: {error.returncode}"]
        if error.stderr:
            lines.append(error.stderr)
    console.print(Panel("\n".join(lines), title="[bold red]설치 실패[/bold red]", border_style="red"))


def run_guarded(cfg: Config, debug: bool, action: Callable[[ConvergenceDriver], object]):
    """Ctrl+C를 취소 플래그로 바꾸고 설치 오류를 종료 코드로 변환"""
    logger = get_logger()
    cancel = CancelSignal()
    try:
        with cancel.installed():
            action(ConvergenceDriver(on_cancel=cancel))
    except InstallCancelled as e:
        console.print(f"\n[yellow]사용자에 의해 중단되었습니다: {e.name}[/yellow]")
        logger.warning(str(e))
        _show_log_files()
        sys.exit(130)
    except InstallerError as e:
        logger.error(str(e))
        _error_panel(e)
        _show_log_files()
        sys.exit(1)
    except FileNotFoundError as e:
        logger.exception("Required command not found")
        console.print(f"\n[red]필요한 명령을 찾을 수 없습니다: {e.filename or e}[/red]")
        _show_log_files()
        sys.exit(1)
    except requests.exceptions.RequestException as e:
        logger.exception("Download failed")
        console.print(f"\n[red]다운로드 실패: {e}[/red]")
        _show_log_files()
        sys.exit(1)
    _show_log_files()


def _confirm(cfg: Config, message: str):
    if cfg.installer.assume_yes:
        return
    if not Confirm.ask(message, default=True):
        console.print("[yellow]취소되었습니다.[/yellow]")
        sys.exit(0)


def _configure_firewall(cfg: Config, debug: bool, *profiles: str):
    firewall = FirewallManager(asdict(cfg.firewall), debug)
    for profile in profiles:
        ok, message = firewall.configure(profile)
        if not ok:
            firewall.rollback()
            raise InstallerError(f"Firewall configuration failed: {message}")


def _install_cluster(cfg: Config, debug: bool, single_node: bool, full_swap_disable: bool):
    require_root()
    check_debian_family()

    def action(driver):
        installer = K8sInstaller(cfg, driver, debug)
        profiles = ("control-plane", "worker") if single_node else ("control-plane",)
        _configure_firewall(cfg, debug, *profiles)
        installer.prepare_host(full_swap_disable)
        installer.install_containerd()
        installer.install_kubernetes_packages()
        join_command = installer.init_control_plane(single_node)
        if not single_node:
            console.print(Panel(
                join_command,
                title=f"워커 조인 명령 ({cfg.cluster.join_command_file})",
                border_style="green",
            ))

    run_guarded(cfg, debug, action)


def common_options(func):
    """공통 옵션: --config, --debug, --yes"""
    func = click.option('--yes', '-y', 'assume_yes', is_flag=True, help='확인 질문 건너뛰기')(func)
    func = click.option('--debug', is_flag=True, help='디버그 모드')(func)
    func = click.option('--config', '-c', type=click.Path(exists=True), help='설정 파일 경로')(func)
    return func


@click.group()
@click.version_option(version=__version__)
def cli():
    """K8s Cluster Installer

    kubeadm 기반 Kubernetes 클러스터와 MetalLB, ArgoCD, NVIDIA GPU 지원을 설치합니다.
    """
    pass


@cli.command()
@click.argument('output', type=click.Path(), default='./config.yaml')
def init(output):
    """샘플 설정 파일 생성"""
    cfg = Config()
    cfg.create_sample(output)
    console.print(f"[green]✓ 샘플 설정 파일 생성: {output}[/green]")
    console.print("[cyan]설정 파일을 편집한 후 다음 명령어로 실행하세요:[/cyan]")
    console.print(f"[cyan]  sudo k8s-installer master --config {output}[/cyan]")


@cli.command()
@click.option('--config', '-c', type=click.Path(exists=True), help='설정 파일 경로')
def validate(config):
    """설정 파일 유효성 검사"""
    try:
        cfg = Config(config)
        if cfg.metallb.ip_range:
            parse_ip_range(cfg.metallb.ip_range)
        windows = {name: cfg.window(name) for name in asdict(cfg.convergence)}
    except (ValueError, KeyError, OSError) as e:
        console.print(f"[red]✗ 설정 파일 오류: {e}[/red]")
        sys.exit(1)

    console.print("[green]✓ 설정 파일이 유효합니다.[/green]")

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("항목", style="cyan")
    table.add_column("값")
    table.add_row("Kubernetes 버전", cfg.cluster.kubernetes_version)
    table.add_row("Pod CIDR", cfg.cluster.pod_cidr)
    table.add_row("MetalLB IP 범위", cfg.metallb.ip_range or "[yellow]설치 시 입력[/yellow]")
    table.add_row("ArgoCD IP", cfg.argocd.loadbalancer_ip or "[yellow]설치 시 입력[/yellow]")
    table.add_row("방화벽 활성화", "예" if cfg.firewall.enabled else "아니오")
    for name, window in windows.items():
        table.add_row(f"재시도 {name}", f"{window.max_attempts} x {window.interval}초")
    console.print(table)


@cli.command()
@common_options
@click.option('--keep-swap-files', is_flag=True, help='swap 파일 및 swap.target은 유지 (swapoff/fstab만 적용)')
def master(config, debug, assume_yes, keep_swap_files):
    """컨트롤 플레인 노드 설치"""
    cfg = _load(config, debug, assume_yes)
    _confirm(cfg, f"Kubernetes v{cfg.cluster.kubernetes_version} 컨트롤 플레인을 설치하시겠습니까?")
    _install_cluster(cfg, debug, single_node=False, full_swap_disable=not keep_swap_files)
    console.print("\n[bold green]✓ 컨트롤 플레인 설치 완료![/bold green]")


@cli.command('single-node')
@common_options
@click.option('--keep-swap-files', is_flag=True, help='swap 파일 및 swap.target은 유지 (swapoff/fstab만 적용)')
def single_node(config, debug, assume_yes, keep_swap_files):
    """단일 노드 클러스터 설치 (컨트롤 플레인에 워크로드 허용)"""
    cfg = _load(config, debug, assume_yes)
    _confirm(cfg, f"Kubernetes v{cfg.cluster.kubernetes_version} 단일 노드 클러스터를 설치하시겠습니까?")
    _install_cluster(cfg, debug, single_node=True, full_swap_disable=not keep_swap_files)
    console.print("\n[bold green]✓ 단일 노드 클러스터 설치 완료![/bold green]")


def prompt_join_command(ask: Callable[[str], str] = Prompt.ask) -> str:
    """올바른 kubeadm join 명령이 입력될 때까지 반복해서 묻는다"""
    while True:
        command = ask("kubeadm join 명령")
        try:
            validate_join_command(command)
            return command.strip()
        except InstallerError as e:
            console.print(f"[red]{e}[/red]")


@cli.command()
@common_options
@click.option('--join-command', '-j', help='마스터에서 생성된 kubeadm join 명령')
def worker(config, debug, assume_yes, join_command):
    """워커 노드 설치 및 클러스터 조인"""
    cfg = _load(config, debug, assume_yes)

    if join_command:
        try:
            validate_join_command(join_command)
        except InstallerError as e:
            console.print(f"[red]✗ {e}[/red]")
            sys.exit(1)
    else:
        console.print("[cyan]마스터 노드의 조인 명령을 입력하세요 "
                      f"({cfg.cluster.join_command_file} 참고).[/cyan]")
        join_command = prompt_join_command()

    require_root()
    check_debian_family()

    def action(driver):
        installer = K8sInstaller(cfg, driver, debug)
        _configure_firewall(cfg, debug, "worker")
        installer.prepare_host()
        installer.install_containerd()
        installer.install_kubernetes_packages()
        installer.join_worker(join_command)

    run_guarded(cfg, debug, action)


@cli.command()
@common_options
def metallb(config, debug, assume_yes):
    """MetalLB 로드밸런서 설치"""
    cfg = _load(config, debug, assume_yes)
    run_guarded(cfg, debug, lambda driver: MetalLBInstaller(cfg, driver, debug, cfg.installer.assume_yes).run())


@cli.command('metallb-ports')
@common_options
def metallb_ports(config, debug, assume_yes):
    """MetalLB memberlist 포트(7946) 개방 및 speaker 재시작"""
    cfg = _load(config, debug, assume_yes)
    require_root()
    run_guarded(cfg, debug, lambda driver: MetalLBInstaller(cfg, driver, debug).open_memberlist_ports())


@cli.command()
@common_options
def argocd(config, debug, assume_yes):
    """ArgoCD 설치 (MetalLB LoadBalancer IP 사용)"""
    cfg = _load(config, debug, assume_yes)
    run_guarded(cfg, debug, lambda driver: ArgoCDInstaller(cfg, driver, debug, cfg.installer.assume_yes).run())


@cli.command()
@common_options
@click.option('--test-pod', is_flag=True, help='설치 후 GPU 테스트 파드 생성')
@click.option('--recover', is_flag=True, help='재부팅 후 containerd/kubelet 복구만 수행')
def gpu(config, debug, assume_yes, test_pod, recover):
    """NVIDIA 드라이버 및 Kubernetes GPU 지원 설치"""
    cfg = _load(config, debug, assume_yes)
    require_root()

    def action(driver):
        installer = NvidiaInstaller(cfg, driver, debug)
        if recover:
            installer.recover()
        else:
            installer.run(test_pod=test_pod)

    run_guarded(cfg, debug, action)


@cli.command('fix-startup')
@common_options
def fix_startup(config, debug, assume_yes):
    """재부팅 후 Kubernetes 시작 문제 복구"""
    cfg = _load(config, debug, assume_yes)
    require_root()
    run_guarded(cfg, debug, lambda driver: RecoveryManager(cfg, driver, debug).fix_startup())


@cli.command('troubleshoot-kubelet')
@common_options
def troubleshoot_kubelet(config, debug, assume_yes):
    """kubelet 시작 실패 진단 및 복구"""
    cfg = _load(config, debug, assume_yes)
    require_root()
    _confirm(cfg, "kubelet 상태(파드 디렉토리, 매니저 상태)를 초기화합니다. 계속하시겠습니까?")
    run_guarded(cfg, debug, lambda driver: RecoveryManager(cfg, driver, debug).troubleshoot_kubelet())


@cli.command('verify-autostart')
@common_options
def verify_autostart(config, debug, assume_yes):
    """서비스 자동 시작 설정 확인"""
    cfg = _load(config, debug, assume_yes)
    require_root()
    run_guarded(cfg, debug, lambda driver: RecoveryManager(cfg, driver, debug).verify_autostart())


@cli.command()
@common_options
@click.option('--save-report', is_flag=True, help='리포트를 파일로 저장')
def health(config, debug, assume_yes, save_report):
    """클러스터 헬스체크 수행"""
    cfg = _load(config, debug, assume_yes)
    console.print("[bold cyan]K8s Cluster Installer - 헬스체크[/bold cyan]\n")

    checker = HealthChecker(cfg)
    with console.status("[bold green]헬스체크 수행 중...[/bold green]"):
        results = checker.check_all()

    status_color = "green" if results["overall_status"] == "healthy" else "red"
    console.print(f"\n[bold {status_color}]전체 상태: {results['overall_status'].upper()}[/bold {status_color}]\n")

    table = Table(title="헬스체크 상세 결과")
    table.add_column("항목", style="cyan")
    table.add_column("상태", style="magenta")
    table.add_column("메시지", style="white")
    for check_name, check_result in results["checks"].items():
        status_icon = "✅" if check_result.get("healthy") else "❌"
        table.add_row(
            check_name.upper(),
            f"{status_icon} {check_result.get('status', 'unknown')}",
            check_result.get("message", ""),
        )
    console.print(table)

    if save_report:
        report_file = checker.save_health_report(results)
        console.print(f"\n[green]✅ 리포트 저장: {report_file}[/green]")

    sys.exit(0 if results["overall_status"] == "healthy" else 1)


@cli.command('check-range')
@click.argument('ip_range')
@click.argument('addresses', nargs=-1)
def check_range(ip_range, addresses):
    """IP 범위 검증 및 주소 포함 여부 확인"""
    try:
        parsed = parse_ip_range(ip_range)
    except MalformedRange as e:
        console.print(f"[red]✗ {e}[/red]")
        sys.exit(1)

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("항목", style="cyan")
    table.add_column("값")
    table.add_row("범위", str(parsed))
    table.add_row("형식", "범위 표기" if isinstance(parsed, BoundedRange) else "CIDR 표기")
    table.add_row("주소 개수", str(parsed.size))
    if parsed.size:
        table.add_row("첫 주소", int_to_address(parsed.first))
        table.add_row("예시 주소", ", ".join(sample_addresses(parsed)))
    console.print(table)

    outside = False
    for address in addresses:
        try:
            inside = contains(parsed, address)
        except MalformedRange as e:
            console.print(f"  [red]✗ {e}[/red]")
            outside = True
            continue
        if inside:
            console.print(f"  [green]✓[/green] {address}: 범위 안")
        else:
            console.print(f"  [red]✗[/red] {address}: 범위 밖")
            outside = True

    sys.exit(1 if outside else 0)


def main():
    """메인 엔트리 포인트"""
    cli()


if __name__ == '__main__':
    main()
