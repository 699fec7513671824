"""
방화벽 자동 설정 모듈
UFW, firewalld, iptables 지원
"""

from typing import Dict, List, Tuple
from rich.console import Console

from .logger import get_logger
from .system import command_exists, run_command

console = Console()

PROFILES = ("control-plane", "worker", "metallb")


class FirewallManager:
    """방화벽 관리 클래스"""

    def __init__(self, config: Dict, debug: bool = False):
        self.config = config
        self.debug = debug
        self.logger = get_logger()
        self.enabled = config.get("enabled", True)
        self.k8s_api_port = config.get("k8s_api_port", 6443)
        self.kubelet_port = config.get("kubelet_port", 10250)
        self.nodeport_range = config.get("nodeport_range", "30000-32767")
        self.memberlist_port = config.get("memberlist_port", 7946)
        self.additional_ports = config.get("additional_ports", [])
        self.firewall_type = None
        self.original_rules = ""

    def detect_firewall(self) -> str:
        """시스템의 방화벽 타입 감지"""
        if command_exists("ufw"):
            return "ufw"
        elif command_exists("firewall-cmd"):
            return "firewalld"
        elif command_exists("iptables"):
            return "iptables"
        else:
            return "none"

    def rules_for(self, profile: str) -> List[Tuple[str, str, str]]:
        """프로파일별 (포트 또는 범위, 프로토콜, 설명) 목록. 범위는 'start-end' 형식"""
        if profile == "control-plane":
            rules = [
                (str(self.k8s_api_port), "tcp", "Kubernetes API"),
                ("2379-2380", "tcp", "etcd"),
                (f"{self.kubelet_port}-10252", "tcp", "Kubelet / controller-manager / scheduler"),
            ]
        elif profile == "worker":
            rules = [
                (str(self.kubelet_port), "tcp", "Kubelet API"),
                (self.nodeport_range, "tcp", "NodePort range"),
            ]
        elif profile == "metallb":
            rules = [
                (str(self.memberlist_port), "tcp", "MetalLB memberlist TCP"),
                (str(self.memberlist_port), "udp", "MetalLB memberlist UDP"),
            ]
        else:
            raise ValueError(f"Unknown firewall profile: {profile}")

        for port_spec in self.additional_ports:
            port, _, protocol = str(port_spec).partition("/")
            rules.append((port, protocol or "tcp", "Additional port"))
        return rules

    def save_state(self):
        """현재 방화벽 규칙 저장 (롤백용)"""
        self.firewall_type = self.detect_firewall()
        self.logger.debug(f"Detected firewall: {self.firewall_type}")

        if self.firewall_type == "iptables":
            result = run_command(["iptables-save"])
            self.original_rules = result.stdout
            self.logger.debug("Saved iptables rules")

    def rollback(self) -> bool:
        """이전 방화벽 규칙으로 롤백"""
        self.logger.info("Rolling back firewall configuration...")
        console.print("\n[yellow]방화벽 설정 롤백 중...[/yellow]")

        if self.firewall_type == "iptables" and self.original_rules:
            result = run_command(["iptables-restore"], input=self.original_rules)
            if result.returncode != 0:
                self.logger.error(f"Firewall rollback failed: {result.stderr.strip()}")
                console.print("[red]✗ 방화벽 롤백 실패[/red]")
                return False
            self.logger.info("Firewall rules restored")

        console.print("[green]✓ 방화벽 롤백 완료[/green]")
        return True

    def configure(self, profile: str) -> Tuple[bool, str]:
        """프로파일에 맞게 방화벽 자동 설정"""
        if not self.enabled:
            console.print("[cyan]방화벽 설정을 건너뜁니다.[/cyan]")
            self.logger.info("Firewall configuration skipped")
            return True, "건너뜀"

        console.print(f"\n[bold cyan]방화벽 설정 중 ({profile})...[/bold cyan]\n")
        self.logger.info(f"Configuring firewall for {profile}...")

        self.save_state()
        console.print(f"[cyan]감지된 방화벽: {self.firewall_type}[/cyan]")
        self.logger.info(f"Detected firewall: {self.firewall_type}")

        if self.firewall_type == "none":
            console.print("[yellow]⚠ 방화벽 관리 도구를 찾을 수 없습니다.[/yellow]")
            self.logger.warning("No firewall management tool found")
            return True, "방화벽 없음"

        rules = self.rules_for(profile)
        failed = []
        for port, protocol, description in rules:
            cmd = self._rule_command(port, protocol, description)
            result = run_command(cmd)
            if result.returncode == 0:
                console.print(f"  ✓ {port}/{protocol} - {description}")
                self.logger.debug(f"Added {self.firewall_type} rule: {port}/{protocol}")
            else:
                console.print(f"  [red]✗[/red] {port}/{protocol} - {description}")
                self.logger.error(f"Failed to add rule {port}/{protocol}: {result.stderr.strip()}")
                failed.append(f"{port}/{protocol}")

        if self.firewall_type == "firewalld":
            run_command(["firewall-cmd", "--reload"])

        if failed:
            return False, f"규칙 추가 실패: {', '.join(failed)}"

        console.print(f"\n[green]✓ {self.firewall_type} 방화벽 설정 완료[/green]")
        self.logger.info(f"{self.firewall_type} configuration completed")
        return True, f"{self.firewall_type} 설정 완료"

    def _rule_command(self, port: str, protocol: str, description: str) -> List[str]:
        """방화벽 종류별 규칙 추가 명령"""
        if self.firewall_type == "ufw":
            return ["ufw", "allow", f"{port.replace('-', ':')}/{protocol}", "comment", description]
        if self.firewall_type == "firewalld":
            return ["firewall-cmd", "--permanent", f"--add-port={port}/{protocol}"]
        return ["iptables", "-A", "INPUT", "-p", protocol, "--dport", port.replace("-", ":"), "-j", "ACCEPT"]
