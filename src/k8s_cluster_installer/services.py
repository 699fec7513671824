"""
systemd 서비스 관리 및 복구 조치 모듈
"""

import glob
import os
import shutil
import time
from functools import partial
from typing import List, Optional

import yaml
from rich.console import Console

from .convergence import RemedialAction, ServiceCheckpoint
from .logger import get_logger
from .poller import RetryWindow
from .probes import service_active
from .system import command_exists, kubectl, run_command

console = Console()

CONTAINERD_CONFIG = "/etc/containerd/config.toml"
KUBELET_DIR = "/var/lib/kubelet"


class ServiceManager:
    """systemd 서비스 관리 클래스"""

    def __init__(self, debug: bool = False):
        self.debug = debug
        self.logger = get_logger()

    def is_active(self, name: str) -> bool:
        result = run_command(["systemctl", "is-active", "--quiet", name])
        return result.returncode == 0

    def is_enabled(self, name: str) -> bool:
        result = run_command(["systemctl", "is-enabled", "--quiet", name])
        return result.returncode == 0

    def exists(self, name: str) -> bool:
        result = run_command(["systemctl", "list-unit-files", f"{name}.service", "--no-legend"])
        return bool(result.stdout.strip())

    def start(self, name: str):
        self.logger.info(f"Starting {name}")
        run_command(["systemctl", "start", name], check=True)

    def restart(self, name: str):
        self.logger.info(f"Restarting {name}")
        run_command(["systemctl", "restart", name], check=True)

    def stop(self, name: str):
        self.logger.info(f"Stopping {name}")
        run_command(["systemctl", "stop", name])

    def enable(self, name: str):
        self.logger.info(f"Enabling {name}")
        run_command(["systemctl", "enable", name], check=True)

    def daemon_reload(self):
        run_command(["systemctl", "daemon-reload"], check=True)

    def status_text(self, name: str) -> str:
        """systemctl status 출력 (진단용)"""
        result = run_command(["systemctl", "status", name, "--no-pager", "-l"])
        return result.stdout.strip()

    def journal_tail(self, name: str, since: str = "10 minutes ago", lines: int = 20) -> str:
        """journalctl 최근 로그 (진단용)"""
        result = run_command(["journalctl", "-u", name, "--no-pager", "-l", "--since", since])
        return "\n".join(result.stdout.strip().splitlines()[-lines:])

    def checkpoint(self, name: str, window: RetryWindow,
                   extra_remedies: Optional[List[RemedialAction]] = None) -> ServiceCheckpoint:
        """서비스 실행 체크포인트: 시작 → 재시작 순으로 복구"""
        remedies = [
            RemedialAction(f"start {name}", partial(self.start, name)),
            RemedialAction(f"restart {name}", partial(self.restart, name)),
        ]
        remedies.extend(extra_remedies or [])
        return ServiceCheckpoint(
            name=f"{name} active",
            predicate=partial(service_active, name),
            remedies=remedies,
            window=window,
        )

    def ensure_enabled(self, names: List[str]) -> bool:
        """자동 시작 설정 확인 및 적용"""
        all_enabled = True
        for name in names:
            if self.is_enabled(name):
                console.print(f"  [green]✓[/green] {name}: 자동 시작 설정됨")
                continue

            console.print(f"  [yellow]⚠[/yellow] {name}: 자동 시작 미설정, 설정합니다...")
            self.logger.warning(f"{name} is not enabled, enabling")
            run_command(["systemctl", "enable", name])
            if self.is_enabled(name):
                console.print(f"  [green]✓[/green] {name}: 자동 시작 설정 완료")
            else:
                console.print(f"  [red]✗[/red] {name}: 자동 시작 설정 실패")
                self.logger.error(f"Failed to enable {name}")
                all_enabled = False
        return all_enabled


def backup_file(path: str) -> Optional[str]:
    """path.backup.<timestamp>로 복사"""
    if not os.path.exists(path):
        return None
    backup = f"{path}.backup.{int(time.time())}"
    shutil.copy2(path, backup)
    get_logger().info(f"Backed up {path} to {backup}")
    return backup


def regenerate_containerd_config(nvidia: bool = False,
                                 config_path: str = CONTAINERD_CONFIG,
                                 restart: bool = True):
    """기본 containerd 설정 재생성 (SystemdCgroup 활성화, 선택적으로 NVIDIA 런타임)"""
    logger = get_logger()
    manager = ServiceManager()

    if restart:
        manager.stop("containerd")

    backup_file(config_path)
    result = run_command(["containerd", "config", "default"], check=True)
    content = result.stdout.replace("SystemdCgroup = false", "SystemdCgroup = true")

    os.makedirs(os.path.dirname(config_path), exist_ok=True)
    with open(config_path, "w", encoding="utf-8") as f:
        f.write(content)
    logger.info(f"Regenerated {config_path}")

    if nvidia:
        if command_exists("nvidia-ctk"):
            run_command(
                ["nvidia-ctk", "runtime", "configure", "--runtime=containerd", "--set-as-default"],
                check=True,
            )
            logger.info("Configured NVIDIA runtime for containerd")
        else:
            logger.warning("nvidia-ctk not available, skipping NVIDIA runtime configuration")

    if restart:
        manager.restart("containerd")
        manager.enable("containerd")


def disable_swap():
    """즉시 swap 비활성화"""
    run_command(["swapoff", "-a"], check=True)


def swap_enabled() -> bool:
    result = run_command(["swapon", "--show", "--noheadings"])
    return bool(result.stdout.strip())


def kubelet_config_valid(path: str = os.path.join(KUBELET_DIR, "config.yaml")) -> bool:
    """kubelet config.yaml이 올바른 YAML 매핑인지 확인 (없으면 True)"""
    if not os.path.exists(path):
        return True
    try:
        with open(path, "r", encoding="utf-8") as f:
            return isinstance(yaml.safe_load(f), dict)
    except yaml.YAMLError:
        return False


def reset_kubelet_state(kubelet_dir: str = KUBELET_DIR, remove_config: bool = False):
    """kubelet 중지 후 파드 디렉토리 및 매니저 상태 정리

    remove_config=True이거나 config.yaml이 손상되었으면 백업 후 제거한다.
    """
    logger = get_logger()
    ServiceManager().stop("kubelet")

    pods_dir = os.path.join(kubelet_dir, "pods")
    pod_dirs = [p for p in glob.glob(os.path.join(pods_dir, "*")) if os.path.isdir(p)]
    for pod_dir in pod_dirs:
        shutil.rmtree(pod_dir, ignore_errors=True)
    if pod_dirs:
        logger.info(f"Removed {len(pod_dirs)} kubelet pod directories")

    for state_file in ("cpu_manager_state", "memory_manager_state"):
        path = os.path.join(kubelet_dir, state_file)
        if os.path.isfile(path):
            os.remove(path)
            logger.info(f"Removed {path}")

    config_path = os.path.join(kubelet_dir, "config.yaml")
    if os.path.exists(config_path) and (remove_config or not kubelet_config_valid(config_path)):
        backup = f"{config_path}.backup.{int(time.time())}"
        shutil.move(config_path, backup)
        logger.warning(f"Moved kubelet config to {backup}")

    if swap_enabled():
        disable_swap()


def delete_object(kind: str, name: Optional[str] = None, namespace: Optional[str] = None,
                  selector: Optional[str] = None):
    """Kubernetes 오브젝트 삭제 (컨트롤러가 재생성하는 파드 재시작 용도)"""
    args = ["delete", kind]
    if name:
        args.append(name)
    if namespace:
        args.extend(["-n", namespace])
    if selector:
        args.extend(["-l", selector])
    args.append("--ignore-not-found=true")
    kubectl(*args, check=True)
