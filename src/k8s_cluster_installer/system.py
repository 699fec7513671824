"""
시스템 명령 실행 모듈
subprocess 호출, kubectl 래퍼, 권한 및 OS 확인
"""

import os
import shutil
import subprocess
from typing import Iterable, List, Optional, Union

import yaml

from .errors import CommandError, InstallerError
from .logger import get_logger

OS_RELEASE = "/etc/os-release"


def run_command(cmd: Union[List[str], str],
                check: bool = False,
                input: Optional[str] = None,
                timeout: Optional[float] = None,
                shell: bool = False,
                env: Optional[dict] = None) -> subprocess.CompletedProcess:
    """외부 명령 실행

    바이너리가 없으면 FileNotFoundError를 그대로 전파한다.

    Raises:
        CommandError: check=True이고 종료 코드가 0이 아닌 경우
    """
    logger = get_logger()
    display = cmd if isinstance(cmd, str) else " ".join(cmd)
    logger.debug(f"$ {display}")

    result = subprocess.run(
        cmd,
        capture_output=True,
        text=True,
        input=input,
        timeout=timeout,
        shell=shell,
        env=env,
    )

    if result.returncode != 0:
        logger.debug(f"exit {result.returncode}: {result.stderr.strip()}")
        if check:
            argv = [cmd] if isinstance(cmd, str) else list(cmd)
            raise CommandError(argv, result.returncode, result.stderr)

    return result


def command_exists(name: str) -> bool:
    """PATH에 명령이 있는지 확인"""
    return shutil.which(name) is not None


def kubectl(*args: str,
            kubeconfig: Optional[str] = None,
            check: bool = False,
            input: Optional[str] = None,
            timeout: Optional[float] = 60) -> subprocess.CompletedProcess:
    """kubectl 실행"""
    cmd = ["kubectl"]
    if kubeconfig:
        cmd.append(f"--kubeconfig={kubeconfig}")
    cmd.extend(args)
    return run_command(cmd, check=check, input=input, timeout=timeout)


def apply_manifests(documents: Iterable[dict],
                    namespace: Optional[str] = None,
                    kubeconfig: Optional[str] = None,
                    validate: bool = True) -> subprocess.CompletedProcess:
    """YAML 문서들을 kubectl apply -f - 로 적용"""
    content = yaml.safe_dump_all(list(documents), default_flow_style=False, sort_keys=False)
    args = ["apply", "-f", "-"]
    if namespace:
        args.extend(["-n", namespace])
    if not validate:
        args.append("--validate=false")
    return kubectl(*args, kubeconfig=kubeconfig, check=True, input=content)


def apt_install(*packages: str, update: bool = False) -> None:
    """apt 패키지 설치"""
    env = dict(os.environ, DEBIAN_FRONTEND="noninteractive")
    if update:
        run_command(["apt-get", "update", "-y"], check=True, env=env)
    run_command(["apt-get", "install", "-y", *packages], check=True, env=env)


def require_root():
    """root 권한 확인"""
    if os.geteuid() != 0:
        raise InstallerError("This command must be run as root (use sudo)")


def read_os_release(path: str = OS_RELEASE) -> dict:
    """/etc/os-release 파싱"""
    info = {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith("#") or "=" not in line:
                    continue
                key, value = line.split("=", 1)
                info[key] = value.strip().strip('"')
    except FileNotFoundError:
        pass
    return info


def check_debian_family(path: str = OS_RELEASE) -> dict:
    """Ubuntu/Debian 계열인지 확인"""
    info = read_os_release(path)
    ids = {info.get("ID", "").lower()} | set(info.get("ID_LIKE", "").lower().split())
    if not ids & {"ubuntu", "debian"}:
        raise InstallerError(
            f"This installer is designed for Ubuntu/Debian systems (found: {info.get('PRETTY_NAME', 'unknown')})"
        )
    return info


def sudo_user_home() -> Optional[tuple]:
    """sudo로 실행한 일반 사용자의 (이름, 홈 디렉토리)"""
    user = os.environ.get("SUDO_USER")
    if not user or user == "root":
        return None
    return user, os.path.expanduser(f"~{user}")
