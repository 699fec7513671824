"""
systemd 유닛 및 시스템 설정 파일 템플릿
"""

import os
from typing import Optional

from jinja2 import Environment

from .logger import get_logger

SYSTEMD_DIR = "/etc/systemd/system"

DISABLE_SWAP_SERVICE = """[Unit]
Description=Disable Swap
DefaultDependencies=false
After=local-fs.target

[Service]
Type=oneshot
ExecStart=/sbin/swapoff -a
ExecStart=/bin/bash -c 'echo "Swap disabled for Kubernetes"'
RemainAfterExit=yes

[Install]
WantedBy=basic.target
"""

KUBERNETES_STARTUP_SERVICE = """[Unit]
Description=Kubernetes Startup Service
After=network.target {{ services | map('unit') | join(' ') }}
Wants={{ services | map('unit') | join(' ') }}

[Service]
Type=oneshot
ExecStart=/bin/bash -c 'sleep {{ delay }} && systemctl restart kubelet{% if settle %} && sleep {{ settle }}{% endif %}'
RemainAfterExit=yes
User=root

[Install]
WantedBy=multi-user.target
"""

RECOVERY_SERVICE = """[Unit]
Description=Kubernetes Node Recovery after Reboot
After=network-online.target containerd.service
Wants=network-online.target

[Service]
Type=oneshot
ExecStart={{ command }}
RemainAfterExit=yes
User=root
TimeoutStartSec={{ timeout }}

[Install]
WantedBy=multi-user.target
"""

MODULES_LOAD = """{% for module in modules %}{{ module }}
{% endfor %}"""

SYSCTL_CONF = """{% for key, value in params.items() %}{{ "%-35s" | format(key) }} = {{ value }}
{% endfor %}"""

_TEMPLATES = {
    "disable-swap.service": DISABLE_SWAP_SERVICE,
    "kubernetes-startup.service": KUBERNETES_STARTUP_SERVICE,
    "k8s-recovery.service": RECOVERY_SERVICE,
    "modules-load.conf": MODULES_LOAD,
    "sysctl.conf": SYSCTL_CONF,
}


def _unit_name(service: str) -> str:
    return service if service.endswith(".service") else f"{service}.service"


_environment = Environment(keep_trailing_newline=True)
_environment.filters["unit"] = _unit_name


def render(name: str, **context) -> str:
    """이름으로 템플릿 렌더링"""
    if name not in _TEMPLATES:
        raise KeyError(f"Unknown template: {name}")
    return _environment.from_string(_TEMPLATES[name]).render(**context)


def write_file(path: str, content: str, mode: Optional[int] = 0o644) -> str:
    """설정 파일 쓰기 (상위 디렉토리 생성)"""
    logger = get_logger()
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(content)
    if mode is not None:
        os.chmod(path, mode)
    logger.debug(f"Wrote {path}")
    return path


def unit_path(name: str, systemd_dir: str = SYSTEMD_DIR) -> str:
    return os.path.join(systemd_dir, name)
