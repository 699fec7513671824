"""
설정 관리 모듈
YAML/JSON 기반 설정 파일 관리 및 기본값 제공
"""

import os
import yaml
import json
from typing import Dict, Any, Optional
from dataclasses import dataclass, field, asdict

from .errors import InvalidRetryWindow
from .poller import RetryWindow


@dataclass
class ClusterConfig:
    """클러스터 설치 설정"""
    kubernetes_version: str = "1.33"
    pod_cidr: str = "10.244.0.0/16"
    cri_socket: str = "unix:///var/run/containerd/containerd.sock"
    cni_manifest: str = "https://github.com/flannel-io/flannel/releases/latest/download/kube-flannel.yml"
    join_command_file: str = "/tmp/kubeadm-join-command.txt"
    admin_kubeconfig: str = "/etc/kubernetes/admin.conf"


@dataclass
class MetalLBConfig:
    """MetalLB 설정"""
    version: str = "v0.14.9"
    namespace: str = "metallb-system"
    pool_name: str = "default-pool"
    ip_range: str = ""  # 비워두면 설치 시 입력
    create_test_service: bool = True


@dataclass
class ArgoCDConfig:
    """ArgoCD 설정"""
    version: str = "stable"
    namespace: str = "argocd"
    loadbalancer_ip: str = ""  # 비워두면 설치 시 입력
    service_name: str = "argocd-server-loadbalancer"


@dataclass
class GPUConfig:
    """NVIDIA GPU 설정"""
    driver_version: str = "550"
    device_plugin_version: str = "v0.16.2"
    test_image: str = "nvidia/cuda:12.2-runtime-ubuntu20.04"
    manifest_copy: str = "/root/nvidia-device-plugin.yaml"


@dataclass
class FirewallConfig:
    """방화벽 설정"""
    enabled: bool = True
    k8s_api_port: int = 6443
    kubelet_port: int = 10250
    nodeport_range: str = "30000-32767"
    memberlist_port: int = 7946  # MetalLB speaker
    additional_ports: list = field(default_factory=list)


def _window(max_attempts: int, interval: float):
    return field(default_factory=lambda: {"max_attempts": max_attempts, "interval": interval})


@dataclass
class ConvergenceConfig:
    """체크포인트별 재시도 구간 (시도 횟수 x 간격)"""
    service_start: dict = _window(6, 5)
    kubelet_start: dict = _window(3, 15)
    api_server: dict = _window(30, 10)
    node_ready: dict = _window(30, 10)
    pods_ready: dict = _window(30, 10)
    external_ip: dict = _window(30, 2)
    admin_secret: dict = _window(30, 2)
    speaker_restart: dict = _window(12, 5)


@dataclass
class InstallerConfig:
    """설치 도구 설정"""
    log_dir: str = "/var/log/k8s-cluster-installer"
    log_level: str = "INFO"
    assume_yes: bool = False


class Config:
    """전체 설정 관리 클래스"""

    DEFAULT_CONFIG_PATHS = [
        "/etc/k8s-cluster-installer/config.yaml",
        "~/.k8s-cluster-installer/config.yaml",
        "./config/config.yaml",
        "./config.yaml",
    ]

    SECTIONS = ("cluster", "metallb", "argocd", "gpu", "firewall", "convergence", "installer")

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path
        self.cluster = ClusterConfig()
        self.metallb = MetalLBConfig()
        self.argocd = ArgoCDConfig()
        self.gpu = GPUConfig()
        self.firewall = FirewallConfig()
        self.convergence = ConvergenceConfig()
        self.installer = InstallerConfig()

        if config_path:
            self.load(config_path)
        else:
            self._load_from_default_paths()

    def _load_from_default_paths(self):
        """기본 경로에서 설정 파일 로드"""
        for path in self.DEFAULT_CONFIG_PATHS:
            expanded_path = os.path.expanduser(path)
            if os.path.exists(expanded_path):
                self.load(expanded_path)
                return

    def load(self, path: str):
        """설정 파일 로드"""
        path = os.path.expanduser(path)
        if not os.path.exists(path):
            return

        with open(path, 'r', encoding='utf-8') as f:
            if path.endswith('.json'):
                data = json.load(f)
            else:
                data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Configuration root must be a mapping: {path}")

        self._update_from_dict(data)
        self.config_path = path

    def _update_from_dict(self, data: Dict[str, Any]):
        """딕셔너리에서 설정 업데이트 (알 수 없는 키는 무시)"""
        for section_name in self.SECTIONS:
            values = data.get(section_name)
            if not values:
                continue
            section = getattr(self, section_name)
            for key, value in values.items():
                if not hasattr(section, key):
                    continue
                current = getattr(section, key)
                # 재시도 구간은 부분 지정 가능
                if isinstance(current, dict) and isinstance(value, dict):
                    current = dict(current)
                    current.update(value)
                    value = current
                setattr(section, key, value)

    def window(self, name: str) -> RetryWindow:
        """이름으로 재시도 구간 조회"""
        values = getattr(self.convergence, name, None)
        if not isinstance(values, dict):
            raise KeyError(f"Unknown convergence window: {name}")
        try:
            return RetryWindow(
                max_attempts=int(values.get("max_attempts", 1)),
                interval=float(values.get("interval", 0)),
            )
        except (TypeError, ValueError) as e:
            raise InvalidRetryWindow(name, str(e)) from e

    def save(self, path: Optional[str] = None):
        """설정 파일 저장"""
        save_path = path or self.config_path or self.DEFAULT_CONFIG_PATHS[0]
        save_path = os.path.expanduser(save_path)

        directory = os.path.dirname(save_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        data = self.to_dict()

        with open(save_path, 'w', encoding='utf-8') as f:
            if save_path.endswith('.json'):
                json.dump(data, f, indent=2)
            else:
                yaml.dump(data, f, default_flow_style=False, allow_unicode=True)

    def to_dict(self) -> Dict[str, Any]:
        """딕셔너리로 변환"""
        return {name: asdict(getattr(self, name)) for name in self.SECTIONS}

    def create_sample(self, output_path: str):
        """샘플 설정 파일 생성"""
        template = """# K8s Cluster Installer Configuration File
# 이 파일을 복사하여 config.yaml로 사용하세요

# 클러스터 설정
cluster:
  kubernetes_version: "1.33"
  pod_cidr: "10.244.0.0/16"
  cri_socket: "unix:///var/run/containerd/containerd.sock"
  cni_manifest: "https://github.com/flannel-io/flannel/releases/latest/download/kube-flannel.yml"
  join_command_file: "/tmp/kubeadm-join-command.txt"
  admin_kubeconfig: "/etc/kubernetes/admin.conf"

# MetalLB 설정
metallb:
  version: "v0.14.9"
  namespace: "metallb-system"
  pool_name: "default-pool"
  ip_range: ""  # 예: 192.168.1.240/28 또는 192.168.1.200-192.168.1.210 (비워두면 설치 시 입력)
  create_test_service: true

# ArgoCD 설정
argocd:
  version: "stable"
  namespace: "argocd"
  loadbalancer_ip: ""  # MetalLB 풀 안의 주소 (비워두면 설치 시 입력)
  service_name: "argocd-server-loadbalancer"

# NVIDIA GPU 설정
gpu:
  driver_version: "550"
  device_plugin_version: "v0.16.2"
  test_image: "nvidia/cuda:12.2-runtime-ubuntu20.04"
  manifest_copy: "/root/nvidia-device-plugin.yaml"

# 방화벽 설정
firewall:
  enabled: true
  k8s_api_port: 6443
  kubelet_port: 10250
  nodeport_range: "30000-32767"
  memberlist_port: 7946
  additional_ports: []

# 재시도 구간 (max_attempts x interval 초가 최대 대기 시간)
convergence:
  service_start: {max_attempts: 6, interval: 5}
  kubelet_start: {max_attempts: 3, interval: 15}
  api_server: {max_attempts: 30, interval: 10}
  node_ready: {max_attempts: 30, interval: 10}
  pods_ready: {max_attempts: 30, interval: 10}
  external_ip: {max_attempts: 30, interval: 2}
  admin_secret: {max_attempts: 30, interval: 2}
  speaker_restart: {max_attempts: 12, interval: 5}

# 설치 도구 설정
installer:
  log_dir: "/var/log/k8s-cluster-installer"
  log_level: "INFO"  # DEBUG, INFO, WARNING, ERROR
  assume_yes: false
"""

        directory = os.path.dirname(output_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(output_path, 'w', encoding='utf-8') as f:
            f.write(template)
