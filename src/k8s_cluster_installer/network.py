"""
네트워크 확인 모듈
포트, HTTP 체크 및 로컬/클러스터 네트워크 정보 수집
"""

import re
import socket
import subprocess
from typing import List, Optional, Tuple

import requests
import urllib3

from .logger import get_logger
from .system import kubectl, run_command

_SRC_RE = re.compile(r"\bsrc\s+(\d{1,3}(?:\.\d{1,3}){3})")


def network_base(address: str) -> str:
    """주소의 앞 세 옥텟 (/24 가정)"""
    return ".".join(address.split(".")[:3])


class NetworkChecker:
    """네트워크 연결성 및 주소 정보 확인 클래스"""

    def __init__(self, debug: bool = False):
        self.debug = debug
        self.logger = get_logger()

    def check_port(self, host: str, port: int, timeout: int = 5) -> Tuple[bool, str]:
        """포트 연결 테스트"""
        try:
            self.logger.debug(f"Checking port {host}:{port}...")
            with socket.create_connection((host, port), timeout=timeout):
                pass
            self.logger.debug(f"✓ {host}:{port} is open")
            return True, f"✓ {host}:{port} 연결 성공"

        except socket.gaierror:
            self.logger.error(f"✗ Cannot resolve {host}")
            return False, f"✗ {host} 호스트를 찾을 수 없습니다"
        except (OSError, OverflowError) as e:
            self.logger.warning(f"✗ {host}:{port} is closed ({e})")
            return False, f"✗ {host}:{port} 연결 실패"

    def check_http(self, url: str, timeout: int = 5, verify: bool = False) -> Tuple[bool, str]:
        """HTTP/HTTPS 연결 테스트 (자체 서명 인증서 허용)"""
        try:
            self.logger.debug(f"Checking HTTP connection to {url}...")
            if not verify:
                urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
            response = requests.get(url, timeout=timeout, verify=verify)
            if response.status_code < 400:
                self.logger.debug(f"✓ HTTP connection successful (status: {response.status_code})")
                return True, f"✓ HTTP 연결 성공 ({url})"
            else:
                self.logger.warning(f"✗ HTTP error: {response.status_code}")
                return False, f"✗ HTTP 오류: {response.status_code}"
        except requests.exceptions.SSLError:
            self.logger.error("✗ SSL certificate error")
            return False, "✗ SSL 인증서 오류"
        except requests.exceptions.ConnectionError:
            self.logger.warning(f"✗ Connection to {url} failed")
            return False, "✗ 연결 실패"
        except requests.exceptions.Timeout:
            self.logger.warning(f"✗ Connection to {url} timed out")
            return False, "✗ 타임아웃"

    def local_source_ip(self, target: str = "8.8.8.8") -> Optional[str]:
        """기본 경로의 출발지 주소 (ip route get)"""
        try:
            result = run_command(["ip", "route", "get", target], timeout=5)
        except (FileNotFoundError, subprocess.TimeoutExpired) as e:
            self.logger.debug(f"ip route get failed: {e}")
            return None

        match = _SRC_RE.search(result.stdout)
        if match:
            self.logger.debug(f"Local source IP: {match.group(1)}")
            return match.group(1)
        return None

    def node_internal_ips(self) -> List[str]:
        """클러스터 노드의 InternalIP 목록"""
        try:
            result = kubectl(
                "get", "nodes", "-o",
                'jsonpath={.items[*].status.addresses[?(@.type=="InternalIP")].address}',
            )
        except FileNotFoundError:
            return []
        if result.returncode != 0:
            return []
        return result.stdout.split()
