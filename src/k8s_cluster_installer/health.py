"""
클러스터 헬스체크 모듈

다음 항목을 한 번씩 확인합니다:
- 컨테이너 런타임(containerd) 및 kubelet 서비스
- API 서버 응답 및 노드 Ready 상태
- MetalLB / ArgoCD 애드온 파드
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from .config import Config
from .logger import get_logger
from .poller import NotReady, PredicateResult, Ready
from .probes import api_server_reachable, nodes_ready, pods_present, service_active


def _from_probe(result: PredicateResult, healthy_message: str) -> Dict:
    """프로브 결과를 헬스체크 항목으로 변환"""
    if isinstance(result, Ready):
        return {"healthy": True, "status": "ok", "message": healthy_message}
    if isinstance(result, NotReady):
        return {"healthy": False, "status": "not_ready", "message": str(result.state)}
    return {"healthy": False, "status": "error", "message": str(result.cause)}


class HealthChecker:
    """시스템 헬스체크를 수행하는 클래스"""

    def __init__(self, config: Config, log_dir: Optional[str] = None):
        """
        Args:
            config: 설정 객체
            log_dir: 리포트 저장 디렉토리 (기본값: 로거 디렉토리)
        """
        self.config = config
        self.logger = get_logger()
        self.log_dir = Path(log_dir) if log_dir else Path(self.logger.log_dir)

    def check_all(self) -> Dict:
        """모든 헬스체크 수행

        Returns:
            Dict: 항목별 결과와 overall_status
        """
        self.logger.info("Running health checks")

        results = {
            "timestamp": datetime.now().isoformat(),
            "checks": {
                "containerd": self.check_service("containerd"),
                "kubelet": self.check_service("kubelet"),
                "api_server": self.check_api_server(),
                "node_ready": self.check_node_ready_status(),
                "metallb": self.check_addon(self.config.metallb.namespace, "MetalLB"),
                "argocd": self.check_addon(self.config.argocd.namespace, "ArgoCD"),
            },
            "overall_status": "healthy",
        }

        failed_checks = [k for k, v in results["checks"].items() if not v.get("healthy", False)]
        if failed_checks:
            results["overall_status"] = "unhealthy"
            results["failed_checks"] = failed_checks

        self.logger.info(f"Health check finished: {results['overall_status']}")
        return results

    def check_service(self, name: str) -> Dict:
        return _from_probe(service_active(name), f"{name} 정상 작동")

    def check_api_server(self) -> Dict:
        return _from_probe(api_server_reachable(), "API 서버 응답 정상")

    def check_node_ready_status(self) -> Dict:
        """모든 노드의 Ready 상태 확인"""
        result = nodes_ready()
        check = _from_probe(result, "모든 노드가 Ready 상태")
        if isinstance(result, Ready):
            check["nodes"] = result.state
            check["message"] = f"Ready: {', '.join(result.state)}"
        return check

    def check_addon(self, namespace: str, label: str) -> Dict:
        """애드온 파드 존재 여부

        kubectl이 정상 응답했지만 파드가 없으면 미설치로 보고 실패로 세지 않음.
        조회 자체가 실패하면 (API 서버 다운 등) 오류로 보고함.
        """
        result = pods_present(namespace)
        if isinstance(result, Ready):
            return {"healthy": True, "status": "ok", "message": f"{label} 파드 {result.state}개"}
        if isinstance(result, NotReady):
            return {"healthy": True, "status": "not_installed", "message": f"{label} 미설치"}
        return _from_probe(result, "")

    def save_health_report(self, results: Dict) -> Path:
        """헬스체크 결과를 파일로 저장

        Args:
            results: 헬스체크 결과

        Returns:
            Path: 저장된 파일 경로
        """
        self.log_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        report_file = self.log_dir / f"health_report_{timestamp}.json"

        with open(report_file, "w", encoding="utf-8") as f:
            json.dump(results, f, indent=2, ensure_ascii=False)

        self.logger.info(f"Saved health report: {report_file}")
        return report_file
