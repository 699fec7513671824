"""
K8s Cluster Installer
Debian 계열 호스트에 Kubernetes 클러스터와 애드온을 설치하는 도구

Features:
- 컨트롤 플레인 / 워커 / 단일 노드 클러스터 설치 (kubeadm)
- MetalLB 로드밸런서 및 ArgoCD 애드온 설치
- NVIDIA GPU 드라이버 및 디바이스 플러그인 설치
- 재시도 기반 서비스 수렴 및 자동 복구
- 재부팅 후 기동 문제 진단 및 복구
"""

__version__ = "1.0.0"
__author__ = "DevOps Team"
