"""
Kubernetes 매니페스트 생성 모듈
kubectl apply -f - 로 전달할 딕셔너리 반환
"""

from typing import Dict, List

METALLB_NATIVE_URL = "https://raw.githubusercontent.com/metallb/metallb/{version}/config/manifests/metallb-native.yaml"
ARGOCD_INSTALL_URL = "https://raw.githubusercontent.com/argoproj/argo-cd/{version}/manifests/install.yaml"

TEST_SERVICE = "metallb-test-service"
TEST_DEPLOYMENT = "metallb-test-deployment"


def metallb_pool(ip_range: str, namespace: str = "metallb-system",
                 pool_name: str = "default-pool") -> List[Dict]:
    """IPAddressPool + L2Advertisement"""
    return [
        {
            "apiVersion": "metallb.io/v1beta1",
            "kind": "IPAddressPool",
            "metadata": {"name": pool_name, "namespace": namespace},
            "spec": {"addresses": [ip_range]},
        },
        {
            "apiVersion": "metallb.io/v1beta1",
            "kind": "L2Advertisement",
            "metadata": {"name": "default", "namespace": namespace},
            "spec": {"ipAddressPools": [pool_name]},
        },
    ]


def loadbalancer_test(namespace: str = "default") -> List[Dict]:
    """외부 IP 할당 확인용 nginx 서비스 및 디플로이먼트"""
    labels = {"app": "metallb-test"}
    return [
        {
            "apiVersion": "v1",
            "kind": "Service",
            "metadata": {"name": TEST_SERVICE, "namespace": namespace},
            "spec": {
                "selector": labels,
                "ports": [{"port": 80, "targetPort": 80}],
                "type": "LoadBalancer",
            },
        },
        {
            "apiVersion": "apps/v1",
            "kind": "Deployment",
            "metadata": {"name": TEST_DEPLOYMENT, "namespace": namespace},
            "spec": {
                "replicas": 1,
                "selector": {"matchLabels": labels},
                "template": {
                    "metadata": {"labels": labels},
                    "spec": {
                        "containers": [{
                            "name": "nginx",
                            "image": "nginx:alpine",
                            "ports": [{"containerPort": 80}],
                            "resources": {
                                "requests": {"memory": "64Mi", "cpu": "50m"},
                                "limits": {"memory": "128Mi", "cpu": "100m"},
                            },
                        }],
                    },
                },
            },
        },
    ]


def argocd_loadbalancer(address: str, namespace: str = "argocd",
                        name: str = "argocd-server-loadbalancer") -> Dict:
    """고정 loadBalancerIP를 갖는 ArgoCD 서버 서비스"""
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {
            "name": name,
            "namespace": namespace,
            "labels": {
                "app.kubernetes.io/component": "server",
                "app.kubernetes.io/name": "argocd-server",
                "app.kubernetes.io/part-of": "argocd",
            },
        },
        "spec": {
            "type": "LoadBalancer",
            "loadBalancerIP": address,
            "ports": [
                {"name": "https", "port": 443, "protocol": "TCP", "targetPort": 8080},
                {"name": "grpc", "port": 80, "protocol": "TCP", "targetPort": 8080},
            ],
            "selector": {"app.kubernetes.io/name": "argocd-server"},
        },
    }


def guestbook_application(namespace: str = "argocd") -> Dict:
    """ArgoCD 예제 애플리케이션"""
    return {
        "apiVersion": "argoproj.io/v1alpha1",
        "kind": "Application",
        "metadata": {"name": "guestbook", "namespace": namespace},
        "spec": {
            "project": "default",
            "source": {
                "repoURL": "https://github.com/argoproj/argocd-example-apps.git",
                "targetRevision": "HEAD",
                "path": "guestbook",
            },
            "destination": {
                "server": "https://kubernetes.default.svc",
                "namespace": "default",
            },
            "syncPolicy": {
                "automated": {"prune": False, "selfHeal": False},
                "syncOptions": ["CreateNamespace=true"],
            },
        },
    }


def nvidia_device_plugin(version: str) -> Dict:
    """NVIDIA 디바이스 플러그인 DaemonSet"""
    return {
        "apiVersion": "apps/v1",
        "kind": "DaemonSet",
        "metadata": {"name": "nvidia-device-plugin-daemonset", "namespace": "kube-system"},
        "spec": {
            "selector": {"matchLabels": {"name": "nvidia-device-plugin-ds"}},
            "updateStrategy": {"type": "RollingUpdate"},
            "template": {
                "metadata": {"labels": {"name": "nvidia-device-plugin-ds"}},
                "spec": {
                    "tolerations": [
                        {"key": "nvidia.com/gpu", "operator": "Exists", "effect": "NoSchedule"},
                    ],
                    "priorityClassName": "system-node-critical",
                    "containers": [{
                        "image": f"nvcr.io/nvidia/k8s-device-plugin:{version}",
                        "name": "nvidia-device-plugin-ctr",
                        "args": ["--fail-on-init-error=false"],
                        "securityContext": {
                            "allowPrivilegeEscalation": False,
                            "capabilities": {"drop": ["ALL"]},
                        },
                        "volumeMounts": [
                            {"name": "device-plugin", "mountPath": "/var/lib/kubelet/device-plugins"},
                        ],
                    }],
                    "volumes": [
                        {"name": "device-plugin", "hostPath": {"path": "/var/lib/kubelet/device-plugins"}},
                    ],
                    "nodeSelector": {"kubernetes.io/arch": "amd64"},
                },
            },
        },
    }


def gpu_test_pod(image: str) -> Dict:
    """nvidia-smi를 한 번 실행하는 테스트 파드"""
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {"name": "gpu-test"},
        "spec": {
            "restartPolicy": "Never",
            "containers": [{
                "name": "gpu-test",
                "image": image,
                "command": ["nvidia-smi"],
                "resources": {"limits": {"nvidia.com/gpu": 1}},
            }],
        },
    }
