"""Where this instance is running — captured once at startup.

Learn: Cluster facts (API host/port, pod name, namespace) arrive as
environment variables injected by the kubelet. They are read here, once,
into a frozen ClusterEnvironment that is handed to the discovery chain.
Strategies never look at os.environ themselves.
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from peerrelay.config import Settings

IN_CLUSTER_MARKER = "KUBERNETES_SERVICE_HOST"


def derive_workload_name(pod_name: str) -> str:
    """Strip the generated suffix: 'myapp-7f8c9-abcde' -> 'myapp-7f8c9'."""
    head, sep, _ = pod_name.rpartition("-")
    return head if sep and head else pod_name


def build_api_base_url(host: str, port: int) -> str:
    """Control-plane base URL; default ports stay implicit."""
    if port == 443:
        return f"https://{host}"
    if port == 80:
        return f"http://{host}"
    return f"https://{host}:{port}"


def _read_first_line(path: str) -> Optional[str]:
    try:
        with open(path) as f:
            return f.read().strip() or None
    except OSError:
        return None


@dataclass(frozen=True)
class ClusterEnvironment:
    in_cluster: bool = False
    api_host: Optional[str] = None
    api_port: Optional[int] = None
    pod_name: Optional[str] = None
    namespace: str = "default"
    service_name: Optional[str] = None
    headless_service: Optional[str] = None
    resource: str = "endpoints"
    peer_port: int = 8000
    timeout: float = 5.0

    @classmethod
    def from_environ(
        cls,
        settings: Settings,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "ClusterEnvironment":
        env = os.environ if environ is None else environ

        api_port: Optional[int] = None
        raw_port = env.get("KUBERNETES_SERVICE_PORT")
        if raw_port:
            try:
                api_port = int(raw_port)
            except ValueError:
                api_port = None

        namespace = (
            env.get("POD_NAMESPACE")
            or _read_first_line(settings.namespace_path)
            or "default"
        )

        return cls(
            in_cluster=bool(env.get(IN_CLUSTER_MARKER)),
            api_host=env.get(IN_CLUSTER_MARKER) or None,
            api_port=api_port,
            pod_name=env.get("POD_NAME") or env.get("HOSTNAME") or None,
            namespace=namespace,
            service_name=settings.service_name,
            headless_service=settings.headless_service,
            resource=settings.discovery_resource,
            peer_port=settings.peer_port,
            timeout=settings.discovery_timeout_seconds,
        )

    @property
    def has_api_address(self) -> bool:
        return bool(self.api_host and self.api_port)

    @property
    def api_base_url(self) -> Optional[str]:
        if not self.has_api_address:
            return None
        return build_api_base_url(self.api_host, self.api_port)

    @property
    def workload_name(self) -> Optional[str]:
        """Service name to look up: the fixed one, else derived from the pod."""
        if self.service_name:
            return self.service_name
        if self.pod_name:
            return derive_workload_name(self.pod_name)
        return None

    def resource_path(self) -> Optional[str]:
        """API path for the endpoints (or this pod) of the owning workload."""
        if self.resource == "pods":
            if not self.pod_name:
                return None
            return f"/api/v1/namespaces/{self.namespace}/pods/{self.pod_name}"
        if not self.workload_name:
            return None
        return f"/api/v1/namespaces/{self.namespace}/endpoints/{self.workload_name}"
