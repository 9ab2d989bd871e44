"""Peer discovery strategies, tried in order by the DiscoveryChain.

Learn: Each strategy answers two questions:
- applicable(): do the environment preconditions hold? (no I/O)
- discover(): look up peers, returning Found or Unavailable

1. ClusterApiStrategy  — official kubernetes client, in-cluster config
2. DirectHttpStrategy  — plain HTTPS GET to the control-plane with the
                         service-account token + certificate bundle
3. DnsStrategy         — A-record lookup of a headless service name

Strategies return Unavailable instead of raising, so the chain can fall
through to the next one.
"""

import asyncio
from typing import Any, Callable, Optional, Protocol, Union

import dns.asyncresolver
import dns.exception
import dns.resolver
import httpx
import structlog
from kubernetes import client as k8s_client
from kubernetes import config as k8s_config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException

from peerrelay.discovery import results
from peerrelay.discovery.credentials import CredentialBundle, CredentialLoadError, NotInCluster
from peerrelay.discovery.environment import ClusterEnvironment
from peerrelay.discovery.results import DiscoveryResult, Endpoint, Found, Unavailable

logger = structlog.get_logger()

Credentials = Union[CredentialBundle, NotInCluster, CredentialLoadError]


class HttpStatusError(Exception):
    """Non-2xx answer from the control-plane."""

    def __init__(self, status_code: int, url: str):
        self.status_code = status_code
        self.url = url
        super().__init__(f"GET {url} returned HTTP {status_code}")


class DiscoveryStrategy(Protocol):
    name: str

    def applicable(self, cluster: ClusterEnvironment, credentials: Credentials) -> bool: ...

    async def discover(
        self, cluster: ClusterEnvironment, credentials: Credentials
    ) -> DiscoveryResult: ...


# ─── Response parsing ─────────────────────────────────────


def endpoints_from_json(doc: dict[str, Any], default_port: int) -> tuple[Endpoint, ...]:
    """Flatten an Endpoints object: ready and not-ready addresses per subset."""
    found = []
    for subset in doc.get("subsets") or []:
        ports = subset.get("ports") or []
        port = ports[0].get("port", default_port) if ports else default_port
        for address in subset.get("addresses") or []:
            found.append(Endpoint(address=address["ip"], port=port, ready=True))
        for address in subset.get("notReadyAddresses") or []:
            found.append(Endpoint(address=address["ip"], port=port, ready=False))
    return tuple(found)


def pod_from_json(doc: dict[str, Any], default_port: int) -> tuple[Endpoint, ...]:
    """A single Pod as an endpoint; empty until it has an IP."""
    status = doc.get("status") or {}
    ip = status.get("podIP")
    if not ip:
        return ()

    ready = any(
        c.get("type") == "Ready" and c.get("status") == "True"
        for c in status.get("conditions") or []
    )
    port = default_port
    for container in (doc.get("spec") or {}).get("containers") or []:
        container_ports = container.get("ports") or []
        if container_ports:
            port = container_ports[0].get("containerPort", default_port)
            break
    return (Endpoint(address=ip, port=port, ready=ready),)


def parse_resource(resource: str, doc: dict[str, Any], default_port: int) -> tuple[Endpoint, ...]:
    if resource == "pods":
        return pod_from_json(doc, default_port)
    return endpoints_from_json(doc, default_port)


# ─── 1. Cluster API ───────────────────────────────────────


def incluster_core_api() -> k8s_client.CoreV1Api:
    """CoreV1Api configured from the pod's service account."""
    k8s_config.load_incluster_config()
    return k8s_client.CoreV1Api()


class ClusterApiStrategy:
    name = "cluster_api"

    def __init__(self, api_factory: Optional[Callable[[], Any]] = None):
        self.api_factory = api_factory or incluster_core_api
        self._api: Optional[Any] = None
        self._api_client: Optional[k8s_client.ApiClient] = None

    async def core_api(self) -> Any:
        """Build the client once; in-cluster config reads files, so off the loop."""
        if self._api is None:
            self._api = await asyncio.to_thread(self.api_factory)
        return self._api

    def to_dict(self, api: Any, obj: Any) -> dict[str, Any]:
        api_client = getattr(api, "api_client", None)
        if api_client is None:
            if self._api_client is None:
                self._api_client = k8s_client.ApiClient()
            api_client = self._api_client
        return api_client.sanitize_for_serialization(obj)

    def applicable(self, cluster: ClusterEnvironment, credentials: Credentials) -> bool:
        return cluster.in_cluster and isinstance(credentials, CredentialBundle)

    async def discover(
        self, cluster: ClusterEnvironment, credentials: Credentials
    ) -> DiscoveryResult:
        try:
            api = await self.core_api()
        except ConfigException as e:
            return Unavailable(results.API_ERROR, error=f"client unavailable: {e}")

        if cluster.resource == "pods":
            name = cluster.pod_name
            call = api.read_namespaced_pod
        else:
            name = cluster.workload_name
            call = api.read_namespaced_endpoints
        if not name:
            return Unavailable(results.NO_ENDPOINTS)

        try:
            obj = await asyncio.wait_for(
                asyncio.to_thread(
                    call, name, cluster.namespace, _request_timeout=cluster.timeout
                ),
                timeout=cluster.timeout,
            )
        except asyncio.TimeoutError:
            return Unavailable(results.TIMEOUT)
        except ApiException as e:
            return Unavailable(results.API_ERROR, status_code=e.status, error=e.reason)
        except Exception as e:
            # urllib3 connection errors surface here
            return Unavailable(results.API_ERROR, error=str(e))

        doc = self.to_dict(api, obj)
        return Found(
            parse_resource(cluster.resource, doc, cluster.peer_port), strategy=self.name
        )


# ─── 2. Direct HTTP ───────────────────────────────────────


class DirectHttpStrategy:
    name = "direct_http"

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.transport = transport

    def applicable(self, cluster: ClusterEnvironment, credentials: Credentials) -> bool:
        return cluster.has_api_address and isinstance(credentials, CredentialBundle)

    async def fetch(
        self, cluster: ClusterEnvironment, credentials: CredentialBundle, path: str
    ) -> dict[str, Any]:
        async with credentials.http_client(
            cluster.api_base_url, cluster.timeout, transport=self.transport
        ) as http:
            response = await http.get(path)
        if not response.is_success:
            raise HttpStatusError(response.status_code, str(response.request.url))
        return response.json()

    async def discover(
        self, cluster: ClusterEnvironment, credentials: Credentials
    ) -> DiscoveryResult:
        path = cluster.resource_path()
        if not path:
            return Unavailable(results.NO_ENDPOINTS)

        try:
            doc = await self.fetch(cluster, credentials, path)
        except HttpStatusError as e:
            return Unavailable(results.HTTP_STATUS, status_code=e.status_code)
        except httpx.TimeoutException:
            return Unavailable(results.TIMEOUT)
        except (httpx.HTTPError, ValueError) as e:
            return Unavailable(results.API_ERROR, error=str(e))

        return Found(
            parse_resource(cluster.resource, doc, cluster.peer_port), strategy=self.name
        )


# ─── 3. DNS ───────────────────────────────────────────────


class DnsStrategy:
    name = "dns"

    def __init__(self, resolver: Optional[Any] = None):
        self.resolver = resolver

    def applicable(self, cluster: ClusterEnvironment, credentials: Credentials) -> bool:
        return bool(cluster.headless_service)

    async def discover(
        self, cluster: ClusterEnvironment, credentials: Credentials
    ) -> DiscoveryResult:
        try:
            resolver = self.resolver or dns.asyncresolver.Resolver()
            answer = await resolver.resolve(
                cluster.headless_service, "A", lifetime=cluster.timeout
            )
        except dns.exception.Timeout:
            return Unavailable(results.TIMEOUT)
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
            return Unavailable(results.DNS_NO_ANSWER)
        except dns.exception.DNSException as e:
            return Unavailable(results.DNS_ERROR, error=str(e))

        addresses = sorted({rdata.address for rdata in answer})
        return Found(
            tuple(Endpoint(address=a, port=cluster.peer_port) for a in addresses),
            strategy=self.name,
        )


def default_strategies() -> list[DiscoveryStrategy]:
    return [ClusterApiStrategy(), DirectHttpStrategy(), DnsStrategy()]
