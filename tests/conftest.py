"""Test fixtures — in-memory pub/sub backend, app wiring, throwaway certs.

Learn: No Redis and no cluster are needed to run the suite.

1. InMemoryBackend implements the same connect/subscribe/publish/close
   shape as RedisBackend, counts connect and subscribe calls, and can be
   told to fail or to hold connects open until a gate is released.
2. The app is built with create_app(..., backend=..., discovery=...) so
   no test touches the real process environment.
3. PEM certificates are minted with `cryptography` per test.
"""

import asyncio
import datetime
from types import SimpleNamespace
from typing import Optional

import pytest
import pytest_asyncio
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
)
from cryptography.x509.oid import NameOID
from httpx import ASGITransport, AsyncClient

from peerrelay.config import Settings
from peerrelay.discovery.chain import DiscoveryChain
from peerrelay.discovery.credentials import NOT_IN_CLUSTER
from peerrelay.discovery.environment import ClusterEnvironment
from peerrelay.main import create_app
from peerrelay.realtime.pubsub import Subscription


# ─── In-memory pub/sub backend ────────────────────────────


class InMemoryConnection:
    def __init__(self, backend: "InMemoryBackend"):
        self.backend = backend
        self.handlers: dict[str, list] = {}
        self.closed = False

    async def subscribe(self, channel, handler):
        self.backend.subscribe_calls += 1
        if self.backend.fail_subscribe:
            raise ConnectionError("subscribe refused")
        self.handlers.setdefault(channel, []).append(handler)
        return Subscription(channel=channel)

    async def publish(self, channel, payload):
        handlers = list(self.handlers.get(channel, []))
        for handler in handlers:
            handler(channel, payload)
        return len(handlers)

    async def close(self):
        self.closed = True
        self.handlers.clear()


class InMemoryBackend:
    def __init__(
        self,
        fail_times: int = 0,
        fail_subscribe: bool = False,
        gate: Optional[asyncio.Event] = None,
    ):
        self.fail_times = fail_times
        self.fail_subscribe = fail_subscribe
        self.gate = gate
        self.connect_calls = 0
        self.subscribe_calls = 0
        self.connections: list[InMemoryConnection] = []

    async def connect(self, connection_string):
        self.connect_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_times > 0:
            self.fail_times -= 1
            raise ConnectionError("redis unreachable")
        connection = InMemoryConnection(self)
        self.connections.append(connection)
        return connection

    def emit(self, channel, payload):
        """Deliver as if another process had published on the channel."""
        for connection in self.connections:
            if not connection.closed:
                for handler in list(connection.handlers.get(channel, [])):
                    handler(channel, payload)


class FakeResolver:
    """Stands in for dns.asyncresolver.Resolver."""

    def __init__(self, addresses=None, error=None):
        self.addresses = addresses or []
        self.error = error
        self.queries = []

    async def resolve(self, qname, rdtype, lifetime=None):
        self.queries.append((qname, rdtype))
        if self.error is not None:
            raise self.error
        return [SimpleNamespace(address=a) for a in self.addresses]


# ─── Certificates ─────────────────────────────────────────


def make_certificate(common_name: str = "test-ca") -> tuple[bytes, bytes]:
    """Self-signed CA certificate and its key, both PEM."""
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=1))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )
    key_pem = key.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption())
    return cert.public_bytes(Encoding.PEM), key_pem


@pytest.fixture()
def service_account(tmp_path):
    """A service-account directory with a token and a two-cert bundle."""
    token_path = tmp_path / "token"
    ca_path = tmp_path / "ca.crt"
    token_path.write_text("eyJhbGciOiJSUzI1NiJ9.test-token\n")
    first, _ = make_certificate("cluster-ca")
    second, _ = make_certificate("front-proxy-ca")
    ca_path.write_bytes(first + second)
    return token_path, ca_path


# ─── App ──────────────────────────────────────────────────


@pytest.fixture()
def test_settings(tmp_path):
    return Settings(
        redis_url="redis://in-memory/0",
        relay_channel="test:relay",
        session_buffer_size=16,
        token_path=str(tmp_path / "absent" / "token"),
        ca_cert_path=str(tmp_path / "absent" / "ca.crt"),
        namespace_path=str(tmp_path / "absent" / "namespace"),
    )


@pytest.fixture()
def backend():
    return InMemoryBackend()


@pytest.fixture()
def local_discovery():
    """Discovery as seen on a developer laptop: nothing to find."""
    return DiscoveryChain(ClusterEnvironment(), NOT_IN_CLUSTER)


@pytest.fixture()
def app(test_settings, backend, local_discovery):
    return create_app(test_settings, backend=backend, discovery=local_discovery)


@pytest_asyncio.fixture()
async def client(app):
    """Async HTTP client with the app's lifespan running.

    Learn: ASGITransport doesn't send lifespan events, so the lifespan
    context is entered by hand to populate app.state.
    """
    async with app.router.lifespan_context(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac
