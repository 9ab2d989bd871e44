"""Service-account credentials — bearer token + certificate bundle.

Learn: Inside a cluster pod, the control-plane credentials live at a
well-known path:

    /var/run/secrets/kubernetes.io/serviceaccount/token   (bearer token)
    /var/run/secrets/kubernetes.io/serviceaccount/ca.crt  (PEM bundle)

Missing files are not an error. They mean "this process isn't running
in the cluster" (local dev, CI), and load() says so with NOT_IN_CLUSTER.
Files that exist but can't be parsed ARE an error: CredentialLoadError,
which names the offending path.

Every certificate in the PEM bundle is loaded, not just the first.
"""

import os
import ssl
from dataclasses import dataclass
from typing import Optional, Union

import httpx
from cryptography import x509
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    PublicFormat,
    load_pem_private_key,
)


class CredentialLoadError(Exception):
    """Credential file exists but its content is unusable."""

    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(f"{path}: {message}")


class NotInCluster:
    """Marker returned when the credential files are absent."""

    def __repr__(self) -> str:
        return "NOT_IN_CLUSTER"

    def __bool__(self) -> bool:
        return False


NOT_IN_CLUSTER = NotInCluster()


@dataclass(frozen=True)
class CredentialBundle:
    bearer_token: str
    client_certificates: tuple[x509.Certificate, ...]
    trust_anchor: x509.Certificate
    ca_cert_path: str
    client_key_path: Optional[str] = None

    def auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.bearer_token}"}

    def ssl_context(self) -> ssl.SSLContext:
        """TLS context trusting the bundle and, with a key, presenting it."""
        cadata = "".join(
            cert.public_bytes(Encoding.PEM).decode("ascii")
            for cert in self.client_certificates
        )
        context = ssl.create_default_context(cadata=cadata)
        if self.client_key_path:
            context.load_cert_chain(
                certfile=self.ca_cert_path, keyfile=self.client_key_path
            )
        return context

    def http_client(
        self,
        base_url: str,
        timeout: float,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> httpx.AsyncClient:
        """Async HTTP client authenticated with the token and certificates."""
        return httpx.AsyncClient(
            base_url=base_url,
            headers=self.auth_headers(),
            verify=self.ssl_context(),
            timeout=timeout,
            transport=transport,
        )


def _read_token(path: str) -> str:
    try:
        with open(path, "rb") as f:
            raw = f.read()
        token = raw.decode("ascii").strip()
    except (OSError, UnicodeDecodeError) as e:
        raise CredentialLoadError(path, f"unreadable token ({e})") from e
    if not token:
        raise CredentialLoadError(path, "token file is empty")
    if any(ch.isspace() for ch in token) or not token.isprintable():
        raise CredentialLoadError(path, "token is not a single bearer string")
    return token


def _read_certificates(path: str) -> tuple[x509.Certificate, ...]:
    try:
        with open(path, "rb") as f:
            data = f.read()
        certs = x509.load_pem_x509_certificates(data)
    except (OSError, ValueError) as e:
        raise CredentialLoadError(path, f"unreadable certificate bundle ({e})") from e
    if not certs:
        raise CredentialLoadError(path, "no certificates in bundle")
    return tuple(certs)


def _check_client_key(path: str, certificate: x509.Certificate) -> None:
    """The key must belong to the first (leaf) certificate in the bundle."""
    try:
        with open(path, "rb") as f:
            key = load_pem_private_key(f.read(), password=None)
    except (OSError, ValueError, TypeError) as e:
        raise CredentialLoadError(path, f"unreadable client key ({e})") from e

    def spki(public_key) -> bytes:
        return public_key.public_bytes(Encoding.DER, PublicFormat.SubjectPublicKeyInfo)

    if spki(key.public_key()) != spki(certificate.public_key()):
        raise CredentialLoadError(path, "client key does not match the certificate")


def load(
    token_path: str,
    ca_cert_path: str,
    client_key_path: Optional[str] = None,
) -> Union[CredentialBundle, NotInCluster]:
    """Load the service-account credentials, or NOT_IN_CLUSTER."""
    if not (os.path.exists(token_path) and os.path.exists(ca_cert_path)):
        return NOT_IN_CLUSTER

    token = _read_token(token_path)
    certificates = _read_certificates(ca_cert_path)
    if client_key_path:
        if not os.path.exists(client_key_path):
            raise CredentialLoadError(client_key_path, "client key file does not exist")
        _check_client_key(client_key_path, certificates[0])

    return CredentialBundle(
        bearer_token=token,
        client_certificates=certificates,
        trust_anchor=certificates[0],
        ca_cert_path=ca_cert_path,
        client_key_path=client_key_path,
    )
