"""Application configuration via environment variables.

Uses pydantic-settings to load config from env vars with PEERRELAY_ prefix.
Read once at startup; nothing else in the package calls os.environ for
its own settings.

Learn: Cluster-provided variables (KUBERNETES_SERVICE_HOST, HOSTNAME, ...)
are NOT settings. They describe where the process happens to be running,
and are captured separately by discovery.environment.ClusterEnvironment.
"""

from typing import Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings

OVERFLOW_POLICIES = ("drop_oldest", "disconnect")
DISCOVERY_RESOURCES = ("endpoints", "pods")

SERVICE_ACCOUNT_DIR = "/var/run/secrets/kubernetes.io/serviceaccount"


class Settings(BaseSettings):
    """All app configuration. Set via PEERRELAY_* env vars."""

    # Pub/sub backend
    redis_url: str = "redis://localhost:6379/0"
    relay_channel: str = "peerrelay:messages"

    # Server
    environment: str = "development"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 8000

    # Per-session outbound buffering
    session_buffer_size: int = 256
    session_overflow_policy: str = "drop_oldest"

    # Discovery
    discovery_timeout_seconds: float = 5.0
    service_name: Optional[str] = None  # fixed Service name; derived from pod name if unset
    headless_service: Optional[str] = None  # e.g. myapp-headless.default.svc.cluster.local
    discovery_resource: str = "endpoints"
    peer_port: int = 8000

    # Service-account credential files
    token_path: str = f"{SERVICE_ACCOUNT_DIR}/token"
    ca_cert_path: str = f"{SERVICE_ACCOUNT_DIR}/ca.crt"
    namespace_path: str = f"{SERVICE_ACCOUNT_DIR}/namespace"
    client_key_path: Optional[str] = None  # private key for mTLS, paired with ca_cert_path

    model_config = {"env_prefix": "PEERRELAY_"}

    @model_validator(mode="after")
    def validate_choices(self):
        """Reject policy/resource names the relay and discovery don't know."""
        if self.session_overflow_policy not in OVERFLOW_POLICIES:
            raise ValueError(
                f"PEERRELAY_SESSION_OVERFLOW_POLICY must be one of {OVERFLOW_POLICIES}, "
                f"got {self.session_overflow_policy!r}"
            )
        if self.discovery_resource not in DISCOVERY_RESOURCES:
            raise ValueError(
                f"PEERRELAY_DISCOVERY_RESOURCE must be one of {DISCOVERY_RESOURCES}, "
                f"got {self.discovery_resource!r}"
            )
        if self.session_buffer_size < 1:
            raise ValueError("PEERRELAY_SESSION_BUFFER_SIZE must be at least 1")
        return self


# Read once at import; other modules import this instance
settings = Settings()
