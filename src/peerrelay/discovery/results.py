"""Discovery outcomes — returned as data, never raised.

A peer lookup either finds endpoints or explains why it couldn't.
"Unavailable" is the normal answer on a laptop, so it is a value
rather than an exception.
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Union

NOT_IN_CLUSTER_ENVIRONMENT = "NotInClusterEnvironment"
TIMEOUT = "timeout"
HTTP_STATUS = "http_status"
API_ERROR = "api_error"
CREDENTIALS_INVALID = "credentials_invalid"
DNS_NO_ANSWER = "dns_no_answer"
DNS_ERROR = "dns_error"
NO_ENDPOINTS = "no_endpoints"

_DETAILS = {
    NOT_IN_CLUSTER_ENVIRONMENT: "Not running in the target cluster environment; peer discovery is disabled.",
    TIMEOUT: "Peer lookup timed out.",
    HTTP_STATUS: "The cluster control-plane rejected the endpoints request.",
    API_ERROR: "The cluster API client failed.",
    CREDENTIALS_INVALID: "Service-account credentials are present but unreadable.",
    DNS_NO_ANSWER: "The headless service name has no addresses.",
    DNS_ERROR: "DNS resolution of the headless service failed.",
    NO_ENDPOINTS: "No strategy could run for this instance.",
}


@dataclass(frozen=True)
class Endpoint:
    """One network endpoint backing the service."""
    address: str
    port: int
    ready: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {"address": self.address, "port": self.port, "ready": self.ready}


@dataclass(frozen=True)
class Found:
    endpoints: tuple[Endpoint, ...]
    strategy: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": "found",
            "strategy": self.strategy,
            "peers": [e.to_dict() for e in self.endpoints],
        }


@dataclass(frozen=True)
class Unavailable:
    reason: str
    status_code: Optional[int] = None
    error: Optional[str] = field(default=None, compare=False)

    @property
    def detail(self) -> str:
        return _DETAILS.get(self.reason, self.reason)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "status": "unavailable",
            "reason": self.reason,
            "detail": self.detail,
        }
        if self.status_code is not None:
            data["status_code"] = self.status_code
        if self.error:
            data["error"] = self.error
        return data


DiscoveryResult = Union[Found, Unavailable]
