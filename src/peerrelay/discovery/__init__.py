"""Peer discovery — find sibling replicas of this service.

Learn: Three strategies, tried in order until one finds peers:
1. Cluster API (kubernetes client)
2. Direct HTTPS to the control-plane (service-account token + certs)
3. DNS A-records of a headless service

Outcomes are data (Found / Unavailable), never exceptions.
"""

from peerrelay.discovery.chain import DiscoveryChain, build_discovery_chain
from peerrelay.discovery.results import DiscoveryResult, Endpoint, Found, Unavailable

__all__ = [
    "DiscoveryChain",
    "build_discovery_chain",
    "DiscoveryResult",
    "Endpoint",
    "Found",
    "Unavailable",
]
