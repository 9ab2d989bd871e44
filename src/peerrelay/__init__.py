"""PeerRelay — live message fanout and sibling-instance discovery.

Two independent pieces share this service:
1. A lazily-started Redis pub/sub connection whose channel is relayed
   to every connected WebSocket client.
2. A peer discovery chain that finds other replicas of this service
   (cluster API, direct control-plane HTTP, headless-service DNS).
"""

__version__ = "0.1.0"
