"""Health check endpoint.

Learn: Reports the relay's connection state rather than pinging Redis.
The relay connects lazily, so "unstarted" is healthy: no client has
asked for live updates yet. Only a failed start is "degraded".
"""

from fastapi import APIRouter, Request

from peerrelay import __version__
from peerrelay.realtime.bootstrap import ConnectionState

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Server status, relay state and session count."""
    state = request.app.state
    relay_state = state.bootstrap.state

    checks = {
        "server": "ok",
        "version": __version__,
        "relay": relay_state.value,
        "sessions": len(state.registry),
        "messages_received": state.relay.stats.messages_received,
        "deliveries": state.relay.stats.deliveries,
        "in_cluster": state.discovery.cluster.in_cluster,
    }

    status = "degraded" if relay_state is ConnectionState.FAILED else "healthy"
    return {"status": status, **checks}
