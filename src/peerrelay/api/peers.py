"""Peer discovery endpoint.

Always answers 200. "Unavailable" is a normal result (e.g. running on a
laptop) and is returned as a descriptive payload, not an HTTP error.
"""

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/peers")
async def list_peers(request: Request):
    """Discover sibling instances of this service, fresh on every call."""
    result = await request.app.state.discovery.discover_peers()
    return result.to_dict()
