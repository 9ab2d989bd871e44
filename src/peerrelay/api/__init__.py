"""API route aggregation.

All routers registered here get mounted in main.py under /api/v1.
None of them require auth: the service sits behind the cluster network.
"""

from fastapi import APIRouter

from peerrelay.api.health import router as health_router
from peerrelay.api.messages import router as messages_router
from peerrelay.api.peers import router as peers_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(health_router, tags=["health"])
api_router.include_router(peers_router, tags=["discovery"])
api_router.include_router(messages_router, tags=["relay"])
