"""Publish onto the relay channel.

Learn: Goes through the same lazily-started connection the relay
subscribes on, so posting here reaches every connected WebSocket
(on this instance and on any other instance sharing the Redis).
"""

import structlog
from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from peerrelay.realtime.bootstrap import ConnectFailure

logger = structlog.get_logger()
router = APIRouter()


class MessagePublish(BaseModel):
    payload: str = Field(..., min_length=1, description="Text relayed verbatim to clients")


@router.post("/messages", status_code=202)
async def publish_message(body: MessagePublish, request: Request):
    """Publish a payload to the relay channel."""
    bootstrap = request.app.state.bootstrap
    try:
        receivers = await bootstrap.publish(body.payload)
    except ConnectFailure as e:
        logger.warning("peerrelay.publish_failed", error=str(e))
        raise HTTPException(status_code=503, detail="Relay backend unavailable")
    return {"channel": bootstrap.channel, "receivers": receivers}
