"""WebSocket endpoint — live relay delivery to browser clients.

Learn: Each client connects to /ws. The handler:
1. Asks the bootstrap for the shared connection (starting it if first)
2. Registers a session sink so the relay can fan messages into it
3. Drains the sink to the socket until either side goes away

If the relay can't start, the client still gets a session. It is told
"relay.unavailable" and simply receives no live updates; a later client
may start the relay successfully, after which this session gets them too.
"""

import asyncio
import json

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from peerrelay.realtime.bootstrap import ConnectFailure
from peerrelay.realtime.sessions import SessionSink

logger = structlog.get_logger()
router = APIRouter()

SLOW_CONSUMER_CLOSE_CODE = 4008


@router.websocket("/ws")
async def relay_websocket(websocket: WebSocket):
    """WebSocket endpoint for relayed channel messages.

    Learn: Two concurrent tasks run:
    1. Sink writer — drains this session's buffer to the socket
    2. Client listener — reads from the socket (ping/pong only for now)

    When either side finishes, the other is cancelled and the session
    is removed from the registry.
    """
    await websocket.accept()

    state = websocket.app.state
    sink = SessionSink(
        capacity=state.settings.session_buffer_size,
        overflow_policy=state.settings.session_overflow_policy,
    )

    try:
        await state.bootstrap.ensure_started()
        status = {"type": "relay.ready", "session_id": sink.session_id}
    except ConnectFailure as e:
        logger.warning(
            "peerrelay.session_without_relay", session_id=sink.session_id, error=str(e)
        )
        status = {
            "type": "relay.unavailable",
            "session_id": sink.session_id,
            "reason": str(e),
        }

    state.registry.register(sink)
    await websocket.send_text(json.dumps(status))

    async def sink_writer():
        """Forward buffered relay messages to the WebSocket client."""
        while True:
            payload = await sink.get()
            if payload is None:
                return
            await websocket.send_text(payload)

    async def client_listener():
        """Handle incoming WebSocket messages."""
        try:
            while True:
                data = await websocket.receive_text()
                try:
                    msg = json.loads(data)
                except json.JSONDecodeError:
                    continue
                if isinstance(msg, dict) and msg.get("type") == "ping":
                    # Through the sink so it can't interleave with a relay write
                    sink.send(json.dumps({"type": "pong"}))
        except WebSocketDisconnect:
            pass

    slow_consumer = False
    writer_task = asyncio.create_task(sink_writer())
    client_task = asyncio.create_task(client_listener())

    try:
        done, pending = await asyncio.wait(
            [writer_task, client_task],
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in pending:
            task.cancel()
        slow_consumer = writer_task in done and sink.closed
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                logger.warning(
                    "peerrelay.session_error",
                    session_id=sink.session_id,
                    error=str(task.exception()),
                )
    finally:
        state.registry.unregister(sink.session_id)
        if websocket.client_state == WebSocketState.CONNECTED:
            if slow_consumer:
                await websocket.close(
                    code=SLOW_CONSUMER_CLOSE_CODE, reason="Client too slow"
                )
            else:
                await websocket.close()
