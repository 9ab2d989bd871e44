"""Connected client sessions and their outbound buffers.

Learn: The relay never writes to a WebSocket directly. Each session owns
a bounded queue (its sink) and a writer task that drains it. Enqueueing
is non-blocking, so one stalled browser can't hold up delivery to the
rest. When a sink is full, the overflow policy decides:

- drop_oldest — discard the oldest buffered message, keep the session
- disconnect  — close the sink; the writer task ends the session

The registry is mutated only by the WebSocket route (connect/disconnect).
The relay reads a snapshot per message and tolerates sessions that are
gone by the time it gets to them.
"""

import asyncio
import collections
import threading
import uuid
from typing import Optional

import structlog

logger = structlog.get_logger()


class SessionSink:
    """Bounded FIFO of outbound payloads for one session."""

    def __init__(
        self,
        session_id: Optional[str] = None,
        capacity: int = 256,
        overflow_policy: str = "drop_oldest",
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.session_id = session_id or str(uuid.uuid4())
        self.capacity = capacity
        self.overflow_policy = overflow_policy
        self.dropped = 0
        self.closed = False

        self._loop = loop or asyncio.get_running_loop()
        self._buffer: collections.deque[str] = collections.deque()
        self._ready = asyncio.Event()

    def send(self, payload: str) -> None:
        """Enqueue without blocking. Safe to call from any thread."""
        if self.closed:
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is self._loop:
            self._enqueue(payload)
            return
        try:
            self._loop.call_soon_threadsafe(self._enqueue, payload)
        except RuntimeError:
            # Owning loop already closed: the session is gone
            self.closed = True

    def _enqueue(self, payload: str) -> None:
        if self.closed:
            return
        if len(self._buffer) >= self.capacity:
            if self.overflow_policy == "disconnect":
                logger.warning(
                    "peerrelay.session_overflow_disconnect",
                    session_id=self.session_id,
                    capacity=self.capacity,
                )
                self.close()
                return
            self._buffer.popleft()
            self.dropped += 1
        self._buffer.append(payload)
        self._ready.set()

    async def get(self) -> Optional[str]:
        """Next payload in FIFO order, or None once the sink is closed."""
        while not self._buffer:
            if self.closed:
                return None
            self._ready.clear()
            await self._ready.wait()
        if self.closed:
            return None
        return self._buffer.popleft()

    def pending(self) -> int:
        return len(self._buffer)

    def close(self) -> None:
        self.closed = True
        self._buffer.clear()
        self._ready.set()


class SessionRegistry:
    """Thread-safe map of session id → sink."""

    def __init__(self):
        self._lock = threading.Lock()
        self._sessions: dict[str, SessionSink] = {}

    def register(self, sink: SessionSink) -> None:
        with self._lock:
            self._sessions[sink.session_id] = sink
        logger.info("peerrelay.session_registered", session_id=sink.session_id)

    def unregister(self, session_id: str) -> Optional[SessionSink]:
        with self._lock:
            sink = self._sessions.pop(session_id, None)
        if sink is not None:
            sink.close()
            logger.info("peerrelay.session_unregistered", session_id=session_id)
        return sink

    def snapshot(self) -> list[SessionSink]:
        with self._lock:
            return list(self._sessions.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions
