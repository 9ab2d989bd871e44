"""Lazy, single-flight start of the shared pub/sub connection.

Learn: The first WebSocket client to connect triggers the backend connect;
every client that arrives while that connect is in flight waits on the
same future instead of opening its own connection.

The lock only guards the "is a start already pending?" decision. The
connect and subscribe calls run in a separate task outside the lock, so
a slow Redis never blocks callers from finding the pending start.

    Unstarted ──> Starting ──> Ready
                     │  ▲
                     ▼  │ (next caller retries)
                   Failed

A failed start is not cached: the next caller begins a fresh attempt.
Ready is terminal until close() at shutdown moves it to Closed.
"""

import asyncio
import enum
import threading
from typing import Optional

import structlog

from peerrelay.realtime.pubsub import Connection, MessageHandler, PubSubBackend, Subscription

logger = structlog.get_logger()


class ConnectionState(str, enum.Enum):
    UNSTARTED = "unstarted"
    STARTING = "starting"
    READY = "ready"
    FAILED = "failed"
    CLOSED = "closed"


class ConnectFailure(Exception):
    """Raised to every caller waiting on a start that did not complete."""


class ConnectionBootstrap:
    """Owns the process-wide backend connection and its one subscription."""

    def __init__(
        self,
        backend: PubSubBackend,
        connection_string: str,
        channel: str,
        handler: MessageHandler,
    ):
        self.backend = backend
        self.connection_string = connection_string
        self.channel = channel
        self.handler = handler
        self.connect_attempts = 0

        self._lock = threading.Lock()
        self._state = ConnectionState.UNSTARTED
        self._pending: Optional[asyncio.Future] = None
        self._start_task: Optional[asyncio.Task] = None
        self._connection: Optional[Connection] = None
        self._subscription: Optional[Subscription] = None
        self._closed = False

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connection(self) -> Optional[Connection]:
        return self._connection

    @property
    def subscription(self) -> Optional[Subscription]:
        return self._subscription

    async def ensure_started(self) -> Connection:
        """Return the shared connection, starting it if nobody has yet.

        All concurrent callers observe the same outcome: the connection,
        or the same ConnectFailure.
        """
        with self._lock:
            if self._closed:
                raise ConnectFailure("relay connection is shut down")
            future = self._pending
            start = future is None or self._state is ConnectionState.FAILED
            if start:
                future = asyncio.get_running_loop().create_future()
                self._pending = future
                self._state = ConnectionState.STARTING

        if start:
            self._start_task = asyncio.create_task(self._start(future))

        # shield: a cancelled caller must not cancel the start others wait on
        return await asyncio.shield(future)

    async def _start(self, future: asyncio.Future) -> None:
        self.connect_attempts += 1
        attempt = self.connect_attempts
        logger.info("peerrelay.relay_starting", channel=self.channel, attempt=attempt)

        connection: Optional[Connection] = None
        try:
            connection = await self.backend.connect(self.connection_string)
            subscription = await connection.subscribe(self.channel, self.handler)
        except asyncio.CancelledError:
            # Only close() cancels a start; waiters see it as a connect failure
            await self._discard(connection)
            self._fail(future, ConnectFailure("relay connection is shut down"))
            raise
        except Exception as e:
            await self._discard(connection)
            logger.warning(
                "peerrelay.relay_start_failed", attempt=attempt, error=str(e)
            )
            failure = ConnectFailure(f"could not start relay connection: {e}")
            failure.__cause__ = e
            self._fail(future, failure)
            return

        with self._lock:
            closed = self._closed
            if not closed:
                self._connection = connection
                self._subscription = subscription
                self._state = ConnectionState.READY
        if closed:
            await self._discard(connection)
            self._fail(future, ConnectFailure("relay connection is shut down"))
            return
        logger.info("peerrelay.relay_ready", channel=self.channel, attempt=attempt)
        future.set_result(connection)

    def _fail(self, future: asyncio.Future, failure: ConnectFailure) -> None:
        with self._lock:
            if not self._closed:
                self._state = ConnectionState.FAILED
        if not future.done():
            future.set_exception(failure)
            # Mark retrieved so an unobserved failure doesn't warn at GC
            future.exception()

    async def _discard(self, connection: Optional[Connection]) -> None:
        # A half-started connection is closed so at most one ever stays open
        if connection is None:
            return
        try:
            await connection.close()
        except Exception as e:
            logger.warning("peerrelay.relay_discard_failed", error=str(e))

    async def publish(self, payload: str) -> int:
        """Publish to the relay channel over the shared connection."""
        connection = await self.ensure_started()
        return await connection.publish(self.channel, payload)

    async def close(self) -> None:
        """Close the connection at shutdown. No fanout happens afterwards."""
        with self._lock:
            self._closed = True
            self._state = ConnectionState.CLOSED
            connection = self._connection
            start_task = self._start_task
            pending = self._pending
            self._connection = None
            self._subscription = None

        if start_task is not None and not start_task.done():
            start_task.cancel()
            try:
                await start_task
            except asyncio.CancelledError:
                pass
        if pending is not None:
            # A start cancelled before it ran never resolved its future
            self._fail(pending, ConnectFailure("relay connection is shut down"))

        if connection is not None:
            await connection.close()
            logger.info("peerrelay.relay_closed", channel=self.channel)
