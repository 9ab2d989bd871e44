"""Redis pub/sub backend — the connection the relay starts lazily.

Learn: Redis pub/sub is fire-and-forget. If no one is listening, the message
is lost. That's fine for live updates: sessions that join later get no
replay, only what arrives after they registered.

The relay only needs three primitives from a backend, so they are spelled
out as a Protocol. Tests plug in an in-memory backend with the same shape.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol

import redis.asyncio as aioredis
import structlog

logger = structlog.get_logger()

# Handler receives (channel, payload) for every message on a subscribed channel.
MessageHandler = Callable[[str, str], None]


@dataclass
class Subscription:
    """Opaque handle for one subscribed channel."""
    channel: str
    listener: Optional[asyncio.Task] = field(default=None, repr=False)


class Connection(Protocol):
    async def subscribe(self, channel: str, handler: MessageHandler) -> Subscription: ...

    async def publish(self, channel: str, payload: str) -> int: ...

    async def close(self) -> None: ...


class PubSubBackend(Protocol):
    async def connect(self, connection_string: str) -> Connection: ...


class RedisConnection:
    """One Redis client plus the pub/sub listeners started on it."""

    def __init__(self, client: aioredis.Redis):
        self._client = client
        self._pubsubs: list = []
        self._subscriptions: list[Subscription] = []

    async def subscribe(self, channel: str, handler: MessageHandler) -> Subscription:
        pubsub = self._client.pubsub()
        await pubsub.subscribe(channel)
        self._pubsubs.append(pubsub)

        async def listener():
            """Forward Redis messages to the handler until cancelled."""
            async for message in pubsub.listen():
                if message["type"] != "message":
                    continue
                try:
                    handler(message["channel"], message["data"])
                except Exception as e:
                    logger.error(
                        "peerrelay.handler_failed", channel=channel, error=str(e)
                    )

        subscription = Subscription(
            channel=channel,
            listener=asyncio.create_task(listener(), name=f"redis-listener:{channel}"),
        )
        self._subscriptions.append(subscription)
        return subscription

    async def publish(self, channel: str, payload: str) -> int:
        return await self._client.publish(channel, payload)

    async def close(self) -> None:
        for subscription in self._subscriptions:
            if subscription.listener is not None:
                subscription.listener.cancel()
                try:
                    await subscription.listener
                except asyncio.CancelledError:
                    pass
        for pubsub in self._pubsubs:
            await pubsub.unsubscribe()
            await pubsub.aclose()
        self._subscriptions.clear()
        self._pubsubs.clear()
        await self._client.aclose()


class RedisBackend:
    """Backend client that opens a verified Redis connection."""

    async def connect(self, connection_string: str) -> RedisConnection:
        client = aioredis.from_url(
            connection_string,
            encoding="utf-8",
            decode_responses=True,
        )
        try:
            # Verify connection
            await client.ping()
        except Exception:
            await client.aclose()
            raise
        return RedisConnection(client)
