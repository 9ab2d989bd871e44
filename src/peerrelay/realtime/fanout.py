"""Fanout relay — one backend message in, one enqueue per connected session.

Learn: handle() is the subscription handler. It may run on whatever
thread the backend client delivers on, so it does no I/O: it snapshots
the registry and calls sink.send() on each session, which only appends
to that session's buffer. Per-session order follows backend order
because every sink is a FIFO fed by this single handler.
"""

import threading
from dataclasses import dataclass

import structlog

from peerrelay.realtime.sessions import SessionRegistry

logger = structlog.get_logger()


@dataclass
class RelayStats:
    """Counters surfaced on the health endpoint."""
    messages_received: int = 0
    deliveries: int = 0


class FanoutRelay:
    def __init__(self, registry: SessionRegistry):
        self.registry = registry
        self.stats = RelayStats()
        self._stats_lock = threading.Lock()

    def handle(self, channel: str, payload: str) -> None:
        sessions = self.registry.snapshot()
        for sink in sessions:
            # A session that closed mid-iteration just ignores the send
            sink.send(payload)
        with self._stats_lock:
            self.stats.messages_received += 1
            self.stats.deliveries += len(sessions)
        logger.debug(
            "peerrelay.fanout", channel=channel, sessions=len(sessions)
        )
