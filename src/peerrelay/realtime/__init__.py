"""Real-time infrastructure — Redis pub/sub + WebSocket fanout.

Learn: Messages flow one way:
1. Anyone → Redis PUBLISH on the relay channel
2. Redis SUBSCRIBE (one per process) → FanoutRelay → every session's sink
3. Each session's writer task → its WebSocket

The subscription is opened lazily by the first client to connect.
"""
