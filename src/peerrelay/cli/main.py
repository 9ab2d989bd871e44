"""PeerRelay CLI — run the server, look up peers, publish test messages.

Usage:
    peerrelay serve                      # Run the API + WebSocket server
    peerrelay discover                   # Run the peer discovery chain here
    peerrelay publish "hello"            # Publish onto the relay channel
    peerrelay peers --api-url URL        # Ask a running instance for its peers
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import logging
import os
import sys

import click
import httpx
import structlog

from peerrelay import __version__
from peerrelay.config import settings

DEFAULT_API_URL = "http://localhost:8000"


def _api_url(override: str | None) -> str:
    return (override or os.environ.get("PEERRELAY_API_URL", DEFAULT_API_URL)).rstrip("/")


def _run(coro):
    """Run an async coroutine from a synchronous Click handler.

    Handles nested event loops (e.g. when invoked via Click CliRunner
    inside an existing async context like tests) by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _pretty_json(data: dict | list) -> str:
    return json.dumps(data, indent=2, default=str)


@click.group()
@click.version_option(version=__version__, prog_name="peerrelay")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
def main(verbose: bool):
    """PeerRelay — live fanout relay and peer discovery."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # Route structlog through stdlib logging (stderr) so stdout stays machine-readable
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.KeyValueRenderer(key_order=["event"]),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


@main.command()
@click.option("--host", default=None, help="Bind address (default: PEERRELAY_HOST)")
@click.option("--port", default=None, type=int, help="Port (default: PEERRELAY_PORT)")
@click.option("--reload", is_flag=True, help="Auto-reload on code changes")
def serve(host: str | None, port: int | None, reload: bool):
    """Run the HTTP + WebSocket server."""
    import uvicorn

    uvicorn.run(
        "peerrelay.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
    )


@main.command()
def discover():
    """Run the discovery chain in this process and print the result."""
    from peerrelay.discovery.chain import build_discovery_chain

    chain = build_discovery_chain(settings)
    result = _run(chain.discover_peers())
    click.echo(_pretty_json(result.to_dict()))


@main.command()
@click.argument("payload")
@click.option("--channel", default=None, help="Override PEERRELAY_RELAY_CHANNEL")
def publish(payload: str, channel: str | None):
    """Publish PAYLOAD directly to Redis on the relay channel."""
    _run(_publish_impl(payload, channel or settings.relay_channel))


async def _publish_impl(payload: str, channel: str):
    from peerrelay.realtime.pubsub import RedisBackend

    try:
        connection = await RedisBackend().connect(settings.redis_url)
    except Exception as e:
        click.secho(f"Error: cannot reach Redis at {settings.redis_url}: {e}", fg="red", err=True)
        sys.exit(1)
    try:
        receivers = await connection.publish(channel, payload)
    finally:
        await connection.close()
    click.echo(f"Published to {channel} ({receivers} subscriber(s))")


@main.command()
@click.option("--api-url", default=None, help="Instance URL (or set PEERRELAY_API_URL)")
def peers(api_url: str | None):
    """Ask a running instance which peers it can see."""
    _run(_peers_impl(_api_url(api_url)))


async def _peers_impl(base_url: str):
    async with httpx.AsyncClient(base_url=base_url, timeout=30.0) as client:
        try:
            resp = await client.get("/api/v1/peers")
        except httpx.ConnectError:
            click.secho(f"Error: instance not reachable at {base_url}", fg="red", err=True)
            sys.exit(1)

    if resp.status_code != 200:
        click.secho(f"Error: {resp.status_code} {resp.text}", fg="red", err=True)
        sys.exit(1)

    data = resp.json()
    if data.get("status") != "found":
        click.secho(f"Unavailable: {data.get('detail', data.get('reason'))}", fg="yellow")
        return

    click.echo(f"Strategy: {data['strategy']}")
    for peer in data["peers"]:
        marker = click.style("ready", fg="green") if peer["ready"] else click.style("not ready", fg="red")
        click.echo(f"  {peer['address']}:{peer['port']}  {marker}")


if __name__ == "__main__":
    main()
