"""Tourney Relay CLI — run the relay, push test events, check its health.

Usage:
    tourney-relay serve                                   # Run the WebSocket relay
    tourney-relay serve --port 9000
    tourney-relay emit match_updated -p '{"matchId": 7}'  # Drop a spool file
    tourney-relay emit match_updated --via redis          # Publish to the channel
    tourney-relay status                                  # Query /api/v1/health
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
from typing import Optional

import click
import httpx
import redis.asyncio as aioredis
from redis.exceptions import RedisError

from tourney_relay import __version__
from tourney_relay.config import Settings, load_settings
from tourney_relay.errors import ConfigError
from tourney_relay.realtime.envelope import EventEnvelope
from tourney_relay.realtime.pubsub import publish_event
from tourney_relay.realtime.spool import write_spool_file

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _settings(**overrides) -> Settings:
    """Load settings, or exit with status 2 on a configuration error."""
    try:
        return load_settings(**{k: v for k, v in overrides.items() if v is not None})
    except ConfigError as e:
        click.secho(f"Configuration error: {e}", fg="red", err=True)
        sys.exit(2)


def _api_url(settings: Settings) -> str:
    default = f"http://localhost:{settings.websocket_port}"
    return os.environ.get("TOURNEY_RELAY_URL", default).rstrip("/")


def _parse_payload(raw: str) -> object:
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"not valid JSON: {e}", param_hint="--payload")


async def _publish(url: str, channel: str, envelope: EventEnvelope) -> int:
    r = aioredis.from_url(url, encoding="utf-8", decode_responses=True)
    try:
        return await publish_event(r, channel, envelope)
    finally:
        await r.aclose()


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="tourney-relay")
def main():
    """Tourney Relay — fan tournament events out to live-view WebSockets."""


# ---------------------------------------------------------------------------
# tourney-relay serve
# ---------------------------------------------------------------------------


@main.command()
@click.option("--host", help="Bind address (default: WEBSOCKET_HOST)")
@click.option("--port", type=int, help="Listen port (default: WEBSOCKET_PORT)")
@click.option(
    "--profile",
    type=click.Choice(["resilient", "strict"]),
    help="Broker failure policy (default: RELAY_PROFILE)",
)
def serve(host: Optional[str], port: Optional[int], profile: Optional[str]):
    """Run the relay server."""
    import uvicorn

    from tourney_relay.main import create_app

    settings = _settings(
        websocket_host=host,
        websocket_port=port,
        relay_profile=profile,
    )
    click.secho(
        f"Tourney Relay {__version__} on "
        f"ws://{settings.websocket_host}:{settings.websocket_port}{settings.websocket_path}",
        bold=True,
    )
    uvicorn.run(
        create_app(settings),
        host=settings.websocket_host,
        port=settings.websocket_port,
        log_level=settings.log_level.lower(),
    )


# ---------------------------------------------------------------------------
# tourney-relay emit
# ---------------------------------------------------------------------------


@main.command()
@click.argument("event")
@click.option("--payload", "-p", default="{}", help="JSON payload (default: {})")
@click.option(
    "--via",
    type=click.Choice(["spool", "redis"]),
    default="spool",
    show_default=True,
    help="Write a spool file or publish to the Redis channel",
)
@click.option("--spool-dir", help="Spool directory (default: WEBSOCKET_EVENTS_DIR)")
def emit(event: str, payload: str, via: str, spool_dir: Optional[str]):
    """Send one EVENT through the relay, for testing a running server."""
    settings = _settings(websocket_events_dir=spool_dir)
    try:
        envelope = EventEnvelope(event=event, payload=_parse_payload(payload))
    except ValueError as e:
        # pydantic's ValidationError is a ValueError
        raise click.BadParameter(str(e), param_hint="EVENT") from e

    if via == "spool":
        path = write_spool_file(
            settings.websocket_events_dir,
            envelope,
            prefix=settings.spool_prefix,
            suffix=settings.spool_suffix,
        )
        click.echo(f"Wrote {path}")
        return

    if settings.broker_url is None:
        click.secho("Redis is disabled (REDIS_ENABLED=false).", fg="red", err=True)
        sys.exit(1)
    try:
        receivers = asyncio.run(_publish(settings.broker_url, settings.redis_channel, envelope))
    except (RedisError, OSError) as e:
        click.secho(f"Publish failed: {e}", fg="red", err=True)
        sys.exit(1)
    click.echo(f"Published {envelope.event} to {settings.redis_channel} ({receivers} subscriber(s))")


# ---------------------------------------------------------------------------
# tourney-relay status
# ---------------------------------------------------------------------------


@main.command()
def status():
    """Show the running relay's transport, clients and counters."""
    settings = _settings()
    url = f"{_api_url(settings)}/api/v1/health"
    try:
        resp = httpx.get(url, timeout=5.0)
        resp.raise_for_status()
    except httpx.HTTPError as e:
        click.secho(f"Relay not reachable at {url}: {e}", fg="red", err=True)
        sys.exit(1)

    data = resp.json()
    color = "green" if data.get("status") == "healthy" else "yellow"
    click.secho(f"Status:     {data.get('status')}", fg=color, bold=True)
    click.echo(f"Transport:  {data.get('transport')}")
    click.echo(f"Profile:    {data.get('profile')}")
    click.echo(f"Clients:    {data.get('clients')}")
    broadcasts = data.get("broadcasts", {})
    click.echo(
        f"Broadcasts: {broadcasts.get('total', 0)} "
        f"(sent {broadcasts.get('sent', 0)}, failed {broadcasts.get('failed', 0)})"
    )
    spool = data.get("spool", {})
    click.echo(
        f"Spool:      {spool.get('directory')} "
        f"(consumed {spool.get('consumed', 0)}, dropped {spool.get('dropped', 0)})"
    )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    main()
