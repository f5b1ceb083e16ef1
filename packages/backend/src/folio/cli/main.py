"""Folio CLI — inspect and poke the realtime pipeline.

Usage:
    folio queue                                   # Queue name, backend, job counts
    folio emit Project:reindex --payload '{"a":1}' # Broadcast an ad-hoc event
    folio listen                                   # Print every refresh a dashboard would do
    folio health                                   # Ask a running server for /api/v1/health
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import os
import sys

import click
import httpx

from folio import __version__
from folio.config import settings
from folio.events.types import REALTIME_EVENT
from folio.realtime.client import RealtimeBridge, RealtimeChannel
from folio.realtime.pipeline import RealtimePipeline

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:8000"


def _api_url() -> str:
    return os.environ.get("FOLIO_API_URL", DEFAULT_API_URL).rstrip("/")


def _client() -> httpx.AsyncClient:
    """Build an async HTTP client pointed at the Folio backend."""
    return httpx.AsyncClient(base_url=_api_url(), timeout=30.0)


def _pipeline() -> RealtimePipeline:
    """Producer-only pipeline: the CLI never consumes jobs itself."""
    return RealtimePipeline(settings, autostart_worker=False)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from synchronous Click handler.

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


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="folio")
def main():
    """Folio — realtime pipeline tools."""


# ---------------------------------------------------------------------------
# folio queue
# ---------------------------------------------------------------------------


@main.command()
def queue():
    """Show the realtime queue and its job counts."""
    _run(_queue_impl())


async def _queue_impl():
    pipeline = _pipeline()
    try:
        info = pipeline.describe()
        try:
            counts = await pipeline.queue.counts()
        except Exception as e:
            click.secho(f"Queue backend unreachable: {e}", fg="red", err=True)
            sys.exit(1)
    finally:
        await pipeline.close()

    click.secho(f"Queue:  {info['name']}", bold=True)
    click.echo(f"Redis:  {info['redis']}")
    click.echo("-" * 30)
    for state in ("wait", "active", "completed", "failed"):
        color = "red" if state == "failed" and counts[state] else None
        click.echo(f"  {state.ljust(10)} {click.style(str(counts[state]), fg=color)}")


# ---------------------------------------------------------------------------
# folio emit
# ---------------------------------------------------------------------------


@main.command()
@click.argument("event")
@click.option("--payload", "-p", default="{}", help="JSON payload (default: {})")
def emit(event: str, payload: str):
    """Queue EVENT for broadcast to every connected dashboard."""
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        click.secho(f"Invalid JSON payload: {e}", fg="red", err=True)
        sys.exit(2)
    _run(_emit_impl(event, data))


async def _emit_impl(event: str, data):
    pipeline = _pipeline()
    try:
        job = await pipeline.broadcast_event(event, data)
    finally:
        await pipeline.close()

    if job is None:
        click.secho("Event could not be queued (see log).", fg="red", err=True)
        sys.exit(1)
    click.secho(f"Queued {event} as job #{job.id}", fg="green")


# ---------------------------------------------------------------------------
# folio listen
# ---------------------------------------------------------------------------


@main.command()
@click.option("--url", default=None, help="Server base URL (default: FOLIO_API_URL)")
def listen(url: str | None):
    """Stay connected and print every event and refresh."""
    try:
        _run(_listen_impl(url or _api_url()))
    except KeyboardInterrupt:
        click.echo()


async def _listen_impl(url: str):
    channel = RealtimeChannel(url, settings.realtime_socket_path)
    refreshes = 0

    def on_refresh():
        nonlocal refreshes
        refreshes += 1
        click.secho(f"↻ refresh #{refreshes}", fg="cyan")

    def on_event(envelope):
        click.echo(_pretty_json(envelope))

    bridge = RealtimeBridge(on_refresh, url, path=settings.realtime_socket_path, channel=channel)
    channel.on(REALTIME_EVENT, on_event)
    await bridge.mount()
    click.echo(f"Listening on {url}{settings.realtime_socket_path} (Ctrl-C to stop)")
    try:
        await asyncio.Event().wait()
    finally:
        await bridge.unmount()
        await channel.close()


# ---------------------------------------------------------------------------
# folio health
# ---------------------------------------------------------------------------


@main.command()
def health():
    """Query a running server's health endpoint."""
    _run(_health_impl())


async def _health_impl():
    async with _client() as c:
        try:
            r = await c.get("/api/v1/health")
            r.raise_for_status()
        except httpx.HTTPError as e:
            click.secho(f"Server unreachable: {e}", fg="red", err=True)
            sys.exit(1)
    data = r.json()
    color = "green" if data.get("status") == "healthy" else "yellow"
    click.secho(data.get("status", "unknown"), fg=color, bold=True)
    click.echo(_pretty_json(data))


if __name__ == "__main__":
    main()
