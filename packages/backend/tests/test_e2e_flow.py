"""Full-flow E2E test — an API write reaches a connected dashboard.

Learn: This walks one change through every hop using the real app:

    PATCH /projects → DataClient → interceptor → Redis queue
        → worker → Socket.IO server → client bridge → refresh()

Only the transport ends are faked: the Socket.IO server records emits
per client, and the dashboard's socket client is fed those emits by hand.

Run with: pytest packages/backend/tests/test_e2e_flow.py -v
"""

import pytest
import pytest_asyncio

from folio.events.types import REALTIME_EVENT

from test_client_bridge import BASE_URL, Counter, FakeAsyncClient
from folio.realtime.client import RealtimeBridge, RealtimeChannel


# ═══════════════════════════════════════════════════════════
# Fixtures
# ═══════════════════════════════════════════════════════════


@pytest_asyncio.fixture
async def dashboard(client, pipeline):
    """A connected Socket.IO client, after the warm-up call built the server."""
    r = await client.get("/api/socket/io")
    assert r.status_code == 200
    server = pipeline.registry.get()
    await server.sio.connect("dashboard")
    return server


async def deliver(pipeline) -> int:
    """Flush the interceptor and let the worker drain the queue."""
    await pipeline.interceptor.drain()
    worker = pipeline.ensure_worker()
    n = 0
    while await worker.process_next():
        n += 1
    return n


# ═══════════════════════════════════════════════════════════
# Flow
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_write_reaches_dashboard(client, pipeline, dashboard):
    resp = await client.post("/api/v1/projects", json={"title": "Folio", "featured": True})
    assert resp.status_code == 201
    project = resp.json()

    assert await deliver(pipeline) == 1

    envelopes = [d for _, d in dashboard.sio.received("dashboard", REALTIME_EVENT)]
    assert envelopes[-1]["event"] == "persistence:Project:create"
    payload = envelopes[-1]["payload"]
    assert payload["model"] == "Project"
    assert payload["action"] == "create"
    assert payload["result"]["id"] == project["id"]

    raw = dashboard.sio.received("dashboard", "persistence:Project:create")
    assert raw == [("persistence:Project:create", payload)]


@pytest.mark.asyncio
async def test_every_write_becomes_one_event(client, pipeline, dashboard):
    created = (await client.post("/api/v1/projects", json={"title": "A"})).json()
    await client.patch(f"/api/v1/projects/{created['id']}", json={"featured": True})
    await client.delete(f"/api/v1/projects/{created['id']}")

    assert await deliver(pipeline) == 3

    events = [
        d["event"] for _, d in dashboard.sio.received("dashboard", REALTIME_EVENT)
        if d["event"].startswith("persistence:")
    ]
    assert events == [
        "persistence:Project:create",
        "persistence:Project:update",
        "persistence:Project:delete",
    ]


@pytest.mark.asyncio
async def test_reads_and_failed_writes_are_silent(client, pipeline, dashboard):
    await client.get("/api/v1/projects")
    r = await client.patch(
        "/api/v1/projects/00000000-0000-0000-0000-000000000000", json={"title": "x"}
    )
    assert r.status_code == 404

    assert await deliver(pipeline) == 0
    assert (await pipeline.queue.counts())["wait"] == 0


@pytest.mark.asyncio
async def test_dashboard_refreshes_once_per_write(client, pipeline, dashboard):
    socket = FakeAsyncClient()
    channel = RealtimeChannel(BASE_URL, client=socket)
    refresh = Counter()
    bridge = RealtimeBridge(refresh, BASE_URL, channel=channel, http=client)
    await bridge.mount()
    await channel.open()
    assert refresh.count == 1

    await client.post("/api/v1/projects", json={"title": "Folio"})
    await deliver(pipeline)

    # Replay what the server sent this client after its greeting.
    for event, data in dashboard.sio.received("dashboard")[1:]:
        await socket.fire(event, data)

    assert refresh.count == 2
    await bridge.unmount()
