"""Event worker tests — queue to broadcast server.

Learn: The pipeline fixture never starts the worker on its own; tests
call process_next() one job at a time, or start()/stop() to cover the
background loop.
"""

import asyncio

import pytest

from folio.events.types import REALTIME_EVENT, SOCKET_CONNECTED


async def _drain(worker) -> int:
    n = 0
    while await worker.process_next():
        n += 1
    return n


@pytest.mark.asyncio
async def test_jobs_complete_without_server(pipeline):
    for n in range(3):
        await pipeline.enqueue("persistence:Skill:create", {"n": n})
    worker = pipeline.ensure_worker()

    assert await _drain(worker) == 3

    assert worker.stats.processed == 3
    assert worker.stats.broadcast == 0
    assert (await pipeline.queue.counts())["completed"] == 3


@pytest.mark.asyncio
async def test_job_broadcasts_envelope_then_raw_event(pipeline):
    server = await pipeline.registry.ensure()
    await server.sio.connect("a")

    job = await pipeline.enqueue("persistence:Project:update", {"model": "Project"})
    await pipeline.ensure_worker().process_next()

    events = server.sio.received("a")
    assert [e for e, _ in events] == [
        REALTIME_EVENT,
        REALTIME_EVENT,
        "persistence:Project:update",
    ]
    envelope = events[1][1]
    assert envelope["event"] == "persistence:Project:update"
    assert envelope["payload"] == {"model": "Project"}
    assert envelope["jobId"] == job.id
    assert isinstance(envelope["timestamp"], int)
    assert events[2][1] == {"model": "Project"}


@pytest.mark.asyncio
async def test_failed_job_does_not_block_next(pipeline, monkeypatch):
    server = await pipeline.registry.ensure()
    await server.sio.connect("a")
    original = server.emit

    async def flaky_emit(event, payload):
        if event == REALTIME_EVENT and payload["payload"].get("bad"):
            raise RuntimeError("cannot serialize")
        await original(event, payload)

    monkeypatch.setattr(server, "emit", flaky_emit)
    await pipeline.enqueue("persistence:Project:create", {"bad": True})
    await pipeline.enqueue("persistence:Project:create", {"bad": False})

    worker = pipeline.ensure_worker()
    await _drain(worker)

    assert worker.stats.failed == 1
    assert worker.stats.broadcast == 1
    counts = await pipeline.queue.counts()
    assert counts["failed"] == 1
    assert counts["completed"] == 1
    assert server.sio.received("a", "persistence:Project:create") == [
        ("persistence:Project:create", {"bad": False})
    ]


@pytest.mark.asyncio
async def test_late_client_gets_no_backfill(pipeline):
    server = await pipeline.registry.ensure()
    await pipeline.enqueue("persistence:Career:create", {})
    await _drain(pipeline.ensure_worker())

    await server.sio.connect("late")

    received = server.sio.received("late")
    assert len(received) == 1
    assert received[0][1]["event"] == SOCKET_CONNECTED


@pytest.mark.asyncio
async def test_run_loop_processes_in_background(pipeline):
    worker = pipeline.ensure_worker()
    task = worker.start()
    assert worker.start() is task

    await pipeline.enqueue("persistence:Contact:create", {})
    for _ in range(200):
        if (await pipeline.queue.counts())["completed"] == 1:
            break
        await asyncio.sleep(0.01)

    assert (await pipeline.queue.counts())["completed"] == 1
    await worker.stop()
    assert worker.running is False
