"""Test fixtures — in-memory database, fake Redis, fake Socket.IO server.

Learn: Every test builds its own world, nothing is shared between tests:

1. SQLite in memory (aiosqlite) with the schema created per test — the
   DataClient runs real SQLAlchemy statements against it.
2. A fakeredis server per test. Every connection the ConnectionFactory
   hands out points at that one server, so the queue side and the worker
   side see the same jobs, exactly like two connections to real Redis.
3. FakeSocketServer stands in for socketio.AsyncServer. It keeps an inbox
   per connected client so tests can assert who received what.
4. The pipeline is built with autostart_worker=False; tests drive the
   worker explicitly with process_next() for deterministic ordering.
"""

from typing import Any, Optional

import fakeredis
import pytest
import pytest_asyncio
from fakeredis import aioredis as fake_aioredis
from httpx import ASGITransport, AsyncClient

from folio.config import Settings
from folio.db.client import DataClient
from folio.db.engine import build_engine, build_session_factory
from folio.db.models import Base
from folio.main import create_app
from folio.realtime.connection import ConnectionFactory
from folio.realtime.pipeline import RealtimePipeline
from folio.realtime.registry import BroadcastRegistry
from folio.realtime.server import BroadcastServer

TEST_DB_URL = "sqlite+aiosqlite://"


class FakeSocketServer:
    """Records emits per connected client, honouring `to` and `skip_sid`."""

    def __init__(self):
        self.handlers: dict[str, Any] = {}
        self.inbox: dict[str, list[tuple[str, Any]]] = {}
        self.departed: dict[str, list[tuple[str, Any]]] = {}

    def on(self, event, handler=None):
        self.handlers[event] = handler

    async def emit(self, event, data=None, to=None, skip_sid=None, **kwargs):
        targets = [to] if to is not None else [sid for sid in self.inbox if sid != skip_sid]
        for sid in targets:
            self.inbox[sid].append((event, data))

    async def connect(self, sid: str) -> None:
        self.inbox[sid] = []
        await self.handlers["connect"](sid, {})

    async def disconnect(self, sid: str, reason: Optional[str] = "client disconnect") -> None:
        # The handler runs while the sid is still addressable, as in python-socketio.
        await self.handlers["disconnect"](sid, reason)
        self.departed[sid] = self.inbox.pop(sid, [])

    def received(self, sid: str, event: Optional[str] = None) -> list:
        messages = self.inbox.get(sid, self.departed.get(sid, []))
        return [(e, d) for e, d in messages if event is None or e == event]


def fake_broadcast_server(path: str = "/api/socket/io") -> BroadcastServer:
    return BroadcastServer(FakeSocketServer(), path=path)


@pytest.fixture()
def settings():
    return Settings(
        database_url=TEST_DB_URL,
        redis_url="redis://fake:6379/0",
        realtime_worker_poll_interval=0.01,
    )


@pytest.fixture()
def redis_server():
    return fakeredis.FakeServer()


@pytest.fixture()
def connections(settings, redis_server):
    def connect(url, **kwargs):
        return fake_aioredis.FakeRedis(server=redis_server, decode_responses=True)

    return ConnectionFactory(settings.redis_url, connect=connect)


@pytest.fixture()
def redis(redis_server):
    """Direct handle on the fake Redis for assertions."""
    return fake_aioredis.FakeRedis(server=redis_server, decode_responses=True)


@pytest_asyncio.fixture()
async def data():
    """DataClient on a fresh in-memory database."""
    engine = build_engine(TEST_DB_URL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield DataClient(build_session_factory(engine))
    finally:
        await engine.dispose()


@pytest_asyncio.fixture()
async def pipeline(settings, connections):
    p = RealtimePipeline(
        settings,
        connections=connections,
        registry=BroadcastRegistry(lambda: fake_broadcast_server(settings.realtime_socket_path)),
        autostart_worker=False,
    )
    try:
        yield p
    finally:
        await p.close()


@pytest_asyncio.fixture()
async def app(settings, data, pipeline):
    return create_app(settings, data=data, realtime=pipeline)


@pytest_asyncio.fixture()
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
