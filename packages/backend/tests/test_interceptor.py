"""Mutation interceptor tests — which operations become events, and how
failures are contained.

Learn: The interceptor is installed on a real DataClient with a recording
submit function, so every assertion is about what *would* be queued.
"""

import asyncio
import uuid

import pytest
from structlog.testing import capture_logs

from folio.db.client import OperationParams, RecordNotFoundError
from folio.events.types import MUTATION_ACTIONS, Action
from folio.realtime.interceptor import MutationInterceptor


class Recorder:
    def __init__(self, error: Exception | None = None):
        self.events: list[tuple[str, dict]] = []
        self.error = error

    async def __call__(self, name, payload):
        if self.error is not None:
            raise self.error
        self.events.append((name, payload))

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self.events]


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def interceptor(recorder):
    return MutationInterceptor(recorder)


# ═══════════════════════════════════════════════════════════
# Allow-list
# ═══════════════════════════════════════════════════════════


def test_allow_list_is_exactly_the_writes():
    assert {a.value for a in MUTATION_ACTIONS} == {
        "create", "createMany", "update", "updateMany", "upsert", "delete", "deleteMany",
    }


@pytest.mark.asyncio
async def test_each_mutation_emits_one_event(data, interceptor, recorder):
    interceptor.install(data)

    project = await data.project.create(data={"title": "Folio"})
    await data.project.create_many(data=[{"title": "A"}, {"title": "B"}])
    await data.project.update(where={"id": project.id}, data={"featured": True})
    await data.project.update_many(where={"featured": False}, data={"description": "x"})
    await data.project.upsert(where={"id": project.id}, create={"title": "n/a"}, update={"title": "Folio 2"})
    await data.project.delete(where={"id": project.id})
    await data.project.delete_many()
    await interceptor.drain()

    assert recorder.names == [
        "persistence:Project:create",
        "persistence:Project:createMany",
        "persistence:Project:update",
        "persistence:Project:updateMany",
        "persistence:Project:upsert",
        "persistence:Project:delete",
        "persistence:Project:deleteMany",
    ]


@pytest.mark.asyncio
async def test_reads_emit_nothing(data, interceptor, recorder):
    interceptor.install(data)

    await data.skill.find_many()
    await data.skill.find_unique(where={"id": uuid.uuid4()})
    await data.skill.count()
    await interceptor.drain()

    assert recorder.events == []


@pytest.mark.asyncio
async def test_payload_carries_operation_and_result(data, interceptor, recorder):
    interceptor.install(data)

    project = await data.project.create(data={"title": "Folio"})
    await interceptor.drain()

    name, payload = recorder.events[0]
    assert name == "persistence:Project:create"
    assert payload["model"] == "Project"
    assert payload["action"] == "create"
    assert payload["args"] == {"data": {"title": "Folio"}}
    assert payload["result"]["id"] == str(project.id)
    assert payload["result"]["title"] == "Folio"
    assert isinstance(payload["timestamp"], int)


@pytest.mark.asyncio
async def test_empty_source_renders_entity_and_action(data, recorder):
    interceptor = MutationInterceptor(recorder, source="")
    interceptor.install(data)

    await data.certificate.create(data={
        "name": "CKA", "issuer": "CNCF", "issued_on": _when(),
    })
    await interceptor.drain()

    assert recorder.names == ["Certificate:create"]


def test_unregistered_model_keeps_its_name(interceptor):
    params = OperationParams("Comment", Action.CREATE, {"data": {"body": "hi"}})

    with capture_logs() as logs:
        descriptor = interceptor.describe(params, None)

    assert str(descriptor.name) == "persistence:Comment:create"
    assert descriptor.payload["model"] == "Comment"
    assert logs[0]["event"] == "realtime.unregistered_entity"
    assert logs[0]["model"] == "Comment"


def test_missing_model_name_renders_unknown(interceptor):
    descriptor = interceptor.describe(OperationParams(None, Action.DELETE, {}), None)
    assert str(descriptor.name) == "persistence:unknown:delete"


# ═══════════════════════════════════════════════════════════
# Failure containment
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_failed_operation_emits_nothing_and_propagates(data, interceptor, recorder):
    interceptor.install(data)
    missing = uuid.uuid4()

    with pytest.raises(RecordNotFoundError) as excinfo:
        await data.project.update(where={"id": missing}, data={"title": "x"})
    await interceptor.drain()

    assert excinfo.value.where == {"id": missing}
    assert recorder.events == []


@pytest.mark.asyncio
async def test_write_returns_before_submit_finishes(data):
    release = asyncio.Event()
    submitted = []

    async def slow_submit(name, payload):
        await release.wait()
        submitted.append(name)

    interceptor = MutationInterceptor(slow_submit)
    interceptor.install(data)

    project = await asyncio.wait_for(data.project.create(data={"title": "fast"}), timeout=1)

    assert project.title == "fast"
    assert not release.is_set()
    assert submitted == []

    release.set()
    await interceptor.drain()
    assert submitted == ["persistence:Project:create"]


@pytest.mark.asyncio
async def test_submit_failure_never_reaches_caller(data):
    from redis.exceptions import ConnectionError

    interceptor = MutationInterceptor(Recorder(error=ConnectionError("redis down")))
    interceptor.install(data)

    with capture_logs() as logs:
        project = await data.project.create(data={"title": "still saved"})
        await interceptor.drain()

    assert project.title == "still saved"
    assert await data.project.count() == 1
    assert any(entry["event"] == "realtime.enqueue_failed" for entry in logs)


# ═══════════════════════════════════════════════════════════
# Installation
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_install_is_idempotent(data, interceptor, recorder):
    assert interceptor.install(data) is True
    assert interceptor.install(data) is False

    await data.skill.create(data={"name": "Go", "category": "Backend", "level": "l"})
    await interceptor.drain()

    assert recorder.names == ["persistence:Skill:create"]


def test_install_without_hook_support_degrades(interceptor):
    class LegacyClient:
        pass

    with capture_logs() as logs:
        assert interceptor.install(LegacyClient()) is False

    assert interceptor.installed is True
    assert logs[0]["event"] == "realtime.middleware_unsupported"
    assert logs[0]["log_level"] == "warning"


def _when():
    from datetime import datetime, timezone

    return datetime(2024, 5, 1, tzinfo=timezone.utc)


def test_action_values_are_wire_names():
    assert Action.CREATE_MANY.value == "createMany"
    assert Action.DELETE_MANY.value == "deleteMany"
