"""Mutation interceptor — turns successful writes into queued realtime events.

Learn: Installed once as DataClient middleware. For every operation it:
1. Runs the operation (await next(params)) — errors propagate untouched
2. Skips anything outside the mutation allow-list (reads, counts)
3. Builds an EventDescriptor (persistence:Project:update + payload)
4. Schedules the submit as a background task and returns the result

The caller never waits on Redis. If submission fails — Redis down,
payload not serializable, no running loop — the error is logged here and
dropped; the write that triggered it has already succeeded.
"""

import asyncio
from typing import Any, Awaitable, Callable

import structlog

from folio.db.client import NextFn, OperationParams, jsonable
from folio.events.types import (
    DEFAULT_SOURCE,
    MUTATION_ACTIONS,
    Entity,
    EventDescriptor,
    EventName,
)

logger = structlog.get_logger()

Submit = Callable[[str, Any], Awaitable[Any]]


class MutationInterceptor:
    def __init__(self, submit: Submit, source: str = DEFAULT_SOURCE):
        self._submit = submit
        self.source = source
        self.installed = False
        self._pending: set[asyncio.Task] = set()

    def install(self, client: Any) -> bool:
        """Hook into `client`. Returns True only when middleware was registered."""
        if self.installed:
            return False

        use = getattr(client, "use", None)
        if not callable(use):
            logger.warning("realtime.middleware_unsupported", client=type(client).__name__)
            self.installed = True
            return False

        use(self.middleware)
        self.installed = True
        logger.info("realtime.interceptor_installed", source=self.source)
        return True

    async def middleware(self, params: OperationParams, next_: NextFn) -> Any:
        result = await next_(params)

        if params.action in MUTATION_ACTIONS:
            try:
                descriptor = self.describe(params, result)
                self._dispatch(descriptor)
            except Exception:
                logger.exception(
                    "realtime.enqueue_failed", model=params.model, action=params.action.value
                )

        return result

    def describe(self, params: OperationParams, result: Any) -> EventDescriptor:
        model = params.model or Entity.UNKNOWN.value
        entity: Entity | str = Entity.from_model(model)
        if entity is Entity.UNKNOWN and params.model:
            logger.warning("realtime.unregistered_entity", model=params.model)
            entity = params.model
        return EventDescriptor(
            name=EventName(entity, params.action, self.source),
            model=model,
            action=params.action,
            args=jsonable(params.args),
            result=jsonable(result),
        )

    def _dispatch(self, descriptor: EventDescriptor) -> None:
        task = asyncio.create_task(self._submit(str(descriptor.name), descriptor.payload))
        self._pending.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("realtime.enqueue_failed", error=str(error), exc_info=error)

    async def drain(self) -> None:
        """Wait for in-flight submissions to settle."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
