"""RealtimePipeline — the per-process bundle of realtime services.

Learn: Built once at bootstrap (main.create_app) and passed to whoever
needs it; nothing here is looked up through module globals. It owns:

- ConnectionFactory — cached Redis connections (queue side, worker side)
- EventQueue        — producer handle, created on first enqueue
- EventWorker       — consumer, created and started on first enqueue
- BroadcastRegistry — the lazily built Socket.IO server
- MutationInterceptor — DataClient middleware feeding enqueue()

Multi-process note: every process runs its own worker and server. Jobs
are shared through Redis, but a client connected to process A only sees
events that A's worker happened to pick up.
"""

from typing import Any, Optional

import structlog

from folio.config import Settings
from folio.realtime.connection import ConnectionFactory
from folio.realtime.interceptor import MutationInterceptor
from folio.realtime.queue import EventQueue, Job, JobOptions, KeepJobs
from folio.realtime.registry import BroadcastRegistry
from folio.realtime.server import BroadcastServer
from folio.realtime.worker import EventWorker

logger = structlog.get_logger()


class RealtimePipeline:
    def __init__(
        self,
        settings: Settings,
        connections: Optional[ConnectionFactory] = None,
        registry: Optional[BroadcastRegistry] = None,
        autostart_worker: bool = True,
    ):
        self.settings = settings
        self.connections = connections or ConnectionFactory(settings.redis_url)
        self.registry = registry or BroadcastRegistry(
            lambda: BroadcastServer.create(
                path=settings.realtime_socket_path,
                cors_origin=settings.socket_cors_origin,
            )
        )
        self.autostart_worker = autostart_worker
        self.interceptor = MutationInterceptor(self.enqueue, source=settings.realtime_event_source)
        self.defaults = JobOptions(
            remove_on_complete=KeepJobs(
                age=settings.realtime_complete_age_seconds,
                count=settings.realtime_complete_count,
            ),
            remove_on_fail=KeepJobs(
                age=settings.realtime_fail_age_seconds,
                count=settings.realtime_fail_count,
            ),
        )
        self._queue: Optional[EventQueue] = None
        self._worker: Optional[EventWorker] = None

    @property
    def queue_name(self) -> str:
        return self.settings.realtime_queue_name

    @property
    def queue(self) -> EventQueue:
        if self._queue is None:
            self._queue = EventQueue(
                self.queue_name,
                self.connections.queue_connection(),
                prefix=self.settings.realtime_key_prefix,
                defaults=self.defaults,
            )
        return self._queue

    @property
    def worker(self) -> Optional[EventWorker]:
        return self._worker

    def ensure_worker(self) -> EventWorker:
        """Create the consumer on first use; start it if autostart is on."""
        if self._worker is None:
            consumer_queue = EventQueue(
                self.queue_name,
                self.connections.worker_connection(),
                prefix=self.settings.realtime_key_prefix,
                defaults=self.defaults,
            )
            self._worker = EventWorker(
                consumer_queue,
                self.registry,
                poll_interval=self.settings.realtime_worker_poll_interval,
                lock_seconds=self.settings.realtime_worker_lock_seconds,
                stalled_interval=self.settings.realtime_stalled_interval,
            )
        if self.autostart_worker:
            self._worker.start()
        return self._worker

    async def enqueue(
        self,
        event: str,
        payload: Any,
        options: Optional[JobOptions] = None,
    ) -> Job:
        """Queue an event for broadcast. Raises if Redis rejects it."""
        queue = self.queue
        self.ensure_worker()
        return await queue.submit(event, payload, options)

    async def broadcast_event(self, event: str, payload: Any) -> Optional[Job]:
        """Best-effort enqueue for ad-hoc events; failures are only logged."""
        try:
            return await self.enqueue(event, payload)
        except Exception:
            logger.exception("realtime.enqueue_failed", realtime_event=event)
            return None

    def install(self, client: Any) -> bool:
        return self.interceptor.install(client)

    def describe(self) -> dict[str, Any]:
        return {"name": self.queue_name, **self.connections.describe()}

    async def close(self) -> None:
        await self.interceptor.drain()
        if self._worker is not None:
            await self._worker.stop()
        await self.connections.close()
