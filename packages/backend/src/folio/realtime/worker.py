"""Event worker — drains the realtime queue into the broadcast server.

Learn: One worker per process per queue. It runs as a background task
(started by the pipeline on first enqueue) and loops:

  fetch → look up broadcast server → emit twice → complete
                      │
                      └─ none registered yet → complete (no-op)

For every job two events go out to all clients:
1. `realtime:event` with {event, payload, jobId, timestamp} — the generic
   envelope dashboards listen to
2. `<job name>` with the raw payload — for listeners that care about one
   entity/action only

A job that raises is logged and handed to queue.fail(), which retries it
up to its attempts and then parks it in the failed set. The loop itself
never dies on a bad job.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass
from typing import Optional

import structlog

from folio.events.types import REALTIME_EVENT
from folio.realtime.queue import EventQueue, Job
from folio.realtime.registry import BroadcastRegistry

logger = structlog.get_logger()


@dataclass
class WorkerStats:
    processed: int = 0
    broadcast: int = 0
    failed: int = 0


class EventWorker:
    """Background consumer of one EventQueue.

    Usage:
        worker = EventWorker(queue, registry)
        worker.start()          # inside a running event loop
        ...
        await worker.stop()
    """

    def __init__(
        self,
        queue: EventQueue,
        registry: BroadcastRegistry,
        poll_interval: float = 0.1,
        lock_seconds: int = 30,
        stalled_interval: float = 30.0,
    ):
        self.queue = queue
        self.registry = registry
        self.poll_interval = poll_interval
        self.lock_seconds = lock_seconds
        self.stalled_interval = stalled_interval
        self.token = uuid.uuid4().hex
        self.stats = WorkerStats()
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        """Start run_loop() as a task. Calling it again is a no-op."""
        if not self.running:
            self._task = asyncio.create_task(self.run_loop())
        return self._task

    async def run_loop(self) -> None:
        """Main worker loop — drain the queue, sleep when it is empty."""
        self._running = True
        logger.info("realtime_worker.started", queue=self.queue.name, poll_interval=self.poll_interval)
        last_stalled_check = 0.0

        while self._running:
            try:
                now = time.monotonic()
                if now - last_stalled_check >= self.stalled_interval:
                    await self.queue.recover_stalled()
                    last_stalled_check = now

                if not await self.process_next():
                    await asyncio.sleep(self.poll_interval)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("realtime_worker.error", queue=self.queue.name)
                await asyncio.sleep(self.poll_interval)

    async def process_next(self) -> bool:
        """Claim and handle one job. Returns False if the queue was empty."""
        job = await self.queue.fetch(self.token, lock_seconds=self.lock_seconds)
        if job is None:
            return False
        await self.handle(job)
        return True

    async def handle(self, job: Job) -> None:
        try:
            await self.process(job)
        except Exception as e:
            self.stats.failed += 1
            logger.exception("realtime_worker.job_failed", job_id=job.id, job_name=job.name)
            await self.queue.fail(job, self.token, e)
            return
        self.stats.processed += 1
        await self.queue.complete(job, self.token)

    async def process(self, job: Job) -> None:
        server = self.registry.get()
        if server is None:
            logger.debug("realtime_worker.no_server", job_id=job.id)
            return

        await server.emit(REALTIME_EVENT, {
            "event": job.name,
            "payload": job.data,
            "jobId": job.id,
            "timestamp": int(time.time() * 1000),
        })
        await server.emit(job.name, job.data)
        self.stats.broadcast += 1

    async def stop(self) -> None:
        """Signal the loop to stop and wait for it to exit."""
        self._running = False
        logger.info("realtime_worker.stopping", queue=self.queue.name)
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
