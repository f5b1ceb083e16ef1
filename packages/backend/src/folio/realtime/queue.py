"""Durable event queue on Redis — at-least-once job delivery.

Learn: A job moves through Redis structures like this:

    submit   → HSET {p}:{q}:{id} + LPUSH {p}:{q}:wait
    fetch    → LMOVE wait → active, SET {p}:{q}:{id}:lock (TTL)
    complete → LREM active, ZADD completed (score = finished time)
    fail     → retry: LREM active, RPUSH wait (runs next)
               final: LREM active, ZADD failed

Jobs are consumed from the right end of `wait`, so the list is FIFO.
A consumer that dies mid-job leaves the id in `active` with no lock once
the TTL lapses; recover_stalled() puts it back on `wait`. That redelivery
is what makes delivery at-least-once rather than at-most-once.

Completed and failed sets are pruned by age and count after every
transition, so the queue never grows without bound. Completed jobs go
fast (seconds), failed ones linger longer for diagnostics.
"""

import json
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

import redis.asyncio as aioredis
import structlog

logger = structlog.get_logger()


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class KeepJobs:
    """Retention bound: keep at most `count` jobs, none older than `age` seconds."""

    age: int
    count: int


@dataclass
class JobOptions:
    attempts: int = 1
    remove_on_complete: KeepJobs = field(default_factory=lambda: KeepJobs(age=60, count=1000))
    remove_on_fail: KeepJobs = field(default_factory=lambda: KeepJobs(age=60 * 60, count=100))

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: Optional[str]) -> "JobOptions":
        if not raw:
            return cls()
        data = json.loads(raw)
        return cls(
            attempts=data.get("attempts", 1),
            remove_on_complete=KeepJobs(**data["remove_on_complete"]),
            remove_on_fail=KeepJobs(**data["remove_on_fail"]),
        )


@dataclass
class Job:
    id: str
    name: str
    data: Any
    timestamp: int
    options: JobOptions = field(default_factory=JobOptions)
    attempts_made: int = 0
    processed_on: Optional[int] = None
    finished_on: Optional[int] = None
    failed_reason: Optional[str] = None

    @classmethod
    def from_hash(cls, job_id: str, h: dict[str, str]) -> "Job":
        return cls(
            id=job_id,
            name=h["name"],
            data=json.loads(h.get("data") or "null"),
            timestamp=int(h["timestamp"]),
            options=JobOptions.from_json(h.get("opts")),
            attempts_made=int(h.get("attempts_made", 0)),
            processed_on=int(h["processed_on"]) if h.get("processed_on") else None,
            finished_on=int(h["finished_on"]) if h.get("finished_on") else None,
            failed_reason=h.get("failed_reason"),
        )


class EventQueue:
    """Named Redis-backed work queue.

    Both the producer (pipeline.enqueue) and the consumer (EventWorker)
    use this class; each side passes its own connection.
    """

    def __init__(
        self,
        name: str,
        connection: aioredis.Redis,
        prefix: str = "folio",
        defaults: Optional[JobOptions] = None,
    ):
        self.name = name
        self.prefix = prefix
        self.defaults = defaults or JobOptions()
        self._redis = connection

    def _key(self, *parts: str) -> str:
        return ":".join((self.prefix, self.name, *parts))

    @property
    def wait_key(self) -> str:
        return self._key("wait")

    @property
    def active_key(self) -> str:
        return self._key("active")

    # ── Producer ────────────────────────────────────────────

    async def submit(
        self,
        name: str,
        payload: Any,
        options: Optional[JobOptions] = None,
    ) -> Job:
        """Enqueue a job. Returns once Redis has stored it, not once processed."""
        opts = options or self.defaults
        job_id = str(await self._redis.incr(self._key("id")))
        job = Job(id=job_id, name=name, data=payload, timestamp=_now_ms(), options=opts)

        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.hset(self._key(job_id), mapping={
                "name": name,
                "data": json.dumps(payload),
                "timestamp": job.timestamp,
                "opts": opts.to_json(),
                "attempts_made": 0,
            })
            pipe.lpush(self.wait_key, job_id)
            await pipe.execute()
        return job

    # ── Consumer ────────────────────────────────────────────

    async def fetch(self, token: str, lock_seconds: int = 30) -> Optional[Job]:
        """Move the oldest waiting job to active and lock it for `token`."""
        job_id = await self._redis.lmove(self.wait_key, self.active_key, "RIGHT", "LEFT")
        if job_id is None:
            return None

        await self._redis.set(self._key(job_id, "lock"), token, ex=lock_seconds)
        raw = await self._redis.hgetall(self._key(job_id))
        if not raw:
            # Pruned or never written.
            await self._redis.lrem(self.active_key, 0, job_id)
            await self._redis.delete(self._key(job_id, "lock"))
            logger.warning("realtime_queue.missing_job", queue=self.name, job_id=job_id)
            return None

        processed_on = _now_ms()
        await self._redis.hset(self._key(job_id), "processed_on", processed_on)
        job = Job.from_hash(job_id, raw)
        job.processed_on = processed_on
        return job

    async def _owns(self, job: Job, token: str) -> bool:
        owner = await self._redis.get(self._key(job.id, "lock"))
        if owner is not None and owner != token:
            logger.warning(
                "realtime_queue.lock_lost", queue=self.name, job_id=job.id, owner=owner
            )
            return False
        return True

    async def complete(self, job: Job, token: str) -> None:
        if not await self._owns(job, token):
            return
        job.finished_on = _now_ms()
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.lrem(self.active_key, 0, job.id)
            pipe.delete(self._key(job.id, "lock"))
            pipe.hset(self._key(job.id), "finished_on", job.finished_on)
            pipe.zadd(self._key("completed"), {job.id: job.finished_on})
            await pipe.execute()
        await self._prune("completed", job.options.remove_on_complete)

    async def fail(self, job: Job, token: str, error: BaseException | str) -> bool:
        """Record a failed attempt. Returns True if the job was re-queued."""
        if not await self._owns(job, token):
            return False
        job.attempts_made = await self._redis.hincrby(self._key(job.id), "attempts_made", 1)
        job.failed_reason = str(error)

        if job.attempts_made < job.options.attempts:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.lrem(self.active_key, 0, job.id)
                pipe.delete(self._key(job.id, "lock"))
                pipe.rpush(self.wait_key, job.id)
                await pipe.execute()
            return True

        job.finished_on = _now_ms()
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.lrem(self.active_key, 0, job.id)
            pipe.delete(self._key(job.id, "lock"))
            pipe.hset(self._key(job.id), mapping={
                "finished_on": job.finished_on,
                "failed_reason": job.failed_reason,
            })
            pipe.zadd(self._key("failed"), {job.id: job.finished_on})
            await pipe.execute()
        await self._prune("failed", job.options.remove_on_fail)
        return False

    async def recover_stalled(self) -> list[str]:
        """Put active jobs whose lock expired back at the head of the queue."""
        recovered = []
        for job_id in await self._redis.lrange(self.active_key, 0, -1):
            if await self._redis.exists(self._key(job_id, "lock")):
                continue
            if await self._redis.lrem(self.active_key, 1, job_id):
                await self._redis.rpush(self.wait_key, job_id)
                recovered.append(job_id)
        if recovered:
            logger.warning("realtime_queue.stalled_recovered", queue=self.name, job_ids=recovered)
        return recovered

    # ── Retention ───────────────────────────────────────────

    async def _prune(self, state: str, keep: KeepJobs) -> int:
        key = self._key(state)
        cutoff = _now_ms() - keep.age * 1000
        expired = await self._redis.zrangebyscore(key, "-inf", cutoff)
        overflow = await self._redis.zrange(key, 0, -(keep.count + 1))
        doomed = set(expired) | set(overflow)
        if not doomed:
            return 0
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.zrem(key, *doomed)
            pipe.delete(*(self._key(job_id) for job_id in doomed))
            await pipe.execute()
        return len(doomed)

    # ── Inspection ──────────────────────────────────────────

    async def get_job(self, job_id: str) -> Optional[Job]:
        raw = await self._redis.hgetall(self._key(job_id))
        return Job.from_hash(job_id, raw) if raw else None

    async def counts(self) -> dict[str, int]:
        return {
            "wait": await self._redis.llen(self.wait_key),
            "active": await self._redis.llen(self.active_key),
            "completed": await self._redis.zcard(self._key("completed")),
            "failed": await self._redis.zcard(self._key("failed")),
        }

    def describe(self) -> dict[str, Any]:
        return {"name": self.name, "prefix": self.prefix}
