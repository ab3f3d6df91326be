"""Durable Redis driver for :class:`~ragstream.ingestion.queue.JobQueue`.

Key layout (``{p}`` is the configured prefix, ``{q}`` the queue name)::

    {p}:job:{id}         JSON job record
    {p}:{q}:wait         list of job ids ready to run (LPUSH / right-pop)
    {p}:{q}:processing   list of claimed job ids
    {p}:{q}:delayed      zset job id → epoch seconds when the retry is due
    {p}:{q}:failed       list of dead-lettered job ids
    {p}:{q}:completed    counter
    {p}:doc:{doc_id}     hash with the document's pipeline state

Jobs are claimed with ``BLMOVE wait → processing``.  A claimed id leaves
``processing`` only in the same MULTI/EXEC that records its outcome
(completed, delayed or failed), or that hands it back to ``wait`` after a
Redis error.  A cancelled worker leaves the id where it is, and anything
still in a processing list when workers start is moved back to ``wait``:
delivery is at-least-once across crashes and shutdowns.

Each worker promotes due retries from ``delayed`` before it blocks on
``wait``, so a backoff resolves within one ``poll_interval``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime

from pydantic import ValidationError as RecordError
import redis.asyncio as redis
from redis.exceptions import RedisError

from ragstream.ingestion.models import DocumentState
from ragstream.ingestion.queue import DocumentStatus, Job, JobQueue, JobStatus, QueueStats
from ragstream.retry import RetryPolicy

logger = logging.getLogger(__name__)

_FINISHED_JOB_TTL = 7 * 24 * 3600


class RedisJobQueue(JobQueue):
    """Job queue persisted in Redis.

    Parameters
    ----------
    client:
        ``redis.asyncio.Redis`` created with ``decode_responses=True``.
    prefix:
        Namespace for every key this queue touches.
    default_policy:
        Retry policy for jobs enqueued without an explicit one.
    poll_interval:
        Blocking timeout for claiming jobs, which bounds how late a due
        retry is picked up.  Also the pause after a Redis error.
    """

    def __init__(
        self,
        client: redis.Redis,
        *,
        prefix: str = "ragstream",
        default_policy: RetryPolicy | None = None,
        poll_interval: float = 1.0,
    ) -> None:
        super().__init__(default_policy)
        self._client = client
        self._prefix = prefix
        self._poll_interval = poll_interval
        self._tasks: list[asyncio.Task[None]] = []
        self._closing = False

    @classmethod
    def from_url(cls, url: str, **kwargs) -> RedisJobQueue:  # noqa: ANN003
        return cls(redis.from_url(url, decode_responses=True), **kwargs)

    # -- keys -----------------------------------------------------------------

    def _key(self, queue_name: str, kind: str) -> str:
        return f"{self._prefix}:{queue_name}:{kind}"

    def _job_key(self, job_id: str) -> str:
        return f"{self._prefix}:job:{job_id}"

    def _doc_key(self, doc_id: str) -> str:
        return f"{self._prefix}:doc:{doc_id}"

    # -- lifecycle ------------------------------------------------------------

    async def start(self) -> None:
        self._closing = False
        for name, registration in self._workers.items():
            recovered = await self._recover(name)
            if recovered:
                logger.warning("Re-queued %d unfinished job(s) in queue %s", recovered, name)
            for _ in range(registration.concurrency):
                task = asyncio.create_task(self._worker_loop(name), name=f"ragstream-worker:{name}")
                task.add_done_callback(self._on_worker_exit)
                self._tasks.append(task)
        logger.info("Started Redis workers for queues: %s", ", ".join(self._workers))

    async def close(self) -> None:
        """Stop the workers.  Jobs they were running stay in ``processing``."""
        self._closing = True
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        await self._client.aclose()
        logger.info("All queues and workers closed")

    async def run_once(self, queue_name: str) -> bool:
        """Promote due retries, then claim and process one job without blocking.

        Returns ``True`` when a job was processed.
        """
        await self._promote_due(queue_name)
        job_id = await self._client.lmove(
            self._key(queue_name, "wait"), self._key(queue_name, "processing"), "RIGHT", "LEFT"
        )
        if job_id is None:
            return False
        await self._handle_claimed(queue_name, job_id)
        return True

    # -- inspection -----------------------------------------------------------

    async def stats(self, queue_name: str) -> QueueStats:
        pipe = self._client.pipeline()
        pipe.llen(self._key(queue_name, "wait"))
        pipe.llen(self._key(queue_name, "processing"))
        pipe.zcard(self._key(queue_name, "delayed"))
        pipe.get(self._key(queue_name, "completed"))
        pipe.llen(self._key(queue_name, "failed"))
        waiting, active, delayed, completed, failed = await pipe.execute()
        return QueueStats(
            waiting=waiting,
            active=active,
            delayed=delayed,
            completed=int(completed or 0),
            failed=failed,
        )

    async def failed_jobs(self, queue_name: str) -> list[Job]:
        ids = await self._client.lrange(self._key(queue_name, "failed"), 0, -1)
        jobs = [await self._load(job_id) for job_id in ids]
        return [job for job in jobs if job is not None]

    async def set_document_state(
        self, doc_id: str, state: DocumentState, detail: str = "", **source: str
    ) -> None:
        status = DocumentStatus(doc_id=doc_id, state=state, detail=detail)
        # HSET merges, so source fields written earlier survive.
        await self._client.hset(
            self._doc_key(doc_id),
            mapping={
                "state": status.state.value,
                "detail": detail,
                "updated_at": status.updated_at.isoformat(),
                **source,
            },
        )

    async def get_document_state(self, doc_id: str) -> DocumentStatus | None:
        data = await self._client.hgetall(self._doc_key(doc_id))
        if not data:
            return None
        return DocumentStatus(
            doc_id=doc_id,
            state=DocumentState(data["state"]),
            detail=data.get("detail", ""),
            file_path=data.get("file_path", ""),
            filename=data.get("filename", ""),
            mime_type=data.get("mime_type", ""),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )

    async def clear_document_state(self, doc_id: str) -> None:
        await self._client.delete(self._doc_key(doc_id))

    # -- driver hooks ---------------------------------------------------------
    # Outcome hooks write the record, file the id and release the claim
    # atomically.

    async def _push(self, job: Job) -> None:
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.set(self._job_key(job.id), job.model_dump_json())
            pipe.lpush(self._key(job.queue, "wait"), job.id)
            await pipe.execute()

    async def _schedule_retry(self, job: Job, delay: float) -> None:
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.set(self._job_key(job.id), job.model_dump_json())
            pipe.zadd(self._key(job.queue, "delayed"), {job.id: time.time() + delay})
            pipe.lrem(self._key(job.queue, "processing"), 1, job.id)
            await pipe.execute()

    async def _mark_completed(self, job: Job) -> None:
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.set(self._job_key(job.id), job.model_dump_json(), ex=_FINISHED_JOB_TTL)
            pipe.incr(self._key(job.queue, "completed"))
            pipe.lrem(self._key(job.queue, "processing"), 1, job.id)
            await pipe.execute()

    async def _mark_failed(self, job: Job) -> None:
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.set(self._job_key(job.id), job.model_dump_json())
            pipe.lpush(self._key(job.queue, "failed"), job.id)
            pipe.lrem(self._key(job.queue, "processing"), 1, job.id)
            await pipe.execute()

    # -- internals ------------------------------------------------------------

    async def _load(self, job_id: str) -> Job | None:
        raw = await self._client.get(self._job_key(job_id))
        if raw is None:
            return None
        try:
            return Job.model_validate_json(raw)
        except RecordError:
            logger.error("Unreadable job record %s", job_id, exc_info=True)
            return None

    async def _recover(self, queue_name: str) -> int:
        moved = 0
        while await self._client.lmove(
            self._key(queue_name, "processing"), self._key(queue_name, "wait"), "LEFT", "RIGHT"
        ):
            moved += 1
        return moved

    async def _promote_due(self, queue_name: str) -> None:
        delayed = self._key(queue_name, "delayed")
        due = await self._client.zrangebyscore(delayed, 0, time.time())
        for job_id in due:
            # Only the caller that wins the ZREM moves the job.
            if await self._client.zrem(delayed, job_id):
                await self._client.lpush(self._key(queue_name, "wait"), job_id)

    async def _release(self, queue_name: str, job_id: str) -> None:
        """Hand a claimed job back to ``wait`` after an infrastructure error."""
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.lrem(self._key(queue_name, "processing"), 1, job_id)
                pipe.lpush(self._key(queue_name, "wait"), job_id)
                await pipe.execute()
        except RedisError:
            logger.error(
                "Could not re-queue job %s in queue %s; it is recovered on the next start",
                job_id, queue_name, exc_info=True,
            )

    async def _worker_loop(self, queue_name: str) -> None:
        wait, processing = self._key(queue_name, "wait"), self._key(queue_name, "processing")
        while not self._closing:
            job_id = None
            try:
                await self._promote_due(queue_name)
                job_id = await self._client.blmove(wait, processing, self._poll_interval, "RIGHT", "LEFT")
                if job_id is not None:
                    await self._handle_claimed(queue_name, job_id)
            except RedisError:
                logger.error("Redis error in queue %s (job %s)", queue_name, job_id, exc_info=True)
                if job_id is not None:
                    await self._release(queue_name, job_id)
                await asyncio.sleep(self._poll_interval)

    async def _handle_claimed(self, queue_name: str, job_id: str) -> None:
        job = await self._load(job_id)
        if job is None:
            logger.warning("Dropping unknown job id %s from queue %s", job_id, queue_name)
            await self._client.lrem(self._key(queue_name, "processing"), 1, job_id)
            return
        job.status = JobStatus.ACTIVE
        await self._client.set(self._job_key(job.id), job.model_dump_json())
        await self._process(job)

    def _on_worker_exit(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Queue worker %s stopped unexpectedly", task.get_name(), exc_info=exc)
