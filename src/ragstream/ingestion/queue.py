"""Job queues connecting the ingestion stages.

A :class:`JobQueue` owns the retry / dead-letter semantics; concrete
drivers only decide where jobs wait.  Delivery is at-least-once, so
stage handlers must be safe to repeat.

Drivers
-------
- :class:`InMemoryJobQueue`: asyncio tasks inside the current process.
- :class:`~ragstream.ingestion.redis_queue.RedisJobQueue`: durable,
  shared between processes.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable
from uuid import uuid4

from pydantic import BaseModel, Field

from ragstream.errors import ValidationError
from ragstream.ingestion.models import DocumentState
from ragstream.retry import RetryPolicy

logger = logging.getLogger(__name__)

_SOURCE_FIELDS = {"file_path", "filename", "mime_type"}


class JobStatus(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    DELAYED = "delayed"
    COMPLETED = "completed"
    FAILED = "failed"


class Job(BaseModel):
    """One unit of queued work for a single document."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    queue: str
    doc_id: str
    payload: dict[str, Any] = Field(default_factory=dict)
    max_attempts: int = 3
    backoff_seconds: float = 2.0
    backoff_factor: float = 2.0
    max_backoff_seconds: float = 60.0
    attempts_made: int = 0
    status: JobStatus = JobStatus.WAITING
    last_error: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_delay=self.backoff_seconds,
            factor=self.backoff_factor,
            max_delay=self.max_backoff_seconds,
        )


class QueueStats(BaseModel):
    waiting: int = 0
    active: int = 0
    delayed: int = 0
    completed: int = 0
    failed: int = 0


class DocumentStatus(BaseModel):
    """Pipeline state of one document plus where its upload is stored."""

    doc_id: str
    state: DocumentState
    detail: str = ""
    file_path: str = ""
    filename: str = ""
    mime_type: str = ""
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


JobHandler = Callable[[Job], Awaitable[None]]
CompletedCallback = Callable[[Job], Awaitable[None]]
FailedCallback = Callable[[Job, BaseException], Awaitable[None]]


@dataclass
class WorkerRegistration:
    handler: JobHandler
    concurrency: int = 1
    on_completed: CompletedCallback | None = None
    on_failed: FailedCallback | None = None


class JobQueue(ABC):
    """Driver-agnostic job queue with bounded retries.

    A job that raises is retried with exponential backoff until
    ``max_attempts`` is exhausted, then moved to the failed (dead-letter)
    state and the ``on_failed`` callback fires.  :class:`ValidationError`
    is never retried.

    Parameters
    ----------
    default_policy:
        Retry policy for jobs enqueued without an explicit one.
    """

    def __init__(self, default_policy: RetryPolicy | None = None) -> None:
        self.default_policy = default_policy or RetryPolicy()
        self._workers: dict[str, WorkerRegistration] = {}

    # -- public API -----------------------------------------------------------

    def register_worker(
        self,
        queue_name: str,
        handler: JobHandler,
        *,
        concurrency: int = 1,
        on_completed: CompletedCallback | None = None,
        on_failed: FailedCallback | None = None,
    ) -> None:
        """Attach *handler* to *queue_name*; takes effect on :meth:`start`."""
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self._workers[queue_name] = WorkerRegistration(handler, concurrency, on_completed, on_failed)

    async def enqueue(
        self,
        queue_name: str,
        doc_id: str,
        payload: dict[str, Any],
        policy: RetryPolicy | None = None,
    ) -> Job:
        policy = policy or self.default_policy
        job = Job(
            queue=queue_name,
            doc_id=doc_id,
            payload=payload,
            max_attempts=policy.max_attempts,
            backoff_seconds=policy.base_delay,
            backoff_factor=policy.factor,
            max_backoff_seconds=policy.max_delay,
        )
        await self._push(job)
        logger.info("Job added to %s: %s (doc %s)", queue_name, job.id, doc_id)
        return job

    @abstractmethod
    async def start(self) -> None:
        """Spawn the registered worker pools."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Stop workers; jobs not yet finished stay queued (durable drivers)."""
        ...

    @abstractmethod
    async def stats(self, queue_name: str) -> QueueStats:
        ...

    @abstractmethod
    async def failed_jobs(self, queue_name: str) -> list[Job]:
        ...

    @abstractmethod
    async def set_document_state(
        self, doc_id: str, state: DocumentState, detail: str = "", **source: str
    ) -> None:
        """Record *state*; ``source`` fields (``file_path``, ``filename``,
        ``mime_type``) are kept from earlier calls unless given again."""
        ...

    @abstractmethod
    async def get_document_state(self, doc_id: str) -> DocumentStatus | None:
        ...

    @abstractmethod
    async def clear_document_state(self, doc_id: str) -> None:
        ...

    # -- driver hooks ---------------------------------------------------------

    @abstractmethod
    async def _push(self, job: Job) -> None:
        ...

    @abstractmethod
    async def _schedule_retry(self, job: Job, delay: float) -> None:
        ...

    @abstractmethod
    async def _mark_completed(self, job: Job) -> None:
        ...

    @abstractmethod
    async def _mark_failed(self, job: Job) -> None:
        ...

    # -- shared processing ----------------------------------------------------

    async def _process(self, job: Job) -> None:
        """Run one attempt of *job* and record the outcome."""
        registration = self._workers[job.queue]
        job.attempts_made += 1
        job.status = JobStatus.ACTIVE
        try:
            await registration.handler(job)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            job.last_error = f"{type(exc).__name__}: {exc}"
            retryable = not isinstance(exc, ValidationError)
            if retryable and job.attempts_made < job.max_attempts:
                delay = job.retry_policy().delay_for(job.attempts_made)
                logger.warning(
                    "Job %s in queue %s failed (attempt %d/%d), retrying in %.1fs: %s",
                    job.id, job.queue, job.attempts_made, job.max_attempts, delay, exc,
                )
                job.status = JobStatus.DELAYED
                await self._schedule_retry(job, delay)
                return

            logger.error(
                "Job %s failed in queue %s after %d attempt(s): %s",
                job.id, job.queue, job.attempts_made, exc,
            )
            job.status = JobStatus.FAILED
            job.finished_at = datetime.now(timezone.utc)
            await self._mark_failed(job)
            if registration.on_failed is not None:
                await self._run_callback(registration.on_failed, job, exc)
            return

        job.status = JobStatus.COMPLETED
        job.finished_at = datetime.now(timezone.utc)
        await self._mark_completed(job)
        logger.info("Job %s completed in queue %s", job.id, job.queue)
        if registration.on_completed is not None:
            await self._run_callback(registration.on_completed, job)

    async def _run_callback(self, callback: Callable[..., Awaitable[None]], *args: Any) -> None:
        try:
            await callback(*args)
        except Exception:
            logger.exception("Job callback failed for job %s", args[0].id)


class InMemoryJobQueue(JobQueue):
    """Single-process driver built on :class:`asyncio.Queue`.

    Nothing survives a restart; use it for tests, notebooks and one-shot
    ingestion runs.  :meth:`wait_idle` blocks until every enqueued job
    (including retries and follow-up stages) has finished.
    """

    def __init__(self, default_policy: RetryPolicy | None = None) -> None:
        super().__init__(default_policy)
        self._queues: dict[str, asyncio.Queue[Job]] = defaultdict(asyncio.Queue)
        self._active: dict[str, int] = defaultdict(int)
        self._delayed: dict[str, int] = defaultdict(int)
        self._completed: dict[str, int] = defaultdict(int)
        self._failed: dict[str, list[Job]] = defaultdict(list)
        self._states: dict[str, DocumentStatus] = {}
        self._tasks: set[asyncio.Task[None]] = set()
        self._outstanding = 0
        self._idle = asyncio.Event()
        self._idle.set()

    async def start(self) -> None:
        for name, registration in self._workers.items():
            for _ in range(registration.concurrency):
                self._spawn(self._worker_loop(name))
        logger.info("Started in-memory workers for queues: %s", ", ".join(self._workers))

    async def close(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    async def wait_idle(self, timeout: float | None = None) -> None:
        """Wait until no job is waiting, running or scheduled for retry."""
        await asyncio.wait_for(self._idle.wait(), timeout)

    async def stats(self, queue_name: str) -> QueueStats:
        return QueueStats(
            waiting=self._queues[queue_name].qsize(),
            active=self._active[queue_name],
            delayed=self._delayed[queue_name],
            completed=self._completed[queue_name],
            failed=len(self._failed[queue_name]),
        )

    async def failed_jobs(self, queue_name: str) -> list[Job]:
        return list(self._failed[queue_name])

    async def set_document_state(
        self, doc_id: str, state: DocumentState, detail: str = "", **source: str
    ) -> None:
        previous = self._states.get(doc_id)
        fields = previous.model_dump(include=_SOURCE_FIELDS) if previous else {}
        fields.update(source)
        self._states[doc_id] = DocumentStatus(doc_id=doc_id, state=state, detail=detail, **fields)

    async def get_document_state(self, doc_id: str) -> DocumentStatus | None:
        return self._states.get(doc_id)

    async def clear_document_state(self, doc_id: str) -> None:
        self._states.pop(doc_id, None)

    # -- driver hooks ---------------------------------------------------------

    async def _push(self, job: Job) -> None:
        self._outstanding += 1
        self._idle.clear()
        self._queues[job.queue].put_nowait(job)

    async def _schedule_retry(self, job: Job, delay: float) -> None:
        self._delayed[job.queue] += 1
        self._spawn(self._requeue_later(job, delay))

    async def _mark_completed(self, job: Job) -> None:
        self._completed[job.queue] += 1
        self._finish()

    async def _mark_failed(self, job: Job) -> None:
        self._failed[job.queue].append(job)
        self._finish()

    # -- internals ------------------------------------------------------------

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _finish(self) -> None:
        self._outstanding -= 1
        if self._outstanding <= 0:
            self._outstanding = 0
            self._idle.set()

    async def _requeue_later(self, job: Job, delay: float) -> None:
        await asyncio.sleep(delay)
        self._delayed[job.queue] -= 1
        job.status = JobStatus.WAITING
        self._queues[job.queue].put_nowait(job)

    async def _worker_loop(self, queue_name: str) -> None:
        queue = self._queues[queue_name]
        while True:
            job = await queue.get()
            self._active[queue_name] += 1
            try:
                await self._process(job)
            finally:
                self._active[queue_name] -= 1
                queue.task_done()
