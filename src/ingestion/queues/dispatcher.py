"""Job dispatch.

`JobDispatcher` is the only seam the pipeline uses to schedule work. The
in-process implementation runs registered handlers on asyncio worker tasks with
per-queue concurrency limits and at-least-once retries.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel

from ..domain.errors import InvalidInputError
from ..observability.logger import get_logger
from .jobs import JobOptions, JobPayload

logger = get_logger(__name__)

JobHandler = Callable[[Any], Awaitable[Any]]


class JobDispatcher:
    async def enqueue(
        self,
        queue_name: str,
        job_name: str,
        payload: JobPayload,
        options: Optional[JobOptions] = None,
    ) -> str:  # pragma: no cover - interface
        raise NotImplementedError


@dataclass
class QueuedJob:
    id: str
    queue_name: str
    job_name: str
    data: dict
    options: JobOptions
    attempt: int = 1


@dataclass
class FailedJob:
    job: QueuedJob
    error: str


@dataclass
class _QueueState:
    handler: JobHandler
    payload_model: type[BaseModel]
    concurrency: int
    queue: "asyncio.Queue[QueuedJob]" = field(default_factory=asyncio.Queue)
    workers: list[asyncio.Task] = field(default_factory=list)


class InProcessDispatcher(JobDispatcher):
    """Asyncio worker pools keyed by queue name.

    Payloads are serialized to their wire form on enqueue and validated again
    before the handler runs, the same round trip a broker would impose.
    `retry_delay_scale` multiplies every backoff delay (tests use 0).
    """

    def __init__(self, *, retry_delay_scale: float = 1.0):
        self._queues: dict[str, _QueueState] = {}
        self._retry_delay_scale = max(0.0, float(retry_delay_scale))
        self._pending = 0
        self._idle = asyncio.Event()
        self._idle.set()
        self._retry_tasks: set[asyncio.Task] = set()
        self._started = False
        self.failed: list[FailedJob] = []

    def register(
        self,
        queue_name: str,
        handler: JobHandler,
        payload_model: type[BaseModel],
        *,
        concurrency: int = 1,
    ) -> None:
        if queue_name in self._queues:
            raise InvalidInputError("queue already registered", detail=queue_name)
        self._queues[queue_name] = _QueueState(
            handler=handler,
            payload_model=payload_model,
            concurrency=max(1, int(concurrency)),
        )
        if self._started:
            self._start_workers(queue_name, self._queues[queue_name])

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        for name, state in self._queues.items():
            self._start_workers(name, state)
        logger.info("dispatcher_started", queues=sorted(self._queues))

    def _start_workers(self, queue_name: str, state: _QueueState) -> None:
        for idx in range(state.concurrency):
            state.workers.append(
                asyncio.create_task(self._run_worker(queue_name, state), name=f"{queue_name}-worker-{idx}")
            )

    async def enqueue(
        self,
        queue_name: str,
        job_name: str,
        payload: JobPayload,
        options: Optional[JobOptions] = None,
    ) -> str:
        state = self._queues.get(queue_name)
        if state is None:
            raise InvalidInputError("unknown queue", detail=queue_name)
        job = QueuedJob(
            id=str(uuid.uuid4()),
            queue_name=queue_name,
            job_name=job_name,
            data=payload.to_wire(),
            options=options or JobOptions(),
        )
        self._pending += 1
        self._idle.clear()
        await state.queue.put(job)
        logger.debug("job_enqueued", queue=queue_name, job_name=job_name, job_id=job.id)
        return job.id

    async def _run_worker(self, queue_name: str, state: _QueueState) -> None:
        while True:
            job = await state.queue.get()
            try:
                await self._execute(state, job)
            finally:
                state.queue.task_done()

    async def _execute(self, state: _QueueState, job: QueuedJob) -> None:
        try:
            payload = state.payload_model.model_validate(job.data)
            await state.handler(payload)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if job.attempt < job.options.attempts:
                delay = job.options.delay_for(job.attempt) * self._retry_delay_scale
                logger.warning(
                    "job_retry_scheduled",
                    queue=job.queue_name,
                    job_name=job.job_name,
                    job_id=job.id,
                    attempt=job.attempt,
                    delay_s=delay,
                    error=str(e),
                )
                job.attempt += 1
                task = asyncio.create_task(self._requeue_later(state, job, delay))
                self._retry_tasks.add(task)
                task.add_done_callback(self._retry_tasks.discard)
                return
            logger.error(
                "job_failed",
                queue=job.queue_name,
                job_name=job.job_name,
                job_id=job.id,
                attempts=job.attempt,
                error=str(e),
                exc_info=True,
            )
            self.failed.append(FailedJob(job=job, error=str(e)))
            self._job_done()
            return

        logger.debug("job_completed", queue=job.queue_name, job_name=job.job_name, job_id=job.id)
        self._job_done()

    async def _requeue_later(self, state: _QueueState, job: QueuedJob, delay: float) -> None:
        if delay > 0:
            await asyncio.sleep(delay)
        await state.queue.put(job)

    def _job_done(self) -> None:
        self._pending -= 1
        if self._pending <= 0:
            self._pending = 0
            self._idle.set()

    async def drain(self, timeout: float | None = None) -> None:
        """Wait until every enqueued job (including follow-up jobs and retries) has finished."""
        await asyncio.wait_for(self._idle.wait(), timeout=timeout)

    async def close(self) -> None:
        tasks = list(self._retry_tasks)
        for state in self._queues.values():
            tasks.extend(state.workers)
            state.workers.clear()
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._started = False
        logger.info("dispatcher_closed")
