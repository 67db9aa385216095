from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from pipe_runtime.engine.errors import PipeExecutionError
from pipe_runtime.engine.executor import PipeExecutor, PipeInput
from pipe_runtime.engine.models import ExecutionContext, ExecutionResult, PipeDefinition
from pipe_runtime.orchestration.retry_policy import RunRetryPolicy
from pipe_runtime.orchestration.sync import run_with_timeout
from pipe_runtime.settings import AppSettings


LOGGER = logging.getLogger(__name__)

JobStatus = Literal["pending", "running", "completed", "failed"]


@dataclass(slots=True)
class ExecutionJob:
    job_id: str
    definition: PipeDefinition
    context: ExecutionContext | None = None
    target_node_id: str | None = None
    status: JobStatus = "pending"
    attempts: int = 0
    result: ExecutionResult | None = None
    error: Exception | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now().astimezone())
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def done(self) -> bool:
        return self.status in {"completed", "failed"}

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "jobId": self.job_id,
            "status": self.status,
            "attempts": self.attempts,
            "createdAt": self.created_at.isoformat(),
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
        }
        if self.target_node_id is not None:
            payload["targetNodeId"] = self.target_node_id
        if self.result is not None:
            payload["result"] = self.result.to_dict()
        if isinstance(self.error, PipeExecutionError):
            payload["error"] = self.error.to_dict()
        elif self.error is not None:
            payload["error"] = {"kind": "internal_error", "error": str(self.error)}
        return payload


class ExecutionQueue:
    """In-process queue running pipes in the background with whole-run retries."""

    def __init__(
        self,
        executor: PipeExecutor,
        *,
        max_attempts: int = 3,
        backoff_seconds: float = 2.0,
        workers: int = 1,
        retry_policy: RunRetryPolicy | None = None,
        job_timeout_seconds: float | None = None,
        retain_completed: int = 100,
        retain_failed: int = 200,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self._executor = executor
        self._max_attempts = max(1, int(max_attempts))
        self._workers = max(1, int(workers))
        self._retry_policy = retry_policy or RunRetryPolicy(backoff_seconds=backoff_seconds)
        self._job_timeout_seconds = job_timeout_seconds
        self._retain = {"completed": max(0, retain_completed), "failed": max(0, retain_failed)}
        self._sleep = sleep

        self._jobs: dict[str, ExecutionJob] = {}
        self._finished: dict[str, asyncio.Event] = {}
        self._pending: asyncio.Queue[str] | None = None
        self._tasks: list[asyncio.Task[None]] = []

    @classmethod
    def from_settings(cls, executor: PipeExecutor, settings: AppSettings, **overrides: Any) -> ExecutionQueue:
        options: dict[str, Any] = {
            "max_attempts": settings.queue_max_attempts,
            "backoff_seconds": settings.queue_backoff_seconds,
            "workers": settings.queue_workers,
        }
        options.update(overrides)
        return cls(executor, **options)

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    async def start(self) -> None:
        if self._tasks:
            return
        pending: asyncio.Queue[str] = asyncio.Queue()
        self._pending = pending
        self._tasks = [
            asyncio.create_task(self._worker(index, pending), name=f"pipe-queue-worker-{index}")
            for index in range(self._workers)
        ]
        LOGGER.debug("Execution queue started with %d workers", self._workers)

    async def close(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def __aenter__(self) -> ExecutionQueue:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def enqueue(
        self,
        definition: PipeInput,
        *,
        context: ExecutionContext | None = None,
        target_node_id: str | None = None,
    ) -> str:
        if self._pending is None or not self._tasks:
            raise RuntimeError("ExecutionQueue is not running. Call start() first.")

        job = ExecutionJob(
            job_id=uuid.uuid4().hex,
            definition=PipeDefinition.coerce(definition),
            context=context,
            target_node_id=target_node_id,
        )
        self._jobs[job.job_id] = job
        self._finished[job.job_id] = asyncio.Event()
        self._pending.put_nowait(job.job_id)
        return job.job_id

    def get(self, job_id: str) -> ExecutionJob | None:
        return self._jobs.get(job_id)

    def list_jobs(self, status: JobStatus | None = None) -> list[ExecutionJob]:
        return [job for job in self._jobs.values() if status is None or job.status == status]

    async def wait(self, job_id: str, timeout: float | None = None) -> ExecutionJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise KeyError(f"Job '{job_id}' was not found.")
        if not job.done:
            await asyncio.wait_for(self._finished[job_id].wait(), timeout=timeout)
        return job

    async def _worker(self, index: int, pending: asyncio.Queue[str]) -> None:
        while True:
            job_id = await pending.get()
            try:
                job = self._jobs.get(job_id)
                if job is not None:
                    await self._process(job)
            except Exception:  # noqa: BLE001
                LOGGER.exception("Worker %d crashed while processing job %s", index, job_id)
            finally:
                pending.task_done()

    async def _process(self, job: ExecutionJob) -> None:
        job.status = "running"
        job.started_at = datetime.now().astimezone()

        while True:
            job.attempts += 1
            try:
                result = await self._run_once(job)
            except Exception as exc:  # noqa: BLE001
                decision = self._retry_policy.decide(exc, job.attempts, self._max_attempts)
                if decision.action == "retry":
                    LOGGER.warning(
                        "Job %s attempt %d failed: %s (%s) retrying in %.1fs",
                        job.job_id,
                        job.attempts,
                        exc,
                        decision.reason,
                        decision.delay_seconds,
                    )
                    await self._sleep(decision.delay_seconds)
                    continue
                LOGGER.error("Job %s failed after %d attempt(s): %s", job.job_id, job.attempts, exc)
                job.status = "failed"
                job.error = exc
                break
            job.status = "completed"
            job.result = result
            job.error = None
            break

        job.finished_at = datetime.now().astimezone()
        self._finished[job.job_id].set()
        self._prune(job.status)

    async def _run_once(self, job: ExecutionJob) -> ExecutionResult:
        if self._job_timeout_seconds is not None:
            return await run_with_timeout(
                self._executor,
                job.definition,
                timeout_seconds=self._job_timeout_seconds,
                context=job.context,
                target_node_id=job.target_node_id,
            )
        if job.target_node_id is not None:
            return await self._executor.execute_selected(job.definition, job.target_node_id, job.context)
        return await self._executor.execute_with_details(job.definition, job.context)

    def _prune(self, status: JobStatus) -> None:
        limit = self._retain.get(status)
        if limit is None:
            return
        finished = [job_id for job_id, job in self._jobs.items() if job.status == status]
        for job_id in finished[: max(0, len(finished) - limit)]:
            self._jobs.pop(job_id, None)
            self._finished.pop(job_id, None)
