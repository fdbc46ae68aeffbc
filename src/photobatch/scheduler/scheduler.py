"""Durable priority job queue with a bounded pool of asyncio workers.

All job state changes happen on the event loop: public operations run there
directly and workers report back through an ``asyncio.Queue`` drained by a
single consumer task. Messages from a superseded attempt (a job that was
paused, cancelled or restarted meanwhile) are dropped.

Ready jobs are kept in a heap ordered by ``(priority desc, created_at asc,
submission order)``; removed jobs are skipped lazily when popped.
"""

from __future__ import annotations

import asyncio
import dataclasses
import heapq
import inspect
import itertools
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import uuid4

from ..config import clamp_concurrency
from ..domain.models import (
    CANCELLED_ERROR,
    TERMINAL_STATUSES,
    Job,
    JobStats,
    JobStatus,
    JobSubmission,
    TemplateParams,
)
from ..domain.templates import TemplateCatalog
from ..exceptions import JobStateError, NotFoundError, ValidationError
from ..media.image_store import ImageStore
from ..repositories.job_repository import JobRepository
from .messages import (
    CompletedMessage,
    FailedMessage,
    JobEvent,
    JobEventType,
    ProgressMessage,
    WorkerMessage,
)
from .worker import JobWorker

logger = logging.getLogger(__name__)

Listener = Callable[[JobEvent], Any]

RECOVERABLE_STATUSES = (JobStatus.PENDING, JobStatus.RETRYING, JobStatus.PROCESSING)


@dataclass(slots=True)
class _Running:
    task: asyncio.Task[None]
    attempt: int


class JobScheduler:
    def __init__(
        self,
        *,
        repository: JobRepository,
        catalog: TemplateCatalog,
        worker: JobWorker,
        max_concurrency: int = 3,
        default_priority: int = 5,
        default_max_retries: int = 3,
        id_factory: Callable[[], str] = lambda: uuid4().hex,
        clock: Callable[[], datetime] = datetime.utcnow,
        image_store: ImageStore | None = None,
    ) -> None:
        self._repo = repository
        self._image_store = image_store
        self._catalog = catalog
        self._worker = worker
        self._max_concurrency = clamp_concurrency(max_concurrency)
        self._default_priority = default_priority
        self._default_max_retries = default_max_retries
        self._id_factory = id_factory
        self._clock = clock

        self._jobs: dict[str, Job] = {}
        self._ready: list[tuple[int, datetime, int, str]] = []
        self._queued: set[str] = set()
        self._held: set[str] = set()
        self._active: dict[str, _Running] = {}
        self._seq = itertools.count()
        self._attempts = itertools.count(1)
        self._listeners: list[Listener] = []
        self._callbacks: set[asyncio.Future[Any]] = set()
        self._inbox: asyncio.Queue[WorkerMessage] | None = None
        self._consumer: asyncio.Task[None] | None = None
        self._running = False
        self._paused_all = False

    # lifecycle ----------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._running

    @property
    def max_concurrency(self) -> int:
        return self._max_concurrency

    @property
    def paused(self) -> bool:
        return self._paused_all

    @property
    def active_job_ids(self) -> list[str]:
        return list(self._active)

    async def start(self) -> None:
        """Recover unfinished jobs and begin dispatching."""
        if self._running:
            return
        recovered = 0
        for job in self._repo.list_by_status(RECOVERABLE_STATUSES):
            if job.id in self._jobs:
                # submitted before start or requeued by stop
                continue
            if job.status is not JobStatus.PENDING:
                job.reset_to_pending()
                self._repo.save(job)
            self._jobs[job.id] = job
            self._enqueue(job)
            recovered += 1
        self._inbox = asyncio.Queue()
        self._consumer = asyncio.create_task(self._consume(), name="photobatch-scheduler")
        self._running = True
        logger.info(
            "scheduler.started",
            extra={"recovered": recovered, "max_concurrency": self._max_concurrency},
        )
        self._dispatch()

    async def stop(self) -> None:
        """Cancel in-flight workers; their jobs stay pending for the next start."""
        if not self._running:
            return
        self._running = False
        running = list(self._active.items())
        self._active.clear()
        for job_id, entry in running:
            self._interrupt(job_id, entry)
            job = self._jobs.get(job_id)
            if job is not None:
                job.reset_to_pending()
                self._repo.save(job)
                self._enqueue(job)
        tasks = [entry.task for _, entry in running]
        if self._consumer is not None:
            self._consumer.cancel()
            tasks.append(self._consumer)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._consumer = None
        self._inbox = None
        logger.info("scheduler.stopped", extra={"interrupted": len(running)})

    async def wait_idle(self, timeout: float | None = None, poll_interval: float = 0.01) -> None:
        """Wait until nothing is running and nothing dispatchable is queued."""

        async def _wait() -> None:
            while not self._is_idle():
                await asyncio.sleep(poll_interval)

        await asyncio.wait_for(_wait(), timeout=timeout)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # operations ---------------------------------------------------------

    def submit(self, submission: JobSubmission) -> Job:
        if not submission.image_id:
            raise ValidationError("image_id is required")
        if not submission.template_id:
            raise ValidationError("template_id is required")
        if not self._catalog.exists(submission.template_id):
            raise ValidationError(f"unknown template '{submission.template_id}'")
        template = self._catalog.get(submission.template_id)
        max_retries = (
            self._default_max_retries if submission.max_retries is None else submission.max_retries
        )
        if max_retries < 0:
            raise ValidationError("max_retries must not be negative")
        job = Job(
            id=self._id_factory(),
            image_id=submission.image_id,
            template_id=submission.template_id,
            priority=self._default_priority if submission.priority is None else submission.priority,
            created_at=self._clock(),
            max_retries=max_retries,
            params=TemplateParams.from_dict(template.params.to_dict()),
        )
        return self._accept(job)

    def get(self, job_id: str) -> Job | None:
        job = self._jobs.get(job_id)
        if job is not None:
            return dataclasses.replace(job)
        return self._repo.get(job_id)

    def query(
        self,
        *,
        status: JobStatus | None = None,
        template_id: str | None = None,
        limit: int | None = None,
    ) -> list[Job]:
        return self._repo.query(status=status, template_id=template_id, limit=limit)

    def pause(self, job_id: str) -> bool:
        entry = self._active.pop(job_id, None)
        if entry is None:
            return False
        self._interrupt(job_id, entry)
        job = self._jobs[job_id]
        job.reset_to_pending()
        self._held.add(job_id)
        self._repo.save(job)
        logger.info("scheduler.job.paused", extra={"job_id": job_id})
        self._emit(JobEventType.PROGRESS, job)
        self._dispatch()
        return True

    def resume(self, job_id: str) -> bool:
        job = self._jobs.get(job_id) or self._repo.get(job_id)
        if job is None or job.status is JobStatus.PROCESSING:
            return False
        job.reset_to_pending()
        self._held.discard(job_id)
        self._jobs[job_id] = job
        self._repo.save(job)
        self._enqueue(job)
        logger.info("scheduler.job.resumed", extra={"job_id": job_id})
        self._emit(JobEventType.PROGRESS, job)
        self._dispatch()
        return True

    def cancel(self, job_id: str) -> bool:
        job = self._jobs.get(job_id)
        if job is None:
            return False
        entry = self._active.pop(job_id, None)
        if entry is not None:
            self._interrupt(job_id, entry)
        self._queued.discard(job_id)
        self._held.discard(job_id)
        job.status = JobStatus.FAILED
        job.error = CANCELLED_ERROR
        job.result = None
        job.completed_at = self._clock()
        self._repo.save(job)
        del self._jobs[job_id]
        logger.info("scheduler.job.cancelled", extra={"job_id": job_id, "was_running": entry is not None})
        self._emit(JobEventType.FAILED, job)
        self._dispatch()
        return True

    def retry(self, job_id: str) -> Job:
        """Resubmit a failed job as a new job with ``retry_count + 1``."""
        source = self.get(job_id)
        if source is None:
            raise NotFoundError(f"job '{job_id}' not found")
        if source.status is not JobStatus.FAILED:
            raise JobStateError(f"job '{job_id}' is not failed")
        if source.retry_count >= source.max_retries:
            raise JobStateError(f"job '{job_id}' exhausted its {source.max_retries} retries")
        job = Job(
            id=self._id_factory(),
            image_id=source.image_id,
            template_id=source.template_id,
            priority=source.priority,
            created_at=self._clock(),
            retry_count=source.retry_count + 1,
            max_retries=source.max_retries,
            params=TemplateParams.from_dict(source.params.to_dict()),
            content_hash=source.content_hash,
        )
        logger.info("scheduler.job.retry", extra={"job_id": job.id, "source_job_id": job_id})
        return self._accept(job)

    def delete(self, job_id: str) -> bool:
        if job_id in self._active:
            raise JobStateError(f"job '{job_id}' is processing")
        job = self._jobs.pop(job_id, None) or self._repo.get(job_id)
        self._queued.discard(job_id)
        self._held.discard(job_id)
        removed = self._repo.delete(job_id)
        if job is not None:
            self._release_files(job)
        return removed

    def clear_finished(self) -> int:
        finished = {job.id: job for job in self._repo.list_by_status(TERMINAL_STATUSES)}
        removed = self._repo.delete_terminal()
        for job_id in removed:
            self._jobs.pop(job_id, None)
            job = finished.get(job_id)
            if job is not None:
                self._release_files(job)
        logger.info("scheduler.cleared", extra={"removed": len(removed)})
        return len(removed)

    def stats(self) -> JobStats:
        counts = self._repo.count_by_status()
        return JobStats(
            total=sum(counts.values()),
            pending=counts.get(str(JobStatus.PENDING), 0),
            processing=counts.get(str(JobStatus.PROCESSING), 0),
            completed=counts.get(str(JobStatus.COMPLETED), 0),
            failed=counts.get(str(JobStatus.FAILED), 0),
            retrying=counts.get(str(JobStatus.RETRYING), 0),
            total_cost=self._repo.total_cost(),
            paused=self._paused_all,
            max_concurrency=self._max_concurrency,
        )

    def pause_all(self) -> int:
        """Hold the whole queue; running jobs return to pending."""
        self._paused_all = True
        interrupted = list(self._active.items())
        self._active.clear()
        for job_id, entry in interrupted:
            self._interrupt(job_id, entry)
            job = self._jobs[job_id]
            job.reset_to_pending()
            self._repo.save(job)
            self._enqueue(job)
            self._emit(JobEventType.PROGRESS, job)
        logger.info("scheduler.paused", extra={"interrupted": len(interrupted)})
        return len(interrupted)

    def resume_all(self) -> None:
        self._paused_all = False
        logger.info("scheduler.resumed")
        self._dispatch()

    def toggle_pause(self) -> bool:
        """Flip the queue-wide hold and return the new paused state."""
        if self._paused_all:
            self.resume_all()
        else:
            self.pause_all()
        return self._paused_all

    def set_max_concurrency(self, value: int) -> int:
        self._max_concurrency = clamp_concurrency(value)
        logger.info("scheduler.concurrency.changed", extra={"max_concurrency": self._max_concurrency})
        self._dispatch()
        return self._max_concurrency

    # internals ----------------------------------------------------------

    def _accept(self, job: Job) -> Job:
        self._repo.save(job)
        self._jobs[job.id] = job
        self._enqueue(job)
        logger.info(
            "scheduler.job.submitted",
            extra={"job_id": job.id, "template_id": job.template_id, "priority": job.priority},
        )
        self._dispatch()
        return dataclasses.replace(job)

    def _interrupt(self, job_id: str, entry: _Running) -> None:
        entry.task.cancel()
        # a thread of the cancelled attempt may still be writing files
        self._worker.abandon(entry.attempt)
        if self._image_store is not None:
            self._image_store.remove_outputs(job_id)

    def _release_files(self, job: Job) -> None:
        if self._image_store is None:
            return
        self._image_store.remove_outputs(job.id)
        if not self._repo.image_in_use(job.image_id):
            self._image_store.remove_staged(job.image_id)
        logger.debug("scheduler.files.released", extra={"job_id": job.id, "image_id": job.image_id})

    def _enqueue(self, job: Job) -> None:
        heapq.heappush(self._ready, (-job.priority, job.created_at, next(self._seq), job.id))
        self._queued.add(job.id)

    def _pop_ready(self) -> Job | None:
        while self._ready:
            _, _, _, job_id = heapq.heappop(self._ready)
            if job_id not in self._queued or job_id in self._held:
                continue
            self._queued.discard(job_id)
            job = self._jobs.get(job_id)
            if job is None or job.status is not JobStatus.PENDING:
                continue
            return job
        return None

    def _has_dispatchable(self) -> bool:
        return any(job_id not in self._held for job_id in self._queued)

    def _is_idle(self) -> bool:
        if self._active:
            return False
        if self._inbox is not None and not self._inbox.empty():
            return False
        if not self._running or self._paused_all:
            return True
        return not self._has_dispatchable()

    def _dispatch(self) -> None:
        if not self._running or self._paused_all:
            return
        while len(self._active) < self._max_concurrency:
            job = self._pop_ready()
            if job is None:
                break
            self._start_job(job)

    def _start_job(self, job: Job) -> None:
        job.status = JobStatus.PROCESSING
        job.started_at = self._clock()
        job.completed_at = None
        job.progress = 0
        job.error = None
        job.result = None
        self._repo.save(job)
        attempt = next(self._attempts)
        task = asyncio.create_task(
            self._run_worker(dataclasses.replace(job), attempt),
            name=f"photobatch-job-{job.id}",
        )
        self._active[job.id] = _Running(task=task, attempt=attempt)
        logger.info("scheduler.job.started", extra={"job_id": job.id, "attempt": attempt})
        self._emit(JobEventType.PROGRESS, job)

    async def _run_worker(self, job: Job, attempt: int) -> None:
        inbox = self._inbox
        if inbox is None:
            return
        try:
            await self._worker.run(job, attempt, inbox.put_nowait)
        except asyncio.CancelledError:
            logger.info("scheduler.worker.cancelled", extra={"job_id": job.id, "attempt": attempt})
            raise
        except Exception as exc:
            logger.warning(
                "scheduler.worker.failed",
                extra={"job_id": job.id, "attempt": attempt, "error": str(exc)},
                exc_info=True,
            )
            inbox.put_nowait(FailedMessage(job.id, attempt, str(exc) or exc.__class__.__name__))

    async def _consume(self) -> None:
        assert self._inbox is not None
        inbox = self._inbox
        while True:
            message = await inbox.get()
            try:
                self._apply(message)
            except Exception:
                logger.exception("scheduler.message.apply_failed", extra={"job_id": message.job_id})
            finally:
                inbox.task_done()

    def _apply(self, message: WorkerMessage) -> None:
        entry = self._active.get(message.job_id)
        if entry is None or entry.attempt != message.attempt:
            logger.debug(
                "scheduler.message.stale",
                extra={"job_id": message.job_id, "attempt": message.attempt},
            )
            return
        job = self._jobs[message.job_id]

        if isinstance(message, ProgressMessage):
            job.progress = max(0, min(100, message.percent))
            if message.content_hash:
                job.content_hash = message.content_hash
            self._repo.save(job)
            self._emit(JobEventType.PROGRESS, job)
            return

        del self._active[message.job_id]
        job.completed_at = self._clock()
        if isinstance(message, CompletedMessage):
            job.status = JobStatus.COMPLETED
            job.progress = 100
            job.result = message.result
            job.error = None
            job.cost += message.cost
            event = JobEventType.COMPLETED
            logger.info("scheduler.job.completed", extra={"job_id": job.id, "cost": message.cost})
        else:
            job.status = JobStatus.FAILED
            job.result = None
            job.error = message.error
            event = JobEventType.FAILED
            logger.info("scheduler.job.failed", extra={"job_id": job.id, "error": message.error})
        self._repo.save(job)
        del self._jobs[job.id]
        self._emit(event, job)
        self._dispatch()

    def _emit(self, event_type: JobEventType, job: Job) -> None:
        event = JobEvent(type=event_type, job=dataclasses.replace(job))
        for listener in list(self._listeners):
            try:
                outcome = listener(event)
                if inspect.isawaitable(outcome):
                    future = asyncio.ensure_future(outcome)
                    self._callbacks.add(future)
                    future.add_done_callback(self._callbacks.discard)
            except Exception:
                logger.exception("scheduler.listener.failed", extra={"event": str(event_type)})
