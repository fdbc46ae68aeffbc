from __future__ import annotations

import asyncio
import itertools
from datetime import datetime, timedelta

import pytest

from photobatch.domain.models import CANCELLED_ERROR, Job, JobStatus, JobSubmission
from photobatch.domain.templates import TemplateCatalog
from photobatch.exceptions import JobStateError, NotFoundError, ResourceError, ValidationError
from photobatch.repositories.job_repository import JobRepository
from photobatch.scheduler.messages import JobEventType
from photobatch.scheduler.scheduler import JobScheduler
from tests.mocks.workers import ControlledWorker, LateReportingWorker

TEMPLATE = "ecommerce-white-bg"


class TickingClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 5, 1, 8, 0, 0)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


def build_scheduler(
    session_factory, worker, *, max_concurrency: int = 1, image_store=None
) -> JobScheduler:
    ids = (f"job-{index}" for index in itertools.count(1))
    return JobScheduler(
        repository=JobRepository(session_factory),
        catalog=TemplateCatalog(),
        worker=worker,
        max_concurrency=max_concurrency,
        id_factory=lambda: next(ids),
        clock=TickingClock(),
        image_store=image_store,
    )


def submit(scheduler: JobScheduler, image_id: str = "img_a", **kwargs) -> Job:
    return scheduler.submit(JobSubmission(image_id=image_id, template_id=TEMPLATE, **kwargs))


async def wait_for(predicate, timeout: float = 2.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout=timeout)


def test_submit_validates_input(session_factory) -> None:
    scheduler = build_scheduler(session_factory, ControlledWorker())

    with pytest.raises(ValidationError):
        scheduler.submit(JobSubmission(image_id="", template_id=TEMPLATE))
    with pytest.raises(ValidationError):
        scheduler.submit(JobSubmission(image_id="img", template_id="unknown"))
    with pytest.raises(ValidationError):
        submit(scheduler, max_retries=-1)


def test_submit_persists_pending_job_with_template_params(session_factory) -> None:
    scheduler = build_scheduler(session_factory, ControlledWorker())

    job = submit(scheduler, priority=7)

    stored = JobRepository(session_factory).get(job.id)
    assert stored.status is JobStatus.PENDING
    assert stored.priority == 7
    assert stored.max_retries == 3
    assert stored.params.strength == 0.8


@pytest.mark.asyncio
async def test_higher_priority_job_runs_first(session_factory) -> None:
    worker = ControlledWorker()
    scheduler = build_scheduler(session_factory, worker)
    low = submit(scheduler, "img_a", priority=5)
    high = submit(scheduler, "img_b", priority=8)

    await scheduler.start()
    await scheduler.wait_idle(timeout=2)
    await scheduler.stop()

    assert worker.started == [high.id, low.id]


@pytest.mark.asyncio
async def test_equal_priority_runs_in_submission_order(session_factory) -> None:
    worker = ControlledWorker()
    scheduler = build_scheduler(session_factory, worker)
    jobs = [submit(scheduler, f"img_{index}") for index in range(4)]

    await scheduler.start()
    await scheduler.wait_idle(timeout=2)
    await scheduler.stop()

    assert worker.started == [job.id for job in jobs]


@pytest.mark.asyncio
async def test_concurrency_bound_is_respected(session_factory) -> None:
    worker = ControlledWorker()
    scheduler = build_scheduler(session_factory, worker, max_concurrency=2)
    await scheduler.start()
    jobs = [submit(scheduler, f"img_{index}") for index in range(5)]
    for job in jobs:
        worker.gate(job.id)

    await wait_for(lambda: len(worker.started) == 2)
    await asyncio.sleep(0.02)
    assert len(scheduler.active_job_ids) == 2

    for job in jobs:
        worker.gate(job.id).set()
    await scheduler.wait_idle(timeout=2)
    await scheduler.stop()

    assert worker.peak == 2
    assert all(scheduler.get(job.id).status is JobStatus.COMPLETED for job in jobs)


@pytest.mark.asyncio
async def test_completed_job_records_result_and_cost(session_factory) -> None:
    worker = ControlledWorker(cost=0.02)
    scheduler = build_scheduler(session_factory, worker)
    events = []
    scheduler.subscribe(events.append)
    await scheduler.start()

    job = submit(scheduler)
    await scheduler.wait_idle(timeout=2)
    await scheduler.stop()

    stored = scheduler.get(job.id)
    assert stored.status is JobStatus.COMPLETED
    assert stored.progress == 100
    assert stored.cost == 0.02
    assert stored.result.job_id == job.id
    assert stored.completed_at is not None
    assert [event.type for event in events][-1] is JobEventType.COMPLETED
    assert any(event.job.progress == 50 for event in events)
    assert scheduler.stats().total_cost == 0.02


@pytest.mark.asyncio
async def test_worker_exception_fails_job(session_factory) -> None:
    worker = ControlledWorker()
    scheduler = build_scheduler(session_factory, worker)
    await scheduler.start()
    worker.failures["job-1"] = "provider exploded"

    job = submit(scheduler)
    await scheduler.wait_idle(timeout=2)
    await scheduler.stop()

    stored = scheduler.get(job.id)
    assert stored.status is JobStatus.FAILED
    assert stored.error == "provider exploded"
    assert stored.result is None


@pytest.mark.asyncio
async def test_cancel_running_job_ignores_late_report(session_factory) -> None:
    worker = LateReportingWorker()
    scheduler = build_scheduler(session_factory, worker)
    await scheduler.start()
    job = submit(scheduler)
    worker.gate(job.id)
    await wait_for(lambda: job.id in scheduler.active_job_ids)

    assert scheduler.cancel(job.id) is True
    await asyncio.sleep(0.05)
    await scheduler.stop()

    stored = scheduler.get(job.id)
    assert stored.status is JobStatus.FAILED
    assert stored.error == CANCELLED_ERROR
    assert stored.result is None
    assert scheduler.cancel(job.id) is False
    assert scheduler.cancel("unknown") is False


def test_cancel_pending_job(session_factory) -> None:
    scheduler = build_scheduler(session_factory, ControlledWorker())
    job = submit(scheduler)

    assert scheduler.cancel(job.id) is True
    assert scheduler.get(job.id).error == CANCELLED_ERROR


@pytest.mark.asyncio
async def test_pause_holds_job_until_resume(session_factory) -> None:
    worker = ControlledWorker()
    scheduler = build_scheduler(session_factory, worker)
    await scheduler.start()
    job = submit(scheduler)
    gate = worker.gate(job.id)
    await wait_for(lambda: job.id in scheduler.active_job_ids)

    assert scheduler.pause(job.id) is True
    await asyncio.sleep(0.05)
    assert scheduler.get(job.id).status is JobStatus.PENDING
    assert scheduler.get(job.id).progress == 0
    assert worker.started == [job.id]
    assert scheduler.pause(job.id) is False

    assert scheduler.resume(job.id) is True
    await wait_for(lambda: len(worker.started) == 2)
    gate.set()
    await scheduler.wait_idle(timeout=2)
    await scheduler.stop()

    assert scheduler.get(job.id).status is JobStatus.COMPLETED


@pytest.mark.asyncio
async def test_retry_creates_new_job_with_incremented_count(session_factory) -> None:
    worker = ControlledWorker()
    scheduler = build_scheduler(session_factory, worker)
    await scheduler.start()
    worker.failures["job-1"] = "flaky"
    failed = submit(scheduler, max_retries=1)
    await scheduler.wait_idle(timeout=2)

    retried = scheduler.retry(failed.id)
    await scheduler.wait_idle(timeout=2)

    assert retried.id != failed.id
    assert retried.retry_count == 1
    assert scheduler.get(retried.id).status is JobStatus.COMPLETED
    with pytest.raises(JobStateError):
        scheduler.retry(retried.id)

    worker.failures["job-3"] = "flaky again"
    again = submit(scheduler, max_retries=0)
    await scheduler.wait_idle(timeout=2)
    await scheduler.stop()
    with pytest.raises(JobStateError):
        scheduler.retry(again.id)
    with pytest.raises(NotFoundError):
        scheduler.retry("missing")


@pytest.mark.asyncio
async def test_start_recovers_unfinished_jobs(session_factory) -> None:
    repo = JobRepository(session_factory)
    created = datetime(2026, 5, 1, 7, 0, 0)
    repo.save(Job(id="stuck", image_id="img_1", template_id=TEMPLATE, status=JobStatus.PROCESSING, progress=40, created_at=created))
    repo.save(Job(id="waiting", image_id="img_2", template_id=TEMPLATE, created_at=created))
    repo.save(Job(id="done", image_id="img_3", template_id=TEMPLATE, status=JobStatus.COMPLETED, created_at=created))
    worker = ControlledWorker()
    scheduler = build_scheduler(session_factory, worker)

    await scheduler.start()
    await scheduler.wait_idle(timeout=2)
    await scheduler.stop()

    assert sorted(worker.started) == ["stuck", "waiting"]
    assert repo.get("stuck").status is JobStatus.COMPLETED
    assert repo.get("done").status is JobStatus.COMPLETED


@pytest.mark.asyncio
async def test_stop_returns_running_jobs_to_pending(session_factory) -> None:
    worker = ControlledWorker()
    scheduler = build_scheduler(session_factory, worker)
    await scheduler.start()
    job = submit(scheduler)
    worker.gate(job.id)
    await wait_for(lambda: job.id in scheduler.active_job_ids)

    await scheduler.stop()

    assert JobRepository(session_factory).get(job.id).status is JobStatus.PENDING
    assert scheduler.running is False


@pytest.mark.asyncio
async def test_toggle_pause_holds_whole_queue(session_factory) -> None:
    worker = ControlledWorker()
    scheduler = build_scheduler(session_factory, worker)
    await scheduler.start()
    job = submit(scheduler)
    gate = worker.gate(job.id)
    await wait_for(lambda: job.id in scheduler.active_job_ids)

    assert scheduler.toggle_pause() is True
    extra = submit(scheduler, "img_b")
    await asyncio.sleep(0.05)
    assert scheduler.active_job_ids == []
    assert scheduler.stats().paused is True

    gate.set()
    assert scheduler.toggle_pause() is False
    await scheduler.wait_idle(timeout=2)
    await scheduler.stop()

    assert scheduler.get(job.id).status is JobStatus.COMPLETED
    assert scheduler.get(extra.id).status is JobStatus.COMPLETED


@pytest.mark.asyncio
async def test_delete_refuses_running_job(session_factory) -> None:
    worker = ControlledWorker()
    scheduler = build_scheduler(session_factory, worker)
    await scheduler.start()
    job = submit(scheduler)
    gate = worker.gate(job.id)
    await wait_for(lambda: job.id in scheduler.active_job_ids)

    with pytest.raises(JobStateError):
        scheduler.delete(job.id)

    gate.set()
    await scheduler.wait_idle(timeout=2)
    await scheduler.stop()
    assert scheduler.delete(job.id) is True
    assert scheduler.get(job.id) is None


@pytest.mark.asyncio
async def test_clear_finished_and_stats(session_factory) -> None:
    worker = ControlledWorker()
    scheduler = build_scheduler(session_factory, worker)
    await scheduler.start()
    worker.failures["job-2"] = "bad"
    submit(scheduler, "img_a")
    submit(scheduler, "img_b")
    await scheduler.wait_idle(timeout=2)
    await scheduler.stop()
    pending = submit(scheduler, "img_c")

    stats = scheduler.stats()
    assert (stats.total, stats.completed, stats.failed, stats.pending) == (3, 1, 1, 1)

    assert scheduler.clear_finished() == 2
    assert [job.id for job in scheduler.query()] == [pending.id]


def test_set_max_concurrency_clamps(session_factory) -> None:
    scheduler = build_scheduler(session_factory, ControlledWorker())

    assert scheduler.set_max_concurrency(0) == 1
    assert scheduler.set_max_concurrency(25) == 10
    assert scheduler.max_concurrency == 10


@pytest.mark.asyncio
async def test_cancel_abandons_running_attempt_and_its_outputs(session_factory, image_store, jpeg_bytes) -> None:
    worker = ControlledWorker()
    scheduler = build_scheduler(session_factory, worker, image_store=image_store)
    await scheduler.start()
    job = submit(scheduler, image_store.stage_bytes(jpeg_bytes))
    worker.gate(job.id)
    await wait_for(lambda: job.id in scheduler.active_job_ids)
    image_store.write_output(job.id, jpeg_bytes)

    assert scheduler.cancel(job.id) is True
    await scheduler.stop()

    assert worker.abandoned == [1]
    assert not image_store.output_path(job.id).exists()


@pytest.mark.asyncio
async def test_delete_removes_outputs_and_unshared_source(session_factory, image_store, jpeg_bytes) -> None:
    worker = ControlledWorker()
    scheduler = build_scheduler(session_factory, worker, image_store=image_store)
    await scheduler.start()
    image_id = image_store.stage_bytes(jpeg_bytes)
    first = submit(scheduler, image_id)
    second = submit(scheduler, image_id)
    await scheduler.wait_idle(timeout=2)
    await scheduler.stop()
    for job in (first, second):
        image_store.write_output(job.id, jpeg_bytes)

    assert scheduler.delete(first.id) is True
    assert not image_store.output_path(first.id).exists()
    assert image_store.output_path(second.id).exists()
    assert image_store.read_source(image_id) == jpeg_bytes

    assert scheduler.delete(second.id) is True
    assert not image_store.output_path(second.id).exists()
    with pytest.raises(ResourceError):
        image_store.source_path(image_id)


@pytest.mark.asyncio
async def test_clear_finished_keeps_source_of_pending_job(session_factory, image_store, jpeg_bytes) -> None:
    worker = ControlledWorker()
    scheduler = build_scheduler(session_factory, worker, image_store=image_store)
    await scheduler.start()
    shared = image_store.stage_bytes(jpeg_bytes)
    alone = image_store.stage_bytes(jpeg_bytes)
    done = submit(scheduler, shared)
    submit(scheduler, alone)
    await scheduler.wait_idle(timeout=2)
    await scheduler.stop()
    image_store.write_output(done.id, jpeg_bytes)
    pending = submit(scheduler, shared)

    assert scheduler.clear_finished() == 2

    assert not image_store.output_path(done.id).exists()
    assert image_store.read_source(shared) == jpeg_bytes
    with pytest.raises(ResourceError):
        image_store.source_path(alone)
    assert [job.id for job in scheduler.query()] == [pending.id]
