"""Job and queue control routes.

Handlers are ``async`` so scheduler operations run on the event loop that owns
the job state.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from ..domain.models import JobStatus, JobSubmission
from ..exceptions import NotFoundError
from ..scheduler.scheduler import JobScheduler
from .schemas import (
    ConcurrencyRequest,
    CountResult,
    JobResponse,
    JobStatsModel,
    JobSubmitRequest,
    OperationResult,
    QueueStateModel,
)
from .state import get_scheduler

router = APIRouter(prefix="/api/jobs", tags=["jobs"])
queue_router = APIRouter(prefix="/api/queue", tags=["queue"])


@router.post("", response_model=JobResponse, status_code=status.HTTP_201_CREATED)
async def submit_job(
    payload: JobSubmitRequest,
    scheduler: JobScheduler = Depends(get_scheduler),
) -> JobResponse:
    job = scheduler.submit(
        JobSubmission(
            image_id=payload.image_id,
            template_id=payload.template_id,
            priority=payload.priority,
            max_retries=payload.max_retries,
        )
    )
    return JobResponse.from_job(job)


@router.get("", response_model=list[JobResponse])
async def list_jobs(
    status_filter: JobStatus | None = Query(default=None, alias="status"),
    template_id: str | None = None,
    limit: int | None = Query(default=None, ge=1),
    scheduler: JobScheduler = Depends(get_scheduler),
) -> list[JobResponse]:
    jobs = scheduler.query(status=status_filter, template_id=template_id, limit=limit)
    return [JobResponse.from_job(job) for job in jobs]


@router.get("/stats", response_model=JobStatsModel)
async def job_stats(scheduler: JobScheduler = Depends(get_scheduler)) -> JobStatsModel:
    return JobStatsModel.from_stats(scheduler.stats())


@router.post("/clear-finished", response_model=CountResult)
async def clear_finished(scheduler: JobScheduler = Depends(get_scheduler)) -> CountResult:
    return CountResult(count=scheduler.clear_finished())


@router.get("/{job_id}", response_model=JobResponse)
async def read_job(job_id: str, scheduler: JobScheduler = Depends(get_scheduler)) -> JobResponse:
    job = scheduler.get(job_id)
    if job is None:
        raise NotFoundError(f"job '{job_id}' not found")
    return JobResponse.from_job(job)


@router.post("/{job_id}/pause", response_model=OperationResult)
async def pause_job(job_id: str, scheduler: JobScheduler = Depends(get_scheduler)) -> OperationResult:
    return OperationResult(ok=scheduler.pause(job_id))


@router.post("/{job_id}/resume", response_model=OperationResult)
async def resume_job(job_id: str, scheduler: JobScheduler = Depends(get_scheduler)) -> OperationResult:
    return OperationResult(ok=scheduler.resume(job_id))


@router.post("/{job_id}/cancel", response_model=OperationResult)
async def cancel_job(job_id: str, scheduler: JobScheduler = Depends(get_scheduler)) -> OperationResult:
    return OperationResult(ok=scheduler.cancel(job_id))


@router.post("/{job_id}/retry", response_model=JobResponse, status_code=status.HTTP_201_CREATED)
async def retry_job(job_id: str, scheduler: JobScheduler = Depends(get_scheduler)) -> JobResponse:
    return JobResponse.from_job(scheduler.retry(job_id))


@router.delete("/{job_id}", response_model=OperationResult)
async def delete_job(job_id: str, scheduler: JobScheduler = Depends(get_scheduler)) -> OperationResult:
    return OperationResult(ok=scheduler.delete(job_id))


@queue_router.get("", response_model=QueueStateModel)
async def queue_state(scheduler: JobScheduler = Depends(get_scheduler)) -> QueueStateModel:
    return QueueStateModel(paused=scheduler.paused, max_concurrency=scheduler.max_concurrency)


@queue_router.post("/toggle-pause", response_model=QueueStateModel)
async def toggle_pause(scheduler: JobScheduler = Depends(get_scheduler)) -> QueueStateModel:
    paused = scheduler.toggle_pause()
    return QueueStateModel(paused=paused, max_concurrency=scheduler.max_concurrency)


@queue_router.put("/concurrency", response_model=QueueStateModel)
async def set_concurrency(
    payload: ConcurrencyRequest,
    scheduler: JobScheduler = Depends(get_scheduler),
) -> QueueStateModel:
    value = scheduler.set_max_concurrency(payload.max_concurrency)
    return QueueStateModel(paused=scheduler.paused, max_concurrency=value)
