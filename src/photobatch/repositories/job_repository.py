"""Persistence layer for jobs."""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from ..db.db_models import JobModel
from ..domain.models import (
    TERMINAL_STATUSES,
    Job,
    JobStatus,
    ProcessingResult,
    TemplateParams,
)
from ..exceptions import handle_sqlalchemy_errors


class JobRepository:
    """Manage ``tasks`` records."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def save(self, job: Job) -> None:
        """Insert or fully overwrite the job row."""
        with handle_sqlalchemy_errors(entity="job"), self._session_factory() as session:
            model = session.get(JobModel, job.id)
            if model is None:
                model = JobModel(id=job.id)
            _apply(model, job)
            session.add(model)
            session.commit()

    def get(self, job_id: str) -> Job | None:
        with handle_sqlalchemy_errors(entity="job"), self._session_factory() as session:
            model = session.get(JobModel, job_id)
            return _to_domain(model) if model is not None else None

    def delete(self, job_id: str) -> bool:
        with handle_sqlalchemy_errors(entity="job"), self._session_factory() as session:
            model = session.get(JobModel, job_id)
            if model is None:
                return False
            session.delete(model)
            session.commit()
            return True

    def delete_terminal(self) -> list[str]:
        """Remove completed and failed jobs, returning their ids."""
        statuses = [str(status) for status in TERMINAL_STATUSES]
        with handle_sqlalchemy_errors(entity="job"), self._session_factory() as session:
            ids = list(session.scalars(select(JobModel.id).where(JobModel.status.in_(statuses))))
            if ids:
                session.execute(delete(JobModel).where(JobModel.id.in_(ids)))
                session.commit()
            return ids

    def query(
        self,
        *,
        status: JobStatus | None = None,
        template_id: str | None = None,
        limit: int | None = None,
    ) -> list[Job]:
        stmt = select(JobModel)
        if status is not None:
            stmt = stmt.where(JobModel.status == str(status))
        if template_id is not None:
            stmt = stmt.where(JobModel.template_id == template_id)
        stmt = stmt.order_by(JobModel.priority.desc(), JobModel.created_at.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        with handle_sqlalchemy_errors(entity="job"), self._session_factory() as session:
            return [_to_domain(model) for model in session.scalars(stmt)]

    def list_by_status(self, statuses: Iterable[JobStatus]) -> list[Job]:
        values = [str(status) for status in statuses]
        stmt = (
            select(JobModel)
            .where(JobModel.status.in_(values))
            .order_by(JobModel.priority.desc(), JobModel.created_at.asc())
        )
        with handle_sqlalchemy_errors(entity="job"), self._session_factory() as session:
            return [_to_domain(model) for model in session.scalars(stmt)]

    def count_by_status(self) -> dict[str, int]:
        stmt = select(JobModel.status, func.count()).group_by(JobModel.status)
        with handle_sqlalchemy_errors(entity="job"), self._session_factory() as session:
            return {status: count for status, count in session.execute(stmt)}

    def image_in_use(self, image_id: str) -> bool:
        """True while any stored job still refers to the staged image."""
        stmt = select(func.count()).select_from(JobModel).where(JobModel.image_id == image_id)
        with handle_sqlalchemy_errors(entity="job"), self._session_factory() as session:
            return bool(session.scalar(stmt))

    def total_cost(self) -> float:
        stmt = select(func.coalesce(func.sum(JobModel.cost), 0.0))
        with handle_sqlalchemy_errors(entity="job"), self._session_factory() as session:
            return float(session.scalar(stmt) or 0.0)


def _apply(model: JobModel, job: Job) -> None:
    model.image_id = job.image_id
    model.template_id = job.template_id
    model.status = str(job.status)
    model.priority = job.priority
    model.created_at = job.created_at
    model.started_at = job.started_at
    model.completed_at = job.completed_at
    model.retry_count = job.retry_count
    model.max_retries = job.max_retries
    model.progress = job.progress
    model.params_json = json.dumps(job.params.to_dict())
    model.content_hash = job.content_hash
    model.result_json = json.dumps(job.result.to_dict()) if job.result else None
    model.error = job.error
    model.cost = job.cost


def _to_domain(model: JobModel) -> Job:
    result = None
    if model.result_json:
        result = ProcessingResult.from_dict(json.loads(model.result_json))
    return Job(
        id=model.id,
        image_id=model.image_id,
        template_id=model.template_id,
        status=JobStatus(model.status),
        priority=model.priority,
        created_at=model.created_at,
        started_at=model.started_at,
        completed_at=model.completed_at,
        retry_count=model.retry_count,
        max_retries=model.max_retries,
        progress=model.progress,
        params=TemplateParams.from_dict(json.loads(model.params_json or "{}")),
        content_hash=model.content_hash,
        result=result,
        error=model.error,
        cost=model.cost,
    )
