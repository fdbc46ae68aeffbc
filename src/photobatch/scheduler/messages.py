"""Typed messages exchanged between workers, the scheduler and subscribers."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Union

from ..domain.models import Job, ProcessingResult


@dataclass(slots=True, frozen=True)
class ProgressMessage:
    job_id: str
    attempt: int
    percent: int
    content_hash: str | None = None


@dataclass(slots=True, frozen=True)
class CompletedMessage:
    job_id: str
    attempt: int
    result: ProcessingResult
    cost: float


@dataclass(slots=True, frozen=True)
class FailedMessage:
    job_id: str
    attempt: int
    error: str


WorkerMessage = Union[ProgressMessage, CompletedMessage, FailedMessage]


class JobEventType(StrEnum):
    PROGRESS = "progress"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(slots=True, frozen=True)
class JobEvent:
    """Notification delivered to scheduler subscribers."""

    type: JobEventType
    job: Job

    @property
    def job_id(self) -> str:
        return self.job.id

    def to_dict(self) -> dict:
        payload: dict = {
            "type": str(self.type),
            "job_id": self.job.id,
            "status": str(self.job.status),
            "progress": self.job.progress,
        }
        if self.type is JobEventType.COMPLETED and self.job.result is not None:
            payload["result"] = self.job.result.to_dict()
        if self.type is JobEventType.FAILED:
            payload["error"] = self.job.error
        return payload
