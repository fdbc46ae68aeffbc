"""Worker doubles that let scheduler tests decide when a job finishes."""

from __future__ import annotations

import asyncio
from datetime import datetime

from photobatch.domain.models import Job, ProcessingResult
from photobatch.scheduler.messages import CompletedMessage, ProgressMessage


def make_result(job: Job, cost: float = 0.01) -> ProcessingResult:
    return ProcessingResult(
        job_id=job.id,
        original_path=f"/tmp/{job.image_id}.jpg",
        processed_path=f"/tmp/{job.id}.jpg",
        thumbnail_path=None,
        width=64,
        height=48,
        format="jpeg",
        size=1234,
        processed_at=datetime(2026, 1, 1, 12, 0, 0),
        template_id=job.template_id,
        provider_id="doubao",
        cost=cost,
    )


class ControlledWorker:
    """Completes jobs immediately unless a gate was registered for them."""

    def __init__(self, cost: float = 0.01) -> None:
        self.cost = cost
        self.started: list[str] = []
        self.gates: dict[str, asyncio.Event] = {}
        self.failures: dict[str, str] = {}
        self.running = 0
        self.peak = 0
        self.abandoned: list[int] = []

    def gate(self, job_id: str) -> asyncio.Event:
        return self.gates.setdefault(job_id, asyncio.Event())

    def abandon(self, attempt: int) -> None:
        self.abandoned.append(attempt)

    async def run(self, job: Job, attempt: int, emit) -> None:
        self.started.append(job.id)
        self.running += 1
        self.peak = max(self.peak, self.running)
        try:
            emit(ProgressMessage(job.id, attempt, 50))
            gate = self.gates.get(job.id)
            if gate is not None:
                await gate.wait()
            else:
                await asyncio.sleep(0)
            if job.id in self.failures:
                raise RuntimeError(self.failures[job.id])
            emit(CompletedMessage(job.id, attempt, make_result(job, self.cost), self.cost))
        finally:
            self.running -= 1


class LateReportingWorker(ControlledWorker):
    """Reports completion even after being cancelled, like a worker racing a cancel."""

    async def run(self, job: Job, attempt: int, emit) -> None:
        try:
            await super().run(job, attempt, emit)
        except asyncio.CancelledError:
            emit(CompletedMessage(job.id, attempt, make_result(job), self.cost))
            raise
