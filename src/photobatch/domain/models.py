"""Domain models for the job pipeline.

Plain dataclasses shared by the scheduler, the worker, the repository and the
HTTP layer. Persistence concerns live in :mod:`photobatch.db.db_models`.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any


class JobStatus(StrEnum):
    """Lifecycle statuses of a job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})

CANCELLED_ERROR = "cancelled"


class Quality(StrEnum):
    HIGH = "high"
    BALANCED = "balanced"
    FAST = "fast"


class TemplateCategory(StrEnum):
    PORTRAIT = "portrait"
    PRODUCT = "product"
    LANDSCAPE = "landscape"
    DOCUMENT = "document"
    ARTISTIC = "artistic"


def parse_resolution(value: str) -> tuple[int, int]:
    """Parse ``"WIDTHxHEIGHT"`` into a tuple; raise ``ValueError`` otherwise."""

    width_raw, sep, height_raw = value.lower().partition("x")
    if not sep:
        raise ValueError(f"Invalid resolution '{value}'")
    width, height = int(width_raw), int(height_raw)
    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid resolution '{value}'")
    return width, height


@dataclass(slots=True)
class TemplateParams:
    """Generation parameters attached to a template and copied onto jobs."""

    strength: float = 0.8
    guidance_scale: float | None = 7.5
    steps: int | None = 20
    resolution: str = "1024x1024"
    quality: Quality = Quality.BALANCED

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["quality"] = str(self.quality)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "TemplateParams":
        data = dict(data or {})
        if "quality" in data:
            data["quality"] = Quality(data["quality"])
        known = {name: data[name] for name in cls.__dataclass_fields__ if name in data}
        return cls(**known)


@dataclass(slots=True)
class Template:
    id: str
    name: str
    prompt: str
    category: TemplateCategory
    description: str = ""
    negative_prompt: str | None = None
    params: TemplateParams = field(default_factory=TemplateParams)
    is_builtin: bool = False


@dataclass(slots=True)
class ProcessingResult:
    """Outcome of a completed job."""

    job_id: str
    original_path: str
    processed_path: str
    thumbnail_path: str | None
    width: int
    height: int
    format: str
    size: int
    processed_at: datetime
    template_id: str
    provider_id: str | None
    cost: float
    from_cache: bool = False

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["processed_at"] = self.processed_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProcessingResult":
        payload = dict(data)
        payload["processed_at"] = datetime.fromisoformat(payload["processed_at"])
        return cls(**payload)


@dataclass(slots=True)
class Job:
    id: str
    image_id: str
    template_id: str
    status: JobStatus = JobStatus.PENDING
    priority: int = 5
    created_at: datetime = field(default_factory=datetime.utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    retry_count: int = 0
    max_retries: int = 3
    progress: int = 0
    params: TemplateParams = field(default_factory=TemplateParams)
    content_hash: str | None = None
    result: ProcessingResult | None = None
    error: str | None = None
    cost: float = 0.0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def reset_to_pending(self) -> None:
        self.status = JobStatus.PENDING
        self.progress = 0
        self.started_at = None
        self.completed_at = None
        self.result = None
        self.error = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "image_id": self.image_id,
            "template_id": self.template_id,
            "status": str(self.status),
            "priority": self.priority,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "progress": self.progress,
            "params": self.params.to_dict(),
            "content_hash": self.content_hash,
            "result": self.result.to_dict() if self.result else None,
            "error": self.error,
            "cost": self.cost,
        }


@dataclass(slots=True)
class JobSubmission:
    image_id: str
    template_id: str
    priority: int | None = None
    max_retries: int | None = None


@dataclass(slots=True)
class JobStats:
    total: int = 0
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    retrying: int = 0
    total_cost: float = 0.0
    paused: bool = False
    max_concurrency: int = 3
