"""Pydantic schemas for the control API."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from ..domain.models import Job, JobStats, Template


class ImageUploadResponse(BaseModel):
    image_id: str


class JobSubmitRequest(BaseModel):
    image_id: str = Field(min_length=1)
    template_id: str = Field(min_length=1)
    priority: int | None = None
    max_retries: int | None = Field(default=None, ge=0)


class ProcessingResultModel(BaseModel):
    job_id: str
    original_path: str
    processed_path: str
    thumbnail_path: str | None = None
    width: int
    height: int
    format: str
    size: int
    processed_at: datetime
    template_id: str
    provider_id: str | None = None
    cost: float
    from_cache: bool = False


class JobResponse(BaseModel):
    id: str
    image_id: str
    template_id: str
    status: str
    priority: int
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    retry_count: int
    max_retries: int
    progress: int
    params: dict[str, Any]
    content_hash: str | None = None
    result: ProcessingResultModel | None = None
    error: str | None = None
    cost: float

    @classmethod
    def from_job(cls, job: Job) -> "JobResponse":
        return cls.model_validate(job.to_dict())


class JobStatsModel(BaseModel):
    total: int
    pending: int
    processing: int
    completed: int
    failed: int
    retrying: int
    total_cost: float
    paused: bool
    max_concurrency: int

    @classmethod
    def from_stats(cls, stats: JobStats) -> "JobStatsModel":
        return cls(
            total=stats.total,
            pending=stats.pending,
            processing=stats.processing,
            completed=stats.completed,
            failed=stats.failed,
            retrying=stats.retrying,
            total_cost=stats.total_cost,
            paused=stats.paused,
            max_concurrency=stats.max_concurrency,
        )


class OperationResult(BaseModel):
    ok: bool


class CountResult(BaseModel):
    count: int


class QueueStateModel(BaseModel):
    paused: bool
    max_concurrency: int


class ConcurrencyRequest(BaseModel):
    max_concurrency: int


class CustomProviderRequest(BaseModel):
    name: str = Field(min_length=1)
    endpoint: str = Field(min_length=1)
    api_key: str = ""
    model: str = ""
    auth_type: str = "bearer"
    auth_header: str = "x-api-key"
    custom_headers: dict[str, str] = Field(default_factory=dict)
    rate_limit: int = Field(default=3, ge=0)
    max_retries: int = Field(default=3, ge=0)
    timeout_seconds: float = Field(default=60.0, gt=0)
    enabled: bool = True


class ProviderUpdateRequest(BaseModel):
    name: str | None = None
    endpoint: str | None = None
    api_key: str | None = None
    model: str | None = None
    auth_type: str | None = None
    auth_header: str | None = None
    custom_headers: dict[str, str] | None = None
    rate_limit: int | None = Field(default=None, ge=0)
    max_retries: int | None = Field(default=None, ge=0)
    retry_delay_seconds: float | None = Field(default=None, ge=0)
    timeout_seconds: float | None = Field(default=None, gt=0)
    enabled: bool | None = None


class CurrentProviderRequest(BaseModel):
    provider_id: str


class CurrentProviderModel(BaseModel):
    provider_id: str


class ProviderTestModel(BaseModel):
    provider_id: str
    success: bool


class TemplateParamsModel(BaseModel):
    strength: float = Field(default=0.8, ge=0, le=1)
    guidance_scale: float | None = None
    steps: int | None = Field(default=None, ge=1)
    resolution: str = "1024x1024"
    quality: str = "balanced"


class TemplateModel(BaseModel):
    id: str
    name: str
    description: str = ""
    category: str
    prompt: str
    negative_prompt: str | None = None
    params: TemplateParamsModel = Field(default_factory=TemplateParamsModel)
    is_builtin: bool = False

    @classmethod
    def from_template(cls, template: Template) -> "TemplateModel":
        return cls(
            id=template.id,
            name=template.name,
            description=template.description,
            category=str(template.category),
            prompt=template.prompt,
            negative_prompt=template.negative_prompt,
            params=TemplateParamsModel(**template.params.to_dict()),
            is_builtin=template.is_builtin,
        )


class CacheStatsModel(BaseModel):
    entries: int
    total_bytes: int
    hits: int
    misses: int
    hit_rate: float
    oldest_entry: float | None = None
    newest_entry: float | None = None


class HotFolderConfigRequest(BaseModel):
    enabled: bool | None = None
    input_path: Path | None = None
    output_path: Path | None = None
    template_id: str | None = None
    file_patterns: list[str] | None = None
    auto_start: bool | None = None
    poll_interval_seconds: float | None = Field(default=None, gt=0)


class BatchRequest(BaseModel):
    directory: Path | None = None
