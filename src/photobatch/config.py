"""Application configuration for photobatch.

Settings are read from ``PHOTOBATCH_*`` environment variables (and an optional
``.env`` file). Nested sections use ``__`` as delimiter, e.g.
``PHOTOBATCH_PROCESSING__MAX_CONCURRENT_TASKS=5``.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_FILE_PATTERNS = ["*.jpg", "*.jpeg", "*.png", "*.bmp", "*.tiff"]
MIN_CONCURRENCY = 1
MAX_CONCURRENCY = 10


def clamp_concurrency(value: int) -> int:
    """Bound worker pool size to the supported range."""

    return max(MIN_CONCURRENCY, min(MAX_CONCURRENCY, int(value)))


class ProcessingSettings(BaseModel):
    max_concurrent_tasks: int = Field(
        default=3,
        description="Upper bound on jobs processed at the same time (clamped to 1..10).",
    )
    default_api_provider: str = Field(
        default="doubao",
        description="Provider id used as the head of dispatch order.",
    )
    default_priority: int = Field(default=5, description="Priority assigned when none is given.")
    default_max_retries: int = Field(default=3, ge=0, description="Manual retry budget per job.")
    rate_limit_retry_attempts: int = Field(
        default=5,
        ge=0,
        description="How often a worker waits and re-dispatches when the provider window is full.",
    )
    rate_limit_wait_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Pause between re-dispatch attempts after a local rate limit rejection.",
    )

    @field_validator("max_concurrent_tasks")
    @classmethod
    def _clamp(cls, value: int) -> int:
        return clamp_concurrency(value)


class HotFolderSettings(BaseModel):
    enabled: bool = False
    input_path: Path | None = None
    output_path: Path | None = None
    template_id: str = "ecommerce-white-bg"
    file_patterns: list[str] = Field(default_factory=lambda: list(DEFAULT_FILE_PATTERNS))
    auto_start: bool = False
    poll_interval_seconds: float = Field(default=1.0, gt=0)
    restart_delay_seconds: float = Field(default=5.0, ge=0)
    min_file_bytes: int = Field(default=1024, ge=0)
    priority: int = 5
    max_retries: int = Field(default=3, ge=0)


class CacheSettings(BaseModel):
    max_entries: int = Field(default=1000, ge=1)
    max_bytes: int = Field(default=1024 * 1024 * 1024, ge=1)
    max_age_days: float = Field(default=7.0, gt=0)
    sweep_interval_seconds: float = Field(default=3600.0, gt=0)
    evict_fraction: float = Field(default=0.2, gt=0, le=1)


class ProviderSettings(BaseModel):
    doubao_api_key: str = ""
    doubao_endpoint: str = "https://ark.cn-beijing.volces.com/api/v3/seedream"
    doubao_model: str = "seedream-v3"
    doubao_enabled: bool = True
    gemini_api_key: str = ""
    gemini_endpoint: str = "https://generativelanguage.googleapis.com/v1"
    gemini_model: str = "gemini-3-pro-image"
    gemini_enabled: bool = False
    request_timeout_seconds: float = Field(default=60.0, gt=0)
    retry_delay_seconds: float = Field(default=1.0, ge=0)


class AppConfig(BaseSettings):
    """Pydantic settings container for the service layer."""

    model_config = SettingsConfigDict(
        env_prefix="PHOTOBATCH_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )

    data_root: Path = Field(
        default=Path("./var/photobatch"),
        description="Root for staged images, outputs, cache and logs.",
    )
    database_url: str | None = Field(
        default=None,
        description="SQLAlchemy URL; defaults to a SQLite file under data_root.",
    )
    log_level: str = Field(default="INFO")
    log_to_file: bool = Field(default=False)
    processing: ProcessingSettings = Field(default_factory=ProcessingSettings)
    hot_folder: HotFolderSettings = Field(default_factory=HotFolderSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    providers: ProviderSettings = Field(default_factory=ProviderSettings)

    @property
    def temp_dir(self) -> Path:
        return self.data_root / "temp"

    @property
    def output_dir(self) -> Path:
        return self.data_root / "output"

    @property
    def cache_dir(self) -> Path:
        return self.data_root / "cache"

    @property
    def log_dir(self) -> Path:
        return self.data_root / "logs"

    def resolved_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        return f"sqlite:///{(self.data_root / 'photobatch.db').as_posix()}"

    def ensure_directories(self) -> None:
        for path in (self.data_root, self.temp_dir, self.output_dir, self.cache_dir):
            path.mkdir(parents=True, exist_ok=True)


def load_config(**overrides: object) -> AppConfig:
    """Load configuration from the environment and create data directories."""

    config = AppConfig(**overrides)  # type: ignore[arg-type]
    config.ensure_directories()
    return config
