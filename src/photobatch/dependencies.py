"""Dependency wiring helpers."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import FastAPI
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .api.cache_api import router as cache_router
from .api.errors import register_error_handlers
from .api.hot_folder_api import router as hot_folder_router
from .api.images_api import router as images_router
from .api.jobs_api import queue_router
from .api.jobs_api import router as jobs_router
from .api.providers_api import router as providers_router
from .api.templates_api import router as templates_router
from .cache.result_cache import ResultCache
from .config import AppConfig
from .db.db_init import init_db
from .db.db_session import build_engine, build_session_factory
from .domain.templates import TemplateCatalog
from .ingest.hot_folder import HotFolderWatcher
from .media.image_store import ImageStore
from .media.transcode import PillowTranscoder
from .providers.dispatcher import ProviderDispatcher, builtin_providers
from .providers.provider_store import ProviderStore
from .repositories.job_repository import JobRepository
from .repositories.settings_repository import SettingsRepository
from .scheduler.scheduler import JobScheduler
from .scheduler.worker import JobWorker


@dataclass(slots=True)
class ServiceContainer:
    config: AppConfig
    engine: Engine
    session_factory: sessionmaker[Session]
    catalog: TemplateCatalog
    image_store: ImageStore
    cache: ResultCache
    dispatcher: ProviderDispatcher
    scheduler: JobScheduler
    hot_folder: HotFolderWatcher


def build_services(
    config: AppConfig,
    *,
    dispatcher: ProviderDispatcher | None = None,
) -> ServiceContainer:
    """Create the engine, repositories and services described by ``config``."""
    config.ensure_directories()
    engine = build_engine(config.resolved_database_url())
    session_factory = build_session_factory(engine)
    init_db(engine)

    catalog = TemplateCatalog()
    image_store = ImageStore(temp_dir=config.temp_dir, output_dir=config.output_dir)
    cache = ResultCache(
        config.cache_dir,
        max_entries=config.cache.max_entries,
        max_bytes=config.cache.max_bytes,
        max_age_seconds=config.cache.max_age_days * 24 * 3600,
        evict_fraction=config.cache.evict_fraction,
    )
    if dispatcher is None:
        dispatcher = ProviderDispatcher(
            builtin_providers(config.providers),
            default_provider_id=config.processing.default_api_provider,
            store=ProviderStore(SettingsRepository(session_factory)),
        )
    worker = JobWorker(
        image_store=image_store,
        cache=cache,
        dispatcher=dispatcher,
        catalog=catalog,
        transcoder=PillowTranscoder(),
        rate_limit_retry_attempts=config.processing.rate_limit_retry_attempts,
        rate_limit_wait_seconds=config.processing.rate_limit_wait_seconds,
    )
    scheduler = JobScheduler(
        repository=JobRepository(session_factory),
        catalog=catalog,
        worker=worker,
        max_concurrency=config.processing.max_concurrent_tasks,
        default_priority=config.processing.default_priority,
        default_max_retries=config.processing.default_max_retries,
        image_store=image_store,
    )
    hot_folder = HotFolderWatcher(
        scheduler=scheduler,
        image_store=image_store,
        settings=config.hot_folder,
    )
    return ServiceContainer(
        config=config,
        engine=engine,
        session_factory=session_factory,
        catalog=catalog,
        image_store=image_store,
        cache=cache,
        dispatcher=dispatcher,
        scheduler=scheduler,
        hot_folder=hot_folder,
    )


def include_routers(app: FastAPI, services: ServiceContainer) -> None:
    """Mount module routers and attach services."""
    app.state.config = services.config
    app.state.services = services
    app.state.catalog = services.catalog
    app.state.image_store = services.image_store
    app.state.cache = services.cache
    app.state.dispatcher = services.dispatcher
    app.state.scheduler = services.scheduler
    app.state.hot_folder = services.hot_folder

    app.include_router(images_router)
    app.include_router(jobs_router)
    app.include_router(queue_router)
    app.include_router(providers_router)
    app.include_router(templates_router)
    app.include_router(cache_router)
    app.include_router(hot_folder_router)
    register_error_handlers(app)
