"""FastAPI application entry point."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from . import __version__
from .config import AppConfig, load_config
from .dependencies import ServiceContainer, build_services, include_routers
from .lifecycle import run_periodic_cache_sweep
from .logging import configure_logging

logger = logging.getLogger(__name__)


def _lifespan(services: ServiceContainer):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        config = services.config
        await services.scheduler.start()
        if config.hot_folder.enabled and config.hot_folder.auto_start:
            await services.hot_folder.start(automatic=True)

        shutdown_event = asyncio.Event()
        sweep_task = asyncio.create_task(
            run_periodic_cache_sweep(
                cache=services.cache,
                shutdown_event=shutdown_event,
                interval_seconds=config.cache.sweep_interval_seconds,
            ),
            name="photobatch-cache-sweep",
        )
        app.state.cache_sweep_shutdown_event = shutdown_event
        logger.info("app.started", extra={"version": __version__})
        try:
            yield
        finally:
            shutdown_event.set()
            await services.hot_folder.close()
            await services.scheduler.stop()
            try:
                await sweep_task
            except asyncio.CancelledError:
                pass
            services.engine.dispose()
            logger.info("app.stopped")

    return lifespan


def create_app(
    config: AppConfig | None = None,
    *,
    services: ServiceContainer | None = None,
) -> FastAPI:
    """Build FastAPI instance with configured dependencies."""
    if services is None:
        cfg = config or load_config()
        configure_logging(cfg.log_level, log_dir=cfg.log_dir if cfg.log_to_file else None)
        services = build_services(cfg)
    app = FastAPI(title="PhotoBatch", version=__version__, lifespan=_lifespan(services))
    include_routers(app, services)
    return app


def run() -> None:
    """Console entry point serving the app with uvicorn."""
    import uvicorn

    uvicorn.run("photobatch.main:create_app", factory=True, host="127.0.0.1", port=8000)
