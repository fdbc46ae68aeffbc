"""Resolve services stored on ``app.state``."""

from __future__ import annotations

from typing import Any

from fastapi import Request

from ..cache.result_cache import ResultCache
from ..domain.templates import TemplateCatalog
from ..ingest.hot_folder import HotFolderWatcher
from ..media.image_store import ImageStore
from ..providers.dispatcher import ProviderDispatcher
from ..scheduler.scheduler import JobScheduler


def _resolve(request: Request, name: str) -> Any:
    try:
        return getattr(request.app.state, name)
    except AttributeError as exc:
        raise RuntimeError(f"{name} is not configured") from exc


def get_scheduler(request: Request) -> JobScheduler:
    return _resolve(request, "scheduler")


def get_dispatcher(request: Request) -> ProviderDispatcher:
    return _resolve(request, "dispatcher")


def get_catalog(request: Request) -> TemplateCatalog:
    return _resolve(request, "catalog")


def get_cache(request: Request) -> ResultCache:
    return _resolve(request, "cache")


def get_image_store(request: Request) -> ImageStore:
    return _resolve(request, "image_store")


def get_hot_folder(request: Request) -> HotFolderWatcher:
    return _resolve(request, "hot_folder")
