"""Hot folder routes."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from ..ingest.hot_folder import HotFolderWatcher
from .schemas import BatchRequest, CountResult, HotFolderConfigRequest, OperationResult
from .state import get_hot_folder

router = APIRouter(prefix="/api/hot-folder", tags=["hot-folder"])


@router.get("")
async def hot_folder_status(watcher: HotFolderWatcher = Depends(get_hot_folder)) -> dict[str, Any]:
    return watcher.status()


@router.post("/start", response_model=OperationResult)
async def start_hot_folder(
    payload: HotFolderConfigRequest | None = None,
    watcher: HotFolderWatcher = Depends(get_hot_folder),
) -> OperationResult:
    if payload is not None:
        changes = payload.model_dump(exclude_none=True)
        if changes:
            await watcher.update_config(**changes)
    return OperationResult(ok=await watcher.start())


@router.post("/stop", response_model=OperationResult)
async def stop_hot_folder(watcher: HotFolderWatcher = Depends(get_hot_folder)) -> OperationResult:
    return OperationResult(ok=await watcher.stop())


@router.put("/config")
async def update_hot_folder_config(
    payload: HotFolderConfigRequest,
    watcher: HotFolderWatcher = Depends(get_hot_folder),
) -> dict[str, Any]:
    await watcher.update_config(**payload.model_dump(exclude_none=True))
    return watcher.status()


@router.post("/batch", response_model=CountResult)
async def process_batch(
    payload: BatchRequest,
    watcher: HotFolderWatcher = Depends(get_hot_folder),
) -> CountResult:
    return CountResult(count=await watcher.process_directory(payload.directory))


@router.post("/clear-claimed", response_model=OperationResult)
async def clear_claimed(watcher: HotFolderWatcher = Depends(get_hot_folder)) -> OperationResult:
    watcher.clear_claimed()
    return OperationResult(ok=True)
