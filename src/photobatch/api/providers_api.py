"""Provider registry routes."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, status

from ..providers.dispatcher import ProviderDispatcher
from .schemas import (
    CurrentProviderModel,
    CurrentProviderRequest,
    CustomProviderRequest,
    OperationResult,
    ProviderTestModel,
    ProviderUpdateRequest,
)
from .state import get_dispatcher

router = APIRouter(prefix="/api/providers", tags=["providers"])


@router.get("")
async def provider_status(
    dispatcher: ProviderDispatcher = Depends(get_dispatcher),
) -> dict[str, dict[str, Any]]:
    return dispatcher.provider_status()


@router.get("/current", response_model=CurrentProviderModel)
async def current_provider(
    dispatcher: ProviderDispatcher = Depends(get_dispatcher),
) -> CurrentProviderModel:
    return CurrentProviderModel(provider_id=dispatcher.current_provider_id)


@router.put("/current", response_model=CurrentProviderModel)
async def set_current_provider(
    payload: CurrentProviderRequest,
    dispatcher: ProviderDispatcher = Depends(get_dispatcher),
) -> CurrentProviderModel:
    dispatcher.set_current_provider(payload.provider_id)
    return CurrentProviderModel(provider_id=dispatcher.current_provider_id)


@router.post("", status_code=status.HTTP_201_CREATED)
async def add_custom_provider(
    payload: CustomProviderRequest,
    dispatcher: ProviderDispatcher = Depends(get_dispatcher),
) -> dict[str, Any]:
    config = dispatcher.add_custom_provider(**payload.model_dump())
    return dispatcher.provider_status()[config.id] | {"id": config.id}


@router.patch("/{provider_id}")
async def update_provider(
    provider_id: str,
    payload: ProviderUpdateRequest,
    dispatcher: ProviderDispatcher = Depends(get_dispatcher),
) -> dict[str, Any]:
    dispatcher.update_provider_config(provider_id, **payload.model_dump(exclude_none=True))
    return dispatcher.provider_status()[provider_id] | {"id": provider_id}


@router.delete("/{provider_id}", response_model=OperationResult)
async def remove_provider(
    provider_id: str,
    dispatcher: ProviderDispatcher = Depends(get_dispatcher),
) -> OperationResult:
    dispatcher.remove_custom_provider(provider_id)
    return OperationResult(ok=True)


@router.post("/{provider_id}/test", response_model=ProviderTestModel)
async def test_provider(
    provider_id: str,
    dispatcher: ProviderDispatcher = Depends(get_dispatcher),
) -> ProviderTestModel:
    success = await dispatcher.test_provider(provider_id)
    return ProviderTestModel(provider_id=provider_id, success=success)
