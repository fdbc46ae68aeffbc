"""Result cache routes."""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends

from ..cache.result_cache import ResultCache
from .schemas import CacheStatsModel, CountResult
from .state import get_cache

router = APIRouter(prefix="/api/cache", tags=["cache"])


@router.get("/stats", response_model=CacheStatsModel)
async def cache_stats(cache: ResultCache = Depends(get_cache)) -> CacheStatsModel:
    return CacheStatsModel(**asdict(cache.stats()))


@router.delete("", response_model=CountResult)
async def clear_cache(cache: ResultCache = Depends(get_cache)) -> CountResult:
    return CountResult(count=cache.clear())
