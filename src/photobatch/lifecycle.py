"""Background maintenance loops started with the application."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from .cache.result_cache import ResultCache

logger = logging.getLogger(__name__)


def cache_sweep_once(*, cache: ResultCache, now: float | None = None) -> int:
    """Run a single cache sweep iteration and return the number of removed entries."""

    return cache.sweep_expired(now=now)


async def run_periodic_cache_sweep(
    *,
    cache: ResultCache,
    shutdown_event: asyncio.Event,
    interval_seconds: float = 3600.0,
    clock: Callable[[], float] | None = None,
) -> None:
    """Sweep expired cache entries until ``shutdown_event`` is signalled."""

    interval = max(1.0, float(interval_seconds))
    tick = clock or time.time
    while not shutdown_event.is_set():
        try:
            removed = await asyncio.to_thread(cache_sweep_once, cache=cache, now=tick())
        except Exception:
            logger.exception("Cache sweep iteration failed")
        else:
            if removed:
                logger.info("Swept %s expired cache entries", removed)
        try:
            await asyncio.wait_for(shutdown_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            continue


__all__ = [
    "cache_sweep_once",
    "run_periodic_cache_sweep",
]
