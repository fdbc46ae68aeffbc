"""Execution of a single job attempt."""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, TypeVar

from ..cache.result_cache import ResultCache, make_cache_key
from ..domain.models import Job, ProcessingResult
from ..domain.templates import TemplateCatalog
from ..exceptions import JobStateError, ProviderError, ProviderSemanticError, ResourceError
from ..media.image_store import ImageStore, content_hash
from ..media.transcode import PillowTranscoder
from ..providers.dispatcher import ProviderDispatcher
from ..providers.providers_base import TransformRequest, TransformResponse
from .messages import CompletedMessage, ProgressMessage, WorkerMessage

logger = logging.getLogger(__name__)

T = TypeVar("T")

Emit = Callable[[WorkerMessage], None]


async def _run_sync(func: Callable[..., T], *args: Any) -> T:
    return await asyncio.to_thread(func, *args)


@dataclass(slots=True)
class JobWorker:
    """Read, look up the cache, transcode, dispatch, store and report.

    Failures propagate to the caller, which turns them into a failed job.
    """

    image_store: ImageStore
    cache: ResultCache
    dispatcher: ProviderDispatcher
    catalog: TemplateCatalog
    transcoder: PillowTranscoder = field(default_factory=PillowTranscoder)
    rate_limit_retry_attempts: int = 5
    rate_limit_wait_seconds: float = 1.0
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    log: logging.Logger = field(default_factory=lambda: logger)
    _abandoned: dict[int, threading.Event] = field(default_factory=dict, init=False, repr=False)

    async def run(self, job: Job, attempt: int, emit: Emit) -> None:
        abandoned = threading.Event()
        self._abandoned[attempt] = abandoned
        try:
            await self._execute(job, attempt, emit, abandoned)
        finally:
            self._abandoned.pop(attempt, None)

    def abandon(self, attempt: int) -> None:
        """Stop an interrupted attempt from leaving output files behind."""
        event = self._abandoned.get(attempt)
        if event is not None:
            event.set()

    async def _execute(self, job: Job, attempt: int, emit: Emit, abandoned: threading.Event) -> None:
        def progress(percent: int, digest: str | None = None) -> None:
            emit(ProgressMessage(job.id, attempt, percent, digest))

        self.log.info(
            "worker.job.start",
            extra={"job_id": job.id, "attempt": attempt, "template_id": job.template_id},
        )
        progress(5)
        await _run_sync(self.image_store.discard_partial, job.id)
        template = self.catalog.get(job.template_id)
        source = await _run_sync(self.image_store.read_source, job.image_id)
        digest = job.content_hash or await _run_sync(content_hash, source)
        progress(10, digest)

        params = job.params
        key = make_cache_key(digest, job.template_id, params.to_dict())
        cached = await _run_sync(self.cache.get, key)
        if cached is not None:
            try:
                result = await _run_sync(self._finalize, job, cached, None, 0.0, True, abandoned)
            except ResourceError as exc:
                # unreadable entry: drop it and process as a miss
                self.log.warning(
                    "worker.cache.corrupt",
                    extra={"job_id": job.id, "cache_key": key, "error": str(exc)},
                )
                await _run_sync(self.cache.delete, key)
            else:
                self.log.info("worker.cache.hit", extra={"job_id": job.id, "cache_key": key})
                progress(100)
                emit(CompletedMessage(job.id, attempt, result, 0.0))
                return

        progress(20)
        transcoded = await _run_sync(
            self.transcoder.transcode, source, params.resolution, params.quality
        )
        progress(30)
        request = TransformRequest(
            image_base64=base64.b64encode(transcoded.data).decode("ascii"),
            prompt=template.prompt,
            negative_prompt=template.negative_prompt,
            strength=params.strength,
            guidance_scale=params.guidance_scale,
            steps=params.steps,
            resolution=params.resolution,
            quality=str(params.quality),
        )
        response = await self._dispatch(request)
        if not response.success or not response.image_base64:
            raise ProviderError(
                response.error or "provider returned no image", provider_id=response.provider_id
            )
        progress(80)
        try:
            payload = base64.b64decode(response.image_base64, validate=False)
        except (binascii.Error, ValueError) as exc:
            raise ProviderSemanticError(
                "provider returned an invalid image payload", provider_id=response.provider_id
            ) from exc

        cost = float(response.cost or 0.0)
        result = await _run_sync(
            self._finalize, job, payload, response.provider_id, cost, False, abandoned
        )
        progress(90)
        await _run_sync(self._store_in_cache, key, payload, job.template_id, digest)
        progress(100)
        self.log.info(
            "worker.job.completed",
            extra={"job_id": job.id, "provider_id": response.provider_id, "cost": cost},
        )
        emit(CompletedMessage(job.id, attempt, result, cost))

    async def _dispatch(self, request: TransformRequest) -> TransformResponse:
        """Dispatch, waiting while the provider window is full."""
        response = await self.dispatcher.dispatch(request)
        attempts = 0
        while not response.success and response.rate_limited and attempts < self.rate_limit_retry_attempts:
            attempts += 1
            self.log.info("worker.rate_limited.wait", extra={"attempt": attempts})
            await self.sleep(self.rate_limit_wait_seconds)
            response = await self.dispatcher.dispatch(request)
        return response

    def _finalize(
        self,
        job: Job,
        payload: bytes,
        provider_id: str | None,
        cost: float,
        from_cache: bool,
        abandoned: threading.Event,
    ) -> ProcessingResult:
        info = self.transcoder.describe(payload)
        thumbnail_data = self.transcoder.thumbnail(payload)
        if abandoned.is_set():
            raise JobStateError(f"job '{job.id}' was interrupted")
        output = self.image_store.write_output(job.id, payload)
        thumbnail = self.image_store.write_thumbnail(job.id, thumbnail_data)
        # the scheduler may have interrupted us while the files were written
        if abandoned.is_set():
            self.image_store.remove_outputs(job.id)
            raise JobStateError(f"job '{job.id}' was interrupted")
        return ProcessingResult(
            job_id=job.id,
            original_path=str(self.image_store.source_path(job.image_id)),
            processed_path=str(output),
            thumbnail_path=str(thumbnail),
            width=info.width,
            height=info.height,
            format=info.format,
            size=len(payload),
            processed_at=datetime.utcnow(),
            template_id=job.template_id,
            provider_id=provider_id,
            cost=cost,
            from_cache=from_cache,
        )

    def _store_in_cache(self, key: str, payload: bytes, template_id: str, digest: str) -> None:
        try:
            self.cache.put(key, payload, template_id=template_id, content_hash=digest)
        except Exception:
            self.log.exception("worker.cache.put_failed", extra={"cache_key": key})
