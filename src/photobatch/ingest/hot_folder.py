"""Hot folder ingestion: watch a directory and turn new images into jobs."""

from __future__ import annotations

import asyncio
import fnmatch
import logging
import shutil
from collections.abc import Callable
from enum import StrEnum
from pathlib import Path
from typing import Any

from ..config import HotFolderSettings
from ..domain.models import Job, JobSubmission
from ..exceptions import AppError, ResourceError, ValidationError
from ..media.image_store import ImageStore
from ..scheduler.messages import JobEvent, JobEventType
from ..scheduler.scheduler import JobScheduler
from .directory_poller import DirectoryPoller, WatchEvent, WatchEventKind

logger = logging.getLogger(__name__)


class WatcherState(StrEnum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"


def matches_patterns(name: str, patterns: list[str]) -> bool:
    lowered = name.lower()
    return any(fnmatch.fnmatchcase(lowered, pattern.lower()) for pattern in patterns)


class HotFolderWatcher:
    """Poll ``input_path``, stage matching files and submit them as jobs.

    Paths are claimed once per run; a removed file releases its claim so a
    file re-added under the same name is processed again. Completed results
    of jobs submitted here are copied to ``output_path``.
    """

    def __init__(
        self,
        *,
        scheduler: JobScheduler,
        image_store: ImageStore,
        settings: HotFolderSettings,
        poller_factory: Callable[..., DirectoryPoller] = DirectoryPoller,
        stability_polls: int = 1,
    ) -> None:
        self._scheduler = scheduler
        self._image_store = image_store
        self.settings = settings
        self._poller_factory = poller_factory
        self._stability_polls = stability_polls
        self._poller: DirectoryPoller | None = None
        self._state = WatcherState.STOPPED
        self._claimed: set[Path] = set()
        self._owned: dict[str, Path] = {}
        self._task: asyncio.Task[None] | None = None
        self._restart_task: asyncio.Task[None] | None = None
        self._stop_event: asyncio.Event | None = None
        self._restart_used = False
        self._last_error: str | None = None
        self._submitted = 0
        self._delivered = 0
        self._unsubscribe = scheduler.subscribe(self._on_job_event)

    @property
    def state(self) -> WatcherState:
        return self._state

    @property
    def claimed(self) -> frozenset[Path]:
        return frozenset(self._claimed)

    async def start(self, settings: HotFolderSettings | None = None, *, automatic: bool = False) -> bool:
        if settings is not None:
            self.settings = settings
        if self._state is not WatcherState.STOPPED:
            return True
        if not automatic:
            self._restart_used = False
        self._state = WatcherState.STARTING
        input_path = self.settings.input_path
        if input_path is None:
            return self._fail_start("hot folder input path is not configured")
        try:
            input_path.mkdir(parents=True, exist_ok=True)
            if self.settings.output_path is not None:
                self.settings.output_path.mkdir(parents=True, exist_ok=True)
            poller = self._poller_factory(
                input_path, ignore_initial=True, stability_polls=self._stability_polls
            )
            await asyncio.to_thread(poller.prime)
        except OSError as exc:
            return self._fail_start(f"cannot watch '{input_path}': {exc}")

        self._poller = poller
        self._claimed.clear()
        self._last_error = None
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(self._stop_event), name="photobatch-hot-folder")
        self._state = WatcherState.RUNNING
        logger.info(
            "hot_folder.started",
            extra={"input_path": str(input_path), "template_id": self.settings.template_id},
        )
        return True

    async def stop(self) -> bool:
        if self._restart_task is not None:
            self._restart_task.cancel()
            self._restart_task = None
        was_running = self._state is not WatcherState.STOPPED
        await self._halt()
        self._claimed.clear()
        if was_running:
            logger.info("hot_folder.stopped")
        return True

    async def close(self) -> None:
        await self.stop()
        self._unsubscribe()

    async def update_config(self, **changes: Any) -> HotFolderSettings:
        merged = {**self.settings.model_dump(), **changes}
        try:
            settings = HotFolderSettings.model_validate(merged)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        was_running = self._state is not WatcherState.STOPPED
        if was_running:
            await self.stop()
        self.settings = settings
        if was_running:
            await self.start()
        return settings

    def clear_claimed(self) -> None:
        self._claimed.clear()
        logger.info("hot_folder.claims.cleared")

    def status(self) -> dict[str, Any]:
        return {
            "state": str(self._state),
            "running": self._state is WatcherState.RUNNING,
            "enabled": self.settings.enabled,
            "input_path": str(self.settings.input_path) if self.settings.input_path else None,
            "output_path": str(self.settings.output_path) if self.settings.output_path else None,
            "template_id": self.settings.template_id,
            "file_patterns": list(self.settings.file_patterns),
            "claimed_count": len(self._claimed),
            "submitted_count": self._submitted,
            "delivered_count": self._delivered,
            "last_error": self._last_error,
        }

    async def handle_event(self, event: WatchEvent) -> Job | None:
        if event.kind is WatchEventKind.REMOVED:
            self._claimed.discard(event.path)
            return None
        path = event.path
        if path in self._claimed:
            logger.debug("hot_folder.file.already_claimed", extra={"path": str(path)})
            return None
        if not matches_patterns(path.name, self.settings.file_patterns):
            logger.debug("hot_folder.file.pattern_skipped", extra={"path": str(path)})
            return None
        try:
            size = path.stat().st_size
        except FileNotFoundError:
            return None
        if size < self.settings.min_file_bytes:
            logger.warning(
                "hot_folder.file.too_small", extra={"path": str(path), "size": size}
            )
            return None
        try:
            job = await self._submit_file(path)
        except (AppError, OSError) as exc:
            logger.error("hot_folder.file.submit_failed", extra={"path": str(path), "error": str(exc)})
            return None
        self._claimed.add(path)
        return job

    async def poll_once(self) -> list[Job]:
        """Scan the input directory once; raises ``OSError`` if it is unreadable."""
        if self._poller is None:
            return []
        events = await asyncio.to_thread(self._poller.poll)
        jobs = []
        for event in events:
            job = await self.handle_event(event)
            if job is not None:
                jobs.append(job)
        return jobs

    async def process_file(self, path: Path) -> Job:
        """Submit a single file regardless of patterns or claims."""
        if not path.is_file():
            raise ResourceError(f"file '{path}' does not exist")
        return await self._submit_file(path.resolve())

    async def process_directory(self, directory: Path | None = None) -> int:
        target = directory or self.settings.input_path
        if target is None or not target.is_dir():
            raise ResourceError(f"directory '{target}' does not exist")
        submitted = 0
        for path in sorted(target.iterdir()):
            if path.name.startswith(".") or not path.is_file():
                continue
            try:
                await self.process_file(path)
            except (AppError, OSError) as exc:
                logger.error(
                    "hot_folder.batch.file_failed", extra={"path": str(path), "error": str(exc)}
                )
                continue
            submitted += 1
        logger.info("hot_folder.batch.completed", extra={"directory": str(target), "submitted": submitted})
        return submitted

    async def _submit_file(self, path: Path) -> Job:
        image_id = await asyncio.to_thread(self._image_store.stage_file, path)
        job = self._scheduler.submit(
            JobSubmission(
                image_id=image_id,
                template_id=self.settings.template_id,
                priority=self.settings.priority,
                max_retries=self.settings.max_retries,
            )
        )
        self._owned[job.id] = path
        self._submitted += 1
        logger.info(
            "hot_folder.file.submitted",
            extra={"path": str(path), "job_id": job.id, "image_id": image_id},
        )
        return job

    async def _run(self, stop_event: asyncio.Event) -> None:
        interval = max(0.01, float(self.settings.poll_interval_seconds))
        while not stop_event.is_set():
            try:
                await self.poll_once()
            except OSError as exc:
                self._on_watch_error(exc)
                return
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue

    def _on_watch_error(self, exc: Exception) -> None:
        logger.error("hot_folder.watch.error", extra={"error": str(exc)})
        self._last_error = str(exc)
        self._state = WatcherState.STOPPED
        self._task = None
        self._poller = None
        if self._restart_used:
            return
        self._restart_used = True
        self._restart_task = asyncio.create_task(self._restart_later(), name="photobatch-hot-folder-restart")

    async def _restart_later(self) -> None:
        await asyncio.sleep(self.settings.restart_delay_seconds)
        logger.info("hot_folder.restart.attempt")
        self._restart_task = None
        await self.start(automatic=True)

    async def _halt(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
        task = self._task
        self._task = None
        if task is not None and task is not asyncio.current_task():
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._stop_event = None
        self._poller = None
        self._state = WatcherState.STOPPED

    def _fail_start(self, message: str) -> bool:
        logger.error("hot_folder.start.failed", extra={"error": message})
        self._last_error = message
        self._state = WatcherState.STOPPED
        return False

    def _on_job_event(self, event: JobEvent) -> None:
        if event.type is JobEventType.PROGRESS:
            return
        source = self._owned.pop(event.job_id, None)
        if source is None or event.type is not JobEventType.COMPLETED:
            return
        output_dir = self.settings.output_path
        result = event.job.result
        if output_dir is None or result is None:
            return
        target = output_dir / f"{source.stem}_processed.jpg"
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(result.processed_path, target)
        except OSError as exc:
            logger.error(
                "hot_folder.delivery.failed",
                extra={"job_id": event.job_id, "target": str(target), "error": str(exc)},
            )
            return
        self._delivered += 1
        logger.info("hot_folder.delivered", extra={"job_id": event.job_id, "target": str(target)})
