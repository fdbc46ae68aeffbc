"""Snapshot based directory observer.

Each :meth:`DirectoryPoller.poll` lists the directory and compares it with the
previous listing. A file is reported only after its ``(size, mtime)`` stayed
unchanged for ``stability_polls`` consecutive polls, so files still being
written are not picked up. Hidden files are ignored.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

logger = logging.getLogger(__name__)

Signature = tuple[int, int]


class WatchEventKind(StrEnum):
    ADDED = "added"
    CHANGED = "changed"
    REMOVED = "removed"


@dataclass(slots=True, frozen=True)
class WatchEvent:
    path: Path
    kind: WatchEventKind


def scan_directory(root: Path) -> dict[Path, Signature]:
    """Return ``{path: (size, mtime_ns)}`` for visible regular files in ``root``."""

    snapshot: dict[Path, Signature] = {}
    with os.scandir(root) as entries:
        for entry in entries:
            if entry.name.startswith("."):
                continue
            try:
                if not entry.is_file():
                    continue
                stat = entry.stat()
            except FileNotFoundError:
                continue
            snapshot[Path(entry.path).resolve()] = (stat.st_size, stat.st_mtime_ns)
    return snapshot


class DirectoryPoller:
    def __init__(
        self,
        root: Path,
        *,
        ignore_initial: bool = True,
        stability_polls: int = 1,
    ) -> None:
        self.root = root
        self.ignore_initial = ignore_initial
        self.stability_polls = max(0, stability_polls)
        self._reported: dict[Path, Signature] = {}
        self._candidates: dict[Path, tuple[Signature, int]] = {}
        self._primed = False

    def prime(self) -> None:
        """Record the current listing; with ``ignore_initial`` it yields no events."""
        snapshot = scan_directory(self.root)
        if self.ignore_initial:
            self._reported = dict(snapshot)
        else:
            self._reported = {}
        self._candidates = {}
        self._primed = True

    def poll(self) -> list[WatchEvent]:
        """Scan once and return the events that became due.

        Raises ``OSError`` when the directory cannot be listed.
        """
        if not self._primed:
            self.prime()
        snapshot = scan_directory(self.root)
        events: list[WatchEvent] = []

        for path in list(self._reported):
            if path not in snapshot:
                del self._reported[path]
                events.append(WatchEvent(path, WatchEventKind.REMOVED))
        for path in list(self._candidates):
            if path not in snapshot:
                del self._candidates[path]

        for path, signature in snapshot.items():
            if self._reported.get(path) == signature:
                self._candidates.pop(path, None)
                continue
            previous = self._candidates.get(path)
            if previous is None or previous[0] != signature:
                stable_for = 0
            else:
                stable_for = previous[1] + 1
            if stable_for < self.stability_polls:
                self._candidates[path] = (signature, stable_for)
                continue
            self._candidates.pop(path, None)
            kind = WatchEventKind.CHANGED if path in self._reported else WatchEventKind.ADDED
            self._reported[path] = signature
            events.append(WatchEvent(path, kind))

        if events:
            logger.debug("poller.events", extra={"root": str(self.root), "count": len(events)})
        return events
