"""
File system watcher for watched-file notifications.

This module provides:
- Watchdog-based monitoring of the workspace
- Glob filtering (only configuration files the server cares about)
- Debounced, collapsed events ready for workspace/didChangeWatchedFiles
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from lsprotocol.types import FileChangeType
from watchdog.events import (
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from .models import FileChange
from .scope import glob_matches

logger = logging.getLogger(__name__)


@dataclass
class PendingChange:
    """A change waiting out the debounce window."""

    type: FileChangeType
    path: Path
    timestamp: float


class WorkspaceEventHandler(FileSystemEventHandler):
    """
    Collects file system events for files matching a glob.

    Key behaviors:
    - Debounces bursts (editors often write a file several times per save)
    - created + modified collapses to created; created + deleted to nothing
    - deleted + created (atomic save) collapses to changed
    - A move becomes a delete of the source and a create of the destination

    Watchdog calls the on_* methods from its observer thread; flush_pending()
    is called from the event loop.
    """

    DEBOUNCE_SECONDS = 0.3

    def __init__(self, root: Path, glob: str, clock: Callable[[], float] = time.monotonic):
        super().__init__()
        self.root = root
        self.glob = glob
        self._clock = clock
        self._lock = threading.Lock()
        self.pending: dict[str, PendingChange] = {}

    def _is_relevant(self, path: str) -> bool:
        return glob_matches(self.glob, path, self.root)

    def _record(self, path: str, change: FileChangeType) -> None:
        with self._lock:
            previous = self.pending.get(path)
            if previous is not None:
                if previous.type == FileChangeType.Created and change == FileChangeType.Changed:
                    change = FileChangeType.Created
                elif previous.type == FileChangeType.Created and change == FileChangeType.Deleted:
                    del self.pending[path]
                    return
                elif previous.type == FileChangeType.Deleted and change == FileChangeType.Created:
                    change = FileChangeType.Changed
            self.pending[path] = PendingChange(type=change, path=Path(path), timestamp=self._clock())

    def flush_pending(self) -> list[FileChange]:
        """Return the changes whose debounce window has passed."""
        now = self._clock()
        ready: list[FileChange] = []
        with self._lock:
            for path_str, pending in list(self.pending.items()):
                if now - pending.timestamp >= self.DEBOUNCE_SECONDS:
                    del self.pending[path_str]
                    ready.append(FileChange(uri=pending.path.resolve().as_uri(), type=pending.type))
        return ready

    def on_created(self, event: FileCreatedEvent) -> None:
        if event.is_directory or not self._is_relevant(event.src_path):
            return
        self._record(event.src_path, FileChangeType.Created)

    def on_modified(self, event: FileModifiedEvent) -> None:
        if event.is_directory or not self._is_relevant(event.src_path):
            return
        self._record(event.src_path, FileChangeType.Changed)

    def on_deleted(self, event: FileDeletedEvent) -> None:
        if event.is_directory or not self._is_relevant(event.src_path):
            return
        self._record(event.src_path, FileChangeType.Deleted)

    def on_moved(self, event: FileMovedEvent) -> None:
        if event.is_directory:
            return
        if self._is_relevant(event.src_path):
            self._record(event.src_path, FileChangeType.Deleted)
        if self._is_relevant(event.dest_path):
            self._record(event.dest_path, FileChangeType.Created)


class WorkspaceWatcher:
    """Observer thread plus an event-loop task that flushes debounced changes."""

    FLUSH_INTERVAL = 0.25

    def __init__(
        self,
        root: Path,
        handler: WorkspaceEventHandler,
        on_change: Callable[[list[FileChange]], object],
    ):
        self.root = root
        self.handler = handler
        self.on_change = on_change
        self._observer = Observer()
        self._task: asyncio.Task[None] | None = None

    def start(self) -> None:
        self._observer.schedule(self.handler, str(self.root), recursive=True)
        self._observer.start()
        self._task = asyncio.get_running_loop().create_task(self._flush_loop())

    async def _flush_loop(self) -> None:
        while True:
            await asyncio.sleep(self.FLUSH_INTERVAL)
            changes = self.handler.flush_pending()
            if not changes:
                continue
            try:
                self.on_change(changes)
            except Exception:
                logger.exception("Failed to deliver %d file change(s)", len(changes))

    def dispose(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
        if self._observer.is_alive():
            self._observer.stop()
            self._observer.join(timeout=2.0)


def watch_workspace(
    root: Path,
    glob: str,
    on_change: Callable[[list[FileChange]], object],
) -> WorkspaceWatcher:
    """
    Start watching a workspace for files matching glob.

    Must be called from the event loop that should receive the changes.
    Call dispose() on the returned watcher to stop.
    """
    root = root.resolve()
    watcher = WorkspaceWatcher(root, WorkspaceEventHandler(root, glob), on_change)
    watcher.start()
    return watcher
