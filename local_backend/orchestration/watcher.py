"""
watchdog-based file-change source for hosts without their own watcher.

The observer runs in its own thread; events are handed to the event loop
with ``call_soon_threadsafe`` and never touch orchestrator state directly.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Callable, Optional

from watchdog.events import (
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from local_backend.orchestration.events import ChangeKind

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[str, ChangeKind], None]


class SourceChangeHandler(FileSystemEventHandler):
    """Translates watchdog file events into (path, ChangeKind) callbacks."""

    def __init__(self, loop: asyncio.AbstractEventLoop, callback: ChangeCallback):
        self.loop = loop
        self.callback = callback

    def _emit(self, path: str, kind: ChangeKind) -> None:
        if self.loop.is_closed():
            return
        self.loop.call_soon_threadsafe(self.callback, path, kind)

    def on_created(self, event: FileSystemEvent) -> None:
        if isinstance(event, FileCreatedEvent):
            self._emit(event.src_path, ChangeKind.ADDED)

    def on_modified(self, event: FileSystemEvent) -> None:
        if isinstance(event, FileModifiedEvent):
            self._emit(event.src_path, ChangeKind.MODIFIED)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if isinstance(event, FileDeletedEvent):
            self._emit(event.src_path, ChangeKind.DELETED)

    def on_moved(self, event: FileSystemEvent) -> None:
        if isinstance(event, FileMovedEvent):
            self._emit(event.src_path, ChangeKind.DELETED)
            self._emit(event.dest_path, ChangeKind.ADDED)


class SourceWatcher:
    """
    Watches a directory tree and reports changes to ``callback`` on the
    event loop thread.

    Example:
        watcher = SourceWatcher(project_dir / "convex", orchestrator.notify_file_change)
        watcher.start(asyncio.get_running_loop())
        ...
        watcher.stop()
    """

    def __init__(self, root: Path, callback: ChangeCallback):
        self.root = Path(root)
        self.callback = callback
        self._observer: Optional[Observer] = None

    @property
    def running(self) -> bool:
        return self._observer is not None

    def start(self, loop: asyncio.AbstractEventLoop) -> None:
        if self._observer is not None:
            return

        self.root.mkdir(parents=True, exist_ok=True)
        handler = SourceChangeHandler(loop, self.callback)

        self._observer = Observer()
        self._observer.schedule(handler, str(self.root), recursive=True)
        self._observer.start()
        logger.info(f"Started watching {self.root}")

    def stop(self) -> None:
        if self._observer:
            self._observer.stop()
            self._observer.join()
            self._observer = None
