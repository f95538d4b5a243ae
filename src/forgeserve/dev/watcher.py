"""
Watch feed for the ForgeServe dev server

Turns watchdog events from the observer thread into ordered, debounced
change batches delivered on the event loop.
"""

import asyncio
import fnmatch
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import structlog
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

logger = structlog.get_logger(__name__)


class ChangeType(Enum):
    """Kind of change reported for a path"""
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"
    MOVED = "moved"


@dataclass
class FileChange:
    path: str
    change_type: ChangeType
    timestamp: float


@dataclass
class WatchStats:
    received: int = 0
    ignored: int = 0
    delivered: int = 0
    batches: int = 0


class _ObserverBridge(FileSystemEventHandler):
    """Runs on the observer thread; only hands events over to the loop"""

    def __init__(self, watcher: "FileWatcher"):
        super().__init__()
        self._watcher = watcher

    def on_any_event(self, event: FileSystemEvent):
        if event.is_directory:
            return
        try:
            change_type = ChangeType(event.event_type)
        except ValueError:
            # opened / closed events carry no content change
            return

        self._watcher.submit(event.src_path, change_type)
        dest_path = getattr(event, "dest_path", None)
        if change_type is ChangeType.MOVED and dest_path:
            self._watcher.submit(dest_path, ChangeType.CREATED)


class FileWatcher:
    """
    Debounced watch feed over one or more directory trees.

    Every path seen within ``debounce_ms`` of the previous event joins the
    same batch. A batch lists each path once, positioned by its most recent
    event, so batches preserve the order in which changes settled.
    """

    def __init__(
        self,
        paths: Sequence[Union[str, Path]],
        callback: Callable[[List[FileChange]], Any],
        debounce_ms: int = 100,
        ignore_patterns: Optional[Sequence[str]] = None,
        recursive: bool = True
    ):
        self.roots = [Path(p).resolve() for p in paths]
        self.on_batch = callback
        self.delay = debounce_ms / 1000.0
        self.ignore_patterns = tuple(ignore_patterns or ())
        self.recursive = recursive
        self.stats = WatchStats()

        self._observer: Optional[Observer] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._pending: Dict[str, FileChange] = {}
        self._timer: Optional[asyncio.TimerHandle] = None

    @property
    def running(self) -> bool:
        return self._observer is not None

    def start(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """Begin observing; batches are delivered on ``loop`` (default: the running loop)"""
        if self.running:
            return
        self._loop = loop or asyncio.get_running_loop()

        observer = Observer()
        bridge = _ObserverBridge(self)
        watched = [root for root in self.roots if root.exists()]
        for root in watched:
            observer.schedule(bridge, str(root), recursive=self.recursive)
        observer.start()
        self._observer = observer

        logger.info(f"👁️ Watching {len(watched)} director{'y' if len(watched) == 1 else 'ies'} for changes")

    def stop(self) -> None:
        if not self.running:
            return

        self._observer.stop()
        self._observer.join()
        self._observer = None

        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._pending.clear()
        logger.info("🛑 File watcher stopped")

    def submit(self, path: str, change_type: ChangeType) -> None:
        """Thread-safe entry point for the observer"""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self.record, path, change_type)

    def record(self, path: str, change_type: ChangeType) -> None:
        """Add a change to the pending batch and push the flush back; loop thread only"""
        self.stats.received += 1
        if self.is_ignored(path):
            self.stats.ignored += 1
            return

        self._pending.pop(path, None)
        self._pending[path] = FileChange(path, change_type, time.time())

        if self._timer is not None:
            self._timer.cancel()
        self._timer = self._loop.call_later(self.delay, self.flush)

    def flush(self) -> None:
        """Deliver the pending batch, if any"""
        self._timer = None
        if not self._pending:
            return

        batch = list(self._pending.values())
        self._pending.clear()
        self.stats.batches += 1
        self.stats.delivered += len(batch)

        try:
            self.on_batch(batch)
        except Exception as e:
            logger.error(f"Change batch handler failed: {e}", paths=[change.path for change in batch])

    def is_ignored(self, path: Union[str, Path]) -> bool:
        """True when any segment of ``path`` matches an ignore pattern"""
        return any(
            fnmatch.fnmatch(segment, pattern)
            for segment in Path(path).parts
            for pattern in self.ignore_patterns
        )
