"""
Hot module reload engine

Keeps one channel per connected client, turns file-system change batches
into HMR messages and broadcasts them. Change batches are processed by a
single worker so every channel sees messages in the order the changes were
observed.
"""

import asyncio
import itertools
import time
from collections import deque
from pathlib import Path
from typing import Any, Deque, Dict, Iterable, List, Optional, Sequence, Set, Union

import structlog
from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ValidationError

from ..core.compiler import Compiler
from ..core.config import HmrOptions
from ..core.schemas import (
    ConnectedMessage,
    ErrorMessage,
    FullReloadMessage,
    PingMessage,
    PongMessage,
    UpdateMessage,
    decode_message,
    encode_message,
)
from .watcher import ChangeType, FileChange, FileWatcher

logger = structlog.get_logger(__name__)

# Change kinds that alter the module structure and force a full reload
STRUCTURAL_CHANGES = frozenset({ChangeType.DELETED, ChangeType.MOVED})


class InvalidationGraph:
    """module id -> ids of the modules that depend on it"""

    def __init__(self):
        self._dependents: Dict[str, Set[str]] = {}

    def add_module(self, module_id: str) -> None:
        self._dependents.setdefault(module_id, set())

    def add_dependency(self, module_id: str, depends_on: str) -> None:
        self.add_module(module_id)
        self._dependents.setdefault(depends_on, set()).add(module_id)

    def dependents_of(self, module_id: str) -> Set[str]:
        return set(self._dependents.get(module_id, ()))

    def affected(self, module_ids: Iterable[str]) -> Set[str]:
        """Changed modules plus everything that transitively depends on them"""
        pending = list(module_ids)
        seen: Set[str] = set()
        while pending:
            current = pending.pop()
            if current in seen:
                continue
            seen.add(current)
            pending.extend(self._dependents.get(current, ()))
        return seen

    def __contains__(self, module_id: str) -> bool:
        return module_id in self._dependents

    def __len__(self) -> int:
        return len(self._dependents)


class HmrChannel:
    """A persistent connection to one client"""

    _ids = itertools.count(1)

    def __init__(self, websocket: Any):
        self.id = next(self._ids)
        self.websocket = websocket
        self.closed = False

    async def send(self, message: BaseModel) -> None:
        await self.websocket.send_text(encode_message(message))

    def __repr__(self) -> str:
        return f"HmrChannel(id={self.id}, closed={self.closed})"


class HmrEngine:
    """
    Relay compiler updates to every connected client

    Features:
    - ``connected`` handshake on every (re)connection, no replay
    - Incremental ``update`` or ``full-reload`` per change batch
    - Compile failures relayed as ``error``
    - ``ping`` answered with ``pong``
    """

    def __init__(
        self,
        compiler: Compiler,
        options: HmrOptions,
        watch_paths: Optional[Sequence[Union[str, Path]]] = None,
        history_size: int = 50,
        log=None
    ):
        self.compiler = compiler
        self.options = options
        self.watch_paths = list(watch_paths or [])
        self.logger = log or logger

        self.channels: List[HmrChannel] = []
        self.graph = InvalidationGraph()
        self.records: Deque[Dict[str, Any]] = deque(maxlen=history_size)

        self.watcher: Optional[FileWatcher] = None
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None

    @property
    def is_active(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def activate(self, watch: bool = True) -> None:
        """Start relaying changes; called once the server socket is bound"""
        if self.is_active:
            return

        self._queue = asyncio.Queue()
        self._worker = asyncio.get_running_loop().create_task(self._run())

        if watch and self.watch_paths:
            self.watcher = FileWatcher(
                paths=self.watch_paths,
                callback=self.notify,
                debounce_ms=self.options.debounce_ms,
                ignore_patterns=self.options.ignored,
            )
            self.watcher.start()

        self.logger.debug("HMR channel active", path=self.options.path, port=self.options.port)

    async def deactivate(self) -> None:
        if self.watcher:
            self.watcher.stop()
            self.watcher = None

        if self._worker:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

        for channel in self.channels:
            channel.closed = True
        self.channels.clear()

    def notify(self, changes: List[FileChange]) -> None:
        """Queue a change batch from the watch feed"""
        if self._queue is None:
            self.logger.warning("HMR engine is not active, dropping changes", count=len(changes))
            return
        self._queue.put_nowait(list(changes))

    async def _run(self) -> None:
        while True:
            changes = await self._queue.get()
            try:
                await self.handle_changes(changes)
            except Exception as e:
                self.logger.error(f"HMR update failed: {e}", exc_info=True)
            finally:
                self._queue.task_done()

    async def drain(self) -> None:
        """Wait until every queued change batch has been broadcast"""
        if self._queue is not None:
            await self._queue.join()

    async def handle_changes(self, changes: List[FileChange]) -> Optional[BaseModel]:
        """
        Compute and broadcast the message for one change batch.

        Returns:
            The broadcast message, or None when nothing changed
        """
        paths = [change.path for change in changes]
        self.logger.info(f"📝 Files changed: {', '.join(paths)}")

        try:
            result = await self.compiler.update(paths)
        except Exception as e:
            self.logger.error(f"❌ Update failed: {e}")
            message = ErrorMessage(payload={"message": str(e), "paths": paths})
            await self.broadcast(message)
            return message

        for module_id in result.added:
            self.graph.add_module(module_id)
        for module_id, deps in result.dependencies.items():
            for dep in deps:
                self.graph.add_dependency(module_id, dep)

        structural = (
            result.full_reload
            or bool(result.removed)
            or any(change.change_type in STRUCTURAL_CHANGES for change in changes)
        )

        if structural:
            message = FullReloadMessage()
        elif result.module_ids:
            message = UpdateMessage(module_ids=sorted(self.graph.affected(result.module_ids)))
        else:
            return None

        self.records.append({
            "type": message.type,
            "paths": paths,
            "moduleIds": getattr(message, "module_ids", []),
            "timestamp": int(time.time() * 1000),
        })
        await self.broadcast(message)
        return message

    async def broadcast(self, message: BaseModel) -> int:
        """
        Send a message to every connected channel.

        Channels that fail are dropped; delivery to the others continues.

        Returns:
            Number of channels the message was delivered to
        """
        delivered = 0
        for channel in list(self.channels):
            if channel.closed:
                continue
            try:
                await channel.send(message)
                delivered += 1
            except Exception as e:
                self.logger.debug(f"Dropping HMR channel {channel.id}: {e}")
                self._remove(channel)
        return delivered

    def _remove(self, channel: HmrChannel) -> None:
        channel.closed = True
        if channel in self.channels:
            self.channels.remove(channel)

    async def _on_client_message(self, channel: HmrChannel, raw: str) -> None:
        try:
            message = decode_message(raw)
        except ValidationError:
            self.logger.debug(f"Ignoring malformed HMR message on channel {channel.id}")
            return

        if isinstance(message, PingMessage):
            await channel.send(PongMessage())

    async def connect(self, websocket: WebSocket) -> None:
        """Websocket endpoint serving one client for its whole lifetime"""
        await websocket.accept()
        channel = HmrChannel(websocket)
        self.channels.append(channel)
        self.logger.debug(f"HMR client connected (channel {channel.id})")

        try:
            await channel.send(ConnectedMessage())
            while True:
                frame = await websocket.receive()
                if frame["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(frame.get("code", 1000))
                # binary frames carry nothing the protocol understands
                if frame.get("text") is None:
                    continue
                await self._on_client_message(channel, frame["text"])
        except WebSocketDisconnect:
            pass
        finally:
            self._remove(channel)
            self.logger.debug(f"HMR client disconnected (channel {channel.id})")
