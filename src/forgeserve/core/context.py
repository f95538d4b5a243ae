"""
Server context and middleware pipeline

The context is built once per server and handed to every plugin during
installation. Plugins may only append handlers to the pipeline; dispatch
runs the handlers in installation order and each one either answers the
request or passes it on.
"""

from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import uvicorn
from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from .compiler import Compiler
from .config import ServerConfiguration

CallNext = Callable[[Request], Awaitable[Response]]
Handler = Callable[[Request, CallNext], Awaitable[Response]]


@dataclass(frozen=True)
class PipelineEntry:
    name: str
    handler: Handler


class MiddlewarePipeline:
    """Append-only, ordered list of request handlers"""

    def __init__(self):
        self._entries: List[PipelineEntry] = []

    def use(self, handler: Handler, name: Optional[str] = None) -> None:
        """Append a handler after every previously installed one"""
        self._entries.append(PipelineEntry(name or getattr(handler, "__name__", "handler"), handler))

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(entry.name for entry in self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    async def handle(self, request: Request, endpoint: CallNext) -> Response:
        """Run the request through every handler, ending at ``endpoint``"""
        entries = tuple(self._entries)

        async def dispatch(index: int, req: Request) -> Response:
            if index >= len(entries):
                return await endpoint(req)
            return await entries[index].handler(req, partial(dispatch, index + 1))

        return await dispatch(0, request)


class PipelineMiddleware(BaseHTTPMiddleware):
    """Bridges the pipeline into the ASGI app; routes are the final fallback"""

    def __init__(self, app, pipeline: MiddlewarePipeline):
        super().__init__(app)
        self.pipeline = pipeline

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        return await self.pipeline.handle(request, call_next)


@dataclass(frozen=True)
class ServerContext:
    """
    Shared registry threaded through plugin installation

    Fields are fixed at construction. Plugins and handlers record derived
    state in ``state`` instead of replacing fields.
    """
    config: ServerConfiguration
    app: FastAPI
    server: uvicorn.Server
    compiler: Compiler
    logger: Any
    pipeline: MiddlewarePipeline = field(default_factory=MiddlewarePipeline)
    public_path: str = "/"
    public_dir: Optional[Path] = None
    root: Optional[Path] = None
    state: Dict[str, Any] = field(default_factory=dict)
    installed_plugins: List[str] = field(default_factory=list)

    def use(self, handler: Handler, name: Optional[str] = None) -> None:
        self.pipeline.use(handler, name)

    @property
    def hmr_engine(self):
        return self.state.get("hmr_engine")

    @property
    def hmr_app(self) -> Optional[FastAPI]:
        return self.state.get("hmr_app")
