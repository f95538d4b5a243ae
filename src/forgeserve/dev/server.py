"""
ForgeServe Development Server

Compiles the project, serves the result and keeps connected browsers in
sync through the HMR channel.
"""

import asyncio
import socket
import sys
import time
from enum import Enum
from pathlib import Path
from typing import List, Optional, Sequence

import structlog
import uvicorn
from fastapi import FastAPI
from rich.console import Console
from rich.panel import Panel

from ..core.compiler import Compiler
from ..core.config import (
    ServerConfiguration,
    UserConfig,
    UserServerConfig,
    disk_base_path,
    normalize_dev_server_options,
    normalize_public_dir,
    normalize_public_path,
    runtime_public_path,
)
from ..core.context import MiddlewarePipeline, PipelineMiddleware, ServerContext
from ..core.ports import resolve_port_conflict
from ..exceptions.base import BindError, CompileError, LifecycleError
from ..plugins import install_plugins, resolve_plugins
from ..version import __version__
from .browser import open_browser

logger = structlog.get_logger(__name__)


class ServerState(str, Enum):
    CREATED = "created"
    LISTENING = "listening"
    CLOSED = "closed"


class DevServer:
    """
    ForgeServe development server

    Lifecycle: ``created -> listening -> closed``; closing before listening
    is allowed. Nothing leaves ``closed``.
    """

    def __init__(
        self,
        compiler: Compiler,
        user_config: Optional[UserConfig] = None,
        log=None,
        console: Optional[Console] = None
    ):
        self._compiler = compiler
        self.user_config = user_config or UserConfig()
        self.logger = log or logger
        self.console = console or Console()

        self.root = Path(self.user_config.root).resolve()
        self.public_dir = normalize_public_dir(self.root, self.user_config.public_dir)
        self.public_path = normalize_public_path(self.user_config.compilation.output.public_path)

        self.state = ServerState.CREATED
        self.config: Optional[ServerConfiguration] = None
        self.app: Optional[FastAPI] = None
        self.server: Optional[uvicorn.Server] = None
        self.context: Optional[ServerContext] = None
        self.bound_port: Optional[int] = None

        self._servers: List[uvicorn.Server] = []
        self._serve_tasks: List[asyncio.Task] = []
        self._browser_task: Optional[asyncio.Task] = None

        self.create_server(self.user_config.server)

    def get_compiler(self) -> Compiler:
        return self._compiler

    def create_server(self, options: Optional[UserServerConfig]) -> ServerContext:
        """Build the app, the socket server and the context, then install plugins"""
        self.config = normalize_dev_server_options(options)

        self.app = FastAPI(title="ForgeServe Dev Server", docs_url=None, redoc_url=None, openapi_url=None)
        pipeline = MiddlewarePipeline()
        self.app.add_middleware(PipelineMiddleware, pipeline=pipeline)
        self.server = uvicorn.Server(self._uvicorn_config(self.app, self.config.port))

        self.context = ServerContext(
            config=self.config,
            app=self.app,
            server=self.server,
            compiler=self._compiler,
            logger=self.logger,
            pipeline=pipeline,
            public_path=runtime_public_path(self.public_path),
            public_dir=self.public_dir,
            root=self.root,
        )
        install_plugins(self.context, resolve_plugins(self.config.plugins))
        return self.context

    def _uvicorn_config(self, app: FastAPI, port: int, host: Optional[str] = None) -> uvicorn.Config:
        return uvicorn.Config(
            app=app,
            host=host or self.config.host,
            port=port,
            ssl_certfile=self.config.ssl_certfile,
            ssl_keyfile=self.config.ssl_keyfile,
            log_config=None,
            access_log=False,
        )

    @property
    def public_url(self) -> str:
        """Browser URL; uses the port actually bound once listening (port 0 binds an OS pick)"""
        return self.config.url(runtime_public_path(self.public_path), self.bound_port)

    async def listen(self) -> None:
        """
        Compile, optionally flush to disk, bind and announce the server.

        Raises:
            CompileError: If the compiler fails; nothing is bound
        """
        if self.server is None:
            self.logger.error(str(LifecycleError("HTTP server is not created yet", "listen")))
            return
        if self.state is not ServerState.CREATED:
            self.logger.error(str(LifecycleError(f"Cannot listen on a {self.state.value} server", "listen")))
            return

        config = self.config
        start = time.perf_counter()

        try:
            if config.profile:
                self._compiler.compile_sync()
            else:
                await self._compiler.compile()
        except Exception as e:
            self.logger.error(f"❌ Compilation failed: {e}")
            raise CompileError(f"Compilation failed: {e}", e) from e

        if self.state is ServerState.CLOSED:
            # closed while compiling; nothing left to attach to
            self.logger.debug("Server closed during compilation, not binding")
            return

        if config.write_to_disk:
            self._compiler.write_resources_to_disk(disk_base_path(self.public_path))

        bindings = [(self.server, config.port, config.host)]
        hmr_app = self.context.hmr_app
        if hmr_app is not None and hmr_app is not self.app:
            hmr = config.hmr
            bindings.append((uvicorn.Server(self._uvicorn_config(hmr_app, hmr.port, hmr.host)), hmr.port, hmr.host))

        sockets = []
        try:
            for _, port, host in bindings:
                sockets.append(self._bind_socket(port, host))
        except BindError as e:
            self._handle_bind_error(e, sockets)

        self.bound_port = self._bound_port(sockets[0], config.port)
        end = time.perf_counter()

        for (server, port, host), sock in zip(bindings, sockets):
            await self._start_serving(server, sock, port, host)

        self.state = ServerState.LISTENING

        engine = self.context.hmr_engine
        if engine is not None:
            engine.activate()

        if config.show_banner:
            self._start_dev_logger(start, end)

        if config.open:
            self._browser_task = asyncio.create_task(open_browser(self.public_url, self.logger))

    def _bind_socket(self, port: int, host: str) -> socket.socket:
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            if sys.platform != "win32":
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((host.strip("[]"), port))
        except OSError as e:
            sock.close()
            raise BindError.from_os_error(e, port, host) from e
        sock.set_inheritable(True)
        return sock

    @staticmethod
    def _bound_port(sock: socket.socket, configured: int) -> int:
        try:
            return sock.getsockname()[1]
        except (OSError, TypeError, IndexError):
            return configured

    async def _start_serving(self, server: uvicorn.Server, sock: socket.socket, port: int, host: str) -> None:
        task = asyncio.create_task(server.serve(sockets=[sock]))
        self._servers.append(server)
        self._serve_tasks.append(task)

        while not server.started:
            if task.done():
                error = task.exception()
                if isinstance(error, OSError):
                    self._handle_bind_error(BindError.from_os_error(error, port, host), [sock])
                self.logger.error(f"Server failed to start: {error}")
                await self._shutdown()
                sys.exit(1)
            await asyncio.sleep(0.01)

    def _handle_bind_error(self, error: BindError, sockets: Sequence[socket.socket]) -> None:
        """Bind failures are unrecoverable: log, close and exit"""
        self.logger.error(error.describe())
        for sock in sockets:
            sock.close()
        for server in self._servers:
            server.should_exit = True
        self.state = ServerState.CLOSED
        sys.exit(1)

    async def close(self) -> None:
        """Stop serving; a compile still in flight is left to finish on its own"""
        if self.server is None:
            self.logger.warning(str(LifecycleError("HTTP server is not created yet", "close")))
            return
        if self.state is ServerState.CREATED:
            self.logger.warning("Closing a dev server that was never started")
            self.state = ServerState.CLOSED
            return
        if self.state is ServerState.CLOSED:
            self.logger.debug("Dev server already closed")
            return

        await self._shutdown()
        self.state = ServerState.CLOSED
        self.logger.info("🛑 Dev server closed")

    async def _shutdown(self) -> None:
        engine = self.context.hmr_engine if self.context else None
        if engine is not None:
            await engine.deactivate()

        for server in self._servers:
            server.should_exit = True
        if self._serve_tasks:
            await asyncio.gather(*self._serve_tasks, return_exceptions=True)

        self._servers = []
        self._serve_tasks = []

    async def restart(self) -> None:
        """Close, rebuild from the identical configuration and listen again"""
        if self.state is ServerState.CLOSED:
            self.logger.error(str(LifecycleError("Cannot restart a closed server", "restart")))
            return

        self.logger.info("🔄 Restarting dev server...")
        if self.state is ServerState.LISTENING:
            await self._shutdown()

        self.create_server(self.user_config.server)
        self.bound_port = None
        self.state = ServerState.CREATED
        await self.listen()

    async def serve_forever(self) -> None:
        """Wait until every running server has stopped"""
        if self._serve_tasks:
            await asyncio.gather(*self._serve_tasks, return_exceptions=True)

    def add_watch_file(self, root: str, deps: Sequence[str]) -> None:
        """
        Watch extra files on behalf of ``root``

        Changes to any of ``deps`` invalidate ``root`` as well.
        """
        self._compiler.add_extra_watch_file(root, list(deps))

    def _start_dev_logger(self, start: float, end: float) -> None:
        url = self.public_url
        elapsed_ms = int((end - start) * 1000)

        self.console.print(Panel.fit(
            f"[bold cyan]ForgeServe[/bold cyan]\n"
            f"Version [bold green]{__version__}[/bold green]\n\n"
            f"🔥 Ready on [bold green]{url}[/bold green] in [bold green]{elapsed_ms}ms[/bold green].",
            border_style="cyan",
            padding=(1, 4),
        ))
        self.logger.info("Dev server ready", url=url, elapsed_ms=elapsed_ms)


async def run_dev_server(
    compiler: Compiler,
    user_config: Optional[UserConfig] = None,
    resolve_ports: bool = True
) -> DevServer:
    """
    Resolve ports, start the dev server and serve until it stops

    Args:
        compiler: Compiler driving the build
        user_config: User configuration; ports are written back into it
        resolve_ports: Probe for free ports before binding
    """
    user_config = user_config or UserConfig()
    if resolve_ports:
        await resolve_port_conflict(user_config)

    server = DevServer(compiler, user_config)
    await server.listen()
    try:
        await server.serve_forever()
    finally:
        await server.close()
    return server
