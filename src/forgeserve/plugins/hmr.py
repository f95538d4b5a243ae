"""
HMR plugin: wires the HMR engine's websocket endpoint into the server
"""

from fastapi import FastAPI

from .base import DevServerPlugin, PluginKind
from ..core.context import ServerContext
from ..dev.hmr import HmrEngine


class HmrPlugin(DevServerPlugin):
    """
    Registers the HMR upgrade path.

    The route lives on the main app when the HMR port equals the server
    port, otherwise on a companion app bound to the HMR port.
    """

    kind = PluginKind.HMR

    def install(self, context: ServerContext) -> None:
        config = context.config
        if not config.hmr_enabled:
            return

        engine = HmrEngine(
            context.compiler,
            config.hmr,
            watch_paths=[context.root] if context.root else [],
            log=context.logger,
        )

        if config.hmr.port == config.port:
            hmr_app = context.app
        else:
            hmr_app = FastAPI(title="ForgeServe HMR")

        hmr_app.add_api_websocket_route(config.hmr.path, engine.connect, name="hmr")

        context.state["hmr_engine"] = engine
        context.state["hmr_app"] = hmr_app
