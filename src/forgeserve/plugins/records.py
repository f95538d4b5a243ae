"""
Inspection endpoints for the running build
"""

from fastapi import Request
from fastapi.responses import JSONResponse

from .base import DevServerPlugin, PluginKind
from ..core.context import CallNext, ServerContext

RECORD_PREFIX = "/__record"


class RecordsPlugin(DevServerPlugin):
    """Exposes resource names and recent HMR updates when ``records`` is on"""

    kind = PluginKind.RECORDS

    def install(self, context: ServerContext) -> None:
        if not context.config.records:
            return

        async def records_middleware(request: Request, call_next: CallNext):
            path = request.url.path
            if path == f"{RECORD_PREFIX}/resources":
                return JSONResponse(sorted(context.compiler.resources()))
            if path == f"{RECORD_PREFIX}/updates":
                engine = context.hmr_engine
                return JSONResponse(list(engine.records) if engine else [])
            return await call_next(request)

        context.use(records_middleware, self.name)
