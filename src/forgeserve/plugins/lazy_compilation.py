"""
Lazy compilation endpoint

Clients request modules that were skipped during the initial build; the
compiler builds them on demand before anything downstream serves them.
"""

from fastapi import Request
from fastapi.responses import JSONResponse

from .base import DevServerPlugin, PluginKind
from ..core.context import CallNext, ServerContext

LAZY_COMPILE_PATH = "/__lazy_compile"


class LazyCompilationPlugin(DevServerPlugin):

    kind = PluginKind.LAZY_COMPILATION

    def install(self, context: ServerContext) -> None:
        if not context.config.lazy_compilation:
            return

        async def lazy_compilation_middleware(request: Request, call_next: CallNext):
            if request.url.path != LAZY_COMPILE_PATH:
                return await call_next(request)

            paths = [p for p in request.query_params.get("paths", "").split(",") if p]
            if not paths:
                return JSONResponse({"error": "No paths given"}, status_code=400)

            try:
                result = await context.compiler.update(paths)
            except Exception as e:
                context.logger.error(f"Lazy compilation failed for {paths}: {e}")
                return JSONResponse({"error": str(e), "paths": paths}, status_code=500)

            return JSONResponse({"paths": paths, **result.to_dict()})

        context.use(lazy_compilation_middleware, self.name)
