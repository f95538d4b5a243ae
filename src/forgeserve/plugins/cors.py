"""
CORS decoration
"""

from typing import Optional

from fastapi import Request
from starlette.responses import PlainTextResponse, Response

from .base import DevServerPlugin, PluginKind
from ..core.context import CallNext, ServerContext

ALLOW_METHODS = "GET, POST, PUT, PATCH, DELETE, OPTIONS, HEAD"


class CorsPlugin(DevServerPlugin):
    """
    Answers preflight requests and decorates responses.

    ``cors: true`` allows any origin; a list restricts it to those origins.
    """

    kind = PluginKind.CORS

    def install(self, context: ServerContext) -> None:
        cors = context.config.cors
        if not cors:
            return
        allowed = None if cors is True else frozenset(cors)

        def allow_origin(origin: Optional[str]) -> Optional[str]:
            if origin is None:
                return None
            if allowed is None or origin in allowed:
                return origin
            return None

        async def cors_middleware(request: Request, call_next: CallNext):
            origin = allow_origin(request.headers.get("origin"))

            if request.method == "OPTIONS" and "access-control-request-method" in request.headers:
                if origin is None:
                    return PlainTextResponse("Disallowed CORS origin", status_code=400)
                return Response(status_code=204, headers={
                    "Access-Control-Allow-Origin": origin,
                    "Access-Control-Allow-Credentials": "true",
                    "Access-Control-Allow-Methods": ALLOW_METHODS,
                    "Access-Control-Allow-Headers": request.headers.get("access-control-request-headers", "*"),
                    "Access-Control-Max-Age": "600",
                    "Vary": "Origin",
                })

            response = await call_next(request)
            if origin is not None:
                response.headers["Access-Control-Allow-Origin"] = origin
                response.headers["Access-Control-Allow-Credentials"] = "true"
                response.headers.append("Vary", "Origin")
            return response

        context.use(cors_middleware, self.name)
