"""
Response header policy
"""

from fastapi import Request

from .base import DevServerPlugin, PluginKind
from ..core.context import CallNext, ServerContext


class HeadersPlugin(DevServerPlugin):
    """Adds the configured headers to every response"""

    kind = PluginKind.HEADERS

    def install(self, context: ServerContext) -> None:
        headers = dict(context.config.headers)
        if not headers:
            return

        async def headers_middleware(request: Request, call_next: CallNext):
            response = await call_next(request)
            for key, value in headers.items():
                response.headers[key] = value
            return response

        context.use(headers_middleware, self.name)
