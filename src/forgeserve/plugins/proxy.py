"""
Reverse proxy fallback

Requests that nothing earlier in the pipeline answered are forwarded to
an external target when their path matches a configured prefix.
"""

from typing import Optional, Sequence
from urllib.parse import urlsplit

import httpx
from fastapi import Request
from starlette.responses import PlainTextResponse, Response

from .base import DevServerPlugin, PluginKind
from ..core.config import ProxyRule
from ..core.context import CallNext, ServerContext

HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
    "content-length",
    "content-encoding",
})


def match_rule(path: str, rules: Sequence[ProxyRule]) -> Optional[ProxyRule]:
    for rule in rules:
        prefix = rule.prefix.rstrip("/")
        if path == prefix or path.startswith(prefix + "/"):
            return rule
    return None


def upstream_url(rule: ProxyRule, path: str, query: str) -> str:
    if rule.rewrite is not None:
        path = rule.rewrite.rstrip("/") + path[len(rule.prefix.rstrip("/")):]
    path = path or "/"
    url = f"{rule.target}{path}"
    return f"{url}?{query}" if query else url


class ProxyPlugin(DevServerPlugin):
    """Pass-through to external targets via httpx"""

    kind = PluginKind.PROXY

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None, timeout: float = 30.0):
        self.transport = transport
        self.timeout = timeout

    def install(self, context: ServerContext) -> None:
        rules = context.config.proxy
        if not rules:
            return

        async def proxy_middleware(request: Request, call_next: CallNext):
            rule = match_rule(request.url.path, rules)
            if rule is None:
                return await call_next(request)

            url = upstream_url(rule, request.url.path, request.url.query)
            headers = [
                (key, value) for key, value in request.headers.items()
                if key not in HOP_BY_HOP_HEADERS and not (rule.change_origin and key == "host")
            ]
            if rule.change_origin:
                headers.append(("host", urlsplit(rule.target).netloc))
            body = await request.body()

            try:
                async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout) as client:
                    upstream = await client.request(request.method, url, headers=headers, content=body)
            except httpx.HTTPError as e:
                context.logger.error(f"Proxy error {request.url.path} -> {url}: {e}")
                return PlainTextResponse(f"Upstream error: {e}", status_code=502)

            response = Response(content=upstream.content, status_code=upstream.status_code)
            for key, value in upstream.headers.multi_items():
                if key.lower() not in HOP_BY_HOP_HEADERS:
                    response.headers.append(key, value)
            return response

        context.use(proxy_middleware, self.name)
