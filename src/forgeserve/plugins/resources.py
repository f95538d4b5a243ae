"""
Serve compiled resources

Lookup order: compiled resources under the public path, then files in the
public directory, then ``index.html`` for page navigations.
"""

import mimetypes
from pathlib import Path
from typing import Optional

from fastapi import Request
from starlette.responses import FileResponse, Response

from .base import DevServerPlugin, PluginKind
from ..core.context import CallNext, ServerContext

INDEX_HTML = "index.html"


def strip_public_path(path: str, public_path: str) -> Optional[str]:
    """Resource name for a request path, or None when outside the public path"""
    base = public_path.rstrip("/")
    if not base:
        return path.lstrip("/")
    if path == base or path.startswith(base + "/"):
        return path[len(base):].lstrip("/")
    return None


def resolve_public_file(public_dir: Optional[Path], path: str) -> Optional[Path]:
    if public_dir is None or not public_dir.is_dir():
        return None
    root = public_dir.resolve()
    candidate = (root / path.lstrip("/")).resolve()
    try:
        candidate.relative_to(root)
    except ValueError:
        return None
    return candidate if candidate.is_file() else None


def _is_navigation(request: Request, name: str) -> bool:
    last_segment = name.rsplit("/", 1)[-1]
    return "." not in last_segment and "text/html" in request.headers.get("accept", "")


def resource_response(name: str, content: bytes) -> Response:
    media_type = mimetypes.guess_type(name)[0] or "application/octet-stream"
    return Response(content=content, media_type=media_type, headers={"Cache-Control": "no-cache"})


class ResourcesPlugin(DevServerPlugin):

    kind = PluginKind.RESOURCES

    def install(self, context: ServerContext) -> None:
        public_path = context.public_path
        public_dir = context.public_dir

        async def resources_middleware(request: Request, call_next: CallNext):
            if request.method not in ("GET", "HEAD"):
                return await call_next(request)

            path = request.url.path
            name = strip_public_path(path, public_path)
            resources = context.compiler.resources()

            if name is not None:
                resource_name = name or INDEX_HTML
                if resource_name in resources:
                    return resource_response(resource_name, resources[resource_name])

            public_file = resolve_public_file(public_dir, path)
            if public_file is not None:
                return FileResponse(public_file)

            if name is not None and INDEX_HTML in resources and _is_navigation(request, name):
                return resource_response(INDEX_HTML, resources[INDEX_HTML])

            return await call_next(request)

        context.use(resources_middleware, self.name)
