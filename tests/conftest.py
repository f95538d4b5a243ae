"""
Shared fixtures for the ForgeServe test suite
"""

from typing import Dict, List, Optional

import pytest

from forgeserve.core.config import UserConfig, UserServerConfig
from forgeserve.core.schemas import UpdateResult


class FakeCompiler:
    """In-memory compiler recording every call made by the server"""

    def __init__(self, resources: Optional[Dict[str, bytes]] = None):
        self._resources = dict(resources or {})
        self.calls: List[tuple] = []
        self.compile_error: Optional[Exception] = None
        self.update_error: Optional[Exception] = None
        self.update_result = UpdateResult()

    async def compile(self) -> None:
        self.calls.append(("compile",))
        if self.compile_error:
            raise self.compile_error

    def compile_sync(self) -> None:
        self.calls.append(("compile_sync",))
        if self.compile_error:
            raise self.compile_error

    def write_resources_to_disk(self, base_path: str) -> None:
        self.calls.append(("write_resources_to_disk", base_path))

    def add_extra_watch_file(self, root, deps) -> None:
        self.calls.append(("add_extra_watch_file", root, list(deps)))

    def resources(self):
        return dict(self._resources)

    async def update(self, paths):
        self.calls.append(("update", list(paths)))
        if self.update_error:
            raise self.update_error
        return self.update_result

    def called(self, name: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == name]


@pytest.fixture
def compiler():
    return FakeCompiler({
        "index.html": b"<html><body>home</body></html>",
        "main.js": b"console.log('main')",
        "assets/style.css": b"body { color: red; }",
    })


@pytest.fixture
def user_config(tmp_path):
    """Config rooted in a temp dir with HMR sharing the server port"""
    return UserConfig(
        root=str(tmp_path),
        server=UserServerConfig(port=9000, hmr={"port": 9000}, show_banner=False),
    )
