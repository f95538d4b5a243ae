"""
Compiler collaborator contract

The dev server never looks inside the compiler; it only drives it through
the calls declared on ``Compiler``. ``StaticDirectoryCompiler`` is a small
reference implementation that serves a directory as-is.
"""

import asyncio
import fnmatch
from pathlib import Path
from typing import Dict, Iterable, Mapping, Protocol, Sequence, Set, Union, runtime_checkable

import structlog

from .schemas import UpdateResult

logger = structlog.get_logger(__name__)


@runtime_checkable
class Compiler(Protocol):
    """Artifact producer driven by the dev server"""

    async def compile(self) -> None:
        ...

    def compile_sync(self) -> None:
        ...

    def write_resources_to_disk(self, base_path: str) -> None:
        ...

    def add_extra_watch_file(self, root: str, deps: Sequence[str]) -> None:
        ...

    def resources(self) -> Mapping[str, bytes]:
        ...

    async def update(self, paths: Sequence[str]) -> UpdateResult:
        ...


# Changes to these files cannot be patched into a running page
FULL_RELOAD_PATTERNS = ("*.html", "*.htm")


class StaticDirectoryCompiler:
    """
    Compiler that copies a source directory into an in-memory resource map

    Module ids are POSIX paths relative to the source root. Changes to HTML
    documents and removed files request a full reload; anything else is an
    incremental update.
    """

    def __init__(
        self,
        root: Union[str, Path],
        output_dir: Union[str, Path] = "dist",
        ignore_patterns: Iterable[str] = ("*.pyc", "__pycache__", ".git", "node_modules", ".DS_Store")
    ):
        self.root = Path(root).resolve()
        output_path = Path(output_dir)
        self.output_dir = output_path if output_path.is_absolute() else self.root / output_path
        self.ignore_patterns = list(ignore_patterns)

        self._resources: Dict[str, bytes] = {}
        self._extra_watch: Dict[str, Set[str]] = {}

    def _should_include(self, path: Path) -> bool:
        try:
            path.relative_to(self.output_dir)
            return False
        except ValueError:
            pass
        for part in path.relative_to(self.root).parts:
            if any(fnmatch.fnmatch(part, pattern) for pattern in self.ignore_patterns):
                return False
        return path.is_file()

    def module_id(self, path: Union[str, Path]) -> str:
        """Root relative POSIX id for a file path"""
        file_path = Path(path)
        if not file_path.is_absolute():
            file_path = self.root / file_path
        try:
            return file_path.resolve().relative_to(self.root).as_posix()
        except ValueError:
            return file_path.as_posix()

    def compile_sync(self) -> None:
        """Read every source file into the resource map"""
        if not self.root.is_dir():
            raise FileNotFoundError(f"Source root does not exist: {self.root}")

        resources = {}
        for path in sorted(self.root.rglob("*")):
            if self._should_include(path):
                resources[self.module_id(path)] = path.read_bytes()
        self._resources = resources
        logger.debug("Compiled resources", count=len(resources), root=str(self.root))

    async def compile(self) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.compile_sync)

    def write_resources_to_disk(self, base_path: str) -> None:
        """Flush the resource map under the output directory"""
        target = self.output_dir / base_path.strip("/")
        for name, content in self._resources.items():
            file_path = target / name
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_path.write_bytes(content)
        logger.info("Resources written to disk", path=str(target), count=len(self._resources))

    def add_extra_watch_file(self, root: str, deps: Sequence[str]) -> None:
        self._extra_watch.setdefault(self.module_id(root), set()).update(
            self.module_id(dep) for dep in deps
        )

    def resources(self) -> Mapping[str, bytes]:
        return dict(self._resources)

    async def update(self, paths: Sequence[str]) -> UpdateResult:
        """Re-read changed files and report what moved"""
        result = UpdateResult()
        for raw_path in paths:
            module_id = self.module_id(raw_path)
            file_path = self.root / module_id

            if not file_path.exists():
                if self._resources.pop(module_id, None) is not None:
                    result.removed.append(module_id)
                continue

            if not self._should_include(file_path):
                continue

            content = file_path.read_bytes()
            if module_id in self._resources:
                result.changed.append(module_id)
            else:
                result.added.append(module_id)
            self._resources[module_id] = content

            if any(fnmatch.fnmatch(module_id, pattern) for pattern in FULL_RELOAD_PATTERNS):
                result.full_reload = True

        for root, deps in self._extra_watch.items():
            result.dependencies[root] = sorted(deps)

        if result.removed:
            result.full_reload = True
        return result
