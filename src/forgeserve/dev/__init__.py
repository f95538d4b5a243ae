"""
ForgeServe Development Tools

Development server, hot module reload channel and file watching.
"""

from .hmr import HmrEngine, HmrChannel, InvalidationGraph
from .watcher import FileWatcher, FileChange, ChangeType
from .server import DevServer, ServerState, run_dev_server

__all__ = [
    'DevServer',
    'ServerState',
    'run_dev_server',
    'HmrEngine',
    'HmrChannel',
    'InvalidationGraph',
    'FileWatcher',
    'FileChange',
    'ChangeType',
]
