"""
Browser launch
"""

import asyncio
import webbrowser

import structlog

logger = structlog.get_logger(__name__)


async def open_browser(url: str, log=None) -> bool:
    """
    Open ``url`` in the default browser without blocking the event loop.

    Failures are logged and never raised.
    """
    log = log or logger
    loop = asyncio.get_running_loop()
    try:
        opened = await loop.run_in_executor(None, webbrowser.open, url)
    except Exception as e:
        log.warning(f"Failed to open browser at {url}: {e}")
        return False

    if not opened:
        log.warning(f"No browser available to open {url}")
    return bool(opened)
