"""
Logging utilities for ForgeServe
"""

import os
import sys
import logging
from typing import Any, Dict, Optional

import structlog

LOG_LEVEL_ENV = "FORGESERVE_LOG_LEVEL"

# Loggers whose per-request chatter drowns out the dev server's own output
NOISY_LOGGERS = ("uvicorn.access", "httpx", "watchdog.observers.inotify_buffer")


def setup_logging(
    level: Optional[str] = None,
    json_logs: bool = False,
    context: Optional[Dict[str, Any]] = None
) -> None:
    """
    Route structlog through stdlib logging on stdout.

    Args:
        level: DEBUG, INFO, WARNING or ERROR; defaults to $FORGESERVE_LOG_LEVEL, then INFO
        json_logs: One JSON object per line instead of the console renderer
        context: Values bound to every log line (e.g. the project root)
    """
    level_name = (level or os.getenv(LOG_LEVEL_ENV) or "INFO").upper()
    numeric_level = getattr(logging, level_name, logging.INFO)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="ISO", utc=True),
            structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    structlog.contextvars.clear_contextvars()
    if context:
        structlog.contextvars.bind_contextvars(**context)
