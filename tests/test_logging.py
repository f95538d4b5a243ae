"""
Tests for logging setup
"""

import logging

import pytest
import structlog

from forgeserve.utils.logging import NOISY_LOGGERS, setup_logging


class TestSetupLogging:

    @pytest.fixture(autouse=True)
    def reset_structlog(self):
        yield
        structlog.contextvars.clear_contextvars()
        structlog.reset_defaults()

    def test_context_is_bound(self):
        setup_logging("DEBUG", context={"root": "/srv/site"})

        assert structlog.contextvars.get_contextvars() == {"root": "/srv/site"}

    def test_noisy_loggers_quieted(self):
        setup_logging("DEBUG")

        for name in NOISY_LOGGERS:
            assert logging.getLogger(name).level == logging.WARNING

    def test_level_from_environment(self, monkeypatch):
        monkeypatch.setenv("FORGESERVE_LOG_LEVEL", "error")

        setup_logging()

        assert logging.getLogger("uvicorn.access").level == logging.ERROR
