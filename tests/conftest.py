"""
Pytest configuration and shared fixtures.
"""

import logging

import pytest


@pytest.fixture(autouse=True, scope="function")
def console_only_logging(monkeypatch):
    """
    Keep tests from writing daily log files.

    Tests that exercise the file handler set LOG_TO_FILE themselves.
    Handlers installed by setup_logging() are removed afterwards.
    """
    monkeypatch.setenv("LOG_TO_FILE", "false")

    yield

    for name in ("scheduler", "src"):
        logger = logging.getLogger(name)
        for handler in list(logger.handlers):
            handler.close()
        logger.handlers.clear()
        logger.propagate = True
