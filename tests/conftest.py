"""Pytest configuration and fixtures."""

import logging

import pytest

from pitcrew import mocking


@pytest.fixture(autouse=True)
def cleanup_loggers():
    """Detach pitcrew log handlers after each test so debug.log files are closed."""
    yield

    for name in list(logging.Logger.manager.loggerDict.keys()):
        if not name.startswith("pitcrew"):
            continue
        logger = logging.getLogger(name)
        for handler in list(logger.handlers):
            handler.close()
        logger.handlers.clear()
        logger.propagate = True


@pytest.fixture(autouse=True)
def reset_default_mock_engine():
    """The CLI reconfigures the shared engine; restore the strict default."""
    yield
    mocking.configure_default_engine(strict=True, synchronized=False)
