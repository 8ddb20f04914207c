"""Tests for logging configuration."""

import logging

from fastapi.testclient import TestClient

from firezap.api.app import create_app
from firezap.app_logging import LOG_FORMAT, configure_logging


def test_configure_logging_idempotent() -> None:
    logger = logging.getLogger("firezap")
    logger.handlers.clear()

    configure_logging()
    first_count = len(logger.handlers)

    configure_logging()
    second_count = len(logger.handlers)

    assert first_count == 1
    assert second_count == 1
    assert logger.handlers[0].formatter is not None
    assert logger.handlers[0].formatter._fmt == LOG_FORMAT


def test_configure_logging_accepts_level_names() -> None:
    configure_logging("debug")

    assert logging.getLogger("firezap").level == logging.DEBUG
    configure_logging()


def test_app_uses_configured_log_level(container) -> None:
    container.settings.log_level = "WARNING"

    with TestClient(create_app(container)):
        assert logging.getLogger("firezap").level == logging.WARNING
    configure_logging()
