"""Tests for logging setup."""

import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

import pytest

from syncdb.utils.logger import JsonFormatter, setup_logging


@pytest.fixture
def syncdb_logger():
    """The package logger, restored after the test."""
    log = logging.getLogger("syncdb")
    handlers, level = list(log.handlers), log.level
    yield log
    for handler in log.handlers:
        handler.close()
    log.handlers[:] = handlers
    log.setLevel(level)


class TestJsonFormatter:
    """Tests for structured log lines."""

    def test_extra_fields_included(self) -> None:
        """Fields passed through extra land in the JSON object."""
        record = logging.LogRecord("syncdb.core", logging.INFO, __file__, 1, "Exported %s", ("orders",), None)
        record.table = "orders"
        record.rows = 5

        data = json.loads(JsonFormatter().format(record))

        assert data["message"] == "Exported orders"
        assert data["level"] == "INFO"
        assert (data["table"], data["rows"]) == ("orders", 5)
        assert "args" not in data


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_json_console_and_file(self, syncdb_logger: logging.Logger, tmp_path: Path) -> None:
        """JSON console output plus a rotating file handler."""
        log_file = tmp_path / "logs" / "syncdb.log"
        setup_logging("DEBUG", log_file=log_file, format_style="json")

        assert syncdb_logger.level == logging.DEBUG
        assert isinstance(syncdb_logger.handlers[0].formatter, JsonFormatter)
        assert any(isinstance(h, RotatingFileHandler) for h in syncdb_logger.handlers)

        logging.getLogger("syncdb.engine").info("Imported %s", "orders")
        for handler in syncdb_logger.handlers:
            handler.flush()
        assert "Imported orders" in log_file.read_text()

    def test_setup_replaces_handlers(self, syncdb_logger: logging.Logger) -> None:
        """Calling setup twice does not stack handlers."""
        setup_logging("INFO", format_style="simple")
        setup_logging("WARNING", format_style="simple")

        assert len(syncdb_logger.handlers) == 1
        assert syncdb_logger.level == logging.WARNING
