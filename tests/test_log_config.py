"""
Tests for log configuration.

Tests configure_logging sinks, JSON records and session-bound loggers.
"""
import json
import sys

import pytest
from loguru import logger

from rollwright.config.models import LoggingConfig
from rollwright.core.logging import configure_logging, get_session_logger


@pytest.fixture(autouse=True)
def restore_logger():
    """Restore the default loguru setup after each test."""
    yield
    logger.remove()
    logger.configure(patcher=None)
    logger.add(sys.stderr)


def read_log(path) -> list[str]:
    # Removing the sinks flushes the enqueued records
    logger.remove()
    return path.read_text().splitlines()


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_no_file_by_default(self, tmp_path):
        """Test only the console sink is added without log_file."""
        configure_logging(LoggingConfig())

        assert list(tmp_path.iterdir()) == []

    def test_file_sink(self, tmp_path):
        """Test records reach the rotated file with session context."""
        path = tmp_path / "logs" / "rollwright.log"
        configure_logging(LoggingConfig(log_file=str(path), include_caller=False))

        get_session_logger("dep_abc", target="api.example.com").info("Deploy started")

        lines = read_log(path)
        assert len(lines) == 1
        assert "dep_abc | api.example.com" in lines[0]
        assert lines[0].endswith("Deploy started")

    def test_file_level(self, tmp_path):
        """Test the file sink honors its level."""
        path = tmp_path / "rollwright.log"
        configure_logging(LoggingConfig(log_file=str(path), file_level="warning"))

        logger.info("routine")
        logger.warning("circuit open")

        lines = read_log(path)
        assert len(lines) == 1
        assert "circuit open" in lines[0]

    def test_json_records(self, tmp_path):
        """Test JSON records carry session fields."""
        path = tmp_path / "rollwright.json"
        configure_logging(LoggingConfig(log_file=str(path), json_logs=True))

        get_session_logger("dep_abc", target="api.example.com").error("Phase {deploy} failed")

        entry = json.loads(read_log(path)[0])
        assert entry["level"] == "ERROR"
        assert entry["session_id"] == "dep_abc"
        assert entry["target"] == "api.example.com"
        assert entry["message"] == "Phase {deploy} failed"

    def test_secrets_redacted(self, tmp_path):
        """Test secrets never reach the log file."""
        path = tmp_path / "rollwright.log"
        configure_logging(LoggingConfig(log_file=str(path)))

        logger.info("Calling API with Authorization: Bearer s3cr3t-token")

        lines = read_log(path)
        assert "s3cr3t-token" not in lines[0]
        assert "[REDACTED]" in lines[0]
