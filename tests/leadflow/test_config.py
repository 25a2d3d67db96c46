"""Unit tests for configuration loading and logging setup."""

import json
import logging
import os
from unittest.mock import patch

import pytest

from leadflow.config import Config, ConfigError
from leadflow.logging_utils import (
    ContextFilter,
    HumanReadableFormatter,
    StructuredFormatter,
    get_logger,
    log_context,
    setup_logging,
)


class TestConfigDefaults:
    """Settings fall back to their defaults when the environment is empty."""

    def test_defaults(self):
        """Test default values for an empty environment."""
        with patch.dict(os.environ, {}, clear=True):
            config = Config()

        assert config.APP_ENV == "dev"
        assert config.APP_URL == "http://localhost:3000"
        assert config.API_PORT == 8080
        assert config.SCRAPER_PORT == 3002
        assert config.POLAR_SERVER == "sandbox"
        assert config.JOB_MAX_ATTEMPTS == 3
        assert config.JOB_CONCURRENCY == 3
        assert config.JOB_VISIBILITY_TIMEOUT_SECONDS == 600.0
        assert config.RUN_WORKER_IN_API is False
        assert config.USAGE_SYNC_BATCH_SIZE == 100
        assert config.USAGE_RETENTION_DAYS == 30

    def test_cors_origins_split(self):
        """Test that CORS_ORIGINS is split on commas and trimmed."""
        env = {"CORS_ORIGINS": "https://a.example.com, https://b.example.com,"}
        with patch.dict(os.environ, env, clear=True):
            config = Config()
        assert config.CORS_ORIGINS == ["https://a.example.com", "https://b.example.com"]

    @pytest.mark.parametrize("value,expected", [("true", True), ("1", True), ("TRUE", True), ("no", False)])
    def test_bool_parsing(self, value, expected):
        """Test boolean environment parsing."""
        with patch.dict(os.environ, {"RUN_WORKER_IN_API": value}, clear=True):
            config = Config()
        assert config.RUN_WORKER_IN_API is expected

    def test_build_chat_url(self):
        """Test chat URLs are built from APP_URL without doubled slashes."""
        with patch.dict(os.environ, {"APP_URL": "https://app.example.com/"}, clear=True):
            config = Config()
        assert config.build_chat_url("tok") == "https://app.example.com/chat/tok"

    def test_is_development(self):
        """Test environment detection."""
        with patch.dict(os.environ, {"APP_ENV": "production"}, clear=True):
            assert Config().is_development() is False
        with patch.dict(os.environ, {"APP_ENV": "development"}, clear=True):
            assert Config().is_development() is True


class TestConfigValidation:
    """validate_for_* methods raise ConfigError for missing settings."""

    def test_scraping_requires_api_key(self):
        """Test that scraping needs FIRECRAWL_API_KEY."""
        with patch.dict(os.environ, {}, clear=True):
            config = Config()
        with pytest.raises(ConfigError, match="FIRECRAWL_API_KEY"):
            config.validate_for_scraping()

    def test_usage_sync_rejects_unknown_server(self):
        """Test that POLAR_SERVER must be sandbox or production."""
        env = {"POLAR_ACCESS_TOKEN": "polar_oat_x", "POLAR_SERVER": "staging"}
        with patch.dict(os.environ, env, clear=True):
            config = Config()
        with pytest.raises(ConfigError, match="POLAR_SERVER"):
            config.validate_for_usage_sync()

    def test_database_ok(self):
        """Test that a set DATABASE_URL passes validation."""
        with patch.dict(os.environ, {"DATABASE_URL": "postgresql://u:p@h/db"}, clear=True):
            Config().validate_for_database()

    def test_connection_args(self):
        """Test pool settings passed to the engine."""
        env = {"DATABASE_POOL_SIZE": "7", "DATABASE_MAX_OVERFLOW": "2"}
        with patch.dict(os.environ, env, clear=True):
            args = Config().get_database_connection_args()
        assert args == {"pool_size": 7, "max_overflow": 2, "pool_pre_ping": True}


def make_record(msg="Processed %s", args=("lead_1",)) -> logging.LogRecord:
    return logging.LogRecord(
        name="leadflow.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=10,
        msg=msg,
        args=args,
        exc_info=None,
    )


class TestLogging:
    """Tests for the logging helpers."""

    def test_structured_formatter_emits_json(self):
        """Test that records format as JSON with extra fields."""
        formatter = StructuredFormatter(service_name="test-service")
        record = make_record()
        record.attempt = 2

        data = json.loads(formatter.format(record))

        assert data["message"] == "Processed lead_1"
        assert data["level"] == "INFO"
        assert data["service"] == "test-service"
        assert data["timestamp"].endswith("Z")
        assert data["extra"] == {"attempt": 2}
        assert "context" not in data

    def test_log_context_nests(self):
        """Test that bound fields reach records and unwind after the block."""
        context_filter = ContextFilter()

        with log_context(job_id="job_1", lead_id=None):
            with log_context(lead_id="lead_1"):
                inner = make_record()
                context_filter.filter(inner)
            outer = make_record()
            context_filter.filter(outer)
        after = make_record()
        context_filter.filter(after)

        assert inner.context == {"job_id": "job_1", "lead_id": "lead_1"}
        assert outer.context == {"job_id": "job_1"}
        assert after.context == {}

    def test_context_in_both_formats(self):
        """Test that the context shows up in JSON and terminal output."""
        record = make_record()
        with log_context(job_id="job_1"):
            ContextFilter().filter(record)

        structured = json.loads(StructuredFormatter().format(record))
        human = HumanReadableFormatter(use_colors=False).format(record)

        assert structured["context"] == {"job_id": "job_1"}
        assert "extra" not in structured
        assert human.endswith("leadflow.test: Processed lead_1 [job_id=job_1]")

    def test_setup_logging_sets_level_and_quiets_libraries(self):
        """Test root level and third-party logger levels."""
        setup_logging("DEBUG", structured=False)
        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger("urllib3").level == logging.DEBUG

        setup_logging("INFO", structured=True)
        root = logging.getLogger()
        assert root.level == logging.INFO
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, StructuredFormatter)
        assert logging.getLogger("urllib3").level == logging.WARNING

    def test_get_logger_namespaces_names(self):
        """Test that loggers always live under the leadflow namespace."""
        assert get_logger("leadflow.worker").name == "leadflow.worker"
        assert get_logger("scrape_service.main").name == "leadflow.scrape_service.main"
