"""Leadflow configuration module.

This module provides centralized configuration management for the backend
API, the job worker and the scraping service, loading settings from
environment variables with validation.

Configuration is loaded from:
1. .env file (if present)
2. Environment variables

All API keys and sensitive configuration should be provided via environment
variables, never hardcoded.

Usage:
    >>> from leadflow.config import config
    >>> print(config.APP_URL)
    http://localhost:3000
"""

import logging
import os

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class ConfigError(Exception):
    """Raised when configuration validation fails."""

    pass


class Config:
    """Application configuration class that loads settings from environment variables.

    Attributes:
        DATABASE_URL: PostgreSQL (or SQLite for local use) connection string.
        FIRECRAWL_API_KEY: Firecrawl API key for web scraping.
        POLAR_ACCESS_TOKEN: Polar organization access token for usage sync.
        POLAR_SERVER: Polar environment, "sandbox" or "production".
        APP_URL: Public web app URL used to build chat links.
        JOB_MAX_ATTEMPTS: Attempts before a queued job is marked failed.
        JOB_CONCURRENCY: Jobs the worker runs in parallel.

    Example:
        >>> config = Config()
        >>> print(config.APP_ENV)
        dev
    """

    def __init__(self) -> None:
        """Initialize configuration by loading from environment variables."""
        self.logger = logging.getLogger(__name__)

        # Application environment
        self.APP_ENV = self._get_optional("APP_ENV", "dev")
        self.DEBUG = self._get_bool("DEBUG")
        self.LOG_LEVEL = self._get_optional("LOG_LEVEL", "INFO")
        self.APP_URL = self._get_optional("APP_URL", "http://localhost:3000")

        # Database Configuration
        self.DATABASE_URL = self._get_optional("DATABASE_URL")
        self.DATABASE_POOL_SIZE = int(self._get_optional("DATABASE_POOL_SIZE", "5"))
        self.DATABASE_MAX_OVERFLOW = int(
            self._get_optional("DATABASE_MAX_OVERFLOW", "10")
        )
        self.DATABASE_ECHO = self._get_bool("DATABASE_ECHO")

        # Firecrawl Configuration
        self.FIRECRAWL_API_KEY = self._get_optional("FIRECRAWL_API_KEY")
        self.FIRECRAWL_TIMEOUT_SECONDS = int(
            self._get_optional("FIRECRAWL_TIMEOUT_SECONDS", "60")
        )

        # Polar Configuration
        self.POLAR_ACCESS_TOKEN = self._get_optional("POLAR_ACCESS_TOKEN")
        self.POLAR_SERVER = self._get_optional("POLAR_SERVER", "sandbox")
        self.POLAR_TIMEOUT_SECONDS = int(
            self._get_optional("POLAR_TIMEOUT_SECONDS", "30")
        )

        # API Server Configuration
        self.API_HOST = self._get_optional("API_HOST", "0.0.0.0")
        self.API_PORT = int(self._get_optional("API_PORT", "8080"))
        self.CORS_ORIGINS = [
            origin.strip()
            for origin in self._get_optional(
                "CORS_ORIGINS", "http://localhost:3000,http://localhost:3001"
            ).split(",")
            if origin.strip()
        ]

        # Scraping Service Configuration
        self.SCRAPER_HOST = self._get_optional("SCRAPER_HOST", "0.0.0.0")
        self.SCRAPER_PORT = int(self._get_optional("SCRAPER_PORT", "3002"))

        # Job Queue Configuration
        self.JOB_MAX_ATTEMPTS = int(self._get_optional("JOB_MAX_ATTEMPTS", "3"))
        self.JOB_CONCURRENCY = int(self._get_optional("JOB_CONCURRENCY", "3"))
        self.JOB_POLL_INTERVAL_SECONDS = float(
            self._get_optional("JOB_POLL_INTERVAL_SECONDS", "2.0")
        )
        self.JOB_RETRY_DELAY_SECONDS = float(
            self._get_optional("JOB_RETRY_DELAY_SECONDS", "5.0")
        )
        self.JOB_VISIBILITY_TIMEOUT_SECONDS = float(
            self._get_optional("JOB_VISIBILITY_TIMEOUT_SECONDS", "600")
        )
        self.RUN_WORKER_IN_API = self._get_bool("RUN_WORKER_IN_API")

        # Usage Sync Configuration
        self.USAGE_SYNC_BATCH_SIZE = int(
            self._get_optional("USAGE_SYNC_BATCH_SIZE", "100")
        )
        self.USAGE_RETENTION_DAYS = int(
            self._get_optional("USAGE_RETENTION_DAYS", "30")
        )

        # Rate Limiting
        self.RETRY_MAX_ATTEMPTS = int(self._get_optional("RETRY_MAX_ATTEMPTS", "3"))
        self.RETRY_DELAY_SECONDS = float(
            self._get_optional("RETRY_DELAY_SECONDS", "1.0")
        )

    def _get_optional(self, name: str, default: str = "") -> str:
        """Get an optional configuration value from environment variables."""
        if name in os.environ:
            return os.environ[name]
        return default

    def _get_bool(self, name: str) -> bool:
        """Get a boolean configuration value from environment variables.

        Returns:
            True if the environment variable exists and is set to 'true' or '1'.
        """
        return name in os.environ and os.environ[name].lower() in ["true", "1"]

    def validate_for_scraping(self) -> None:
        """Validate configuration required for Firecrawl scraping.

        Raises:
            ConfigError: If required scraping configuration is missing.
        """
        if not self.FIRECRAWL_API_KEY:
            raise ConfigError("FIRECRAWL_API_KEY is required for web scraping")

    def validate_for_usage_sync(self) -> None:
        """Validate configuration required for syncing usage to Polar.

        Raises:
            ConfigError: If required Polar configuration is missing.
        """
        if not self.POLAR_ACCESS_TOKEN:
            raise ConfigError("POLAR_ACCESS_TOKEN is required for usage sync")
        if self.POLAR_SERVER not in ("sandbox", "production"):
            raise ConfigError(
                f"POLAR_SERVER must be 'sandbox' or 'production', got {self.POLAR_SERVER!r}"
            )

    def validate_for_database(self) -> None:
        """Validate configuration required for database operations.

        Raises:
            ConfigError: If required database configuration is missing.
        """
        if not self.DATABASE_URL:
            raise ConfigError("DATABASE_URL is required for database operations")

    def get_database_connection_args(self) -> dict:
        """Get database connection arguments for SQLAlchemy.

        Returns:
            Dictionary of connection arguments.
        """
        return {
            "pool_size": self.DATABASE_POOL_SIZE,
            "max_overflow": self.DATABASE_MAX_OVERFLOW,
            "pool_pre_ping": True,
        }

    def build_chat_url(self, token: str) -> str:
        """Build the public chat URL for a chat link token."""
        return f"{self.APP_URL.rstrip('/')}/chat/{token}"

    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.APP_ENV.lower() in ["dev", "development"]


# Create global singleton instance
config = Config()
