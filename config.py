# config.py

"""
Centralized configuration for the Atlas game core.
Uses environment variables with sensible defaults.
"""

import os
import logging
from typing import Dict, Any

from dotenv import load_dotenv

load_dotenv()  # dev only; no-op when no .env is present


class Config:
    """Configuration management from environment variables."""

    def __init__(self):
        """Initialize configuration from environment variables."""
        # Cache Configuration (sizes are entry counts, TTLs are seconds)
        self.SCENARIO_CACHE_SIZE = int(os.getenv("SCENARIO_CACHE_SIZE", "50"))
        self.SCENARIO_CACHE_TTL = float(os.getenv("SCENARIO_CACHE_TTL", "300"))
        self.PROFILE_CACHE_SIZE = int(os.getenv("PROFILE_CACHE_SIZE", "200"))
        self.PROFILE_CACHE_TTL = float(os.getenv("PROFILE_CACHE_TTL", "30"))
        self.OVERVIEW_CACHE_TTL = float(os.getenv("OVERVIEW_CACHE_TTL", "120"))
        self.PLACE_SEARCH_CACHE_SIZE = int(os.getenv("PLACE_SEARCH_CACHE_SIZE", "100"))
        self.PLACE_SEARCH_CACHE_TTL = float(os.getenv("PLACE_SEARCH_CACHE_TTL", "60"))

        # Generator Configuration
        self.GENERATOR_MAX_RETRIES = int(os.getenv("GENERATOR_MAX_RETRIES", "2"))
        self.GENERATOR_BASE_DELAY = float(os.getenv("GENERATOR_BASE_DELAY", "0.5"))
        self.GENERATOR_TIMEOUT = float(os.getenv("GENERATOR_TIMEOUT", "20"))
        self.OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
        self.OPENAI_SCENARIO_MODEL = os.getenv("OPENAI_SCENARIO_MODEL", "gpt-4o-mini")
        self.OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL")

        # Database Configuration
        self.DB_DSN = os.getenv("DB_DSN")
        self.DATABASE_URL = os.getenv("DATABASE_URL")
        self.DB_MIN_CONN = int(os.getenv("DB_MIN_CONN", "1"))
        self.DB_MAX_CONN = int(os.getenv("DB_MAX_CONN", "10"))
        self.DB_COMMAND_TIMEOUT = int(os.getenv("DB_COMMAND_TIMEOUT", "30"))

        # Overview
        self.OVERVIEW_DEFAULT_LIMIT = int(os.getenv("OVERVIEW_DEFAULT_LIMIT", "500"))
        self.OVERVIEW_MAX_LIMIT = int(os.getenv("OVERVIEW_MAX_LIMIT", "1000"))

        # Logging
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

        self._configure_logging()

        logging.info("Configuration initialized")

    def _configure_logging(self):
        """Configure logging based on settings."""
        log_levels = {
            "DEBUG": logging.DEBUG,
            "INFO": logging.INFO,
            "WARNING": logging.WARNING,
            "ERROR": logging.ERROR,
            "CRITICAL": logging.CRITICAL
        }

        log_level = log_levels.get(self.LOG_LEVEL.upper(), logging.INFO)

        logging.basicConfig(
            level=log_level,
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary, masking secrets."""
        data = {k: v for k, v in self.__dict__.items() if not k.startswith('_')}
        if data.get("OPENAI_API_KEY"):
            data["OPENAI_API_KEY"] = "***"
        for key in ("DB_DSN", "DATABASE_URL"):
            if data.get(key):
                data[key] = "***"
        return data

    def __str__(self) -> str:
        return str(self.to_dict())

    def get(self, key, default=None):
        """Get configuration value with optional default."""
        return getattr(self, key, default)


# Create global instance
CONFIG = Config()


def get_config():
    """Get the global configuration instance."""
    return CONFIG


def get(key, default=None):
    """Get configuration value with fallback."""
    return CONFIG.get(key, default)
