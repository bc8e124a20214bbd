"""Application Settings and Configuration.

This module provides application-wide settings that combine configuration
from the configuration manager with application-specific defaults.
"""

import os
from typing import Optional

from src.infrastructure.config_manager import (
    ENV_PREFIX,
    ConfigManager,
    DatabaseConfig,
    SideEffectConfig,
)

# Application metadata
APP_NAME = "Checkup-Ledger"
APP_VERSION = "1.0.0"

# Default page size for list views and history
DEFAULT_PAGE_SIZE = 10

# Upper bound accepted by the list endpoints
MAX_PAGE_SIZE = 1000


class Settings:
    """Application settings loaded from configuration manager and environment.

    Configuration sections are loaded lazily on first access so tests can
    adjust the environment before anything is read.
    """

    def __init__(self):
        self._db_config: Optional[DatabaseConfig] = None
        self._side_effects: Optional[SideEffectConfig] = None
        self._config_manager: Optional[ConfigManager] = None

        self.app_name = os.getenv(f"{ENV_PREFIX}APP_NAME", APP_NAME)
        self.default_page_size = int(os.getenv(f"{ENV_PREFIX}DEFAULT_PAGE_SIZE", str(DEFAULT_PAGE_SIZE)))

        # Logging
        self.log_level = os.getenv(f"{ENV_PREFIX}LOG_LEVEL", "INFO")
        self.log_json = os.getenv(f"{ENV_PREFIX}LOG_JSON", "false").lower() == "true"

        # API server
        self.api_host = os.getenv(f"{ENV_PREFIX}API_HOST", "127.0.0.1")
        self.api_port = int(os.getenv(f"{ENV_PREFIX}API_PORT", "8000"))
        self.cors_origins = [
            origin.strip()
            for origin in os.getenv(f"{ENV_PREFIX}CORS_ORIGINS", "http://localhost:3000").split(",")
            if origin.strip()
        ]

    @property
    def config_manager(self) -> ConfigManager:
        if self._config_manager is None:
            self._config_manager = ConfigManager.from_environment()
        return self._config_manager

    @property
    def db_config(self) -> DatabaseConfig:
        """Get repository configuration."""
        if self._db_config is None:
            self._db_config = self.config_manager.get_database_config()
        return self._db_config

    @property
    def side_effects(self) -> SideEffectConfig:
        """Get survey, notification and approval configuration."""
        if self._side_effects is None:
            self._side_effects = self.config_manager.get_side_effect_config()
        return self._side_effects

    def get_db_path(self) -> str:
        """Get database path for DuckDB.

        Returns:
            Database path or ':memory:' for in-memory database
        """
        if self.db_config.db_type == "duckdb":
            return self.db_config.db_path or ":memory:"
        raise ValueError(f"Database type '{self.db_config.db_type}' does not use db_path")


# Global settings instance
settings = Settings()
