"""Configuration Manager.

This module loads storage and side-effect configuration from environment
variables or a JSON file and validates it with Pydantic before use.

Architecture:
    - Follows Hexagonal Architecture: Infrastructure layer isolated from domain
    - Type-safe configuration using Pydantic models
    - Fail-fast validation prevents runtime errors
"""

import json
import os
import logging
from pathlib import Path
from typing import Optional, Dict, Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger(__name__)

ENV_PREFIX = "CL_"
DEFAULT_ENV_FILE = Path(__file__).parent.parent.parent / ".env"


class DatabaseConfig(BaseModel):
    """Repository backend configuration.

    Parameters:
        db_type: Repository backend ('memory' or 'duckdb')
        db_path: Path to the DuckDB file, or ':memory:' (DuckDB only)
    """

    db_type: str = Field(default="memory", description="Repository backend (memory, duckdb)")
    db_path: Optional[str] = Field(None, description="Path to database file (for DuckDB)")

    @field_validator("db_type")
    @classmethod
    def validate_db_type(cls, v: str) -> str:
        """Validate repository backend."""
        supported_types = ["memory", "duckdb"]
        if v.lower() not in supported_types:
            raise ValueError(f"Unsupported database type: {v}. Supported: {supported_types}")
        return v.lower()

    @field_validator("db_path")
    @classmethod
    def validate_db_path(cls, v: Optional[str]) -> Optional[str]:
        """Validate the database directory exists (the file may not exist yet)."""
        if v is None or v == ":memory:":
            return v

        db_path_obj = Path(v)
        if not db_path_obj.parent.exists():
            raise ValueError(f"Database directory does not exist: {db_path_obj.parent}")
        return str(db_path_obj)

    @model_validator(mode="after")
    def validate_path_usage(self) -> "DatabaseConfig":
        if self.db_type == "memory" and self.db_path not in (None, ":memory:"):
            raise ValueError("db_path is only supported for the duckdb backend")
        return self


class SideEffectConfig(BaseModel):
    """Configuration of the survey, notification and approval capabilities.

    Parameters:
        survey_enabled: Request a survey when a record is completed
        notifications_enabled: Notify participants after lifecycle commands
        approver_ids: Staff ids holding approval authority; empty means any actor may approve
    """

    survey_enabled: bool = True
    notifications_enabled: bool = True
    approver_ids: list[str] = Field(default_factory=list)

    @field_validator("approver_ids", mode="before")
    @classmethod
    def split_approver_ids(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v


def _env_flag(name: str, default: str = "true") -> bool:
    return os.getenv(f"{ENV_PREFIX}{name}", default).lower() == "true"


class ConfigManager:
    """Configuration manager for repository and side-effect settings.

    Example Usage:
        ```python
        # Load from environment variables
        config = ConfigManager.from_environment()
        db_config = config.get_database_config()

        # Load from file
        config = ConfigManager.from_file("config.json")
        side_effects = config.get_side_effect_config()
        ```
    """

    def __init__(self, config_data: Dict[str, Any]):
        self._config_data = config_data
        self._database_config: Optional[DatabaseConfig] = None
        self._side_effect_config: Optional[SideEffectConfig] = None

    @classmethod
    def from_environment(cls, env_file: Optional[Path] = None) -> 'ConfigManager':
        """Load configuration from environment variables.

        A .env file in the project root (or ``env_file``) is loaded first when
        present; variables already set in the environment take precedence.

        Environment Variables:
            - CL_DB_TYPE: Repository backend (memory, duckdb)
            - CL_DB_PATH: Path to database file (for DuckDB)
            - CL_SURVEY_ENABLED: Request surveys on completion (true/false)
            - CL_NOTIFICATIONS_ENABLED: Send notifications (true/false)
            - CL_APPROVER_IDS: Comma-separated staff ids with approval authority

        Returns:
            ConfigManager instance
        """
        env_path = Path(env_file) if env_file is not None else DEFAULT_ENV_FILE
        if env_path.exists():
            load_dotenv(env_path)
            logger.debug(f"Loaded environment variables from {env_path}")

        config_data = {
            "database": {
                "db_type": os.getenv(f"{ENV_PREFIX}DB_TYPE", "memory"),
                "db_path": os.getenv(f"{ENV_PREFIX}DB_PATH"),
            },
            "side_effects": {
                "survey_enabled": _env_flag("SURVEY_ENABLED"),
                "notifications_enabled": _env_flag("NOTIFICATIONS_ENABLED"),
                "approver_ids": os.getenv(f"{ENV_PREFIX}APPROVER_IDS", ""),
            },
        }
        return cls(config_data)

    @classmethod
    def from_file(cls, config_path: str) -> 'ConfigManager':
        """Load configuration from a JSON file.

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config file is invalid
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        try:
            with open(config_file, 'r') as f:
                config_data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in configuration file: {str(e)}")

        return cls(config_data)

    def get_database_config(self) -> DatabaseConfig:
        """Get the validated repository configuration."""
        if self._database_config is None:
            self._database_config = DatabaseConfig(**self._config_data.get("database", {}))
        return self._database_config

    def get_side_effect_config(self) -> SideEffectConfig:
        """Get the validated side-effect configuration."""
        if self._side_effect_config is None:
            self._side_effect_config = SideEffectConfig(**self._config_data.get("side_effects", {}))
        return self._side_effect_config

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by key.

        Parameters:
            key: Configuration key (supports dot notation, e.g., "database.db_type")
            default: Default value if key not found
        """
        value = self._config_data
        for k in key.split("."):
            if isinstance(value, dict):
                value = value.get(k)
            else:
                return default
        return value if value is not None else default


# ============================================================================
# Convenience Functions
# ============================================================================

def get_database_config() -> DatabaseConfig:
    """Load repository configuration from environment.

    Defaults to the in-memory repository if nothing is configured.
    """
    return ConfigManager.from_environment().get_database_config()
