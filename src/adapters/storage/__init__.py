"""Storage adapters for Checkup-Ledger.

This module contains the repository adapters that implement
HealthCheckResultRepositoryPort.
"""

from src.adapters.storage.duckdb_repository import DuckDBHealthCheckResultRepository
from src.adapters.storage.memory_repository import InMemoryHealthCheckResultRepository
from src.infrastructure.config_manager import DatabaseConfig


def create_repository(db_config: DatabaseConfig):
    """Build the repository adapter selected by ``db_config.db_type``."""
    if db_config.db_type == "duckdb":
        return DuckDBHealthCheckResultRepository(db_config=db_config)
    return InMemoryHealthCheckResultRepository()


__all__ = [
    "DuckDBHealthCheckResultRepository",
    "InMemoryHealthCheckResultRepository",
    "create_repository",
]
