"""DuckDB Repository Adapter.

This adapter implements HealthCheckResultRepositoryPort on DuckDB, an
in-process database that can live in a file or in memory.

Architecture:
    - Implements HealthCheckResultRepositoryPort (Hexagonal Architecture)
    - Records are stored as validated JSON documents next to the columns the
      compare-and-swap and lookups need (id, code, version, status)
    - A record update and its history entry share one transaction
    - The history table is append-only
"""

import logging
from pathlib import Path
from typing import Optional
import threading

import duckdb

from src.domain.health_check_result import HealthCheckResult, HistoryEntry
from src.domain.ports import (
    ConcurrentModificationError,
    HealthCheckResultRepositoryPort,
    RecordNotFoundError,
    StorageError,
)
from src.infrastructure.config_manager import DatabaseConfig

logger = logging.getLogger(__name__)


class DuckDBHealthCheckResultRepository(HealthCheckResultRepositoryPort):
    """DuckDB implementation of the health check result repository.

    Parameters:
        db_config: DatabaseConfig from configuration manager (preferred)
        db_path: Path to DuckDB database file (or ':memory:' for in-memory)

    Example Usage:
        ```python
        from src.infrastructure.config_manager import get_database_config

        repository = DuckDBHealthCheckResultRepository(db_config=get_database_config())
        manager = HealthCheckResultLifecycleManager(repository)
        ```
    """

    def __init__(self, db_config: Optional[DatabaseConfig] = None, db_path: Optional[str] = None):
        if db_config:
            if db_config.db_type != "duckdb":
                raise StorageError(
                    f"DatabaseConfig type '{db_config.db_type}' does not match DuckDB adapter",
                    operation="__init__"
                )
            self.db_path = db_config.db_path or ":memory:"
        else:
            self.db_path = db_path or ":memory:"

        if self.db_path != ":memory:" and not Path(self.db_path).parent.exists():
            raise StorageError(
                f"Database directory does not exist: {Path(self.db_path).parent}",
                operation="__init__"
            )

        # One connection shared by all threads; the lock serializes access
        self._lock = threading.RLock()
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._initialized = False

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            try:
                self._connection = duckdb.connect(self.db_path)
                logger.info(f"Connected to DuckDB database: {self.db_path}")
            except Exception as e:
                raise StorageError(
                    f"Failed to connect to DuckDB: {str(e)}",
                    operation="connect",
                    details={"db_path": self.db_path}
                )
        if not self._initialized:
            self._initialize_schema(self._connection)
            self._initialized = True
        return self._connection

    def _initialize_schema(self, conn: duckdb.DuckDBPyConnection) -> None:
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS health_check_results (
                    id VARCHAR PRIMARY KEY,
                    code VARCHAR NOT NULL UNIQUE,
                    version INTEGER NOT NULL,
                    status VARCHAR NOT NULL,
                    seq BIGINT NOT NULL,
                    payload VARCHAR NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS health_check_result_histories (
                    id VARCHAR PRIMARY KEY,
                    record_id VARCHAR NOT NULL,
                    seq BIGINT NOT NULL,
                    action_date TIMESTAMPTZ NOT NULL,
                    payload VARCHAR NOT NULL
                )
            """)
            conn.execute("CREATE SEQUENCE IF NOT EXISTS health_check_result_seq START 1")
            conn.execute("CREATE SEQUENCE IF NOT EXISTS health_check_result_history_seq START 1")
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_hcr_histories_record_id
                ON health_check_result_histories(record_id)
            """)
            logger.info("DuckDB schema initialized")
        except Exception as e:
            raise StorageError(f"Failed to initialize schema: {str(e)}", operation="initialize_schema")

    def _append_history(self, conn: duckdb.DuckDBPyConnection, entry: HistoryEntry) -> None:
        conn.execute(
            """
            INSERT INTO health_check_result_histories (id, record_id, seq, action_date, payload)
            VALUES (?, ?, nextval('health_check_result_history_seq'), ?, ?)
            """,
            [entry.id, entry.record_id, entry.action_date, entry.model_dump_json()],
        )

    def insert(self, record: HealthCheckResult, entry: HistoryEntry) -> None:
        with self._lock:
            conn = self._get_connection()
            existing = conn.execute(
                "SELECT id FROM health_check_results WHERE id = ? OR code = ?",
                [record.id, record.code],
            ).fetchone()
            if existing is not None:
                raise StorageError(
                    f"Record id or code already exists: {record.code}",
                    operation="insert",
                    details={"record_id": record.id},
                )
            try:
                conn.execute("BEGIN TRANSACTION")
                conn.execute(
                    """
                    INSERT INTO health_check_results (id, code, version, status, seq, payload)
                    VALUES (?, ?, ?, ?, nextval('health_check_result_seq'), ?)
                    """,
                    [record.id, record.code, record.version, record.status.value, record.model_dump_json()],
                )
                self._append_history(conn, entry)
                conn.execute("COMMIT")
            except Exception as e:
                conn.execute("ROLLBACK")
                logger.error(f"Failed to insert health check result {record.code}: {e}", exc_info=True)
                raise StorageError(f"Failed to insert record: {str(e)}", operation="insert")
        logger.debug(f"Inserted health check result {record.code}")

    def get(self, record_id: str) -> Optional[HealthCheckResult]:
        with self._lock:
            row = self._get_connection().execute(
                "SELECT payload FROM health_check_results WHERE id = ?", [record_id]
            ).fetchone()
        if row is None:
            return None
        return HealthCheckResult.model_validate_json(row[0])

    def commit(self, record: HealthCheckResult, entry: HistoryEntry, expected_version: int) -> None:
        with self._lock:
            conn = self._get_connection()
            conn.execute("BEGIN TRANSACTION")
            try:
                row = conn.execute(
                    "SELECT version, code FROM health_check_results WHERE id = ?", [record.id]
                ).fetchone()
                if row is None:
                    raise RecordNotFoundError(f"Health check result not found: {record.id}", record_id=record.id)
                actual_version, code = row
                if actual_version != expected_version:
                    raise ConcurrentModificationError(
                        f"Health check result {code} was modified concurrently "
                        f"(expected version {expected_version}, found {actual_version})",
                        record_id=record.id,
                        expected_version=expected_version,
                        actual_version=actual_version,
                    )
                conn.execute(
                    """
                    UPDATE health_check_results
                    SET version = ?, status = ?, payload = ?
                    WHERE id = ? AND version = ?
                    """,
                    [record.version, record.status.value, record.model_dump_json(), record.id, expected_version],
                )
                self._append_history(conn, entry)
                conn.execute("COMMIT")
            except (RecordNotFoundError, ConcurrentModificationError):
                conn.execute("ROLLBACK")
                raise
            except Exception as e:
                conn.execute("ROLLBACK")
                logger.error(f"Failed to commit health check result {record.id}: {e}", exc_info=True)
                raise StorageError(f"Failed to commit record: {str(e)}", operation="commit")

    def list_all(self) -> list[HealthCheckResult]:
        with self._lock:
            rows = self._get_connection().execute(
                "SELECT payload FROM health_check_results ORDER BY seq"
            ).fetchall()
        return [HealthCheckResult.model_validate_json(payload) for (payload,) in rows]

    def history(self, record_id: str) -> list[HistoryEntry]:
        with self._lock:
            rows = self._get_connection().execute(
                "SELECT payload FROM health_check_result_histories WHERE record_id = ? ORDER BY seq",
                [record_id],
            ).fetchall()
        return [HistoryEntry.model_validate_json(payload) for (payload,) in rows]

    def all_history(self) -> list[HistoryEntry]:
        with self._lock:
            rows = self._get_connection().execute(
                "SELECT payload FROM health_check_result_histories ORDER BY seq"
            ).fetchall()
        return [HistoryEntry.model_validate_json(payload) for (payload,) in rows]

    def close(self) -> None:
        """Close storage connection and release resources."""
        with self._lock:
            if self._connection is not None:
                try:
                    self._connection.close()
                    self._connection = None
                    self._initialized = False
                    logger.info("Closed DuckDB connection")
                except Exception as e:
                    logger.warning(f"Error closing connection: {str(e)}")
