"""In-Memory Repository Adapter.

Process-local implementation of HealthCheckResultRepositoryPort used by the
API in development, by the CLI's demo mode and by the test suite. Records are
frozen Pydantic models, so handing them out directly is a safe snapshot.
"""

import logging
import threading
from typing import Optional

from src.domain.health_check_result import HealthCheckResult, HistoryEntry
from src.domain.ports import (
    ConcurrentModificationError,
    HealthCheckResultRepositoryPort,
    RecordNotFoundError,
    StorageError,
)

logger = logging.getLogger(__name__)


class InMemoryHealthCheckResultRepository(HealthCheckResultRepositoryPort):
    """Dictionary-backed repository guarded by a single lock.

    The lock makes the version check and the write of ``commit`` one atomic
    step, which is what gives each record a single writer.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._records: dict[str, HealthCheckResult] = {}
        self._codes: set[str] = set()
        self._history: list[HistoryEntry] = []

    def insert(self, record: HealthCheckResult, entry: HistoryEntry) -> None:
        with self._lock:
            if record.id in self._records:
                raise StorageError(f"Record id already exists: {record.id}", operation="insert")
            if record.code in self._codes:
                raise StorageError(f"Record code already exists: {record.code}", operation="insert")
            self._records[record.id] = record
            self._codes.add(record.code)
            self._history.append(entry)
        logger.debug(f"Inserted health check result {record.code}")

    def get(self, record_id: str) -> Optional[HealthCheckResult]:
        with self._lock:
            return self._records.get(record_id)

    def commit(self, record: HealthCheckResult, entry: HistoryEntry, expected_version: int) -> None:
        with self._lock:
            current = self._records.get(record.id)
            if current is None:
                raise RecordNotFoundError(f"Health check result not found: {record.id}", record_id=record.id)
            if current.version != expected_version:
                raise ConcurrentModificationError(
                    f"Health check result {current.code} was modified concurrently "
                    f"(expected version {expected_version}, found {current.version})",
                    record_id=record.id,
                    expected_version=expected_version,
                    actual_version=current.version,
                )
            self._records[record.id] = record
            self._history.append(entry)

    def list_all(self) -> list[HealthCheckResult]:
        with self._lock:
            return list(self._records.values())

    def history(self, record_id: str) -> list[HistoryEntry]:
        with self._lock:
            return [e for e in self._history if e.record_id == record_id]

    def all_history(self) -> list[HistoryEntry]:
        with self._lock:
            return list(self._history)
