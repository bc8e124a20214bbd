"""Domain Ports - Abstract Contracts for the Lifecycle Core.

This module defines the Port interfaces (abstract contracts) that Adapters must
implement, together with the Result type and the exception hierarchy shared by
the domain services. Following Hexagonal Architecture, the Domain Core defines
what it needs, not how it's provided.

Architecture:
    - Pure abstract interfaces with zero infrastructure dependencies
    - Repository adapters (in-memory, DuckDB) implement HealthCheckResultRepositoryPort
    - Side-effect adapters (survey, notification) implement SurveyPort/NotificationPort
    - Domain Core is isolated from persistence and delivery specifics
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar, Union

from src.domain.health_check_result import HealthCheckResult, HistoryEntry

# Type variable for Result generic
T = TypeVar('T')


# ============================================================================
# Result Type for Success/Failure Communication
# ============================================================================

@dataclass(frozen=True)
class Result(Generic[T]):
    """Result type for communicating success or failure without exceptions.

    Outward side-effect adapters and reporting services return Results so the
    core can observe a failure without letting it interrupt a committed
    transition.

    Attributes:
        success: True if the operation succeeded, False otherwise
        value: The successful result value (only present if success=True)
        error: Error information (only present if success=False)
        error_type: Type of error (SurveyError, StatisticsError, etc.)
        error_details: Additional error context

    Example:
        ```python
        result = survey_port.create_survey(record)
        if not result.success:
            log_warning(result.error, result.error_details)
        ```
    """

    success: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    error_details: Optional[dict] = None

    @classmethod
    def success_result(cls, value: T) -> 'Result[T]':
        """Create a successful result.

        Parameters:
            value: The successful result value

        Returns:
            Result: Success result with the value
        """
        return cls(
            success=True,
            value=value,
            error=None,
            error_type=None,
            error_details=None
        )

    @classmethod
    def failure_result(
        cls,
        error: Union[str, Exception],
        error_type: Optional[str] = None,
        error_details: Optional[dict] = None
    ) -> 'Result[T]':
        """Create a failure result.

        Parameters:
            error: Error message or exception
            error_type: Type of error (e.g., "SurveyError")
            error_details: Additional context (record_id, subject_id, etc.)

        Returns:
            Result: Failure result with error information
        """
        error_message = str(error) if isinstance(error, Exception) else error
        error_type_name = error_type or (type(error).__name__ if isinstance(error, Exception) else "UnknownError")

        return cls(
            success=False,
            value=None,
            error=error_message,
            error_type=error_type_name,
            error_details=error_details or {}
        )

    def is_success(self) -> bool:
        """Check if result is successful."""
        return self.success

    def is_failure(self) -> bool:
        """Check if result is a failure."""
        return not self.success


# ============================================================================
# Custom Exception Hierarchy
# ============================================================================

class LifecycleError(Exception):
    """Base exception for all rejected lifecycle operations.

    A rejected operation leaves the record completely unchanged.

    Attributes:
        record_id: Identifier of the record the command targeted (if any)
        guard: Name of the guard that failed, so callers can decide whether
               to refetch or prompt for missing input
    """

    def __init__(self, message: str, record_id: Optional[str] = None, guard: Optional[str] = None):
        super().__init__(message)
        self.record_id = record_id
        self.guard = guard


class ValidationError(LifecycleError):
    """Raised when a command or record is missing required input.

    Examples: empty cancellation reason, blank detail entry, follow-up date
    missing while follow-up is required.

    Attributes:
        details: Field-level validation messages
    """

    def __init__(
        self,
        message: str,
        record_id: Optional[str] = None,
        guard: Optional[str] = None,
        details: Optional[dict] = None
    ):
        super().__init__(message, record_id=record_id, guard=guard)
        self.details = details or {}


class InvalidTransitionError(LifecycleError):
    """Raised when a command is not legal from the record's current status.

    Attributes:
        current_status: Status the record was in
        command: Command that was attempted
    """

    def __init__(self, message: str, record_id: Optional[str] = None, current_status=None, command=None):
        super().__init__(message, record_id=record_id, guard="transition")
        self.current_status = current_status
        self.command = command


class ConcurrentModificationError(LifecycleError):
    """Raised when the record changed between the guard check and the commit.

    The caller must retry with a fresh read.

    Attributes:
        expected_version: Version the command was validated against
        actual_version: Version found at commit time
    """

    def __init__(
        self,
        message: str,
        record_id: Optional[str] = None,
        expected_version: Optional[int] = None,
        actual_version: Optional[int] = None
    ):
        super().__init__(message, record_id=record_id, guard="version")
        self.expected_version = expected_version
        self.actual_version = actual_version


class PermissionDeniedError(LifecycleError):
    """Raised when the acting staff lacks the authority a command requires."""

    def __init__(self, message: str, record_id: Optional[str] = None, actor_id: Optional[str] = None):
        super().__init__(message, record_id=record_id, guard="approval_authority")
        self.actor_id = actor_id


class RecordNotFoundError(LifecycleError):
    """Raised when no record exists for the given identifier."""

    def __init__(self, message: str, record_id: Optional[str] = None):
        super().__init__(message, record_id=record_id, guard="exists")


class StorageError(Exception):
    """Raised when a repository operation fails.

    Attributes:
        operation: The storage operation that failed (e.g., 'commit', 'get')
        details: Additional error details (sanitized, no PII)
    """

    def __init__(self, message: str, operation: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message)
        self.operation = operation
        self.details = details or {}


class ExternalSideEffectFailure(Exception):
    """Raised by side-effect adapters when a survey or notification call fails.

    The lifecycle manager never propagates this exception; it converts it into
    a warning on an already committed command result.

    Attributes:
        capability: Name of the failing capability ("survey", "notification")
    """

    def __init__(self, message: str, capability: Optional[str] = None):
        super().__init__(message)
        self.capability = capability


# ============================================================================
# Repository Port
# ============================================================================

class HealthCheckResultRepositoryPort(ABC):
    """Abstract contract for persisting health check results and their history.

    Key Principles:
        - Snapshots: reads return immutable records; callers never hold live rows
        - Compare-and-swap: ``commit`` only succeeds against the version the
          command was validated against (single writer per record)
        - Atomic: a record update and its history entry commit together or not at all
        - Append-only: history entries are never modified or removed
    """

    @abstractmethod
    def insert(self, record: HealthCheckResult, entry: HistoryEntry) -> None:
        """Persist a newly created record together with its creation entry.

        Raises:
            StorageError: If the id or code is already taken or the write fails
        """
        pass

    @abstractmethod
    def get(self, record_id: str) -> Optional[HealthCheckResult]:
        """Return the current snapshot of a record, or None if it does not exist."""
        pass

    @abstractmethod
    def commit(self, record: HealthCheckResult, entry: HistoryEntry, expected_version: int) -> None:
        """Atomically replace a record and append one history entry.

        Parameters:
            record: New record state (its ``version`` must be ``expected_version + 1``)
            entry: History entry describing the transition
            expected_version: Version of the snapshot the guards were checked against

        Raises:
            ConcurrentModificationError: If the stored version differs from expected_version
            RecordNotFoundError: If the record no longer exists
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    def list_all(self) -> list[HealthCheckResult]:
        """Return a snapshot of every record, in insertion order."""
        pass

    @abstractmethod
    def history(self, record_id: str) -> list[HistoryEntry]:
        """Return the chronological history of one record."""
        pass

    @abstractmethod
    def all_history(self) -> list[HistoryEntry]:
        """Return every history entry across all records, chronologically."""
        pass

    def close(self) -> None:
        """Release resources held by the adapter (optional)."""
        return None


# ============================================================================
# Side-Effect Ports
# ============================================================================

class SurveyPort(ABC):
    """Capability to request a post-visit survey for a completed record."""

    @abstractmethod
    def create_survey(self, record: HealthCheckResult) -> Result[str]:
        """Request a survey addressed to the record's subject.

        Returns:
            Result[str]: Survey identifier on success, failure information otherwise.
            Adapters may also raise ExternalSideEffectFailure.
        """
        pass


class NotificationPort(ABC):
    """Capability to send a notification/email to a participant."""

    @abstractmethod
    def notify(self, recipient_id: str, subject: str, message: str, record_id: Optional[str] = None) -> Result[None]:
        """Send one notification.

        Returns:
            Result[None]: Success or failure information. Adapters may also
            raise ExternalSideEffectFailure.
        """
        pass


class ApprovalAuthorityPort(ABC):
    """Capability to decide whether a staff member may approve results."""

    @abstractmethod
    def has_approval_authority(self, actor_id: str) -> bool:
        pass
