"""Request and response models for the HTTP API."""

from datetime import date, datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from src.domain.enums import FollowUpUrgency, LifecycleCommandKind
from src.domain.health_check_result import HealthCheckResult
from src.domain.services.lifecycle_manager import BulkCommandOutcome


class ReasonRequest(BaseModel):
    """Body of both cancellation endpoints; the reason is checked by the lifecycle manager."""
    reason: Optional[str] = None


class EditRequest(BaseModel):
    """Replacement clinical content for a record returned for adjustment.

    Detail entries are passed through unvalidated so the lifecycle manager
    reports incomplete entries with its own guard names.
    """
    details: list[dict[str, Any]] = Field(default_factory=list)
    follow_up_required: bool = False
    follow_up_date: Optional[date] = None


class ScheduleFollowUpRequest(BaseModel):
    follow_up_date: date


class BulkRequest(BaseModel):
    ids: list[str] = Field(..., min_length=1, description="Record identifiers")


class BulkResponse(BaseModel):
    """Per-record outcomes of a bulk soft-delete or restore."""
    succeeded: int
    failed: int
    results: list[BulkCommandOutcome]

    @classmethod
    def from_outcomes(cls, outcomes: list[BulkCommandOutcome]) -> "BulkResponse":
        succeeded = sum(1 for o in outcomes if o.success)
        return cls(succeeded=succeeded, failed=len(outcomes) - succeeded, results=outcomes)


class HealthCheckResultResponse(BaseModel):
    """A record with the commands currently legal on it and its follow-up urgency."""
    record: HealthCheckResult
    allowed_commands: list[LifecycleCommandKind]
    follow_up_urgency: Optional[FollowUpUrgency] = None


class RepositoryHealth(BaseModel):
    status: Literal["connected", "disconnected"]
    type: str
    response_time_ms: float | None = Field(None, description="Repository response time in milliseconds")


class HealthResponse(BaseModel):
    status: Literal["healthy", "unhealthy"]
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    version: str
    repository: RepositoryHealth
