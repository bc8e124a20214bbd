"""Health Check Result Schema Definitions.

This module defines the canonical models for a health check result: the
participants, the ordered clinical detail entries, the lifecycle fields and
the immutable history entries that form its audit trail.

Architecture:
    - Pure domain models with zero infrastructure dependencies
    - Models are frozen; every transition produces a new validated instance
    - Cross-field lifecycle invariants are enforced by a model validator so
      no adapter can persist an inconsistent record
"""

import uuid
from datetime import date, datetime, timezone
from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from src.domain.enums import (
    FOLLOW_UP_ACTIVE_STATUSES,
    HealthCheckResultStatus,
    HistoryAction,
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def issue_code(checkup_date: date) -> str:
    """Issue a human-readable record code such as ``HCR-20240110-4F2A9C``."""
    return f"HCR-{checkup_date:%Y%m%d}-{uuid.uuid4().hex[:6].upper()}"


class ParticipantRef(BaseModel):
    """Reference to a patient or staff member taking part in a checkup."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="User identifier")
    full_name: Optional[str] = Field(None, description="Display name")
    user_name: Optional[str] = Field(None, description="Login name")
    email: Optional[str] = Field(None, description="Contact email")


class HealthCheckResultDetail(BaseModel):
    """One finding of a checkup.

    All three fields are required and may not be blank; a partially filled
    entry is rejected as a whole.
    """

    model_config = ConfigDict(frozen=True)

    result_summary: str = Field(..., description="Summary of the finding")
    diagnosis: str = Field(..., description="Diagnosis")
    recommendations: str = Field(..., description="Recommendations for the patient")

    @field_validator("result_summary", "diagnosis", "recommendations")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must be a non-empty string")
        return v.strip()


class HistoryEntry(BaseModel):
    """Immutable audit record of one transition.

    Parameters:
        id: Entry identifier
        record_id: Identifier of the health check result
        action: Kind of transition
        action_date: When the transition committed
        performed_by: Acting staff identifier
        previous_status: Status before the transition (None for creation)
        new_status: Status after the transition
        change_details: Free-text description of what changed
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    record_id: str
    action: HistoryAction
    action_date: datetime
    performed_by: str
    previous_status: Optional[HealthCheckResultStatus] = None
    new_status: HealthCheckResultStatus
    change_details: Optional[str] = None


class HealthCheckResult(BaseModel):
    """One clinical encounter outcome and its lifecycle state.

    ``status`` is a cache of the latest history entry's ``new_status``. When
    the record is soft-deleted, ``status`` is ``SoftDeleted`` and the overlaid
    clinical status is kept in ``status_before_deletion``.

    Parameters:
        id: Opaque identifier
        code: Human-readable code, immutable once issued
        subject: Patient reference (immutable)
        staff: Performing staff reference (immutable)
        checkup_date: Date of the checkup (immutable)
        details: Ordered, non-empty detail entries
        status: Current lifecycle status
        follow_up_required: Whether the checkup calls for a follow-up visit
        follow_up_date: Scheduled or proposed follow-up date
        approved_date / approved_by: Set once approval has happened
        cancelled_date / cancelled_by / cancellation_reason: Set when cancelled
        status_before_deletion / soft_deleted_date / soft_deleted_by: Soft-delete marker
        version: Monotonic counter used for compare-and-swap commits
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    code: str = Field(..., min_length=1)
    subject: ParticipantRef
    staff: ParticipantRef
    checkup_date: date
    details: tuple[HealthCheckResultDetail, ...] = Field(..., min_length=1)

    status: HealthCheckResultStatus = HealthCheckResultStatus.WAITING_FOR_APPROVAL
    follow_up_required: bool = False
    follow_up_date: Optional[date] = None

    approved_date: Optional[datetime] = None
    approved_by: Optional[str] = None
    cancelled_date: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    cancellation_reason: Optional[str] = None

    status_before_deletion: Optional[HealthCheckResultStatus] = None
    soft_deleted_date: Optional[datetime] = None
    soft_deleted_by: Optional[str] = None

    created_at: datetime = Field(default_factory=utc_now)
    created_by: Optional[str] = None
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None
    version: int = Field(default=1, ge=1)

    @property
    def is_soft_deleted(self) -> bool:
        return self.status == HealthCheckResultStatus.SOFT_DELETED

    @property
    def effective_status(self) -> HealthCheckResultStatus:
        """Clinical status, looking through the soft-delete overlay."""
        if self.is_soft_deleted:
            return self.status_before_deletion
        return self.status

    @model_validator(mode="after")
    def validate_lifecycle_fields(self) -> "HealthCheckResult":
        """Enforce the cross-field lifecycle invariants."""
        if self.status == HealthCheckResultStatus.APPROVED:
            raise ValueError("Approved is a transient status and cannot be stored")

        if self.is_soft_deleted:
            if self.status_before_deletion is None:
                raise ValueError("Soft-deleted record must remember its prior status")
            if self.status_before_deletion == HealthCheckResultStatus.SOFT_DELETED:
                raise ValueError("Soft-delete cannot overlay another soft-delete")
            if self.soft_deleted_date is None:
                raise ValueError("Soft-deleted record must carry a deletion timestamp")
        elif self.status_before_deletion is not None or self.soft_deleted_date is not None:
            raise ValueError("Soft-delete marker present on a record that is not deleted")

        status = self.effective_status

        if not self.follow_up_required and self.follow_up_date is not None:
            raise ValueError("follow_up_date requires follow_up_required")
        if status in FOLLOW_UP_ACTIVE_STATUSES:
            if self.follow_up_required and self.follow_up_date is None:
                raise ValueError(f"follow_up_date is required while status is {status.value}")
        elif self.follow_up_date is not None:
            raise ValueError(f"follow_up_date must be cleared while status is {status.value}")
        if status == HealthCheckResultStatus.FOLLOW_UP_REQUIRED and not self.follow_up_required:
            raise ValueError("FollowUpRequired status requires follow_up_required")

        cancelled = status in (
            HealthCheckResultStatus.CANCELLED_COMPLETELY,
            HealthCheckResultStatus.CANCELLED_FOR_ADJUSTMENT,
        )
        if cancelled and (self.cancelled_date is None or not self.cancellation_reason):
            raise ValueError("Cancelled record must carry cancelled_date and cancellation_reason")
        if not cancelled and (self.cancelled_date is not None or self.cancellation_reason):
            raise ValueError("Cancellation fields present on a record that is not cancelled")

        approved_path = status in (
            HealthCheckResultStatus.FOLLOW_UP_REQUIRED,
            HealthCheckResultStatus.NO_FOLLOW_UP_REQUIRED,
            HealthCheckResultStatus.COMPLETED,
        )
        if approved_path and self.approved_date is None:
            raise ValueError(f"{status.value} requires approved_date")
        if status == HealthCheckResultStatus.WAITING_FOR_APPROVAL and self.approved_date is not None:
            raise ValueError("WaitingForApproval record cannot carry approved_date")

        return self

    def evolve(self, **changes) -> "HealthCheckResult":
        """Return a validated copy with ``changes`` applied.

        Raises:
            pydantic.ValidationError: If the resulting record breaks an invariant
        """
        data = self.model_dump()
        data.update(changes)
        return HealthCheckResult.model_validate(data)


def replay_status(entries: Iterable[HistoryEntry]) -> Optional[HealthCheckResultStatus]:
    """Derive the current status from a chronological history log.

    Returns:
        The ``new_status`` of the last entry, or None for an empty log
    """
    status = None
    for entry in entries:
        status = entry.new_status
    return status
