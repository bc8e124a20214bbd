"""Domain Enumerations.

Status, action and classification vocabularies for health check results.
All enums subclass ``str`` so values serialize as their wire names
("FollowUpRequired", "Cancelled", ...) in JSON, DuckDB rows and query
parameters.
"""

from enum import Enum


class HealthCheckResultStatus(str, Enum):
    """Lifecycle status of a health check result.

    ``APPROVED`` is transient: approval resolves immediately to
    ``FOLLOW_UP_REQUIRED`` or ``NO_FOLLOW_UP_REQUIRED`` and is never stored.
    ``SOFT_DELETED`` overlays the status held in ``status_before_deletion``.
    """
    WAITING_FOR_APPROVAL = "WaitingForApproval"
    APPROVED = "Approved"
    FOLLOW_UP_REQUIRED = "FollowUpRequired"
    NO_FOLLOW_UP_REQUIRED = "NoFollowUpRequired"
    COMPLETED = "Completed"
    CANCELLED_COMPLETELY = "CancelledCompletely"
    CANCELLED_FOR_ADJUSTMENT = "CancelledForAdjustment"
    SOFT_DELETED = "SoftDeleted"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    HealthCheckResultStatus.COMPLETED,
    HealthCheckResultStatus.CANCELLED_COMPLETELY,
})

# Statuses in which a proposed or scheduled follow-up date may be carried
FOLLOW_UP_ACTIVE_STATUSES = frozenset({
    HealthCheckResultStatus.WAITING_FOR_APPROVAL,
    HealthCheckResultStatus.CANCELLED_FOR_ADJUSTMENT,
    HealthCheckResultStatus.FOLLOW_UP_REQUIRED,
})


class LifecycleCommandKind(str, Enum):
    """Commands accepted by the lifecycle manager."""
    APPROVE = "Approve"
    CANCEL_COMPLETELY = "CancelCompletely"
    CANCEL_FOR_ADJUSTMENT = "CancelForAdjustment"
    EDIT = "Edit"
    COMPLETE = "Complete"
    CANCEL_FOLLOW_UP = "CancelFollowUp"
    SCHEDULE_FOLLOW_UP = "ScheduleFollowUp"
    RESUBMIT = "Resubmit"
    SOFT_DELETE = "SoftDelete"
    RESTORE = "Restore"


class HistoryAction(str, Enum):
    """Kind of a history entry."""
    CREATED = "Created"
    APPROVED = "Approved"
    CANCELLED = "Cancelled"
    UPDATE = "Update"
    COMPLETED = "Completed"
    FOLLOW_UP_SCHEDULED = "FollowUpScheduled"
    FOLLOW_UP_CANCELLED = "FollowUpCancelled"
    RESUBMITTED = "Resubmitted"
    SOFT_DELETED = "SoftDeleted"
    RESTORED = "Restored"


class FollowUpUrgency(str, Enum):
    """Read-time classification of a follow-up date against today."""
    OVERDUE = "Overdue"
    TODAY = "Today"
    UPCOMING = "Upcoming"


class WarningKind(str, Enum):
    """Kinds of non-fatal outcomes attached to a committed command."""
    SURVEY_CREATION_FAILED = "SurveyCreationFailed"
    NOTIFICATION_FAILED = "NotificationFailed"
