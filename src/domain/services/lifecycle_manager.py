"""Health Check Result Lifecycle Manager.

This module owns the state machine of a health check result: every command
is validated against the record's current status, applied as one atomic
commit (record + history entry, compare-and-swap on ``version``), and only
then are outward side effects (survey, notification) requested.

Guarantees:
    - A rejected command leaves the record completely unchanged and names the
      guard that failed
    - At most one state change per command; a stale write raises
      ConcurrentModificationError instead of overwriting a concurrent commit
    - Side-effect failures never roll back a committed transition; they come
      back as warnings on the CommandResult

Architecture:
    - Pure domain service; persistence and delivery are reached through ports
    - Central dispatch table: guards are enforced once, not per screen
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Iterable, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from src.domain.enums import (
    HealthCheckResultStatus,
    HistoryAction,
    LifecycleCommandKind,
    WarningKind,
)
from src.domain.health_check_result import (
    HealthCheckResult,
    HealthCheckResultDetail,
    HistoryEntry,
    ParticipantRef,
    issue_code,
    utc_now,
)
from src.domain.ports import (
    ApprovalAuthorityPort,
    ExternalSideEffectFailure,
    HealthCheckResultRepositoryPort,
    InvalidTransitionError,
    LifecycleError,
    NotificationPort,
    PermissionDeniedError,
    RecordNotFoundError,
    Result,
    SurveyPort,
    ValidationError,
)

logger = logging.getLogger(__name__)

Status = HealthCheckResultStatus


# ============================================================================
# Command / Result Shapes
# ============================================================================

class LifecycleCommand(BaseModel):
    """Command input: ``{record_id, command, actor_id, payload}``."""

    model_config = ConfigDict(frozen=True)

    record_id: str = Field(..., min_length=1)
    command: LifecycleCommandKind
    actor_id: str = Field(..., min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)


class CommandWarning(BaseModel):
    """Non-fatal outcome attached to a committed command."""

    kind: WarningKind
    message: str


class CommandResult(BaseModel):
    """Command output: ``{success, new_status, history_entry_id, warnings}``."""

    success: bool = True
    record_id: str
    new_status: HealthCheckResultStatus
    history_entry_id: str
    warnings: list[CommandWarning] = Field(default_factory=list)


class BulkCommandOutcome(BaseModel):
    """Per-record outcome of a bulk soft-delete or restore."""

    record_id: str
    success: bool
    result: Optional[CommandResult] = None
    error: Optional[str] = None
    guard: Optional[str] = None


# ============================================================================
# Payloads
# ============================================================================

class EmptyPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")


class ReasonPayload(BaseModel):
    """Payload of both cancellation commands."""

    reason: str

    @field_validator("reason", mode="before")
    @classmethod
    def validate_reason(cls, v) -> str:
        if v is None or not str(v).strip():
            raise ValueError("reason is required")
        return str(v).strip()


def _check_follow_up_pair(follow_up_required: bool, follow_up_date: Optional[date]) -> None:
    if follow_up_required and follow_up_date is None:
        raise ValueError("follow_up_date is required when follow_up_required is true")
    if not follow_up_required and follow_up_date is not None:
        raise ValueError("follow_up_date is only allowed when follow_up_required is true")


class EditPayload(BaseModel):
    """Full replacement of the clinical content of an adjusted record."""

    details: list[HealthCheckResultDetail] = Field(..., min_length=1)
    follow_up_required: bool = False
    follow_up_date: Optional[date] = None

    @model_validator(mode="after")
    def validate_follow_up(self) -> "EditPayload":
        _check_follow_up_pair(self.follow_up_required, self.follow_up_date)
        return self


class ScheduleFollowUpPayload(BaseModel):
    follow_up_date: date


class CreateHealthCheckResultRequest(BaseModel):
    """Input for recording a new checkup outcome."""

    subject: ParticipantRef
    staff: ParticipantRef
    checkup_date: date
    details: list[HealthCheckResultDetail] = Field(..., min_length=1)
    follow_up_required: bool = False
    follow_up_date: Optional[date] = None

    @model_validator(mode="after")
    def validate_follow_up(self) -> "CreateHealthCheckResultRequest":
        _check_follow_up_pair(self.follow_up_required, self.follow_up_date)
        return self


def _parse(model: Type[BaseModel], data: Any, record_id: Optional[str] = None, guard: str = "payload"):
    """Validate input into ``model``, translating Pydantic errors into ValidationError."""
    try:
        return model.model_validate(data or {})
    except PydanticValidationError as e:
        details = {".".join(str(p) for p in err["loc"]) or "payload": err["msg"] for err in e.errors()}
        raise ValidationError(
            f"Invalid {guard}: " + "; ".join(f"{k}: {v}" for k, v in details.items()),
            record_id=record_id,
            guard=guard,
            details=details,
        ) from e


# ============================================================================
# Transition Table
# ============================================================================

NON_TERMINAL_LIVE_STATUSES = frozenset({
    Status.WAITING_FOR_APPROVAL,
    Status.FOLLOW_UP_REQUIRED,
    Status.NO_FOLLOW_UP_REQUIRED,
    Status.CANCELLED_FOR_ADJUSTMENT,
})


@dataclass(frozen=True)
class TransitionRule:
    """Valid source statuses, payload shape and history kind of one command."""
    sources: frozenset
    action: HistoryAction
    payload_model: Type[BaseModel]
    handler: str


TRANSITIONS: dict[LifecycleCommandKind, TransitionRule] = {
    LifecycleCommandKind.APPROVE: TransitionRule(
        frozenset({Status.WAITING_FOR_APPROVAL}), HistoryAction.APPROVED, EmptyPayload, "_apply_approve"),
    LifecycleCommandKind.CANCEL_COMPLETELY: TransitionRule(
        frozenset({Status.WAITING_FOR_APPROVAL, Status.NO_FOLLOW_UP_REQUIRED}),
        HistoryAction.CANCELLED, ReasonPayload, "_apply_cancel_completely"),
    LifecycleCommandKind.CANCEL_FOR_ADJUSTMENT: TransitionRule(
        frozenset({Status.WAITING_FOR_APPROVAL}), HistoryAction.CANCELLED, ReasonPayload,
        "_apply_cancel_for_adjustment"),
    LifecycleCommandKind.EDIT: TransitionRule(
        frozenset({Status.CANCELLED_FOR_ADJUSTMENT}), HistoryAction.UPDATE, EditPayload, "_apply_edit"),
    LifecycleCommandKind.COMPLETE: TransitionRule(
        frozenset({Status.FOLLOW_UP_REQUIRED, Status.NO_FOLLOW_UP_REQUIRED}),
        HistoryAction.COMPLETED, EmptyPayload, "_apply_complete"),
    LifecycleCommandKind.CANCEL_FOLLOW_UP: TransitionRule(
        frozenset({Status.FOLLOW_UP_REQUIRED}), HistoryAction.FOLLOW_UP_CANCELLED, EmptyPayload,
        "_apply_cancel_follow_up"),
    LifecycleCommandKind.SCHEDULE_FOLLOW_UP: TransitionRule(
        frozenset({Status.FOLLOW_UP_REQUIRED, Status.NO_FOLLOW_UP_REQUIRED}),
        HistoryAction.FOLLOW_UP_SCHEDULED, ScheduleFollowUpPayload, "_apply_schedule_follow_up"),
    LifecycleCommandKind.RESUBMIT: TransitionRule(
        frozenset({Status.CANCELLED_FOR_ADJUSTMENT}), HistoryAction.RESUBMITTED, EmptyPayload,
        "_apply_resubmit"),
    LifecycleCommandKind.SOFT_DELETE: TransitionRule(
        NON_TERMINAL_LIVE_STATUSES, HistoryAction.SOFT_DELETED, EmptyPayload, "_apply_soft_delete"),
    LifecycleCommandKind.RESTORE: TransitionRule(
        frozenset({Status.SOFT_DELETED}), HistoryAction.RESTORED, EmptyPayload, "_apply_restore"),
}


def allowed_commands(status: HealthCheckResultStatus) -> list[LifecycleCommandKind]:
    """Commands accepted from ``status``, in declaration order."""
    return [kind for kind, rule in TRANSITIONS.items() if status in rule.sources]


# ============================================================================
# Lifecycle Manager
# ============================================================================

class HealthCheckResultLifecycleManager:
    """Command dispatcher and guard keeper for health check results.

    Parameters:
        repository: Persistence port (record + history, compare-and-swap)
        survey: Optional survey capability invoked when a record completes
        notifications: Optional notification capability
        approval_authority: Optional authority check for Approve; when None
            every actor may approve
        clock: Callable returning the current UTC datetime

    Example Usage:
        ```python
        manager = HealthCheckResultLifecycleManager(repository, survey=survey_adapter)
        result = manager.execute(LifecycleCommand(
            record_id=record_id,
            command=LifecycleCommandKind.CANCEL_FOR_ADJUSTMENT,
            actor_id="staff-7",
            payload={"reason": "needs more tests"},
        ))
        for warning in result.warnings:
            ...
        ```
    """

    def __init__(
        self,
        repository: HealthCheckResultRepositoryPort,
        survey: Optional[SurveyPort] = None,
        notifications: Optional[NotificationPort] = None,
        approval_authority: Optional[ApprovalAuthorityPort] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.repository = repository
        self.survey = survey
        self.notifications = notifications
        self.approval_authority = approval_authority
        self.clock = clock or utc_now

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, record_id: str) -> HealthCheckResult:
        record = self.repository.get(record_id)
        if record is None:
            raise RecordNotFoundError(f"Health check result '{record_id}' not found", record_id=record_id)
        return record

    def history(self, record_id: str) -> list[HistoryEntry]:
        """Chronological transition entries of one record."""
        self.get(record_id)
        return self.repository.history(record_id)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create(self, request: Any, actor_id: str) -> CommandResult:
        """Record a new checkup outcome in WaitingForApproval.

        Parameters:
            request: CreateHealthCheckResultRequest or an equivalent mapping
            actor_id: Staff recording the result

        Raises:
            ValidationError: If participants, details or follow-up data are invalid
        """
        if not actor_id:
            raise ValidationError("actor_id is required", guard="actor")
        if not isinstance(request, CreateHealthCheckResultRequest):
            request = _parse(CreateHealthCheckResultRequest, request, guard="create")

        now = self.clock()
        try:
            record = HealthCheckResult(
                code=issue_code(request.checkup_date),
                subject=request.subject,
                staff=request.staff,
                checkup_date=request.checkup_date,
                details=tuple(request.details),
                follow_up_required=request.follow_up_required,
                follow_up_date=request.follow_up_date,
                created_at=now,
                created_by=actor_id,
            )
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid health check result: {e}", guard="create") from e

        entry = HistoryEntry(
            record_id=record.id,
            action=HistoryAction.CREATED,
            action_date=now,
            performed_by=actor_id,
            previous_status=None,
            new_status=record.status,
            change_details=f"Created with {len(record.details)} detail entries",
        )
        self.repository.insert(record, entry)
        logger.info(f"Created health check result {record.code} ({record.id}) by {actor_id}")

        return CommandResult(record_id=record.id, new_status=record.status, history_entry_id=entry.id)

    # ------------------------------------------------------------------
    # Command dispatch
    # ------------------------------------------------------------------

    def execute(self, command: LifecycleCommand, today: Optional[date] = None) -> CommandResult:
        """Validate and apply one command atomically.

        Parameters:
            command: The command to apply
            today: Caller's current date (defaults to the clock's date)

        Returns:
            CommandResult with the new status, history entry id and any
            side-effect warnings

        Raises:
            RecordNotFoundError: If the record does not exist
            InvalidTransitionError: If the command is not legal from the current status
            ValidationError: If the payload is missing required input
            PermissionDeniedError: If the actor lacks approval authority
            ConcurrentModificationError: If the record changed before commit
        """
        rule = TRANSITIONS[command.command]
        record = self.get(command.record_id)

        if record.status not in rule.sources:
            raise InvalidTransitionError(
                f"Cannot {command.command.value} health check result {record.code}: "
                f"current status is {record.status.value}",
                record_id=record.id,
                current_status=record.status,
                command=command.command,
            )

        payload = _parse(rule.payload_model, command.payload, record_id=record.id)
        now = self.clock()
        today = today or now.date()

        handler = getattr(self, rule.handler)
        changes, change_details = handler(record, payload, command.actor_id, now, today)

        try:
            updated = record.evolve(
                **changes,
                updated_at=now,
                updated_by=command.actor_id,
                version=record.version + 1,
            )
        except PydanticValidationError as e:
            raise ValidationError(
                f"{command.command.value} would leave record {record.code} inconsistent: {e}",
                record_id=record.id,
                guard="invariant",
            ) from e

        entry = HistoryEntry(
            record_id=record.id,
            action=rule.action,
            action_date=now,
            performed_by=command.actor_id,
            previous_status=record.status,
            new_status=updated.status,
            change_details=change_details,
        )
        self.repository.commit(updated, entry, expected_version=record.version)
        logger.info(
            f"{command.command.value} {record.code}: {record.status.value} -> {updated.status.value} "
            f"by {command.actor_id}",
            extra={"command": command.command.value, "record_id": updated.id, "actor_id": command.actor_id},
        )

        warnings = self._after_commit(command.command, updated)
        return CommandResult(
            record_id=updated.id,
            new_status=updated.status,
            history_entry_id=entry.id,
            warnings=warnings,
        )

    def _command(self, kind: LifecycleCommandKind, record_id: str, actor_id: str, **payload) -> CommandResult:
        return self.execute(LifecycleCommand(record_id=record_id, command=kind, actor_id=actor_id, payload=payload))

    def approve(self, record_id: str, actor_id: str) -> CommandResult:
        return self._command(LifecycleCommandKind.APPROVE, record_id, actor_id)

    def cancel_completely(self, record_id: str, actor_id: str, reason: Optional[str]) -> CommandResult:
        return self._command(LifecycleCommandKind.CANCEL_COMPLETELY, record_id, actor_id, reason=reason)

    def cancel_for_adjustment(self, record_id: str, actor_id: str, reason: Optional[str]) -> CommandResult:
        return self._command(LifecycleCommandKind.CANCEL_FOR_ADJUSTMENT, record_id, actor_id, reason=reason)

    def edit(
        self,
        record_id: str,
        actor_id: str,
        details: list,
        follow_up_required: bool = False,
        follow_up_date: Optional[date] = None
    ) -> CommandResult:
        return self._command(
            LifecycleCommandKind.EDIT, record_id, actor_id,
            details=details, follow_up_required=follow_up_required, follow_up_date=follow_up_date,
        )

    def complete(self, record_id: str, actor_id: str) -> CommandResult:
        return self._command(LifecycleCommandKind.COMPLETE, record_id, actor_id)

    def cancel_follow_up(self, record_id: str, actor_id: str) -> CommandResult:
        return self._command(LifecycleCommandKind.CANCEL_FOLLOW_UP, record_id, actor_id)

    def schedule_follow_up(self, record_id: str, actor_id: str, follow_up_date: date) -> CommandResult:
        return self._command(LifecycleCommandKind.SCHEDULE_FOLLOW_UP, record_id, actor_id, follow_up_date=follow_up_date)

    def resubmit(self, record_id: str, actor_id: str) -> CommandResult:
        return self._command(LifecycleCommandKind.RESUBMIT, record_id, actor_id)

    def soft_delete(self, record_id: str, actor_id: str) -> CommandResult:
        return self._command(LifecycleCommandKind.SOFT_DELETE, record_id, actor_id)

    def restore(self, record_id: str, actor_id: str) -> CommandResult:
        return self._command(LifecycleCommandKind.RESTORE, record_id, actor_id)

    def soft_delete_many(self, record_ids: Iterable[str], actor_id: str) -> list[BulkCommandOutcome]:
        """Soft-delete each record independently; one failure does not stop the rest."""
        return self._bulk(LifecycleCommandKind.SOFT_DELETE, record_ids, actor_id)

    def restore_many(self, record_ids: Iterable[str], actor_id: str) -> list[BulkCommandOutcome]:
        """Restore each record independently; one failure does not stop the rest."""
        return self._bulk(LifecycleCommandKind.RESTORE, record_ids, actor_id)

    def _bulk(self, kind: LifecycleCommandKind, record_ids: Iterable[str], actor_id: str) -> list[BulkCommandOutcome]:
        outcomes = []
        for record_id in record_ids:
            try:
                result = self._command(kind, record_id, actor_id)
                outcomes.append(BulkCommandOutcome(record_id=record_id, success=True, result=result))
            except LifecycleError as e:
                logger.warning(f"Bulk {kind.value} skipped {record_id}: {e}")
                outcomes.append(BulkCommandOutcome(record_id=record_id, success=False, error=str(e), guard=e.guard))
        return outcomes

    # ------------------------------------------------------------------
    # Transition handlers: return (field changes, change details)
    # ------------------------------------------------------------------

    def _apply_approve(self, record, payload, actor_id, now, today):
        if self.approval_authority is not None and not self.approval_authority.has_approval_authority(actor_id):
            raise PermissionDeniedError(
                f"Staff '{actor_id}' is not allowed to approve health check results",
                record_id=record.id,
                actor_id=actor_id,
            )
        target = Status.FOLLOW_UP_REQUIRED if record.follow_up_required else Status.NO_FOLLOW_UP_REQUIRED
        changes = {"status": target, "approved_date": now, "approved_by": actor_id}
        return changes, f"Approved; resolved to {target.value}"

    def _cancel_changes(self, status, reason, actor_id, now) -> dict:
        return {
            "status": status,
            "cancelled_date": now,
            "cancelled_by": actor_id,
            "cancellation_reason": reason,
        }

    def _apply_cancel_completely(self, record, payload, actor_id, now, today):
        changes = self._cancel_changes(Status.CANCELLED_COMPLETELY, payload.reason, actor_id, now)
        changes.update(follow_up_required=False, follow_up_date=None)
        return changes, f"Cancelled completely: {payload.reason}"

    def _apply_cancel_for_adjustment(self, record, payload, actor_id, now, today):
        changes = self._cancel_changes(Status.CANCELLED_FOR_ADJUSTMENT, payload.reason, actor_id, now)
        return changes, f"Cancelled for adjustment: {payload.reason}"

    def _apply_edit(self, record, payload, actor_id, now, today):
        details = tuple(payload.details)
        summary = []
        if details != record.details:
            summary.append(f"details: {len(record.details)} -> {len(details)} entries")
        if payload.follow_up_required != record.follow_up_required:
            summary.append(f"follow_up_required: {record.follow_up_required} -> {payload.follow_up_required}")
        if payload.follow_up_date != record.follow_up_date:
            summary.append(f"follow_up_date: {record.follow_up_date} -> {payload.follow_up_date}")
        changes = {
            "details": details,
            "follow_up_required": payload.follow_up_required,
            "follow_up_date": payload.follow_up_date,
        }
        return changes, "Updated " + ("; ".join(summary) if summary else "with no content changes")

    def _apply_complete(self, record, payload, actor_id, now, today):
        changes = {"status": Status.COMPLETED, "follow_up_required": False, "follow_up_date": None}
        if record.follow_up_date is not None:
            return changes, f"Completed; follow-up of {record.follow_up_date} closed"
        return changes, "Completed"

    def _apply_cancel_follow_up(self, record, payload, actor_id, now, today):
        changes = {"status": Status.NO_FOLLOW_UP_REQUIRED, "follow_up_required": False, "follow_up_date": None}
        return changes, f"Follow-up of {record.follow_up_date} cancelled"

    def _apply_schedule_follow_up(self, record, payload, actor_id, now, today):
        if payload.follow_up_date < today:
            raise ValidationError(
                f"Follow-up date {payload.follow_up_date} is in the past",
                record_id=record.id,
                guard="follow_up_date",
            )
        changes = {
            "status": Status.FOLLOW_UP_REQUIRED,
            "follow_up_required": True,
            "follow_up_date": payload.follow_up_date,
        }
        if record.follow_up_date is not None:
            return changes, f"Follow-up rescheduled from {record.follow_up_date} to {payload.follow_up_date}"
        return changes, f"Follow-up scheduled for {payload.follow_up_date}"

    def _apply_resubmit(self, record, payload, actor_id, now, today):
        changes = {
            "status": Status.WAITING_FOR_APPROVAL,
            "cancelled_date": None,
            "cancelled_by": None,
            "cancellation_reason": None,
        }
        return changes, f"Resubmitted for approval after adjustment ({record.cancellation_reason})"

    def _apply_soft_delete(self, record, payload, actor_id, now, today):
        changes = {
            "status": Status.SOFT_DELETED,
            "status_before_deletion": record.status,
            "soft_deleted_date": now,
            "soft_deleted_by": actor_id,
        }
        return changes, f"Soft deleted from {record.status.value}"

    def _apply_restore(self, record, payload, actor_id, now, today):
        changes = {
            "status": record.status_before_deletion,
            "status_before_deletion": None,
            "soft_deleted_date": None,
            "soft_deleted_by": None,
        }
        return changes, f"Restored to {record.status_before_deletion.value}"

    # ------------------------------------------------------------------
    # Side effects (after commit, never rolled back)
    # ------------------------------------------------------------------

    def _after_commit(self, kind: LifecycleCommandKind, record: HealthCheckResult) -> list[CommandWarning]:
        warnings: list[CommandWarning] = []

        if kind == LifecycleCommandKind.COMPLETE and self.survey is not None:
            self._invoke(
                warnings,
                WarningKind.SURVEY_CREATION_FAILED,
                f"survey for {record.code}",
                lambda: self.survey.create_survey(record),
            )

        notice = self._notification_for(kind, record)
        if notice is not None and self.notifications is not None:
            recipient_id, subject, message = notice
            self._invoke(
                warnings,
                WarningKind.NOTIFICATION_FAILED,
                f"notification to {recipient_id}",
                lambda: self.notifications.notify(recipient_id, subject, message, record_id=record.id),
            )
        return warnings

    @staticmethod
    def _notification_for(kind: LifecycleCommandKind, record: HealthCheckResult) -> Optional[tuple[str, str, str]]:
        if kind == LifecycleCommandKind.APPROVE:
            message = f"Your health check result {record.code} has been approved."
            if record.follow_up_date is not None:
                message += f" A follow-up visit is scheduled for {record.follow_up_date}."
            return record.subject.id, "Health check result approved", message
        if kind == LifecycleCommandKind.CANCEL_COMPLETELY:
            return (record.subject.id, "Health check result cancelled",
                    f"Health check result {record.code} was cancelled: {record.cancellation_reason}")
        if kind == LifecycleCommandKind.CANCEL_FOR_ADJUSTMENT:
            return (record.staff.id, "Health check result needs adjustment",
                    f"Health check result {record.code} was returned for adjustment: {record.cancellation_reason}")
        if kind == LifecycleCommandKind.COMPLETE:
            return (record.subject.id, "Health check completed",
                    f"Health check result {record.code} is complete. Please tell us about your visit.")
        if kind == LifecycleCommandKind.SCHEDULE_FOLLOW_UP:
            return (record.subject.id, "Follow-up scheduled",
                    f"A follow-up visit for {record.code} is scheduled for {record.follow_up_date}.")
        return None

    @staticmethod
    def _invoke(warnings: list, kind: WarningKind, label: str, call: Callable[[], Any]) -> None:
        try:
            outcome = call()
        except ExternalSideEffectFailure as e:
            logger.warning(f"Side effect failed ({label}): {e}")
            warnings.append(CommandWarning(kind=kind, message=f"Failed to send {label}: {e}"))
            return
        except Exception as e:
            logger.error(f"Unexpected side effect error ({label}): {e}", exc_info=True)
            warnings.append(CommandWarning(kind=kind, message=f"Failed to send {label}: {e}"))
            return

        if isinstance(outcome, Result) and outcome.is_failure():
            logger.warning(f"Side effect failed ({label}): {outcome.error}")
            warnings.append(CommandWarning(kind=kind, message=f"Failed to send {label}: {outcome.error}"))
