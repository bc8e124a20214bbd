"""Unit tests for HealthCheckResultLifecycleManager."""

import logging
from datetime import date, timedelta
from unittest.mock import Mock

import pytest

from src.domain.enums import (
    HealthCheckResultStatus,
    HistoryAction,
    LifecycleCommandKind,
    WarningKind,
)
from src.domain.health_check_result import replay_status
from src.domain.ports import (
    ApprovalAuthorityPort,
    ConcurrentModificationError,
    ExternalSideEffectFailure,
    InvalidTransitionError,
    NotificationPort,
    PermissionDeniedError,
    RecordNotFoundError,
    Result,
    SurveyPort,
    ValidationError,
)
from src.domain.services.lifecycle_manager import (
    TRANSITIONS,
    HealthCheckResultLifecycleManager,
    LifecycleCommand,
    allowed_commands,
)
from tests.factories import NOW, TODAY, make_detail, make_request

Status = HealthCheckResultStatus


def create(manager, **kwargs) -> str:
    return manager.create(make_request(**kwargs), actor_id="staff-1").record_id


def drive_to(manager, status: Status) -> str:
    """Create a record and move it to ``status`` through legal commands."""
    follow_up = status in (Status.FOLLOW_UP_REQUIRED,)
    record_id = create(
        manager,
        follow_up_required=follow_up,
        follow_up_date=TODAY + timedelta(days=7) if follow_up else None,
    )
    if status == Status.WAITING_FOR_APPROVAL:
        return record_id
    if status == Status.CANCELLED_FOR_ADJUSTMENT:
        manager.cancel_for_adjustment(record_id, "staff-2", "needs more tests")
        return record_id
    manager.approve(record_id, "staff-2")
    if status in (Status.FOLLOW_UP_REQUIRED, Status.NO_FOLLOW_UP_REQUIRED):
        return record_id
    if status == Status.COMPLETED:
        manager.complete(record_id, "staff-2")
    elif status == Status.CANCELLED_COMPLETELY:
        manager.cancel_completely(record_id, "staff-2", "duplicate entry")
    elif status == Status.SOFT_DELETED:
        manager.soft_delete(record_id, "staff-2")
    return record_id


def payload_for(kind: LifecycleCommandKind) -> dict:
    if kind in (LifecycleCommandKind.CANCEL_COMPLETELY, LifecycleCommandKind.CANCEL_FOR_ADJUSTMENT):
        return {"reason": "needs more tests"}
    if kind == LifecycleCommandKind.EDIT:
        return {"details": [make_detail()]}
    if kind == LifecycleCommandKind.SCHEDULE_FOLLOW_UP:
        return {"follow_up_date": TODAY + timedelta(days=3)}
    return {}


STORED_STATUSES = [s for s in Status if s != Status.APPROVED]


class TestCreate:
    """Tests for recording a new health check result."""

    def test_create_starts_waiting_for_approval(self, manager, repository):
        """A new record waits for approval and gets a code and a Created entry."""
        result = manager.create(make_request(), actor_id="staff-1")

        record = repository.get(result.record_id)
        assert result.success is True
        assert result.new_status == Status.WAITING_FOR_APPROVAL
        assert record.code.startswith("HCR-20240108-")
        assert record.version == 1
        assert record.created_by == "staff-1"

        history = manager.history(result.record_id)
        assert [e.action for e in history] == [HistoryAction.CREATED]
        assert history[0].previous_status is None
        assert history[0].id == result.history_entry_id

    def test_create_rejects_partial_detail_entry(self, manager):
        """A detail entry with a blank field is rejected as a whole."""
        request = make_request()
        request["details"] = [{"result_summary": "ok", "diagnosis": "  ", "recommendations": "rest"}]

        with pytest.raises(ValidationError) as exc_info:
            manager.create(request, actor_id="staff-1")

        assert exc_info.value.guard == "create"
        assert any("diagnosis" in key for key in exc_info.value.details)

    def test_create_rejects_empty_details(self, manager):
        request = make_request()
        request["details"] = []

        with pytest.raises(ValidationError):
            manager.create(request, actor_id="staff-1")

    def test_create_requires_follow_up_date_when_required(self, manager):
        with pytest.raises(ValidationError):
            manager.create(make_request(follow_up_required=True), actor_id="staff-1")

    def test_create_rejects_follow_up_date_without_flag(self, manager):
        with pytest.raises(ValidationError):
            manager.create(make_request(follow_up_date=date(2024, 2, 1)), actor_id="staff-1")

    def test_create_requires_actor(self, manager):
        with pytest.raises(ValidationError) as exc_info:
            manager.create(make_request(), actor_id="")
        assert exc_info.value.guard == "actor"

    def test_codes_are_unique(self, manager, repository):
        for _ in range(20):
            create(manager)
        codes = {r.code for r in repository.list_all()}
        assert len(codes) == 20


class TestApprove:
    """Approval resolves immediately to one of the two approved statuses."""

    @pytest.mark.parametrize("follow_up_required,expected", [
        (True, Status.FOLLOW_UP_REQUIRED),
        (False, Status.NO_FOLLOW_UP_REQUIRED),
    ])
    def test_approve_branches_on_follow_up_flag(self, manager, repository, follow_up_required, expected):
        record_id = create(
            manager,
            follow_up_required=follow_up_required,
            follow_up_date=date(2024, 1, 20) if follow_up_required else None,
        )

        result = manager.approve(record_id, "staff-2")

        record = repository.get(record_id)
        assert result.new_status == expected
        assert record.status == expected
        assert record.approved_by == "staff-2"
        assert record.approved_date == NOW
        assert record.version == 2

    def test_approved_is_never_stored(self, manager, repository):
        record_id = create(manager)
        manager.approve(record_id, "staff-2")

        entries = manager.history(record_id)
        assert entries[-1].action == HistoryAction.APPROVED
        assert entries[-1].new_status == Status.NO_FOLLOW_UP_REQUIRED
        assert all(e.new_status != Status.APPROVED for e in entries)
        assert repository.get(record_id).status != Status.APPROVED

    def test_follow_up_date_survives_approval(self, manager, repository):
        record_id = create(manager, follow_up_required=True, follow_up_date=date(2024, 1, 20))
        manager.approve(record_id, "staff-2")
        assert repository.get(record_id).follow_up_date == date(2024, 1, 20)

    def test_approve_requires_authority(self, repository):
        authority = Mock(spec=ApprovalAuthorityPort)
        authority.has_approval_authority.return_value = False
        manager = HealthCheckResultLifecycleManager(repository, approval_authority=authority, clock=lambda: NOW)
        record_id = create(manager)

        with pytest.raises(PermissionDeniedError) as exc_info:
            manager.approve(record_id, "intern-1")

        assert exc_info.value.guard == "approval_authority"
        assert exc_info.value.actor_id == "intern-1"
        assert repository.get(record_id).status == Status.WAITING_FOR_APPROVAL
        assert len(manager.history(record_id)) == 1


class TestCancellation:
    """Tests for both cancellation commands."""

    @pytest.mark.parametrize("reason", ["", "   ", None])
    def test_cancel_for_adjustment_requires_reason(self, manager, repository, reason):
        record_id = create(manager)

        with pytest.raises(ValidationError):
            manager.cancel_for_adjustment(record_id, "staff-2", reason)

        assert repository.get(record_id).status == Status.WAITING_FOR_APPROVAL
        assert len(manager.history(record_id)) == 1

    def test_cancel_for_adjustment_with_reason(self, manager, repository):
        record_id = create(manager)

        result = manager.cancel_for_adjustment(record_id, "staff-2", "needs more tests")

        record = repository.get(record_id)
        history = manager.history(record_id)
        assert result.new_status == Status.CANCELLED_FOR_ADJUSTMENT
        assert record.cancellation_reason == "needs more tests"
        assert record.cancelled_by == "staff-2"
        assert len(history) == 2
        assert history[-1].action == HistoryAction.CANCELLED
        assert history[-1].previous_status == Status.WAITING_FOR_APPROVAL

    def test_cancel_completely_from_no_follow_up(self, manager, repository):
        record_id = drive_to(manager, Status.NO_FOLLOW_UP_REQUIRED)

        manager.cancel_completely(record_id, "staff-2", "patient withdrew")

        record = repository.get(record_id)
        assert record.status == Status.CANCELLED_COMPLETELY
        assert record.cancellation_reason == "patient withdrew"

    def test_cancel_completely_clears_proposed_follow_up(self, manager, repository):
        record_id = create(manager, follow_up_required=True, follow_up_date=date(2024, 1, 20))

        manager.cancel_completely(record_id, "staff-2", "duplicate entry")

        record = repository.get(record_id)
        assert record.follow_up_required is False
        assert record.follow_up_date is None

    def test_cancel_completely_requires_reason(self, manager):
        record_id = create(manager)
        with pytest.raises(ValidationError):
            manager.cancel_completely(record_id, "staff-2", "")


class TestAdjustment:
    """Edit and resubmit of records returned for adjustment."""

    def test_edit_replaces_content_and_keeps_status(self, manager, repository):
        record_id = drive_to(manager, Status.CANCELLED_FOR_ADJUSTMENT)
        details = [make_detail("Cholesterol normal"), make_detail("Glucose normal")]

        result = manager.edit(record_id, "staff-1", details, follow_up_required=True, follow_up_date=date(2024, 2, 1))

        record = repository.get(record_id)
        assert result.new_status == Status.CANCELLED_FOR_ADJUSTMENT
        assert [d.result_summary for d in record.details] == ["Cholesterol normal", "Glucose normal"]
        assert record.follow_up_date == date(2024, 2, 1)
        assert manager.history(record_id)[-1].action == HistoryAction.UPDATE

    def test_edit_rejects_empty_details(self, manager, repository):
        record_id = drive_to(manager, Status.CANCELLED_FOR_ADJUSTMENT)
        before = repository.get(record_id)

        with pytest.raises(ValidationError):
            manager.edit(record_id, "staff-1", [])

        assert repository.get(record_id) == before

    def test_edit_rejects_partial_entry(self, manager):
        record_id = drive_to(manager, Status.CANCELLED_FOR_ADJUSTMENT)
        with pytest.raises(ValidationError):
            manager.edit(record_id, "staff-1", [{"result_summary": "only a summary"}])

    def test_resubmit_returns_to_waiting(self, manager, repository):
        record_id = drive_to(manager, Status.CANCELLED_FOR_ADJUSTMENT)

        manager.resubmit(record_id, "staff-1")

        record = repository.get(record_id)
        assert record.status == Status.WAITING_FOR_APPROVAL
        assert record.cancellation_reason is None
        assert record.cancelled_date is None
        assert manager.history(record_id)[-1].action == HistoryAction.RESUBMITTED


class TestFollowUp:
    """Completion and follow-up commands."""

    def test_complete_twice_fails(self, manager, repository):
        record_id = drive_to(manager, Status.NO_FOLLOW_UP_REQUIRED)
        manager.complete(record_id, "staff-2")

        with pytest.raises(InvalidTransitionError) as exc_info:
            manager.complete(record_id, "staff-2")

        assert exc_info.value.current_status == Status.COMPLETED
        assert exc_info.value.command == LifecycleCommandKind.COMPLETE
        assert repository.get(record_id).status == Status.COMPLETED
        assert len(manager.history(record_id)) == 3

    def test_complete_closes_follow_up(self, manager, repository):
        record_id = drive_to(manager, Status.FOLLOW_UP_REQUIRED)

        manager.complete(record_id, "staff-2")

        record = repository.get(record_id)
        assert record.status == Status.COMPLETED
        assert record.follow_up_date is None
        assert record.follow_up_required is False

    def test_cancel_follow_up(self, manager, repository):
        record_id = drive_to(manager, Status.FOLLOW_UP_REQUIRED)

        manager.cancel_follow_up(record_id, "staff-2")

        record = repository.get(record_id)
        assert record.status == Status.NO_FOLLOW_UP_REQUIRED
        assert record.follow_up_date is None
        assert manager.history(record_id)[-1].action == HistoryAction.FOLLOW_UP_CANCELLED

    def test_schedule_follow_up_from_no_follow_up(self, manager, repository):
        record_id = drive_to(manager, Status.NO_FOLLOW_UP_REQUIRED)

        manager.schedule_follow_up(record_id, "staff-2", date(2024, 1, 25))

        record = repository.get(record_id)
        assert record.status == Status.FOLLOW_UP_REQUIRED
        assert record.follow_up_required is True
        assert record.follow_up_date == date(2024, 1, 25)

    def test_schedule_follow_up_accepts_today(self, manager, repository):
        record_id = drive_to(manager, Status.FOLLOW_UP_REQUIRED)
        manager.schedule_follow_up(record_id, "staff-2", TODAY)
        assert repository.get(record_id).follow_up_date == TODAY

    def test_schedule_follow_up_rejects_past_date(self, manager, repository):
        record_id = drive_to(manager, Status.FOLLOW_UP_REQUIRED)
        before = repository.get(record_id)

        with pytest.raises(ValidationError) as exc_info:
            manager.schedule_follow_up(record_id, "staff-2", TODAY - timedelta(days=1))

        assert exc_info.value.guard == "follow_up_date"
        assert repository.get(record_id) == before


class TestSoftDelete:
    """Soft-delete overlays the clinical status without changing it."""

    @pytest.mark.parametrize("status", [
        Status.WAITING_FOR_APPROVAL,
        Status.FOLLOW_UP_REQUIRED,
        Status.NO_FOLLOW_UP_REQUIRED,
        Status.CANCELLED_FOR_ADJUSTMENT,
    ])
    def test_soft_delete_then_restore_is_identity(self, manager, repository, status):
        record_id = drive_to(manager, status)
        before = repository.get(record_id)

        manager.soft_delete(record_id, "staff-2")
        deleted = repository.get(record_id)
        assert deleted.status == Status.SOFT_DELETED
        assert deleted.status_before_deletion == status

        manager.restore(record_id, "staff-2")
        after = repository.get(record_id)
        assert after.status == before.status
        assert after.follow_up_required == before.follow_up_required
        assert after.follow_up_date == before.follow_up_date
        assert after.status_before_deletion is None
        assert after.soft_deleted_date is None

    @pytest.mark.parametrize("status", [Status.COMPLETED, Status.CANCELLED_COMPLETELY])
    def test_terminal_records_cannot_be_soft_deleted(self, manager, status):
        record_id = drive_to(manager, status)
        with pytest.raises(InvalidTransitionError):
            manager.soft_delete(record_id, "staff-2")

    def test_soft_deleted_record_accepts_only_restore(self, manager):
        record_id = drive_to(manager, Status.SOFT_DELETED)
        assert allowed_commands(Status.SOFT_DELETED) == [LifecycleCommandKind.RESTORE]
        with pytest.raises(InvalidTransitionError):
            manager.complete(record_id, "staff-2")

    def test_bulk_soft_delete_reports_per_record(self, manager, repository):
        live = drive_to(manager, Status.WAITING_FOR_APPROVAL)
        done = drive_to(manager, Status.COMPLETED)

        outcomes = manager.soft_delete_many([live, done, "missing"], "staff-2")

        assert [o.success for o in outcomes] == [True, False, False]
        assert outcomes[1].guard == "transition"
        assert outcomes[2].guard == "exists"
        assert repository.get(live).status == Status.SOFT_DELETED
        assert repository.get(done).status == Status.COMPLETED

    def test_bulk_restore(self, manager, repository):
        ids = [drive_to(manager, Status.SOFT_DELETED) for _ in range(3)]

        outcomes = manager.restore_many(ids, "staff-2")

        assert all(o.success for o in outcomes)
        assert {repository.get(i).status for i in ids} == {Status.NO_FOLLOW_UP_REQUIRED}


class TestInvalidTransitions:
    """Every command outside its source set is rejected without any change."""

    @pytest.mark.parametrize("status", STORED_STATUSES)
    @pytest.mark.parametrize("kind", list(LifecycleCommandKind))
    def test_rejected_commands_leave_record_unchanged(self, manager, repository, status, kind):
        if status in TRANSITIONS[kind].sources:
            pytest.skip("legal transition")
        record_id = drive_to(manager, status)
        before = repository.get(record_id)
        history_before = manager.history(record_id)

        with pytest.raises(InvalidTransitionError) as exc_info:
            manager.execute(LifecycleCommand(
                record_id=record_id, command=kind, actor_id="staff-2", payload=payload_for(kind)
            ))

        assert exc_info.value.guard == "transition"
        assert status.value in str(exc_info.value)
        assert repository.get(record_id) == before
        assert manager.history(record_id) == history_before

    def test_unknown_record(self, manager):
        with pytest.raises(RecordNotFoundError):
            manager.approve("does-not-exist", "staff-2")


class TestHistory:
    """The history log is the authoritative record of transitions."""

    def test_replayed_history_matches_status(self, manager, repository):
        record_id = create(manager, follow_up_required=True, follow_up_date=date(2024, 1, 20))
        manager.cancel_for_adjustment(record_id, "staff-2", "needs more tests")
        manager.resubmit(record_id, "staff-1")
        manager.approve(record_id, "staff-2")
        manager.soft_delete(record_id, "staff-2")
        manager.restore(record_id, "staff-2")
        manager.complete(record_id, "staff-2")

        history = manager.history(record_id)
        assert replay_status(history) == repository.get(record_id).status == Status.COMPLETED
        assert len(history) == 7
        for previous, current in zip(history, history[1:]):
            assert current.previous_status == previous.new_status

    def test_history_of_unknown_record(self, manager):
        with pytest.raises(RecordNotFoundError):
            manager.history("missing")

    def test_commit_is_logged_with_command_context(self, manager, caplog):
        record_id = create(manager)

        with caplog.at_level(logging.INFO, logger="src.domain.services.lifecycle_manager"):
            manager.approve(record_id, "staff-2")

        [entry] = [r for r in caplog.records if getattr(r, "command", None) is not None]
        assert entry.command == LifecycleCommandKind.APPROVE.value
        assert entry.record_id == record_id
        assert entry.actor_id == "staff-2"


class TestConcurrency:
    """Compare-and-swap on version prevents lost updates."""

    def test_stale_commit_is_rejected(self, manager, repository):
        record_id = create(manager)
        stale = repository.get(record_id)

        manager.cancel_for_adjustment(record_id, "staff-2", "needs more tests")

        stale_repository = Mock(wraps=repository)
        stale_repository.get.return_value = stale
        racing = HealthCheckResultLifecycleManager(stale_repository, clock=lambda: NOW)

        with pytest.raises(ConcurrentModificationError) as exc_info:
            racing.approve(record_id, "staff-3")

        assert exc_info.value.expected_version == 1
        assert exc_info.value.actual_version == 2
        assert repository.get(record_id).status == Status.CANCELLED_FOR_ADJUSTMENT
        assert len(manager.history(record_id)) == 2


class TestSideEffects:
    """Side effects run after commit and only produce warnings on failure."""

    def test_completion_requests_survey(self, repository):
        survey = Mock(spec=SurveyPort)
        survey.create_survey.return_value = Result.success_result("survey-1")
        manager = HealthCheckResultLifecycleManager(repository, survey=survey, clock=lambda: NOW)
        record_id = drive_to(manager, Status.NO_FOLLOW_UP_REQUIRED)

        result = manager.complete(record_id, "staff-2")

        survey.create_survey.assert_called_once()
        assert survey.create_survey.call_args.args[0].status == Status.COMPLETED
        assert result.warnings == []

    def test_survey_failure_becomes_warning(self, repository):
        survey = Mock(spec=SurveyPort)
        survey.create_survey.side_effect = ExternalSideEffectFailure("survey service down", capability="survey")
        manager = HealthCheckResultLifecycleManager(repository, survey=survey, clock=lambda: NOW)
        record_id = drive_to(manager, Status.FOLLOW_UP_REQUIRED)

        result = manager.complete(record_id, "staff-2")

        assert result.success is True
        assert result.new_status == Status.COMPLETED
        assert [w.kind for w in result.warnings] == [WarningKind.SURVEY_CREATION_FAILED]
        assert repository.get(record_id).status == Status.COMPLETED

    def test_failed_notification_result_becomes_warning(self, repository):
        notifications = Mock(spec=NotificationPort)
        notifications.notify.return_value = Result.failure_result(RuntimeError("smtp refused"))
        manager = HealthCheckResultLifecycleManager(repository, notifications=notifications, clock=lambda: NOW)
        record_id = create(manager)

        result = manager.approve(record_id, "staff-2")

        assert [w.kind for w in result.warnings] == [WarningKind.NOTIFICATION_FAILED]
        assert repository.get(record_id).status == Status.NO_FOLLOW_UP_REQUIRED

    def test_unexpected_side_effect_error_becomes_warning(self, repository):
        notifications = Mock(spec=NotificationPort)
        notifications.notify.side_effect = ConnectionError("network unreachable")
        manager = HealthCheckResultLifecycleManager(repository, notifications=notifications, clock=lambda: NOW)
        record_id = create(manager)

        result = manager.cancel_for_adjustment(record_id, "staff-2", "needs more tests")

        assert result.new_status == Status.CANCELLED_FOR_ADJUSTMENT
        assert len(result.warnings) == 1
        assert notifications.notify.call_args.args[0] == "staff-1"

    def test_no_side_effects_on_rejected_command(self, repository):
        survey = Mock(spec=SurveyPort)
        notifications = Mock(spec=NotificationPort)
        manager = HealthCheckResultLifecycleManager(
            repository, survey=survey, notifications=notifications, clock=lambda: NOW
        )
        record_id = create(manager)

        with pytest.raises(InvalidTransitionError):
            manager.complete(record_id, "staff-2")

        survey.create_survey.assert_not_called()
        notifications.notify.assert_not_called()

    def test_approval_notifies_subject(self, repository):
        notifications = Mock(spec=NotificationPort)
        notifications.notify.return_value = Result.success_result(None)
        manager = HealthCheckResultLifecycleManager(repository, notifications=notifications, clock=lambda: NOW)
        record_id = create(manager, follow_up_required=True, follow_up_date=date(2024, 1, 20))

        manager.approve(record_id, "staff-2")

        recipient, subject, message = notifications.notify.call_args.args
        assert recipient == "user-1"
        assert "2024-01-20" in message
        assert notifications.notify.call_args.kwargs["record_id"] == record_id
