"""Health check result endpoints.

Every lifecycle command is a POST (PUT for edit) on the record; the acting
staff id is read from the ``X-Actor-Id`` header. Domain errors are turned
into responses by the handlers in ``src.api.errors``.
"""

import logging
from datetime import date
from typing import Any, Optional

from fastapi import APIRouter, Body, HTTPException, Query

from src.api.dependencies import ActorDep, ManagerDep, QueryServiceDep, StatisticsDep
from src.api.models import (
    BulkRequest,
    BulkResponse,
    EditRequest,
    HealthCheckResultResponse,
    ReasonRequest,
    ScheduleFollowUpRequest,
)
from src.domain.enums import FollowUpUrgency, HealthCheckResultStatus
from src.domain.health_check_result import HistoryEntry, utc_now
from src.domain.services.follow_up import classify_follow_up
from src.domain.services.lifecycle_manager import (
    CommandResult,
    allowed_commands,
)
from src.domain.services.query_service import (
    HealthCheckResultPage,
    HealthCheckResultQuery,
    HistoryPage,
    build_filter_criteria,
)
from src.domain.services.statistics import HealthCheckResultStatistics
from src.infrastructure.settings import MAX_PAGE_SIZE, settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/health-check-results", tags=["health-check-results"])


# ============================================================================
# Queries
# ============================================================================

@router.get("", response_model=HealthCheckResultPage)
async def list_health_check_results(
    query_service: QueryServiceDep,
    view: str = Query("all", description="List view (all, waiting-for-approval, follow-up, ...)"),
    user: Optional[str] = Query(None, description="Search patient name, user name or email"),
    staff: Optional[str] = Query(None, description="Search staff name, user name or email"),
    code: Optional[str] = Query(None, description="Search record code"),
    status: Optional[list[HealthCheckResultStatus]] = Query(None, description="Restrict to statuses"),
    checkup_start: Optional[date] = Query(None, description="Earliest checkup date (inclusive)"),
    checkup_end: Optional[date] = Query(None, description="Latest checkup date (inclusive)"),
    follow_up_required: Optional[bool] = Query(None, description="Filter on the follow-up flag"),
    follow_up_start: Optional[date] = Query(None, description="Earliest follow-up date (inclusive)"),
    follow_up_end: Optional[date] = Query(None, description="Latest follow-up date (inclusive)"),
    follow_up_status: Optional[list[FollowUpUrgency]] = Query(None, description="Overdue, Today or Upcoming"),
    sort_by: str = Query("checkup_date", description="Field to sort by"),
    sort_order: str = Query("DESC", pattern="^(ASC|DESC)$", description="Sort order"),
    page: int = Query(1, ge=1, description="Page number (1-based)"),
    page_size: Optional[int] = Query(None, ge=1, le=MAX_PAGE_SIZE, description="Records per page"),
    today: Optional[date] = Query(None, description="Reference date for follow-up urgency"),
):
    """List health check results through a view with search, filters, sorting and pagination."""
    criteria = build_filter_criteria(
        statuses=status,
        checkup_start=checkup_start,
        checkup_end=checkup_end,
        follow_up_required=follow_up_required,
        follow_up_start=follow_up_start,
        follow_up_end=follow_up_end,
        follow_up_urgency=follow_up_status,
    )
    query = HealthCheckResultQuery(
        view=view,
        search={k: v for k, v in {"user": user, "staff": staff, "code": code}.items() if v},
        criteria=criteria,
        sort_by=sort_by,
        ascending=sort_order == "ASC",
        page=page,
        page_size=page_size or settings.default_page_size,
    )
    return query_service.search(query, today=today)


@router.get("/histories", response_model=HistoryPage)
async def list_all_histories(
    query_service: QueryServiceDep,
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, ge=1, le=MAX_PAGE_SIZE),
    sort_order: str = Query("DESC", pattern="^(ASC|DESC)$"),
):
    """History entries across all records, newest first by default."""
    return query_service.all_history(
        page=page,
        page_size=page_size or settings.default_page_size,
        ascending=sort_order == "ASC",
    )


@router.get("/statistics", response_model=HealthCheckResultStatistics)
async def get_statistics(
    statistics: StatisticsDep,
    today: Optional[date] = Query(None, description="Reference date for follow-up urgency"),
):
    """Status distribution, follow-up urgency counts and monthly distribution."""
    result = statistics.compute(today=today)
    if result.is_success():
        return result.value
    raise HTTPException(status_code=500, detail=str(result.error))


@router.get("/{record_id}", response_model=HealthCheckResultResponse)
async def get_health_check_result(
    record_id: str,
    manager: ManagerDep,
    today: Optional[date] = Query(None, description="Reference date for follow-up urgency"),
):
    """One record with its legal next commands."""
    record = manager.get(record_id)
    return HealthCheckResultResponse(
        record=record,
        allowed_commands=allowed_commands(record.status),
        follow_up_urgency=classify_follow_up(record.follow_up_date, today or utc_now().date()),
    )


@router.get("/{record_id}/histories", response_model=list[HistoryEntry])
async def get_health_check_result_history(record_id: str, manager: ManagerDep):
    """Chronological history of one record."""
    return manager.history(record_id)


# ============================================================================
# Commands
# ============================================================================

@router.post("", response_model=CommandResult, status_code=201)
async def create_health_check_result(
    manager: ManagerDep,
    actor_id: ActorDep,
    request: dict[str, Any] = Body(..., description="Subject, staff, checkup date, details and follow-up proposal"),
):
    """Record a new checkup outcome awaiting approval.

    The body is validated by the lifecycle manager so failures carry the
    ``create`` guard like every other rejected command.
    """
    return manager.create(request, actor_id)


@router.post("/soft-delete", response_model=BulkResponse)
async def soft_delete_health_check_results(body: BulkRequest, manager: ManagerDep, actor_id: ActorDep):
    """Soft-delete several records; each one succeeds or fails on its own."""
    return BulkResponse.from_outcomes(manager.soft_delete_many(body.ids, actor_id))


@router.post("/restore", response_model=BulkResponse)
async def restore_health_check_results(body: BulkRequest, manager: ManagerDep, actor_id: ActorDep):
    """Restore several soft-deleted records."""
    return BulkResponse.from_outcomes(manager.restore_many(body.ids, actor_id))


@router.post("/{record_id}/approve", response_model=CommandResult)
async def approve(record_id: str, manager: ManagerDep, actor_id: ActorDep):
    return manager.approve(record_id, actor_id)


@router.post("/{record_id}/cancel-completely", response_model=CommandResult)
async def cancel_completely(record_id: str, body: ReasonRequest, manager: ManagerDep, actor_id: ActorDep):
    return manager.cancel_completely(record_id, actor_id, body.reason)


@router.post("/{record_id}/cancel-for-adjustment", response_model=CommandResult)
async def cancel_for_adjustment(record_id: str, body: ReasonRequest, manager: ManagerDep, actor_id: ActorDep):
    return manager.cancel_for_adjustment(record_id, actor_id, body.reason)


@router.put("/{record_id}", response_model=CommandResult)
async def edit(record_id: str, body: EditRequest, manager: ManagerDep, actor_id: ActorDep):
    """Replace the clinical content of a record returned for adjustment."""
    return manager.edit(
        record_id,
        actor_id,
        details=body.details,
        follow_up_required=body.follow_up_required,
        follow_up_date=body.follow_up_date,
    )


@router.post("/{record_id}/resubmit", response_model=CommandResult)
async def resubmit(record_id: str, manager: ManagerDep, actor_id: ActorDep):
    return manager.resubmit(record_id, actor_id)


@router.post("/{record_id}/complete", response_model=CommandResult)
async def complete(record_id: str, manager: ManagerDep, actor_id: ActorDep):
    return manager.complete(record_id, actor_id)


@router.post("/{record_id}/cancel-follow-up", response_model=CommandResult)
async def cancel_follow_up(record_id: str, manager: ManagerDep, actor_id: ActorDep):
    return manager.cancel_follow_up(record_id, actor_id)


@router.post("/{record_id}/schedule-follow-up", response_model=CommandResult)
async def schedule_follow_up(
    record_id: str,
    body: ScheduleFollowUpRequest,
    manager: ManagerDep,
    actor_id: ActorDep,
):
    return manager.schedule_follow_up(record_id, actor_id, body.follow_up_date)
