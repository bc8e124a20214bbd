"""Health Check Result Query Service.

Answers list-view queries: take a snapshot from the repository, apply the
view's base criteria plus the request's criteria through the FilterEngine,
then sort and paginate. Follow-up urgency is derived with the caller's date
on every query.
"""

import logging
from datetime import date
from typing import Any, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from src.domain.enums import HealthCheckResultStatus
from src.domain.filter_criteria import (
    DateRange,
    DateRangeConstraint,
    FilterCriteria,
    MembershipConstraint,
)
from src.domain.health_check_result import HealthCheckResult, HistoryEntry, utc_now
from src.domain.ports import HealthCheckResultRepositoryPort, ValidationError
from src.domain.services.filter_engine import FilterEngine, resolve_field
from src.domain.services.follow_up import follow_up_urgency_field
from src.domain.views import get_view

logger = logging.getLogger(__name__)

FOLLOW_UP_URGENCY_FIELD = "follow_up_urgency"

SORT_FIELDS = frozenset({
    "checkup_date",
    "created_at",
    "updated_at",
    "follow_up_date",
    "approved_date",
    "cancelled_date",
    "code",
    "status",
})


class HealthCheckResultQuery(BaseModel):
    """One list-view request.

    Parameters:
        view: View name (see ``HEALTH_CHECK_RESULT_VIEWS``)
        search: Search group -> term, e.g. ``{"user": "nguyen", "staff": "tran"}``
        criteria: Additional criteria ANDed onto the view's base criteria
        sort_by: One of SORT_FIELDS
        ascending: Sort direction; missing values always sort last
        page: 1-based page number
        page_size: Records per page
    """

    model_config = ConfigDict(frozen=True)

    view: str = "all"
    search: dict[str, Optional[str]] = Field(default_factory=dict)
    criteria: FilterCriteria = FilterCriteria()
    sort_by: str = "checkup_date"
    ascending: bool = False
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=10, ge=1, le=1000)


class PaginationMeta(BaseModel):
    """Pagination metadata."""

    total: int = Field(..., description="Total number of matching records")
    page: int = Field(..., description="Current page (1-based)")
    page_size: int = Field(..., description="Number of records per page")
    has_next: bool = Field(..., description="Whether there are more records")
    has_previous: bool = Field(..., description="Whether there are previous records")


class HealthCheckResultPage(BaseModel):
    items: list[HealthCheckResult]
    pagination: PaginationMeta


class HistoryPage(BaseModel):
    items: list[HistoryEntry]
    pagination: PaginationMeta


def _date_window(name: str, start: Optional[date], end: Optional[date]) -> DateRange:
    try:
        return DateRange(start=start, end=end)
    except PydanticValidationError:
        raise ValidationError(
            f"{name}_start {start} is after {name}_end {end}",
            guard="date_range",
            details={f"{name}_start": str(start), f"{name}_end": str(end)},
        ) from None


def build_filter_criteria(
    statuses: Optional[Iterable[Any]] = None,
    checkup_start: Optional[date] = None,
    checkup_end: Optional[date] = None,
    follow_up_required: Optional[bool] = None,
    follow_up_start: Optional[date] = None,
    follow_up_end: Optional[date] = None,
    follow_up_urgency: Optional[Iterable[Any]] = None
) -> FilterCriteria:
    """Translate the list-screen filter controls into FilterCriteria.

    Every argument left as None (or empty) adds no constraint.

    Raises:
        ValidationError: If a date range starts after it ends
    """
    checkup_window = _date_window("checkup", checkup_start, checkup_end)
    follow_up_window = _date_window("follow_up", follow_up_start, follow_up_end)

    memberships = [
        MembershipConstraint(field="status", allowed=tuple(statuses or ())),
        MembershipConstraint(field=FOLLOW_UP_URGENCY_FIELD, allowed=tuple(follow_up_urgency or ())),
    ]
    if follow_up_required is not None:
        memberships.append(MembershipConstraint(field="follow_up_required", allowed=(follow_up_required,)))

    return FilterCriteria(
        memberships=tuple(memberships),
        date_ranges=(
            DateRangeConstraint(fields=("checkup_date",), window=checkup_window),
            DateRangeConstraint(fields=("follow_up_date",), window=follow_up_window),
        ),
    )


def sort_records(records: list, sort_by: str, ascending: bool) -> list:
    """Stable sort on one field with missing values last in either direction."""
    if sort_by not in SORT_FIELDS:
        raise ValidationError(
            f"Cannot sort by '{sort_by}'",
            guard="sort_by",
            details={"available": sorted(SORT_FIELDS)},
        )
    present = [r for r in records if resolve_field(r, sort_by) is not None]
    missing = [r for r in records if resolve_field(r, sort_by) is None]
    present.sort(key=lambda r: _sort_key(resolve_field(r, sort_by)), reverse=not ascending)
    return present + missing


def _sort_key(value: Any) -> Any:
    if isinstance(value, HealthCheckResultStatus):
        return value.value
    return value


def _paginate(items: list, page: int, page_size: int) -> tuple[list, PaginationMeta]:
    start = (page - 1) * page_size
    window = items[start:start + page_size]
    meta = PaginationMeta(
        total=len(items),
        page=page,
        page_size=page_size,
        has_next=start + page_size < len(items),
        has_previous=page > 1,
    )
    return window, meta


class HealthCheckResultQueryService:
    """Read-side service over a repository snapshot. Takes no locks.

    Parameters:
        repository: Repository port to read snapshots from
    """

    def __init__(self, repository: HealthCheckResultRepositoryPort):
        self.repository = repository

    def engine(self, today: date) -> FilterEngine:
        """FilterEngine with follow-up urgency derived against ``today``."""
        return FilterEngine(derived_fields={FOLLOW_UP_URGENCY_FIELD: follow_up_urgency_field(today)})

    def filter(
        self,
        records: Iterable[HealthCheckResult],
        criteria: FilterCriteria,
        today: Optional[date] = None
    ) -> list[HealthCheckResult]:
        """Records matching ``criteria``, in input order."""
        return self.engine(today or utc_now().date()).filter(records, criteria)

    def search(self, query: HealthCheckResultQuery, today: Optional[date] = None) -> HealthCheckResultPage:
        """Run a list-view query.

        Raises:
            ValidationError: Unknown view, search group or sort field
        """
        view = get_view(query.view)
        criteria = view.build_criteria(query.search, query.criteria)
        matched = self.filter(self.repository.list_all(), criteria, today)
        ordered = sort_records(matched, query.sort_by, query.ascending)
        items, meta = _paginate(ordered, query.page, query.page_size)
        logger.debug(f"View '{view.name}' matched {meta.total} records")
        return HealthCheckResultPage(items=items, pagination=meta)

    def all_history(self, page: int = 1, page_size: int = 10, ascending: bool = False) -> HistoryPage:
        """History entries across all records, newest first by default."""
        # Entries sharing a timestamp keep their commit order, reversed for newest first
        indexed = sorted(
            enumerate(self.repository.all_history()),
            key=lambda pair: (pair[1].action_date, pair[0]),
            reverse=not ascending,
        )
        entries = [entry for _, entry in indexed]
        items, meta = _paginate(entries, page, page_size)
        return HistoryPage(items=items, pagination=meta)
