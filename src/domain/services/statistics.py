"""Health Check Result Statistics.

Aggregates a repository snapshot into the dashboard figures: status
distribution, follow-up urgency counts and the monthly checkup distribution.
"""

import logging
from datetime import date
from typing import Optional

import pandas as pd
from pydantic import BaseModel, Field

from src.domain.enums import FollowUpUrgency, HealthCheckResultStatus
from src.domain.health_check_result import HealthCheckResult, utc_now
from src.domain.ports import HealthCheckResultRepositoryPort, Result
from src.domain.services.follow_up import classify_follow_up

logger = logging.getLogger(__name__)


class StatusDistribution(BaseModel):
    waiting_for_approval: int = 0
    follow_up_required: int = 0
    no_follow_up_required: int = 0
    completed: int = 0
    cancelled_completely: int = 0
    cancelled_for_adjustment: int = 0
    soft_deleted: int = 0


class FollowUpStatistics(BaseModel):
    total_follow_ups: int = 0
    upcoming_follow_ups: int = 0
    overdue_follow_ups: int = 0
    follow_ups_today: int = 0


class MonthlyCount(BaseModel):
    year: int
    month: int
    count: int


class HealthCheckResultStatistics(BaseModel):
    total_results: int = 0
    status_distribution: StatusDistribution = Field(default_factory=StatusDistribution)
    follow_up_statistics: FollowUpStatistics = Field(default_factory=FollowUpStatistics)
    monthly_distribution: list[MonthlyCount] = Field(default_factory=list)


_STATUS_COLUMNS = {
    HealthCheckResultStatus.WAITING_FOR_APPROVAL.value: "waiting_for_approval",
    HealthCheckResultStatus.FOLLOW_UP_REQUIRED.value: "follow_up_required",
    HealthCheckResultStatus.NO_FOLLOW_UP_REQUIRED.value: "no_follow_up_required",
    HealthCheckResultStatus.COMPLETED.value: "completed",
    HealthCheckResultStatus.CANCELLED_COMPLETELY.value: "cancelled_completely",
    HealthCheckResultStatus.CANCELLED_FOR_ADJUSTMENT.value: "cancelled_for_adjustment",
    HealthCheckResultStatus.SOFT_DELETED.value: "soft_deleted",
}


def records_to_dataframe(records: list[HealthCheckResult]) -> pd.DataFrame:
    """Flatten records into the columns the statistics need."""
    return pd.DataFrame(
        {
            "status": [r.status.value for r in records],
            "checkup_date": pd.to_datetime([r.checkup_date for r in records]),
            "follow_up_date": [r.follow_up_date for r in records],
        }
    )


class StatisticsService:
    """Computes dashboard statistics over a repository snapshot."""

    def __init__(self, repository: HealthCheckResultRepositoryPort):
        self.repository = repository

    def compute(self, today: Optional[date] = None) -> Result[HealthCheckResultStatistics]:
        """Compute statistics with follow-up urgency relative to ``today``.

        Returns:
            Result[HealthCheckResultStatistics]: Statistics or error
        """
        try:
            today = today or utc_now().date()
            records = self.repository.list_all()
            if not records:
                return Result.success_result(HealthCheckResultStatistics())

            df = records_to_dataframe(records)

            counts = df["status"].value_counts()
            distribution = StatusDistribution(**{
                column: int(counts.get(status, 0)) for status, column in _STATUS_COLUMNS.items()
            })

            follow_ups = df[
                (df["status"] == HealthCheckResultStatus.FOLLOW_UP_REQUIRED.value)
                & df["follow_up_date"].notna()
            ]
            urgency = follow_ups["follow_up_date"].map(lambda d: classify_follow_up(d, today).value)
            urgency_counts = urgency.value_counts()
            follow_up_stats = FollowUpStatistics(
                total_follow_ups=len(follow_ups),
                upcoming_follow_ups=int(urgency_counts.get(FollowUpUrgency.UPCOMING.value, 0)),
                overdue_follow_ups=int(urgency_counts.get(FollowUpUrgency.OVERDUE.value, 0)),
                follow_ups_today=int(urgency_counts.get(FollowUpUrgency.TODAY.value, 0)),
            )

            monthly = (
                df.groupby([df["checkup_date"].dt.year.rename("year"), df["checkup_date"].dt.month.rename("month")])
                .size()
                .reset_index(name="checkups")
                .sort_values(["year", "month"])
            )
            monthly_distribution = [
                MonthlyCount(year=int(row.year), month=int(row.month), count=int(row.checkups))
                for row in monthly.itertuples(index=False)
            ]

            return Result.success_result(HealthCheckResultStatistics(
                total_results=len(records),
                status_distribution=distribution,
                follow_up_statistics=follow_up_stats,
                monthly_distribution=monthly_distribution,
            ))
        except Exception as e:
            logger.error(f"Failed to compute health check result statistics: {e}", exc_info=True)
            return Result.failure_result(e, error_type="StatisticsError")
