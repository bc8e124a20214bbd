"""Domain layer for Checkup-Ledger.

This module contains the health check result model, the lifecycle enums and
the filter criteria types. Domain models are pure Python with no external
dependencies beyond Pydantic.
"""

from .enums import HealthCheckResultStatus, HistoryAction, LifecycleCommandKind
from .filter_criteria import ALL_TIME, DateRange, FilterCriteria
from .health_check_result import (
    HealthCheckResult,
    HealthCheckResultDetail,
    HistoryEntry,
    ParticipantRef,
)

__all__ = [
    "HealthCheckResultStatus",
    "HistoryAction",
    "LifecycleCommandKind",
    "ALL_TIME",
    "DateRange",
    "FilterCriteria",
    "HealthCheckResult",
    "HealthCheckResultDetail",
    "HistoryEntry",
    "ParticipantRef",
]
