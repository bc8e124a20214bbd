"""Domain Services.

This package contains domain services that implement business logic
without infrastructure dependencies.
"""

from src.domain.services.filter_engine import FilterEngine, filter_records, matches
from src.domain.services.follow_up import classify_follow_up
from src.domain.services.lifecycle_manager import (
    CommandResult,
    CommandWarning,
    HealthCheckResultLifecycleManager,
    LifecycleCommand,
)
from src.domain.services.query_service import HealthCheckResultQuery, HealthCheckResultQueryService
from src.domain.services.statistics import StatisticsService

__all__ = [
    'FilterEngine',
    'filter_records',
    'matches',
    'classify_follow_up',
    'CommandResult',
    'CommandWarning',
    'HealthCheckResultLifecycleManager',
    'LifecycleCommand',
    'HealthCheckResultQuery',
    'HealthCheckResultQueryService',
    'StatisticsService',
]
