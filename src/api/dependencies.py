"""Dependency injection for the HTTP API.

This module wires the configured adapters into the domain services,
following Hexagonal Architecture: routes only see ports and services.
"""

import logging
from functools import lru_cache
from typing import Annotated, Optional

from fastapi import Depends, Header

from src.adapters.side_effects import (
    LoggingNotificationAdapter,
    LoggingSurveyAdapter,
    StaticApprovalAuthority,
)
from src.adapters.storage import create_repository
from src.domain.ports import HealthCheckResultRepositoryPort, ValidationError
from src.domain.services.lifecycle_manager import HealthCheckResultLifecycleManager
from src.domain.services.query_service import HealthCheckResultQueryService
from src.domain.services.statistics import StatisticsService
from src.infrastructure.settings import settings

logger = logging.getLogger(__name__)

ACTOR_HEADER = "X-Actor-Id"


@lru_cache()
def get_repository() -> HealthCheckResultRepositoryPort:
    """Get the repository adapter (cached for the life of the process)."""
    db_config = settings.db_config
    logger.debug(f"Creating {db_config.db_type} repository")
    return create_repository(db_config)


@lru_cache()
def get_notification_adapter() -> LoggingNotificationAdapter:
    return LoggingNotificationAdapter()


RepositoryDep = Annotated[HealthCheckResultRepositoryPort, Depends(get_repository)]


def get_lifecycle_manager(repository: RepositoryDep) -> HealthCheckResultLifecycleManager:
    side_effects = settings.side_effects
    return HealthCheckResultLifecycleManager(
        repository,
        survey=LoggingSurveyAdapter() if side_effects.survey_enabled else None,
        notifications=get_notification_adapter() if side_effects.notifications_enabled else None,
        approval_authority=StaticApprovalAuthority(side_effects.approver_ids),
    )


def get_query_service(repository: RepositoryDep) -> HealthCheckResultQueryService:
    return HealthCheckResultQueryService(repository)


def get_statistics_service(repository: RepositoryDep) -> StatisticsService:
    return StatisticsService(repository)


def get_actor_id(x_actor_id: Annotated[Optional[str], Header()] = None) -> str:
    """Acting staff id from the ``X-Actor-Id`` header.

    Raises:
        ValidationError: If the header is missing or blank
    """
    if not x_actor_id or not x_actor_id.strip():
        raise ValidationError(f"{ACTOR_HEADER} header is required", guard="actor")
    return x_actor_id.strip()


ManagerDep = Annotated[HealthCheckResultLifecycleManager, Depends(get_lifecycle_manager)]
QueryServiceDep = Annotated[HealthCheckResultQueryService, Depends(get_query_service)]
StatisticsDep = Annotated[StatisticsService, Depends(get_statistics_service)]
ActorDep = Annotated[str, Depends(get_actor_id)]
