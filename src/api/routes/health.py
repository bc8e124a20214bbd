"""Service health endpoint."""

import logging
import time

from fastapi import APIRouter

from src.api.dependencies import RepositoryDep
from src.api.models import HealthResponse, RepositoryHealth
from src.infrastructure.settings import APP_VERSION, settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(repository: RepositoryDep) -> HealthResponse:
    """Report whether the repository answers reads."""
    db_type = settings.db_config.db_type
    try:
        start_time = time.time()
        repository.list_all()
        response_time = (time.time() - start_time) * 1000
        repository_health = RepositoryHealth(
            status="connected", type=db_type, response_time_ms=round(response_time, 2)
        )
    except Exception as e:
        logger.warning(f"Repository health check failed: {str(e)}")
        repository_health = RepositoryHealth(status="disconnected", type=db_type)

    return HealthResponse(
        status="healthy" if repository_health.status == "connected" else "unhealthy",
        version=APP_VERSION,
        repository=repository_health,
    )
