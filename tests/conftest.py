"""Shared fixtures for the test suite."""

import pytest

from src.adapters.storage.memory_repository import InMemoryHealthCheckResultRepository
from src.domain.services.lifecycle_manager import HealthCheckResultLifecycleManager
from tests.factories import NOW


@pytest.fixture
def repository():
    return InMemoryHealthCheckResultRepository()


@pytest.fixture
def manager(repository):
    return HealthCheckResultLifecycleManager(repository, clock=lambda: NOW)
