"""Unit test fixtures."""

from contextlib import contextmanager
from unittest.mock import AsyncMock

import pytest

from backend.models import ScanJob


@contextmanager
def override_deps(app, overrides):
    """Set FastAPI dependency overrides and clear them on exit.

    Args:
        app: The FastAPI application.
        overrides: A dict mapping dependency functions to their replacement values.
    """

    def _make_override(val):
        return lambda: val

    for dep_fn, provider in overrides.items():
        app.dependency_overrides[dep_fn] = _make_override(provider)
    try:
        yield app
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def mock_job_service():
    """AsyncMock JobService; tests script get_status and the control calls."""
    service = AsyncMock()
    service.create_job = AsyncMock()
    service.get_status = AsyncMock()
    service.pause = AsyncMock(return_value=None)
    service.resume = AsyncMock(return_value=None)
    service.abort = AsyncMock(return_value=None)
    service.get_active_job = AsyncMock(return_value=None)
    service.list_jobs = AsyncMock(return_value=[])
    return service


@pytest.fixture
def mock_log_service():
    service = AsyncMock()
    service.list = AsyncMock(return_value=[])
    return service


@pytest.fixture
def mock_session():
    session = AsyncMock()
    session.handle_error = AsyncMock(return_value=True)
    session.generation = 0
    return session


@pytest.fixture
def job_status_sequence(mock_job_service):
    """Script successive get_status results (ScanJob or exception)."""

    def _script(*results: ScanJob | Exception):
        mock_job_service.get_status.side_effect = list(results)
        return mock_job_service

    return _script
