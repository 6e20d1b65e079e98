"""Shared pytest fixtures for tallypoint tests."""

import pytest
from fastapi.testclient import TestClient

from tallypoint.auth import basic_header
from tallypoint.config import Settings
from tallypoint.store import FilterStore
from tallypoint.supervisor_app import create_app


@pytest.fixture
def store():
    """Empty in-memory filter store."""
    return FilterStore()


@pytest.fixture
def settings():
    """Default settings, no snapshot file and no access log."""
    return Settings()


@pytest.fixture
def auth_headers(settings):
    return {"Authorization": basic_header(settings.auth_user, settings.auth_password)}


@pytest.fixture
def api(settings, store):
    """Test client bound to a supervisor app over the shared store."""
    return TestClient(create_app(settings, store=store))
