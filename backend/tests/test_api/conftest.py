"""
Shared pytest fixtures for API tests.

The snapshot registry dependency is overridden with one built on the
in-memory decoder and uploader, so no video files or HTTP uploads are
involved.
"""
import pytest
from fastapi.testclient import TestClient

from main import app
from snapshot_engine.api.v1.snapshots import get_snapshot_registry
from tests.mocks import create_snapshot_registry


@pytest.fixture
def registry():
    """Registry whose videos render acceptable frames at every timestamp."""
    return create_snapshot_registry()


@pytest.fixture
def use_registry():
    """
    Install a registry as the API's snapshot registry.

    Usage:
        use_registry(create_snapshot_registry(...))
    """
    def install(registry):
        app.dependency_overrides[get_snapshot_registry] = lambda: registry
        return registry

    yield install
    app.dependency_overrides.pop(get_snapshot_registry, None)


@pytest.fixture
def client(registry, use_registry):
    """TestClient running the app lifespan, serving `registry`."""
    use_registry(registry)
    with TestClient(app) as test_client:
        yield test_client
