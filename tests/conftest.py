"""Shared fixtures: fake upstreams, a controllable clock and a wired test client."""

import pytest
from fastapi.testclient import TestClient

from main import app
from app.core.config import Settings
from app.core.container import ServiceContainer, get_container
from tests.fakes import FakeClock, FakeCompletionClient, FakeEmailTransport


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def completion_client():
    return FakeCompletionClient()


@pytest.fixture
def email_transport():
    return FakeEmailTransport()


@pytest.fixture
def test_settings():
    return Settings(_env_file=None, llm_timeout_seconds=0.2)


@pytest.fixture
def container(test_settings, completion_client, email_transport, clock):
    return ServiceContainer(
        test_settings,
        completion_client=completion_client,
        email_transport=email_transport,
        clock=clock
    )


@pytest.fixture
def client(container):
    """Test client wired to the fake-backed container."""
    app.dependency_overrides[get_container] = lambda: container
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
