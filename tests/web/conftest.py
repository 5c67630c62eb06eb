"""Shared fixtures for web API tests."""

import pytest
from fastapi.testclient import TestClient

from cli.config_models import ConsensusConfig, ServerConfig
from web.app import app
from web.deps import get_config, get_service


def with_peer(asgi_app, host: str):
    """Wrap an ASGI app so every request arrives from socket peer ``host``."""

    async def wrapped(scope, receive, send):
        if scope["type"] == "http":
            scope = {**scope, "client": (host, 50000)}
        await asgi_app(scope, receive, send)

    return wrapped


@pytest.fixture
def service(make_service):
    return make_service()


@pytest.fixture
def make_client():
    """Factory for a TestClient bound to a given engine. The lifespan is not run.

    Proxy headers are trusted unless ``trust_proxy_headers=False``; ``peer``
    overrides the socket address TestClient reports.
    """

    def _make(service, trust_proxy_headers=True, peer=None):
        config = ConsensusConfig(server=ServerConfig(trust_proxy_headers=trust_proxy_headers))
        app.dependency_overrides[get_service] = lambda: service
        app.dependency_overrides[get_config] = lambda: config
        return TestClient(with_peer(app, peer) if peer else app)

    yield _make
    app.dependency_overrides.clear()


@pytest.fixture
def client(make_client, service):
    return make_client(service)


@pytest.fixture
def client_headers():
    return {"X-Real-IP": "203.0.113.20"}
