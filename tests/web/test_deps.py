"""Tests for web dependency helpers."""

from fastapi import Request, Response

from admission.rate_limit import RateDecision
from cli.config_models import ConsensusConfig, ServerConfig
from web.deps import apply_rate_headers, get_client_address


def _request(headers: dict, peer=("203.0.113.50", 1234)) -> Request:
    return Request({
        "type": "http",
        "method": "GET",
        "path": "/api/stats",
        "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
        "client": peer,
    })


def _config(trust: bool) -> ConsensusConfig:
    return ConsensusConfig(server=ServerConfig(trust_proxy_headers=trust))


class TestClientAddress:
    def test_peer_used_by_default(self):
        request = _request({"X-Forwarded-For": "198.51.100.1"})
        assert get_client_address(request, _config(False)) == "203.0.113.50"

    def test_headers_used_when_trusted(self):
        request = _request({"X-Forwarded-For": "198.51.100.1, 203.0.113.50"})
        assert get_client_address(request, _config(True)) == "198.51.100.1"

    def test_missing_peer(self):
        assert get_client_address(_request({}, peer=None), _config(False)) == ""


class TestRateHeaders:
    def test_applied(self):
        response = Response()
        apply_rate_headers(response, RateDecision(allowed=True, limit=10, remaining=7))
        assert response.headers["X-RateLimit-Limit"] == "10"
        assert response.headers["X-RateLimit-Remaining"] == "7"

    def test_skipped_without_rule(self):
        response = Response()
        apply_rate_headers(response, None)
        apply_rate_headers(response, RateDecision(allowed=True, limit=0, remaining=0))
        assert "X-RateLimit-Limit" not in response.headers
