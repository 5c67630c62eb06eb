"""Dependency injection for FastAPI routes."""

from functools import lru_cache
from typing import Optional

import structlog
from fastapi import Depends, Request, Response

from admission.identity import extract_client_address
from admission.rate_limit import RateDecision
from cli.config import load_config_model
from cli.config_models import ConsensusConfig
from predictions.service import PredictionService

logger = structlog.get_logger()


@lru_cache
def get_config() -> ConsensusConfig:
    """Load shared config from consensus.yaml / ~/.consensus/config.yaml."""
    return load_config_model()


@lru_cache
def get_service() -> PredictionService:
    """Process-wide engine; owns the stats cache and rate-limit counters."""
    return PredictionService.from_config(get_config())


def get_client_address(
    request: Request, config: ConsensusConfig = Depends(get_config)
) -> str:
    """Socket peer, or the proxy-reported client when the proxy is trusted."""
    peer = request.client.host if request.client else None
    return (
        extract_client_address(
            request.headers, peer, trust_proxy_headers=config.server.trust_proxy_headers
        )
        or ""
    )


def apply_rate_headers(response: Response, decision: Optional[RateDecision]) -> None:
    """Copy X-RateLimit-* headers onto ``response`` when a rule applied."""
    if decision is not None and decision.limit:
        response.headers.update(decision.headers())
