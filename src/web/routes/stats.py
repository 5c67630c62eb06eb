"""Consensus routes — stats, status, distribution."""

from fastapi import APIRouter, Depends, Response

from predictions.service import PredictionService
from web.deps import apply_rate_headers, get_client_address, get_service
from web.models import DistributionResponse, StatsResponse, StatusResponse

router = APIRouter(prefix="/api", tags=["consensus"])

CACHE_CONTROL = "public, max-age=60"


def _cache_headers(response: Response, hit: bool) -> None:
    response.headers["Cache-Control"] = CACHE_CONTROL
    response.headers["X-Cache"] = "HIT" if hit else "MISS"


@router.get("/stats", response_model=StatsResponse)
def get_stats(
    response: Response,
    address: str = Depends(get_client_address),
    service: PredictionService = Depends(get_service),
):
    read = service.read_stats(address)
    _cache_headers(response, read.cache_hit)
    apply_rate_headers(response, read.rate)
    return StatsResponse(**read.stats.to_dict())


@router.get("/status", response_model=StatusResponse)
def get_status(
    response: Response,
    address: str = Depends(get_client_address),
    service: PredictionService = Depends(get_service),
):
    read = service.read_status(address)
    _cache_headers(response, read.cache_hit)
    apply_rate_headers(response, read.rate)
    return StatusResponse(
        **read.status.to_dict(),
        official_date=service.engine.reference_date.isoformat(),
    )


@router.get("/predictions", response_model=DistributionResponse)
def get_distribution(
    response: Response,
    service: PredictionService = Depends(get_service),
):
    response.headers["Cache-Control"] = CACHE_CONTROL
    return service.get_distribution()
