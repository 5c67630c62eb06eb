"""Prediction routes — submit, update, erase."""

from typing import Optional

import structlog
from fastapi import APIRouter, Cookie, Depends, Header, Response, status

from predictions.errors import ValidationError
from predictions.service import PredictionService
from web.deps import apply_rate_headers, get_client_address, get_service
from web.models import (
    DeletionRequest,
    PredictionRequest,
    PredictionUpdate,
    SubmitData,
    SubmitResponse,
    UpdateResponse,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/api", tags=["predictions"])

COOKIE_NAME = "gta6_user_id"
COOKIE_MAX_AGE = 63072000  # 2 years


@router.post("/predict", status_code=status.HTTP_201_CREATED, response_model=SubmitResponse)
def submit_prediction(
    body: PredictionRequest,
    response: Response,
    address: str = Depends(get_client_address),
    service: PredictionService = Depends(get_service),
    user_agent: Optional[str] = Header(None),
):
    result = service.submit(
        address,
        body.predicted_date,
        verification_token=body.turnstile_token,
        user_agent=user_agent,
    )
    response.set_cookie(
        COOKIE_NAME,
        result.recovery_token,
        max_age=COOKIE_MAX_AGE,
        path="/",
        secure=True,
        samesite="strict",
    )
    apply_rate_headers(response, result.rate)
    return SubmitResponse(data=SubmitData(**result.to_dict()))


@router.put("/predict", response_model=UpdateResponse)
def update_prediction(
    body: PredictionUpdate,
    response: Response,
    address: str = Depends(get_client_address),
    service: PredictionService = Depends(get_service),
    gta6_user_id: Optional[str] = Cookie(None),
):
    token = body.recovery_token or gta6_user_id
    if not token:
        raise ValidationError("Recovery token is required", field="recovery_token")
    result = service.update(
        address,
        token,
        body.predicted_date,
        verification_token=body.turnstile_token,
    )
    apply_rate_headers(response, result.rate)
    return UpdateResponse(**result.to_dict())


@router.post("/delete")
def delete_prediction(
    body: DeletionRequest,
    response: Response,
    address: str = Depends(get_client_address),
    service: PredictionService = Depends(get_service),
    gta6_user_id: Optional[str] = Cookie(None),
):
    if not body.confirm:
        raise ValidationError("You must confirm this action is permanent", field="confirm")
    token = body.recovery_token or gta6_user_id
    if not token:
        raise ValidationError("Recovery token is required", field="recovery_token")
    apply_rate_headers(response, service.delete(address, token))
    if body.reason:
        logger.info("prediction.deletion_reason", reason=body.reason)
    return {"success": True, "message": "Your prediction has been permanently deleted."}
