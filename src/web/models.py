"""Pydantic request/response schemas for the web API."""

from typing import Literal, Optional

from pydantic import BaseModel, Field

# --- Predictions ---


class PredictionRequest(BaseModel):
    """Submit a new prediction. Dates stay strings until the engine validates them."""

    predicted_date: str = Field(..., max_length=32)
    turnstile_token: Optional[str] = Field(None, max_length=2048)


class PredictionUpdate(BaseModel):
    """Change an existing prediction. The token may also arrive as a cookie."""

    predicted_date: str = Field(..., max_length=32)
    recovery_token: Optional[str] = Field(None, max_length=64)
    turnstile_token: Optional[str] = Field(None, max_length=2048)


class DeletionRequest(BaseModel):
    recovery_token: Optional[str] = Field(None, max_length=64)
    reason: Optional[Literal["privacy-concerns", "no-longer-interested", "other", ""]] = None
    confirm: bool = False


class SubmitData(BaseModel):
    recovery_token: str
    predicted_date: str
    consensus_median: str
    delta_days: int
    comparison: str


class SubmitResponse(BaseModel):
    success: bool = True
    data: SubmitData
    message: str = "Your prediction has been recorded!"


class UpdateResponse(BaseModel):
    success: bool = True
    predicted_date: str
    previous_date: str
    consensus_median: str
    delta_days: int
    comparison: str
    message: str = "Your prediction has been updated!"


# --- Consensus ---


class StatsResponse(BaseModel):
    median: str
    min: Optional[str] = None
    max: Optional[str] = None
    count: int
    computed_at: str


class StatusResponse(BaseModel):
    category: str
    status: str
    status_color: str
    median_date: Optional[str] = None
    delta_days: int
    count: int
    official_date: str


class DistributionBucket(BaseModel):
    predicted_date: str
    count: int


class DistributionResponse(BaseModel):
    data: list[DistributionBucket] = []
    total_predictions: int
