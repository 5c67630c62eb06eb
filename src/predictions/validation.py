"""Boundary validation for prediction input.

Raw request values are checked once here and turned into typed values; the
rest of the engine only ever sees ``date`` objects and well-formed tokens.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from .errors import ValidationError

MIN_DATE = date(2026, 11, 19)
MAX_DATE = date(2125, 12, 31)

DATE_PATTERN = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])-(0[1-9]|[12]\d|3[01])$")
TOKEN_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

MAX_USER_AGENT_LENGTH = 256


def parse_predicted_date(
    value,
    min_date: date = MIN_DATE,
    max_date: date = MAX_DATE,
    field: str = "predicted_date",
) -> date:
    """Parse a ``YYYY-MM-DD`` string (or date) and enforce the allowed range."""
    if isinstance(value, datetime):
        # A datetime is a date subclass; the time part has no meaning here.
        raise ValidationError("Please enter a valid date", field=field)
    if isinstance(value, date):
        parsed = value
    else:
        if not isinstance(value, str) or not DATE_PATTERN.match(value.strip()):
            raise ValidationError("Please enter a valid date", field=field)
        try:
            parsed = date.fromisoformat(value.strip())
        except ValueError:
            # Regex passes 2026-02-30; the calendar does not.
            raise ValidationError("Invalid calendar date (e.g., Feb 30, Apr 31)", field=field)

    if parsed < min_date:
        raise ValidationError(
            f"Date must be on or after {min_date.isoformat()}", field=field
        )
    if parsed > max_date:
        raise ValidationError(
            f"Date must be on or before {max_date.isoformat()}", field=field
        )
    return parsed


def validate_recovery_token(value, field: str = "recovery_token") -> str:
    if not isinstance(value, str) or not TOKEN_PATTERN.match(value.strip()):
        raise ValidationError("Invalid recovery token format", field=field)
    return value.strip().lower()


def clean_user_agent(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    return value[:MAX_USER_AGENT_LENGTH]


@dataclass(frozen=True)
class PredictionInput:
    """A validated submit/update payload."""

    predicted_date: date
    recovery_token: Optional[str] = None
    verification_token: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def parse(
        cls,
        predicted_date,
        recovery_token=None,
        verification_token: Optional[str] = None,
        user_agent: Optional[str] = None,
        min_date: date = MIN_DATE,
        max_date: date = MAX_DATE,
    ) -> "PredictionInput":
        return cls(
            predicted_date=parse_predicted_date(predicted_date, min_date, max_date),
            recovery_token=(
                validate_recovery_token(recovery_token) if recovery_token is not None else None
            ),
            verification_token=verification_token or None,
            user_agent=clean_user_agent(user_agent),
        )
