"""Community sentiment status from the weighted median.

Bands over ``delta = median - reference`` in days:
    delta < -60             early release possible
    -60 <= delta <= 60      on track
    60 < delta <= 180       delay likely
    delta > 180             major delay expected
"""

from dataclasses import dataclass
from datetime import date
from typing import Optional

from shared_types import StatusCategory

EARLY_RELEASE_DAYS = -60
ON_TRACK_MAX_DAYS = 60
DELAY_LIKELY_MAX_DAYS = 180

MINIMUM_SAMPLE_SIZE = 50

STATUS_LABELS = {
    StatusCategory.GATHERING_DATA: ("Gathering Data", "blue"),
    StatusCategory.EARLY_RELEASE: ("Early Release Possible", "green"),
    StatusCategory.ON_TRACK: ("On Track", "blue"),
    StatusCategory.DELAY_LIKELY: ("Delay Likely", "amber"),
    StatusCategory.MAJOR_DELAY: ("Major Delay Expected", "red"),
}


@dataclass(frozen=True)
class StatusResult:
    category: StatusCategory
    median_date: Optional[date]
    delta_days: int
    count: int

    @property
    def label(self) -> str:
        return STATUS_LABELS[self.category][0]

    @property
    def color(self) -> str:
        return STATUS_LABELS[self.category][1]

    def to_dict(self) -> dict:
        return {
            "category": self.category.value,
            "status": self.label,
            "status_color": self.color,
            "median_date": self.median_date.isoformat() if self.median_date else None,
            "delta_days": self.delta_days,
            "count": self.count,
        }


def band_for_delta(
    delta_days: int,
    early_release_days: int = EARLY_RELEASE_DAYS,
    on_track_max_days: int = ON_TRACK_MAX_DAYS,
    delay_likely_max_days: int = DELAY_LIKELY_MAX_DAYS,
) -> StatusCategory:
    if delta_days < early_release_days:
        return StatusCategory.EARLY_RELEASE
    if delta_days <= on_track_max_days:
        return StatusCategory.ON_TRACK
    if delta_days <= delay_likely_max_days:
        return StatusCategory.DELAY_LIKELY
    return StatusCategory.MAJOR_DELAY


def classify(
    median: Optional[date],
    reference_date: date,
    count: int,
    minimum_sample: int = MINIMUM_SAMPLE_SIZE,
    **thresholds,
) -> StatusResult:
    """Classify the consensus median against the reference date.

    Below ``minimum_sample`` predictions the result is always
    GATHERING_DATA, whatever the median says.
    """
    if median is None or count < minimum_sample:
        delta = (median - reference_date).days if median is not None else 0
        return StatusResult(StatusCategory.GATHERING_DATA, median, delta, count)

    delta = (median - reference_date).days
    return StatusResult(band_for_delta(delta, **thresholds), median, delta, count)
