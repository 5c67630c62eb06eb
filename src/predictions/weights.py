"""Date reasonableness weights.

Guesses close to the reference date count fully; far-off guesses (trolls
picking 2099) still count, just weakly.

Tiers, by absolute distance from the reference date in calendar years:
    <= 5        1.0
    (5, 50]     0.3
    > 50        0.1
"""

from datetime import date

NEAR_THRESHOLD_YEARS = 5.0
FAR_THRESHOLD_YEARS = 50.0

WEIGHT_FULL = 1.0
WEIGHT_REDUCED = 0.3
WEIGHT_MINIMAL = 0.1


def _add_years(d: date, years: int) -> date:
    """Same month and day ``years`` later; Feb 29 lands on Feb 28 off leap years."""
    try:
        return d.replace(year=d.year + years)
    except ValueError:
        return d.replace(year=d.year + years, day=28)


def years_between(a: date, b: date) -> float:
    """Absolute distance in calendar years.

    Whole years count anniversaries, so a date exactly N years from another is
    exactly N. The remainder is the fraction of the following year elapsed.
    """
    lo, hi = sorted((a, b))
    whole = hi.year - lo.year
    anniversary = _add_years(lo, whole)
    if anniversary > hi:
        whole -= 1
        anniversary = _add_years(lo, whole)
    if anniversary == hi:
        return float(whole)
    following = _add_years(lo, whole + 1)
    return whole + (hi - anniversary).days / (following - anniversary).days


def calculate_weight(
    predicted_date: date,
    reference_date: date,
    near_years: float = NEAR_THRESHOLD_YEARS,
    far_years: float = FAR_THRESHOLD_YEARS,
) -> float:
    """Weight in (0, 1] for a predicted date.

    Depends only on its arguments, never on the current time, so a stored
    weight can always be recomputed from its own date.
    """
    distance = years_between(predicted_date, reference_date)
    if distance <= near_years:
        return WEIGHT_FULL
    if distance <= far_years:
        return WEIGHT_REDUCED
    return WEIGHT_MINIMAL
