"""Tests for date reasonableness weights."""

from datetime import date, timedelta

import pytest

from predictions.weights import (
    WEIGHT_FULL,
    WEIGHT_MINIMAL,
    WEIGHT_REDUCED,
    calculate_weight,
    years_between,
)

REF = date(2026, 11, 19)


class TestCalculateWeight:
    @pytest.mark.parametrize(
        "predicted,expected",
        [
            (date(2026, 11, 19), 1.0),
            (date(2027, 3, 1), 1.0),
            (date(2040, 1, 1), 0.3),
            (date(2099, 1, 1), 0.1),
            (date(2125, 12, 31), 0.1),
        ],
    )
    def test_tiers(self, predicted, expected):
        assert calculate_weight(predicted, REF) == expected

    def test_near_boundary(self):
        """Five calendar years is still full weight; one more day is not."""
        assert calculate_weight(date(2031, 11, 19), REF) == WEIGHT_FULL
        assert calculate_weight(date(2031, 11, 20), REF) == WEIGHT_REDUCED

    def test_far_boundary(self):
        assert calculate_weight(date(2076, 11, 19), REF) == WEIGHT_REDUCED
        assert calculate_weight(date(2076, 11, 20), REF) == WEIGHT_MINIMAL

    def test_far_boundary_before_reference(self):
        assert calculate_weight(date(1976, 11, 19), REF) == WEIGHT_REDUCED
        assert calculate_weight(date(1976, 11, 18), REF) == WEIGHT_MINIMAL

    def test_symmetric_around_reference(self):
        assert calculate_weight(REF - timedelta(days=3000), REF) == calculate_weight(
            REF + timedelta(days=3000), REF
        )

    def test_non_increasing_and_never_zero(self):
        previous = None
        for days in range(0, 40000, 97):
            w = calculate_weight(REF + timedelta(days=days), REF)
            assert w > 0
            if previous is not None:
                assert w <= previous
            previous = w

    def test_custom_thresholds(self):
        assert calculate_weight(date(2028, 1, 1), REF, near_years=1, far_years=2) == 0.3

    def test_deterministic(self):
        d = date(2031, 6, 1)
        assert calculate_weight(d, REF) == calculate_weight(d, REF)


def test_years_between_is_absolute():
    assert years_between(date(2030, 1, 1), REF) == years_between(REF, date(2030, 1, 1))


class TestYearsBetween:
    def test_anniversary_is_whole_years(self):
        assert years_between(REF, date(2076, 11, 19)) == 50.0
        assert years_between(REF, date(2031, 11, 19)) == 5.0

    def test_fraction_of_following_year(self):
        # 2027-11-19 to 2028-11-19 spans a leap day: 366 days.
        assert years_between(REF, date(2028, 5, 19)) == pytest.approx(1 + 182 / 366)

    def test_day_before_anniversary(self):
        assert 49.99 < years_between(REF, date(2076, 11, 18)) < 50.0

    def test_leap_day_anniversary(self):
        leap = date(2028, 2, 29)
        assert years_between(leap, date(2029, 2, 28)) == 1.0
        assert years_between(leap, date(2032, 2, 29)) == 4.0
