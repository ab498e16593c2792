"""Unit tests for the age rules."""

from datetime import date

import pytest
from app.exceptions import ApiError, ErrorCode
from app.services.gates import calculate_age, is_adult, parse_date_of_birth


TODAY = date(2024, 6, 15)


class TestCalculateAge:
    """Age in whole years, birthday inclusive."""

    def test_birthday_today_counts(self):
        assert calculate_age(date(2006, 6, 15), TODAY) == 18

    def test_day_before_birthday(self):
        assert calculate_age(date(2006, 6, 16), TODAY) == 17

    def test_earlier_month(self):
        assert calculate_age(date(1990, 1, 1), TODAY) == 34

    def test_leap_day_birth(self):
        """Test that a 29 Feb birthday counts from 1 March in common years."""
        assert calculate_age(date(2004, 2, 29), date(2022, 2, 28)) == 17
        assert calculate_age(date(2004, 2, 29), date(2022, 3, 1)) == 18


class TestIsAdult:
    def test_exactly_eighteen_today(self):
        """Test that the 18th birthday is the first adult day."""
        assert is_adult(date(2006, 6, 15), TODAY) is True

    def test_one_day_short(self):
        assert is_adult(date(2006, 6, 16), TODAY) is False


class TestParseDateOfBirth:
    def test_parses_iso_date(self):
        assert parse_date_of_birth("1995-08-15", TODAY) == date(1995, 8, 15)

    def test_accepts_datetime_string(self):
        """Test that a full ISO timestamp is cut down to its date."""
        assert parse_date_of_birth("1995-08-15T00:00:00Z", TODAY) == date(1995, 8, 15)

    @pytest.mark.parametrize("value", ["15/08/1995", "not-a-date", "", None, "1995-13-01"])
    def test_rejects_malformed_dates(self, value):
        with pytest.raises(ApiError) as exc:
            parse_date_of_birth(value, TODAY)
        assert exc.value.code == ErrorCode.INVALID_DATE_OF_BIRTH
        assert exc.value.status_code == 400

    def test_rejects_future_dates(self):
        with pytest.raises(ApiError) as exc:
            parse_date_of_birth("2024-06-16", TODAY)
        assert exc.value.code == ErrorCode.INVALID_DATE_OF_BIRTH
