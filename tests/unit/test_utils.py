"""Unit tests for utility functions."""

from datetime import datetime, timezone

import pytest
from app.utils import ensure_aware, mask_phone, validate_indian_phone


@pytest.mark.parametrize("phone", ["+919876543210", "+916000000000", "+917999999999"])
def test_validate_indian_phone_accepts_mobile_numbers(phone):
    """Test that +91 numbers starting with 6-9 are accepted."""
    assert validate_indian_phone(phone) is True


@pytest.mark.parametrize("phone", [
    "9876543210",        # missing country code
    "+915876543210",     # starts with 5
    "+91987654321",      # 9 digits
    "+9198765432101",    # 11 digits
    "+449876543210",     # wrong country
    "+91 9876543210",    # whitespace
    "",
    None,
])
def test_validate_indian_phone_rejects_other_formats(phone):
    """Test that anything but +91 followed by a 10-digit mobile is rejected."""
    assert validate_indian_phone(phone) is False


def test_mask_phone():
    """Test that only the last four digits stay visible."""
    assert mask_phone("+919876543210") == "+91-XXX-XXX3210"
    assert mask_phone(None) is None


def test_ensure_aware_treats_naive_as_utc():
    """Test that naive datetimes read back from SQLite are tagged as UTC."""
    naive = datetime(2024, 1, 1, 12, 0)
    aware = ensure_aware(naive)
    assert aware.tzinfo == timezone.utc
    assert aware.hour == 12

    already = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
    assert ensure_aware(already) is already
    assert ensure_aware(None) is None
