"""
Age rules shared by the age-verify endpoint and the request gates.
"""
from datetime import date, datetime
from typing import Optional, Union

from ..exceptions import ApiError, ErrorCode

MINIMUM_AGE = 18


def calculate_age(date_of_birth: date, today: Optional[date] = None) -> int:
    """Whole years between dob and today; the birthday itself counts."""
    today = today or date.today()
    age = today.year - date_of_birth.year
    if (today.month, today.day) < (date_of_birth.month, date_of_birth.day):
        age -= 1
    return age


def is_adult(date_of_birth: date, today: Optional[date] = None) -> bool:
    return calculate_age(date_of_birth, today) >= MINIMUM_AGE


def parse_date_of_birth(value: Union[str, date, None], today: Optional[date] = None) -> date:
    """Parse an ISO 8601 date, rejecting malformed or future dates."""
    if isinstance(value, datetime):
        value = value.date()
    if isinstance(value, date):
        dob = value
    else:
        try:
            dob = date.fromisoformat(str(value or "")[:10])
        except ValueError:
            raise ApiError(ErrorCode.INVALID_DATE_OF_BIRTH)
    if dob > (today or date.today()):
        raise ApiError(ErrorCode.INVALID_DATE_OF_BIRTH,
                       "Date of birth cannot be in the future.")
    return dob
