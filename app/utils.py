import re
from datetime import datetime, timezone
from typing import Optional

from fastapi import Request


# Indian mobile numbers: +91 followed by 10 digits starting with 6-9
INDIAN_PHONE_REGEX = re.compile(r"^\+91[6-9]\d{9}$")


def validate_indian_phone(phone: str) -> bool:
    """Return True if `phone` is in +91XXXXXXXXXX format."""
    return bool(INDIAN_PHONE_REGEX.match(phone or ""))


def mask_phone(phone: Optional[str]) -> Optional[str]:
    """Mask the middle digits of an Indian number: +91-XXX-XXX1234."""
    if not phone:
        return phone
    return re.sub(r"^(\+91)(\d{6})(\d{4})$", r"\1-XXX-XXX\3", phone)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: Optional[datetime]) -> Optional[datetime]:
    """
    Attach UTC to naive datetimes.

    SQLite hands timezone-aware columns back without tzinfo; every value we
    write is UTC, so naive values read back are UTC too.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def client_ip(request: Optional[Request]) -> Optional[str]:
    if request is None:
        return None
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def user_agent(request: Optional[Request]) -> Optional[str]:
    if request is None:
        return None
    return request.headers.get("user-agent")
