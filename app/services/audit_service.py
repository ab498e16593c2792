"""
Append-only audit trail for DPDP compliance.

Entries are added to the caller's session and committed with the change
they describe, so a write and its audit row land (or fail) together.
"""
import logging
from enum import Enum
from typing import Any, Dict, Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import AuditLog
from ..utils import client_ip, user_agent

logger = logging.getLogger(__name__)


class AuditEvent(str, Enum):
    OTP_SENT = "OTP_SENT"
    OTP_VERIFICATION_FAILED = "OTP_VERIFICATION_FAILED"
    PHONE_VERIFIED = "PHONE_VERIFIED"
    USER_CREATED = "USER_CREATED"
    AGE_VERIFIED = "AGE_VERIFIED"
    AGE_VERIFICATION_FAILED = "AGE_VERIFICATION_FAILED"
    DIGILOCKER_INITIATED = "DIGILOCKER_INITIATED"
    DIGILOCKER_VERIFIED = "DIGILOCKER_VERIFIED"
    VIDEO_SELFIE_VERIFIED = "VIDEO_SELFIE_VERIFIED"
    VIDEO_SELFIE_FAILED = "VIDEO_SELFIE_FAILED"
    CONSENT_GIVEN = "CONSENT_GIVEN"
    CONSENT_WITHDRAWN = "CONSENT_WITHDRAWN"
    PROFILE_UPDATED = "PROFILE_UPDATED"
    LOCATION_DATA_DELETED = "LOCATION_DATA_DELETED"
    AUTO_DATA_CLEANUP = "AUTO_DATA_CLEANUP"
    LOGOUT = "LOGOUT"


class AuditService:
    @staticmethod
    def record(
        db: AsyncSession,
        event_type: AuditEvent,
        user_id: Optional[int] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[Any] = None,
        action: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        request: Optional[Request] = None,
    ) -> AuditLog:
        entry = AuditLog(
            event_type=AuditEvent(event_type).value,
            user_id=user_id,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            action=action,
            event_metadata=metadata,
            ip_address=client_ip(request),
            user_agent=user_agent(request),
        )
        db.add(entry)
        logger.info(f"Audit {entry.event_type} user={user_id} entity={entity_type}:{entry.entity_id}")
        return entry
