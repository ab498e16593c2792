"""
Purpose-scoped consent ledger (DPDP Act 2023).

Consent rows are a history: at most one row per user is open
(`consent_withdrawn_at IS NULL`). Changing consent closes the open row and
appends a new one; withdrawing closes it and appends a closed tombstone, so
the latest row always describes the current state.
"""
import logging
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from fastapi import Request
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from ..exceptions import ApiError, ErrorCode, consent_required_error
from ..models import Consent
from ..utils import client_ip, ensure_aware, user_agent, utcnow
from .audit_service import AuditEvent, AuditService

logger = logging.getLogger(__name__)

CONSENT_VERSION = "1.0"


class ConsentPurpose(str, Enum):
    MATCHING = "purposeMatching"
    MARKETING = "purposeMarketing"
    ANALYTICS = "purposeAnalytics"
    THIRD_PARTY = "purposeThirdParty"

    @property
    def column(self) -> str:
        return _PURPOSE_COLUMNS[self]


_PURPOSE_COLUMNS = {
    ConsentPurpose.MATCHING: "purpose_matching",
    ConsentPurpose.MARKETING: "purpose_marketing",
    ConsentPurpose.ANALYTICS: "purpose_analytics",
    ConsentPurpose.THIRD_PARTY: "purpose_third_party",
}


def parse_purpose(value: str) -> ConsentPurpose:
    try:
        return ConsentPurpose(value)
    except ValueError:
        raise ApiError(
            ErrorCode.INVALID_CONSENT_PURPOSE,
            f"Invalid consent purpose: {value}",
            details={"allowed": [p.value for p in ConsentPurpose]},
        )


def _iso(value: Optional[datetime]) -> Optional[str]:
    value = ensure_aware(value)
    return value.isoformat() if value else None


def serialize_consent(consent: Consent) -> dict:
    return {
        "id": consent.id,
        "isActive": consent.consent_withdrawn_at is None,
        **{p.value: bool(getattr(consent, p.column)) for p in ConsentPurpose},
        "consentGivenAt": _iso(consent.consent_given_at),
        "consentWithdrawnAt": _iso(consent.consent_withdrawn_at),
        "consentVersion": consent.consent_version,
    }


class ConsentService:
    @staticmethod
    async def get_latest(db: AsyncSession, user_id: int) -> Optional[Consent]:
        stmt = (
            select(Consent)
            .where(Consent.user_id == user_id)
            .order_by(Consent.created_at.desc(), Consent.id.desc())
            .limit(1)
        )
        return (await db.execute(stmt)).scalar_one_or_none()

    @staticmethod
    async def get_active(db: AsyncSession, user_id: int) -> Optional[Consent]:
        stmt = (
            select(Consent)
            .where(Consent.user_id == user_id,
                   Consent.consent_withdrawn_at.is_(None))
            .order_by(Consent.created_at.desc(), Consent.id.desc())
            .limit(1)
        )
        return (await db.execute(stmt)).scalar_one_or_none()

    @staticmethod
    async def has_history(db: AsyncSession, user_id: int) -> bool:
        stmt = select(func.count(Consent.id)).where(Consent.user_id == user_id)
        return (await db.execute(stmt)).scalar_one() > 0

    @staticmethod
    async def history(db: AsyncSession, user_id: int, limit: int = 50) -> List[Consent]:
        stmt = (
            select(Consent)
            .where(Consent.user_id == user_id)
            .order_by(Consent.created_at.desc(), Consent.id.desc())
            .limit(limit)
        )
        return list((await db.execute(stmt)).scalars().all())

    @staticmethod
    async def update(db: AsyncSession, user_id: int,
                     changes: Dict[ConsentPurpose, bool],
                     request: Optional[Request] = None) -> Consent:
        """Apply `changes` on top of the open row (or all-false) as a new open row."""
        now = utcnow()
        active = await ConsentService.get_active(db, user_id)

        flags = {p.column: False for p in ConsentPurpose}
        if active is not None:
            flags = {p.column: bool(getattr(active, p.column)) for p in ConsentPurpose}
            active.consent_withdrawn_at = now
        for purpose, granted in changes.items():
            flags[purpose.column] = bool(granted)

        consent = Consent(
            user_id=user_id,
            consent_given_at=now,
            consent_version=CONSENT_VERSION,
            ip_address=client_ip(request),
            user_agent=user_agent(request),
            created_at=now,
            **flags,
        )
        db.add(consent)
        await db.flush()
        AuditService.record(
            db, AuditEvent.CONSENT_GIVEN,
            user_id=user_id, entity_type="consent", entity_id=consent.id,
            action="update" if active is not None else "create",
            metadata={p.value: flags[p.column] for p in ConsentPurpose},
            request=request,
        )
        await db.commit()
        await db.refresh(consent)
        return consent

    @staticmethod
    async def withdraw(db: AsyncSession, user_id: int,
                       request: Optional[Request] = None) -> Consent:
        now = utcnow()
        active = await ConsentService.get_active(db, user_id)
        if active is None:
            raise ApiError(
                ErrorCode.CONSENT_WITHDRAWN,
                "No active consent found to withdraw.",
                status_code=400,
            )

        active.consent_withdrawn_at = now
        tombstone = Consent(
            user_id=user_id,
            consent_given_at=active.consent_given_at,
            consent_withdrawn_at=now,
            consent_version=active.consent_version,
            ip_address=client_ip(request),
            user_agent=user_agent(request),
            created_at=now,
            **{p.column: False for p in ConsentPurpose},
        )
        db.add(tombstone)
        await db.flush()
        AuditService.record(
            db, AuditEvent.CONSENT_WITHDRAWN,
            user_id=user_id, entity_type="consent", entity_id=active.id,
            action="withdraw",
            request=request,
        )
        await db.commit()
        await db.refresh(tombstone)
        return tombstone

    @staticmethod
    async def ensure_purpose(db: AsyncSession, user_id: int,
                             purpose: ConsentPurpose,
                             message: Optional[str] = None,
                             distinguish_withdrawn: bool = True) -> Consent:
        """
        Return the open consent row if it grants `purpose`, else raise.

        With `distinguish_withdrawn`, a user who had consent and withdrew it
        gets CONSENT_WITHDRAWN instead of CONSENT_REQUIRED.
        """
        active = await ConsentService.get_active(db, user_id)
        if active is None:
            if distinguish_withdrawn and await ConsentService.has_history(db, user_id):
                raise ApiError(
                    ErrorCode.CONSENT_WITHDRAWN,
                    details={"requiredConsent": purpose.value},
                    requires_action="CONSENT",
                )
            raise consent_required_error(
                purpose.value,
                message or "No consent record found. Please provide consent before proceeding.",
            )
        if not getattr(active, purpose.column):
            raise consent_required_error(
                purpose.value, message or f"Consent not given for purpose: {purpose.value}")
        return active
