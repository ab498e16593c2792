from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from ..database import get_db
from ..exceptions import ApiError, ErrorCode
from ..models import User
from ..schemas import ConsentUpdate, VerifyPurposeRequest
from ..services.consent_service import (
    ConsentPurpose,
    ConsentService,
    parse_purpose,
    serialize_consent,
)
from ..services.jwt_service import JWTService
from ..utils import ensure_aware

router = APIRouter(
    prefix="/consent",
    tags=["consent"],
    responses={403: {"description": "Consent required"}},
)


@router.get("")
async def get_consent(
    current_user: User = Depends(JWTService.get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Current consent state.

    Reflects the latest row: after a withdrawal this is the closed record
    with `isActive: false`.
    """
    latest = await ConsentService.get_latest(db, current_user.id)
    return {
        "consent": serialize_consent(latest) if latest else None,
        "dpdpCompliance": {
            "notice": "As per DPDP Act 2023, you have the right to withdraw consent at any time.",
            "purposes": [p.value for p in ConsentPurpose],
        },
    }


@router.post("")
async def update_consent(
    payload: ConsentUpdate,
    request: Request,
    current_user: User = Depends(JWTService.get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Grant or revoke individual purposes.

    Omitted purposes keep their current value. Every update is stored as a
    new consent record; earlier records are kept for the audit trail.
    """
    changes = {
        ConsentPurpose.MATCHING: payload.purpose_matching,
        ConsentPurpose.MARKETING: payload.purpose_marketing,
        ConsentPurpose.ANALYTICS: payload.purpose_analytics,
        ConsentPurpose.THIRD_PARTY: payload.purpose_third_party,
    }
    changes = {purpose: value for purpose, value in changes.items() if value is not None}
    if not changes:
        raise ApiError(ErrorCode.INVALID_INPUT, "At least one consent purpose must be provided.")

    consent = await ConsentService.update(db, current_user.id, changes, request)
    return {
        "message": "Consent updated successfully",
        "consent": serialize_consent(consent),
        "dpdpNotice": {
            "withdrawalInfo": "You can withdraw consent at any time via /consent/withdraw",
            "dataPrincipalRights": "As per DPDP Act 2023, you have rights over your personal data.",
        },
    }


@router.post("/withdraw")
async def withdraw_consent(
    request: Request,
    current_user: User = Depends(JWTService.get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Withdraw all consent. Processing that needs consent stops immediately."""
    record = await ConsentService.withdraw(db, current_user.id, request)
    return {
        "message": "Consent withdrawn successfully",
        "withdrawnAt": ensure_aware(record.consent_withdrawn_at).isoformat(),
        "dpdpNotice": {
            "effect": "Data processing for marketing and third-party purposes will stop.",
            "dataRetention": "Some data may be retained as required by law.",
            "grievanceOfficer": "Contact grievance.officer@bandhan.ai for queries.",
        },
    }


@router.get("/history")
async def consent_history(
    current_user: User = Depends(JWTService.get_current_user),
    db: AsyncSession = Depends(get_db),
):
    history = await ConsentService.history(db, current_user.id)
    return {
        "history": [serialize_consent(c) for c in history],
        "totalRecords": len(history),
    }


@router.post("/verify-purpose")
async def verify_purpose(
    payload: VerifyPurposeRequest,
    current_user: User = Depends(JWTService.get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Check consent for one purpose before processing data.

    Any missing consent, including a withdrawn one, is reported as
    `CONSENT_REQUIRED`.
    """
    purpose = parse_purpose(payload.purpose)
    consent = await ConsentService.ensure_purpose(
        db, current_user.id, purpose, distinguish_withdrawn=False)
    return {
        "hasConsent": True,
        "purpose": purpose.value,
        "consentGivenAt": ensure_aware(consent.consent_given_at).isoformat(),
    }
