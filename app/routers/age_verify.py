from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from ..database import get_db
from ..exceptions import ApiError, ErrorCode
from ..models import User
from ..schemas import AgeVerifyRequest
from ..services.audit_service import AuditEvent, AuditService
from ..services.gates import MINIMUM_AGE, calculate_age, parse_date_of_birth
from ..services.jwt_service import JWTService
from ..utils import ensure_aware, utcnow

router = APIRouter(
    prefix="/auth/age-verify",
    tags=["age verification"],
    responses={403: {"description": "Under 18"}},
)


@router.post("")
async def verify_age(
    payload: AgeVerifyRequest,
    request: Request,
    current_user: User = Depends(JWTService.get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Submit date of birth (ISO 8601, `YYYY-MM-DD`).

    Users under 18 are rejected with `AGE_RESTRICTION_VIOLATION` and the
    attempt is written to the audit log. The date of birth is only stored
    for adults.
    """
    dob = parse_date_of_birth(payload.date_of_birth)
    age = calculate_age(dob)

    if age < MINIMUM_AGE:
        AuditService.record(
            db, AuditEvent.AGE_VERIFICATION_FAILED,
            user_id=current_user.id, entity_type="user",
            entity_id=current_user.id,
            action="underage_registration_attempt",
            metadata={"providedAge": age, "requiredAge": MINIMUM_AGE},
            request=request,
        )
        await db.commit()
        raise ApiError(
            ErrorCode.AGE_RESTRICTION_VIOLATION,
            "You must be 18 years or older to use this service.",
            details={
                "providedAge": age,
                "requiredAge": MINIMUM_AGE,
                "yearsUntilEligible": MINIMUM_AGE - age,
            },
            requires_action="ACCOUNT_RESTRICTION",
        )

    now = utcnow()
    current_user.date_of_birth = dob
    current_user.is_age_verified = True
    current_user.age_verified_at = now
    AuditService.record(
        db, AuditEvent.AGE_VERIFIED,
        user_id=current_user.id, entity_type="user", entity_id=current_user.id,
        action="age_verification_complete",
        metadata={"age": age, "isAdult": True},
        request=request,
    )
    await db.commit()

    return {
        "message": "Age verified successfully",
        "isAgeVerified": True,
        "isAdult": True,
        "ageVerifiedAt": now.isoformat(),
        "accessToken": JWTService.create_token(current_user),
        "dpdpNotice": {
            "notice": "Your date of birth is stored securely and used only for age verification.",
            "rights": "You can request data deletion as per DPDP Act 2023.",
        },
    }


@router.get("/status")
async def age_verify_status(current_user: User = Depends(JWTService.get_current_user)):
    """Age verification state; only the birth year is disclosed."""
    verified_at = ensure_aware(current_user.age_verified_at)
    return {
        "isAgeVerified": bool(current_user.is_age_verified),
        "ageVerifiedAt": verified_at.isoformat() if verified_at else None,
        "requiresVerification": not current_user.is_age_verified,
        "dobYear": current_user.date_of_birth.year if current_user.date_of_birth else None,
    }
