import logging
from typing import Callable, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .config import settings
from .database import get_db
from .exceptions import ApiError, ErrorCode, age_not_verified_error, age_restriction_error
from .models import User
from .services.audit_service import AuditEvent, AuditService
from .services.consent_service import ConsentPurpose, ConsentService
from .services.gates import calculate_age, is_adult
from .services.jwt_service import JWTService, security
from .services.verification import REQUIRED_ACTION, VerificationService, VerificationTier

logger = logging.getLogger(__name__)


async def require_adult(
    request: Request,
    current_user: User = Depends(JWTService.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Dependency for 18+ routes.
    Raises AGE_NOT_VERIFIED until a date of birth has been verified and
    AGE_RESTRICTION_VIOLATION for minors; the minor case is audited first.
    """
    if not current_user.is_age_verified:
        raise age_not_verified_error()

    if current_user.date_of_birth is None:
        raise age_restriction_error(reason="missing_date_of_birth")

    age = calculate_age(current_user.date_of_birth)
    if age < 18:
        AuditService.record(
            db, AuditEvent.AGE_VERIFICATION_FAILED,
            user_id=current_user.id, entity_type="user",
            entity_id=current_user.id, action="access_blocked",
            metadata={"age": age, "path": request.url.path},
            request=request,
        )
        await db.commit()
        raise age_restriction_error(age=age, minimumAge=18)

    return current_user


async def optional_age_gate(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> dict:
    """
    Age status for routes that only want to know; never blocks.
    Anonymous callers, bad tokens and unknown users all get the default status.
    """
    status = {"isVerified": False, "isAdult": False, "requiresVerification": True}
    if credentials is None or not credentials.credentials:
        return status

    try:
        payload = JWTService.verify_token(credentials.credentials)
        user = await db.get(User, JWTService.user_id_from_payload(payload))
    except (ApiError, SQLAlchemyError) as e:
        logger.warning(f"Optional age gate could not resolve the caller: {e}")
        return status

    if user is None:
        return status

    try:
        status["isVerified"] = bool(user.is_age_verified)
        status["isAdult"] = bool(user.date_of_birth) and is_adult(user.date_of_birth)
        status["requiresVerification"] = not user.is_age_verified
    except (TypeError, ValueError) as e:
        logger.warning(f"Optional age gate failed for user {user.id}: {e}")
    return status


def require_tier(tier: VerificationTier) -> Callable:
    async def dependency(
        current_user: User = Depends(JWTService.get_current_user),
    ) -> User:
        held = VerificationService.current_tier(current_user)
        if held < tier:
            raise ApiError(
                ErrorCode.VERIFICATION_PREREQUISITE_MISSING,
                f"{tier.label.capitalize()} verification is required before this step.",
                details={"currentTier": held.label, "requiredTier": tier.label},
                requires_action=REQUIRED_ACTION.get(tier),
            )
        return current_user

    return dependency


def require_consent(purpose: ConsentPurpose, message: str = None) -> Callable:
    async def dependency(
        current_user: User = Depends(JWTService.get_current_user),
        db: AsyncSession = Depends(get_db),
    ) -> User:
        await ConsentService.ensure_purpose(db, current_user.id, purpose, message)
        return current_user

    return dependency


async def require_billing_token(request: Request) -> None:
    """Premium activation is a server-to-server call from the billing backend."""
    # Open in dev/debug mode, like /metrics
    if settings.debug:
        return
    token = request.headers.get("X-Billing-Token")
    if not settings.billing_token or token != settings.billing_token:
        raise ApiError(ErrorCode.UNAUTHORIZED, "Billing token required", status_code=403)
