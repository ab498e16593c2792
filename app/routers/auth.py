from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from ..config import settings
from ..database import get_db
from ..models import User
from ..schemas import (
    AuthResponse,
    PhoneOTPSend,
    PhoneOTPSendResponse,
    PhoneOTPVerify,
    RefreshRequest,
    TokenPair,
    UserResponse,
)
from ..services.audit_service import AuditEvent, AuditService
from ..services.jwt_service import JWTService
from ..services.otp_service import OTPService
from ..services.verification import VerificationService

router = APIRouter(
    prefix="/auth",
    tags=["authentication"],
    responses={
        400: {"description": "Invalid phone or OTP"},
        401: {"description": "Not authenticated"},
        429: {"description": "Rate limit exceeded"},
    }
)


@router.post("/phone-otp/send", response_model=PhoneOTPSendResponse)
async def send_phone_otp(
    payload: PhoneOTPSend,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """
    Send a 6-digit OTP to an Indian mobile number.

    **Rules:**
    - Phone must be `+91` followed by 10 digits starting with 6-9
    - At most 5 OTP requests per phone per hour (`RATE_LIMIT_EXCEEDED`)
    - A new OTP can be requested 30 seconds after the previous one (`OTP_RESEND_COOLDOWN`)
    - Codes expire after 5 minutes

    **Development Mode:**
    - The OTP code is returned in the response
    """
    otp, cooldown = await OTPService.send_otp(db, payload.phone, request)
    return PhoneOTPSendResponse(
        message="OTP sent successfully",
        phone=payload.phone,
        expires_in_minutes=settings.otp_expiry_minutes,
        resend_cooldown_seconds=cooldown,
        otp=otp.code if settings.debug else None,
    )


@router.post("/phone-otp/verify", response_model=AuthResponse)
async def verify_phone_otp(
    payload: PhoneOTPVerify,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """
    Verify the OTP and sign the user in.

    Creates the account on first login. A verified phone is tier 1
    (BRONZE). Each wrong code counts against the 5-attempt limit.

    **Response:**
    - `user`: profile and verification state
    - `tokens.accessToken`: 15-minute JWT with verification claims
    - `tokens.refreshToken`: 7-day refresh token
    """
    user, created = await OTPService.verify_otp(db, payload.phone, payload.otp_code, request)
    access_token, refresh_token = await JWTService.issue_session(db, user, request)
    return AuthResponse(
        message="Phone verified successfully",
        is_new_user=created,
        user=UserResponse.model_validate(user),
        tokens=TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=settings.jwt_expiry_minutes * 60,
        ),
    )


@router.post("/refresh", response_model=TokenPair)
async def refresh_token(
    payload: RefreshRequest,
    db: AsyncSession = Depends(get_db),
):
    """Exchange a refresh token for a new access token."""
    access_token, _ = await JWTService.refresh_access_token(db, payload.refresh_token)
    return TokenPair(
        access_token=access_token,
        expires_in=settings.jwt_expiry_minutes * 60,
    )


@router.post("/logout")
async def logout(
    request: Request,
    current_user: User = Depends(JWTService.get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Revoke every refresh token of the current user."""
    AuditService.record(
        db, AuditEvent.LOGOUT, user_id=current_user.id,
        entity_type="user", entity_id=current_user.id,
        action="logout", request=request,
    )
    revoked = await JWTService.revoke_sessions(db, current_user.id)
    return {"message": "Logged out successfully", "sessionsRevoked": revoked}


@router.get("/me")
async def get_me(current_user: User = Depends(JWTService.get_current_user)):
    """
    Current user with verification summary.

    **Authentication Required:** Yes
    """
    return {
        "user": UserResponse.model_validate(current_user).model_dump(by_alias=True, mode="json"),
        "verification": VerificationService.summary(current_user),
    }
