import logging
from datetime import timedelta
from typing import Optional
from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.ext.asyncio import AsyncSession
from ..config import settings
from ..database import get_db
from ..dependencies import require_tier
from ..exceptions import ApiError, ErrorCode, digilocker_verification_error
from ..models import DigiLockerState, User
from ..services.audit_service import AuditEvent, AuditService
from ..services.digilocker_service import DigiLockerClient, generate_state, get_digilocker_client
from ..services.encryption_service import KMSEncryptionService, get_encryption_service
from ..services.jwt_service import JWTService
from ..services.verification import (
    Evidence,
    EvidenceFlags,
    VerificationService,
    VerificationTier,
    check_prerequisites,
)
from ..utils import ensure_aware, utcnow

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/auth/digilocker",
    tags=["digilocker"],
    responses={
        403: {"description": "State mismatch or missing prerequisite"},
        502: {"description": "DigiLocker unavailable"},
    }
)


@router.get("/init")
async def init_digilocker(
    request: Request,
    current_user: User = Depends(require_tier(VerificationTier.BRONZE)),
    db: AsyncSession = Depends(get_db),
    client: DigiLockerClient = Depends(get_digilocker_client),
):
    """
    Start tier 2 verification.

    Requires a verified phone (BRONZE). Returns the DigiLocker authorize URL
    and a CSRF `state` that is valid for 15 minutes.
    """
    state = generate_state()
    ttl = settings.digilocker_state_ttl_minutes
    db.add(DigiLockerState(
        state=state,
        user_id=current_user.id,
        expires_at=utcnow() + timedelta(minutes=ttl),
    ))
    AuditService.record(
        db, AuditEvent.DIGILOCKER_INITIATED,
        user_id=current_user.id, entity_type="user", entity_id=current_user.id,
        action="authorize_redirect", request=request,
    )
    await db.commit()

    return {
        "message": "DigiLocker authorization initiated",
        "authorizationUrl": client.authorization_url(state),
        "state": state,
        "expiresInSeconds": ttl * 60,
    }


@router.get("/callback")
async def digilocker_callback(
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    client: DigiLockerClient = Depends(get_digilocker_client),
    encryption: KMSEncryptionService = Depends(get_encryption_service),
):
    """
    OAuth redirect target (public).

    Validates `state`, exchanges `code` for an access token, stores the
    token KMS-encrypted and raises the user to SILVER. Neither the token nor
    any DigiLocker profile data is returned or stored in clear.
    """
    if error:
        raise ApiError(
            ErrorCode.DIGILOCKER_VERIFICATION_FAILED,
            "DigiLocker authorization was denied or cancelled.",
            details={"digilockerError": error},
        )
    if not code:
        raise ApiError(
            ErrorCode.DIGILOCKER_VERIFICATION_FAILED,
            "Authorization code not received from DigiLocker.",
        )
    if not state:
        raise ApiError(
            ErrorCode.DIGILOCKER_STATE_MISMATCH,
            "State parameter missing. Possible CSRF attack.",
        )

    pending = await db.get(DigiLockerState, state)
    if pending is None or ensure_aware(pending.expires_at) <= utcnow():
        if pending is not None:
            await db.delete(pending)
            await db.commit()
        raise ApiError(ErrorCode.DIGILOCKER_STATE_MISMATCH)

    user = await db.get(User, pending.user_id)
    if user is None:
        raise ApiError(ErrorCode.USER_NOT_FOUND)
    check_prerequisites(EvidenceFlags.from_user(user), Evidence.GOVERNMENT_ID)

    token_response = await client.exchange_code(code)
    access_token = token_response["access_token"]

    # Proves the token works; nothing from the profile is kept
    profile = await client.fetch_profile(access_token)
    if not profile:
        raise digilocker_verification_error("empty_profile")

    encrypted = await run_in_threadpool(encryption.encrypt, access_token)

    user.digilocker_token = encrypted.ciphertext
    user.digilocker_token_iv = encrypted.iv
    user.digilocker_token_tag = encrypted.auth_tag
    user.digilocker_token_key = encrypted.encrypted_key
    tier = VerificationService.apply_evidence(user, Evidence.GOVERNMENT_ID)

    await db.delete(pending)
    AuditService.record(
        db, AuditEvent.DIGILOCKER_VERIFIED,
        user_id=user.id, entity_type="user", entity_id=user.id,
        action="tier_2_verification_complete",
        metadata={
            "verificationLevel": int(tier),
            "tokenEncrypted": True,
            "encryptionMethod": "AES-256-GCM",
            "kmsUsed": True,
        },
        request=request,
    )
    await db.commit()
    logger.info(f"DigiLocker verification complete for user {user.id}")

    return {
        "message": "DigiLocker verification successful",
        "user": {
            "id": user.id,
            "verificationLevel": user.verification_level,
            "isPhoneVerified": user.is_phone_verified,
            "digilockerVerifiedAt": ensure_aware(user.digilocker_verified_at).isoformat(),
        },
        "tokens": {"accessToken": JWTService.create_token(user)},
    }


@router.get("/status")
async def digilocker_status(current_user: User = Depends(JWTService.get_current_user)):
    verified_at = ensure_aware(current_user.digilocker_verified_at)
    return {
        "isVerified": verified_at is not None,
        "verifiedAt": verified_at.isoformat() if verified_at else None,
        "verificationLevel": current_user.verification_level,
        "tier2Complete": current_user.verification_level >= VerificationTier.SILVER,
    }


@router.post("/refresh")
async def refresh_digilocker(current_user: User = Depends(JWTService.get_current_user)):
    """
    DigiLocker refresh tokens are not kept, so an expired token always means
    re-authorizing through `/auth/digilocker/init`.
    """
    if not current_user.digilocker_token:
        raise ApiError(
            ErrorCode.DIGILOCKER_TOKEN_EXPIRED,
            "No DigiLocker token found. Please re-authorize.",
            status_code=404,
        )
    raise ApiError(ErrorCode.DIGILOCKER_TOKEN_EXPIRED)
