import json
import logging
from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.ext.asyncio import AsyncSession
from ..database import get_db
from ..dependencies import require_tier
from ..exceptions import ApiError, ErrorCode
from ..models import User
from ..schemas import VideoSelfieRequest
from ..services.audit_service import AuditEvent, AuditService
from ..services.encryption_service import KMSEncryptionService, get_encryption_service
from ..services.jwt_service import JWTService
from ..services.verification import Evidence, VerificationService, VerificationTier
from ..services.video_selfie_service import (
    LivenessDetector,
    capture_instructions,
    get_liveness_detector,
    parse_video_data,
)
from ..utils import ensure_aware, utcnow

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/auth/video-selfie",
    tags=["video selfie"],
    responses={400: {"description": "Invalid video or failed liveness"}},
)


@router.get("/instructions")
async def video_selfie_instructions():
    """Capture instructions (public)."""
    return {"instructions": capture_instructions()}


@router.post("/verify")
async def verify_video_selfie(
    payload: VideoSelfieRequest,
    request: Request,
    current_user: User = Depends(require_tier(VerificationTier.SILVER)),
    db: AsyncSession = Depends(get_db),
    detector: LivenessDetector = Depends(get_liveness_detector),
    encryption: KMSEncryptionService = Depends(get_encryption_service),
):
    """
    Submit a base64 video selfie for tier 3 (GOLD) verification.

    **Body:** `videoData` as raw base64 or a `data:video/...;base64,` URL,
    plus optional capture `metadata`.

    **Rules:**
    - Requires DigiLocker verification (SILVER)
    - `video/mp4`, `video/webm` or `video/quicktime`, at most 10 MB decoded
    - Only the encrypted liveness result is stored, never the video
    """
    upload = parse_video_data(payload.video_data)
    result = await detector.detect(upload)

    if not result.is_live:
        AuditService.record(
            db, AuditEvent.VIDEO_SELFIE_FAILED,
            user_id=current_user.id, entity_type="user", entity_id=current_user.id,
            action="tier_3_verification_failed",
            metadata={"confidence": result.confidence, "checks": result.checks},
            request=request,
        )
        await db.commit()
        raise ApiError(
            ErrorCode.LIVENESS_DETECTION_FAILED,
            details={
                "confidence": result.confidence,
                "failedChecks": result.failed_checks,
            },
        )

    verification_data = json.dumps({
        "isLive": result.is_live,
        "confidence": result.confidence,
        "verifiedAt": utcnow().isoformat(),
        "checks": result.checks,
    })
    encrypted = await run_in_threadpool(encryption.encrypt, verification_data)

    current_user.video_selfie_data = encrypted.to_json()
    tier = VerificationService.apply_evidence(current_user, Evidence.VIDEO_LIVENESS)
    metadata = {
        "verificationLevel": int(tier),
        "confidence": result.confidence,
        "dataEncrypted": True,
        "encryptionMethod": "AES-256-GCM",
        "kmsUsed": True,
    }
    if payload.metadata is not None:
        metadata["capture"] = payload.metadata.model_dump(by_alias=True, exclude_none=True)
    AuditService.record(
        db, AuditEvent.VIDEO_SELFIE_VERIFIED,
        user_id=current_user.id, entity_type="user", entity_id=current_user.id,
        action="tier_3_verification_complete",
        metadata=metadata,
        request=request,
    )
    await db.commit()
    logger.info(f"Video selfie verified for user {current_user.id}")

    return {
        "message": "Video selfie verification successful",
        "user": {
            "id": current_user.id,
            "verificationLevel": current_user.verification_level,
            "isPhoneVerified": current_user.is_phone_verified,
            "digilockerVerifiedAt": ensure_aware(current_user.digilocker_verified_at).isoformat(),
            "videoSelfieVerifiedAt": ensure_aware(current_user.video_selfie_verified_at).isoformat(),
        },
        "tokens": {"accessToken": JWTService.create_token(current_user)},
        "liveness": {"confidence": result.confidence},
    }


@router.get("/status")
async def video_selfie_status(current_user: User = Depends(JWTService.get_current_user)):
    verified_at = ensure_aware(current_user.video_selfie_verified_at)
    return {
        "verificationLevel": current_user.verification_level,
        "tier1Complete": bool(current_user.is_phone_verified),
        "tier2Complete": current_user.digilocker_verified_at is not None,
        "tier3Complete": verified_at is not None,
        "fullyVerified": current_user.verification_level >= VerificationTier.GOLD,
        "videoSelfieVerifiedAt": verified_at.isoformat() if verified_at else None,
    }
