import hmac
import logging
import secrets
from datetime import timedelta
from typing import Dict, Optional, Tuple

from fastapi import Request
from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..exceptions import ApiError, ErrorCode, invalid_phone_format_error
from ..models import OTPRequest, User
from ..utils import ensure_aware, mask_phone, utcnow, validate_indian_phone
from .audit_service import AuditEvent, AuditService
from .countdown import STORAGE_PREFIX, CountdownTimer
from .verification import Evidence, VerificationService, VerificationTier

logger = logging.getLogger(__name__)

# Resend cooldown timers, one per phone in cooldown, kept in-process
_resend_timers: Dict[str, str] = {}
_RESEND_KEY = "otp-resend:"


def _resend_timer(phone: str) -> CountdownTimer:
    return CountdownTimer(
        settings.otp_resend_cooldown_seconds,
        f"{_RESEND_KEY}{phone}",
        store=_resend_timers,
        auto_start=False,
    )


def _prune_resend_timers() -> None:
    """Forget every cooldown that has run out; only running timers are kept."""
    prefix = f"{STORAGE_PREFIX}{_RESEND_KEY}"
    for key in list(_resend_timers):
        phone = key[len(prefix):] if key.startswith(prefix) else None
        if phone is None or not _resend_timer(phone).is_active:
            _resend_timers.pop(key, None)


class OTPService:
    @staticmethod
    def generate_otp() -> str:
        """Generate a random 6-digit OTP code"""
        return f"{secrets.randbelow(10**6):06d}"

    @staticmethod
    def _check_phone(phone: str) -> None:
        if not validate_indian_phone(phone):
            raise invalid_phone_format_error(received=phone)

    @staticmethod
    async def _latest_open(db: AsyncSession, phone: str) -> Optional[OTPRequest]:
        stmt = (
            select(OTPRequest)
            .where(OTPRequest.phone == phone, OTPRequest.is_used == False)
            .order_by(OTPRequest.created_at.desc(), OTPRequest.id.desc())
            .limit(1)
        )
        return (await db.execute(stmt)).scalar_one_or_none()

    @staticmethod
    async def send_otp(db: AsyncSession, phone: str,
                       request: Optional[Request] = None) -> Tuple[OTPRequest, int]:
        """
        Issue a new OTP for `phone`.

        Returns the OTP row and the resend cooldown in seconds. Rejected
        while the previous code's cooldown is running, after the hourly cap,
        or while an unexpired code has used up all of its attempts.
        """
        OTPService._check_phone(phone)
        now = utcnow()

        if settings.otp_rate_limit_enabled:
            _prune_resend_timers()
            timer = _resend_timer(phone)
            if timer.is_active:
                raise ApiError(
                    ErrorCode.OTP_RESEND_COOLDOWN,
                    f"Please wait {timer.formatted} before requesting another OTP.",
                    details={"retryAfterSeconds": timer.remaining},
                )

            window_start = now - timedelta(hours=1)
            count_stmt = select(func.count(OTPRequest.id)).where(
                OTPRequest.phone == phone,
                OTPRequest.created_at >= window_start,
            )
            recent = (await db.execute(count_stmt)).scalar_one()
            if recent >= settings.otp_requests_per_hour:
                raise ApiError(
                    ErrorCode.RATE_LIMIT_EXCEEDED,
                    "Too many OTP requests. Please try again after an hour.",
                    details={"limit": settings.otp_requests_per_hour},
                )

        existing = await OTPService._latest_open(db, phone)
        if (existing is not None
                and ensure_aware(existing.expires_at) > now
                and existing.attempt_count >= existing.max_attempts):
            raise ApiError(ErrorCode.OTP_MAX_ATTEMPTS_EXCEEDED)

        # Only the newest code can be redeemed
        await db.execute(
            update(OTPRequest)
            .where(OTPRequest.phone == phone, OTPRequest.is_used == False)
            .values(is_used=True, used_at=now)
            .execution_options(synchronize_session=False)
        )

        otp = OTPRequest(
            phone=phone,
            code=OTPService.generate_otp(),
            max_attempts=settings.otp_max_attempts,
            expires_at=now + timedelta(minutes=settings.otp_expiry_minutes),
            created_at=now,
        )
        db.add(otp)
        AuditService.record(
            db, AuditEvent.OTP_SENT,
            entity_type="otp_request",
            action="send",
            metadata={"phone": mask_phone(phone)},
            request=request,
        )
        await db.commit()
        await db.refresh(otp)

        # SMS delivery is out of process; the send is logged only
        logger.info(f"OTP issued for {mask_phone(phone)}, expires {otp.expires_at}")

        cooldown = 0
        if settings.otp_rate_limit_enabled:
            timer = _resend_timer(phone)
            timer.reset()
            timer.start()
            cooldown = timer.remaining
        return otp, cooldown

    @staticmethod
    async def verify_otp(db: AsyncSession, phone: str, code: str,
                         request: Optional[Request] = None) -> Tuple[User, bool]:
        """
        Redeem `code` for `phone`.

        Returns the user (created on first login) and whether it was newly
        created. A correct code raises the user to at least BRONZE.
        """
        OTPService._check_phone(phone)
        now = utcnow()

        otp = await OTPService._latest_open(db, phone)
        if otp is None or ensure_aware(otp.expires_at) <= now:
            raise ApiError(ErrorCode.OTP_EXPIRED)

        if otp.attempt_count >= otp.max_attempts:
            raise ApiError(ErrorCode.OTP_MAX_ATTEMPTS_EXCEEDED)

        if not hmac.compare_digest(otp.code, code or ""):
            otp.attempt_count += 1
            remaining = max(0, otp.max_attempts - otp.attempt_count)
            AuditService.record(
                db, AuditEvent.OTP_VERIFICATION_FAILED,
                entity_type="otp_request",
                entity_id=otp.id,
                action="verify",
                metadata={"phone": mask_phone(phone),
                          "attemptsRemaining": remaining},
                request=request,
            )
            await db.commit()
            raise ApiError(
                ErrorCode.OTP_VERIFICATION_FAILED,
                details={"attemptsRemaining": remaining},
            )

        otp.is_used = True
        otp.used_at = now

        stmt = select(User).where(User.phone == phone)
        user = (await db.execute(stmt)).scalar_one_or_none()
        created = user is None
        if created:
            user = User(phone=phone, verification_level=int(VerificationTier.NONE))
            db.add(user)
            await db.flush()
            AuditService.record(
                db, AuditEvent.USER_CREATED,
                user_id=user.id, entity_type="user", entity_id=user.id,
                action="create", request=request,
            )

        tier = VerificationService.apply_evidence(user, Evidence.PHONE, now)
        AuditService.record(
            db, AuditEvent.PHONE_VERIFIED,
            user_id=user.id, entity_type="user", entity_id=user.id,
            action="verify",
            metadata={"phone": mask_phone(phone), "verificationLevel": int(tier)},
            request=request,
        )
        await db.commit()
        await db.refresh(user)

        _resend_timers.pop(_resend_timer(phone).storage_key, None)
        logger.info(f"Phone verified for user {user.id} ({mask_phone(phone)})")
        return user, created
