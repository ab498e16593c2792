"""
Verification tiers.

    NONE -> BRONZE (phone OTP) -> SILVER (DigiLocker) -> GOLD (video selfie)

Tiers are strictly ordered: evidence for a tier is only accepted once the
tier below it is held, and a user's stored level never goes down.
"""
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum, IntEnum
from typing import Optional

from ..exceptions import ApiError, ErrorCode
from ..models import User
from ..utils import ensure_aware, utcnow


class VerificationTier(IntEnum):
    NONE = 0
    BRONZE = 1
    SILVER = 2
    GOLD = 3

    @property
    def label(self) -> str:
        return self.name.lower()


class Evidence(str, Enum):
    PHONE = "phone"
    GOVERNMENT_ID = "government_id"
    VIDEO_LIVENESS = "video_liveness"


EVIDENCE_TIER = {
    Evidence.PHONE: VerificationTier.BRONZE,
    Evidence.GOVERNMENT_ID: VerificationTier.SILVER,
    Evidence.VIDEO_LIVENESS: VerificationTier.GOLD,
}

# What the client should do next when a prerequisite is missing
REQUIRED_ACTION = {
    VerificationTier.BRONZE: "PHONE_VERIFICATION",
    VerificationTier.SILVER: "DIGILOCKER_VERIFICATION",
}


@dataclass(frozen=True)
class EvidenceFlags:
    phone: bool = False
    government_id: bool = False
    video_liveness: bool = False

    @classmethod
    def from_user(cls, user: User) -> "EvidenceFlags":
        return cls(
            phone=bool(user.is_phone_verified),
            government_id=user.digilocker_verified_at is not None,
            video_liveness=user.video_selfie_verified_at is not None,
        )

    def with_evidence(self, evidence: Evidence) -> "EvidenceFlags":
        return replace(self, **{evidence.value: True})


def derive_tier(flags: EvidenceFlags) -> VerificationTier:
    """Highest tier whose whole chain of evidence is present."""
    if not flags.phone:
        return VerificationTier.NONE
    if not flags.government_id:
        return VerificationTier.BRONZE
    if not flags.video_liveness:
        return VerificationTier.SILVER
    return VerificationTier.GOLD


def check_prerequisites(flags: EvidenceFlags, evidence: Evidence) -> None:
    required = VerificationTier(EVIDENCE_TIER[evidence] - 1)
    held = derive_tier(flags)
    if held < required:
        raise ApiError(
            ErrorCode.VERIFICATION_PREREQUISITE_MISSING,
            f"{required.label.capitalize()} verification is required before this step.",
            details={
                "currentTier": held.label,
                "requiredTier": required.label,
            },
            requires_action=REQUIRED_ACTION.get(required),
        )


def attempt_transition(current_level: int, evidence: Evidence,
                       flags: EvidenceFlags) -> VerificationTier:
    """
    Tier after accepting `evidence`.

    Raises VERIFICATION_PREREQUISITE_MISSING if the tier below the one the
    evidence grants is not yet held. The result is never lower than
    `current_level`.
    """
    check_prerequisites(flags, evidence)
    derived = derive_tier(flags.with_evidence(evidence))
    return VerificationTier(max(int(current_level or 0), int(derived)))


class VerificationService:
    @staticmethod
    def apply_evidence(user: User, evidence: Evidence,
                       now: Optional[datetime] = None) -> VerificationTier:
        """Record `evidence` on the user and raise its level. Caller commits."""
        now = now or utcnow()
        tier = attempt_transition(
            user.verification_level, evidence, EvidenceFlags.from_user(user))

        if evidence is Evidence.PHONE:
            user.is_phone_verified = True
            user.phone_verified_at = now
        elif evidence is Evidence.GOVERNMENT_ID:
            user.digilocker_verified_at = now
        elif evidence is Evidence.VIDEO_LIVENESS:
            user.video_selfie_verified_at = now

        user.verification_level = int(tier)
        return tier

    @staticmethod
    def current_tier(user: User) -> VerificationTier:
        return VerificationTier(int(user.verification_level or 0))

    @staticmethod
    def summary(user: User) -> dict:
        def _iso(value):
            value = ensure_aware(value)
            return value.isoformat() if value else None

        tier = VerificationService.current_tier(user)
        return {
            "verificationLevel": int(tier),
            "verificationTier": tier.label,
            "isPhoneVerified": bool(user.is_phone_verified),
            "phoneVerifiedAt": _iso(user.phone_verified_at),
            "isAgeVerified": bool(user.is_age_verified),
            "digilockerVerifiedAt": _iso(user.digilocker_verified_at),
            "videoSelfieVerifiedAt": _iso(user.video_selfie_verified_at),
        }
