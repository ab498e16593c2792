"""Unit tests for verification tier transitions."""

import itertools
from datetime import datetime, timezone

import pytest
from app.exceptions import ApiError, ErrorCode
from app.models import User
from app.services.verification import (
    Evidence,
    EvidenceFlags,
    VerificationService,
    VerificationTier,
    attempt_transition,
    derive_tier,
)


class TestDeriveTier:
    def test_prefix_chain(self):
        assert derive_tier(EvidenceFlags()) == VerificationTier.NONE
        assert derive_tier(EvidenceFlags(phone=True)) == VerificationTier.BRONZE
        assert derive_tier(EvidenceFlags(phone=True, government_id=True)) == VerificationTier.SILVER
        assert derive_tier(EvidenceFlags(True, True, True)) == VerificationTier.GOLD

    def test_gap_stops_the_chain(self):
        """Test that evidence above a missing step does not count."""
        assert derive_tier(EvidenceFlags(phone=True, video_liveness=True)) == VerificationTier.BRONZE
        assert derive_tier(EvidenceFlags(government_id=True)) == VerificationTier.NONE


class TestAttemptTransition:
    def test_phone_from_nothing(self):
        assert attempt_transition(0, Evidence.PHONE, EvidenceFlags()) == VerificationTier.BRONZE

    def test_government_id_needs_bronze(self):
        with pytest.raises(ApiError) as exc:
            attempt_transition(0, Evidence.GOVERNMENT_ID, EvidenceFlags())
        assert exc.value.code == ErrorCode.VERIFICATION_PREREQUISITE_MISSING
        assert exc.value.details == {"currentTier": "none", "requiredTier": "bronze"}
        assert exc.value.requires_action == "PHONE_VERIFICATION"

    def test_video_needs_silver(self):
        with pytest.raises(ApiError) as exc:
            attempt_transition(1, Evidence.VIDEO_LIVENESS, EvidenceFlags(phone=True))
        assert exc.value.details["requiredTier"] == "silver"
        assert exc.value.requires_action == "DIGILOCKER_VERIFICATION"

    def test_level_never_goes_down(self):
        """Test that re-submitting lower evidence keeps the higher level."""
        flags = EvidenceFlags(True, True, True)
        assert attempt_transition(3, Evidence.PHONE, flags) == VerificationTier.GOLD

    def test_every_accepted_sequence_is_monotonic(self):
        """Test that any order of evidence only ever raises the level."""
        for sequence in itertools.permutations(list(Evidence)):
            flags, level = EvidenceFlags(), 0
            for evidence in sequence:
                try:
                    new_level = attempt_transition(level, evidence, flags)
                except ApiError:
                    continue
                assert new_level >= level
                flags = flags.with_evidence(evidence)
                level = new_level
                assert level == derive_tier(flags)


class TestVerificationService:
    def test_apply_evidence_sets_timestamps(self):
        now = datetime(2024, 6, 15, tzinfo=timezone.utc)
        user = User(phone="+919876543210", is_phone_verified=False, verification_level=0)

        assert VerificationService.apply_evidence(user, Evidence.PHONE, now) == VerificationTier.BRONZE
        assert user.is_phone_verified is True
        assert user.phone_verified_at == now

        VerificationService.apply_evidence(user, Evidence.GOVERNMENT_ID, now)
        VerificationService.apply_evidence(user, Evidence.VIDEO_LIVENESS, now)
        assert user.verification_level == 3
        assert user.video_selfie_verified_at == now

    def test_apply_evidence_out_of_order_changes_nothing(self):
        user = User(phone="+919876543210", is_phone_verified=True, verification_level=1)

        with pytest.raises(ApiError):
            VerificationService.apply_evidence(user, Evidence.VIDEO_LIVENESS)
        assert user.video_selfie_verified_at is None
        assert user.verification_level == 1

    def test_summary(self):
        user = User(phone="+919876543210", is_phone_verified=True,
                    is_age_verified=False, verification_level=1)
        summary = VerificationService.summary(user)
        assert summary["verificationLevel"] == 1
        assert summary["verificationTier"] == "bronze"
        assert summary["digilockerVerifiedAt"] is None
