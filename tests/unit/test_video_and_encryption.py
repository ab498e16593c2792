"""Unit tests for video intake, liveness and envelope encryption."""

import base64

import pytest
from botocore.exceptions import ClientError
from app.exceptions import ApiError, ErrorCode
from app.services.encryption_service import EncryptedPayload, KMSEncryptionService
from app.services.video_selfie_service import (
    LivenessDetector,
    VideoUpload,
    decoded_size,
    parse_video_data,
)


VIDEO_B64 = base64.b64encode(b"\x00" * 3000).decode()


class TestParseVideoData:
    def test_raw_base64_defaults_to_mp4(self):
        upload = parse_video_data(VIDEO_B64)
        assert upload.mime_type == "video/mp4"
        assert upload.size_bytes == 3000

    def test_data_url(self):
        upload = parse_video_data(f"data:video/webm;base64,{VIDEO_B64}")
        assert upload.mime_type == "video/webm"
        assert upload.base64_data == VIDEO_B64

    def test_empty(self):
        with pytest.raises(ApiError) as exc:
            parse_video_data("")
        assert exc.value.code == ErrorCode.INVALID_VIDEO_FORMAT

    def test_disallowed_mime_type(self):
        with pytest.raises(ApiError) as exc:
            parse_video_data(f"data:image/png;base64,{VIDEO_B64}")
        assert exc.value.code == ErrorCode.INVALID_VIDEO_FORMAT
        assert exc.value.details["received"] == "image/png"

    def test_too_large(self):
        """Test that size is judged on the decoded length."""
        big = "A" * (((10 * 1024 * 1024) // 3 + 1) * 4)
        with pytest.raises(ApiError) as exc:
            parse_video_data(big)
        assert exc.value.code == ErrorCode.VIDEO_TOO_LARGE

    def test_invalid_base64(self):
        with pytest.raises(ApiError) as exc:
            parse_video_data("not*base64*at*all")
        assert exc.value.code == ErrorCode.INVALID_VIDEO_FORMAT

    def test_decoded_size_accounts_for_padding(self):
        assert decoded_size(base64.b64encode(b"abcd").decode()) == 4


class TestLivenessDetector:
    @pytest.mark.asyncio
    async def test_short_video_rejected(self):
        upload = VideoUpload(mime_type="video/mp4", base64_data="AAAA", size_bytes=3)
        with pytest.raises(ApiError) as exc:
            await LivenessDetector().detect(upload)
        assert exc.value.code == ErrorCode.INVALID_VIDEO_FORMAT

    @pytest.mark.asyncio
    async def test_live_result(self):
        result = await LivenessDetector().detect(parse_video_data(VIDEO_B64))
        assert result.is_live is True
        assert result.confidence == 0.95
        assert result.failed_checks == []


class TestKMSEncryptionService:
    def test_encrypt_decrypt(self, kms_client):
        service = KMSEncryptionService(key_id="alias/test", client=kms_client)
        payload = service.encrypt("digilocker-access-token")

        assert "digilocker-access-token" not in payload.to_json()
        assert len(base64.b64decode(payload.iv)) == 12
        assert len(base64.b64decode(payload.auth_tag)) == 16
        restored = EncryptedPayload.from_json(payload.to_json())
        assert service.decrypt(restored) == "digilocker-access-token"

    def test_fresh_data_key_per_value(self, kms_client):
        service = KMSEncryptionService(key_id="alias/test", client=kms_client)
        first = service.encrypt("same")
        second = service.encrypt("same")

        assert kms_client.generated == 2
        assert first.encrypted_key != second.encrypted_key

    def test_tampered_ciphertext_fails(self, kms_client):
        service = KMSEncryptionService(key_id="alias/test", client=kms_client)
        payload = service.encrypt("secret")
        payload.auth_tag = base64.b64encode(b"\x00" * 16).decode()

        with pytest.raises(ApiError) as exc:
            service.decrypt(payload)
        assert exc.value.code == ErrorCode.DECRYPTION_FAILED

    def test_missing_key_id(self, kms_client):
        service = KMSEncryptionService(client=kms_client)
        service.key_id = None
        with pytest.raises(ApiError) as exc:
            service.encrypt("secret")
        assert exc.value.code == ErrorCode.ENCRYPTION_FAILED

    def test_kms_failure_maps_to_encryption_failed(self):
        class BrokenKMS:
            def generate_data_key(self, KeyId, KeySpec):
                raise ClientError({"Error": {"Code": "AccessDenied", "Message": "no"}},
                                  "GenerateDataKey")

        service = KMSEncryptionService(key_id="alias/test", client=BrokenKMS())
        with pytest.raises(ApiError) as exc:
            service.encrypt("secret")
        assert exc.value.code == ErrorCode.ENCRYPTION_FAILED

    def test_malformed_payload(self):
        with pytest.raises(ApiError) as exc:
            EncryptedPayload.from_json("{}")
        assert exc.value.code == ErrorCode.DECRYPTION_FAILED
