"""Tier 2 (DigiLocker) and tier 3 (video selfie) verification."""

import base64
import json
from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from app.main import app
from app.models import DigiLockerState, User
from app.services.digilocker_service import DigiLockerClient, get_digilocker_client
from app.services.encryption_service import EncryptedPayload, KMSEncryptionService
from app.utils import utcnow

VIDEO_DATA = "data:video/mp4;base64," + base64.b64encode(b"\x01" * 4000).decode()


def _digilocker(token_response=None, profile_status=200):
    """Serve DigiLocker's token and profile endpoints from memory."""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if request.url.path.endswith("/token"):
            if isinstance(token_response, int):
                return httpx.Response(token_response, json={"error": "server_error"})
            return httpx.Response(200, json=token_response or {
                "access_token": "dl-access-token", "token_type": "Bearer"})
        if request.url.path.endswith("/profile"):
            if profile_status != 200:
                return httpx.Response(profile_status, json={})
            return httpx.Response(200, json={"name": "Priya Sharma", "gender": "F"})
        return httpx.Response(404)

    client = DigiLockerClient(transport=httpx.MockTransport(handler))
    app.dependency_overrides[get_digilocker_client] = lambda: client
    return calls


async def _init_state(client, headers) -> str:
    response = await client.get("/auth/digilocker/init", headers=headers)
    assert response.status_code == 200
    return response.json()["state"]


@pytest.mark.asyncio
async def test_init_returns_authorize_url(client, make_user):
    _digilocker()
    _, headers = await make_user()

    response = await client.get("/auth/digilocker/init", headers=headers)
    assert response.status_code == 200
    body = response.json()
    query = parse_qs(urlparse(body["authorizationUrl"]).query)
    assert query["state"] == [body["state"]]
    assert query["client_id"] == ["test-client"]
    assert query["response_type"] == ["code"]
    assert body["expiresInSeconds"] == 900


@pytest.mark.asyncio
async def test_init_requires_bronze(client, make_user):
    _digilocker()
    _, headers = await make_user(is_phone_verified=False, verification_level=0)

    response = await client.get("/auth/digilocker/init", headers=headers)
    assert response.status_code == 403
    body = response.json()
    assert body["error"] == "VERIFICATION_PREREQUISITE_MISSING"
    assert body["details"] == {"currentTier": "none", "requiredTier": "bronze"}
    assert body["requiresAction"] == "PHONE_VERIFICATION"


@pytest.mark.asyncio
async def test_callback_raises_to_silver(client, make_user, fake_kms, test_session):
    """Test that a good callback stores only the encrypted token and mints a SILVER token."""
    calls = _digilocker()
    user, headers = await make_user()
    state = await _init_state(client, headers)

    response = await client.get("/auth/digilocker/callback",
                                params={"code": "auth-code", "state": state})
    assert response.status_code == 200
    body = response.json()
    assert body["user"]["verificationLevel"] == 2
    assert body["tokens"]["accessToken"]
    assert "dl-access-token" not in response.text
    assert [c.url.path.rsplit("/", 1)[-1] for c in calls] == ["token", "profile"]

    stored = await test_session.get(User, user.id, populate_existing=True)
    assert stored.verification_level == 2
    assert stored.digilocker_verified_at is not None
    assert "dl-access-token" not in stored.digilocker_token
    service = KMSEncryptionService(key_id="alias/bandhan-test", client=fake_kms)
    payload = EncryptedPayload(
        ciphertext=stored.digilocker_token,
        iv=stored.digilocker_token_iv,
        auth_tag=stored.digilocker_token_tag,
        encrypted_key=stored.digilocker_token_key,
    )
    assert service.decrypt(payload) == "dl-access-token"

    assert await test_session.get(DigiLockerState, state) is None

    status = (await client.get("/auth/digilocker/status", headers=headers)).json()
    assert status["isVerified"] is True
    assert status["tier2Complete"] is True


@pytest.mark.asyncio
async def test_state_is_single_use(client, make_user, fake_kms):
    _digilocker()
    _, headers = await make_user()
    state = await _init_state(client, headers)

    await client.get("/auth/digilocker/callback", params={"code": "c", "state": state})
    response = await client.get("/auth/digilocker/callback", params={"code": "c", "state": state})
    assert response.status_code == 403
    assert response.json()["error"] == "DIGILOCKER_STATE_MISMATCH"


@pytest.mark.asyncio
async def test_unknown_and_expired_state(client, make_user, fake_kms, test_session):
    _digilocker()
    user, _ = await make_user()

    response = await client.get("/auth/digilocker/callback",
                                params={"code": "c", "state": "forged"})
    assert response.status_code == 403
    assert response.json()["error"] == "DIGILOCKER_STATE_MISMATCH"

    test_session.add(DigiLockerState(state="stale", user_id=user.id,
                                     expires_at=utcnow() - timedelta(minutes=1)))
    await test_session.commit()
    response = await client.get("/auth/digilocker/callback",
                                params={"code": "c", "state": "stale"})
    assert response.status_code == 403
    assert response.json()["error"] == "DIGILOCKER_STATE_MISMATCH"


@pytest.mark.asyncio
async def test_callback_error_and_missing_params(client):
    _digilocker()
    response = await client.get("/auth/digilocker/callback", params={"error": "access_denied"})
    assert response.status_code == 400
    assert response.json()["details"]["digilockerError"] == "access_denied"

    response = await client.get("/auth/digilocker/callback", params={"state": "s"})
    assert response.status_code == 400
    assert response.json()["error"] == "DIGILOCKER_VERIFICATION_FAILED"

    response = await client.get("/auth/digilocker/callback", params={"code": "c"})
    assert response.status_code == 403
    assert response.json()["error"] == "DIGILOCKER_STATE_MISMATCH"


@pytest.mark.asyncio
async def test_token_exchange_failure(client, make_user, fake_kms, test_session):
    _digilocker(token_response=500)
    user, headers = await make_user()
    state = await _init_state(client, headers)

    response = await client.get("/auth/digilocker/callback",
                                params={"code": "c", "state": state})
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "DIGILOCKER_VERIFICATION_FAILED"
    assert body["details"]["digilockerError"] == "http_500"

    stored = await test_session.get(User, user.id, populate_existing=True)
    assert stored.verification_level == 1


@pytest.mark.asyncio
async def test_token_response_without_access_token(client, make_user, fake_kms):
    _digilocker(token_response={"token_type": "Bearer"})
    _, headers = await make_user()
    state = await _init_state(client, headers)

    response = await client.get("/auth/digilocker/callback",
                                params={"code": "c", "state": state})
    assert response.json()["details"]["digilockerError"] == "missing_access_token"


@pytest.mark.asyncio
async def test_token_response_that_is_not_an_object(client, make_user, fake_kms, test_session):
    _digilocker(token_response=["dl-access-token"])
    user, headers = await make_user()
    state = await _init_state(client, headers)

    response = await client.get("/auth/digilocker/callback",
                                params={"code": "c", "state": state})
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "DIGILOCKER_VERIFICATION_FAILED"
    assert body["details"]["digilockerError"] == "invalid_response"

    stored = await test_session.get(User, user.id, populate_existing=True)
    assert stored.verification_level == 1


@pytest.mark.asyncio
async def test_profile_token_rejected(client, make_user, fake_kms):
    _digilocker(profile_status=401)
    _, headers = await make_user()
    state = await _init_state(client, headers)

    response = await client.get("/auth/digilocker/callback",
                                params={"code": "c", "state": state})
    assert response.status_code == 401
    assert response.json()["error"] == "DIGILOCKER_TOKEN_EXPIRED"


@pytest.mark.asyncio
async def test_digilocker_refresh(client, make_user):
    _, headers = await make_user()
    response = await client.post("/auth/digilocker/refresh", headers=headers)
    assert response.status_code == 404
    assert response.json()["error"] == "DIGILOCKER_TOKEN_EXPIRED"

    _, headers = await make_user(digilocker_token="sealed")
    response = await client.post("/auth/digilocker/refresh", headers=headers)
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_video_instructions_are_public(client):
    response = await client.get("/auth/video-selfie/instructions")
    assert response.status_code == 200
    specs = response.json()["instructions"]["videoSpecs"]
    assert specs["maxFileSize"] == 10
    assert "video/webm" in specs["allowedFormats"]


@pytest.mark.asyncio
async def test_video_selfie_requires_silver(client, make_user, fake_kms, test_session):
    user, headers = await make_user()

    response = await client.post("/auth/video-selfie/verify", headers=headers,
                                 json={"videoData": VIDEO_DATA})
    assert response.status_code == 403
    body = response.json()
    assert body["error"] == "VERIFICATION_PREREQUISITE_MISSING"
    assert body["requiresAction"] == "DIGILOCKER_VERIFICATION"

    stored = await test_session.get(User, user.id, populate_existing=True)
    assert stored.video_selfie_verified_at is None
    assert stored.verification_level == 1


@pytest.mark.asyncio
async def test_video_selfie_raises_to_gold(client, make_user, fake_kms, test_session):
    user, headers = await make_user(verification_level=2, digilocker_verified_at=utcnow())

    response = await client.post("/auth/video-selfie/verify", headers=headers, json={
        "videoData": VIDEO_DATA,
        "metadata": {"deviceInfo": "Pixel 7", "captureDuration": 6.5},
    })
    assert response.status_code == 200
    body = response.json()
    assert body["user"]["verificationLevel"] == 3
    assert body["liveness"]["confidence"] == 0.95

    stored = await test_session.get(User, user.id, populate_existing=True)
    assert stored.verification_level == 3
    service = KMSEncryptionService(key_id="alias/bandhan-test", client=fake_kms)
    sealed = EncryptedPayload.from_json(stored.video_selfie_data)
    result = json.loads(service.decrypt(sealed))
    assert result["isLive"] is True

    status = (await client.get("/auth/video-selfie/status", headers=headers)).json()
    assert status["fullyVerified"] is True
    assert status["tier3Complete"] is True


@pytest.mark.asyncio
async def test_video_selfie_rejects_bad_format(client, make_user, fake_kms):
    _, headers = await make_user(verification_level=2, digilocker_verified_at=utcnow())

    response = await client.post("/auth/video-selfie/verify", headers=headers,
                                 json={"videoData": "data:image/gif;base64,R0lGOD"})
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "INVALID_VIDEO_FORMAT"
    assert body["details"]["received"] == "image/gif"


@pytest.mark.asyncio
async def test_video_selfie_rejects_short_video(client, make_user, fake_kms):
    _, headers = await make_user(verification_level=2, digilocker_verified_at=utcnow())

    response = await client.post("/auth/video-selfie/verify", headers=headers,
                                 json={"videoData": base64.b64encode(b"tiny").decode()})
    assert response.status_code == 400
    assert response.json()["message"] == "Video data is too short or invalid."
