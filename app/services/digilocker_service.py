"""
DigiLocker (MeitY) OAuth client.

Only the access token is kept, encrypted. Profile data is fetched to prove
the token works and is never stored: no Aadhaar number or other PII.
"""
import logging
import secrets
from typing import Optional
from urllib.parse import urlencode

import httpx

from ..config import settings
from ..exceptions import ApiError, ErrorCode, digilocker_verification_error

logger = logging.getLogger(__name__)


def generate_state() -> str:
    """Random CSRF state for the authorize redirect"""
    return secrets.token_urlsafe(32)


class DigiLockerClient:
    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        # A transport can be injected to serve responses without the network
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(settings.http_timeout_seconds),
            transport=self.transport,
        )

    def authorization_url(self, state: str) -> str:
        params = {
            "response_type": "code",
            "client_id": settings.digilocker_client_id or "",
            "redirect_uri": settings.digilocker_redirect_uri or "",
            "scope": "profile",
            "state": state,
        }
        return f"{settings.digilocker_auth_url}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> dict:
        """Swap the authorization code for an access token"""
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": settings.digilocker_redirect_uri or "",
            "client_id": settings.digilocker_client_id or "",
            "client_secret": settings.digilocker_client_secret or "",
        }
        try:
            async with self._client() as client:
                response = await client.post(settings.digilocker_token_url, data=data)
                response.raise_for_status()
                payload = response.json()
        except httpx.TimeoutException:
            logger.error("DigiLocker token exchange timed out")
            raise digilocker_verification_error("timeout")
        except httpx.HTTPStatusError as e:
            logger.error(f"DigiLocker token exchange HTTP {e.response.status_code}")
            raise digilocker_verification_error(f"http_{e.response.status_code}")
        except (httpx.RequestError, ValueError) as e:
            logger.error(f"DigiLocker token exchange failed: {e}")
            raise digilocker_verification_error("request_failed")

        if not isinstance(payload, dict):
            logger.error(f"DigiLocker token response is not an object: {type(payload).__name__}")
            raise digilocker_verification_error("invalid_response")
        if payload.get("error"):
            logger.error(f"DigiLocker returned error: {payload.get('error_description')}")
            raise digilocker_verification_error(payload.get("error"))
        if not payload.get("access_token"):
            raise digilocker_verification_error("missing_access_token")
        return payload

    async def fetch_profile(self, access_token: str) -> dict:
        try:
            async with self._client() as client:
                response = await client.get(
                    settings.digilocker_profile_url,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
                if response.status_code == 401:
                    raise ApiError(ErrorCode.DIGILOCKER_TOKEN_EXPIRED)
                response.raise_for_status()
                profile = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"DigiLocker profile fetch failed: {e}")
            raise ApiError(ErrorCode.DIGILOCKER_PROFILE_FETCH_FAILED)

        if not isinstance(profile, dict):
            logger.error(f"DigiLocker profile is not an object: {type(profile).__name__}")
            raise ApiError(ErrorCode.DIGILOCKER_PROFILE_FETCH_FAILED)
        return profile


digilocker_client = DigiLockerClient()


def get_digilocker_client() -> DigiLockerClient:
    return digilocker_client
