import hashlib
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple
from jose import ExpiredSignatureError, JWTError, jwt
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from ..config import settings
from ..database import get_db
from ..exceptions import ApiError, ErrorCode
from ..models import AuthSession, User
from ..utils import client_ip, ensure_aware, user_agent, utcnow
from .verification import VerificationTier

logger = logging.getLogger(__name__)

# JWT token scheme; missing credentials are reported through ApiError
security = HTTPBearer(auto_error=False)

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


def hash_refresh_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class JWTService:
    @staticmethod
    def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
        """Create a JWT access token"""
        to_encode = data.copy()

        if expires_delta:
            expire = datetime.now(timezone.utc) + expires_delta
        else:
            expire = datetime.now(timezone.utc) + \
                timedelta(minutes=settings.jwt_expiry_minutes)

        to_encode.update({"exp": expire})
        to_encode.setdefault("type", ACCESS_TOKEN_TYPE)
        encoded_jwt = jwt.encode(
            to_encode,
            settings.jwt_secret_key,
            algorithm=settings.jwt_algorithm
        )
        return encoded_jwt

    @staticmethod
    def create_token(user: User, expires_delta: Optional[timedelta] = None) -> str:
        """Create an access token carrying the user's verification claims"""
        level = int(user.verification_level or 0)
        data = {
            "sub": str(user.id),
            "phone": user.phone,
            "isPhoneVerified": bool(user.is_phone_verified),
            "isAgeVerified": bool(user.is_age_verified),
            "verificationLevel": level,
            "verificationTier": VerificationTier(level).label,
            "digilockerVerified": user.digilocker_verified_at is not None,
            "videoSelfieVerified": user.video_selfie_verified_at is not None,
        }
        return JWTService.create_access_token(data, expires_delta)

    @staticmethod
    def create_refresh_token(user_id: int) -> str:
        """Refresh tokens are JWTs too; the random jti keeps each one unique"""
        data = {
            "sub": str(user_id),
            "type": REFRESH_TOKEN_TYPE,
            "jti": secrets.token_hex(16),
        }
        return JWTService.create_access_token(
            data, timedelta(days=settings.refresh_token_expiry_days))

    @staticmethod
    def verify_token(token: str, expected_type: str = ACCESS_TOKEN_TYPE) -> dict:
        """Verify and decode a JWT token"""
        try:
            payload = jwt.decode(
                token,
                settings.jwt_secret_key,
                algorithms=[settings.jwt_algorithm]
            )
        except ExpiredSignatureError:
            raise ApiError(ErrorCode.TOKEN_EXPIRED)
        except JWTError:
            raise ApiError(ErrorCode.TOKEN_INVALID)

        if payload.get("type", ACCESS_TOKEN_TYPE) != expected_type:
            raise ApiError(ErrorCode.TOKEN_INVALID)
        return payload

    @staticmethod
    def user_id_from_payload(payload: dict) -> int:
        user_id_str = payload.get("sub")
        if user_id_str is None:
            raise ApiError(ErrorCode.UNAUTHORIZED)
        try:
            return int(user_id_str)
        except (ValueError, TypeError):
            raise ApiError(ErrorCode.TOKEN_INVALID, "Invalid user ID in token")

    @staticmethod
    async def get_current_user(
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
        db: AsyncSession = Depends(get_db)
    ) -> User:
        """Get the current authenticated user from JWT token"""
        if credentials is None or not credentials.credentials:
            raise ApiError(ErrorCode.UNAUTHORIZED)

        payload = JWTService.verify_token(credentials.credentials)
        user_id = JWTService.user_id_from_payload(payload)

        # Get user from database
        stmt = select(User).where(User.id == user_id)
        result = await db.execute(stmt)
        user = result.scalar_one_or_none()

        if user is None:
            raise ApiError(ErrorCode.USER_NOT_FOUND)

        return user

    # Sessions

    @staticmethod
    async def issue_session(db: AsyncSession, user: User,
                            request: Optional[Request] = None) -> Tuple[str, str]:
        """Mint an access/refresh pair and persist the hashed refresh token"""
        refresh_token = JWTService.create_refresh_token(user.id)
        session = AuthSession(
            user_id=user.id,
            refresh_token_hash=hash_refresh_token(refresh_token),
            device_info=user_agent(request),
            ip_address=client_ip(request),
            expires_at=utcnow() + timedelta(days=settings.refresh_token_expiry_days),
        )
        db.add(session)
        await db.commit()
        return JWTService.create_token(user), refresh_token

    @staticmethod
    async def refresh_access_token(db: AsyncSession,
                                   refresh_token: Optional[str]) -> Tuple[str, User]:
        if not refresh_token:
            raise ApiError(ErrorCode.NO_REFRESH_TOKEN)
        try:
            payload = JWTService.verify_token(refresh_token, REFRESH_TOKEN_TYPE)
        except ApiError:
            raise ApiError(ErrorCode.REFRESH_TOKEN_INVALID)
        user_id = JWTService.user_id_from_payload(payload)

        stmt = select(AuthSession).where(
            AuthSession.user_id == user_id,
            AuthSession.refresh_token_hash == hash_refresh_token(refresh_token),
            AuthSession.is_revoked == False,
        )
        session = (await db.execute(stmt)).scalar_one_or_none()
        if session is None or ensure_aware(session.expires_at) <= utcnow():
            raise ApiError(ErrorCode.REFRESH_TOKEN_INVALID)

        user = await db.get(User, user_id)
        if user is None:
            raise ApiError(ErrorCode.USER_NOT_FOUND)
        return JWTService.create_token(user), user

    @staticmethod
    async def revoke_sessions(db: AsyncSession, user_id: int) -> int:
        now = utcnow()
        result = await db.execute(
            update(AuthSession)
            .where(AuthSession.user_id == user_id, AuthSession.is_revoked == False)
            .values(is_revoked=True, revoked_at=now)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        logger.info(f"Revoked {result.rowcount} session(s) for user {user_id}")
        return result.rowcount
