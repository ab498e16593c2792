from pydantic import BaseModel, Field, ConfigDict
from pydantic.alias_generators import to_camel
from typing import Optional, List, Dict, Any, Literal
from datetime import datetime

from .services.analytics import DismissAction


class CamelModel(BaseModel):
    """Snake_case in Python, camelCase on the wire"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Users

class UserResponse(CamelModel):
    id: int
    phone: Optional[str] = None
    name: Optional[str] = None
    bio: Optional[str] = None
    is_premium: bool = False
    is_phone_verified: bool = False
    is_age_verified: bool = False
    verification_level: int = 0
    phone_verified_at: Optional[datetime] = None
    digilocker_verified_at: Optional[datetime] = None
    video_selfie_verified_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class ProfileUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100,
                                examples=["Priya Sharma"])
    bio: Optional[str] = Field(None, max_length=500)


# Phone OTP

class PhoneOTPSend(CamelModel):
    phone: str = Field(..., examples=["+919876543210"])


class PhoneOTPSendResponse(CamelModel):
    message: str
    phone: str
    expires_in_minutes: int
    resend_cooldown_seconds: int
    # Only populated in debug mode; SMS delivery is external
    otp: Optional[str] = None


class PhoneOTPVerify(CamelModel):
    phone: str = Field(..., examples=["+919876543210"])
    otp_code: str = Field(..., min_length=6, max_length=6, examples=["123456"])


class TokenPair(CamelModel):
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    expires_in: int


class AuthResponse(CamelModel):
    message: str
    is_new_user: bool
    user: UserResponse
    tokens: TokenPair


class RefreshRequest(CamelModel):
    refresh_token: Optional[str] = None


# Age

class AgeVerifyRequest(CamelModel):
    # Parsed by hand so malformed dates map to INVALID_DATE_OF_BIRTH
    date_of_birth: str = Field(..., examples=["1995-08-15"])


# Video selfie

class VideoMetadata(CamelModel):
    device_info: Optional[str] = None
    capture_duration: Optional[float] = None
    frame_count: Optional[int] = None


class VideoSelfieRequest(CamelModel):
    video_data: str
    metadata: Optional[VideoMetadata] = None


# Consent

class ConsentUpdate(CamelModel):
    purpose_matching: Optional[bool] = None
    purpose_marketing: Optional[bool] = None
    purpose_analytics: Optional[bool] = None
    purpose_third_party: Optional[bool] = None


class VerifyPurposeRequest(CamelModel):
    purpose: str = Field(..., examples=["purposeMarketing"])


# Upsell / analytics

class UpsellDismissRequest(CamelModel):
    modal_type: str = "limit_reached"
    action: DismissAction = DismissAction.CLOSE


class UpgradeClickRequest(CamelModel):
    modal_type: str = "limit_reached"
    cta_position: str = "primary"


class PremiumConversionRequest(CamelModel):
    user_id: int
    plan_type: Literal["monthly", "yearly", "family"]
    price: float = Field(..., ge=0)
    currency: str = "INR"
    payment_method: Optional[Literal["upi", "card", "netbanking", "wallet"]] = None


class AnalyticsEventResponse(CamelModel):
    id: int
    event_name: str
    properties: Optional[Dict[str, Any]] = None
    created_at: datetime
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# Location

class LocationCreate(CamelModel):
    latitude: float = Field(..., examples=[19.076])
    longitude: float = Field(..., examples=[72.8777])
    accuracy: Optional[float] = Field(None, ge=0)


class LocationResponse(CamelModel):
    id: int
    latitude: float
    longitude: float
    accuracy: Optional[float] = None
    created_at: datetime
    expires_at: datetime
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class LocationHistoryResponse(CamelModel):
    locations: List[LocationResponse]
    total_records: int
    retention_days: int
