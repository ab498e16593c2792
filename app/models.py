from sqlalchemy import Column, Integer, String, DateTime, Date, Boolean, ForeignKey, Text, Float, UniqueConstraint, Index, JSON
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from datetime import datetime, timezone

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    phone = Column(String, unique=True, index=True, nullable=True)
    # Profile
    name = Column(String, nullable=True)
    bio = Column(Text, nullable=True)
    is_premium = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow,
                        server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=_utcnow)

    # Tier 1: phone OTP
    is_phone_verified = Column(Boolean, nullable=False, default=False)
    phone_verified_at = Column(DateTime(timezone=True), nullable=True)

    # Age gate (18+)
    date_of_birth = Column(Date, nullable=True)
    is_age_verified = Column(Boolean, nullable=False, default=False)
    age_verified_at = Column(DateTime(timezone=True), nullable=True)

    # Tier 2: DigiLocker. Only the encrypted access token envelope is kept,
    # never any Aadhaar data from the profile.
    digilocker_verified_at = Column(DateTime(timezone=True), nullable=True)
    digilocker_token = Column(Text, nullable=True)
    digilocker_token_iv = Column(String, nullable=True)
    digilocker_token_tag = Column(String, nullable=True)
    digilocker_token_key = Column(Text, nullable=True)

    # Tier 3: video selfie liveness
    video_selfie_verified_at = Column(DateTime(timezone=True), nullable=True)
    video_selfie_data = Column(Text, nullable=True)

    # 0 = none, 1 = bronze, 2 = silver, 3 = gold. Never decremented.
    verification_level = Column(Integer, nullable=False, default=0)

    # Relationships
    sessions = relationship("AuthSession", back_populates="user")
    consents = relationship("Consent", back_populates="user")
    audit_logs = relationship("AuditLog", back_populates="user")
    locations = relationship("LocationHistory", back_populates="user")


class OTPRequest(Base):
    __tablename__ = "otp_requests"

    id = Column(Integer, primary_key=True, index=True)
    phone = Column(String, nullable=False, index=True)
    code = Column(String(6), nullable=False)  # 6-digit OTP code
    attempt_count = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=5)
    is_used = Column(Boolean, nullable=False, default=False)
    used_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow,
                        server_default=func.now())


class AuthSession(Base):
    __tablename__ = "auth_sessions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"),
                     nullable=False, index=True)
    refresh_token_hash = Column(String(64), nullable=False, index=True)
    device_info = Column(String, nullable=True)
    ip_address = Column(String, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    is_revoked = Column(Boolean, nullable=False, default=False)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow,
                        server_default=func.now())

    user = relationship("User", back_populates="sessions")


class DigiLockerState(Base):
    """Pending OAuth authorization, keyed by the CSRF `state` value."""
    __tablename__ = "digilocker_states"

    state = Column(String(64), primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"),
                     nullable=False, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow,
                        server_default=func.now())


class Consent(Base):
    __tablename__ = "consents"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"),
                     nullable=False, index=True)
    purpose_matching = Column(Boolean, nullable=False, default=False)
    purpose_marketing = Column(Boolean, nullable=False, default=False)
    purpose_analytics = Column(Boolean, nullable=False, default=False)
    purpose_third_party = Column(Boolean, nullable=False, default=False)
    consent_given_at = Column(DateTime(timezone=True), nullable=False,
                              default=_utcnow)
    # Null on the single open row per user
    consent_withdrawn_at = Column(DateTime(timezone=True), nullable=True)
    consent_version = Column(String, nullable=False, default="1.0")
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow,
                        server_default=func.now())

    user = relationship("User", back_populates="consents")

    __table_args__ = (
        Index("ix_consents_user_open", "user_id", "consent_withdrawn_at"),
    )


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    event_type = Column(String, nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"),
                     nullable=True, index=True)
    entity_type = Column(String, nullable=True)
    entity_id = Column(String, nullable=True)
    action = Column(String, nullable=True)
    event_metadata = Column("metadata", JSON, nullable=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow,
                        server_default=func.now())

    user = relationship("User", back_populates="audit_logs")


class DailyUsage(Base):
    __tablename__ = "daily_usage"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"),
                     nullable=False, index=True)
    action_type = Column(String, nullable=False)  # profiles|chats|likes
    used = Column(Integer, nullable=False, default=0)
    daily_limit = Column(Integer, nullable=False)
    # Next local-midnight boundary
    reset_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow,
                        onupdate=_utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "action_type",
                         name="uq_daily_usage_user_action"),
    )


class AnalyticsEvent(Base):
    __tablename__ = "analytics_events"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"),
                     nullable=False, index=True)
    event_name = Column(String, nullable=False, index=True)
    properties = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow,
                        server_default=func.now())


class UpsellReminder(Base):
    __tablename__ = "upsell_reminders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"),
                     nullable=False, unique=True)
    remind_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow,
                        server_default=func.now())


class LocationHistory(Base):
    __tablename__ = "location_history"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"),
                     nullable=False, index=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    accuracy = Column(Float, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    is_expired = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow,
                        server_default=func.now())

    user = relationship("User", back_populates="locations")
