"""
Error codes and the API exception raised by routes, dependencies and services.

Every failure leaves the API as the same envelope:

    {"error": "<CODE>", "message": "...", "details": {...}, "requiresAction": "..."}
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Flat error codes. Each member carries its HTTP status and default message."""

    def __new__(cls, value: str, status_code: int, message: str):
        obj = str.__new__(cls, value)
        obj._value_ = value
        obj.status_code = status_code
        obj.default_message = message
        return obj

    # Authentication
    UNAUTHORIZED = ("UNAUTHORIZED", 401, "User not authenticated")
    TOKEN_EXPIRED = ("TOKEN_EXPIRED", 401, "Access token has expired")
    TOKEN_INVALID = ("TOKEN_INVALID", 401, "Could not validate credentials")
    NO_REFRESH_TOKEN = ("NO_REFRESH_TOKEN", 401, "No refresh token provided")
    REFRESH_TOKEN_INVALID = (
        "REFRESH_TOKEN_INVALID", 403, "Invalid or expired refresh token")

    # Age verification
    AGE_RESTRICTION_VIOLATION = (
        "AGE_RESTRICTION_VIOLATION", 403,
        "You must be 18 years or older to access this service.")
    AGE_NOT_VERIFIED = (
        "AGE_NOT_VERIFIED", 403,
        "Age verification required. Please provide your date of birth.")
    INVALID_DATE_OF_BIRTH = (
        "INVALID_DATE_OF_BIRTH", 400,
        "Invalid date format. Use ISO 8601 format (YYYY-MM-DD).")

    # Phone OTP
    INVALID_PHONE_FORMAT = (
        "INVALID_PHONE_FORMAT", 400,
        "Invalid phone number format. Use +91XXXXXXXXXX (Indian format).")
    OTP_SEND_FAILED = ("OTP_SEND_FAILED", 502, "Failed to send OTP")
    OTP_VERIFICATION_FAILED = (
        "OTP_VERIFICATION_FAILED", 400,
        "OTP verification failed. Please check the code and try again.")
    OTP_EXPIRED = (
        "OTP_EXPIRED", 400,
        "OTP has expired or already been used. Please request a new OTP.")
    OTP_MAX_ATTEMPTS_EXCEEDED = (
        "OTP_MAX_ATTEMPTS_EXCEEDED", 400,
        "Maximum OTP attempts exceeded. Please request a new OTP.")
    OTP_RESEND_COOLDOWN = (
        "OTP_RESEND_COOLDOWN", 429,
        "Please wait before requesting another OTP.")

    # DigiLocker
    DIGILOCKER_VERIFICATION_FAILED = (
        "DIGILOCKER_VERIFICATION_FAILED", 400,
        "DigiLocker verification failed. Please try again.")
    DIGILOCKER_PROFILE_FETCH_FAILED = (
        "DIGILOCKER_PROFILE_FETCH_FAILED", 502,
        "Could not fetch profile from DigiLocker.")
    DIGILOCKER_TOKEN_EXPIRED = (
        "DIGILOCKER_TOKEN_EXPIRED", 401,
        "DigiLocker token has expired. Please re-authorize.")
    DIGILOCKER_STATE_MISMATCH = (
        "DIGILOCKER_STATE_MISMATCH", 403,
        "Invalid or expired state parameter. Please restart the verification process.")

    # Video selfie
    VIDEO_SELFIE_VERIFICATION_FAILED = (
        "VIDEO_SELFIE_VERIFICATION_FAILED", 400,
        "Video selfie verification failed.")
    LIVENESS_DETECTION_FAILED = (
        "LIVENESS_DETECTION_FAILED", 400,
        "Liveness detection failed. Please ensure you're recording in good "
        "lighting and follow the on-screen instructions.")
    INVALID_VIDEO_FORMAT = (
        "INVALID_VIDEO_FORMAT", 400, "Invalid video format.")
    VIDEO_TOO_LARGE = ("VIDEO_TOO_LARGE", 400, "Video too large.")

    # Tier ordering
    VERIFICATION_PREREQUISITE_MISSING = (
        "VERIFICATION_PREREQUISITE_MISSING", 403,
        "Complete the previous verification step first.")

    # Consent
    CONSENT_REQUIRED = ("CONSENT_REQUIRED", 403, "Consent required.")
    CONSENT_WITHDRAWN = (
        "CONSENT_WITHDRAWN", 403,
        "Consent has been withdrawn. Please provide consent again.")
    INVALID_CONSENT_PURPOSE = (
        "INVALID_CONSENT_PURPOSE", 400, "Invalid consent purpose.")

    # Encryption
    ENCRYPTION_FAILED = ("ENCRYPTION_FAILED", 500, "Encryption failed")
    DECRYPTION_FAILED = ("DECRYPTION_FAILED", 500, "Decryption failed")

    # Database
    USER_NOT_FOUND = ("USER_NOT_FOUND", 404, "User does not exist")
    DATABASE_ERROR = ("DATABASE_ERROR", 500, "Database error")

    # Rate limiting
    RATE_LIMIT_EXCEEDED = (
        "RATE_LIMIT_EXCEEDED", 429, "Too many requests. Please try again later.")
    DAILY_LIMIT_REACHED = (
        "DAILY_LIMIT_REACHED", 429,
        "You have reached today's limit. Upgrade to Premium for unlimited access.")

    # Validation
    VALIDATION_ERROR = ("VALIDATION_ERROR", 422, "Validation error")
    INVALID_INPUT = ("INVALID_INPUT", 400, "Invalid input")
    NOT_FOUND = ("NOT_FOUND", 404, "Not found")

    # Server
    INTERNAL_SERVER_ERROR = (
        "INTERNAL_SERVER_ERROR", 500, "An unexpected error occurred")
    SERVICE_UNAVAILABLE = (
        "SERVICE_UNAVAILABLE", 503, "Service temporarily unavailable")


class ApiError(Exception):
    """Known failure carrying an error code, status and optional details."""

    def __init__(
        self,
        code: ErrorCode,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        requires_action: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        self.code = code
        self.message = message or code.default_message
        self.details = details
        self.requires_action = requires_action
        self.status_code = status_code or code.status_code
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.code.value, "message": self.message}
        if self.details:
            body["details"] = self.details
        if self.requires_action:
            body["requiresAction"] = self.requires_action
        return body


def age_restriction_error(**details) -> ApiError:
    return ApiError(
        ErrorCode.AGE_RESTRICTION_VIOLATION,
        details=details or None,
        requires_action="ACCOUNT_RESTRICTION",
    )


def age_not_verified_error() -> ApiError:
    return ApiError(ErrorCode.AGE_NOT_VERIFIED, requires_action="AGE_VERIFICATION")


def invalid_phone_format_error(received: Optional[str] = None) -> ApiError:
    details = {"expectedFormat": "+91XXXXXXXXXX"}
    if received is not None:
        details["received"] = received
    return ApiError(ErrorCode.INVALID_PHONE_FORMAT, details=details)


def consent_required_error(purpose: str, message: Optional[str] = None) -> ApiError:
    return ApiError(
        ErrorCode.CONSENT_REQUIRED,
        message or f"Consent required for purpose: {purpose}",
        details={"requiredConsent": purpose},
        requires_action="CONSENT",
    )


def digilocker_verification_error(reason: Optional[str] = None) -> ApiError:
    return ApiError(
        ErrorCode.DIGILOCKER_VERIFICATION_FAILED,
        details={"digilockerError": reason} if reason else None,
    )
