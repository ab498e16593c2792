"""
Video selfie intake and liveness check (tier 3).

The liveness check is simulated; `LivenessDetector` is the seam where a
real provider (Rekognition Face Liveness or similar) plugs in.
"""
import base64
import binascii
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List

from ..config import settings
from ..exceptions import ApiError, ErrorCode

logger = logging.getLogger(__name__)

DATA_URL_REGEX = re.compile(r"^data:([^;]+);base64,(.+)$", re.DOTALL)
DEFAULT_MIME_TYPE = "video/mp4"
MIN_VIDEO_DATA_LENGTH = 1000


@dataclass
class VideoUpload:
    mime_type: str
    base64_data: str
    size_bytes: int


@dataclass
class LivenessResult:
    is_live: bool
    confidence: float
    checks: Dict[str, bool] = field(default_factory=dict)

    @property
    def failed_checks(self) -> List[str]:
        return [name for name, passed in self.checks.items() if not passed]


def max_video_bytes() -> int:
    return settings.video_max_mb * 1024 * 1024


def decoded_size(base64_data: str) -> int:
    """Decoded byte length of a base64 string, without decoding it."""
    stripped = base64_data.strip()
    padding = len(stripped) - len(stripped.rstrip("="))
    return (len(stripped) * 3) // 4 - padding


def parse_video_data(video_data: str) -> VideoUpload:
    """
    Validate a base64 video, optionally wrapped in a data URL.

    Checks run in order: presence, MIME type, decoded size, base64 validity.
    """
    if not video_data:
        raise ApiError(ErrorCode.INVALID_VIDEO_FORMAT, "No video data provided.")

    mime_type = DEFAULT_MIME_TYPE
    base64_data = video_data
    if video_data.startswith("data:"):
        match = DATA_URL_REGEX.match(video_data)
        if match:
            mime_type, base64_data = match.group(1), match.group(2)

    allowed = settings.video_allowed_types
    if mime_type not in allowed:
        raise ApiError(
            ErrorCode.INVALID_VIDEO_FORMAT,
            f"Invalid video format. Allowed: {', '.join(allowed)}",
            details={"allowedTypes": allowed, "received": mime_type},
        )

    size = decoded_size(base64_data)
    if size > max_video_bytes():
        raise ApiError(
            ErrorCode.VIDEO_TOO_LARGE,
            f"Video too large. Maximum size: {settings.video_max_mb}MB",
            details={"maxSize": max_video_bytes(), "received": size},
        )

    try:
        base64.b64decode(base64_data, validate=True)
    except (binascii.Error, ValueError):
        raise ApiError(ErrorCode.INVALID_VIDEO_FORMAT,
                       "Video data is not valid base64.")

    return VideoUpload(mime_type=mime_type, base64_data=base64_data, size_bytes=size)


class LivenessDetector:
    async def detect(self, upload: VideoUpload) -> LivenessResult:
        if len(upload.base64_data) < MIN_VIDEO_DATA_LENGTH:
            raise ApiError(ErrorCode.INVALID_VIDEO_FORMAT,
                           "Video data is too short or invalid.")
        logger.info(f"Simulated liveness check on {upload.size_bytes} bytes ({upload.mime_type})")
        return LivenessResult(
            is_live=True,
            confidence=0.95,
            checks={
                "faceDetected": True,
                "eyeMovement": True,
                "headMovement": True,
                "depthAnalysis": True,
            },
        )


liveness_detector = LivenessDetector()


def get_liveness_detector() -> LivenessDetector:
    return liveness_detector


def capture_instructions() -> dict:
    return {
        "steps": [
            "Find a well-lit area with even lighting on your face",
            "Hold your device at eye level, about arm's length away",
            "Ensure your entire face is visible in the frame",
            "Remove glasses, masks, or anything covering your face",
            "Follow the on-screen prompts (turn head, blink, smile)",
            "Keep still during the final capture",
        ],
        "requirements": {
            "lighting": "Good, even lighting (avoid backlighting)",
            "background": "Plain background preferred",
            "face": "Full face visible, no obstructions",
            "device": "Stable connection, camera working",
        },
        "videoSpecs": {
            "maxDuration": 30,
            "minDuration": 5,
            "maxFileSize": settings.video_max_mb,
            "allowedFormats": settings.video_allowed_types,
        },
    }
