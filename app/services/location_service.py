"""
Location history with a fixed retention window (DPDP Act 2023).
"""
import logging
from datetime import timedelta
from typing import List, Optional

from fastapi import Request
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..exceptions import ApiError, ErrorCode
from ..models import LocationHistory
from ..utils import utcnow
from .audit_service import AuditEvent, AuditService

logger = logging.getLogger(__name__)

LOCATION_CONSENT_MESSAGE = (
    "Location tracking requires analytics consent. "
    "Please update your consent settings."
)


def validate_coordinates(latitude: float, longitude: float) -> None:
    if not (-90 <= latitude <= 90) or not (-180 <= longitude <= 180):
        raise ApiError(
            ErrorCode.INVALID_INPUT,
            "Invalid coordinates. Latitude must be -90 to 90, longitude -180 to 180.",
        )


class LocationService:
    @staticmethod
    async def record(db: AsyncSession, user_id: int, latitude: float,
                     longitude: float, accuracy: Optional[float] = None) -> LocationHistory:
        """Store one point. Callers gate this on analytics consent."""
        validate_coordinates(latitude, longitude)

        now = utcnow()
        location = LocationHistory(
            user_id=user_id,
            latitude=latitude,
            longitude=longitude,
            accuracy=accuracy,
            expires_at=now + timedelta(days=settings.location_retention_days),
            is_expired=False,
            created_at=now,
        )
        db.add(location)
        await db.commit()
        await db.refresh(location)
        return location

    @staticmethod
    async def history(db: AsyncSession, user_id: int, limit: int = 100) -> List[LocationHistory]:
        stmt = (
            select(LocationHistory)
            .where(
                LocationHistory.user_id == user_id,
                LocationHistory.is_expired == False,
                LocationHistory.expires_at > utcnow(),
            )
            .order_by(LocationHistory.created_at.desc(), LocationHistory.id.desc())
            .limit(limit)
        )
        return list((await db.execute(stmt)).scalars().all())

    @staticmethod
    async def erase(db: AsyncSession, user_id: int,
                    request: Optional[Request] = None) -> int:
        """Soft-delete every live record; the cleanup job purges them later."""
        result = await db.execute(
            update(LocationHistory)
            .where(LocationHistory.user_id == user_id,
                   LocationHistory.is_expired == False)
            .values(is_expired=True)
            .execution_options(synchronize_session=False)
        )
        count = result.rowcount
        AuditService.record(
            db, AuditEvent.LOCATION_DATA_DELETED,
            user_id=user_id, entity_type="location_history",
            action="user_requested_deletion",
            metadata={"recordsDeleted": count, "requestedBy": "user"},
            request=request,
        )
        await db.commit()
        logger.info(f"Erased {count} location record(s) for user {user_id}")
        return count
