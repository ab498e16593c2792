"""
Cleanup service for retention-bound data.
"""
import asyncio
import logging
from datetime import timedelta
from sqlalchemy import delete, update

from ..config import settings
from ..database import AsyncSessionLocal
from ..models import DigiLockerState, LocationHistory
from ..utils import utcnow
from .audit_service import AuditEvent, AuditService

logger = logging.getLogger(__name__)


class CleanupService:
    @staticmethod
    async def cleanup_expired_locations() -> dict:
        """
        Mark location rows past their retention as expired, and purge rows
        that expired more than the hard-delete window ago.
        """
        now = utcnow()
        hard_delete_before = now - timedelta(days=settings.location_hard_delete_days)

        async with AsyncSessionLocal() as db:
            marked = await db.execute(
                update(LocationHistory)
                .where(LocationHistory.expires_at <= now,
                       LocationHistory.is_expired == False)
                .values(is_expired=True)
                .execution_options(synchronize_session=False)
            )
            purged = await db.execute(
                delete(LocationHistory)
                .where(LocationHistory.expires_at <= hard_delete_before,
                       LocationHistory.is_expired == True)
                .execution_options(synchronize_session=False)
            )
            result = {
                "markedAsExpired": marked.rowcount,
                "permanentlyDeleted": purged.rowcount,
                "retentionDays": settings.location_retention_days,
                "safetyRetentionDays": settings.location_hard_delete_days,
            }
            AuditService.record(
                db, AuditEvent.AUTO_DATA_CLEANUP,
                entity_type="location_history",
                action="scheduled_expiry_deletion",
                metadata=result,
            )
            await db.commit()

        logger.info(
            f"Location cleanup: marked {result['markedAsExpired']} expired, "
            f"deleted {result['permanentlyDeleted']} old records")
        return result

    @staticmethod
    async def cleanup_expired_digilocker_states() -> int:
        async with AsyncSessionLocal() as db:
            result = await db.execute(
                delete(DigiLockerState)
                .where(DigiLockerState.expires_at <= utcnow())
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        if result.rowcount:
            logger.info(f"Removed {result.rowcount} expired DigiLocker states")
        return result.rowcount

    @staticmethod
    async def run_once() -> None:
        await CleanupService.cleanup_expired_locations()
        await CleanupService.cleanup_expired_digilocker_states()

    @staticmethod
    async def start_cleanup_scheduler():
        """Start the background cleanup scheduler."""
        logger.info("Starting cleanup scheduler...")

        while True:
            try:
                await CleanupService.run_once()
                await asyncio.sleep(settings.location_cleanup_interval_seconds)
            except asyncio.CancelledError:
                logger.info("Cleanup scheduler stopped")
                raise
            except Exception as e:
                logger.error(f"Error in cleanup scheduler: {e}")
                # Wait a bit before retrying
                await asyncio.sleep(60)
