"""
Monetization analytics and the upsell flow around daily limits.

Tracking is best effort: a failed insert is logged and dropped, it never
fails the request that produced it.
"""
import logging
from collections import Counter
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..exceptions import ApiError, ErrorCode
from ..models import AnalyticsEvent, UpsellReminder, User
from ..utils import ensure_aware, utcnow
from .daily_limit import LimitSnapshot, next_reset_at

logger = logging.getLogger(__name__)


class EventName(str, Enum):
    DAILY_LIMIT_REACHED = "daily_limit_reached"
    LIMIT_EXCEED_ATTEMPT = "limit_exceed_attempt"
    UPSELL_MODAL_SHOWN = "upsell_modal_shown"
    UPGRADE_CTA_CLICKED = "upgrade_cta_clicked"
    UPSELL_MODAL_DISMISSED = "upsell_modal_dismissed"
    REMIND_ME_TOMORROW_CLICKED = "remind_me_tomorrow_clicked"
    PREMIUM_CONVERTED = "premium_converted"


class DismissAction(str, Enum):
    CLOSE = "close"
    REMIND_LATER = "remind_later"
    SKIP = "skip"


def is_peak_hours(now: Optional[datetime] = None) -> bool:
    """10:00-12:00 and 18:00-21:00 local time."""
    hour = ensure_aware(now or utcnow()).astimezone(
        ZoneInfo(settings.limit_reset_timezone)).hour
    return 10 <= hour < 12 or 18 <= hour < 21


def _segment(user: User) -> str:
    return "premium" if user.is_premium else "free"


class AnalyticsService:
    @staticmethod
    async def track(db: AsyncSession, user_id: int, event_name: str,
                    properties: Optional[Dict[str, Any]] = None) -> Optional[AnalyticsEvent]:
        """
        Store one event and keep only the newest events for the user.

        The write runs in a savepoint: a failure rolls back the event alone
        and leaves the rest of the request's session untouched.
        """
        name = event_name.value if isinstance(event_name, Enum) else event_name
        try:
            async with db.begin_nested():
                event = AnalyticsEvent(user_id=user_id, event_name=name,
                                       properties=properties or {})
                db.add(event)
                await db.flush()

                keep = (
                    select(AnalyticsEvent.id)
                    .where(AnalyticsEvent.user_id == user_id)
                    .order_by(AnalyticsEvent.id.desc())
                    .limit(settings.analytics_buffer_size)
                )
                await db.execute(
                    delete(AnalyticsEvent)
                    .where(AnalyticsEvent.user_id == user_id,
                           AnalyticsEvent.id.not_in(keep))
                    .execution_options(synchronize_session=False)
                )
        except (SQLAlchemyError, TypeError, ValueError) as e:
            logger.warning(f"Dropping analytics event {name} for user {user_id}: {e}")
            return None

        await db.commit()
        logger.debug(f"[Analytics] {name} user={user_id}")
        return event

    @staticmethod
    async def recent(db: AsyncSession, user_id: int,
                     event_name: Optional[str] = None,
                     limit: int = 100) -> List[AnalyticsEvent]:
        stmt = select(AnalyticsEvent).where(AnalyticsEvent.user_id == user_id)
        if event_name:
            stmt = stmt.where(AnalyticsEvent.event_name == event_name)
        stmt = stmt.order_by(AnalyticsEvent.created_at.desc(),
                             AnalyticsEvent.id.desc()).limit(limit)
        return list((await db.execute(stmt)).scalars().all())

    @staticmethod
    async def _count(db: AsyncSession, user_id: int, event_name: EventName) -> int:
        stmt = select(func.count(AnalyticsEvent.id)).where(
            AnalyticsEvent.user_id == user_id,
            AnalyticsEvent.event_name == event_name.value,
        )
        return (await db.execute(stmt)).scalar_one()

    @staticmethod
    async def conversion_rate(db: AsyncSession, user_id: int) -> float:
        """Conversions per upsell impression, as a percentage."""
        impressions = await AnalyticsService._count(
            db, user_id, EventName.UPSELL_MODAL_SHOWN)
        if impressions == 0:
            return 0.0
        conversions = await AnalyticsService._count(
            db, user_id, EventName.PREMIUM_CONVERTED)
        return round(conversions / impressions * 100, 2)

    @staticmethod
    async def limit_hits_by_hour(db: AsyncSession, user_id: int) -> Dict[int, int]:
        events = await AnalyticsService.recent(
            db, user_id, EventName.DAILY_LIMIT_REACHED.value)
        tz = ZoneInfo(settings.limit_reset_timezone)
        hours = Counter(ensure_aware(e.created_at).astimezone(tz).hour for e in events)
        return dict(sorted(hours.items()))

    @staticmethod
    async def summary(db: AsyncSession, user_id: int) -> dict:
        stmt = (
            select(AnalyticsEvent.event_name, func.count(AnalyticsEvent.id))
            .where(AnalyticsEvent.user_id == user_id)
            .group_by(AnalyticsEvent.event_name)
        )
        counts = {name: count for name, count in (await db.execute(stmt)).all()}
        return {
            "eventCounts": counts,
            "conversionRate": await AnalyticsService.conversion_rate(db, user_id),
            "limitHitsByHour": await AnalyticsService.limit_hits_by_hour(db, user_id),
        }


def build_upsell_payload(snapshot: LimitSnapshot, show_modal: bool = True) -> dict:
    return {
        "modalType": "limit_reached",
        "limitType": snapshot.action_type.value,
        "showModal": show_modal,
        "title": {"en": "Daily limit reached!", "hi": "दैनिक सीमा पहुंच गई!"},
        "subtitle": {
            "en": "Upgrade to Premium for unlimited access",
            "hi": "असीमित एक्सेस के लिए प्रीमियम में अपग्रेड करें",
        },
        "options": [
            {"action": "upgrade",
             "label": {"en": "Unlock Premium", "hi": "प्रीमियम अनलॉक करें"}},
            {"action": "remind_tomorrow",
             "label": {"en": "Remind me tomorrow", "hi": "कल याद दिलाएं"}},
            {"action": "skip",
             "label": {"en": "Skip for now", "hi": "अभी के लिए छोड़ें"}},
        ],
        "resetsIn": snapshot.time_until_reset("en"),
        "resetsInHi": snapshot.time_until_reset("hi"),
        "resetAt": ensure_aware(snapshot.reset_at).isoformat(),
    }


class UpsellService:
    @staticmethod
    def _limit_properties(user: User, snapshot: LimitSnapshot) -> dict:
        return {
            "limit_type": snapshot.action_type.value,
            "daily_limit": snapshot.limit,
            "used_count": snapshot.used,
            "remaining_count": snapshot.remaining,
            "percentage_used": snapshot.percentage_used,
            "time_of_day": ensure_aware(snapshot.now).astimezone(
                ZoneInfo(settings.limit_reset_timezone)).strftime("%H:%M"),
            "is_peak_hours": is_peak_hours(snapshot.now),
            "user_segment": _segment(user),
            "event_category": "monetization",
        }

    @staticmethod
    async def reminder_active(db: AsyncSession, user_id: int,
                              now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        stmt = select(UpsellReminder).where(UpsellReminder.user_id == user_id)
        reminder = (await db.execute(stmt)).scalar_one_or_none()
        return reminder is not None and ensure_aware(reminder.remind_at) > now

    @staticmethod
    async def on_limit_reached(db: AsyncSession, user: User,
                               snapshot: LimitSnapshot) -> None:
        """The consume that used the last allowance."""
        props = UpsellService._limit_properties(user, snapshot)
        props["event_action"] = "limit_hit"
        await AnalyticsService.track(db, user.id, EventName.DAILY_LIMIT_REACHED, props)

    @staticmethod
    async def on_blocked_attempt(db: AsyncSession, user: User,
                                 snapshot: LimitSnapshot) -> dict:
        """A consume refused at the ceiling. Returns the upsell payload."""
        user_id, segment = user.id, _segment(user)
        await AnalyticsService.track(db, user_id, EventName.LIMIT_EXCEED_ATTEMPT, {
            "limit_type": snapshot.action_type.value,
            "event_category": "monetization",
            "event_action": "attempt_blocked",
        })

        # A pending "remind me tomorrow" suppresses the modal, not the block
        show_modal = not await UpsellService.reminder_active(db, user_id, snapshot.now)
        if show_modal:
            await AnalyticsService.track(db, user_id, EventName.UPSELL_MODAL_SHOWN, {
                "modal_type": "limit_reached",
                "trigger_action": f"consume_{snapshot.action_type.value}",
                "limit_type": snapshot.action_type.value,
                "user_segment": segment,
                "event_category": "monetization",
                "event_action": "impression",
            })
        return build_upsell_payload(snapshot, show_modal=show_modal)

    @staticmethod
    async def remind_tomorrow(db: AsyncSession, user: User,
                              now: Optional[datetime] = None) -> UpsellReminder:
        now = now or utcnow()
        remind_at = next_reset_at(now)
        stmt = select(UpsellReminder).where(UpsellReminder.user_id == user.id)
        reminder = (await db.execute(stmt)).scalar_one_or_none()
        if reminder is None:
            reminder = UpsellReminder(user_id=user.id, remind_at=remind_at)
            db.add(reminder)
        else:
            reminder.remind_at = remind_at
        await db.commit()
        await db.refresh(reminder)

        await AnalyticsService.track(db, user.id, EventName.REMIND_ME_TOMORROW_CLICKED, {
            "event_category": "monetization",
            "event_action": "remind_later",
        })
        await AnalyticsService.track(db, user.id, EventName.UPSELL_MODAL_DISMISSED, {
            "modal_type": "limit_reached",
            "dismiss_action": DismissAction.REMIND_LATER.value,
            "event_category": "monetization",
            "event_action": "dismissal",
        })
        return reminder

    @staticmethod
    async def dismiss(db: AsyncSession, user: User, modal_type: str,
                      action: DismissAction) -> None:
        await AnalyticsService.track(db, user.id, EventName.UPSELL_MODAL_DISMISSED, {
            "modal_type": modal_type,
            "dismiss_action": action.value,
            "event_category": "monetization",
            "event_action": "dismissal",
        })

    @staticmethod
    async def upgrade_click(db: AsyncSession, user: User, modal_type: str,
                            cta_position: str = "primary") -> None:
        await AnalyticsService.track(db, user.id, EventName.UPGRADE_CTA_CLICKED, {
            "modal_type": modal_type,
            "cta_position": cta_position,
            "event_category": "monetization",
            "event_action": "cta_click",
        })

    @staticmethod
    async def convert(db: AsyncSession, user_id: int, plan_type: str, price: float,
                      currency: str = "INR", payment_method: Optional[str] = None,
                      now: Optional[datetime] = None) -> bool:
        """
        Activate premium after a captured payment and record the conversion.

        Returns False when the user was already premium, so a repeated
        billing callback records nothing twice.
        """
        now = now or utcnow()
        user = await db.get(User, user_id)
        if user is None:
            raise ApiError(ErrorCode.USER_NOT_FOUND)

        impressions = await AnalyticsService.recent(
            db, user_id, EventName.UPSELL_MODAL_SHOWN.value)
        first_shown = ensure_aware(impressions[-1].created_at) if impressions else now

        result = await db.execute(
            update(User)
            .where(User.id == user_id, User.is_premium == False)
            .values(is_premium=True, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        converted = result.rowcount == 1
        await db.commit()
        if not converted:
            return False

        await db.refresh(user)
        await AnalyticsService.track(db, user_id, EventName.PREMIUM_CONVERTED, {
            "plan_type": plan_type,
            "price": price,
            "currency": currency,
            "payment_method": payment_method,
            "time_to_convert": max(0, int((now - first_shown).total_seconds())),
            "upsell_impressions": len(impressions),
            "event_category": "monetization",
            "event_action": "conversion",
            "revenue": price,
        })
        logger.info(f"User {user_id} converted to premium ({plan_type})")
        return True
