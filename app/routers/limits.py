from fastapi import APIRouter, Depends, Query
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from ..database import get_db
from ..dependencies import require_billing_token
from ..exceptions import ApiError, ErrorCode
from ..models import User
from ..schemas import (
    AnalyticsEventResponse,
    PremiumConversionRequest,
    UpgradeClickRequest,
    UpsellDismissRequest,
)
from ..services.analytics import AnalyticsService, UpsellService
from ..services.daily_limit import DailyLimitService, parse_action
from ..services.jwt_service import JWTService
from ..utils import ensure_aware

router = APIRouter(
    tags=["limits"],
    responses={429: {"description": "Daily limit reached"}},
)


@router.get("/limits")
async def get_limits(
    current_user: User = Depends(JWTService.get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Today's counters for every action.

    Limits reset at midnight IST. Premium users are reported as unlimited.
    """
    snapshots = await DailyLimitService.get_all(db, current_user)
    return {
        "isPremium": bool(current_user.is_premium),
        "limits": {s.action_type.value: s.to_dict() for s in snapshots},
    }


@router.get("/limits/{action}")
async def get_limit(
    action: str,
    current_user: User = Depends(JWTService.get_current_user),
    db: AsyncSession = Depends(get_db),
):
    snapshot = await DailyLimitService.get_snapshot(db, current_user, parse_action(action))
    return snapshot.to_dict()


@router.post("/limits/{action}/consume")
async def consume_limit(
    action: str,
    current_user: User = Depends(JWTService.get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Count one `profiles`, `chats` or `likes` action.

    At the limit the action is refused with `429 DAILY_LIMIT_REACHED`; the
    error details carry the counter and the upsell modal payload. The count
    never exceeds the limit, even under concurrent requests.
    """
    allowed, snapshot = await DailyLimitService.consume(db, current_user, parse_action(action))

    if not allowed:
        upsell = await UpsellService.on_blocked_attempt(db, current_user, snapshot)
        raise ApiError(
            ErrorCode.DAILY_LIMIT_REACHED,
            details={"limit": snapshot.to_dict(), "upsell": upsell},
            requires_action="UPGRADE",
        )

    if snapshot.is_limit_reached:
        await UpsellService.on_limit_reached(db, current_user, snapshot)

    return {"allowed": True, "limit": snapshot.to_dict()}


@router.post("/limits/{action}/release")
async def release_limit(
    action: str,
    current_user: User = Depends(JWTService.get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Give back one counted action when the client could not complete it
    (for example a like that failed to send). Never goes below zero.
    """
    snapshot = await DailyLimitService.release(db, current_user, parse_action(action))
    return {"limit": snapshot.to_dict()}


@router.post("/upsell/remind-tomorrow")
async def remind_tomorrow(
    current_user: User = Depends(JWTService.get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Snooze the upsell modal until the next reset. Limits are unaffected."""
    reminder = await UpsellService.remind_tomorrow(db, current_user)
    return {
        "message": "We'll remind you tomorrow",
        "remindAt": ensure_aware(reminder.remind_at).isoformat(),
    }


@router.post("/upsell/dismiss")
async def dismiss_upsell(
    payload: UpsellDismissRequest,
    current_user: User = Depends(JWTService.get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await UpsellService.dismiss(db, current_user, payload.modal_type, payload.action)
    return {"message": "Dismissed"}


@router.post("/upsell/upgrade-click")
async def upgrade_click(
    payload: UpgradeClickRequest,
    current_user: User = Depends(JWTService.get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await UpsellService.upgrade_click(db, current_user, payload.modal_type, payload.cta_position)
    return {"message": "Recorded", "redirectTo": "/premium"}


@router.post("/upsell/convert", dependencies=[Depends(require_billing_token)])
async def convert_to_premium(
    payload: PremiumConversionRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Billing callback after a captured payment. Lifts the daily limits and
    records `premium_converted`. Repeated callbacks for the same user are
    accepted and ignored.
    """
    converted = await UpsellService.convert(
        db, payload.user_id, payload.plan_type, payload.price,
        payload.currency, payload.payment_method,
    )
    return {"userId": payload.user_id, "isPremium": True, "converted": converted}


@router.get("/analytics/events")
async def list_events(
    event_name: Optional[str] = Query(None, alias="eventName"),
    limit: int = Query(100, ge=1, le=100),
    current_user: User = Depends(JWTService.get_current_user),
    db: AsyncSession = Depends(get_db),
):
    events = await AnalyticsService.recent(db, current_user.id, event_name, limit)
    return {
        "events": [
            AnalyticsEventResponse.model_validate(e).model_dump(by_alias=True, mode="json")
            for e in events
        ],
        "total": len(events),
    }


@router.get("/analytics/summary")
async def analytics_summary(
    current_user: User = Depends(JWTService.get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Event counts, upsell conversion rate and limit hits by hour (IST)."""
    return await AnalyticsService.summary(db, current_user.id)
