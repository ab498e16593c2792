"""
Daily action limits for free users.

Two renditions share the reset and display rules:

* `DailyLimitCounter` keeps `{"used", "reset_at"}` as JSON in a string
  key/value store, the way a client caches its own counter.
* `DailyLimitService` is the authoritative server-side counter backed by
  the `daily_usage` table. Increments are a single conditional UPDATE, so
  concurrent requests can never push `used` past the ceiling.

Counters reset lazily: the first read at or after `reset_at` zeroes the
count and moves `reset_at` to the next local midnight.
"""
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone
from enum import Enum
from typing import Callable, MutableMapping, Optional, Tuple
from zoneinfo import ZoneInfo

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..exceptions import ApiError, ErrorCode
from ..models import DailyUsage, User
from ..utils import ensure_aware, utcnow
from .countdown import format_hours_minutes

logger = logging.getLogger(__name__)


class ActionType(str, Enum):
    PROFILES = "profiles"
    CHATS = "chats"
    LIKES = "likes"


def parse_action(value: str) -> ActionType:
    try:
        return ActionType(value)
    except ValueError:
        raise ApiError(
            ErrorCode.INVALID_INPUT,
            f"Unknown action type: {value}",
            details={"allowed": [a.value for a in ActionType]},
        )


def limit_for(action: ActionType) -> int:
    return int(settings.daily_limits.get(action.value, 0))


def next_reset_at(now: datetime, tz_name: Optional[str] = None) -> datetime:
    """The first local midnight strictly after `now`, returned in UTC."""
    tz = ZoneInfo(tz_name or settings.limit_reset_timezone)
    local_now = ensure_aware(now).astimezone(tz)
    tomorrow = local_now.date() + timedelta(days=1)
    midnight = datetime.combine(tomorrow, time.min, tzinfo=tz)
    return midnight.astimezone(timezone.utc)


def color_state(remaining: int, limit: int) -> str:
    """green above 60% remaining, orange from 20% to 60%, red below 20%."""
    if limit <= 0:
        return "red"
    pct = remaining / limit * 100
    if pct > 60:
        return "green"
    if pct >= 20:
        return "orange"
    return "red"


@dataclass
class DailyLimitConfig:
    daily_limit: int
    action_type: ActionType
    storage_key: Optional[str] = None

    def __post_init__(self):
        if self.daily_limit <= 0:
            raise ValueError("daily_limit must be positive")
        self.action_type = ActionType(self.action_type)
        if not self.storage_key:
            self.storage_key = f"bandhan_daily_{self.action_type.value}"


@dataclass
class LimitSnapshot:
    """Point-in-time view of one counter, with everything the UI renders."""
    action_type: ActionType
    used: int
    limit: Optional[int]
    reset_at: datetime
    now: datetime = field(default_factory=utcnow)

    @property
    def unlimited(self) -> bool:
        return self.limit is None

    @property
    def remaining(self) -> Optional[int]:
        if self.unlimited:
            return None
        return max(0, self.limit - self.used)

    @property
    def is_limit_reached(self) -> bool:
        return not self.unlimited and self.used >= self.limit

    @property
    def percentage_used(self) -> int:
        if self.unlimited or self.limit <= 0:
            return 0
        return round(self.used / self.limit * 100)

    @property
    def percentage_remaining(self) -> int:
        if self.unlimited:
            return 100
        return 100 - self.percentage_used

    @property
    def color_state(self) -> str:
        if self.unlimited:
            return "green"
        return color_state(self.remaining, self.limit)

    @property
    def seconds_until_reset(self) -> int:
        delta = ensure_aware(self.reset_at) - ensure_aware(self.now)
        return max(0, int(delta.total_seconds()))

    def time_until_reset(self, language: str = "en") -> str:
        return format_hours_minutes(self.seconds_until_reset, language)

    def to_dict(self) -> dict:
        return {
            "actionType": self.action_type.value,
            "used": self.used,
            "limit": self.limit,
            "remaining": self.remaining,
            "unlimited": self.unlimited,
            "isLimitReached": self.is_limit_reached,
            "percentageUsed": self.percentage_used,
            "percentageRemaining": self.percentage_remaining,
            "colorState": self.color_state,
            "resetAt": ensure_aware(self.reset_at).isoformat(),
            "secondsUntilReset": self.seconds_until_reset,
            "timeUntilReset": self.time_until_reset("en"),
            "timeUntilResetHi": self.time_until_reset("hi"),
        }


class DailyLimitCounter:
    """Counter persisted in a string key/value store."""

    def __init__(
        self,
        config: DailyLimitConfig,
        store: Optional[MutableMapping[str, str]] = None,
        clock: Callable[[], datetime] = utcnow,
        tz_name: Optional[str] = None,
    ):
        self.config = config
        self.store = store if store is not None else {}
        self.clock = clock
        self.tz_name = tz_name or settings.limit_reset_timezone

    @property
    def limit(self) -> int:
        return self.config.daily_limit

    def _write(self, used: int, reset_at: datetime) -> None:
        self.store[self.config.storage_key] = json.dumps(
            {"used": used, "reset_at": reset_at.isoformat()})

    def _fresh(self, now: datetime) -> Tuple[int, datetime]:
        reset_at = next_reset_at(now, self.tz_name)
        self._write(0, reset_at)
        return 0, reset_at

    def _read(self) -> Tuple[int, datetime]:
        now = self.clock()
        raw = self.store.get(self.config.storage_key)
        if raw is None:
            return self._fresh(now)
        try:
            data = json.loads(raw)
            used = int(data["used"])
            reset_at = ensure_aware(datetime.fromisoformat(data["reset_at"]))
        except (ValueError, TypeError, KeyError) as e:
            logger.warning(
                f"Resetting unreadable counter {self.config.storage_key}: {e}")
            return self._fresh(now)
        if now >= reset_at:
            return self._fresh(now)
        return used, reset_at

    def snapshot(self) -> LimitSnapshot:
        used, reset_at = self._read()
        return LimitSnapshot(self.config.action_type, used, self.limit,
                             reset_at, now=self.clock())

    @property
    def used(self) -> int:
        return self._read()[0]

    @property
    def remaining(self) -> int:
        return self.snapshot().remaining

    @property
    def is_limit_reached(self) -> bool:
        return self.snapshot().is_limit_reached

    @property
    def percentage_used(self) -> int:
        return self.snapshot().percentage_used

    @property
    def percentage_remaining(self) -> int:
        return self.snapshot().percentage_remaining

    @property
    def color_state(self) -> str:
        return self.snapshot().color_state

    def can_perform_action(self) -> bool:
        return not self.is_limit_reached

    def time_until_reset(self, language: str = "en") -> str:
        return self.snapshot().time_until_reset(language)

    def increment(self) -> bool:
        """Count one action. Returns False, unchanged, when at the ceiling."""
        used, reset_at = self._read()
        if used >= self.limit:
            return False
        self._write(used + 1, reset_at)
        return True

    def decrement(self) -> None:
        used, reset_at = self._read()
        self._write(max(0, used - 1), reset_at)

    def reset(self) -> None:
        self._fresh(self.clock())


class DailyLimitService:
    @staticmethod
    async def _get_or_create(db: AsyncSession, user_id: int,
                             action: ActionType, now: datetime) -> DailyUsage:
        stmt = select(DailyUsage).where(
            DailyUsage.user_id == user_id,
            DailyUsage.action_type == action.value,
        )
        row = (await db.execute(stmt)).scalar_one_or_none()
        if row is not None:
            return row

        row = DailyUsage(
            user_id=user_id,
            action_type=action.value,
            used=0,
            daily_limit=limit_for(action),
            reset_at=next_reset_at(now),
        )
        db.add(row)
        try:
            await db.commit()
        except IntegrityError:
            # Another request created the row first
            await db.rollback()
            row = (await db.execute(stmt)).scalar_one()
        return row

    @staticmethod
    async def _apply_reset(db: AsyncSession, row: DailyUsage, now: datetime) -> None:
        if now < ensure_aware(row.reset_at):
            return
        # Guarded on reset_at so two concurrent readers reset only once
        await db.execute(
            update(DailyUsage)
            .where(DailyUsage.id == row.id, DailyUsage.reset_at <= now)
            .values(used=0, reset_at=next_reset_at(now),
                    daily_limit=limit_for(ActionType(row.action_type)))
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        await db.refresh(row)

    @staticmethod
    def _snapshot(row: DailyUsage, action: ActionType, now: datetime) -> LimitSnapshot:
        return LimitSnapshot(action, row.used, row.daily_limit,
                             ensure_aware(row.reset_at), now=now)

    @staticmethod
    async def get_snapshot(db: AsyncSession, user: User, action: ActionType,
                           now: Optional[datetime] = None) -> LimitSnapshot:
        now = now or utcnow()
        if user.is_premium:
            return LimitSnapshot(action, 0, None, next_reset_at(now), now=now)
        row = await DailyLimitService._get_or_create(db, user.id, action, now)
        await DailyLimitService._apply_reset(db, row, now)
        return DailyLimitService._snapshot(row, action, now)

    @staticmethod
    async def get_all(db: AsyncSession, user: User,
                      now: Optional[datetime] = None) -> list:
        now = now or utcnow()
        return [await DailyLimitService.get_snapshot(db, user, action, now)
                for action in ActionType]

    @staticmethod
    async def consume(db: AsyncSession, user: User, action: ActionType,
                      now: Optional[datetime] = None) -> Tuple[bool, LimitSnapshot]:
        """
        Count one action for `user`.

        Returns `(allowed, snapshot)`. A refused consume leaves `used`
        untouched. Premium users are never counted.
        """
        now = now or utcnow()
        if user.is_premium:
            return True, LimitSnapshot(action, 0, None, next_reset_at(now), now=now)

        row = await DailyLimitService._get_or_create(db, user.id, action, now)
        await DailyLimitService._apply_reset(db, row, now)

        result = await db.execute(
            update(DailyUsage)
            .where(DailyUsage.id == row.id,
                   DailyUsage.used < DailyUsage.daily_limit)
            .values(used=DailyUsage.used + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        allowed = result.rowcount == 1
        await db.commit()
        await db.refresh(row)
        return allowed, DailyLimitService._snapshot(row, action, now)

    @staticmethod
    async def release(db: AsyncSession, user: User, action: ActionType,
                      now: Optional[datetime] = None) -> LimitSnapshot:
        """Undo one counted action, never below zero."""
        now = now or utcnow()
        if user.is_premium:
            return LimitSnapshot(action, 0, None, next_reset_at(now), now=now)
        row = await DailyLimitService._get_or_create(db, user.id, action, now)
        await DailyLimitService._apply_reset(db, row, now)
        await db.execute(
            update(DailyUsage)
            .where(DailyUsage.id == row.id, DailyUsage.used > 0)
            .values(used=DailyUsage.used - 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        await db.refresh(row)
        return DailyLimitService._snapshot(row, action, now)
