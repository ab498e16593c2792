"""
Persistent countdown timer.

The timer keeps its start time in a string key/value store (the same shape
as browser localStorage), so re-creating a timer for the same key picks up
where the previous one left off instead of restarting. There is no
background thread: remaining time is recomputed from the clock on every
read, and `tick()` is what a fixed-interval caller invokes.
"""
import json
import logging
import math
import time
from typing import Callable, MutableMapping, Optional

logger = logging.getLogger(__name__)

STORAGE_PREFIX = "bandhan_timer_"


def format_time(seconds: int) -> str:
    """Format seconds as M:SS ("0:28", "1:05")."""
    seconds = max(0, int(seconds))
    mins, secs = divmod(seconds, 60)
    return f"{mins}:{secs:02d}"


def format_time_hindi(seconds: int) -> str:
    seconds = max(0, int(seconds))
    mins, secs = divmod(seconds, 60)
    if mins > 0:
        return f"{mins} मिनट {secs} सेकंड"
    return f"{secs} सेकंड"


def format_hours_minutes(seconds: int, language: str = "en") -> str:
    """Coarse duration used for reset countdowns: "4h 23m" / "23m"."""
    seconds = max(0, int(seconds))
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    if language == "hi":
        if hours > 0:
            return f"{hours} घंटे {minutes} मिनट"
        return f"{minutes} मिनट"
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


class CountdownTimer:
    """
    Countdown that survives re-creation.

    Stored state is `{"started_at": <epoch seconds or null>, "remaining": <seconds>}`:
    a running timer has `started_at` set and `remaining` is the budget it
    started with; a paused or finished timer has `started_at = null`.
    """

    def __init__(
        self,
        duration: int,
        storage_key: str,
        store: Optional[MutableMapping[str, str]] = None,
        auto_start: bool = True,
        on_complete: Optional[Callable[[], None]] = None,
        on_tick: Optional[Callable[[int], None]] = None,
        clock: Callable[[], float] = time.time,
    ):
        if duration < 0:
            raise ValueError("duration must be non-negative")
        self.duration = duration
        self.storage_key = f"{STORAGE_PREFIX}{storage_key}"
        self.store = store if store is not None else {}
        self.auto_start = auto_start
        self.on_complete = on_complete
        self.on_tick = on_tick
        self.clock = clock
        self._complete_fired = False

        state = self._load()
        if self.auto_start:
            if state is None:
                self.start()
            elif state["started_at"] is None and state["remaining"] > 0:
                self.start()

    # Storage

    def _load(self) -> Optional[dict]:
        raw = self.store.get(self.storage_key)
        if raw is None:
            return None
        try:
            data = json.loads(raw)
            return {
                "started_at": data.get("started_at"),
                "remaining": int(data.get("remaining", self.duration)),
            }
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning(f"Discarding unreadable timer state for {self.storage_key}: {e}")
            return None

    def _save(self, started_at: Optional[float], remaining: int) -> None:
        self.store[self.storage_key] = json.dumps(
            {"started_at": started_at, "remaining": remaining})

    def _clear(self) -> None:
        self.store.pop(self.storage_key, None)

    # State

    def _compute(self, state: Optional[dict]) -> int:
        if state is None:
            return self.duration
        if state["started_at"] is None:
            return max(0, state["remaining"])
        elapsed = self.clock() - float(state["started_at"])
        return max(0, math.ceil(state["remaining"] - elapsed))

    def _refresh(self) -> tuple:
        """Return (remaining, running) and settle a timer that just ran out."""
        state = self._load()
        remaining = self._compute(state)
        running = state is not None and state["started_at"] is not None
        if running and remaining <= 0:
            self._save(None, 0)
            running = False
            self._fire_complete()
        return remaining, running

    def _fire_complete(self) -> None:
        if self._complete_fired:
            return
        self._complete_fired = True
        if self.on_complete is not None:
            self.on_complete()

    @property
    def remaining(self) -> int:
        return self._refresh()[0]

    @property
    def is_active(self) -> bool:
        remaining, running = self._refresh()
        return running and remaining > 0

    @property
    def is_complete(self) -> bool:
        remaining, running = self._refresh()
        state = self._load()
        return not running and remaining == 0 and state is not None

    @property
    def formatted(self) -> str:
        return format_time(self.remaining)

    @property
    def formatted_hindi(self) -> str:
        return format_time_hindi(self.remaining)

    # Controls

    def tick(self) -> int:
        """Called once per interval by the owner; returns remaining seconds."""
        remaining, running = self._refresh()
        if running and remaining > 0 and self.on_tick is not None:
            self.on_tick(remaining)
        return remaining

    def start(self) -> None:
        remaining, running = self._refresh()
        if running or remaining <= 0:
            return
        self._complete_fired = False
        self._save(self.clock(), remaining)

    def pause(self) -> None:
        remaining, running = self._refresh()
        if running:
            self._save(None, remaining)

    def reset(self) -> None:
        """Back to the full duration; running again only if auto_start."""
        self._clear()
        self._complete_fired = False
        if self.auto_start:
            self.start()
        else:
            self._save(None, self.duration)

    def skip(self) -> None:
        self._save(None, 0)
        self._fire_complete()


def get_timer_remaining(
    store: MutableMapping[str, str],
    storage_key: str,
    default_duration: int,
    clock: Callable[[], float] = time.time,
) -> int:
    """Remaining seconds for a stored timer without starting it."""
    timer = CountdownTimer(default_duration, storage_key,
                           store=store, auto_start=False, clock=clock)
    return timer.remaining


def clear_all_timers(store: MutableMapping[str, str]) -> None:
    for key in [k for k in store if k.startswith(STORAGE_PREFIX)]:
        store.pop(key, None)
