"""
Rate Limiting.

This module provides an in-memory, fixed-window-per-horizon rate limiter
for the gateway. A limiter is configured with one or more horizons
(e.g. hourly and daily) and admits a request only when every horizon
still has quota; an admitted request consumes one unit from all of them.

The gateway runs two instances of the same limiter:
- quota: per-client hourly + daily generation limits
- api: a single coarse horizon over all gateway API traffic

State lives in process memory and is lost on restart. A multi-process
deployment needs a shared store instead (see DESIGN.md).
"""

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional

import structlog

logger = structlog.get_logger(__name__)

# Remaining value reported for every horizon when limiting is disabled
UNLIMITED_SENTINEL = 999


@dataclass(frozen=True)
class Horizon:
    """One independent time window tracked by the limiter."""

    name: str
    limit: int
    window_seconds: float


@dataclass
class RateWindowState:
    """Counter for one identity in one horizon."""

    count: int
    window_start: float
    window_duration: float

    def expired(self, now: float) -> bool:
        return now > self.window_start + self.window_duration

    def reset_in_ms(self, now: float) -> int:
        return max(0, int((self.window_start + self.window_duration - now) * 1000))


@dataclass
class RateLimitDecision:
    """Result of a rate limit check. Computed per call, never stored."""

    allowed: bool
    remaining: Dict[str, int]
    reset_in_ms: Dict[str, int]
    limits: Dict[str, int] = field(default_factory=dict)

    @property
    def retry_after_ms(self) -> int:
        """Time until every exhausted horizon has reset."""
        exhausted = [self.reset_in_ms[name] for name, left in self.remaining.items() if left <= 0]
        return max(exhausted) if exhausted else 0

    def to_limits(self, include_reset: bool = False) -> Dict[str, Dict[str, object]]:
        """Per-horizon payload attached to gateway responses."""
        limits: Dict[str, Dict[str, object]] = {}
        for name, left in self.remaining.items():
            entry: Dict[str, object] = {
                "remaining": left,
                "resetInMs": self.reset_in_ms.get(name, 0),
            }
            if include_reset:
                entry["resetIn"] = format_time_remaining(self.reset_in_ms.get(name, 0))
            limits[name] = entry
        return limits

    def to_headers(self) -> Dict[str, str]:
        """X-RateLimit-* headers for the first horizon."""
        name = next(iter(self.remaining))
        reset_at = datetime.now(timezone.utc) + timedelta(milliseconds=self.reset_in_ms.get(name, 0))
        return {
            "X-RateLimit-Limit": str(self.limits.get(name, 0)),
            "X-RateLimit-Remaining": str(self.remaining[name]),
            "X-RateLimit-Reset": reset_at.isoformat().replace("+00:00", "Z"),
        }


class RateLimiter:
    """
    Multi-horizon rate limiter with in-memory state.

    Each identity owns one RateWindowState per horizon. A window resets
    lazily the first time it is observed past its end. Checks and
    increments happen under a single lock so concurrent requests for the
    same identity cannot lose updates.
    """

    def __init__(
        self,
        horizons: Iterable[Horizon],
        *,
        dev_mode: bool = False,
        clock: Callable[[], float] = time.time,
        sweep_interval: Optional[float] = 3600,
        name: str = "default",
    ):
        self.horizons: List[Horizon] = list(horizons)
        if not self.horizons:
            raise ValueError("RateLimiter needs at least one horizon")
        self.dev_mode = dev_mode
        self.name = name
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._store: Dict[str, Dict[str, RateWindowState]] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()
        self._longest = max(self.horizons, key=lambda h: h.window_seconds)

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, identity: str) -> bool:
        return identity in self._store

    @property
    def limits(self) -> Dict[str, int]:
        return {h.name: h.limit for h in self.horizons}

    def check(self, identity: str) -> RateLimitDecision:
        """
        Check and, when admitted, consume one unit for an identity.

        Never raises for normal operation; exhaustion is reported with
        allowed=False.
        """
        if self.dev_mode:
            return RateLimitDecision(
                allowed=True,
                remaining={h.name: UNLIMITED_SENTINEL for h in self.horizons},
                reset_in_ms={h.name: 0 for h in self.horizons},
                limits=self.limits,
            )

        now = self._clock()

        with self._lock:
            if self._sweep_interval and now - self._last_sweep >= self._sweep_interval:
                self._sweep_locked(now)

            windows = self._store.setdefault(identity, {})
            for horizon in self.horizons:
                state = windows.get(horizon.name)
                if state is None or state.expired(now):
                    windows[horizon.name] = RateWindowState(
                        count=0,
                        window_start=now,
                        window_duration=horizon.window_seconds,
                    )

            allowed = all(windows[h.name].count < h.limit for h in self.horizons)
            if allowed:
                for horizon in self.horizons:
                    windows[horizon.name].count += 1

            remaining = {h.name: max(0, h.limit - windows[h.name].count) for h in self.horizons}
            reset_in_ms = {h.name: windows[h.name].reset_in_ms(now) for h in self.horizons}

        if not allowed:
            logger.info(
                "Rate limit exceeded",
                limiter=self.name,
                identity=identity,
                remaining=remaining,
            )

        return RateLimitDecision(
            allowed=allowed,
            remaining=remaining,
            reset_in_ms=reset_in_ms,
            limits=self.limits,
        )

    def sweep(self) -> int:
        """Drop identities whose longest-horizon window has expired."""
        now = self._clock()
        with self._lock:
            return self._sweep_locked(now)

    def _sweep_locked(self, now: float) -> int:
        stale = []
        for identity, windows in self._store.items():
            state = windows.get(self._longest.name)
            if state is None or state.expired(now):
                stale.append(identity)
        for identity in stale:
            del self._store[identity]
        self._last_sweep = now
        if stale:
            logger.debug("Rate limit sweep", limiter=self.name, removed=len(stale))
        return len(stale)

    def reset(self, identity: Optional[str] = None) -> None:
        """Clear state for one identity, or for all of them."""
        with self._lock:
            if identity is None:
                self._store.clear()
            else:
                self._store.pop(identity, None)


def format_time_remaining(ms: int) -> str:
    """Format a millisecond duration as '1h 5m', '3m 20s' or '42s'."""
    seconds = max(0, int(ms)) // 1000
    minutes = seconds // 60
    hours = minutes // 60

    if hours > 0:
        return f"{hours}h {minutes % 60}m"
    if minutes > 0:
        return f"{minutes}m {seconds % 60}s"
    return f"{seconds}s"
