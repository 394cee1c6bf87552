from __future__ import annotations

from dataclasses import dataclass
import logging
import threading
import time
from typing import Any, Callable, Mapping, Optional

from .metrics import RATE_LIMITER_REBUILDS_TOTAL
from .rate_limit import (
    DEFAULT_POLICIES,
    DEFAULT_SPEED_LIMIT,
    LIMITER_CATEGORIES,
    SPEED_LIMIT_KEY,
    PolicyLimiter,
    RateLimitPolicy,
    SpeedLimiter,
    SpeedLimitPolicy,
)
from .settings_store import RATE_LIMIT_CATEGORY, SettingsStore

logger = logging.getLogger("tirestore.rate_limit")


@dataclass(frozen=True)
class LimiterSet:
    general: PolicyLimiter
    auth: PolicyLimiter
    payment: PolicyLimiter
    upload: PolicyLimiter
    speed: SpeedLimiter

    def for_category(self, category: str) -> PolicyLimiter:
        if category not in LIMITER_CATEGORIES:
            raise KeyError(category)
        return getattr(self, category)


class RateLimiterFactory:
    """Builds the limiter family from stored policies and hands out the cached set.

    The set is re-read at most once per ``update_interval_seconds``; a category
    whose policy is unchanged keeps its limiter (and its counts), a changed one is
    replaced by a fresh limiter. ``invalidate()`` drops everything so the next
    request rebuilds from storage immediately.
    """

    def __init__(
        self,
        store: SettingsStore,
        update_interval_seconds: float = 300,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.update_interval_seconds = update_interval_seconds
        self._clock = clock
        self._limiters: Optional[LimiterSet] = None
        self._last_build = 0.0
        self._lock = threading.Lock()

    def get_limiters(self) -> LimiterSet:
        now = self._clock()
        current = self._limiters
        if current is not None and now - self._last_build < self.update_interval_seconds:
            return current

        with self._lock:
            current = self._limiters
            if current is not None and now - self._last_build < self.update_interval_seconds:
                return current

            stored = self.store.get(RATE_LIMIT_CATEGORY)
            try:
                rebuilt = self._build(stored, current)
            except ValueError as exc:
                logger.error(
                    "Rate limiter rebuild failed; keeping last known good limiters",
                    extra={"event": "rate_limiter_build_failed", "reason": str(exc)},
                )
                rebuilt = current if current is not None else self._build({}, None)

            self._limiters = rebuilt
            self._last_build = now
            return rebuilt

    def invalidate(self) -> None:
        with self._lock:
            self._limiters = None
            self._last_build = 0.0
        self.store.invalidate(RATE_LIMIT_CATEGORY)
        logger.info("Rate limiter cache cleared", extra={"event": "rate_limiter_invalidated"})

    def prune(self) -> int:
        """Drop counters whose window has elapsed; returns how many were dropped."""
        current = self._limiters
        if current is None:
            return 0
        dropped = sum(current.for_category(category).prune() for category in LIMITER_CATEGORIES)
        return dropped + current.speed.prune()

    def _build(self, stored: Mapping[str, Any], previous: Optional[LimiterSet]) -> LimiterSet:
        policies: dict[str, PolicyLimiter] = {}
        for category in LIMITER_CATEGORIES:
            try:
                policy = RateLimitPolicy.from_dict(stored.get(category) or {}, DEFAULT_POLICIES[category])
            except ValueError as exc:
                raise ValueError(f"{category}: {exc}") from exc

            existing = previous.for_category(category) if previous is not None else None
            if existing is not None and existing.policy == policy:
                policies[category] = existing
            else:
                policies[category] = PolicyLimiter(category, policy, clock=self._clock)

        try:
            speed_policy = SpeedLimitPolicy.from_dict(stored.get(SPEED_LIMIT_KEY) or {}, DEFAULT_SPEED_LIMIT)
        except ValueError as exc:
            raise ValueError(f"{SPEED_LIMIT_KEY}: {exc}") from exc

        if previous is not None and previous.speed.policy == speed_policy:
            speed = previous.speed
        else:
            speed = SpeedLimiter(speed_policy, clock=self._clock)

        RATE_LIMITER_REBUILDS_TOTAL.inc()
        logger.info(
            "Rate limiters updated from stored settings",
            extra={
                "event": "rate_limiters_built",
                "reason": ", ".join(
                    f"{name}={limiter.policy.max_requests}/{limiter.policy.window_ms}ms"
                    for name, limiter in policies.items()
                ),
            },
        )
        return LimiterSet(speed=speed, **policies)
