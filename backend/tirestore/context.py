from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional

from fastapi import Request

from .attempts import AttemptLedger
from .config import Settings, settings
from .limiter_factory import RateLimiterFactory
from .rate_limit import Clock, FixedWindowLimiter, LimitDecision
from .settings_store import SettingsStore
from .stats import StatsRecorder

logger = logging.getLogger("tirestore.security")


class LoginThrottle:
    """Per-address login window whose ceiling drops while the address has blocked identities."""

    def __init__(
        self,
        ledger: AttemptLedger,
        max_requests: int = 10,
        max_requests_flagged: int = 3,
        window_seconds: float = 15 * 60,
        clock: Clock = time.time,
    ) -> None:
        self.ledger = ledger
        self.max_requests = max_requests
        self.max_requests_flagged = max_requests_flagged
        self.window_seconds = window_seconds
        self._counter = FixedWindowLimiter(clock=clock)

    def limit_for(self, address: str) -> int:
        if self.ledger.address_has_blocks(address):
            return self.max_requests_flagged
        return self.max_requests

    def hit(self, address: str) -> LimitDecision:
        return self._counter.hit(address, self.limit_for(address), self.window_seconds)

    def rejection(self) -> dict[str, object]:
        return {
            "error": "Too many login attempts",
            "message": "Too many login attempts from this IP address. Please try again later.",
            "retryAfter": round(self.window_seconds),
        }

    def prune(self) -> int:
        return self._counter.prune(self.window_seconds)

    def reset(self) -> None:
        self._counter.reset()


class SecurityContext:
    """Owns every piece of process-local gating state for one application instance."""

    def __init__(
        self,
        store: SettingsStore,
        ledger: AttemptLedger,
        stats: StatsRecorder,
        limiters: RateLimiterFactory,
        login_throttle: LoginThrottle,
        suspicion_threshold: int = 3,
        support_email: str = "security@tirestore.com",
        sweep_interval_seconds: float = 0,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.stats = stats
        self.limiters = limiters
        self.login_throttle = login_throttle
        self.suspicion_threshold = suspicion_threshold
        self.support_email = support_email
        self.sweep_interval_seconds = sweep_interval_seconds
        self._sweeper: Optional[asyncio.Task[None]] = None

    @classmethod
    def from_settings(
        cls,
        config: Settings = settings,
        clock: Callable[[], float] = time.time,
    ) -> SecurityContext:
        store = SettingsStore(ttl_seconds=config.settings_cache_ttl_seconds, clock=clock)
        ledger = AttemptLedger(
            window_seconds=config.attempt_window_seconds,
            warning_threshold=config.attempt_warning_threshold,
            block_threshold=config.attempt_block_threshold,
            clock=clock,
        )
        return cls(
            store=store,
            ledger=ledger,
            stats=StatsRecorder(window_hours=config.stats_window_hours, clock=clock),
            limiters=RateLimiterFactory(
                store,
                update_interval_seconds=config.limiter_update_interval_seconds,
                clock=clock,
            ),
            login_throttle=LoginThrottle(
                ledger,
                max_requests=config.login_throttle_max,
                max_requests_flagged=config.login_throttle_max_flagged,
                window_seconds=config.login_throttle_window_seconds,
                clock=clock,
            ),
            suspicion_threshold=config.suspicion_threshold,
            support_email=config.security_support_email,
            sweep_interval_seconds=config.attempt_sweep_interval_seconds,
        )

    def reset(self) -> None:
        self.ledger.reset()
        self.stats.reset()
        self.login_throttle.reset()
        self.limiters.invalidate()

    def start(self) -> None:
        if self.sweep_interval_seconds > 0 and self._sweeper is None:
            self._sweeper = asyncio.create_task(self._sweep_forever())

    async def dispose(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    def sweep(self) -> int:
        """Reclaim expired ledger buckets and limiter counters nobody has touched since they expired."""
        dropped = self.ledger.sweep() + self.limiters.prune() + self.login_throttle.prune()
        if dropped:
            logger.info(
                "Expired security state dropped",
                extra={"event": "security_sweep", "attempt_count": dropped},
            )
        return dropped

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            self.sweep()


def get_security(request: Request) -> SecurityContext:
    return request.app.state.security
