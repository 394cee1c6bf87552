from __future__ import annotations

from dataclasses import dataclass, field
import threading
import time
from typing import Callable

from .rate_limit import LIMITER_CATEGORIES

TOP_BLOCKED_LIMIT = 10


@dataclass(frozen=True)
class BlockedAddress:
    address: str
    count: int


@dataclass(frozen=True)
class WindowSnapshot:
    requests: int
    blocked: int
    unique_address_count: int


@dataclass(frozen=True)
class StatsSnapshot:
    total_requests: int
    blocked_requests: int
    top_blocked_addresses: list[BlockedAddress]
    rate_limit_hits: dict[str, int]
    last_24_hours: WindowSnapshot


@dataclass
class _RollingWindow:
    started_at: float
    requests: int = 0
    blocked: int = 0
    addresses: set[str] = field(default_factory=set)


class StatsRecorder:
    """Cumulative and rolling-window counters of allowed and rejected requests."""

    def __init__(self, window_hours: int = 24, clock: Callable[[], float] = time.time) -> None:
        self.window_seconds = window_hours * 60 * 60
        self._clock = clock
        self._lock = threading.Lock()
        self._zero()

    def _zero(self) -> None:
        self._total_requests = 0
        self._blocked_requests = 0
        self._rate_limit_hits = {category: 0 for category in LIMITER_CATEGORIES}
        self._address_blocks: dict[str, int] = {}
        self._window = _RollingWindow(started_at=self._clock())

    def _current_window(self) -> _RollingWindow:
        now = self._clock()
        if now - self._window.started_at >= self.window_seconds:
            self._window = _RollingWindow(started_at=now)
        return self._window

    def track_hit(self, category: str, address: str) -> None:
        with self._lock:
            self._total_requests += 1
            self._blocked_requests += 1
            self._rate_limit_hits[category] = self._rate_limit_hits.get(category, 0) + 1
            self._address_blocks[address] = self._address_blocks.get(address, 0) + 1

            window = self._current_window()
            window.requests += 1
            window.blocked += 1
            window.addresses.add(address)

    def track_success(self, address: str) -> None:
        with self._lock:
            self._total_requests += 1

            window = self._current_window()
            window.requests += 1
            window.addresses.add(address)

    def snapshot(self) -> StatsSnapshot:
        with self._lock:
            window = self._current_window()
            # sorted() is stable, so equal counts keep first-blocked-first order.
            top = sorted(self._address_blocks.items(), key=lambda item: item[1], reverse=True)
            return StatsSnapshot(
                total_requests=self._total_requests,
                blocked_requests=self._blocked_requests,
                top_blocked_addresses=[
                    BlockedAddress(address=address, count=count) for address, count in top[:TOP_BLOCKED_LIMIT]
                ],
                rate_limit_hits=dict(self._rate_limit_hits),
                last_24_hours=WindowSnapshot(
                    requests=window.requests,
                    blocked=window.blocked,
                    unique_address_count=len(window.addresses),
                ),
            )

    def reset(self) -> None:
        with self._lock:
            self._zero()
