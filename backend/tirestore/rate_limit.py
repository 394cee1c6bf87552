from __future__ import annotations

from dataclasses import dataclass
import threading
import time
from typing import Any, Callable, Mapping

Clock = Callable[[], float]

LIMITER_CATEGORIES = ("general", "auth", "payment", "upload")
SPEED_LIMIT_KEY = "speedLimit"
FIFTEEN_MINUTES_MS = 15 * 60 * 1000


@dataclass(frozen=True)
class RateLimitPolicy:
    window_ms: int
    max_requests: int
    message: str

    @property
    def window_seconds(self) -> float:
        return self.window_ms / 1000

    @property
    def retry_after(self) -> int:
        return round(self.window_ms / 1000)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], fallback: RateLimitPolicy) -> RateLimitPolicy:
        """Build a policy from its stored camelCase form, filling gaps from ``fallback``."""
        if not isinstance(data, Mapping):
            raise ValueError("Rate limit policy must be a JSON object")

        window_ms = _positive_int(data.get("windowMs"), fallback.window_ms, "windowMs", minimum=1)
        max_requests = _positive_int(data.get("max"), fallback.max_requests, "max", minimum=1)
        message = data.get("message") or fallback.message
        if not isinstance(message, str):
            raise ValueError("message must be a string")
        return cls(window_ms=window_ms, max_requests=max_requests, message=message)

    def to_dict(self) -> dict[str, Any]:
        return {"windowMs": self.window_ms, "max": self.max_requests, "message": self.message}


@dataclass(frozen=True)
class SpeedLimitPolicy:
    window_ms: int
    delay_after: int
    delay_ms: int
    max_delay_ms: int

    @property
    def window_seconds(self) -> float:
        return self.window_ms / 1000

    def delay_for_count(self, count: int) -> int:
        """Milliseconds of artificial latency for the ``count``-th request of a window."""
        if count <= self.delay_after:
            return 0
        return min(self.max_delay_ms, (count - self.delay_after) * self.delay_ms)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], fallback: SpeedLimitPolicy) -> SpeedLimitPolicy:
        if not isinstance(data, Mapping):
            raise ValueError("Speed limit policy must be a JSON object")

        return cls(
            window_ms=_positive_int(data.get("windowMs"), fallback.window_ms, "windowMs", minimum=1),
            delay_after=_positive_int(data.get("delayAfter"), fallback.delay_after, "delayAfter", minimum=0),
            delay_ms=_positive_int(data.get("delayMs"), fallback.delay_ms, "delayMs", minimum=0),
            max_delay_ms=_positive_int(data.get("maxDelayMs"), fallback.max_delay_ms, "maxDelayMs", minimum=0),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "windowMs": self.window_ms,
            "delayAfter": self.delay_after,
            "delayMs": self.delay_ms,
            "maxDelayMs": self.max_delay_ms,
        }


def _positive_int(value: Any, default: int, field: str, minimum: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{field} must be a number")
    if int(value) != value:
        raise ValueError(f"{field} must be an integer")
    if value < minimum:
        raise ValueError(f"{field} must be >= {minimum}")
    return int(value)


DEFAULT_POLICIES: dict[str, RateLimitPolicy] = {
    "general": RateLimitPolicy(
        window_ms=FIFTEEN_MINUTES_MS,
        max_requests=200,
        message="Too many API requests from this IP, please try again later.",
    ),
    "auth": RateLimitPolicy(
        window_ms=FIFTEEN_MINUTES_MS,
        max_requests=10,
        message="Too many authentication attempts, please try again later.",
    ),
    "payment": RateLimitPolicy(
        window_ms=FIFTEEN_MINUTES_MS,
        max_requests=10,
        message="Too many payment attempts, please try again later.",
    ),
    "upload": RateLimitPolicy(
        window_ms=FIFTEEN_MINUTES_MS,
        max_requests=20,
        message="Too many upload attempts, please try again later.",
    ),
}

DEFAULT_SPEED_LIMIT = SpeedLimitPolicy(
    window_ms=FIFTEEN_MINUTES_MS,
    delay_after=50,
    delay_ms=500,
    max_delay_ms=20_000,
)


def default_policy_map() -> dict[str, dict[str, Any]]:
    """Stored-form defaults, keyed the way SettingsStore returns them."""
    policies: dict[str, dict[str, Any]] = {name: policy.to_dict() for name, policy in DEFAULT_POLICIES.items()}
    policies[SPEED_LIMIT_KEY] = DEFAULT_SPEED_LIMIT.to_dict()
    return policies


@dataclass
class WindowState:
    count: int
    window_start: float


@dataclass(frozen=True)
class LimitDecision:
    allowed: bool
    count: int
    limit: int
    remaining: int
    reset_after: float


class FixedWindowLimiter:
    """Per-key counters that drop back to zero once their window has fully elapsed."""

    def __init__(self, clock: Clock = time.time) -> None:
        self._clock = clock
        self._windows: dict[str, WindowState] = {}
        self._lock = threading.Lock()

    def increment(self, key: str, window_seconds: float) -> tuple[int, float]:
        """Count one event for ``key``; returns the new count and seconds until the window resets."""
        now = self._clock()
        with self._lock:
            state = self._windows.get(key)
            if state is None or now - state.window_start >= window_seconds:
                state = WindowState(count=0, window_start=now)
                self._windows[key] = state
            state.count += 1
            return state.count, max(0.0, state.window_start + window_seconds - now)

    def hit(self, key: str, max_requests: int, window_seconds: float) -> LimitDecision:
        count, reset_after = self.increment(key, window_seconds)
        return LimitDecision(
            allowed=count <= max_requests,
            count=count,
            limit=max_requests,
            remaining=max(0, max_requests - count),
            reset_after=reset_after,
        )

    def current(self, key: str, window_seconds: float) -> int:
        now = self._clock()
        with self._lock:
            state = self._windows.get(key)
            if state is None or now - state.window_start >= window_seconds:
                return 0
            return state.count

    def prune(self, window_seconds: float) -> int:
        now = self._clock()
        with self._lock:
            expired = [key for key, state in self._windows.items() if now - state.window_start >= window_seconds]
            for key in expired:
                del self._windows[key]
        return len(expired)

    def reset(self, key: str | None = None) -> None:
        with self._lock:
            if key is None:
                self._windows.clear()
            else:
                self._windows.pop(key, None)

    def __len__(self) -> int:
        return len(self._windows)


class PolicyLimiter:
    """A fixed-window gate for one limiter category, frozen to the policy it was built with."""

    def __init__(self, category: str, policy: RateLimitPolicy, clock: Clock = time.time) -> None:
        self.category = category
        self.policy = policy
        self._counter = FixedWindowLimiter(clock=clock)

    def hit(self, address: str) -> LimitDecision:
        return self._counter.hit(address, self.policy.max_requests, self.policy.window_seconds)

    def rejection(self) -> dict[str, Any]:
        return {
            "error": "Rate limit exceeded",
            "message": self.policy.message,
            "retryAfter": self.policy.retry_after,
        }

    def prune(self) -> int:
        return self._counter.prune(self.policy.window_seconds)


class SpeedLimiter:
    """Slows clients down past ``delay_after`` requests per window instead of rejecting them."""

    def __init__(self, policy: SpeedLimitPolicy, clock: Clock = time.time) -> None:
        self.policy = policy
        self._counter = FixedWindowLimiter(clock=clock)

    def delay_for(self, address: str) -> float:
        count, _ = self._counter.increment(address, self.policy.window_seconds)
        return self.policy.delay_for_count(count) / 1000

    def prune(self) -> int:
        return self._counter.prune(self.policy.window_seconds)
