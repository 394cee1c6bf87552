"""In-memory ledger of authentication attempts per ``(identity, source address)``.

Entries older than the attempt window are dropped lazily whenever their bucket
is touched. A bucket nobody touches again is only reclaimed by :meth:`AttemptLedger.sweep`.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import threading
import time
from typing import Callable, Optional

from .incidents import CRITICAL, WARNING, log_security_incident
from .request_info import ClientInfo

LOGIN_FAILED = "login_failed"
MALICIOUS_SCRIPT = "malicious_script"
RATE_LIMIT = "rate_limit"

AttemptKey = tuple[str, str]


def _to_datetime(timestamp: float) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


@dataclass
class AttemptRecord:
    identity: str
    source_address: str
    user_agent: str
    device_info: str
    kind: str
    timestamp: float
    is_blocked: bool = False
    block_reason: Optional[str] = None


@dataclass(frozen=True)
class FailureOutcome:
    failed_count: int
    is_warning: bool
    is_blocked: bool
    attempts_remaining: int


@dataclass(frozen=True)
class AttemptWarning:
    failed_attempts: int
    attempts_remaining: int
    message: str


@dataclass(frozen=True)
class SecurityStatus:
    failed_attempts: int
    is_blocked: bool
    attempts_remaining: int
    recent_attempts: int
    next_allowed_time: Optional[datetime]


@dataclass(frozen=True)
class ClearResult:
    cleared: int
    mode: str
    identity: Optional[str] = None
    source_address: Optional[str] = None


@dataclass(frozen=True)
class BlockSummary:
    identity: str
    source_address: str
    failed_attempts: int
    total_attempts: int
    is_blocked: bool
    last_attempt: datetime
    last_attempt_kind: str
    block_reason: Optional[str]
    user_agent: str


class AttemptLedger:
    def __init__(
        self,
        window_seconds: float = 3600,
        warning_threshold: int = 3,
        block_threshold: int = 6,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.window_seconds = window_seconds
        self.warning_threshold = warning_threshold
        self.block_threshold = block_threshold
        self._clock = clock
        self._buckets: dict[AttemptKey, list[AttemptRecord]] = {}
        self._lock = threading.Lock()

    # ---------- internals ----------
    def _recent(self, key: AttemptKey, now: float) -> list[AttemptRecord]:
        """Prune ``key`` in place and return what is left. Caller holds the lock."""
        attempts = self._buckets.get(key)
        if attempts is None:
            return []
        cutoff = now - self.window_seconds
        recent = [attempt for attempt in attempts if attempt.timestamp > cutoff]
        if recent:
            self._buckets[key] = recent
        else:
            del self._buckets[key]
        return recent

    @staticmethod
    def _failed_count(attempts: list[AttemptRecord]) -> int:
        return sum(1 for attempt in attempts if attempt.kind == LOGIN_FAILED)

    def _blocked_until(self, attempts: list[AttemptRecord]) -> Optional[datetime]:
        blocked = [attempt.timestamp for attempt in attempts if attempt.is_blocked]
        if not blocked:
            return None
        return _to_datetime(max(blocked) + self.window_seconds)

    # ---------- checks ----------
    def check_blocked(self, identity: Optional[str], source_address: str) -> bool:
        return self.blocking_record(identity, source_address) is not None

    def blocking_record(self, identity: Optional[str], source_address: str) -> Optional[AttemptRecord]:
        if not identity:
            return None
        with self._lock:
            recent = self._recent((identity, source_address), self._clock())
            return next((attempt for attempt in recent if attempt.is_blocked), None)

    def blocked_until(self, identity: Optional[str], source_address: str) -> Optional[datetime]:
        if not identity:
            return None
        with self._lock:
            return self._blocked_until(self._recent((identity, source_address), self._clock()))

    def address_has_blocks(self, source_address: str) -> bool:
        now = self._clock()
        with self._lock:
            keys = [key for key in self._buckets if key[1] == source_address]
            return any(
                attempt.is_blocked
                for key in keys
                for attempt in self._recent(key, now)
            )

    def warning(self, identity: Optional[str], source_address: str) -> Optional[AttemptWarning]:
        if not identity:
            return None
        with self._lock:
            failed = self._failed_count(self._recent((identity, source_address), self._clock()))
        if not self.warning_threshold <= failed < self.block_threshold:
            return None
        remaining = self.block_threshold - failed
        return AttemptWarning(
            failed_attempts=failed,
            attempts_remaining=remaining,
            message=(
                f"Warning: {failed} failed login attempts detected. "
                f"{remaining} attempts remaining before account is temporarily blocked."
            ),
        )

    def status(self, identity: str, source_address: str) -> SecurityStatus:
        with self._lock:
            recent = self._recent((identity, source_address), self._clock())
            failed = self._failed_count(recent)
            blocked_until = self._blocked_until(recent)
        return SecurityStatus(
            failed_attempts=failed,
            is_blocked=blocked_until is not None,
            attempts_remaining=max(0, self.block_threshold - failed),
            recent_attempts=len(recent),
            next_allowed_time=blocked_until,
        )

    # ---------- mutations ----------
    def record_failure(
        self,
        identity: Optional[str],
        client: ClientInfo,
        reason: str = "Invalid credentials",
    ) -> FailureOutcome:
        if not identity:
            return FailureOutcome(
                failed_count=0,
                is_warning=False,
                is_blocked=False,
                attempts_remaining=self.block_threshold,
            )

        key = (identity, client.ip)
        now = self._clock()
        attempt = AttemptRecord(
            identity=identity,
            source_address=client.ip,
            user_agent=client.user_agent,
            device_info=client.device_info,
            kind=LOGIN_FAILED,
            timestamp=now,
            block_reason=reason,
        )
        with self._lock:
            recent = self._recent(key, now)
            recent.append(attempt)
            self._buckets[key] = recent
            failed = self._failed_count(recent)
            if failed >= self.block_threshold:
                attempt.is_blocked = True
                attempt.block_reason = (
                    f"Too many failed login attempts ({failed}). Potential brute force attack detected."
                )

        if failed >= self.block_threshold:
            log_security_incident(
                CRITICAL,
                "ACCOUNT_BLOCKED",
                "Identity blocked after repeated failed logins",
                email=identity,
                ip=client.ip,
                user_agent=client.user_agent,
                attempt_count=failed,
            )
        elif failed >= self.warning_threshold:
            log_security_incident(
                WARNING,
                "MULTIPLE_FAILED_ATTEMPTS",
                "Repeated failed logins",
                email=identity,
                ip=client.ip,
                user_agent=client.user_agent,
                attempt_count=failed,
            )

        return FailureOutcome(
            failed_count=failed,
            is_warning=self.warning_threshold <= failed < self.block_threshold,
            is_blocked=failed >= self.block_threshold,
            attempts_remaining=max(0, self.block_threshold - failed),
        )

    def record_malicious(self, identity: Optional[str], client: ClientInfo, suspicion_score: int) -> None:
        if not identity:
            return
        attempt = AttemptRecord(
            identity=identity,
            source_address=client.ip,
            user_agent=client.user_agent,
            device_info=client.device_info,
            kind=MALICIOUS_SCRIPT,
            timestamp=self._clock(),
            is_blocked=True,
            block_reason=f"Malicious script/bot activity detected (suspicion score: {suspicion_score})",
        )
        with self._lock:
            self._buckets.setdefault((identity, client.ip), []).append(attempt)

    def record_rate_limited(self, identity: Optional[str], client: ClientInfo) -> None:
        if not identity:
            return
        attempt = AttemptRecord(
            identity=identity,
            source_address=client.ip,
            user_agent=client.user_agent,
            device_info=client.device_info,
            kind=RATE_LIMIT,
            timestamp=self._clock(),
            block_reason="Login rate limit exceeded",
        )
        with self._lock:
            self._buckets.setdefault((identity, client.ip), []).append(attempt)

    def record_success(self, identity: Optional[str], client: ClientInfo) -> None:
        if not identity:
            return
        with self._lock:
            self._buckets.pop((identity, client.ip), None)

    # ---------- admin ----------
    def clear(self, identity: Optional[str] = None, source_address: Optional[str] = None) -> ClearResult:
        with self._lock:
            if identity and source_address:
                cleared = 1 if self._buckets.pop((identity, source_address), None) is not None else 0
                return ClearResult(cleared=cleared, mode="specific", identity=identity, source_address=source_address)

            if identity:
                keys = [key for key in self._buckets if key[0] == identity]
                mode = "identity"
            elif source_address:
                keys = [key for key in self._buckets if key[1] == source_address]
                mode = "address"
            else:
                keys = list(self._buckets)
                mode = "all"

            for key in keys:
                del self._buckets[key]
        return ClearResult(cleared=len(keys), mode=mode, identity=identity, source_address=source_address)

    def list_blocks(self) -> list[BlockSummary]:
        now = self._clock()
        summaries: list[BlockSummary] = []
        with self._lock:
            for key in list(self._buckets):
                recent = self._recent(key, now)
                if not recent:
                    continue
                last = recent[-1]
                summaries.append(
                    BlockSummary(
                        identity=key[0],
                        source_address=key[1],
                        failed_attempts=self._failed_count(recent),
                        total_attempts=len(recent),
                        is_blocked=any(attempt.is_blocked for attempt in recent),
                        last_attempt=_to_datetime(last.timestamp),
                        last_attempt_kind=last.kind,
                        block_reason=last.block_reason,
                        user_agent=last.user_agent,
                    )
                )
        summaries.sort(key=lambda summary: summary.last_attempt, reverse=True)
        return summaries

    def sweep(self) -> int:
        """Prune every bucket; returns how many buckets were dropped entirely."""
        now = self._clock()
        with self._lock:
            before = len(self._buckets)
            for key in list(self._buckets):
                self._recent(key, now)
            return before - len(self._buckets)

    def reset(self) -> None:
        with self._lock:
            self._buckets.clear()

    def __len__(self) -> int:
        return len(self._buckets)
