from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import json
import logging
import threading
import time
from typing import Any, Callable, Mapping, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from .db import get_db
from .rate_limit import default_policy_map

logger = logging.getLogger("tirestore.settings")

RATE_LIMIT_CATEGORY = "rate_limits"
RATE_LIMIT_KEY_PREFIX = "rate_limit_"

DefaultsFactory = Callable[[], dict[str, Any]]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _logical_key(key: str) -> str:
    if key.startswith(RATE_LIMIT_KEY_PREFIX):
        return key[len(RATE_LIMIT_KEY_PREFIX):]
    return key


def storage_key(name: str) -> str:
    return f"{RATE_LIMIT_KEY_PREFIX}{name}"


@dataclass
class _CacheEntry:
    values: dict[str, Any]
    loaded_at: float


class SettingsStore:
    """Category-scoped settings persisted in ``system_settings`` with a whole-snapshot TTL cache.

    Reads never raise: a storage failure is logged and the hardcoded defaults for
    the category are returned instead, so an outage cannot switch rate limiting off.
    Writes go straight to storage and do propagate their errors.
    """

    def __init__(
        self,
        ttl_seconds: float = 300,
        clock: Callable[[], float] = time.monotonic,
        defaults: Optional[Mapping[str, DefaultsFactory]] = None,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._defaults: dict[str, DefaultsFactory] = dict(defaults or {RATE_LIMIT_CATEGORY: default_policy_map})
        self._cache: dict[str, _CacheEntry] = {}
        self._lock = threading.Lock()

    def defaults(self, category: str) -> dict[str, Any]:
        factory = self._defaults.get(category)
        return factory() if factory else {}

    def get(self, category: str) -> dict[str, Any]:
        now = self._clock()
        with self._lock:
            entry = self._cache.get(category)
            if entry is not None and now - entry.loaded_at < self.ttl_seconds:
                return dict(entry.values)
        return self.refresh(category)

    def refresh(self, category: str) -> dict[str, Any]:
        try:
            values = self._load(category)
        except (SQLAlchemyError, ValueError) as exc:
            logger.error(
                "Falling back to default settings",
                extra={"event": "settings_read_failed", "category": category, "reason": str(exc)},
            )
            return self.defaults(category)

        with self._lock:
            self._cache[category] = _CacheEntry(values=values, loaded_at=self._clock())
        return dict(values)

    def invalidate(self, category: str | None = None) -> None:
        with self._lock:
            if category is None:
                self._cache.clear()
            else:
                self._cache.pop(category, None)

    def set(
        self,
        key: str,
        value: Any,
        category: str,
        actor_id: int | None,
        description: str | None = None,
    ) -> None:
        now = _utc_now()
        with get_db() as session:
            session.execute(
                text(
                    """
                    INSERT INTO system_settings (key, value, description, category, updated_by, updated_at, created_at)
                    VALUES (:key, :value, :description, :category, :updated_by, :now, :now)
                    ON CONFLICT (key) DO UPDATE SET
                        value = excluded.value,
                        updated_by = excluded.updated_by,
                        updated_at = excluded.updated_at
                    """
                ),
                {
                    "key": key,
                    "value": json.dumps(value),
                    "description": description,
                    "category": category,
                    "updated_by": actor_id,
                    "now": now,
                },
            )
        self.invalidate(category)

    def set_many(self, values: Mapping[str, Any], category: str, actor_id: int | None) -> list[str]:
        """Write each policy independently; keys written before a failure stay written."""
        written: list[str] = []
        for name, value in values.items():
            self.set(
                storage_key(name),
                value,
                category=category,
                actor_id=actor_id,
                description=f"Rate limit settings for {name}",
            )
            written.append(name)
        return written

    def seed_defaults(self, actor_id: int | None = None, overwrite: bool = False) -> list[str]:
        existing = self._load(RATE_LIMIT_CATEGORY)
        pending = {
            name: value
            for name, value in default_policy_map().items()
            if overwrite or name not in existing
        }
        return self.set_many(pending, category=RATE_LIMIT_CATEGORY, actor_id=actor_id)

    def _load(self, category: str) -> dict[str, Any]:
        with get_db() as session:
            rows = session.execute(
                text("SELECT key, value FROM system_settings WHERE category = :category ORDER BY key"),
                {"category": category},
            ).mappings().all()

        values: dict[str, Any] = {}
        for row in rows:
            try:
                values[_logical_key(row["key"])] = json.loads(row["value"])
            except json.JSONDecodeError as exc:
                raise ValueError(f"Setting {row['key']} holds malformed JSON") from exc
        return values
