from __future__ import annotations

import copy
import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Any, Callable, Optional, TypeVar

from config import get_settings


logger = logging.getLogger(__name__)

T = TypeVar("T")


class CacheKind(str, Enum):
    dashboard_stats = "dashboard"
    category_breakdown = "category-breakdown"
    ai_insights = "ai-insights"
    transaction_history = "transactions"


class UpdateEvent(str, Enum):
    new_transaction = "NEW_TRANSACTION"
    transaction_updated = "TRANSACTION_UPDATED"
    transaction_deleted = "TRANSACTION_DELETED"
    account_changed = "ACCOUNT_CHANGED"


CacheKey = tuple[str, int, str]


@dataclass
class _Entry:
    value: Any
    expires_at: float


class MemoryCacheBackend:
    """Thread-safe in-process key/value store with per-entry expiry."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[CacheKey, _Entry] = {}
        self._lock = threading.Lock()

    def get(self, key: CacheKey) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at <= self._clock():
                del self._entries[key]
                return None
            return copy.deepcopy(entry.value)

    def set(self, key: CacheKey, value: Any, ttl: int) -> None:
        with self._lock:
            self._entries[key] = _Entry(
                value=copy.deepcopy(value), expires_at=self._clock() + ttl
            )

    def delete_where(self, predicate: Callable[[CacheKey], bool]) -> int:
        with self._lock:
            doomed = [key for key in self._entries if predicate(key)]
            for key in doomed:
                del self._entries[key]
            return len(doomed)

    def sweep_expired(self) -> int:
        now = self._clock()
        with self._lock:
            doomed = [k for k, e in self._entries.items() if e.expires_at <= now]
            for key in doomed:
                del self._entries[key]
            return len(doomed)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class UserCache:
    """
    Per-user cache of derived views. Never authoritative: every backend error
    is logged and the caller falls through to the computation.
    """

    def __init__(
        self,
        backend: Optional[MemoryCacheBackend] = None,
        ttls: Optional[dict[CacheKind, int]] = None,
    ) -> None:
        self.backend = backend if backend is not None else MemoryCacheBackend()
        if ttls is None:
            settings = get_settings()
            ttls = {
                CacheKind.dashboard_stats: settings.dashboard_cache_ttl,
                CacheKind.category_breakdown: settings.dashboard_cache_ttl,
                CacheKind.ai_insights: settings.insights_cache_ttl,
                CacheKind.transaction_history: settings.transactions_cache_ttl,
            }
        self.ttls = ttls

    @staticmethod
    def key(kind: CacheKind, user_id: int, suffix: str = "") -> CacheKey:
        return (kind.value, user_id, suffix)

    def get(self, kind: CacheKind, user_id: int, suffix: str = "") -> Optional[Any]:
        try:
            value = self.backend.get(self.key(kind, user_id, suffix))
        except Exception as exc:
            logger.warning(f"cache_read_failed: kind={kind.value} user_id={user_id} error={exc!r}")
            return None
        if value is None:
            logger.debug(f"cache_miss: kind={kind.value} user_id={user_id} suffix={suffix}")
        else:
            logger.debug(f"cache_hit: kind={kind.value} user_id={user_id} suffix={suffix}")
        return value

    def set(self, kind: CacheKind, user_id: int, value: Any, suffix: str = "") -> None:
        try:
            self.backend.set(self.key(kind, user_id, suffix), value, self.ttls[kind])
        except Exception as exc:
            logger.warning(f"cache_write_failed: kind={kind.value} user_id={user_id} error={exc!r}")

    def get_or_compute(
        self,
        kind: CacheKind,
        user_id: int,
        compute: Callable[[], T],
        suffix: str = "",
    ) -> T:
        cached = self.get(kind, user_id, suffix)
        if cached is not None:
            return cached
        value = compute()
        self.set(kind, user_id, value, suffix)
        return value

    def invalidate(self, kind: CacheKind, user_id: int) -> None:
        try:
            self.backend.delete_where(lambda k: k[0] == kind.value and k[1] == user_id)
        except Exception as exc:
            logger.warning(f"cache_invalidation_failed: kind={kind.value} user_id={user_id} error={exc!r}")

    def invalidate_user(self, user_id: int) -> None:
        try:
            removed = self.backend.delete_where(lambda k: k[1] == user_id)
        except Exception as exc:
            logger.warning(f"cache_invalidation_failed: user_id={user_id} error={exc!r}")
            return
        logger.info(f"cache_invalidated: user_id={user_id} keys={removed}")

    def sweep_expired(self) -> int:
        try:
            return self.backend.sweep_expired()
        except Exception as exc:
            logger.warning(f"cache_sweep_failed: error={exc!r}")
            return 0

    def health(self) -> dict[str, object]:
        try:
            entries = len(self.backend)
        except Exception as exc:
            return {"status": "error", "error": str(exc)}
        return {"status": "healthy", "entries": entries}


Subscriber = Callable[[int, UpdateEvent, dict], None]


class UpdateBroker:
    """
    In-process fan-out of ledger change notifications. Delivery is
    best-effort and at most once; subscribers must not rely on it for
    consistency.
    """

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, user_id: int, event: UpdateEvent, payload: dict) -> int:
        with self._lock:
            subscribers = list(self._subscribers)
        delivered = 0
        for callback in subscribers:
            try:
                callback(user_id, event, payload)
                delivered += 1
            except Exception as exc:
                logger.warning(f"publish_failed: event={event.value} user_id={user_id} error={exc!r}")
        return delivered


@lru_cache(maxsize=1)
def get_cache() -> UserCache:
    return UserCache()


@lru_cache(maxsize=1)
def get_broker() -> UpdateBroker:
    return UpdateBroker()
