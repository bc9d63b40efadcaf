from __future__ import annotations

import re
import threading
import time
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol

import redis
import structlog

logger = structlog.get_logger(__name__)

KEY_PREFIX = "finance:summary"

_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


class SummaryCacheStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    def delete_prefix(self, prefix: str) -> None: ...


@dataclass(frozen=True)
class CachedSummary:
    value: str
    expires_at: float


class InMemorySummaryCache:
    """Process-local TTL store keyed by string."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, CachedSummary] = {}

    def get(self, key: str) -> Optional[str]:
        now = time.monotonic()
        with self._lock:
            cached = self._entries.get(key)
            if cached is None:
                return None
            if cached.expires_at <= now:
                del self._entries[key]
                return None
            return cached.value

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._entries[key] = CachedSummary(
                value=value, expires_at=time.monotonic() + ttl_seconds
            )

    def delete_prefix(self, prefix: str) -> None:
        with self._lock:
            for key in [key for key in self._entries if key.startswith(prefix)]:
                del self._entries[key]


class RedisSummaryCache:
    def __init__(self, client: redis.Redis) -> None:
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisSummaryCache":
        return cls(redis.Redis.from_url(url, decode_responses=True))

    def get(self, key: str) -> Optional[str]:
        return self.client.get(key)

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self.client.set(key, value, ex=ttl_seconds)

    def delete_prefix(self, prefix: str) -> None:
        keys = list(self.client.scan_iter(match=glob_escape(prefix) + "*"))
        if keys:
            self.client.delete(*keys)


def glob_escape(value: str) -> str:
    """Escape Redis MATCH metacharacters so a user id is matched literally."""
    return _GLOB_SPECIAL.sub(r"\\\1", value)


def summary_key(
    user_id: str,
    date_from: str,
    date_to: str,
    base_currency: str,
    account_ids: Iterable[str] | None,
) -> str:
    accounts = ",".join(sorted(account_ids or []))
    return f"{KEY_PREFIX}:{user_id}:{date_from}:{date_to}:{base_currency}:{accounts}"


def user_prefix(user_id: str) -> str:
    return f"{KEY_PREFIX}:{user_id}:"


class SummaryCache:
    """Best-effort summary cache. Store failures are logged and swallowed."""

    def __init__(self, store: SummaryCacheStore, ttl_seconds: int = 30) -> None:
        self.store = store
        self.ttl_seconds = ttl_seconds

    def read(self, key: str) -> Optional[str]:
        try:
            return self.store.get(key)
        except Exception as exc:
            logger.warning("summary_cache_read_failed", key=key, error=str(exc))
            return None

    def write(self, key: str, value: str) -> None:
        try:
            self.store.set(key, value, self.ttl_seconds)
        except Exception as exc:
            logger.warning("summary_cache_write_failed", key=key, error=str(exc))

    def invalidate_user(self, user_id: str) -> None:
        self._delete_prefix(user_prefix(user_id))

    def invalidate_all(self) -> None:
        self._delete_prefix(f"{KEY_PREFIX}:")

    def _delete_prefix(self, prefix: str) -> None:
        try:
            self.store.delete_prefix(prefix)
        except Exception as exc:
            logger.warning("summary_cache_invalidate_failed", prefix=prefix, error=str(exc))
