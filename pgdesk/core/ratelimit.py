"""In-process token-bucket rate limiter for the auth endpoints."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from pgdesk.core.config import Settings


@dataclass
class _Bucket:
    tokens: float
    updated_at: float


class RateLimiter:
    """
    Token bucket per key. Keys carry scope and identity, e.g. "auth:login:ip:10.0.0.1".

    Each bucket holds `limit` tokens and refills at limit/per_seconds per second.
    State lives in this process only; handlers run in a threadpool, hence the lock.
    """

    def __init__(
        self,
        limit: int,
        per_seconds: int,
        *,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.limit = limit
        self.per_seconds = per_seconds
        self.enabled = enabled
        self._clock = clock
        self._lock = threading.Lock()
        self._mem: dict[str, _Bucket] = {}

    @classmethod
    def from_settings(cls, settings: "Settings") -> "RateLimiter":
        return cls(
            settings.AUTH_RATE_LIMIT,
            settings.AUTH_RATE_LIMIT_WINDOW_SECONDS,
            enabled=settings.AUTH_RATE_LIMIT_ENABLED,
        )

    def allow(self, key: str) -> bool:
        if not self.enabled:
            return True
        now = self._clock()
        rate = float(self.limit) / float(self.per_seconds)
        with self._lock:
            b = self._mem.get(key)
            if b is None:
                b = _Bucket(tokens=float(self.limit), updated_at=now)
                self._mem[key] = b
            # refill
            b.tokens = min(float(self.limit), b.tokens + (now - b.updated_at) * rate)
            b.updated_at = now
            if b.tokens < 1.0:
                return False
            b.tokens -= 1.0
            return True

    def retry_after(self) -> int:
        """Seconds until one token is back in an empty bucket."""
        return max(1, int(self.per_seconds / self.limit))
