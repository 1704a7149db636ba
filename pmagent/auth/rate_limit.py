from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    success: bool
    remaining: int
    reset_at: datetime


@dataclass
class _Window:
    count: int
    reset_at: float


class FixedWindowRateLimiter:
    """
    In-memory fixed-window rate limiter keyed by client identifier.

    Windows reset wholesale, so a burst straddling a boundary can pass up to twice
    the nominal rate. Create one per endpoint class and per process; the expired
    entry sweep runs on an optional background thread (`start_sweeper`).
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Args:
            max_requests: Requests allowed per identifier per window
            window_seconds: Window length in seconds
            clock: Seconds-since-epoch source (injectable for tests)
        """
        self._max = int(max_requests)
        self._window = float(window_seconds)
        self._clock = clock
        self._store: Dict[str, _Window] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._sweeper: Optional[threading.Thread] = None

    @property
    def max_requests(self) -> int:
        return self._max

    def _result(self, success: bool, remaining: int, reset_at: float) -> RateLimitResult:
        return RateLimitResult(
            success=success,
            remaining=max(0, remaining),
            reset_at=datetime.fromtimestamp(reset_at, tz=timezone.utc),
        )

    def check(self, identifier: str) -> RateLimitResult:
        """
        Count one request for `identifier` and decide whether it is allowed.

        Returns:
            RateLimitResult with `success`, `remaining` requests in this window and
            `reset_at` (when the window ends).
        """
        now = self._clock()
        with self._lock:
            entry = self._store.get(identifier)
            if entry is None or entry.reset_at < now:
                entry = _Window(count=1, reset_at=now + self._window)
                self._store[identifier] = entry
                return self._result(True, self._max - 1, entry.reset_at)

            if entry.count >= self._max:
                return self._result(False, 0, entry.reset_at)

            entry.count += 1
            return self._result(True, self._max - entry.count, entry.reset_at)

    def get(self, identifier: str) -> Optional[RateLimitResult]:
        """Current window state without counting a request (None when no live window)."""
        now = self._clock()
        with self._lock:
            entry = self._store.get(identifier)
            if entry is None:
                return None
            if entry.reset_at < now:
                del self._store[identifier]
                return None
            return self._result(entry.count < self._max, self._max - entry.count, entry.reset_at)

    def reset(self, identifier: str) -> None:
        with self._lock:
            self._store.pop(identifier, None)

    def sweep(self) -> int:
        """Drop expired windows; returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, v in self._store.items() if v.reset_at < now]
            for k in expired:
                del self._store[k]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def start_sweeper(self, interval_seconds: float = 60.0) -> None:
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop.clear()

        def _loop() -> None:
            while not self._stop.wait(interval_seconds):
                removed = self.sweep()
                if removed:
                    logger.debug("Rate limiter swept %d expired entries", removed)

        self._sweeper = threading.Thread(target=_loop, name="rate-limit-sweeper", daemon=True)
        self._sweeper.start()

    def stop_sweeper(self) -> None:
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=5)
            self._sweeper = None


def request_identifier(headers) -> str:
    """Client key from proxy headers: first X-Forwarded-For hop, then X-Real-IP, else 'anonymous'."""
    fwd = (headers.get("x-forwarded-for") or "").split(",")[0].strip()
    if fwd:
        return fwd
    real = (headers.get("x-real-ip") or "").strip()
    return real or "anonymous"


def rate_limit_headers(result: RateLimitResult) -> Dict[str, str]:
    return {
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": result.reset_at.isoformat(),
    }
