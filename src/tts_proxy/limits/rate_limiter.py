"""
Fixed-Window Rate Limiter.

Each identity gets a counter that resets ``window_seconds`` after its first
request in the window. The limiter is in-memory and process-local.

Decision for check(identity) at time ``now``:
    - no window, or now > reset_at  -> new window with count=1, allow
    - count < max_requests          -> count += 1, allow
    - count >= max_requests         -> deny with retry_after = max(1, ceil(reset_at - now))

Expired windows are removed by a background sweep (see PeriodicSweeper).

Usage:
    limiter = FixedWindowRateLimiter("ip", max_requests=10, window_seconds=60)
    limiter.start()
    limiter.check("203.0.113.7")  # raises RateLimitError when exhausted
"""
from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from tts_proxy.core.logging import debug, get_logger, warn
from tts_proxy.core.metrics import metrics
from tts_proxy.limits.keyed_lock import KeyedLock
from tts_proxy.limits.sweeper import PeriodicSweeper
from tts_proxy.services.errors import RateLimitError

_LOG = get_logger("tts-proxy.rate_limit")


@dataclass
class RateWindow:
    """Request count for one identity within the current window."""
    count: int
    reset_at: float

    def expired(self, now: float) -> bool:
        return now > self.reset_at


class FixedWindowRateLimiter:
    """
    Per-identity fixed-window request counter.

    Args:
        name: Limiter name used in logs and metrics ("ip", "user").
        max_requests: Requests allowed per window.
        window_seconds: Window length.
        clock: Time source returning epoch seconds.
        sweep_interval_s: Background sweep period; defaults to the window
            length and may not be shorter than it.
    """

    def __init__(
        self,
        name: str,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.time,
        sweep_interval_s: Optional[float] = None,
    ):
        if max_requests <= 0:
            raise ValueError(f"max_requests must be positive, got {max_requests}")
        if window_seconds <= 0:
            raise ValueError(f"window_seconds must be positive, got {window_seconds}")
        interval = window_seconds if sweep_interval_s is None else sweep_interval_s
        if interval < window_seconds:
            raise ValueError(
                f"sweep_interval_s must be >= window_seconds ({window_seconds}), got {interval}"
            )

        self.name = name
        self.max_requests = max_requests
        self.window_seconds = float(window_seconds)
        self._clock = clock
        self._windows: Dict[str, RateWindow] = {}
        self._locks = KeyedLock()
        # Structural changes to the dict (insert/delete) are serialized here
        self._table_lock = threading.Lock()
        self._sweeper = PeriodicSweeper(f"rate-limit-{name}", self.sweep, interval)

    def check(self, identity: str) -> None:
        """
        Count a request for ``identity``.

        Raises:
            RateLimitError: When the identity has used up its window.
        """
        with self._locks.hold(identity):
            now = self._clock()
            window = self._windows.get(identity)

            if window is None or window.expired(now):
                with self._table_lock:
                    self._windows[identity] = RateWindow(count=1, reset_at=now + self.window_seconds)
                return

            if window.count < self.max_requests:
                window.count += 1
                return

            # Never 0: at now == reset_at the window is still live
            retry_after = max(1, math.ceil(window.reset_at - now))

        metrics.record_rate_limited(self.name)
        warn(_LOG, "rate_limited", limiter=self.name, retry_after=retry_after)
        raise RateLimitError(retry_after, limiter=self.name)

    def get_remaining(self, identity: str) -> int:
        """Requests left in the current window. Never mutates state."""
        with self._locks.hold(identity):
            window = self._windows.get(identity)
            if window is None or window.expired(self._clock()):
                return self.max_requests
            return max(0, self.max_requests - window.count)

    def reset(self, identity: str) -> None:
        """Forget the window for ``identity``."""
        with self._locks.hold(identity):
            with self._table_lock:
                self._windows.pop(identity, None)

    def sweep(self) -> int:
        """
        Remove expired windows.

        Iterates over a snapshot of keys and re-checks expiry under each
        key's lock, so a window renewed mid-sweep is kept.

        Returns:
            Number of windows removed.
        """
        with self._table_lock:
            identities = list(self._windows)

        removed = 0
        for identity in identities:
            with self._locks.hold(identity):
                window = self._windows.get(identity)
                if window is not None and window.expired(self._clock()):
                    with self._table_lock:
                        del self._windows[identity]
                    removed += 1

        if removed:
            debug(_LOG, "rate_windows_swept", limiter=self.name, removed=removed, remaining=len(self))
        return removed

    def start(self) -> None:
        self._sweeper.start()

    def stop(self) -> None:
        self._sweeper.stop()

    def __len__(self) -> int:
        with self._table_lock:
            return len(self._windows)
