"""
Admission Limits for the Speech Pipeline.

    - rate_limiter.py: Fixed-window request limits per identity
    - quota.py: Monthly character quotas per identity
    - keyed_lock.py: Per-identity locking shared by both
    - sweeper.py: Background removal of expired entries
"""
from .keyed_lock import KeyedLock
from .quota import QuotaLedger, QuotaTier, QuotaTracker, next_reset_time
from .rate_limiter import FixedWindowRateLimiter, RateWindow
from .sweeper import PeriodicSweeper

__all__ = [
    "KeyedLock",
    "PeriodicSweeper",
    "FixedWindowRateLimiter",
    "RateWindow",
    "QuotaTracker",
    "QuotaLedger",
    "QuotaTier",
    "next_reset_time",
]
