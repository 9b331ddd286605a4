"""
Monthly Character Quota Tracking.

Usage is charged in two phases:
    1. check_quota(identity, n) before synthesis - refuses requests that
       would push usage past the tier limit, never changes usage
    2. consume_quota(identity, n) after synthesis succeeds

Concurrent requests for the same identity may all pass the check before any
of them consumes, so the limit is soft: overshoot is bounded by the
characters of the other in-flight requests.

Ledgers are created lazily (FREE tier, zero usage) and reset at 00:00 UTC on
the first day of the next calendar month. Expired ledgers are removed by an
hourly sweep and regenerated on next use.

When the tracker is disabled every operation succeeds and nothing is stored.
"""
from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional

from tts_proxy.core.config import Defaults
from tts_proxy.core.logging import debug, get_logger, info, warn
from tts_proxy.core.metrics import metrics
from tts_proxy.limits.keyed_lock import KeyedLock
from tts_proxy.limits.sweeper import PeriodicSweeper
from tts_proxy.services.errors import QuotaExceededError

_LOG = get_logger("tts-proxy.quota")

_SECONDS_PER_DAY = 24 * 60 * 60


class QuotaTier(str, Enum):
    FREE = "FREE"
    BASIC = "BASIC"
    PRO = "PRO"


@dataclass
class QuotaLedger:
    """Characters used by one identity in the current monthly period."""
    identity: str
    tier: QuotaTier
    characters_used: int
    reset_at: float

    def expired(self, now: float) -> bool:
        return now > self.reset_at


def next_reset_time(now: float) -> float:
    """Epoch seconds of 00:00 UTC on the first day of the month after ``now``."""
    current = datetime.fromtimestamp(now, tz=timezone.utc)
    if current.month == 12:
        boundary = datetime(current.year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        boundary = datetime(current.year, current.month + 1, 1, tzinfo=timezone.utc)
    return boundary.timestamp()


class QuotaTracker:
    """
    In-memory per-identity monthly character ledger.

    Args:
        enabled: When False all checks pass and nothing is recorded.
        tier_limits: Characters per month keyed by tier name.
        clock: Time source returning epoch seconds.
        sweep_interval_s: Background sweep period.
        warning_threshold: Usage fraction at which snapshots carry a warning.
    """

    def __init__(
        self,
        enabled: bool = True,
        tier_limits: Optional[Mapping[str, int]] = None,
        clock: Callable[[], float] = time.time,
        sweep_interval_s: float = Defaults.QUOTA_SWEEP_INTERVAL_S,
        warning_threshold: float = Defaults.QUOTA_WARNING_THRESHOLD,
    ):
        limits = dict(Defaults.QUOTA_TIER_LIMITS)
        limits.update(tier_limits or {})
        self.tier_limits: Dict[QuotaTier, int] = {tier: int(limits[tier.value]) for tier in QuotaTier}
        self.enabled = enabled
        self.warning_threshold = warning_threshold
        self._clock = clock
        self._ledgers: Dict[str, QuotaLedger] = {}
        self._locks = KeyedLock()
        self._table_lock = threading.Lock()
        self._sweeper = PeriodicSweeper("quota", self.sweep, sweep_interval_s)

    def limit_for(self, tier: QuotaTier) -> int:
        return self.tier_limits[tier]

    def _current(self, identity: str, now: float) -> QuotaLedger:
        # Caller holds the key lock
        ledger = self._ledgers.get(identity)
        if ledger is None or ledger.expired(now):
            ledger = QuotaLedger(
                identity=identity,
                tier=QuotaTier.FREE,
                characters_used=0,
                reset_at=next_reset_time(now),
            )
            with self._table_lock:
                self._ledgers[identity] = ledger
        return ledger

    def get_ledger(self, identity: str) -> QuotaLedger:
        """Current ledger for ``identity``, created on first use."""
        with self._locks.hold(identity):
            return self._current(identity, self._clock())

    def check_quota(self, identity: str, characters: int) -> None:
        """
        Verify that ``characters`` more would fit in the identity's limit.

        Raises:
            QuotaExceededError: With the characters still available.
        """
        if not self.enabled:
            return

        with self._locks.hold(identity):
            ledger = self._current(identity, self._clock())
            limit = self.limit_for(ledger.tier)
            used = ledger.characters_used

        if used + characters > limit:
            remaining = max(0, limit - used)
            metrics.record_quota_rejection()
            warn(_LOG, "quota_exceeded", tier=ledger.tier.value, requested=characters, remaining=remaining)
            raise QuotaExceededError(remaining)

    def consume_quota(self, identity: str, characters: int) -> None:
        """Charge ``characters`` to the identity's current period."""
        if not self.enabled:
            return

        with self._locks.hold(identity):
            ledger = self._current(identity, self._clock())
            ledger.characters_used += characters
            used = ledger.characters_used

        metrics.record_characters(characters)
        debug(_LOG, "quota_consumed", characters=characters, used=used)

    def get_remaining(self, identity: str) -> int:
        ledger = self.get_ledger(identity)
        return max(0, self.limit_for(ledger.tier) - ledger.characters_used)

    def get_usage_fraction(self, identity: str) -> float:
        """Usage as a fraction of the tier limit (may exceed 1.0)."""
        ledger = self.get_ledger(identity)
        return ledger.characters_used / self.limit_for(ledger.tier)

    def days_until_reset(self, identity: str) -> int:
        ledger = self.get_ledger(identity)
        return math.ceil((ledger.reset_at - self._clock()) / _SECONDS_PER_DAY)

    def upgrade_tier(self, identity: str, tier: QuotaTier | str) -> QuotaLedger:
        """Move an identity to another tier; usage for the period is kept."""
        new_tier = QuotaTier(tier)
        with self._locks.hold(identity):
            ledger = self._current(identity, self._clock())
            ledger.tier = new_tier
        info(_LOG, "quota_tier_changed", tier=new_tier.value)
        return ledger

    def snapshot(self, identity: str) -> Dict[str, Any]:
        """
        Point-in-time view of an identity's quota for display.

        Returns:
            Dict with tier, used, limit, remaining, reset_at (ISO 8601),
            days_until_reset, usage_fraction, warning and enabled.
        """
        now = self._clock()
        if self.enabled:
            with self._locks.hold(identity):
                ledger = self._current(identity, now)
                tier = ledger.tier
                used = ledger.characters_used
                reset_at = ledger.reset_at
        else:
            # Nothing is tracked; report an untouched FREE period
            tier, used, reset_at = QuotaTier.FREE, 0, next_reset_time(now)

        limit = self.limit_for(tier)
        fraction = used / limit
        return {
            "enabled": self.enabled,
            "tier": tier.value,
            "used": used,
            "limit": limit,
            "remaining": max(0, limit - used),
            "reset_at": datetime.fromtimestamp(reset_at, tz=timezone.utc).isoformat(),
            "days_until_reset": math.ceil((reset_at - now) / _SECONDS_PER_DAY),
            "usage_fraction": fraction,
            "warning": self.enabled and fraction >= self.warning_threshold,
        }

    def sweep(self) -> int:
        """Remove ledgers whose period has ended. Returns the number removed."""
        with self._table_lock:
            identities = list(self._ledgers)

        removed = 0
        for identity in identities:
            with self._locks.hold(identity):
                ledger = self._ledgers.get(identity)
                if ledger is not None and ledger.expired(self._clock()):
                    with self._table_lock:
                        del self._ledgers[identity]
                    removed += 1

        if removed:
            debug(_LOG, "quota_ledgers_swept", removed=removed, remaining=len(self))
        return removed

    def start(self) -> None:
        if self.enabled:
            self._sweeper.start()

    def stop(self) -> None:
        self._sweeper.stop()

    def __len__(self) -> int:
        with self._table_lock:
            return len(self._ledgers)
