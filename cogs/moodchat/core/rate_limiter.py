"""
Rate Governor for Moodchat
==========================

Enforces a per-identity daily message quota protecting the shared upstream.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


def utc_today() -> date:
    """Current calendar day in UTC."""
    return datetime.now(timezone.utc).date()


@dataclass
class RateRecord:
    """Quota usage of a single identity on a single day."""
    day: date
    count: int = 0


@dataclass(frozen=True)
class QuotaStatus:
    """Outcome of a quota check or increment."""
    allowed: bool
    count: int
    remaining: int
    limit: int

    def to_dict(self) -> Dict:
        return {
            "allowed": self.allowed,
            "count": self.count,
            "remaining": self.remaining,
            "limit": self.limit,
        }


class RateGovernor:
    """
    Daily quota keyed by client identity.

    Records live in a single map guarded by one lock. The lock is only held
    for a single map mutation, so it is safe to call from the event loop and
    from worker threads alike.
    """

    def __init__(
        self,
        daily_limit: int = 10,
        reap_interval: float = 3600.0,
        clock: Callable[[], date] = utc_today
    ):
        """
        Initialize the governor.

        Args:
            daily_limit: Maximum messages per identity per calendar day
            reap_interval: Seconds between stale-record sweeps
            clock: Returns the current calendar day
        """
        self.daily_limit = daily_limit
        self.reap_interval = reap_interval
        self._clock = clock

        self._records: Dict[str, RateRecord] = {}
        self._lock = threading.Lock()
        self._reaper_task: Optional[asyncio.Task] = None

        self._total_allowed = 0
        self._total_blocked = 0

        logger.info(f"RateGovernor initialized: daily_limit={daily_limit}")

    def _status(self, allowed: bool, count: int) -> QuotaStatus:
        return QuotaStatus(
            allowed=allowed,
            count=count,
            remaining=max(0, self.daily_limit - count),
            limit=self.daily_limit,
        )

    def _current_count(self, identity: str, today: date) -> int:
        record = self._records.get(identity)
        if record is None or record.day != today:
            return 0
        return record.count

    def _increment_locked(self, identity: str, today: date) -> int:
        record = self._records.get(identity)
        if record is None or record.day != today:
            self._records[identity] = RateRecord(day=today, count=1)
            return 1
        record.count += 1
        return record.count

    def check(self, identity: str) -> QuotaStatus:
        """
        Check an identity's quota without consuming it.

        A record from a previous day counts as absent.
        """
        today = self._clock()
        with self._lock:
            count = self._current_count(identity, today)
        return self._status(count < self.daily_limit, count)

    def increment(self, identity: str) -> QuotaStatus:
        """
        Consume one unit of an identity's quota.

        Returns:
            Post-increment status; ``allowed`` tells whether the identity may
            still send after this message
        """
        today = self._clock()
        with self._lock:
            count = self._increment_locked(identity, today)
        return self._status(count < self.daily_limit, count)

    def acquire(self, identity: str) -> QuotaStatus:
        """
        Atomically check and consume one unit of quota.

        Returns:
            Status with ``allowed`` False when the limit was already reached,
            in which case nothing was consumed
        """
        today = self._clock()
        with self._lock:
            count = self._current_count(identity, today)
            if count >= self.daily_limit:
                self._total_blocked += 1
                allowed = False
            else:
                count = self._increment_locked(identity, today)
                self._total_allowed += 1
                allowed = True

        if not allowed:
            logger.warning(f"Daily limit reached for {identity} ({count}/{self.daily_limit})")
        return self._status(allowed, count)

    def reap(self) -> int:
        """Drop every record that does not belong to today."""
        today = self._clock()
        with self._lock:
            stale = [identity for identity, record in self._records.items() if record.day != today]
            for identity in stale:
                del self._records[identity]

        if stale:
            logger.debug(f"Reaped {len(stale)} stale rate records")
        return len(stale)

    async def _reap_forever(self) -> None:
        while True:
            await asyncio.sleep(self.reap_interval)
            self.reap()

    def start_reaper(self) -> None:
        """Start the periodic stale-record sweep on the running event loop."""
        if self._reaper_task is None or self._reaper_task.done():
            self._reaper_task = asyncio.get_running_loop().create_task(self._reap_forever())

    async def stop_reaper(self) -> None:
        """Stop the periodic sweep."""
        if self._reaper_task is None:
            return
        self._reaper_task.cancel()
        try:
            await self._reaper_task
        except asyncio.CancelledError:
            pass
        self._reaper_task = None

    def get_stats(self) -> Dict:
        """Get governor statistics."""
        with self._lock:
            tracked = len(self._records)
        return {
            "tracked_identities": tracked,
            "total_allowed": self._total_allowed,
            "total_blocked": self._total_blocked,
            "daily_limit": self.daily_limit,
        }

    def reset_user(self, identity: str) -> bool:
        """Forget the quota usage of one identity."""
        with self._lock:
            removed = self._records.pop(identity, None) is not None
        if removed:
            logger.info(f"Reset daily quota for {identity}")
        return removed

    def reset_all(self) -> None:
        """Forget all quota usage."""
        with self._lock:
            self._records.clear()
        logger.info("All daily quotas reset")

    def update_config(self, daily_limit: int = None) -> None:
        """Update the daily limit."""
        if daily_limit is not None:
            self.daily_limit = daily_limit
        logger.info(f"RateGovernor config updated: daily_limit={self.daily_limit}")
