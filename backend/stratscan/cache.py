"""
Strat Scanner — Timeframe Cache

In-process TTL cache of per-(market, timeframe) Strat states. TTLs track how
fast bars on each timeframe can change. Entries past 80% of their TTL are
still served but flagged `stale` so callers can see the data is aging.

Entries are only ever replaced or left to expire; nothing is evicted.
The cache is touched from the event loop only, so every get/set is atomic
with respect to other tasks.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Optional

import structlog

from stratscan.models import TimeFrame, TimeframeState

log = structlog.get_logger(__name__)


# ──────────────────────────────────────────────
# Default TTLs (milliseconds)
# ──────────────────────────────────────────────

_SECOND = 1000
_MINUTE = 60 * _SECOND
_HOUR = 60 * _MINUTE

TTL_BY_TIMEFRAME: dict[TimeFrame, int] = {
    TimeFrame.M1: 30 * _SECOND,
    TimeFrame.M5: 2 * _MINUTE,
    TimeFrame.M15: 5 * _MINUTE,
    TimeFrame.M30: 10 * _MINUTE,
    TimeFrame.H1: 15 * _MINUTE,
    TimeFrame.H4: 30 * _MINUTE,
    TimeFrame.H12: 2 * _HOUR,
    TimeFrame.D1: 4 * _HOUR,
    TimeFrame.W1: 8 * _HOUR,
}

# Fraction of the TTL after which a cached state is reported stale.
STALE_FRACTION = 0.8


def now_ms() -> int:
    """Wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass
class CacheEntry:
    state: TimeframeState
    expiry: int
    ttl: int

    @property
    def created_at(self) -> int:
        return self.expiry - self.ttl


class TimeframeCache:
    """TTL cache keyed by (market_id, timeframe)."""

    def __init__(
        self,
        clock: Callable[[], int] = now_ms,
        ttls: Optional[dict[TimeFrame, int]] = None,
    ):
        self._clock = clock
        self._ttls = dict(ttls or TTL_BY_TIMEFRAME)
        self._entries: dict[tuple[int, TimeFrame], CacheEntry] = {}

    def now(self) -> int:
        return self._clock()

    def ttl_for(self, timeframe: TimeFrame) -> int:
        return self._ttls[timeframe]

    def get(self, market_id: int, timeframe: TimeFrame) -> Optional[TimeframeState]:
        """Return the cached state, or None on miss / expiry.

        The returned state is a copy whose `stale` flag reflects the entry's
        age at the moment of the read.
        """
        entry = self._entries.get((market_id, timeframe))
        if entry is None:
            return None

        now = self._clock()
        if entry.expiry <= now:
            return None

        age = now - entry.created_at
        stale = age >= entry.ttl * STALE_FRACTION
        if stale:
            log.debug("cache.stale", market_id=market_id, timeframe=timeframe.value, age_ms=age)
        return entry.state.model_copy(update={"stale": stale})

    def set(self, market_id: int, timeframe: TimeFrame, state: TimeframeState) -> None:
        """Store a fresh state with expiry = now + TTL(timeframe)."""
        ttl = self.ttl_for(timeframe)
        self._entries[(market_id, timeframe)] = CacheEntry(
            state=state,
            expiry=self._clock() + ttl,
            ttl=ttl,
        )

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> dict:
        """Entry counts; `fresh` excludes expired entries."""
        now = self._clock()
        fresh = sum(1 for e in self._entries.values() if e.expiry > now)
        return {"entries": len(self._entries), "fresh": fresh}
