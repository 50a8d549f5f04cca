"""Importable test helpers for Strat Scanner tests"""

from __future__ import annotations

import asyncio
from typing import Optional

from stratscan.models import (
    HTF_TIMEFRAMES,
    LTF_TIMEFRAMES,
    Candle,
    ClassifiedCandle,
    MultiTimeframeAnalysis,
    PatternType,
    TimeFrame,
    TimeframeState,
)

BASE_TS = 1_700_000_000_000
STEP_MS = 60_000


def make_candle(high, low, open_=None, close=None, index=0, volume=1.0):
    """Create a candle; open/close default to the range midpoint."""
    mid = (high + low) / 2
    return Candle(
        timestamp=BASE_TS + index * STEP_MS,
        open=mid if open_ is None else open_,
        high=high,
        low=low,
        close=mid if close is None else close,
        volume=volume,
    )


def make_series(*bars):
    """Candles from (high, low) or (high, low, open, close) tuples, ascending."""
    return [make_candle(*bar[:2], *bar[2:], index=i) for i, bar in enumerate(bars)]


def make_classified(pattern, index=0, high=100.0, low=90.0, open_=94.0, close=96.0):
    """Create a classified candle with an explicit pattern type ('2U', '1', None...)."""
    return ClassifiedCandle(
        timestamp=BASE_TS + index * STEP_MS,
        open=open_,
        high=high,
        low=low,
        close=close,
        volume=1.0,
        pattern_type=PatternType(pattern) if pattern else None,
    )


def make_classified_series(*patterns):
    return [make_classified(p, index=i) for i, p in enumerate(patterns)]


def make_state(pattern_type=None, stale=False, error=None, updated=BASE_TS):
    if error:
        return TimeframeState(pattern="Error", pattern_type=None, last_updated_at=updated, stale=True, error=error)
    return TimeframeState(
        pattern="No Setup",
        pattern_type=PatternType(pattern_type) if pattern_type else None,
        last_updated_at=updated,
        stale=stale,
    )


def make_analysis(htf, ltf, symbol="BTC", market_id=1, stale=(), errors=()):
    """FTC snapshot from 4 HTF and 4 LTF pattern codes (None = missing entry)."""
    timeframes: dict[TimeFrame, TimeframeState] = {}
    for tf, code in zip(HTF_TIMEFRAMES + LTF_TIMEFRAMES, list(htf) + list(ltf)):
        if tf in errors:
            timeframes[tf] = make_state(error="boom")
        elif code is not None:
            timeframes[tf] = make_state(code, stale=tf in stale)
    return MultiTimeframeAnalysis(market_id=market_id, symbol=symbol, timeframes=timeframes)


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, start: int = BASE_TS):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeFetcher:
    """In-memory CandleFetcher.

    `candles` maps (market_id, timeframe) -> list of candles, or an exception
    instance to raise. Unknown keys return `default`.
    """

    def __init__(self, candles: Optional[dict] = None, default=None, delay: float = 0.0):
        self.candles = candles or {}
        self.default = default if default is not None else make_series((110, 90), (108, 92), (115, 95))
        self.delay = delay
        self.calls: list[tuple[int, TimeFrame, int]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def fetch_candles(self, market_id, timeframe, count_back):
        self.calls.append((market_id, timeframe, count_back))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            result = self.candles.get((market_id, timeframe), self.default)
            if isinstance(result, Exception):
                raise result
            return result
        finally:
            self.in_flight -= 1
