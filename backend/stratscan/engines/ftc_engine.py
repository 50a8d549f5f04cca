"""
Strat Scanner — Full Timeframe Continuity (FTC) Engine

Orchestrates multi-timeframe Strat analysis:
  - per-(market, timeframe) states served from the TTL cache when fresh
  - cache misses fetched through the shared concurrency limiter
  - every (market, timeframe) pair of a scan requested concurrently
  - failures absorbed into error states, never raised to the caller

Known relaxation: two concurrent misses for the same key both fetch; the
later write simply replaces the earlier one.
"""

from __future__ import annotations

import asyncio
from typing import Mapping, Protocol, Sequence

import structlog

from stratscan.cache import TimeframeCache
from stratscan.engines.strat_engine import analyze_candles, identify_actionable_setup
from stratscan.models import (
    Candle,
    CandleAnalysis,
    Confluence,
    Direction,
    FTC_TIMEFRAMES,
    Market,
    MarketAnalysis,
    MultiTimeframeAnalysis,
    PatternType,
    TimeFrame,
    TimeframeState,
)
from stratscan.utils.concurrency import ConcurrencyLimiter

log = structlog.get_logger(__name__)

DEFAULT_CANDLE_COUNT = 20
NO_SETUP = "No Setup"
ERROR_PATTERN = "Error"


class EmptyCandlesError(RuntimeError):
    """Raised when the data source returns no candles."""


class CandleFetcher(Protocol):
    """Market-data collaborator: ascending, timestamp-unique candles."""

    async def fetch_candles(
        self, market_id: int, timeframe: TimeFrame, count_back: int
    ) -> list[Candle]:
        ...


# ──────────────────────────────────────────────
# Confluence
# ──────────────────────────────────────────────


def calculate_confluence(timeframes: Mapping[TimeFrame, TimeframeState]) -> Confluence:
    """Directional timeframe sets from per-timeframe states.

    Only 2U counts as bullish and only 2D as bearish; inside and outside bars
    are present but directionless. Missing and errored entries are skipped.
    Output follows canonical timeframe order, not mapping order.
    """
    bullish: list[TimeFrame] = []
    bearish: list[TimeFrame] = []
    total = 0

    for tf in FTC_TIMEFRAMES:
        state = timeframes.get(tf)
        if state is None or state.error:
            continue

        total += 1
        if state.pattern_type is PatternType.DIRECTIONAL_UP:
            bullish.append(tf)
        elif state.pattern_type is PatternType.DIRECTIONAL_DOWN:
            bearish.append(tf)

    return Confluence(
        bullish_timeframes=bullish,
        bearish_timeframes=bearish,
        total_timeframes=total,
    )


# ──────────────────────────────────────────────
# Engine
# ──────────────────────────────────────────────


class FTCEngine:
    """Cache-backed, rate-limited multi-timeframe scanner.

    Usage:
        engine = FTCEngine(client, ConcurrencyLimiter(5), TimeframeCache())
        analyses = await engine.get_multi_timeframe_state(markets)
    """

    def __init__(
        self,
        fetcher: CandleFetcher,
        limiter: ConcurrencyLimiter,
        cache: TimeframeCache,
    ):
        self._fetcher = fetcher
        self._limiter = limiter
        self._cache = cache

    @property
    def limiter(self) -> ConcurrencyLimiter:
        return self._limiter

    @property
    def cache(self) -> TimeframeCache:
        return self._cache

    async def _load(self, market_id: int, timeframe: TimeFrame, count: int) -> CandleAnalysis:
        candles = await self._fetcher.fetch_candles(market_id, timeframe, count)
        if not candles:
            raise EmptyCandlesError("No candles returned from API")
        return analyze_candles(candles)

    async def _refresh(self, market_id: int, timeframe: TimeFrame, count: int) -> TimeframeState:
        """Fetch, analyze and cache one pair. Runs inside a limiter slot, so the
        cache is populated even if the caller that queued it has gone away."""
        analysis = await self._load(market_id, timeframe, count)
        setup = analysis.actionable_setup
        state = TimeframeState(
            pattern=setup.pattern if setup else NO_SETUP,
            direction=setup.direction if setup else Direction.NEUTRAL,
            pattern_type=analysis.candles[-1].pattern_type,
            last_updated_at=self._cache.now(),
            stale=False,
        )
        self._cache.set(market_id, timeframe, state)
        log.debug(
            "ftc.refreshed",
            market_id=market_id,
            timeframe=timeframe.value,
            pattern_type=state.pattern_type.value if state.pattern_type else None,
        )
        return state

    async def get_state(
        self,
        market_id: int,
        timeframe: TimeFrame,
        candle_count: int = DEFAULT_CANDLE_COUNT,
    ) -> TimeframeState:
        """Cached state for one pair, refreshed through the limiter on miss."""
        cached = self._cache.get(market_id, timeframe)
        if cached is not None:
            log.debug("ftc.cache_hit", market_id=market_id, timeframe=timeframe.value, stale=cached.stale)
            return cached

        try:
            return await self._limiter.execute(
                lambda: self._refresh(market_id, timeframe, candle_count)
            )
        except Exception as exc:
            log.warning(
                "ftc.fetch_failed",
                market_id=market_id,
                timeframe=timeframe.value,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return TimeframeState(
                pattern=ERROR_PATTERN,
                direction=Direction.NEUTRAL,
                last_updated_at=self._cache.now(),
                stale=True,
                error=str(exc) or type(exc).__name__,
            )

    async def analyze_market(
        self,
        market: Market,
        candle_count: int = DEFAULT_CANDLE_COUNT,
    ) -> MultiTimeframeAnalysis:
        """All FTC timeframes of one market, gathered before confluence is computed."""
        states = await asyncio.gather(
            *(self.get_state(market.market_id, tf, candle_count) for tf in FTC_TIMEFRAMES)
        )
        timeframes = dict(zip(FTC_TIMEFRAMES, states))

        return MultiTimeframeAnalysis(
            market_id=market.market_id,
            symbol=market.symbol,
            timeframes=timeframes,
            confluence=calculate_confluence(timeframes),
            last_updated_at=max((s.last_updated_at for s in states), default=0),
        )

    async def get_multi_timeframe_state(
        self,
        markets: Sequence[Market],
        candle_count: int = DEFAULT_CANDLE_COUNT,
    ) -> list[MultiTimeframeAnalysis]:
        """FTC matrix for many markets; the limiter is the only throttle."""
        results = await asyncio.gather(
            *(self.analyze_market(m, candle_count) for m in markets)
        )
        log.info(
            "ftc.scan_complete",
            markets=len(markets),
            limiter=self._limiter.stats(),
            cache=self._cache.stats(),
        )
        return list(results)

    # ──────────────────────────────────────────
    # Single-timeframe analysis (uncached)
    # ──────────────────────────────────────────

    async def get_candles(
        self,
        market_id: int,
        timeframe: TimeFrame,
        candle_count: int = 50,
    ) -> CandleAnalysis:
        """Classified candles for charting; empty analysis on failure."""
        try:
            return await self._limiter.execute(
                lambda: self._load(market_id, timeframe, candle_count)
            )
        except Exception as exc:
            log.warning("strat.candles_failed", market_id=market_id, timeframe=timeframe.value, error=str(exc))
            return CandleAnalysis()

    async def analyze_timeframe(
        self,
        market: Market,
        timeframe: TimeFrame,
        candle_count: int = DEFAULT_CANDLE_COUNT,
    ) -> MarketAnalysis:
        analysis = await self.get_candles(market.market_id, timeframe, candle_count)
        current = analysis.candles[-1] if analysis.candles else None
        return MarketAnalysis(
            market=market,
            timeframe=timeframe,
            candles=analysis.candles,
            current_candle=current,
            pattern_sequence=analysis.pattern_sequence,
            actionable_setup=analysis.actionable_setup,
            sequence_setup=identify_actionable_setup(analysis.candles),
        )

    async def scan_timeframe(
        self,
        markets: Sequence[Market],
        timeframe: TimeFrame,
        candle_count: int = DEFAULT_CANDLE_COUNT,
    ) -> list[MarketAnalysis]:
        """One timeframe across many markets, one analysis per market."""
        return list(
            await asyncio.gather(
                *(self.analyze_timeframe(m, timeframe, candle_count) for m in markets)
            )
        )
