"""
FTC Engine Tests

Confluence, cache-backed state refresh, error absorption and limiter-bounded
fan-out, driven by an in-memory candle fetcher.
"""

from __future__ import annotations

import asyncio

from helpers import FakeClock, FakeFetcher, make_candle, make_series, make_state

from stratscan.cache import TTL_BY_TIMEFRAME, TimeframeCache
from stratscan.engines.ftc_engine import FTCEngine, calculate_confluence
from stratscan.models import (
    FTC_TIMEFRAMES,
    Direction,
    Market,
    PatternType,
    TimeFrame,
)
from stratscan.utils.concurrency import ConcurrencyLimiter

BTC = Market(symbol="BTC", market_id=1, market_index=1)
ETH = Market(symbol="ETH", market_id=0, market_index=0)


def _engine(fetcher=None, max_concurrent=5, clock=None):
    clock = clock or FakeClock()
    return FTCEngine(
        fetcher or FakeFetcher(),
        ConcurrencyLimiter(max_concurrent),
        TimeframeCache(clock=clock),
    )


class TestCalculateConfluence:
    def test_empty_map(self):
        conf = calculate_confluence({})
        assert conf.bullish_timeframes == []
        assert conf.bearish_timeframes == []
        assert conf.total_timeframes == 0

    def test_directional_split(self):
        conf = calculate_confluence({
            TimeFrame.H1: make_state("2U"),
            TimeFrame.H4: make_state("2D"),
            TimeFrame.D1: make_state("1"),
            TimeFrame.M5: make_state("3"),
        })
        assert conf.bullish_timeframes == [TimeFrame.H1]
        assert conf.bearish_timeframes == [TimeFrame.H4]
        assert conf.total_timeframes == 4

    def test_errors_are_excluded(self):
        conf = calculate_confluence({
            TimeFrame.H1: make_state("2U"),
            TimeFrame.H4: make_state(error="timeout"),
        })
        assert conf.total_timeframes == 1
        assert conf.bullish_timeframes == [TimeFrame.H1]

    def test_canonical_order(self):
        conf = calculate_confluence({
            TimeFrame.D1: make_state("2U"),
            TimeFrame.M1: make_state("2U"),
            TimeFrame.H4: make_state("2U"),
            TimeFrame.M15: make_state("2U"),
        })
        assert conf.bullish_timeframes == [TimeFrame.M1, TimeFrame.M15, TimeFrame.H4, TimeFrame.D1]


class TestGetState:
    def test_miss_fetches_and_caches(self):
        fetcher = FakeFetcher()
        engine = _engine(fetcher)

        async def main():
            first = await engine.get_state(1, TimeFrame.H1)
            second = await engine.get_state(1, TimeFrame.H1)
            return first, second

        first, second = asyncio.run(main())
        assert len(fetcher.calls) == 1
        assert fetcher.calls[0] == (1, TimeFrame.H1, 20)
        assert first.pattern_type is PatternType.DIRECTIONAL_UP
        assert first.pattern == "2U Active"
        assert first.direction is Direction.BULLISH
        assert first.stale is False
        assert second == first

    def test_expired_entry_is_refetched(self):
        clock = FakeClock()
        fetcher = FakeFetcher()
        engine = _engine(fetcher, clock=clock)

        async def main():
            await engine.get_state(1, TimeFrame.M1)
            clock.advance(TTL_BY_TIMEFRAME[TimeFrame.M1])
            await engine.get_state(1, TimeFrame.M1)

        asyncio.run(main())
        assert len(fetcher.calls) == 2

    def test_cached_state_reports_stale(self):
        clock = FakeClock()
        engine = _engine(clock=clock)

        async def main():
            await engine.get_state(1, TimeFrame.M1)
            clock.advance(int(TTL_BY_TIMEFRAME[TimeFrame.M1] * 0.9))
            return await engine.get_state(1, TimeFrame.M1)

        assert asyncio.run(main()).stale is True

    def test_fetch_failure_yields_uncached_error_state(self):
        fetcher = FakeFetcher(candles={(1, TimeFrame.H4): ConnectionError("refused")})
        engine = _engine(fetcher)

        async def main():
            first = await engine.get_state(1, TimeFrame.H4)
            second = await engine.get_state(1, TimeFrame.H4)
            return first, second

        first, _ = asyncio.run(main())
        assert first.error == "refused"
        assert first.pattern == "Error"
        assert first.pattern_type is None
        assert first.stale is True
        assert len(fetcher.calls) == 2
        assert engine.cache.get(1, TimeFrame.H4) is None

    def test_cancelled_caller_still_populates_cache(self):
        fetcher = FakeFetcher(delay=0.01)
        engine = _engine(fetcher)

        async def main():
            caller = asyncio.ensure_future(engine.get_state(1, TimeFrame.H1))
            await asyncio.sleep(0.002)
            caller.cancel()
            await asyncio.sleep(0.05)
            return caller.cancelled()

        assert asyncio.run(main()) is True
        assert len(fetcher.calls) == 1
        cached = engine.cache.get(1, TimeFrame.H1)
        assert cached is not None
        assert cached.pattern_type is PatternType.DIRECTIONAL_UP

    def test_empty_candles_is_an_error(self):
        fetcher = FakeFetcher(candles={(1, TimeFrame.H1): []})
        state = asyncio.run(_engine(fetcher).get_state(1, TimeFrame.H1))
        assert state.error == "No candles returned from API"

    def test_unordered_candles_is_an_error(self):
        bars = [make_candle(110, 90, index=1), make_candle(108, 92, index=0)]
        fetcher = FakeFetcher(candles={(1, TimeFrame.H1): bars})
        state = asyncio.run(_engine(fetcher).get_state(1, TimeFrame.H1))
        assert state.error is not None
        assert state.pattern_type is None

    def test_single_candle_has_no_pattern(self):
        fetcher = FakeFetcher(candles={(1, TimeFrame.H1): make_series((110, 90))})
        state = asyncio.run(_engine(fetcher).get_state(1, TimeFrame.H1))
        assert state.error is None
        assert state.pattern_type is None
        assert state.pattern == "No Setup"


class TestMultiTimeframe:
    def test_every_timeframe_is_present(self):
        fetcher = FakeFetcher(candles={(1, TimeFrame.D1): TimeoutError("slow")})
        results = asyncio.run(_engine(fetcher).get_multi_timeframe_state([BTC]))

        assert len(results) == 1
        analysis = results[0]
        assert analysis.symbol == "BTC"
        assert list(analysis.timeframes) == list(FTC_TIMEFRAMES)
        assert analysis.timeframes[TimeFrame.D1].error is not None
        assert analysis.confluence.total_timeframes == 7
        assert TimeFrame.D1 not in analysis.confluence.bullish_timeframes
        assert len(analysis.confluence.bullish_timeframes) == 7

    def test_one_result_per_market_in_order(self):
        results = asyncio.run(_engine().get_multi_timeframe_state([ETH, BTC]))
        assert [r.symbol for r in results] == ["ETH", "BTC"]

    def test_fan_out_is_bounded_by_limiter(self):
        fetcher = FakeFetcher(delay=0.005)
        engine = _engine(fetcher, max_concurrent=3)
        asyncio.run(engine.get_multi_timeframe_state([ETH, BTC]))

        assert len(fetcher.calls) == 2 * len(FTC_TIMEFRAMES)
        assert fetcher.max_in_flight == 3
        assert engine.limiter.stats()["currently_running"] == 0

    def test_warm_cache_skips_fetching(self):
        fetcher = FakeFetcher()
        engine = _engine(fetcher)

        async def main():
            await engine.get_multi_timeframe_state([BTC])
            await engine.get_multi_timeframe_state([BTC])

        asyncio.run(main())
        assert len(fetcher.calls) == len(FTC_TIMEFRAMES)

    def test_empty_market_list(self):
        assert asyncio.run(_engine().get_multi_timeframe_state([])) == []


class TestSingleTimeframe:
    def test_get_candles_failure_is_empty(self):
        fetcher = FakeFetcher(candles={(1, TimeFrame.H1): ConnectionError("down")})
        analysis = asyncio.run(_engine(fetcher).get_candles(1, TimeFrame.H1))
        assert analysis.candles == []
        assert analysis.pattern_sequence == ""
        assert analysis.actionable_setup is None

    def test_scan_timeframe(self):
        fetcher = FakeFetcher()
        results = asyncio.run(_engine(fetcher).scan_timeframe([ETH, BTC], TimeFrame.M15, 30))

        assert [r.market.symbol for r in results] == ["ETH", "BTC"]
        assert results[0].timeframe is TimeFrame.M15
        assert results[0].current_candle.pattern_type is PatternType.DIRECTIONAL_UP
        assert results[0].pattern_sequence == "?-1-2U"
        assert results[0].sequence_setup is None
        assert all(call[2] == 30 for call in fetcher.calls)

    def test_scan_does_not_touch_cache(self):
        engine = _engine()
        asyncio.run(engine.scan_timeframe([BTC], TimeFrame.H1))
        assert len(engine.cache) == 0

    def test_closed_candle_sequence_attached(self):
        bars = make_series((110, 90), (105, 85), (100, 88), (108, 92))
        fetcher = FakeFetcher(candles={(1, TimeFrame.H1): bars})
        [result] = asyncio.run(_engine(fetcher).scan_timeframe([BTC], TimeFrame.H1))

        assert result.pattern_sequence == "?-2D-1-2U"
        assert result.sequence_setup.pattern == "2-1-2U Rev"
        assert result.sequence_setup.type.value == "reversal"
        assert result.sequence_setup.trigger_price == 108
