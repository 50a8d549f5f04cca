"""
Lighter Client Tests

Candle normalisation and the HTTP client against httpx.MockTransport.
"""

from __future__ import annotations

import asyncio
from unittest.mock import patch

import httpx
import pytest

from stratscan.data.lighter_client import LighterClient, convert_candle, normalize_candles
from stratscan.models import TimeFrame

NOW_MS = 1_700_000_000_000
WEEK_MS = 7 * 86_400 * 1000
BASE_URL = "https://lighter.test/api/v1"


def _raw(t, o=100.0, h=110.0, l=90.0, c=105.0, v=5.0):
    return {"t": t, "o": o, "h": h, "l": l, "c": c, "v": v}


def _client(handler):
    return LighterClient(base_url=BASE_URL, timeout=1.0, transport=httpx.MockTransport(handler))


class TestConvertCandle:
    def test_short_format(self):
        candle = convert_candle(_raw(1000))
        assert candle.timestamp == 1000
        assert (candle.open, candle.high, candle.low, candle.close) == (100.0, 110.0, 90.0, 105.0)
        assert candle.volume == 5.0

    def test_long_format(self):
        candle = convert_candle({
            "timestamp": "2000", "open": "1.5", "high": "2", "low": "1", "close": "1.8", "volume0": "12",
        })
        assert candle.timestamp == 2000
        assert candle.high == 2.0
        assert candle.volume == 12.0

    def test_missing_fields_default_to_zero(self):
        candle = convert_candle({"t": 5, "h": 3})
        assert candle.open == 0.0
        assert candle.volume == 0.0


class TestNormalizeCandles:
    def test_sorts_ascending(self):
        candles = normalize_candles([_raw(3000), _raw(1000), _raw(2000)], 10, now_ms=NOW_MS)
        assert [c.timestamp for c in candles] == [1000, 2000, 3000]

    def test_duplicate_timestamp_last_wins(self):
        candles = normalize_candles([_raw(1000, h=111), _raw(1000, h=222)], 10, now_ms=NOW_MS)
        assert len(candles) == 1
        assert candles[0].high == 222

    def test_drops_flat_zero_volume_bars(self):
        flat = _raw(2000, o=50, h=50, l=50, c=50, v=0)
        candles = normalize_candles([_raw(1000), flat], 10, now_ms=NOW_MS)
        assert [c.timestamp for c in candles] == [1000]

    def test_keeps_flat_bar_with_volume(self):
        candles = normalize_candles([_raw(1000, o=50, h=50, l=50, c=50, v=1)], 10, now_ms=NOW_MS)
        assert len(candles) == 1

    def test_drops_far_future_bars(self):
        candles = normalize_candles(
            [_raw(NOW_MS), _raw(NOW_MS + WEEK_MS + 1)], 10, now_ms=NOW_MS
        )
        assert [c.timestamp for c in candles] == [NOW_MS]

    def test_keeps_newest_count_back(self):
        raw = [_raw(t) for t in range(1000, 11000, 1000)]
        candles = normalize_candles(raw, 3, now_ms=NOW_MS)
        assert [c.timestamp for c in candles] == [8000, 9000, 10000]


class TestLighterClient:
    def test_fetch_candles(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={"c": [_raw(2000), _raw(1000), _raw(2000, h=120)]})

        candles = asyncio.run(_client(handler).fetch_candles(7, TimeFrame.H4, 20))

        assert seen["path"] == "/api/v1/candles"
        assert seen["params"]["market_id"] == "7"
        assert seen["params"]["resolution"] == "4h"
        assert seen["params"]["count_back"] == "20"
        assert int(seen["params"]["start_timestamp"]) < int(seen["params"]["end_timestamp"])
        assert [c.timestamp for c in candles] == [1000, 2000]
        assert candles[1].high == 120

    @pytest.mark.parametrize("envelope", ["c", "candles", "candlesticks"])
    def test_candle_envelopes(self, envelope):
        def handler(request):
            return httpx.Response(200, json={envelope: [_raw(1000)]})

        candles = asyncio.run(_client(handler).fetch_candles(1, TimeFrame.M1, 5))
        assert len(candles) == 1

    def test_empty_payload(self):
        def handler(request):
            return httpx.Response(200, json={})

        assert asyncio.run(_client(handler).fetch_candles(1, TimeFrame.M1, 5)) == []

    def test_http_error_raises_without_retry(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503, json={"message": "unavailable"})

        with pytest.raises(httpx.HTTPStatusError):
            asyncio.run(_client(handler).fetch_candles(1, TimeFrame.M1, 5))
        assert len(calls) == 1

    def test_transport_error_is_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) < 3:
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(200, json={"c": [_raw(1000)]})

        with patch("stratscan.utils.retry.RetryPolicy.delay_for", return_value=0.0):
            candles = asyncio.run(_client(handler).fetch_candles(1, TimeFrame.M1, 5))

        assert len(calls) == 3
        assert len(candles) == 1

    def test_fetch_markets_active_only(self):
        def handler(request):
            assert request.url.path == "/api/v1/orderBooks"
            return httpx.Response(200, json={"order_books": [
                {"symbol": "ETH", "market_id": 0, "status": "active"},
                {"symbol": "OLD", "market_id": 5, "status": "inactive"},
                {"symbol": "BTC", "market_id": "1", "status": "active"},
            ]})

        markets = asyncio.run(_client(handler).fetch_markets())
        assert [(m.symbol, m.market_id, m.market_index) for m in markets] == [
            ("ETH", 0, 0),
            ("BTC", 1, 1),
        ]
