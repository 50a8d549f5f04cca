"""
Strat Scanner — Lighter Exchange Client

Thin async wrapper around the Lighter perpetuals REST API.
Docs base: https://mainnet.zklighter.elliot.ai/api/v1

Provides the active market list and OHLCV candles. Candle responses are
normalised here so the engines can rely on ascending, timestamp-unique bars.
"""

from __future__ import annotations

import time
from typing import Any, Optional

import httpx
import structlog

from stratscan.config import get_settings
from stratscan.models import Candle, Market, TimeFrame
from stratscan.utils.retry import with_retry

log = structlog.get_logger(__name__)

_DAY_SECONDS = 86_400
_WEEK_MS = 7 * _DAY_SECONDS * 1000
_LOOKBACK_DAYS = 30


def _pick(raw: dict, short: str, long: str) -> Any:
    """Read a candle field from either the short (`t`) or long (`timestamp`) format."""
    value = raw.get(short)
    if value is None:
        value = raw.get(long)
    return value if value is not None else 0


def convert_candle(raw: dict) -> Candle:
    """Convert a raw Lighter candle (either field format) into a Candle."""
    return Candle(
        timestamp=int(_pick(raw, "t", "timestamp")),
        open=float(_pick(raw, "o", "open")),
        high=float(_pick(raw, "h", "high")),
        low=float(_pick(raw, "l", "low")),
        close=float(_pick(raw, "c", "close")),
        volume=float(_pick(raw, "v", "volume0")),
    )


def normalize_candles(raw_candles: list[dict], count_back: int, now_ms: Optional[int] = None) -> list[Candle]:
    """Deduplicate, sort and filter raw candles; keep the newest `count_back`.

    - duplicate timestamps: the last occurrence wins
    - flat zero-volume placeholder bars are dropped
    - bars more than a week in the future are dropped
    """
    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)

    by_ts: dict[int, Candle] = {}
    for raw in raw_candles:
        candle = convert_candle(raw)
        by_ts[candle.timestamp] = candle

    valid = []
    for candle in sorted(by_ts.values(), key=lambda c: c.timestamp):
        flat = candle.volume == 0 and candle.open == candle.high == candle.low == candle.close
        future = candle.timestamp > now_ms + _WEEK_MS
        if not flat and not future:
            valid.append(candle)

    return valid[-count_back:] if count_back > 0 else []


class LighterClient:
    """Lighter REST client; implements the FTC engine's CandleFetcher."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self._base_url = (base_url or settings.lighter_api_url).rstrip("/")
        self._timeout = timeout if timeout is not None else settings.lighter_timeout_seconds
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    @with_retry(max_attempts=3)
    async def fetch_markets(self) -> list[Market]:
        """Active order books, indexed in listing order."""
        async with self._client() as client:
            resp = await client.get(f"{self._base_url}/orderBooks")
            resp.raise_for_status()
            data = resp.json()

        books = [ob for ob in data.get("order_books", []) if ob.get("status") == "active"]
        return [
            Market(symbol=ob["symbol"], market_id=int(ob["market_id"]), market_index=i)
            for i, ob in enumerate(books)
        ]

    @with_retry(max_attempts=3)
    async def fetch_candles(
        self,
        market_id: int,
        timeframe: TimeFrame,
        count_back: int = 20,
    ) -> list[Candle]:
        """Most recent `count_back` candles, ascending and unique by timestamp."""
        now = int(time.time())
        params = {
            "market_id": market_id,
            "resolution": timeframe.value,
            "count_back": count_back,
            "start_timestamp": now - _DAY_SECONDS * _LOOKBACK_DAYS,
            "end_timestamp": now + _DAY_SECONDS,
        }

        async with self._client() as client:
            resp = await client.get(f"{self._base_url}/candles", params=params)
            resp.raise_for_status()
            data = resp.json()

        raw = data.get("c") or data.get("candles") or data.get("candlesticks") or []
        candles = normalize_candles(raw, count_back, now_ms=now * 1000)
        log.debug(
            "lighter.candles",
            market_id=market_id,
            timeframe=timeframe.value,
            received=len(raw),
            kept=len(candles),
        )
        return candles
