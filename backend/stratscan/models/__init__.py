"""
Strat Scanner — Pydantic Models

All I/O schemas for the scanner. Engines return these, the FTC cache stores
them, API routes serialize them (camelCase on the wire, snake_case in Python).
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _WireModel(BaseModel):
    """Base model: snake_case attributes, camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ──────────────────────────────────────────────
# Enums
# ──────────────────────────────────────────────

class PatternType(str, Enum):
    """Strat candle classification relative to the previous candle."""
    INSIDE = "1"
    DIRECTIONAL_UP = "2U"
    DIRECTIONAL_DOWN = "2D"
    OUTSIDE = "3"

    @property
    def is_directional(self) -> bool:
        return self in (PatternType.DIRECTIONAL_UP, PatternType.DIRECTIONAL_DOWN)


class Direction(str, Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class SetupType(str, Enum):
    """Family of a closed-candle three-bar sequence."""
    CONTINUATION = "continuation"
    REVERSAL = "reversal"
    BREAKOUT = "breakout"


class TimeFrame(str, Enum):
    """Supported chart timeframes."""
    M1 = "1m"
    M5 = "5m"
    M15 = "15m"
    M30 = "30m"
    H1 = "1h"
    H4 = "4h"
    H12 = "12h"
    D1 = "1d"
    W1 = "1w"


class Bias(str, Enum):
    """Directional majority of a timeframe scope."""
    UP = "2U"
    DOWN = "2D"
    MIXED = "mixed"


class SignalDirection(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"
    NEUTRAL = "NEUTRAL"


class SignalId(str, Enum):
    CHOP_AVOIDANCE = "CA"
    HTF_BIAS_CONFIRMATION = "HTFBC"
    INSIDE_COMPRESSION = "IC"


# Canonical FTC ordering, fastest to slowest.
LTF_TIMEFRAMES: tuple[TimeFrame, ...] = (TimeFrame.M1, TimeFrame.M5, TimeFrame.M15, TimeFrame.M30)
HTF_TIMEFRAMES: tuple[TimeFrame, ...] = (TimeFrame.H1, TimeFrame.H4, TimeFrame.H12, TimeFrame.D1)
FTC_TIMEFRAMES: tuple[TimeFrame, ...] = LTF_TIMEFRAMES + HTF_TIMEFRAMES


# ──────────────────────────────────────────────
# Candle Models
# ──────────────────────────────────────────────

class Candle(_WireModel):
    """Single OHLCV bar. `timestamp` is epoch milliseconds."""
    model_config = ConfigDict(frozen=True)

    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    @property
    def is_bullish(self) -> bool:
        return self.close > self.open


class ClassifiedCandle(Candle):
    """Candle plus its Strat type; None for the first bar of a series."""
    pattern_type: Optional[PatternType] = None


class ActionableSetup(_WireModel):
    """Predictive setup for the most recent (possibly forming) candle."""
    pattern: str
    direction: Direction
    description: str
    confidence: Confidence
    trigger_price: Optional[float] = None


class SequenceSetup(_WireModel):
    """Setup matched from the last three closed candles."""
    type: SetupType
    pattern: str
    direction: Direction
    description: str
    trigger_price: float


class CandleAnalysis(_WireModel):
    """Classified series with its sequence string and predictive setup."""
    candles: list[ClassifiedCandle] = []
    pattern_sequence: str = ""
    actionable_setup: Optional[ActionableSetup] = None


# ──────────────────────────────────────────────
# Market / FTC Models
# ──────────────────────────────────────────────

class Market(_WireModel):
    symbol: str
    market_id: int
    market_index: int = 0


DEFAULT_MARKETS: list[Market] = [
    Market(symbol="ETH", market_id=0, market_index=0),
    Market(symbol="BTC", market_id=1, market_index=1),
    Market(symbol="SOL", market_id=2, market_index=2),
    Market(symbol="DOGE", market_id=3, market_index=3),
    Market(symbol="1000PEPE", market_id=4, market_index=4),
    Market(symbol="WIF", market_id=5, market_index=5),
    Market(symbol="WLD", market_id=6, market_index=6),
    Market(symbol="XRP", market_id=7, market_index=7),
    Market(symbol="LINK", market_id=8, market_index=8),
    Market(symbol="AVAX", market_id=9, market_index=9),
]


class MarketAnalysis(_WireModel):
    """Single-timeframe analysis of one market."""
    market: Market
    timeframe: TimeFrame
    candles: list[ClassifiedCandle] = []
    current_candle: Optional[ClassifiedCandle] = None
    pattern_sequence: str = ""
    actionable_setup: Optional[ActionableSetup] = None
    sequence_setup: Optional[SequenceSetup] = None


class TimeframeState(_WireModel):
    """Cached Strat state of one (market, timeframe) pair."""
    pattern: str
    direction: Direction = Direction.NEUTRAL
    pattern_type: Optional[PatternType] = None
    last_updated_at: int
    stale: bool = False
    error: Optional[str] = None


class Confluence(_WireModel):
    bullish_timeframes: list[TimeFrame] = []
    bearish_timeframes: list[TimeFrame] = []
    total_timeframes: int = 0


class MultiTimeframeAnalysis(_WireModel):
    """FTC snapshot of one market across all tracked timeframes."""
    market_id: int
    symbol: str
    timeframes: dict[TimeFrame, TimeframeState] = {}
    confluence: Confluence = Field(default_factory=Confluence)
    last_updated_at: int = 0


# ──────────────────────────────────────────────
# Signal Models
# ──────────────────────────────────────────────

class SignalReasons(_WireModel):
    """Structured counts behind a signal."""
    htf_bullish: int = 0
    htf_bearish: int = 0
    ltf_bullish: int = 0
    ltf_bearish: int = 0
    stale_count: int = 0
    error_count: int = 0
    missing_count: int = 0
    htf_bias: Bias = Bias.MIXED
    ltf_bias: Bias = Bias.MIXED


class Signal(_WireModel):
    id: SignalId
    name: str
    symbol: str
    market_id: int
    direction: SignalDirection
    conviction: int = Field(ge=0, le=100)
    reasons: SignalReasons
    suppressed_by_chop: bool = False


class SignalResponse(_WireModel):
    signals: list[Signal] = []
    near_misses: list[Signal] = []


# ──────────────────────────────────────────────
# API Request Models
# ──────────────────────────────────────────────

class AnalyzeRequest(_WireModel):
    """Single-timeframe scan of several markets."""
    markets: list[Market]
    timeframe: TimeFrame
    candle_count: int = Field(default=20, ge=5, le=100)


class CandlesRequest(_WireModel):
    market_id: int
    timeframe: TimeFrame
    candle_count: int = Field(default=50, ge=5, le=200)


class FTCRequest(_WireModel):
    """Multi-timeframe scan; capped to keep one request from flooding the API."""
    markets: list[Market] = Field(max_length=50)
    candle_count: int = Field(default=20, ge=5, le=100)
