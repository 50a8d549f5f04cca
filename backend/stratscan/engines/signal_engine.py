"""
Strat Scanner — FTC Signal Engine

Turns per-market FTC snapshots into scored trade signals.

Scopes:
  HTF  1h, 4h, 12h, 1d
  LTF  1m, 5m, 15m, 30m

Detectors (count-based, no raw candles):
  CA     Chop Avoidance — both scopes choppy; attached as a flag only
  HTFBC  HTF Bias Confirmation — HTF ≥3/4 one way, LTF ≥3/4 agreeing, no stale HTF
  IC     Inside Compression — HTF inside-heavy, LTF ≥3/4 one way, HTF unopposed

HTFBC conviction (0–100):
  HTF alignment   max(2U, 2D) × 10      (≤ 40)
  LTF alignment   max(2U, 2D) × 7.5     (≤ 30)
  Direction bonus +15 when HTF bias == LTF bias
  Conflict        −8 HTF 2/2 tie, −7 LTF 2/2 tie
  Data quality    −5 per stale / error / missing timeframe

IC conviction is always clamped into the near-miss band [25, 39].
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

import structlog

from stratscan.models import (
    Bias,
    FTC_TIMEFRAMES,
    HTF_TIMEFRAMES,
    LTF_TIMEFRAMES,
    MultiTimeframeAnalysis,
    PatternType,
    Signal,
    SignalDirection,
    SignalId,
    SignalReasons,
    SignalResponse,
    TimeFrame,
)

log = structlog.get_logger(__name__)

SIGNAL_THRESHOLD = 40
NEAR_MISS_THRESHOLD = 25
NEAR_MISS_CEILING = 39

_SCOPES: dict[str, tuple[TimeFrame, ...]] = {
    "htf": HTF_TIMEFRAMES,
    "ltf": LTF_TIMEFRAMES,
    "all": FTC_TIMEFRAMES,
}

_BIAS_TO_DIRECTION = {
    Bias.UP: SignalDirection.LONG,
    Bias.DOWN: SignalDirection.SHORT,
    Bias.MIXED: SignalDirection.NEUTRAL,
}


# ──────────────────────────────────────────────
# Context
# ──────────────────────────────────────────────


@dataclass
class TimeframeFlags:
    """What the signal engine needs to know about one timeframe."""
    pattern_type: Optional[PatternType] = None
    stale: bool = False
    error: bool = False


Timeframes = Mapping[TimeFrame, TimeframeFlags]


@dataclass
class SignalContext:
    symbol: str
    market_id: int
    timeframes: Timeframes
    htf_bias: Bias
    ltf_bias: Bias
    reasons: SignalReasons


# ──────────────────────────────────────────────
# Counting & Bias
# ──────────────────────────────────────────────


def count_pattern(timeframes: Timeframes, pattern: PatternType, scope: str = "all") -> int:
    return sum(
        1 for tf in _SCOPES[scope]
        if tf in timeframes and timeframes[tf].pattern_type is pattern
    )


def count_missing(timeframes: Timeframes, scope: str = "all") -> int:
    """Timeframes with no entry, or an entry with neither pattern nor error."""
    missing = 0
    for tf in _SCOPES[scope]:
        flags = timeframes.get(tf)
        if flags is None or (flags.pattern_type is None and not flags.error):
            missing += 1
    return missing


def count_stale(timeframes: Timeframes, scope: str = "all") -> int:
    return sum(1 for tf in _SCOPES[scope] if tf in timeframes and timeframes[tf].stale)


def count_error(timeframes: Timeframes, scope: str = "all") -> int:
    return sum(1 for tf in _SCOPES[scope] if tf in timeframes and timeframes[tf].error)


def compute_bias(timeframes: Timeframes, scope: str) -> Bias:
    """2U if bullish bars outnumber bearish, 2D if the reverse, else mixed."""
    bullish = count_pattern(timeframes, PatternType.DIRECTIONAL_UP, scope)
    bearish = count_pattern(timeframes, PatternType.DIRECTIONAL_DOWN, scope)
    if bullish > bearish:
        return Bias.UP
    if bearish > bullish:
        return Bias.DOWN
    return Bias.MIXED


def compute_htf_bias(timeframes: Timeframes) -> Bias:
    return compute_bias(timeframes, "htf")


def compute_ltf_bias(timeframes: Timeframes) -> Bias:
    return compute_bias(timeframes, "ltf")


def build_reasons(timeframes: Timeframes) -> SignalReasons:
    return SignalReasons(
        htf_bullish=count_pattern(timeframes, PatternType.DIRECTIONAL_UP, "htf"),
        htf_bearish=count_pattern(timeframes, PatternType.DIRECTIONAL_DOWN, "htf"),
        ltf_bullish=count_pattern(timeframes, PatternType.DIRECTIONAL_UP, "ltf"),
        ltf_bearish=count_pattern(timeframes, PatternType.DIRECTIONAL_DOWN, "ltf"),
        stale_count=count_stale(timeframes),
        error_count=count_error(timeframes),
        missing_count=count_missing(timeframes),
        htf_bias=compute_htf_bias(timeframes),
        ltf_bias=compute_ltf_bias(timeframes),
    )


def build_context(analysis: MultiTimeframeAnalysis) -> SignalContext:
    """Snapshot one market's timeframe states into signal-engine flags."""
    timeframes: dict[TimeFrame, TimeframeFlags] = {
        tf: TimeframeFlags(
            pattern_type=state.pattern_type,
            stale=state.stale,
            error=bool(state.error),
        )
        for tf, state in analysis.timeframes.items()
    }
    reasons = build_reasons(timeframes)
    return SignalContext(
        symbol=analysis.symbol,
        market_id=analysis.market_id,
        timeframes=timeframes,
        htf_bias=reasons.htf_bias,
        ltf_bias=reasons.ltf_bias,
        reasons=reasons,
    )


# ──────────────────────────────────────────────
# Detectors
# ──────────────────────────────────────────────


def _is_choppy(timeframes: Timeframes, scope: str) -> bool:
    bullish = count_pattern(timeframes, PatternType.DIRECTIONAL_UP, scope)
    bearish = count_pattern(timeframes, PatternType.DIRECTIONAL_DOWN, scope)
    inside = count_pattern(timeframes, PatternType.INSIDE, scope)
    outside = count_pattern(timeframes, PatternType.OUTSIDE, scope)
    return (bullish == 2 and bearish == 2) or (inside + outside) >= 2


def detect_chop_avoidance(context: SignalContext) -> bool:
    """Both HTF and LTF are choppy."""
    return _is_choppy(context.timeframes, "htf") and _is_choppy(context.timeframes, "ltf")


def detect_htf_bias_confirmation(context: SignalContext) -> bool:
    if context.htf_bias is Bias.MIXED:
        return False

    pattern = PatternType(context.htf_bias.value)
    if count_pattern(context.timeframes, pattern, "htf") < 3:
        return False
    if count_pattern(context.timeframes, pattern, "ltf") < 3:
        return False

    return count_stale(context.timeframes, "htf") == 0


def detect_inside_compression(context: SignalContext) -> Optional[SignalDirection]:
    """Early-breakout candidate; returns LONG/SHORT when detected, else None."""
    r = context.reasons

    if count_pattern(context.timeframes, PatternType.INSIDE, "htf") < 2:
        return None

    strong_htf = context.htf_bias is not Bias.MIXED and (r.htf_bullish >= 3 or r.htf_bearish >= 3)
    if strong_htf:
        return None

    if r.ltf_bullish >= 3 and r.htf_bearish == 0:
        return SignalDirection.LONG
    if r.ltf_bearish >= 3 and r.htf_bullish == 0:
        return SignalDirection.SHORT
    return None


def determine_direction(context: SignalContext) -> SignalDirection:
    return _BIAS_TO_DIRECTION[context.htf_bias]


# ──────────────────────────────────────────────
# Scoring
# ──────────────────────────────────────────────


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def score_signal(context: SignalContext) -> int:
    """HTFBC conviction, clamped to 0–100."""
    r = context.reasons
    score = 0.0

    score += min(40.0, max(r.htf_bullish, r.htf_bearish) * 10)
    score += min(30.0, max(r.ltf_bullish, r.ltf_bearish) * 7.5)

    if context.htf_bias is not Bias.MIXED and context.htf_bias is context.ltf_bias:
        score += 15

    if r.htf_bullish == 2 and r.htf_bearish == 2:
        score -= 8
    if r.ltf_bullish == 2 and r.ltf_bearish == 2:
        score -= 7

    score -= 5 * (r.stale_count + r.error_count + r.missing_count)

    return _round_half_up(max(0.0, min(100.0, score)))


def score_inside_compression(
    context: SignalContext,
    direction: Optional[SignalDirection] = None,
) -> int:
    """IC conviction, always inside the near-miss band [25, 39]."""
    r = context.reasons
    if direction is None:
        direction = SignalDirection.LONG if context.ltf_bias is Bias.UP else SignalDirection.SHORT

    long = direction is SignalDirection.LONG
    aligned = r.ltf_bullish if long else r.ltf_bearish
    opposing = r.htf_bearish if long else r.htf_bullish

    score = 20
    score += min(4, aligned) * 5
    if opposing == 0:
        score += 5

    score -= 5 * r.stale_count
    score -= 10 * r.error_count
    score -= 5 * r.missing_count

    return max(NEAR_MISS_THRESHOLD, min(NEAR_MISS_CEILING, score))


# ──────────────────────────────────────────────
# Signal Generation
# ──────────────────────────────────────────────


def generate_signals(analysis: MultiTimeframeAnalysis) -> list[Signal]:
    """At most one signal per market: HTFBC, else IC."""
    context = build_context(analysis)
    chop = detect_chop_avoidance(context)

    if detect_htf_bias_confirmation(context):
        return [
            Signal(
                id=SignalId.HTF_BIAS_CONFIRMATION,
                name="HTF Bias Confirmation",
                symbol=context.symbol,
                market_id=context.market_id,
                direction=determine_direction(context),
                conviction=score_signal(context),
                reasons=context.reasons,
                suppressed_by_chop=chop,
            )
        ]

    ic_direction = detect_inside_compression(context)
    if ic_direction is not None:
        return [
            Signal(
                id=SignalId.INSIDE_COMPRESSION,
                name="Inside Compression - Early Breakout",
                symbol=context.symbol,
                market_id=context.market_id,
                direction=ic_direction,
                conviction=score_inside_compression(context, ic_direction),
                reasons=context.reasons,
                suppressed_by_chop=chop,
            )
        ]

    return []


def generate_signal_response(analyses: Sequence[MultiTimeframeAnalysis]) -> SignalResponse:
    """Signals (≥ 40) and near-misses (25–39), each sorted by conviction desc."""
    fired: list[Signal] = []
    for analysis in analyses:
        fired.extend(generate_signals(analysis))

    signals = sorted(
        (s for s in fired if s.conviction >= SIGNAL_THRESHOLD),
        key=lambda s: s.conviction,
        reverse=True,
    )
    near_misses = sorted(
        (s for s in fired if NEAR_MISS_THRESHOLD <= s.conviction < SIGNAL_THRESHOLD),
        key=lambda s: s.conviction,
        reverse=True,
    )

    log.info(
        "signals.generated",
        markets=len(analyses),
        signals=len(signals),
        near_misses=len(near_misses),
        discarded=len(fired) - len(signals) - len(near_misses),
    )
    return SignalResponse(signals=signals, near_misses=near_misses)
