"""
Strat Scanner — Strat Pattern Engine

Deterministic "The Strat" candle classification and setup detection.

Candle types (relative to the previous bar):
  1   Inside       — neither high nor low broken
  2U  Directional  — high broken, low held
  2D  Directional  — low broken, high held
  3   Outside      — both high and low broken

Two setup detectors live here and serve different call sites:
  predict_actionable_setup   — predictive; reads the still-forming last bar
  identify_actionable_setup  — closed bars only; eight fixed 3-bar sequences
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

import structlog

from stratscan.models import (
    ActionableSetup,
    Candle,
    CandleAnalysis,
    ClassifiedCandle,
    Confidence,
    Direction,
    PatternType,
    SequenceSetup,
    SetupType,
)

log = structlog.get_logger(__name__)

SEQUENCE_SEPARATOR = "-"
UNCLASSIFIED_TOKEN = "?"
DEFAULT_SEQUENCE_LENGTH = 5

# Longest run of inside bars rendered in a setup label ("2U-1-1-1 Setup").
_MAX_LABELLED_INSIDE = 3


class CandleSequenceError(ValueError):
    """Raised when candles are not strictly ascending by timestamp."""


# ──────────────────────────────────────────────
# Classification
# ──────────────────────────────────────────────


def classify_candle(current: Candle, previous: Candle) -> PatternType:
    """Classify `current` against `previous`.

    Outside is evaluated first so a bar breaking both sides is never reported
    as directional. Touching a prior extreme does not break it.
    """
    breaks_high = current.high > previous.high
    breaks_low = current.low < previous.low

    if breaks_high and breaks_low:
        return PatternType.OUTSIDE
    if breaks_high:
        return PatternType.DIRECTIONAL_UP
    if breaks_low:
        return PatternType.DIRECTIONAL_DOWN
    return PatternType.INSIDE


def validate_candles(candles: Sequence[Candle]) -> None:
    """Reject series that are not strictly ascending by timestamp."""
    for prev, cur in zip(candles, candles[1:]):
        if cur.timestamp <= prev.timestamp:
            raise CandleSequenceError(
                f"candles must be strictly ascending by timestamp "
                f"(got {cur.timestamp} after {prev.timestamp})"
            )


def classify_candles(candles: Sequence[Candle]) -> list[ClassifiedCandle]:
    """Classify every bar; the first bar has no predecessor and stays None."""
    validate_candles(candles)

    result: list[ClassifiedCandle] = []
    for i, candle in enumerate(candles):
        pattern_type = classify_candle(candle, candles[i - 1]) if i > 0 else None
        result.append(
            ClassifiedCandle(**candle.model_dump(exclude={"pattern_type"}), pattern_type=pattern_type)
        )
    return result


def get_pattern_sequence(
    candles: Sequence[ClassifiedCandle],
    count: int = DEFAULT_SEQUENCE_LENGTH,
) -> str:
    """Render the last `count` pattern types, e.g. ``"?-2U-1-1-2D"``."""
    recent = candles[-count:] if count > 0 else []
    return SEQUENCE_SEPARATOR.join(
        c.pattern_type.value if c.pattern_type else UNCLASSIFIED_TOKEN for c in recent
    )


# ──────────────────────────────────────────────
# Predictive Setup Detection
# ──────────────────────────────────────────────


@dataclass
class TriggerSearch:
    """Result of walking back over inside bars."""
    trigger: Optional[ClassifiedCandle]
    index: int
    inside_count: int


def find_trigger_bar(candles: Sequence[ClassifiedCandle], start: int) -> TriggerSearch:
    """Walk back from `start` over consecutive inside bars to the trigger bar.

    The trigger is the first 2U/2D/3 bar found. The walk stops at the start
    of the series or at an unclassified bar.
    """
    inside_count = 0
    for i in range(start, -1, -1):
        pattern = candles[i].pattern_type
        if pattern is PatternType.INSIDE:
            inside_count += 1
            continue
        if pattern is None:
            break
        return TriggerSearch(trigger=candles[i], index=i, inside_count=inside_count)
    return TriggerSearch(trigger=None, index=-1, inside_count=inside_count)


def _inside_label(trigger: PatternType, inside_count: int) -> str:
    insides = SEQUENCE_SEPARATOR.join(["1"] * min(inside_count, _MAX_LABELLED_INSIDE))
    return f"{trigger.value}-{insides} Setup"


def _forming_inside_setup(
    current: ClassifiedCandle,
    search: TriggerSearch,
) -> ActionableSetup:
    """Current bar is an inside bar: report what setup is building."""
    trigger = search.trigger
    if trigger is None:
        return ActionableSetup(
            pattern="Inside Bar",
            direction=Direction.BULLISH if current.is_bullish else Direction.BEARISH,
            description="Consolidation - watching for directional break",
            confidence=Confidence.LOW,
        )

    # The forming bar is itself inside, so it joins the run.
    label = _inside_label(trigger.pattern_type, search.inside_count + 1)

    if trigger.pattern_type is PatternType.DIRECTIONAL_UP:
        return ActionableSetup(
            pattern=label,
            direction=Direction.BULLISH,
            description=(
                f"Inside bar(s) forming after bullish move. "
                f"Break above {trigger.high:.2f} = bullish continuation"
            ),
            confidence=Confidence.HIGH,
            trigger_price=trigger.high,
        )
    if trigger.pattern_type is PatternType.DIRECTIONAL_DOWN:
        return ActionableSetup(
            pattern=label,
            direction=Direction.BEARISH,
            description=(
                f"Inside bar(s) forming after bearish move. "
                f"Break below {trigger.low:.2f} = bearish continuation"
            ),
            confidence=Confidence.HIGH,
            trigger_price=trigger.low,
        )
    return ActionableSetup(
        pattern=label,
        direction=Direction.BULLISH if trigger.is_bullish else Direction.BEARISH,
        description="Consolidation after range expansion. Breakout imminent",
        confidence=Confidence.HIGH,
    )


def _triggered_from_inside(
    current: ClassifiedCandle,
    last_completed: ClassifiedCandle,
    search: TriggerSearch,
) -> Optional[ActionableSetup]:
    """Current bar broke out of an inside run: name the 2-1-2 / 3-1-2 it fired."""
    trigger = search.trigger
    if trigger is None:
        return None

    bullish = current.pattern_type is PatternType.DIRECTIONAL_UP
    side = "2U" if bullish else "2D"
    direction = Direction.BULLISH if bullish else Direction.BEARISH
    trigger_price = last_completed.high if bullish else last_completed.low

    if trigger.pattern_type is PatternType.OUTSIDE:
        word = "Breakout" if bullish else "Breakdown"
        return ActionableSetup(
            pattern=f"3-1-{side} {word}",
            direction=direction,
            description=(
                f"{'Bullish' if bullish else 'Bearish'} {word.lower()} TRIGGERED "
                f"from range expansion + consolidation"
            ),
            confidence=Confidence.HIGH,
            trigger_price=trigger_price,
        )

    if trigger.pattern_type is current.pattern_type:
        return ActionableSetup(
            pattern=f"{side}-1-{side} Continuation",
            direction=direction,
            description=(
                f"{'Bullish' if bullish else 'Bearish'} continuation TRIGGERED! "
                f"{search.inside_count} inside bar(s) broke {'up' if bullish else 'down'}"
            ),
            confidence=Confidence.HIGH,
            trigger_price=trigger_price,
        )

    opposite = "2D" if bullish else "2U"
    return ActionableSetup(
        pattern=f"{opposite}-1-{side} Reversal",
        direction=direction,
        description=(
            f"{'Bullish' if bullish else 'Bearish'} reversal TRIGGERED! "
            f"{'Bearish' if bullish else 'Bullish'} momentum reversed after inside bar"
        ),
        confidence=Confidence.HIGH,
        trigger_price=trigger_price,
    )


def _directional_setup(
    candles: Sequence[ClassifiedCandle],
    current: ClassifiedCandle,
    last_completed: ClassifiedCandle,
) -> ActionableSetup:
    bullish = current.pattern_type is PatternType.DIRECTIONAL_UP
    direction = Direction.BULLISH if bullish else Direction.BEARISH
    last = last_completed.pattern_type

    if last is PatternType.INSIDE:
        search = find_trigger_bar(candles, len(candles) - 2)
        triggered = _triggered_from_inside(current, last_completed, search)
        if triggered is not None:
            return triggered

    if last is not None and last.is_directional and last is not current.pattern_type:
        return ActionableSetup(
            pattern="2-2 Reversal",
            direction=direction,
            description=(
                "Bullish reversal ACTIVE! Bearish→Bullish momentum shift"
                if bullish
                else "Bearish reversal ACTIVE! Bullish→Bearish momentum shift"
            ),
            confidence=Confidence.HIGH,
        )

    if last is current.pattern_type:
        return ActionableSetup(
            pattern="Bullish Momentum" if bullish else "Bearish Momentum",
            direction=direction,
            description=(
                "Strong uptrend: consecutive higher highs"
                if bullish
                else "Strong downtrend: consecutive lower lows"
            ),
            confidence=Confidence.MEDIUM,
        )

    return ActionableSetup(
        pattern=f"{current.pattern_type.value} Active",
        direction=direction,
        description=f"{'Bullish' if bullish else 'Bearish'} bar, watching for continuation",
        confidence=Confidence.LOW,
    )


def predict_actionable_setup(candles: Sequence[ClassifiedCandle]) -> Optional[ActionableSetup]:
    """Predictive setup for the most recent, possibly still-forming bar.

    The forming bar already carries a classification based on what it has
    done so far; that is used to decide whether a prior setup has triggered
    or is still building. Needs at least three classified bars.
    """
    if len(candles) < 3:
        return None

    current = candles[-1]
    last_completed = candles[-2]
    pattern = current.pattern_type

    if pattern is PatternType.INSIDE:
        search = find_trigger_bar(candles, len(candles) - 2)
        return _forming_inside_setup(current, search)

    if pattern in (PatternType.DIRECTIONAL_UP, PatternType.DIRECTIONAL_DOWN):
        return _directional_setup(candles, current, last_completed)

    if pattern is PatternType.OUTSIDE:
        bullish = current.is_bullish
        return ActionableSetup(
            pattern="Outside Bar",
            direction=Direction.BULLISH if bullish else Direction.BEARISH,
            description=(
                "Range expansion with bullish close - strength signal"
                if bullish
                else "Range expansion with bearish close - weakness signal"
            ),
            confidence=Confidence.MEDIUM,
        )

    return None


# ──────────────────────────────────────────────
# Closed-Candle Sequence Detection
# ──────────────────────────────────────────────

_U, _D, _I, _O = (
    PatternType.DIRECTIONAL_UP,
    PatternType.DIRECTIONAL_DOWN,
    PatternType.INSIDE,
    PatternType.OUTSIDE,
)

# (first, second, third) -> (type, label, direction, description)
_SEQUENCE_SETUPS: dict[tuple[PatternType, PatternType, PatternType], tuple[SetupType, str, Direction, str]] = {
    (_U, _I, _U): (
        SetupType.CONTINUATION, "2-1-2U", Direction.BULLISH,
        "Bullish continuation: Upward move, consolidation, another upward break",
    ),
    (_D, _I, _D): (
        SetupType.CONTINUATION, "2-1-2D", Direction.BEARISH,
        "Bearish continuation: Downward move, consolidation, another downward break",
    ),
    (_D, _I, _U): (
        SetupType.REVERSAL, "2-1-2U Rev", Direction.BULLISH,
        "Bullish reversal: Downward move, consolidation, upward break",
    ),
    (_U, _I, _D): (
        SetupType.REVERSAL, "2-1-2D Rev", Direction.BEARISH,
        "Bearish reversal: Upward move, consolidation, downward break",
    ),
    (_O, _I, _U): (
        SetupType.BREAKOUT, "3-1-2U", Direction.BULLISH,
        "Bullish breakout: Volatility expansion, consolidation, upward resolution",
    ),
    (_O, _I, _D): (
        SetupType.BREAKOUT, "3-1-2D", Direction.BEARISH,
        "Bearish breakout: Volatility expansion, consolidation, downward resolution",
    ),
    (_I, _U, _U): (
        SetupType.CONTINUATION, "1-2-2U", Direction.BULLISH,
        "Strong bullish momentum: Consolidation breakout with follow-through",
    ),
    (_I, _D, _D): (
        SetupType.CONTINUATION, "1-2-2D", Direction.BEARISH,
        "Strong bearish momentum: Consolidation breakdown with follow-through",
    ),
}


def identify_actionable_setup(candles: Sequence[ClassifiedCandle]) -> Optional[SequenceSetup]:
    """Match the last three closed bars against the fixed sequence table."""
    if len(candles) < 3:
        return None

    first, second, third = candles[-3:]
    key = (first.pattern_type, second.pattern_type, third.pattern_type)
    if None in key:
        return None

    match = _SEQUENCE_SETUPS.get(key)
    if match is None:
        return None

    setup_type, label, direction, description = match
    return SequenceSetup(
        type=setup_type,
        pattern=label,
        direction=direction,
        description=description,
        trigger_price=third.high if direction is Direction.BULLISH else third.low,
    )


# ──────────────────────────────────────────────
# Full Analysis
# ──────────────────────────────────────────────


def analyze_candles(
    raw_candles: Sequence[Candle],
    sequence_length: int = DEFAULT_SEQUENCE_LENGTH,
) -> CandleAnalysis:
    """Classify a series and attach its sequence string and predictive setup."""
    candles = classify_candles(raw_candles)
    analysis = CandleAnalysis(
        candles=candles,
        pattern_sequence=get_pattern_sequence(candles, sequence_length),
        actionable_setup=predict_actionable_setup(candles),
    )
    log.debug(
        "strat.analyzed",
        candles=len(candles),
        sequence=analysis.pattern_sequence,
        setup=analysis.actionable_setup.pattern if analysis.actionable_setup else None,
    )
    return analysis
