"""
Strat Scanner — API Routes

All HTTP endpoints. Thin layer — delegates to the FTC and signal engines.
Engine instances live on `app.state` and are reached through dependencies,
so tests can swap in isolated ones.
"""

from __future__ import annotations

import time as _time
import traceback

import structlog
from fastapi import APIRouter, Depends, Request

from stratscan import __version__
from stratscan.config import Settings, get_settings
from stratscan.data.lighter_client import LighterClient
from stratscan.engines.ftc_engine import FTCEngine
from stratscan.engines.signal_engine import generate_signal_response
from stratscan.models import (
    DEFAULT_MARKETS,
    AnalyzeRequest,
    CandleAnalysis,
    CandlesRequest,
    FTCRequest,
    Market,
    MarketAnalysis,
    MultiTimeframeAnalysis,
    SignalResponse,
)

log = structlog.get_logger(__name__)


# ──────────────────────────────────────────────
# Dependencies
# ──────────────────────────────────────────────


def get_ftc_engine(request: Request) -> FTCEngine:
    return request.app.state.ftc_engine


def get_market_source(request: Request) -> LighterClient:
    return request.app.state.market_source


# ──────────────────────────────────────────────
# Health
# ──────────────────────────────────────────────

health_router = APIRouter()


@health_router.get("/health")
async def health_check(
    request: Request,
    settings: Settings = Depends(get_settings),
    engine: FTCEngine = Depends(get_ftc_engine),
):
    """Liveness plus limiter and cache state."""
    uptime_seconds = round(_time.monotonic() - request.app.state.started_at, 1)
    return {
        "status": "ok",
        "version": __version__,
        "environment": settings.app_env,
        "uptime_seconds": uptime_seconds,
        "ftc_enabled": settings.ftc_enabled,
        "limiter": engine.limiter.stats(),
        "cache": engine.cache.stats(),
    }


# ──────────────────────────────────────────────
# Strat Routes
# ──────────────────────────────────────────────

strat_router = APIRouter()


@strat_router.get("/markets", response_model=list[Market])
async def get_markets(source: LighterClient = Depends(get_market_source)):
    """Active markets; falls back to the default list if the exchange is down."""
    try:
        return await source.fetch_markets()
    except Exception as exc:
        log.warning("strat.markets_failed", error=str(exc))
        return DEFAULT_MARKETS


@strat_router.post("/analyze", response_model=list[MarketAnalysis])
async def analyze_markets(
    body: AnalyzeRequest,
    engine: FTCEngine = Depends(get_ftc_engine),
):
    """One timeframe across several markets. Failed markets come back empty."""
    return await engine.scan_timeframe(body.markets, body.timeframe, body.candle_count)


@strat_router.post("/candles", response_model=CandleAnalysis)
async def get_candles(
    body: CandlesRequest,
    engine: FTCEngine = Depends(get_ftc_engine),
):
    """Classified candles for the chart view."""
    return await engine.get_candles(body.market_id, body.timeframe, body.candle_count)


@strat_router.post("/ftc", response_model=list[MultiTimeframeAnalysis])
async def get_ftc_matrix(
    body: FTCRequest,
    settings: Settings = Depends(get_settings),
    engine: FTCEngine = Depends(get_ftc_engine),
):
    """Full Timeframe Continuity matrix (1m–1d) for each market."""
    if not settings.ftc_enabled:
        log.warning("ftc.disabled", detail="FTC endpoint called with ftc_enabled=false")
        return []

    try:
        return await engine.get_multi_timeframe_state(body.markets, body.candle_count)
    except Exception as exc:
        # Per-timeframe failures are absorbed by the engine; this is the last resort.
        log.error("ftc.catastrophic_failure", error=str(exc), traceback=traceback.format_exc())
        return []


@strat_router.post("/signals", response_model=SignalResponse)
async def get_signals(
    body: FTCRequest,
    settings: Settings = Depends(get_settings),
    engine: FTCEngine = Depends(get_ftc_engine),
):
    """Scored FTC signals: `signals` (≥ 40) and `nearMisses` (25–39)."""
    if not settings.ftc_enabled:
        log.warning("signals.disabled", detail="signals endpoint called with ftc_enabled=false")
        return SignalResponse()

    try:
        analyses = await engine.get_multi_timeframe_state(body.markets, body.candle_count)
        return generate_signal_response(analyses)
    except Exception as exc:
        log.error("signals.catastrophic_failure", error=str(exc), traceback=traceback.format_exc())
        return SignalResponse()
