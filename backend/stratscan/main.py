"""
Strat Scanner — FastAPI Application

`create_app()` wires one scanner per app: Lighter client, fetch limiter,
timeframe cache and the FTC engine on top of them, all kept on `app.state`.
Pass `fetcher` / `market_source` to run the API against other data sources.
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from stratscan import __version__
from stratscan.cache import TimeframeCache
from stratscan.config import Settings, get_settings
from stratscan.data.lighter_client import LighterClient
from stratscan.engines.ftc_engine import CandleFetcher, FTCEngine
from stratscan.error_handlers import register_error_handlers
from stratscan.metrics import MetricsMiddleware, metrics_router
from stratscan.middleware.request_logger import RequestLoggerMiddleware
from stratscan.routes import health_router, strat_router
from stratscan.utils.concurrency import ConcurrencyLimiter

log = structlog.get_logger("stratscan.app")

API_PREFIX = "/v1/api/strat"


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    log.info(
        "app.starting",
        env=settings.app_env,
        lighter=settings.lighter_api_url,
        max_concurrent_fetches=settings.max_concurrent_fetches,
        ftc_enabled=settings.ftc_enabled,
    )
    if not settings.ftc_enabled:
        log.warning("app.ftc_disabled", impact="/ftc and /signals return empty results")
    yield
    engine: FTCEngine = app.state.ftc_engine
    log.info("app.stopped", limiter=engine.limiter.stats(), cache=engine.cache.stats())


def _install_middleware(app: FastAPI, settings: Settings) -> None:
    # Starlette runs the last-added middleware first: metrics wrap everything.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggerMiddleware)
    app.add_middleware(MetricsMiddleware)


def create_app(
    fetcher: Optional[CandleFetcher] = None,
    market_source: Optional[LighterClient] = None,
) -> FastAPI:
    settings = get_settings()

    client = LighterClient()
    engine = FTCEngine(
        fetcher or client,
        ConcurrencyLimiter(settings.max_concurrent_fetches, name="lighter"),
        TimeframeCache(),
    )

    app = FastAPI(
        title="Strat Scanner",
        description="Multi-timeframe Strat pattern scanner and signal engine for perpetual futures.",
        version=__version__,
        debug=settings.app_debug,
        lifespan=lifespan,
    )
    app.state.started_at = time.monotonic()
    app.state.market_source = market_source or client
    app.state.ftc_engine = engine

    register_error_handlers(app)
    _install_middleware(app, settings)

    app.include_router(health_router, tags=["Health"])
    app.include_router(strat_router, prefix=API_PREFIX, tags=["Strat"])
    app.include_router(metrics_router, tags=["Metrics"])
    return app


app = create_app()


def run(host: str = "0.0.0.0", port: int = 8000) -> None:
    """Serve the app with uvicorn."""
    import uvicorn
    uvicorn.run("stratscan.main:app", host=host, port=port)


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Strat Scanner API server")
    parser.add_argument("--host", default="0.0.0.0", help="Host")
    parser.add_argument("--port", type=int, default=8000, help="Port")
    args = parser.parse_args()
    run(args.host, args.port)
