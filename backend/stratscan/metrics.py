"""
Strat Scanner — Prometheus Metrics

Text exposition at GET /metrics:
  http_requests_total{method,path,status}       counter
  http_request_duration_seconds{method,path}    summary (p50 / p95)
  strat_fetch_running / _queued / _max_concurrent  limiter gauges
  strat_cache_entries{state}                    timeframe cache size
"""

from __future__ import annotations

import time
from collections import Counter, defaultdict, deque

from fastapi import APIRouter
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import PlainTextResponse

# Per-route sample window for the duration summary.
DURATION_WINDOW = 1000


class RequestMetrics:
    """Process-wide request counters and latency samples."""

    def __init__(self, window: int = DURATION_WINDOW):
        self._window = window
        self.counts: Counter[tuple[str, str, int]] = Counter()
        self.durations: defaultdict[tuple[str, str], deque[float]] = defaultdict(
            lambda: deque(maxlen=self._window)
        )

    def record(self, method: str, path: str, status: int, seconds: float) -> None:
        self.counts[(method, path, status)] += 1
        self.durations[(method, path)].append(seconds)

    def reset(self) -> None:
        self.counts.clear()
        self.durations.clear()

    def render(self) -> list[str]:
        lines = [
            "# HELP http_requests_total Requests served, by route and status.",
            "# TYPE http_requests_total counter",
        ]
        for (method, path, status), n in sorted(self.counts.items()):
            lines.append(f'http_requests_total{{method="{method}",path="{path}",status="{status}"}} {n}')

        lines += [
            "",
            "# HELP http_request_duration_seconds Request latency.",
            "# TYPE http_request_duration_seconds summary",
        ]
        for (method, path), samples in sorted(self.durations.items()):
            if not samples:
                continue
            ordered = sorted(samples)
            labels = f'method="{method}",path="{path}"'
            for q in (0.5, 0.95):
                value = ordered[min(int(len(ordered) * q), len(ordered) - 1)]
                lines.append(f'http_request_duration_seconds{{{labels},quantile="{q}"}} {value:.6f}')
            lines.append(f"http_request_duration_seconds_sum{{{labels}}} {sum(ordered):.6f}")
            lines.append(f"http_request_duration_seconds_count{{{labels}}} {len(ordered)}")
        return lines


REQUEST_METRICS = RequestMetrics()


def reset_metrics() -> None:
    REQUEST_METRICS.reset()


class MetricsMiddleware(BaseHTTPMiddleware):
    """Times every request except the scrape itself."""

    async def dispatch(self, request: Request, call_next):
        if request.url.path == "/metrics":
            return await call_next(request)

        started = time.perf_counter()
        response = await call_next(request)
        REQUEST_METRICS.record(
            request.method,
            request.url.path,
            response.status_code,
            time.perf_counter() - started,
        )
        return response


def _gauge(name: str, help_text: str, samples: list[tuple[str, object]]) -> list[str]:
    lines = [f"# HELP {name} {help_text}", f"# TYPE {name} gauge"]
    lines += [f"{name}{labels} {value}" for labels, value in samples]
    return lines


def render_engine_metrics(limiter_stats: dict, cache_stats: dict) -> list[str]:
    return [
        *_gauge("strat_fetch_running", "Candle fetches in flight.",
                [("", limiter_stats["currently_running"])]),
        *_gauge("strat_fetch_queued", "Candle fetches waiting for a slot.",
                [("", limiter_stats["queue_length"])]),
        *_gauge("strat_fetch_max_concurrent", "Fetch limiter capacity.",
                [("", limiter_stats["max_concurrent"])]),
        *_gauge("strat_cache_entries", "Timeframe cache entries.", [
            ('{state="all"}', cache_stats["entries"]),
            ('{state="fresh"}', cache_stats["fresh"]),
        ]),
    ]


metrics_router = APIRouter()


@metrics_router.get("/metrics", include_in_schema=False)
async def get_metrics(request: Request):
    engine = request.app.state.ftc_engine
    lines = REQUEST_METRICS.render()
    lines.append("")
    lines += render_engine_metrics(engine.limiter.stats(), engine.cache.stats())
    lines.append("")
    return PlainTextResponse(
        "\n".join(lines),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
