"""
Metrics collection for Match Sync.
Wraps prometheus_client; all instruments are module-level and label-scoped.
"""
from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from shared.config import get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Counters ────────────────────────────────────────────────────────────
PROVIDER_REQUESTS = Counter(
    "ms_provider_requests_total",
    "Total provider HTTP requests",
    ["provider", "status"],
)
CACHE_LOOKUPS = Counter(
    "ms_cache_lookups_total",
    "Cache lookups by domain and outcome (fresh, stale, miss)",
    ["domain", "outcome"],
)
CACHE_EVICTIONS = Counter(
    "ms_cache_evictions_total",
    "Entries removed from the cache",
    ["reason"],
)
FETCH_ATTEMPTS = Counter(
    "ms_fetch_attempts_total",
    "Fetch function invocations by domain and result",
    ["domain", "result"],
)
FETCH_COALESCED = Counter(
    "ms_fetch_coalesced_total",
    "Callers that joined an already in-flight fetch",
    ["domain"],
)
MAPPING_DROPS = Counter(
    "ms_mapping_drops_total",
    "Upstream records dropped because they could not be normalized",
    ["provider", "entity"],
)
REFRESH_CYCLES = Counter(
    "ms_refresh_cycles_total",
    "Auto-refresh ticks by domain and outcome",
    ["domain", "outcome"],
)

# ── Histograms ──────────────────────────────────────────────────────────
PROVIDER_LATENCY = Histogram(
    "ms_provider_latency_seconds",
    "Provider request latency in seconds",
    ["provider"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)
FETCH_DURATION = Histogram(
    "ms_fetch_duration_seconds",
    "Wall time of a coalesced fetch including retries",
    ["domain"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

# ── Gauges ──────────────────────────────────────────────────────────────
CACHE_ENTRIES = Gauge(
    "ms_cache_entries",
    "Entries currently held by the cache store",
)
INFLIGHT_FETCHES = Gauge(
    "ms_inflight_fetches",
    "Fetches currently in flight",
    ["domain"],
)


@asynccontextmanager
async def atrack_latency(histogram: Histogram, **labels: str) -> AsyncIterator[None]:
    """Async context manager to track operation latency."""
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        histogram.labels(**labels).observe(elapsed)


def start_metrics_server(port: int | None = None) -> None:
    """Start the Prometheus metrics HTTP server."""
    settings = get_settings()
    if not settings.metrics_enabled:
        return
    metrics_port = port or settings.metrics_port
    try:
        start_http_server(metrics_port)
        logger.info("metrics_server_started", port=metrics_port)
    except OSError as exc:
        logger.warning("metrics_server_failed", error=str(exc), port=metrics_port)
