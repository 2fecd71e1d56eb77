"""
Prometheus metrics for the IOC feed service
"""

import os

from prometheus_client import Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST

from ..config import API_VERSION

# Build info
BUILD_INFO = Gauge(
    'ioc_feeds_build_info',
    'Build information',
    ['version', 'image_tag']
)

# Feed fetches
FEED_FETCHES_TOTAL = Counter(
    'ioc_feeds_fetches_total',
    'Feed fetch attempts by outcome',
    ['outcome']
)

FEED_FETCH_SECONDS = Histogram(
    'ioc_feeds_fetch_seconds',
    'Time spent downloading a feed body',
    buckets=[0.1, 0.5, 1.0, 5.0, 15.0, 30.0, 60.0, 120.0]
)

INGESTIONS_IN_FLIGHT = Gauge(
    'ioc_feeds_ingestions_in_flight',
    'Source ingestions currently running'
)

# Indicator flow
INDICATORS_SAVED_TOTAL = Counter(
    'ioc_feeds_indicators_saved_total',
    'Indicators written by feed ingestion',
    ['type']
)

WHITELIST_BLOCKS_TOTAL = Counter(
    'ioc_feeds_whitelist_blocks_total',
    'Feed candidates suppressed by the whitelist',
    ['type']
)

SAVE_BATCH_FAILURES_TOTAL = Counter(
    'ioc_feeds_save_batch_failures_total',
    'Indicator batches skipped after a storage error'
)

# Blacklist export
EXPORT_RUNS_TOTAL = Counter(
    'ioc_feeds_export_runs_total',
    'Blacklist regeneration runs'
)

EXPORT_FAILURES_TOTAL = Counter(
    'ioc_feeds_export_failures_total',
    'Per-kind blacklist export failures',
    ['kind']
)

EXPORT_SECONDS = Histogram(
    'ioc_feeds_export_seconds',
    'Duration of a full blacklist regeneration',
    buckets=[0.05, 0.1, 0.5, 1.0, 5.0, 15.0, 60.0]
)

EXPORT_FILES = Gauge(
    'ioc_feeds_export_files',
    'Shard files written by the last export',
    ['kind']
)

EXPORT_LINES = Gauge(
    'ioc_feeds_export_lines',
    'Lines written by the last export',
    ['kind']
)


class PrometheusMetrics:
    """Service for managing Prometheus metrics."""

    def __init__(self):
        self._setup_build_info()

    def _setup_build_info(self):
        BUILD_INFO.labels(
            version=API_VERSION,
            image_tag=os.getenv("IMAGE_TAG", "latest")
        ).set(1)

    def record_fetch(self, outcome: str, seconds: float = None):
        FEED_FETCHES_TOTAL.labels(outcome=outcome).inc()
        if seconds is not None:
            FEED_FETCH_SECONDS.observe(seconds)

    def ingestion_started(self):
        INGESTIONS_IN_FLIGHT.inc()

    def ingestion_finished(self):
        INGESTIONS_IN_FLIGHT.dec()

    def increment_saved(self, kind: str, count: int = 1):
        if count:
            INDICATORS_SAVED_TOTAL.labels(type=kind).inc(count)

    def increment_whitelist_blocks(self, kind: str, count: int = 1):
        if count:
            WHITELIST_BLOCKS_TOTAL.labels(type=kind).inc(count)

    def increment_save_batch_failures(self, count: int = 1):
        SAVE_BATCH_FAILURES_TOTAL.inc(count)

    def record_export(self, seconds: float, files: dict, lines: dict):
        """Record one regeneration run with per-kind file and line counts"""
        EXPORT_RUNS_TOTAL.inc()
        EXPORT_SECONDS.observe(seconds)
        for kind, count in files.items():
            EXPORT_FILES.labels(kind=kind).set(count)
        for kind, count in lines.items():
            EXPORT_LINES.labels(kind=kind).set(count)

    def increment_export_failures(self, kind: str):
        EXPORT_FAILURES_TOTAL.labels(kind=kind).inc()

    def get_metrics(self) -> bytes:
        """Get Prometheus metrics in text format."""
        return generate_latest()

    def get_content_type(self) -> str:
        """Get the content type for Prometheus metrics."""
        return CONTENT_TYPE_LATEST


# Global metrics instance
prometheus_metrics = PrometheusMetrics()
