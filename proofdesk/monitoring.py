# proofdesk/monitoring.py
"""
Centralized monitoring: Prometheus metrics, structured JSON logging, optional Sentry.

Env vars:
- PROMETHEUS_ENABLED (default: true)
- SENTRY_DSN (optional)
- LOG_AS_JSON (default: true)
- LOG_LEVEL (default: INFO)
- ENVIRONMENT (default: development)
"""

import os
import logging
import time
from typing import Tuple

import sentry_sdk
from prometheus_client import (
    Counter, Histogram, Gauge,
    generate_latest, CONTENT_TYPE_LATEST, REGISTRY,
)
from pythonjsonlogger import jsonlogger

# --- ENV flags
PROMETHEUS_ENABLED = os.getenv("PROMETHEUS_ENABLED", "true").lower() in ("1", "true", "yes")
SENTRY_DSN = os.getenv("SENTRY_DSN", None)
LOG_AS_JSON = os.getenv("LOG_AS_JSON", "true").lower() in ("1", "true", "yes")
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")


# --- Logger setup
def setup_logger(name: str = "proofdesk", level: int = None) -> logging.Logger:
    level = logging.getLevelName(os.getenv("LOG_LEVEL", "INFO")) if level is None else level
    logger = logging.getLogger(name)
    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler()
        if LOG_AS_JSON:
            fmt = jsonlogger.JsonFormatter(
                "%(asctime)s %(levelname)s %(name)s %(message)s"
            )
        else:
            fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
        handler.setFormatter(fmt)
        logger.addHandler(handler)
    return logger


logger = setup_logger()

# --- Sentry (optional)
if SENTRY_DSN:
    sentry_sdk.init(dsn=SENTRY_DSN, environment=ENVIRONMENT)
    logger.info("Sentry initialized")


# --- Prometheus metrics
REQUEST_COUNT = Counter(
    "proofdesk_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

REQUEST_LATENCY = Histogram(
    "proofdesk_request_latency_seconds",
    "Request latency in seconds",
    ["endpoint"],
)

SUBMISSIONS = Counter(
    "proofdesk_submissions_total",
    "Proof submissions accepted or rejected at intake",
    ["outcome"],
)

REVIEWS = Counter(
    "proofdesk_reviews_total",
    "Review actions by outcome",
    ["action", "outcome"],
)

UPSTREAM_CALLS = Counter(
    "proofdesk_upstream_calls_total",
    "Bot API calls",
    ["method", "outcome"],
)

PERSISTENCE_WARNINGS = Counter(
    "proofdesk_persistence_warnings_total",
    "Record store read/write failures that were swallowed",
    ["operation"],
)

WS_VIEWERS = Gauge(
    "proofdesk_ws_viewers",
    "Currently connected dashboard viewers",
)


# --- Helper wrappers (never crash the app)
def observe_request(start_ts: float, endpoint: str, method: str, status: str):
    try:
        REQUEST_LATENCY.labels(endpoint=endpoint).observe(time.time() - start_ts)
        REQUEST_COUNT.labels(method=method, endpoint=endpoint, status=status).inc()
    except Exception:
        pass


def inc_submission(outcome: str):
    try:
        SUBMISSIONS.labels(outcome=outcome).inc()
    except Exception:
        pass


def inc_review(action: str, outcome: str):
    try:
        REVIEWS.labels(action=action, outcome=outcome).inc()
    except Exception:
        pass


def inc_upstream_call(method: str, outcome: str):
    try:
        UPSTREAM_CALLS.labels(method=method, outcome=outcome).inc()
    except Exception:
        pass


def inc_persistence_warning(operation: str):
    try:
        PERSISTENCE_WARNINGS.labels(operation=operation).inc()
    except Exception:
        pass


def viewer_connected():
    try:
        WS_VIEWERS.inc()
    except Exception:
        pass


def viewer_disconnected():
    try:
        WS_VIEWERS.dec()
    except Exception:
        pass


def prometheus_metrics_response() -> Tuple[bytes, str]:
    """Return (body_bytes, content_type) for Prometheus scrape."""
    try:
        return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
    except Exception:
        return b"", CONTENT_TYPE_LATEST
