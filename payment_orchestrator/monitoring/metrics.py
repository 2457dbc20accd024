"""
Prometheus metrics for payment orchestration monitoring.

Tracks:
- Provider API request counts and latency
- PayPal token refreshes
- Subscription provisioning outcomes
- Webhook events received and processed
"""
import time
from contextlib import contextmanager
from typing import Iterator

from prometheus_client import Counter, Histogram

# Provider API metrics
provider_api_requests_total = Counter(
    "provider_api_requests_total",
    "Total payment provider API requests",
    ["provider", "operation", "status"],  # status: success, error
)

provider_api_duration_seconds = Histogram(
    "provider_api_duration_seconds",
    "Payment provider API call duration in seconds",
    ["provider", "operation"],
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0, 30.0),
)

# Token metrics
paypal_token_refreshes_total = Counter(
    "paypal_token_refreshes_total",
    "Total PayPal OAuth2 token refreshes",
    ["result"],  # success, failed
)

# Provisioning metrics
subscription_provisioning_total = Counter(
    "subscription_provisioning_total",
    "Subscription provisioning saga outcomes",
    ["provider", "result"],  # completed, compensated, failed
)

# Webhook metrics
webhook_events_received_total = Counter(
    "webhook_events_received_total",
    "Total webhook events received",
    ["provider", "event_type"],
)

webhook_events_processed_total = Counter(
    "webhook_events_processed_total",
    "Total webhook events processed",
    ["provider", "event_type", "status"],  # processed, duplicate, ignored, failed
)

webhook_processing_duration_seconds = Histogram(
    "webhook_processing_duration_seconds",
    "Webhook processing duration in seconds",
    ["provider"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)


@contextmanager
def track_provider_call(provider: str, operation: str) -> Iterator[None]:
    """Record count and latency of one provider call."""
    start = time.perf_counter()
    status = "success"
    try:
        yield
    except Exception:
        status = "error"
        raise
    finally:
        provider_api_duration_seconds.labels(provider=provider, operation=operation).observe(
            time.perf_counter() - start
        )
        provider_api_requests_total.labels(
            provider=provider, operation=operation, status=status
        ).inc()
