"""Prometheus metrics for token resolution, webhooks and live status sync.

The module bundles all collectors in one place so registration happens
exactly once per process.  Services simply ``from launchpad import metrics``
and increment.
"""

from __future__ import annotations

from prometheus_client import Counter
from prometheus_client import Gauge

token_refresh_total = Counter(
    "launchpad_token_refresh_total",
    "Token refresh attempts against the CRM token endpoint",
    labelnames=("outcome",),
)

ownership_lookups_total = Counter(
    "launchpad_ownership_lookups_total",
    "Tenant ownership lookups by the layer that answered",
    labelnames=("source",),
)

webhook_events_total = Counter(
    "launchpad_webhook_events_total",
    "Inbound CRM webhook events by handling outcome",
    labelnames=("outcome",),
)

status_broadcasts_total = Counter(
    "launchpad_status_broadcasts_total",
    "Status snapshots fanned out to live subscribers",
)

analytics_events_total = Counter(
    "launchpad_analytics_events_total",
    "Analytics events sent to the tracking collaborator",
    labelnames=("outcome",),
)

# ------------------------------------------------------------------
# Gauges (current state) -------------------------------------------
# ------------------------------------------------------------------

sse_subscribers = Gauge(
    "launchpad_sse_subscribers",
    "Currently connected live-status subscribers",
)


__all__ = [
    "token_refresh_total",
    "ownership_lookups_total",
    "webhook_events_total",
    "status_broadcasts_total",
    "analytics_events_total",
    "sse_subscribers",
]
