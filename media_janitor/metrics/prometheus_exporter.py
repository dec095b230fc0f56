"""Prometheus exporter helpers."""

from __future__ import annotations

from prometheus_client import Counter, Gauge


orphan_scans_total = Counter(
    "orphan_scans_total",
    "Total number of orphan attachment scans.",
)

orphans_found = Gauge(
    "orphans_found",
    "Number of orphan attachments found by the latest scan.",
)

attachments_deleted_total = Counter(
    "attachments_deleted_total",
    "Total number of attachments removed by deletion jobs.",
)

attachment_delete_failures_total = Counter(
    "attachment_delete_failures_total",
    "Total number of attachment deletions that failed.",
)
