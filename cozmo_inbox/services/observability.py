"""Prometheus metrics for the inbox services."""

from __future__ import annotations

from prometheus_client import Counter

OUTBOUND_MESSAGES = Counter(
    "inbox_outbound_messages_total",
    "Total outbound messages handed to a channel provider",
    ["channel", "status"],  # status: sent, failed, skipped
)

CHANGE_EVENTS = Counter(
    "inbox_change_events_total",
    "Row change notifications published by the change feed",
    ["table", "kind"],
)

CHANGE_DECODE_ERRORS = Counter(
    "inbox_change_decode_errors_total",
    "Change feed payloads that could not be decoded",
)
