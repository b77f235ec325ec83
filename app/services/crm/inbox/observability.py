"""Prometheus metrics for CRM inbox."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

LIST_ASSEMBLY_TIME = Histogram(
    "inbox_list_assembly_seconds",
    "Time to assemble a page of conversation summaries",
    ["operation"],  # operation: list, search
)

LIST_CACHE_LOOKUPS = Counter(
    "inbox_list_cache_lookups_total",
    "Conversation list cache lookups",
    ["result"],  # result: hit, miss, bypass
)

PREVIEW_FAILURES = Counter(
    "inbox_preview_failures_total",
    "Preview batch fetches that failed and were degraded to empty previews",
)

BROADCAST_FAILURES = Counter(
    "inbox_broadcast_failures_total",
    "Real-time notifications that could not be handed to the gateway",
    ["event"],
)

INBOUND_MESSAGES = Counter(
    "inbox_inbound_messages_total",
    "Total inbound messages received",
    ["channel_type", "status"],  # status: success, error
)

OUTBOUND_MESSAGES = Counter(
    "inbox_outbound_messages_total",
    "Total outbound messages sent",
    ["channel_type", "status"],  # status: sent, failed
)

ASSIGNMENTS = Counter(
    "inbox_assignments_total",
    "Conversation assignment changes",
    ["method"],
)
