"""Prometheus metrics for kubexplorer."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# Discovery metrics
discovery_duration_seconds = Histogram(
    "kubexplorer_discovery_duration_seconds",
    "API resource discovery duration in seconds",
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

discovery_failed_groups_total = Counter(
    "kubexplorer_discovery_failed_groups_total",
    "Total API group/versions that failed discovery",
)

discovery_fallback_total = Counter(
    "kubexplorer_discovery_fallback_total",
    "Total discoveries that fell back to the built-in core resource set",
)

catalog_resources = Gauge(
    "kubexplorer_catalog_resources",
    "Number of namespaced resource types in the current catalog snapshot",
)

# Cache metrics
cache_requests_total = Counter(
    "kubexplorer_cache_requests_total",
    "Total cache lookups",
    ["cache", "result"],
)

cache_clears_total = Counter(
    "kubexplorer_cache_clears_total",
    "Total manual cache clears",
)

cached_namespaces = Gauge(
    "kubexplorer_cached_namespaces",
    "Number of namespaces with a cache entry",
)

# Scan metrics
namespace_scan_duration_seconds = Histogram(
    "kubexplorer_namespace_scan_duration_seconds",
    "Full namespace scan duration in seconds",
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
)

namespace_scans_in_flight = Gauge(
    "kubexplorer_namespace_scans_in_flight",
    "Namespace scans currently running",
)

namespace_scans_deduplicated_total = Counter(
    "kubexplorer_namespace_scans_deduplicated_total",
    "Requests that joined an already running scan instead of starting one",
)

# Counter metrics
count_duration_seconds = Histogram(
    "kubexplorer_count_duration_seconds",
    "Per-resource object count duration in seconds",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 3.0, 5.0),
)

count_errors_total = Counter(
    "kubexplorer_count_errors_total",
    "Total per-resource count failures",
    ["kind"],
)

count_followup_lists_total = Counter(
    "kubexplorer_count_followup_lists_total",
    "Total unbounded follow-up list calls after a truncated first page",
)

# Progress metrics
progress_events_total = Counter(
    "kubexplorer_progress_events_total",
    "Total progress events emitted",
    ["type"],
)

progress_events_dropped_total = Counter(
    "kubexplorer_progress_events_dropped_total",
    "Total progress events dropped because a consumer was too slow",
)
