# filevault/metrics/loader_metrics.py

from prometheus_client import Counter, Histogram

file_load_duration = Histogram(
    "file_vault_load_duration_seconds",
    "Time spent answering a file list page request",
    ["path"]
)

file_cache_lookups = Counter(
    "file_vault_cache_lookups_total",
    "Cache tier lookups made by the file loader",
    ["result"]
)

file_resolution_gaps = Counter(
    "file_vault_resolution_gaps_total",
    "Search hits that resolved to no record in cache or store"
)

file_prefetches = Counter(
    "file_vault_prefetches_total",
    "Background prefetch runs, by outcome",
    ["outcome"]
)
