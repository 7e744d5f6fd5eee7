"""Prometheus metrics."""

from prometheus_client import Counter, Gauge, Histogram

# Ledger metrics
attestations_total = Counter(
    "ledgerflow_attestations_total",
    "Attestation submissions",
    ["outcome"],  # accepted, duplicate
)

# Indexer metrics
indexer_events = Counter(
    "ledgerflow_indexer_events_total",
    "Ledger events seen by the indexer",
    ["outcome"],  # confirmed, dead_lettered, ignored
)

indexer_running = Gauge(
    "ledgerflow_indexer_running",
    "1 while the indexer subscription is live",
)

dead_letter_replays = Counter(
    "ledgerflow_dead_letter_replays_total",
    "Dead-letter replay attempts",
    ["outcome"],  # resolved, failed, abandoned
)

# Aggregation metrics
aggregations_total = Counter(
    "ledgerflow_aggregations_total",
    "Aggregation requests",
    ["operation", "engine"],  # engine: remote, mock
)

engine_duration = Histogram(
    "ledgerflow_engine_duration_seconds",
    "Computation engine call duration",
)
