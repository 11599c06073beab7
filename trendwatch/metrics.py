"""Prometheus counters for ingestion and alert cycles."""

from prometheus_client import Counter, Histogram

ENTITIES_INGESTED = Counter(
    "trendwatch_entities_ingested_total",
    "Entities whose snapshot was recorded",
    ["entity_type"],
)
ENTITIES_FAILED = Counter(
    "trendwatch_entities_failed_total",
    "Entities skipped because of a fetch or persistence failure",
    ["entity_type", "reason"],
)
ALERTS_TRIGGERED = Counter(
    "trendwatch_alerts_triggered_total",
    "Trigger events emitted by the alert evaluator",
    ["entity_type"],
)
NOTIFICATIONS_SENT = Counter(
    "trendwatch_notifications_sent_total",
    "Notification deliveries by channel and outcome",
    ["channel", "outcome"],
)
CYCLE_DURATION = Histogram(
    "trendwatch_cycle_duration_seconds",
    "Wall time of one ingestion or alert-check cycle",
    ["cycle"],
)
