"""Prometheus metrics for ingestion, matching, ledger and notification health"""

from prometheus_client import Counter, Histogram

# Ingestion metrics
clinic_report_counter = Counter(
    "referral_ledger_clinic_reports_total",
    "Clinic reports persisted",
    ["status"],  # pending_review | auto_matched
)

ingestion_item_counter = Counter(
    "referral_ledger_ingestion_items_total",
    "Ingestion outcomes per candidate",
    ["outcome"],  # created | skipped | error
)

extractor_failure_counter = Counter(
    "extractor_failures_total",
    "Failed extractor calls",
)

match_confidence_histogram = Histogram(
    "referral_ledger_match_confidence",
    "Match confidence of persisted reports",
    buckets=[0, 50, 70, 90, 95, 100],
)

# Ledger metrics
payment_request_counter = Counter(
    "referral_ledger_payment_requests_total",
    "Payout requests by outcome",
    ["outcome"],  # created | insufficient_funds | below_minimum | in_flight | missing_requisites
)

bonus_unlock_counter = Counter(
    "referral_ledger_bonus_unlocks_total",
    "Invite bonuses moved into earnings",
)

commission_delta_counter = Counter(
    "referral_ledger_commission_deltas_total",
    "Commission corrections applied to agent earnings",
    ["direction"],  # credit | debit
)

# Notification metrics
notification_latency_histogram = Histogram(
    "notification_latency_seconds",
    "Notification webhook response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

notification_failure_counter = Counter(
    "notification_failures_total",
    "Failed notification deliveries",
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_report(status: str, match_confidence: int) -> None:
    """Record a persisted clinic report"""
    clinic_report_counter.labels(status=status).inc()
    match_confidence_histogram.observe(match_confidence)


def record_commission_delta(delta_kopecks: int) -> None:
    if delta_kopecks == 0:
        return
    commission_delta_counter.labels(direction="credit" if delta_kopecks > 0 else "debit").inc()
