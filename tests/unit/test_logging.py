"""Unit tests for structured log helpers"""

import logging
from referral_ledger.domain.models import IngestionSummary
from referral_ledger.infrastructure.observability.logging import log_ingestion_summary, log_payment_request


def test_ingestion_summary_fields(caplog):
    """Test counters land on the record under their own names"""
    with caplog.at_level(logging.INFO):
        log_ingestion_summary("req-1", "email", IngestionSummary(processed=2, created=1, skipped=1), 12.5)

    record = caplog.records[-1]
    assert record.reports_processed == 2
    assert record.reports_created == 1
    assert record.reports_skipped == 1
    assert record.reports_failed == 0
    assert record.request_id == "req-1"


def test_payment_request_fields(caplog):
    with caplog.at_level(logging.INFO):
        log_payment_request("req-2", 7, "created", 100000, 200000)

    record = caplog.records[-1]
    assert (record.agent_id, record.outcome, record.available_kopecks) == (7, "created", 200000)
