"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime
from typing import Any, Dict
from pythonjsonlogger import jsonlogger

from referral_ledger.config import settings
from referral_ledger.domain.models import IngestionSummary


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.utcnow().isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_ingestion_summary(request_id: str, source: str, summary: IngestionSummary, duration_ms: float) -> None:
    """Log the counters of one ingestion run"""
    logging.info(
        "Ingestion completed",
        extra={
            "request_id": request_id,
            "step": "ingestion_complete",
            "source": source,
            "reports_processed": summary.processed,
            "reports_created": summary.created,
            "reports_skipped": summary.skipped,
            "reports_failed": summary.errors,
            "duration_ms": duration_ms,
        },
    )


def log_payment_request(
    request_id: str,
    agent_id: int,
    outcome: str,
    amount_kopecks: int,
    available_kopecks: int | None = None,
) -> None:
    """Log structured payout request outcome"""
    logging.info(
        "Payment request handled",
        extra={
            "request_id": request_id,
            "agent_id": agent_id,
            "step": "payment_request",
            "outcome": outcome,
            "amount_kopecks": amount_kopecks,
            "available_kopecks": available_kopecks,
        },
    )
