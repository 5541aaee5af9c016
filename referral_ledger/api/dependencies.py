"""Dependency injection for FastAPI endpoints"""

from typing import List
from fastapi import BackgroundTasks, Request
from referral_ledger.domain.models import LedgerEvent
from referral_ledger.infrastructure.clients.extractor import ExtractorClient
from referral_ledger.infrastructure.clients.notifications import NotificationClient


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_extractor_client() -> ExtractorClient:
    """Provide extraction service client instance"""
    return ExtractorClient()


def get_notification_client() -> NotificationClient:
    """Provide notification webhook client instance"""
    return NotificationClient()


def schedule_notifications(
    background_tasks: BackgroundTasks, notifier: NotificationClient, events: List[LedgerEvent]
) -> None:
    """Queue committed ledger events for delivery after the response"""
    for event in events:
        background_tasks.add_task(notifier.notify, event)
