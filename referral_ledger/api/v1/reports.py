"""Clinic report review endpoints"""

import logging
from typing import Optional
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from referral_ledger.api.dependencies import get_notification_client, get_request_id, schedule_notifications
from referral_ledger.api.errors import UNAVAILABLE_DETAIL, to_http_exception
from referral_ledger.api.v1.schemas import (
    ApproveReportRequest,
    ClinicReportResponse,
    RejectReportRequest,
    ReportListResponse,
)
from referral_ledger.domain.exceptions import DomainException
from referral_ledger.domain.status import ReportStatus
from referral_ledger.infrastructure.clients.notifications import NotificationClient
from referral_ledger.infrastructure.database.repositories import ClinicReportRepository
from referral_ledger.infrastructure.database.session import get_db
from referral_ledger.services.ledger import LedgerService

router = APIRouter()


@router.get("/reports", response_model=ReportListResponse)
def list_reports(
    status: Optional[ReportStatus] = Query(None, description="Filter by review status"),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    """Most recent clinic reports, newest first"""
    reports = ClinicReportRepository(db).list_by_status(status.value if status else None, limit=limit)
    return ReportListResponse(reports=[ClinicReportResponse.model_validate(r) for r in reports])


@router.post("/reports/{report_id}/approve", response_model=ClinicReportResponse)
def approve_report(
    report_id: int,
    request_body: ApproveReportRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Session = Depends(get_db),
    notifier: NotificationClient = Depends(get_notification_client),
):
    """
    Approve a report and credit the commission it earns.

    Flow:
    1. Link the report to the referral (matched or given)
    2. Move the referral to visited and price the commission
    3. Credit the commission delta to the agent
    4. Notify the agent after commit
    """
    request_id = get_request_id(request)
    service = LedgerService(db)

    try:
        report = service.approve_report(
            report_id,
            reviewer_id=request_body.reviewer_id,
            referral_id=request_body.referral_id,
            treatment_amount_kopecks=request_body.treatment_amount_kopecks,
            notes=request_body.notes,
        )
    except DomainException as e:
        logging.warning(f"Approval rejected: {e}", extra={"request_id": request_id, "report_id": report_id})
        raise to_http_exception(e)
    except Exception as e:
        db.rollback()
        logging.error(f"Unexpected error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail=UNAVAILABLE_DETAIL)

    schedule_notifications(background_tasks, notifier, service.drain_events())
    return ClinicReportResponse.model_validate(report)


@router.post("/reports/{report_id}/reject", response_model=ClinicReportResponse)
def reject_report(
    report_id: int,
    request_body: RejectReportRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Session = Depends(get_db),
    notifier: NotificationClient = Depends(get_notification_client),
):
    request_id = get_request_id(request)
    service = LedgerService(db)

    try:
        report = service.reject_report(report_id, reviewer_id=request_body.reviewer_id, notes=request_body.notes)
    except DomainException as e:
        logging.warning(f"Rejection refused: {e}", extra={"request_id": request_id, "report_id": report_id})
        raise to_http_exception(e)
    except Exception as e:
        db.rollback()
        logging.error(f"Unexpected error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail=UNAVAILABLE_DETAIL)

    schedule_notifications(background_tasks, notifier, service.drain_events())
    return ClinicReportResponse.model_validate(report)
