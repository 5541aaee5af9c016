"""Referral status and commission endpoints"""

import logging
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from referral_ledger.api.dependencies import get_notification_client, get_request_id, schedule_notifications
from referral_ledger.api.errors import UNAVAILABLE_DETAIL, to_http_exception
from referral_ledger.api.v1.schemas import CommissionRequest, CommissionResponse, ReferralResponse, ReferralStatusRequest
from referral_ledger.domain.exceptions import DomainException
from referral_ledger.infrastructure.clients.notifications import NotificationClient
from referral_ledger.infrastructure.database.session import get_db
from referral_ledger.services.ledger import LedgerService

router = APIRouter()


@router.patch("/referrals/{referral_id}/status", response_model=ReferralResponse)
def update_referral_status(
    referral_id: int,
    request_body: ReferralStatusRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Session = Depends(get_db),
    notifier: NotificationClient = Depends(get_notification_client),
):
    """Move a referral along its lifecycle; reaching paid may unlock the invite bonus"""
    request_id = get_request_id(request)
    service = LedgerService(db)

    try:
        referral = service.update_referral_status(referral_id, request_body.status)
    except DomainException as e:
        logging.warning(f"Status change rejected: {e}", extra={"request_id": request_id, "referral_id": referral_id})
        raise to_http_exception(e)
    except Exception as e:
        db.rollback()
        logging.error(f"Unexpected error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail=UNAVAILABLE_DETAIL)

    schedule_notifications(background_tasks, notifier, service.drain_events())
    return ReferralResponse.model_validate(referral)


@router.put("/referrals/{referral_id}/commission", response_model=CommissionResponse)
def set_commission(
    referral_id: int,
    request_body: CommissionRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    """Correct a referral's commission; the difference is applied to the agent's earnings"""
    request_id = get_request_id(request)

    try:
        delta = LedgerService(db).apply_commission_delta(
            referral_id,
            request_body.commission_amount_kopecks,
            treatment_amount_kopecks=request_body.treatment_amount_kopecks,
        )
    except DomainException as e:
        logging.warning(f"Commission update rejected: {e}", extra={"request_id": request_id, "referral_id": referral_id})
        raise to_http_exception(e)
    except Exception as e:
        db.rollback()
        logging.error(f"Unexpected error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail=UNAVAILABLE_DETAIL)

    return CommissionResponse(referral_id=referral_id, delta_kopecks=delta)
