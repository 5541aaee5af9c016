"""Payout request endpoints"""

import logging
from dataclasses import asdict
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from referral_ledger.api.dependencies import get_notification_client, get_request_id, schedule_notifications
from referral_ledger.api.errors import UNAVAILABLE_DETAIL, to_http_exception
from referral_ledger.api.v1.schemas import (
    ActRequest,
    ActResponse,
    BalanceResponse,
    PaymentCreatedResponse,
    PaymentListResponse,
    PaymentRequest,
    PaymentResponse,
    PaymentStatusRequest,
)
from referral_ledger.domain.exceptions import DomainException, LedgerError
from referral_ledger.infrastructure.clients.notifications import NotificationClient
from referral_ledger.infrastructure.database.repositories import PaymentRepository
from referral_ledger.infrastructure.database.session import get_db
from referral_ledger.infrastructure.observability.logging import log_payment_request
from referral_ledger.services.payments import PaymentRequestService

router = APIRouter()


@router.post("/payments", response_model=PaymentCreatedResponse, status_code=201)
def request_payment(
    request_body: PaymentRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Session = Depends(get_db),
    notifier: NotificationClient = Depends(get_notification_client),
):
    """
    Request a payout of earned commission.

    Flow:
    1. Lock the agent and re-read the balance
    2. Reject if funds are insufficient, the amount is below the minimum,
       or another payout is still pending/processing
    3. Persist the payment with its tax breakdown
    4. Notify the agent after commit
    """
    request_id = get_request_id(request)
    service = PaymentRequestService(db)

    try:
        payment, snapshot = service.request_payment(
            request_body.agent_id,
            request_body.amount_kopecks,
            is_self_employed=request_body.is_self_employed,
        )
    except LedgerError as e:
        log_payment_request(request_id, request_body.agent_id, type(e).__name__, request_body.amount_kopecks)
        raise to_http_exception(e)
    except DomainException as e:
        raise to_http_exception(e)
    except Exception as e:
        db.rollback()
        logging.error(f"Unexpected error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail=UNAVAILABLE_DETAIL)

    log_payment_request(
        request_id, request_body.agent_id, "created", request_body.amount_kopecks, snapshot.available_kopecks
    )
    schedule_notifications(background_tasks, notifier, service.drain_events())
    return PaymentCreatedResponse(
        payment=PaymentResponse.model_validate(payment),
        balance=BalanceResponse(**asdict(snapshot)),
    )


@router.patch("/payments/{payment_id}/status", response_model=PaymentResponse)
def update_payment_status(
    payment_id: int,
    request_body: PaymentStatusRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Session = Depends(get_db),
    notifier: NotificationClient = Depends(get_notification_client),
):
    request_id = get_request_id(request)
    service = PaymentRequestService(db)

    try:
        payment = service.update_payment_status(payment_id, request_body.status, request_body.transaction_id)
    except DomainException as e:
        logging.warning(f"Payment status change rejected: {e}", extra={"request_id": request_id, "payment_id": payment_id})
        raise to_http_exception(e)
    except Exception as e:
        db.rollback()
        logging.error(f"Unexpected error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail=UNAVAILABLE_DETAIL)

    schedule_notifications(background_tasks, notifier, service.drain_events())
    return PaymentResponse.model_validate(payment)


@router.post("/payments/{payment_id}/acts", response_model=ActResponse, status_code=201)
def register_act(payment_id: int, request_body: ActRequest, db: Session = Depends(get_db)):
    """Register the act document generated for a payout"""
    try:
        act = PaymentRequestService(db).register_act(payment_id, request_body.act_number)
    except DomainException as e:
        raise to_http_exception(e)
    return ActResponse.model_validate(act)


@router.post("/payments/acts/{act_id}/sign", response_model=ActResponse)
def sign_act(act_id: int, db: Session = Depends(get_db)):
    try:
        act = PaymentRequestService(db).mark_act_signed(act_id)
    except DomainException as e:
        raise to_http_exception(e)
    return ActResponse.model_validate(act)


@router.get("/agents/{agent_id}/payments", response_model=PaymentListResponse)
def list_payments(agent_id: int, limit: int = Query(20, ge=1, le=100), db: Session = Depends(get_db)):
    """Most recent payout requests of an agent"""
    payments = PaymentRepository(db).list_by_agent(agent_id, limit=limit)
    return PaymentListResponse(agent_id=agent_id, payments=[PaymentResponse.model_validate(p) for p in payments])
