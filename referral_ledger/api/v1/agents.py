"""Agent balance, bonus and payout requisites endpoints"""

import logging
from dataclasses import asdict
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from referral_ledger.api.dependencies import get_notification_client, get_request_id, schedule_notifications
from referral_ledger.api.errors import UNAVAILABLE_DETAIL, to_http_exception
from referral_ledger.api.v1.schemas import BalanceResponse, BonusPointsRequest, BonusUnlockResponse, RequisitesRequest
from referral_ledger.domain.exceptions import DomainException
from referral_ledger.domain.mutations import AgentRequisitesUpdate
from referral_ledger.infrastructure.clients.notifications import NotificationClient
from referral_ledger.infrastructure.database.session import get_db
from referral_ledger.services.ledger import LedgerService
from referral_ledger.services.payments import PaymentRequestService

router = APIRouter()


@router.get("/agents/{agent_id}/balance", response_model=BalanceResponse)
def get_balance(agent_id: int, db: Session = Depends(get_db)):
    """
    Current balance of an agent.

    available = total earnings - completed payouts - payouts in progress
    """
    try:
        snapshot = LedgerService(db).available_balance(agent_id)
    except DomainException as e:
        raise to_http_exception(e)
    return BalanceResponse(**asdict(snapshot))


@router.post("/agents/{agent_id}/bonus", response_model=BalanceResponse)
def add_bonus_points(
    agent_id: int,
    request_body: BonusPointsRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    """Credit invite bonus points (locked until enough referrals are paid)"""
    service = LedgerService(db)
    try:
        service.add_bonus_points(agent_id, request_body.amount_kopecks)
        snapshot = service.available_balance(agent_id)
    except DomainException as e:
        logging.warning(f"Bonus credit rejected: {e}", extra={"request_id": get_request_id(request)})
        raise to_http_exception(e)
    return BalanceResponse(**asdict(snapshot))


@router.post("/agents/{agent_id}/bonus/unlock", response_model=BonusUnlockResponse)
def unlock_bonus(
    agent_id: int,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Session = Depends(get_db),
    notifier: NotificationClient = Depends(get_notification_client),
):
    request_id = get_request_id(request)
    service = LedgerService(db)

    try:
        unlocked = service.unlock_bonus(agent_id)
        snapshot = service.available_balance(agent_id)
    except DomainException as e:
        raise to_http_exception(e)
    except Exception as e:
        db.rollback()
        logging.error(f"Unexpected error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail=UNAVAILABLE_DETAIL)

    schedule_notifications(background_tasks, notifier, service.drain_events())
    return BonusUnlockResponse(agent_id=agent_id, unlocked=unlocked, balance=BalanceResponse(**asdict(snapshot)))


@router.put("/agents/{agent_id}/requisites", status_code=204)
def update_requisites(
    agent_id: int,
    request_body: RequisitesRequest,
    db: Session = Depends(get_db),
):
    try:
        PaymentRequestService(db).update_requisites(
            AgentRequisitesUpdate(agent_id=agent_id, **request_body.model_dump())
        )
    except DomainException as e:
        raise to_http_exception(e)
