"""
Payout request transactor.

A payout request re-reads the agent's balance under the agent row lock, so
two concurrent requests can never both spend the same money.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from referral_ledger.config import settings
from referral_ledger.domain.exceptions import (
    BelowMinimumPayoutError,
    InsufficientFundsError,
    InvalidStatusTransitionError,
    LedgerError,
    MissingRequisitesError,
    NegativeAmountError,
    NotFoundError,
    PaymentInFlightError,
)
from referral_ledger.domain.models import BalanceSnapshot, LedgerEvent
from referral_ledger.domain.mutations import AgentRequisitesUpdate
from referral_ledger.domain.payouts import calculate_withdrawal_tax
from referral_ledger.domain.status import IN_FLIGHT_PAYMENT_STATUSES, PaymentStatus, check_payment_transition
from referral_ledger.infrastructure.database.models import Agent, Payment, PaymentAct
from referral_ledger.infrastructure.database.repositories import AgentRepository, PaymentRepository
from referral_ledger.infrastructure.database.session import transaction
from referral_ledger.infrastructure.observability.metrics import payment_request_counter
from referral_ledger.services.ledger import balance_snapshot

# Payment statuses in which the act may still be (re)issued
ACT_EDITABLE_STATUSES = frozenset(
    {PaymentStatus.PENDING, PaymentStatus.ACT_GENERATED, PaymentStatus.SENT_FOR_SIGNING}
)

PAYOUT_METHODS = ("card", "sbp", "bank_account")

_OUTCOMES = {
    InsufficientFundsError: "insufficient_funds",
    BelowMinimumPayoutError: "below_minimum",
    PaymentInFlightError: "in_flight",
    MissingRequisitesError: "missing_requisites",
    NegativeAmountError: "invalid_amount",
}


def missing_requisites(agent: Agent) -> Optional[str]:
    """Name of the first payout requisite the agent still has to fill in"""
    if not agent.inn:
        return "inn"
    method = agent.payout_method or "card"
    if method not in PAYOUT_METHODS:
        return "payout_method"
    if method == "card" and not agent.card_number:
        return "card_number"
    if method == "sbp" and not agent.phone:
        return "phone"
    if method == "bank_account":
        for field in ("bank_account", "bank_name", "bank_bik"):
            if not getattr(agent, field):
                return field
    return None


class PaymentRequestService:
    """Creates payout requests and drives them through their lifecycle"""

    def __init__(
        self,
        db: Session,
        min_payout_kopecks: Optional[int] = None,
        require_requisites: Optional[bool] = None,
    ):
        self.db = db
        self.agents = AgentRepository(db)
        self.payments = PaymentRepository(db)
        self.min_payout_kopecks = settings.min_payout_kopecks if min_payout_kopecks is None else min_payout_kopecks
        self.require_requisites = (
            settings.require_payout_requisites if require_requisites is None else require_requisites
        )
        self.events: List[LedgerEvent] = []

    def drain_events(self) -> List[LedgerEvent]:
        events, self.events = self.events, []
        return events

    def request_payment(
        self,
        agent_id: int,
        amount_kopecks: int,
        is_self_employed: Optional[bool] = None,
    ) -> Tuple[Payment, BalanceSnapshot]:
        """
        Create a pending payout request.

        Checks, in order, under the agent row lock:
        1. Payout requisites are complete (when required)
        2. Amount does not exceed the available balance
        3. Amount reaches the minimum payout
        4. No other request of the agent is pending or processing

        Returns the payment and the balance right after it was reserved.

        Raises:
            LedgerError: One of the rules above was violated; nothing is written
        """
        try:
            if amount_kopecks < 0:
                raise NegativeAmountError("amount_kopecks", amount_kopecks)

            with transaction(self.db):
                agent = self.agents.lock(agent_id)

                if self.require_requisites:
                    missing = missing_requisites(agent)
                    if missing:
                        raise MissingRequisitesError(missing)

                balance = balance_snapshot(self.agents, agent)
                if amount_kopecks > balance.available_kopecks:
                    raise InsufficientFundsError(balance.available_kopecks, amount_kopecks)
                if amount_kopecks < self.min_payout_kopecks:
                    raise BelowMinimumPayoutError(self.min_payout_kopecks, amount_kopecks)

                in_flight = self.payments.find_in_flight(agent_id)
                if in_flight is not None:
                    raise PaymentInFlightError(in_flight.id)

                if is_self_employed is None:
                    is_self_employed = agent.is_self_employed == "yes"
                elif agent.is_self_employed == "unknown":
                    agent.is_self_employed = "yes" if is_self_employed else "no"

                payment = self.payments.create(agent_id, calculate_withdrawal_tax(amount_kopecks, is_self_employed))
                snapshot = balance_snapshot(self.agents, agent)
        except LedgerError as e:
            payment_request_counter.labels(outcome=_OUTCOMES.get(type(e), "rejected")).inc()
            logging.info(
                f"Payment request rejected: {e}",
                extra={"agent_id": agent_id, "step": "payment_request"},
            )
            raise

        payment_request_counter.labels(outcome="created").inc()
        logging.info(
            f"Payment requested: {amount_kopecks} kopecks",
            extra={"agent_id": agent_id, "payment_id": payment.id, "step": "payment_request"},
        )
        self.events.append(
            LedgerEvent(
                "payment.requested",
                agent_id,
                {
                    "payment_id": payment.id,
                    "amount_kopecks": amount_kopecks,
                    "net_amount_kopecks": payment.net_amount_kopecks,
                },
            )
        )
        return payment, snapshot

    def update_payment_status(
        self,
        payment_id: int,
        status: PaymentStatus,
        transaction_id: Optional[str] = None,
    ) -> Payment:
        """Advance a payment; terminal statuses release or settle its amount"""
        status = PaymentStatus(status)
        payment = self.payments.get(payment_id)
        if payment is None:
            raise NotFoundError("payment", payment_id)

        with transaction(self.db):
            self.agents.lock(payment.agent_id)
            payment = self.payments.lock(payment_id)
            previous = PaymentStatus(payment.status)
            check_payment_transition(previous, status)
            if status in IN_FLIGHT_PAYMENT_STATUSES and previous not in IN_FLIGHT_PAYMENT_STATUSES:
                # At most one in-flight payment per agent
                other = self.payments.find_in_flight(payment.agent_id, exclude_id=payment_id)
                if other is not None:
                    raise PaymentInFlightError(other.id)

            payment.status = status.value
            if transaction_id:
                payment.transaction_id = transaction_id
            if status == PaymentStatus.COMPLETED:
                payment.completed_at = datetime.now(timezone.utc)

        logging.info(
            f"Payment status changed: {previous.value} -> {status.value}",
            extra={"agent_id": payment.agent_id, "payment_id": payment_id, "step": "payment_status"},
        )
        self.events.append(
            LedgerEvent(
                "payment.status_changed",
                payment.agent_id,
                {"payment_id": payment_id, "from": previous.value, "to": status.value},
            )
        )
        return payment

    def register_act(self, payment_id: int, act_number: str) -> PaymentAct:
        """Bind a new act to the payment; a previously active act is cancelled"""
        with transaction(self.db):
            payment = self.payments.lock(payment_id)
            current = PaymentStatus(payment.status)
            if current not in ACT_EDITABLE_STATUSES:
                raise InvalidStatusTransitionError("payment", current.value, PaymentStatus.ACT_GENERATED.value)

            act = self.payments.create_act(payment_id, act_number)
            if current == PaymentStatus.PENDING:
                payment.status = PaymentStatus.ACT_GENERATED.value
        return act

    def mark_act_signed(self, act_id: int) -> PaymentAct:
        """Record the agent's signature; the payment moves to signed"""
        act = self.payments.get_act(act_id)
        if act is None:
            raise NotFoundError("payment act", act_id)

        with transaction(self.db):
            payment = self.payments.lock(act.payment_id)
            self.db.refresh(act)
            if not act.is_active:
                raise InvalidStatusTransitionError("payment act", act.status, "signed")
            check_payment_transition(PaymentStatus(payment.status), PaymentStatus.SIGNED)

            act.status = "signed"
            act.signed_at = datetime.now(timezone.utc)
            payment.status = PaymentStatus.SIGNED.value
        return act

    def update_requisites(self, update: AgentRequisitesUpdate) -> Agent:
        if update.payout_method is not None and update.payout_method not in PAYOUT_METHODS:
            raise ValueError(f"Unknown payout method: {update.payout_method}")
        if update.is_self_employed is not None and update.is_self_employed not in ("yes", "no", "unknown"):
            raise ValueError(f"Unknown self-employment status: {update.is_self_employed}")

        with transaction(self.db):
            agent = self.agents.apply_requisites(update)
        return agent
