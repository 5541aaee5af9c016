"""Integration tests for payout requests"""

import threading
import pytest
from referral_ledger.domain.exceptions import (
    BelowMinimumPayoutError,
    InsufficientFundsError,
    InvalidStatusTransitionError,
    MissingRequisitesError,
    PaymentInFlightError,
)
from referral_ledger.domain.mutations import AgentRequisitesUpdate
from referral_ledger.infrastructure.database.models import Agent, Payment
from referral_ledger.services.ledger import LedgerService
from referral_ledger.services.payments import PaymentRequestService


def _service(db, min_payout=100000, require_requisites=True):
    return PaymentRequestService(db, min_payout_kopecks=min_payout, require_requisites=require_requisites)


def test_request_payment_reserves_balance(db, make_agent):
    agent = make_agent(total_earnings_kopecks=300000)
    service = _service(db)

    payment, snapshot = service.request_payment(agent.id, 100000)

    assert payment.status == "pending"
    assert payment.amount_kopecks == 100000
    assert payment.net_amount_kopecks == 57000
    assert payment.tax_amount_kopecks == 13000
    assert payment.social_contributions_kopecks == 30000
    assert payment.is_self_employed_snapshot is False
    assert snapshot.available_kopecks == 200000
    assert snapshot.pending_payments_kopecks == 100000
    assert [e.event for e in service.drain_events()] == ["payment.requested"]


def test_insufficient_funds_checked_before_minimum(db, make_agent):
    """Test 50000 requested with 30000 available is rejected as insufficient funds"""
    agent = make_agent(total_earnings_kopecks=30000)

    with pytest.raises(InsufficientFundsError) as exc_info:
        _service(db).request_payment(agent.id, 50000)

    assert str(exc_info.value) == "insufficient funds: available 30000, requested 50000"
    assert db.query(Payment).count() == 0


def test_below_minimum_payout(db, make_agent):
    agent = make_agent(total_earnings_kopecks=300000)

    with pytest.raises(BelowMinimumPayoutError) as exc_info:
        _service(db).request_payment(agent.id, 50000)

    assert exc_info.value.minimum_kopecks == 100000


def test_second_request_while_first_in_flight(db, make_agent):
    agent = make_agent(total_earnings_kopecks=300000)
    service = _service(db)
    first, _ = service.request_payment(agent.id, 100000)

    with pytest.raises(PaymentInFlightError) as exc_info:
        service.request_payment(agent.id, 100000)

    assert exc_info.value.payment_id == first.id
    assert db.query(Payment).count() == 1


def test_parked_payment_cannot_resume_while_another_is_in_flight(db, make_agent):
    """Test a payment waiting on its act cannot move to processing next to a newer pending one"""
    agent = make_agent(total_earnings_kopecks=300000)
    service = _service(db)
    first, _ = service.request_payment(agent.id, 100000)
    service.update_payment_status(first.id, "act_generated")
    second, _ = service.request_payment(agent.id, 100000)

    with pytest.raises(PaymentInFlightError) as exc_info:
        service.update_payment_status(first.id, "processing")

    assert exc_info.value.payment_id == second.id
    statuses = sorted(p.status for p in db.query(Payment).filter_by(agent_id=agent.id))
    assert statuses == ["act_generated", "pending"]

    # Once the newer request settles the parked one may proceed
    service.update_payment_status(second.id, "processing")
    service.update_payment_status(second.id, "completed")
    assert service.update_payment_status(first.id, "processing").status == "processing"


def test_missing_requisites(db, make_agent):
    agent = make_agent(total_earnings_kopecks=300000, inn=None)

    with pytest.raises(MissingRequisitesError) as exc_info:
        _service(db).request_payment(agent.id, 100000)
    assert exc_info.value.missing == "inn"

    agent = make_agent(total_earnings_kopecks=300000, payout_method="bank_account", telegram_id="42")
    with pytest.raises(MissingRequisitesError) as exc_info:
        _service(db).request_payment(agent.id, 100000)
    assert exc_info.value.missing == "bank_account"


def test_requisites_not_required_when_disabled(db, make_agent):
    agent = make_agent(total_earnings_kopecks=300000, inn=None)
    payment, _ = _service(db, require_requisites=False).request_payment(agent.id, 100000)
    assert payment.id is not None


def test_self_employment_recorded_on_first_request(db, make_agent):
    agent = make_agent(total_earnings_kopecks=300000, is_self_employed="unknown")

    payment, _ = _service(db).request_payment(agent.id, 100000, is_self_employed=True)

    db.refresh(agent)
    assert agent.is_self_employed == "yes"
    assert payment.net_amount_kopecks == 100000
    assert payment.is_self_employed_snapshot is True


def test_completed_payment_stays_deducted(db, make_agent):
    agent = make_agent(total_earnings_kopecks=300000)
    service = _service(db)
    payment, _ = service.request_payment(agent.id, 100000)

    service.update_payment_status(payment.id, "processing")
    completed = service.update_payment_status(payment.id, "completed", transaction_id="tx-001")

    snapshot = LedgerService(db).available_balance(agent.id)
    assert completed.completed_at is not None
    assert completed.transaction_id == "tx-001"
    assert snapshot.total_earnings_kopecks == 300000
    assert snapshot.completed_payments_kopecks == 100000
    assert snapshot.pending_payments_kopecks == 0
    assert snapshot.available_kopecks == 200000


def test_failed_payment_releases_balance(db, make_agent):
    agent = make_agent(total_earnings_kopecks=300000)
    service = _service(db)
    payment, _ = service.request_payment(agent.id, 100000)

    service.update_payment_status(payment.id, "processing")
    service.update_payment_status(payment.id, "failed")

    assert LedgerService(db).available_balance(agent.id).available_kopecks == 300000
    with pytest.raises(InvalidStatusTransitionError):
        service.update_payment_status(payment.id, "completed")

    # A failed payment no longer blocks a new request
    second, _ = service.request_payment(agent.id, 100000)
    assert second.id != payment.id


def test_acts_lifecycle(db, make_agent):
    agent = make_agent(total_earnings_kopecks=300000)
    service = _service(db)
    payment, _ = service.request_payment(agent.id, 100000)

    first = service.register_act(payment.id, "ACT-2025-001")
    second = service.register_act(payment.id, "ACT-2025-002")

    db.refresh(first)
    db.refresh(payment)
    assert payment.status == "act_generated"
    assert first.is_active is False
    assert first.status == "cancelled"
    assert second.is_active is True

    with pytest.raises(InvalidStatusTransitionError):
        service.mark_act_signed(first.id)

    signed = service.mark_act_signed(second.id)
    db.refresh(payment)
    assert signed.status == "signed"
    assert signed.signed_at is not None
    assert payment.status == "signed"

    with pytest.raises(InvalidStatusTransitionError):
        service.register_act(payment.id, "ACT-2025-003")


def test_update_requisites(db, make_agent):
    agent = make_agent(inn=None, card_number=None)

    _service(db).update_requisites(
        AgentRequisitesUpdate(agent_id=agent.id, inn="7712345678", card_number="2200000000000001")
    )

    db.refresh(agent)
    assert agent.inn == "7712345678"
    assert agent.card_number == "2200000000000001"
    assert agent.payout_method == "card"


def test_concurrent_requests_create_one_payment(db, session_factory, make_agent):
    """Test two simultaneous requests: exactly one payment, the other sees it in flight"""
    agent = make_agent(total_earnings_kopecks=300000)
    agent_id = agent.id
    db.commit()

    barrier = threading.Barrier(2)
    outcomes = []

    def request():
        session = session_factory()
        try:
            barrier.wait()
            _service(session).request_payment(agent_id, 100000)
            outcomes.append("created")
        except PaymentInFlightError:
            outcomes.append("in_flight")
        finally:
            session.close()

    threads = [threading.Thread(target=request) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(outcomes) == ["created", "in_flight"]
    assert db.query(Payment).filter(Payment.agent_id == agent_id).count() == 1
    assert db.get(Agent, agent_id).total_earnings_kopecks == 300000
