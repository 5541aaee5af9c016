"""Integration tests for commission ledger operations"""

import threading
import pytest
from referral_ledger.domain.exceptions import (
    InvalidStatusTransitionError,
    NegativeAmountError,
    NotFoundError,
    ReportAlreadyReviewedError,
)
from referral_ledger.domain.models import CommissionTier
from referral_ledger.infrastructure.database.models import Agent, ClinicReport, Referral
from referral_ledger.services.ledger import LedgerService


@pytest.fixture
def make_report(db):
    def _make(referral=None, clinic=None, amount_kopecks=1500000, visit_date="2025-01-15", status="auto_matched"):
        report = ClinicReport(
            source="email",
            email_message_id=f"<report-{db.query(ClinicReport).count() + 1}@medsi.ru>",
            referral_id=referral.id if referral is not None else None,
            clinic_id=clinic.id if clinic is not None else None,
            patient_name="Смирнова Анна Викторовна",
            visit_date=visit_date,
            treatment_amount_kopecks=amount_kopecks,
            services=[],
            status=status,
            ai_confidence=90,
            match_confidence=95,
        )
        db.add(report)
        db.flush()
        return report

    return _make


def _service(db, tiers=(), rate=10.0, threshold=10):
    return LedgerService(db, tiers=list(tiers), default_commission_rate=rate, bonus_unlock_threshold=threshold)


def test_approve_report_credits_commission(db, make_agent, make_clinic, make_referral, make_report):
    agent = make_agent()
    clinic = make_clinic()
    referral = make_referral(agent, clinic)
    report = make_report(referral, clinic)
    service = _service(db)

    approved = service.approve_report(report.id, reviewer_id=7, notes="ok")

    db.refresh(referral)
    db.refresh(agent)
    assert approved.status == "approved"
    assert approved.reviewed_by == 7
    assert approved.reviewed_at is not None
    assert referral.status == "visited"
    assert referral.treatment_month == "2025-01"
    assert referral.treatment_amount_kopecks == 1500000
    assert referral.commission_amount_kopecks == 150000
    assert agent.total_earnings_kopecks == 150000
    assert [e.event for e in service.drain_events()] == ["report.approved"]
    assert service.drain_events() == []


def test_approve_report_uses_clinic_rate(db, make_agent, make_clinic, make_referral, make_report):
    agent = make_agent()
    clinic = make_clinic(commission_rate=20.0)
    referral = make_referral(agent, clinic)
    report = make_report(referral, clinic)

    _service(db).approve_report(report.id, reviewer_id=1)

    db.refresh(referral)
    assert referral.commission_amount_kopecks == 300000


def test_approve_report_with_manual_referral_and_amount(db, make_agent, make_clinic, make_referral, make_report):
    agent = make_agent()
    clinic = make_clinic()
    referral = make_referral(agent, clinic)
    report = make_report(None, clinic)

    _service(db).approve_report(report.id, reviewer_id=1, referral_id=referral.id, treatment_amount_kopecks=200000)

    db.refresh(report)
    db.refresh(agent)
    assert report.referral_id == referral.id
    assert agent.total_earnings_kopecks == 20000


def test_report_cannot_be_reviewed_twice(db, make_agent, make_clinic, make_referral, make_report):
    agent = make_agent()
    clinic = make_clinic()
    report = make_report(make_referral(agent, clinic), clinic)
    service = _service(db)
    service.approve_report(report.id, reviewer_id=1)

    with pytest.raises(ReportAlreadyReviewedError):
        service.approve_report(report.id, reviewer_id=1)
    with pytest.raises(ReportAlreadyReviewedError):
        service.reject_report(report.id, reviewer_id=1)

    db.refresh(agent)
    assert agent.total_earnings_kopecks == 150000


def test_approve_report_for_cancelled_referral_fails(db, make_agent, make_clinic, make_referral, make_report):
    agent = make_agent()
    clinic = make_clinic()
    report = make_report(make_referral(agent, clinic, status="cancelled"), clinic)
    db.commit()

    with pytest.raises(InvalidStatusTransitionError):
        _service(db).approve_report(report.id, reviewer_id=1)

    db.refresh(report)
    db.refresh(agent)
    assert report.status == "auto_matched"
    assert agent.total_earnings_kopecks == 0


def test_reject_report_leaves_ledger_untouched(db, make_agent, make_clinic, make_referral, make_report):
    agent = make_agent()
    clinic = make_clinic()
    report = make_report(make_referral(agent, clinic), clinic, status="pending_review")

    rejected = _service(db).reject_report(report.id, reviewer_id=3, notes="wrong patient")

    db.refresh(agent)
    assert rejected.status == "rejected"
    assert rejected.review_notes == "wrong patient"
    assert agent.total_earnings_kopecks == 0


def test_monthly_tiers_reprice_the_whole_month(db, make_agent, make_clinic, make_referral, make_report):
    """Test crossing a revenue tier re-prices earlier referrals of the month"""
    tiers = [CommissionTier(0, 10.0), CommissionTier(2_000_000, 15.0)]
    agent = make_agent()
    clinic = make_clinic()
    first = make_referral(agent, clinic)
    second = make_referral(agent, clinic, patient_full_name="Петров Олег Игоревич")
    service = _service(db, tiers=tiers)

    service.approve_report(make_report(first, clinic).id, reviewer_id=1)
    db.refresh(agent)
    assert agent.total_earnings_kopecks == 150000

    service.approve_report(make_report(second, clinic).id, reviewer_id=1)

    db.refresh(agent)
    db.refresh(first)
    db.refresh(second)
    assert first.commission_amount_kopecks == 225000
    assert second.commission_amount_kopecks == 225000
    assert agent.total_earnings_kopecks == 450000

    tier = service.compute_monthly_tier(agent.id, "2025-01")
    assert tier.revenue_kopecks == 3_000_000
    assert tier.commission_rate == 15.0


def test_commission_delta_round_trip(db, make_agent, make_referral):
    agent = make_agent(total_earnings_kopecks=500000)
    referral = make_referral(agent)
    service = _service(db)

    assert service.apply_commission_delta(referral.id, 15000) == 15000
    assert service.apply_commission_delta(referral.id, 22000) == 7000
    assert service.apply_commission_delta(referral.id, 15000) == -7000

    db.refresh(agent)
    assert agent.total_earnings_kopecks == 515000


def test_commission_delta_rejects_negative_and_unknown(db, make_agent, make_referral):
    referral = make_referral(make_agent())
    service = _service(db)

    with pytest.raises(NegativeAmountError):
        service.apply_commission_delta(referral.id, -1)
    with pytest.raises(NotFoundError):
        service.apply_commission_delta(999, 100)


def test_earnings_never_go_negative(db, make_agent, make_referral):
    agent = make_agent(total_earnings_kopecks=1000)
    referral = make_referral(agent, commission_amount_kopecks=50000)

    _service(db).apply_commission_delta(referral.id, 0)

    db.refresh(agent)
    assert agent.total_earnings_kopecks == 0
    assert _service(db).available_balance(agent.id).available_kopecks == 0


def test_paid_referral_unlocks_bonus(db, make_agent, make_referral):
    agent = make_agent(bonus_points_kopecks=50000)
    make_referral(agent, status="paid")
    referral = make_referral(agent, status="visited", patient_full_name="Петров Олег Игоревич")
    service = _service(db, threshold=2)

    service.update_referral_status(referral.id, "paid")

    db.refresh(agent)
    assert agent.total_earnings_kopecks == 50000
    assert agent.bonus_points_kopecks == 0
    assert [e.event for e in service.drain_events()] == ["referral.status_changed", "bonus.unlocked"]


def test_unlock_bonus_requires_paid_referrals(db, make_agent, make_referral):
    agent = make_agent(bonus_points_kopecks=50000)
    make_referral(agent, status="paid")
    service = _service(db, threshold=10)

    assert service.unlock_bonus(agent.id) is False

    db.refresh(agent)
    assert agent.bonus_points_kopecks == 50000
    assert agent.total_earnings_kopecks == 0


def test_add_bonus_points(db, make_agent):
    agent = make_agent(bonus_points_kopecks=1000)
    assert _service(db).add_bonus_points(agent.id, 50000) == 51000
    with pytest.raises(NegativeAmountError):
        _service(db).add_bonus_points(agent.id, -5)


def test_update_referral_status_rejects_invalid_transition(db, make_agent, make_referral):
    referral = make_referral(make_agent(), status="visited")
    with pytest.raises(InvalidStatusTransitionError):
        _service(db).update_referral_status(referral.id, "new")


def test_same_status_is_a_noop(db, make_agent, make_referral):
    referral = make_referral(make_agent(), status="contacted")
    service = _service(db)

    service.update_referral_status(referral.id, "contacted")

    assert service.drain_events() == []


def test_concurrent_bonus_unlock_credits_once(db, session_factory, make_agent, make_referral):
    """Test two simultaneous unlocks move the bonus into earnings exactly once"""
    agent = make_agent(bonus_points_kopecks=50000)
    make_referral(agent, status="paid")
    agent_id = agent.id
    db.commit()

    barrier = threading.Barrier(2)
    results = []

    def unlock():
        session = session_factory()
        try:
            barrier.wait()
            results.append(LedgerService(session, tiers=[], bonus_unlock_threshold=1).unlock_bonus(agent_id))
        finally:
            session.close()

    threads = [threading.Thread(target=unlock) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    stored = db.get(Agent, agent_id)
    assert sorted(results) == [False, True]
    assert stored.total_earnings_kopecks == 50000
    assert stored.bonus_points_kopecks == 0
    assert db.query(Referral).count() == 1
