"""Data access layer for ledger entities"""

from email.utils import parseaddr
from typing import List, Optional, Tuple
from sqlalchemy import func, or_
from sqlalchemy.orm import Session
from referral_ledger.infrastructure.database.models import Agent, Clinic, ClinicReport, Payment, PaymentAct, Referral
from referral_ledger.domain.exceptions import NotFoundError
from referral_ledger.domain.models import ClinicRef, ReferralCandidate, TaxBreakdown
from referral_ledger.domain.mutations import (
    AgentRequisitesUpdate,
    ReferralAmountUpdate,
    ReferralMutation,
    ReferralStatusUpdate,
)
from referral_ledger.domain.status import (
    IN_FLIGHT_PAYMENT_STATUSES,
    NON_TERMINAL_PAYMENT_STATUSES,
    OPEN_REFERRAL_STATUSES,
    REVENUE_REFERRAL_STATUSES,
    PaymentStatus,
    ReferralStatus,
)


def _values(statuses) -> List[str]:
    return sorted(s.value for s in statuses)


class AgentRepository:
    """Repository for agents and their derived balance inputs"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, agent_id: int) -> Optional[Agent]:
        return self.db.get(Agent, agent_id)

    def lock(self, agent_id: int) -> Agent:
        """
        SELECT ... FOR UPDATE on the agent row.

        Values are re-read from the database even if the session already
        holds the object, so checks made under the lock see fresh data.
        """
        agent = (
            self.db.query(Agent)
            .filter(Agent.id == agent_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if agent is None:
            raise NotFoundError("agent", agent_id)
        return agent

    def payment_sums(self, agent_id: int) -> Tuple[int, int]:
        """(completed, non-terminal) payment totals in kopecks"""
        completed = (
            self.db.query(func.coalesce(func.sum(Payment.amount_kopecks), 0))
            .filter(Payment.agent_id == agent_id, Payment.status == PaymentStatus.COMPLETED.value)
            .scalar()
        )
        pending = (
            self.db.query(func.coalesce(func.sum(Payment.amount_kopecks), 0))
            .filter(
                Payment.agent_id == agent_id,
                Payment.status.in_(_values(NON_TERMINAL_PAYMENT_STATUSES)),
            )
            .scalar()
        )
        return int(completed), int(pending)

    def paid_referral_count(self, agent_id: int) -> int:
        return (
            self.db.query(func.count(Referral.id))
            .filter(Referral.agent_id == agent_id, Referral.status == ReferralStatus.PAID.value)
            .scalar()
        )

    def apply_requisites(self, update: AgentRequisitesUpdate) -> Agent:
        """Set the payout requisites that were supplied, leave the rest untouched"""
        agent = self.get(update.agent_id)
        if agent is None:
            raise NotFoundError("agent", update.agent_id)
        for field in ("inn", "payout_method", "card_number", "bank_account", "bank_name", "bank_bik", "is_self_employed"):
            value = getattr(update, field)
            if value is not None:
                setattr(agent, field, value)
        return agent


class ReferralRepository:
    """Repository for referrals (the matcher's referral store)"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, referral_id: int) -> Optional[Referral]:
        return self.db.get(Referral, referral_id)

    def lock(self, referral_id: int) -> Referral:
        referral = (
            self.db.query(Referral)
            .filter(Referral.id == referral_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if referral is None:
            raise NotFoundError("referral", referral_id)
        return referral

    def open_for_clinic(self, clinic_id: Optional[int], clinic_name: Optional[str]) -> List[Referral]:
        """
        Open referrals targeted at a clinic, newest first.

        Referrals created before clinic targeting only carry the clinic name,
        so the name is matched case-insensitively as a fallback.
        """
        conditions = []
        if clinic_id is not None:
            conditions.append(Referral.target_clinic_id == clinic_id)
        if clinic_name:
            conditions.append(func.lower(Referral.clinic) == clinic_name.strip().lower())
        if not conditions:
            return []

        return (
            self.db.query(Referral)
            .filter(or_(*conditions), Referral.status.in_(_values(OPEN_REFERRAL_STATUSES)))
            .order_by(Referral.created_at.desc(), Referral.id.desc())
            .all()
        )

    def revenue_referrals(self, agent_id: int, treatment_month: str) -> List[Referral]:
        """visited/paid referrals of an agent for one treatment month"""
        return (
            self.db.query(Referral)
            .filter(
                Referral.agent_id == agent_id,
                Referral.treatment_month == treatment_month,
                Referral.status.in_(_values(REVENUE_REFERRAL_STATUSES)),
            )
            .order_by(Referral.id)
            .all()
        )

    def monthly_revenue(self, agent_id: int, treatment_month: str) -> int:
        total = (
            self.db.query(func.coalesce(func.sum(Referral.treatment_amount_kopecks), 0))
            .filter(
                Referral.agent_id == agent_id,
                Referral.treatment_month == treatment_month,
                Referral.status.in_(_values(REVENUE_REFERRAL_STATUSES)),
            )
            .scalar()
        )
        return int(total)

    def apply(self, referral: Referral, mutation: ReferralMutation) -> Referral:
        """Apply one explicit mutation to a (locked) referral"""
        if isinstance(mutation, ReferralStatusUpdate):
            referral.status = ReferralStatus(mutation.status).value
        elif isinstance(mutation, ReferralAmountUpdate):
            referral.treatment_amount_kopecks = mutation.treatment_amount_kopecks
            referral.commission_amount_kopecks = mutation.commission_amount_kopecks
            if mutation.treatment_month is not None:
                referral.treatment_month = mutation.treatment_month
        else:
            raise TypeError(f"Unsupported referral mutation: {type(mutation).__name__}")
        return referral

    @staticmethod
    def to_candidate(referral: Referral) -> ReferralCandidate:
        return ReferralCandidate(
            referral_id=referral.id,
            patient_full_name=referral.patient_full_name,
            patient_birthdate=referral.patient_birthdate,
            created_at=referral.created_at,
        )


class ClinicRepository:
    """Clinic directory: resolves sender addresses and names to clinics"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, clinic_id: int) -> Optional[Clinic]:
        return self.db.get(Clinic, clinic_id)

    def resolve_by_sender_email(self, address: str) -> ClinicRef:
        """Exact (case-insensitive) lookup of the sender in clinic report_emails"""
        _, email = parseaddr(address or "")
        email = email.strip().lower()
        if not email:
            return ClinicRef(clinic_id=None, clinic_name=None)

        for clinic in self.db.query(Clinic).order_by(Clinic.id).all():
            known = {e.strip().lower() for e in (clinic.report_emails or []) if isinstance(e, str)}
            if email in known:
                return ClinicRef(clinic_id=clinic.id, clinic_name=clinic.name)
        return ClinicRef(clinic_id=None, clinic_name=None)

    def resolve_by_name(self, name: str) -> ClinicRef:
        """Exact name match first, then case-insensitive"""
        name = (name or "").strip()
        if not name:
            return ClinicRef(clinic_id=None, clinic_name=None)

        clinic = self.db.query(Clinic).filter(Clinic.name == name).order_by(Clinic.id).first()
        if clinic is None:
            clinic = (
                self.db.query(Clinic)
                .filter(func.lower(Clinic.name) == name.lower())
                .order_by(Clinic.id)
                .first()
            )
        if clinic is None:
            return ClinicRef(clinic_id=None, clinic_name=None)
        return ClinicRef(clinic_id=clinic.id, clinic_name=clinic.name)


class ClinicReportRepository:
    """Repository for persisted clinic reports"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, report_id: int) -> Optional[ClinicReport]:
        return self.db.get(ClinicReport, report_id)

    def lock(self, report_id: int) -> ClinicReport:
        report = (
            self.db.query(ClinicReport)
            .filter(ClinicReport.id == report_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if report is None:
            raise NotFoundError("clinic report", report_id)
        return report

    def get_by_message_id(self, message_id: str) -> Optional[ClinicReport]:
        return self.db.query(ClinicReport).filter(ClinicReport.email_message_id == message_id).first()

    def create(self, report: ClinicReport) -> ClinicReport:
        """Persist a report; the unique message id rejects concurrent duplicates"""
        self.db.add(report)
        self.db.flush()  # Get ID without committing
        return report

    def list_by_status(self, status: Optional[str] = None, limit: int = 50) -> List[ClinicReport]:
        query = self.db.query(ClinicReport)
        if status:
            query = query.filter(ClinicReport.status == status)
        return query.order_by(ClinicReport.created_at.desc(), ClinicReport.id.desc()).limit(limit).all()


class PaymentRepository:
    """Repository for payout requests and their acts"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, payment_id: int) -> Optional[Payment]:
        return self.db.get(Payment, payment_id)

    def lock(self, payment_id: int) -> Payment:
        payment = (
            self.db.query(Payment)
            .filter(Payment.id == payment_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if payment is None:
            raise NotFoundError("payment", payment_id)
        return payment

    def find_in_flight(self, agent_id: int, exclude_id: Optional[int] = None) -> Optional[Payment]:
        query = self.db.query(Payment).filter(
            Payment.agent_id == agent_id,
            Payment.status.in_(_values(IN_FLIGHT_PAYMENT_STATUSES)),
        )
        if exclude_id is not None:
            query = query.filter(Payment.id != exclude_id)
        return query.order_by(Payment.id).first()

    def create(self, agent_id: int, breakdown: TaxBreakdown) -> Payment:
        payment = Payment(
            agent_id=agent_id,
            amount_kopecks=breakdown.gross_amount_kopecks,
            gross_amount_kopecks=breakdown.gross_amount_kopecks,
            net_amount_kopecks=breakdown.net_amount_kopecks,
            tax_amount_kopecks=breakdown.tax_amount_kopecks,
            social_contributions_kopecks=breakdown.social_contributions_kopecks,
            status=PaymentStatus.PENDING.value,
            is_self_employed_snapshot=breakdown.is_self_employed,
        )
        self.db.add(payment)
        self.db.flush()
        return payment

    def list_by_agent(self, agent_id: int, limit: int = 20) -> List[Payment]:
        return (
            self.db.query(Payment)
            .filter(Payment.agent_id == agent_id)
            .order_by(Payment.requested_at.desc(), Payment.id.desc())
            .limit(limit)
            .all()
        )

    def get_act(self, act_id: int) -> Optional[PaymentAct]:
        return self.db.get(PaymentAct, act_id)

    def active_act(self, payment_id: int) -> Optional[PaymentAct]:
        return (
            self.db.query(PaymentAct)
            .filter(PaymentAct.payment_id == payment_id, PaymentAct.is_active.is_(True))
            .first()
        )

    def create_act(self, payment_id: int, act_number: str) -> PaymentAct:
        """Bind a new active act to the payment, retiring the previous one"""
        previous = self.active_act(payment_id)
        if previous is not None:
            previous.is_active = False
            previous.status = "cancelled"

        act = PaymentAct(payment_id=payment_id, act_number=act_number, status="generated", is_active=True)
        self.db.add(act)
        self.db.flush()
        return act
