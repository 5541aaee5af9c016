"""
Commission ledger operations.

Every mutation runs in one transaction with the agent row locked first and
the referral row second. Balances are always derived from stored earnings
and payment sums, never cached.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from referral_ledger.config import settings
from referral_ledger.domain import ledger
from referral_ledger.domain.exceptions import NegativeAmountError, NotFoundError, ReportAlreadyReviewedError
from referral_ledger.domain.models import BalanceSnapshot, CommissionTier, LedgerEvent, MonthlyTier
from referral_ledger.domain.mutations import ReferralAmountUpdate, ReferralStatusUpdate
from referral_ledger.domain.status import (
    REVENUE_REFERRAL_STATUSES,
    REVIEWABLE_REPORT_STATUSES,
    ReferralStatus,
    ReportStatus,
    check_referral_transition,
)
from referral_ledger.infrastructure.database.models import Agent, ClinicReport, Referral
from referral_ledger.infrastructure.database.repositories import (
    AgentRepository,
    ClinicReportRepository,
    ClinicRepository,
    ReferralRepository,
)
from referral_ledger.infrastructure.database.session import transaction
from referral_ledger.infrastructure.observability.metrics import bonus_unlock_counter, record_commission_delta


def configured_tiers() -> List[CommissionTier]:
    return [
        CommissionTier(t.min_monthly_revenue_kopecks, t.commission_rate)
        for t in settings.commission_tiers
    ]


def balance_snapshot(agents: AgentRepository, agent: Agent) -> BalanceSnapshot:
    """Derive the agent's balance from earnings and payment sums"""
    completed, pending = agents.payment_sums(agent.id)
    total = agent.total_earnings_kopecks or 0
    return BalanceSnapshot(
        agent_id=agent.id,
        total_earnings_kopecks=total,
        completed_payments_kopecks=completed,
        pending_payments_kopecks=pending,
        available_kopecks=ledger.available_balance(total, completed, pending),
        bonus_points_kopecks=agent.bonus_points_kopecks or 0,
    )


class LedgerService:
    """Locked commission, bonus and review operations on the agent ledger"""

    def __init__(
        self,
        db: Session,
        tiers: Optional[Sequence[CommissionTier]] = None,
        default_commission_rate: Optional[float] = None,
        bonus_unlock_threshold: Optional[int] = None,
    ):
        self.db = db
        self.agents = AgentRepository(db)
        self.referrals = ReferralRepository(db)
        self.reports = ClinicReportRepository(db)
        self.clinics = ClinicRepository(db)
        self.tiers = ledger.sort_tiers(configured_tiers() if tiers is None else tiers)
        self.default_commission_rate = (
            settings.default_commission_rate if default_commission_rate is None else default_commission_rate
        )
        self.bonus_unlock_threshold = (
            settings.bonus_unlock_paid_referrals if bonus_unlock_threshold is None else bonus_unlock_threshold
        )
        self.events: List[LedgerEvent] = []

    def drain_events(self) -> List[LedgerEvent]:
        """Hand over events of committed operations for notification"""
        events, self.events = self.events, []
        return events

    def available_balance(self, agent_id: int) -> BalanceSnapshot:
        """Unlocked read of the agent's balance"""
        agent = self.agents.get(agent_id)
        if agent is None:
            raise NotFoundError("agent", agent_id)
        return balance_snapshot(self.agents, agent)

    def apply_commission_delta(
        self,
        referral_id: int,
        new_commission_kopecks: int,
        treatment_amount_kopecks: Optional[int] = None,
    ) -> int:
        """
        Set a referral's commission and credit the difference to its agent.

        Returns the delta applied to the agent's total earnings.
        """
        _check_non_negative("commission_amount_kopecks", new_commission_kopecks)
        if treatment_amount_kopecks is not None:
            _check_non_negative("treatment_amount_kopecks", treatment_amount_kopecks)

        with transaction(self.db):
            agent, referral = self._lock_agent_and_referral(referral_id)
            delta = self._apply_delta_locked(agent, referral, new_commission_kopecks, treatment_amount_kopecks)

        logging.info(
            f"Commission updated: referral={referral_id} delta={delta}",
            extra={"agent_id": agent.id, "referral_id": referral_id, "step": "commission_delta"},
        )
        return delta

    def unlock_bonus(self, agent_id: int) -> bool:
        """Move the invite bonus into earnings once enough referrals are paid"""
        with transaction(self.db):
            agent = self.agents.lock(agent_id)
            amount = self._unlock_bonus_locked(agent)
        if amount:
            self._bonus_unlocked(agent_id, amount)
        return bool(amount)

    def add_bonus_points(self, agent_id: int, amount_kopecks: int) -> int:
        """Credit invite bonus points; they stay locked until unlock_bonus"""
        _check_non_negative("bonus_points_kopecks", amount_kopecks)
        with transaction(self.db):
            agent = self.agents.lock(agent_id)
            agent.bonus_points_kopecks = (agent.bonus_points_kopecks or 0) + amount_kopecks
            balance = agent.bonus_points_kopecks
        return balance

    def compute_monthly_tier(self, agent_id: int, treatment_month: str) -> MonthlyTier:
        revenue = self.referrals.monthly_revenue(agent_id, treatment_month)
        return MonthlyTier(
            treatment_month=treatment_month,
            revenue_kopecks=revenue,
            commission_rate=ledger.resolve_tier_rate(self.tiers, revenue),
        )

    def recalculate_month(self, agent_id: int, treatment_month: str) -> int:
        """Re-price every revenue referral of the month at its tier rate"""
        with transaction(self.db):
            agent = self.agents.lock(agent_id)
            delta = self._recalculate_month_locked(agent, treatment_month)
        return delta

    def approve_report(
        self,
        report_id: int,
        reviewer_id: int,
        referral_id: Optional[int] = None,
        treatment_amount_kopecks: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> ClinicReport:
        """
        Approve a clinic report and credit the commission it earns.

        The report is linked to referral_id (or the referral the matcher
        chose). The referral moves to visited, its treatment month comes from
        the visit date and the commission is priced at the clinic rate, then
        re-priced at the tier rate when revenue tiers are configured.
        """
        if treatment_amount_kopecks is not None:
            _check_non_negative("treatment_amount_kopecks", treatment_amount_kopecks)

        report = self.reports.get(report_id)
        if report is None:
            raise NotFoundError("clinic report", report_id)
        target_referral_id = referral_id or report.referral_id
        delta = 0

        with transaction(self.db):
            if target_referral_id is None:
                report = self._review_locked(report_id, ReportStatus.APPROVED, reviewer_id, notes)
                agent_id = None
            else:
                agent, referral = self._lock_agent_and_referral(target_referral_id)
                report = self._review_locked(report_id, ReportStatus.APPROVED, reviewer_id, notes)
                report.referral_id = referral.id
                agent_id = agent.id

                amount = (
                    report.treatment_amount_kopecks or 0
                    if treatment_amount_kopecks is None
                    else treatment_amount_kopecks
                )
                report.treatment_amount_kopecks = amount
                month = ledger.parse_treatment_month(report.visit_date)

                if ReferralStatus(referral.status) not in REVENUE_REFERRAL_STATUSES:
                    check_referral_transition(ReferralStatus(referral.status), ReferralStatus.VISITED)
                    self.referrals.apply(referral, ReferralStatusUpdate(referral.id, ReferralStatus.VISITED))

                commission = ledger.commission_for(amount, self._base_rate(report, referral))
                delta = self._apply_delta_locked(agent, referral, commission, amount, month)
                if self.tiers:
                    self.db.flush()
                    delta += self._recalculate_month_locked(agent, month)

        logging.info(
            f"Report approved: report={report_id} referral={target_referral_id} delta={delta}",
            extra={"agent_id": agent_id, "report_id": report_id, "step": "report_approved"},
        )
        self.events.append(
            LedgerEvent(
                "report.approved",
                agent_id,
                {"report_id": report_id, "referral_id": target_referral_id, "commission_delta_kopecks": delta},
            )
        )
        return report

    def reject_report(self, report_id: int, reviewer_id: int, notes: Optional[str] = None) -> ClinicReport:
        with transaction(self.db):
            report = self._review_locked(report_id, ReportStatus.REJECTED, reviewer_id, notes)

        logging.info(f"Report rejected: report={report_id}", extra={"report_id": report_id, "step": "report_rejected"})
        agent_id = None
        if report.referral_id is not None:
            referral = self.referrals.get(report.referral_id)
            agent_id = referral.agent_id if referral else None
        self.events.append(LedgerEvent("report.rejected", agent_id, {"report_id": report_id}))
        return report

    def update_referral_status(self, referral_id: int, status: ReferralStatus) -> Referral:
        """
        Move a referral through its state machine.

        Reaching paid counts towards the invite bonus, so the unlock is
        attempted under the same agent lock.
        """
        status = ReferralStatus(status)
        unlocked = 0

        with transaction(self.db):
            agent, referral = self._lock_agent_and_referral(referral_id)
            previous = ReferralStatus(referral.status)
            if previous == status:
                return referral

            check_referral_transition(previous, status)
            self.referrals.apply(referral, ReferralStatusUpdate(referral_id, status))
            if status == ReferralStatus.PAID:
                self.db.flush()
                unlocked = self._unlock_bonus_locked(agent)

        self.events.append(
            LedgerEvent(
                "referral.status_changed",
                agent.id,
                {"referral_id": referral_id, "from": previous.value, "to": status.value},
            )
        )
        if unlocked:
            self._bonus_unlocked(agent.id, unlocked)
        return referral

    def _lock_agent_and_referral(self, referral_id: int):
        referral = self.referrals.get(referral_id)
        if referral is None:
            raise NotFoundError("referral", referral_id)
        agent = self.agents.lock(referral.agent_id)
        referral = self.referrals.lock(referral_id)
        return agent, referral

    def _apply_delta_locked(
        self,
        agent: Agent,
        referral: Referral,
        new_commission_kopecks: int,
        treatment_amount_kopecks: Optional[int] = None,
        treatment_month: Optional[str] = None,
    ) -> int:
        delta = ledger.commission_delta(referral.commission_amount_kopecks, new_commission_kopecks)
        agent.total_earnings_kopecks = ledger.credit_earnings(agent.total_earnings_kopecks or 0, delta)
        self.referrals.apply(
            referral,
            ReferralAmountUpdate(
                referral_id=referral.id,
                treatment_amount_kopecks=(
                    referral.treatment_amount_kopecks or 0
                    if treatment_amount_kopecks is None
                    else treatment_amount_kopecks
                ),
                commission_amount_kopecks=new_commission_kopecks,
                treatment_month=treatment_month,
            ),
        )
        record_commission_delta(delta)
        return delta

    def _recalculate_month_locked(self, agent: Agent, treatment_month: str) -> int:
        tier = self.compute_monthly_tier(agent.id, treatment_month)
        if tier.commission_rate is None:
            return 0

        total_delta = 0
        for referral in self.referrals.revenue_referrals(agent.id, treatment_month):
            commission = ledger.commission_for(referral.treatment_amount_kopecks or 0, tier.commission_rate)
            total_delta += self._apply_delta_locked(agent, referral, commission)

        logging.info(
            f"Month recalculated: {treatment_month} revenue={tier.revenue_kopecks} "
            f"rate={tier.commission_rate}% delta={total_delta}",
            extra={"agent_id": agent.id, "step": "tier_recalculation"},
        )
        return total_delta

    def _unlock_bonus_locked(self, agent: Agent) -> int:
        bonus = agent.bonus_points_kopecks or 0
        paid = self.agents.paid_referral_count(agent.id)
        if not ledger.can_unlock_bonus(paid, bonus, self.bonus_unlock_threshold):
            return 0

        agent.total_earnings_kopecks = ledger.credit_earnings(agent.total_earnings_kopecks or 0, bonus)
        agent.bonus_points_kopecks = 0
        return bonus

    def _bonus_unlocked(self, agent_id: int, amount_kopecks: int) -> None:
        bonus_unlock_counter.inc()
        logging.info(
            f"Bonus unlocked: {amount_kopecks} kopecks",
            extra={"agent_id": agent_id, "step": "bonus_unlock"},
        )
        self.events.append(LedgerEvent("bonus.unlocked", agent_id, {"amount_kopecks": amount_kopecks}))

    def _review_locked(
        self,
        report_id: int,
        status: ReportStatus,
        reviewer_id: int,
        notes: Optional[str],
    ) -> ClinicReport:
        report = self.reports.lock(report_id)
        if ReportStatus(report.status) not in REVIEWABLE_REPORT_STATUSES:
            raise ReportAlreadyReviewedError(report_id, report.status)

        report.status = status.value
        report.reviewed_by = reviewer_id
        report.reviewed_at = datetime.now(timezone.utc)
        report.review_notes = notes
        return report

    def _base_rate(self, report: ClinicReport, referral: Referral) -> float:
        for clinic_id in (report.clinic_id, referral.target_clinic_id):
            if clinic_id is None:
                continue
            clinic = self.clinics.get(clinic_id)
            if clinic is not None and clinic.commission_rate is not None:
                return clinic.commission_rate
        return self.default_commission_rate


def _check_non_negative(field: str, value: int) -> None:
    if value < 0:
        raise NegativeAmountError(field, value)
