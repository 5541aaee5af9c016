"""Commission ledger arithmetic - pure functions over kopecks"""

from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Sequence

from referral_ledger.domain.models import CommissionTier
from referral_ledger.utils.date_utils import current_month, to_month


def available_balance(total_earnings_kopecks: int, completed_kopecks: int, pending_kopecks: int) -> int:
    """
    Money the agent may request right now.

    pending_kopecks covers every payment that has not reached a terminal
    status, so money already requested cannot be requested twice.
    """
    return max(0, total_earnings_kopecks - completed_kopecks - pending_kopecks)


def commission_delta(old_commission_kopecks: Optional[int], new_commission_kopecks: int) -> int:
    """Change to apply to total earnings when a commission is corrected"""
    return new_commission_kopecks - (old_commission_kopecks or 0)


def credit_earnings(total_earnings_kopecks: int, delta_kopecks: int) -> int:
    """Apply a commission delta to total earnings, never going below zero"""
    return max(0, total_earnings_kopecks + delta_kopecks)


def commission_for(treatment_amount_kopecks: int, rate_percent: float) -> int:
    """
    Commission for a treatment amount at a percentage rate.

    Example:
        150000 kopecks at 10% -> 15000 kopecks
        12345 kopecks at 10% -> 1235 kopecks (half up)
    """
    value = Decimal(treatment_amount_kopecks) * Decimal(str(rate_percent)) / Decimal(100)
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def sort_tiers(tiers: Sequence[CommissionTier]) -> List[CommissionTier]:
    return sorted(tiers, key=lambda t: t.min_monthly_revenue_kopecks)


def resolve_tier_rate(tiers: Sequence[CommissionTier], monthly_revenue_kopecks: int) -> Optional[float]:
    """
    Commission rate for a month's revenue.

    The highest tier whose threshold is reached applies. Revenue below every
    threshold falls back to the lowest tier. None when no tiers are
    configured (the clinic's own rate applies then).
    """
    if not tiers:
        return None

    ordered = sort_tiers(tiers)
    for tier in reversed(ordered):
        if monthly_revenue_kopecks >= tier.min_monthly_revenue_kopecks:
            return tier.commission_rate
    return ordered[0].commission_rate


def can_unlock_bonus(paid_referral_count: int, bonus_points_kopecks: int, threshold: int) -> bool:
    """Invite bonus becomes spendable once the agent has enough paid referrals"""
    return bonus_points_kopecks > 0 and paid_referral_count >= threshold


def parse_treatment_month(visit_date: Optional[str], today: Optional[date] = None) -> str:
    """Treatment month of a visit; the current month when the date is unusable"""
    return to_month(visit_date) or current_month(today)
