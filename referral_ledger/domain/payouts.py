"""Withdrawal tax breakdown for payout requests"""

from referral_ledger.domain.models import TaxBreakdown

NDFL_RATE_PERCENT = 13  # personal income tax withheld for individuals
SOCIAL_CONTRIBUTIONS_PERCENT = 30
NPD_RATE_PERCENT = 6  # professional income tax the self-employed pay themselves


def _percent_of(amount_kopecks: int, percent: int) -> int:
    return amount_kopecks * percent // 100


def calculate_withdrawal_tax(gross_amount_kopecks: int, is_self_employed: bool) -> TaxBreakdown:
    """
    Split a requested payout into net amount and withholdings.

    The gross amount is what leaves the agent's balance.
    - Self-employed: receives the full gross, pays NPD on their own
      (reported as an estimate only).
    - Individual: NDFL and social contributions are withheld.

    Example:
        100000 kopecks, individual -> tax 13000, social 30000, net 57000
    """
    if is_self_employed:
        return TaxBreakdown(
            gross_amount_kopecks=gross_amount_kopecks,
            net_amount_kopecks=gross_amount_kopecks,
            tax_amount_kopecks=0,
            social_contributions_kopecks=0,
            npd_estimate_kopecks=_percent_of(gross_amount_kopecks, NPD_RATE_PERCENT),
            is_self_employed=True,
        )

    ndfl = _percent_of(gross_amount_kopecks, NDFL_RATE_PERCENT)
    social = _percent_of(gross_amount_kopecks, SOCIAL_CONTRIBUTIONS_PERCENT)
    return TaxBreakdown(
        gross_amount_kopecks=gross_amount_kopecks,
        net_amount_kopecks=gross_amount_kopecks - ndfl - social,
        tax_amount_kopecks=ndfl,
        social_contributions_kopecks=social,
        npd_estimate_kopecks=0,
        is_self_employed=False,
    )
