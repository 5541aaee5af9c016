"""Explicit mutation payloads for referrals and agents.

Each kind of change gets its own type so repositories never accept
free-form update dictionaries.
"""

from dataclasses import dataclass
from typing import Optional, Union

from referral_ledger.domain.status import ReferralStatus


@dataclass(frozen=True)
class ReferralStatusUpdate:
    referral_id: int
    status: ReferralStatus


@dataclass(frozen=True)
class ReferralAmountUpdate:
    referral_id: int
    treatment_amount_kopecks: int
    commission_amount_kopecks: int
    treatment_month: Optional[str] = None


@dataclass(frozen=True)
class AgentRequisitesUpdate:
    agent_id: int
    inn: Optional[str] = None
    payout_method: Optional[str] = None  # card | sbp | bank_account
    card_number: Optional[str] = None
    bank_account: Optional[str] = None
    bank_name: Optional[str] = None
    bank_bik: Optional[str] = None
    is_self_employed: Optional[str] = None  # yes | no | unknown


ReferralMutation = Union[ReferralStatusUpdate, ReferralAmountUpdate]
