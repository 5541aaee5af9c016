"""Status state machines for referrals, clinic reports and payments"""

from enum import Enum
from typing import Dict, FrozenSet

from referral_ledger.domain.exceptions import InvalidStatusTransitionError


class ReferralStatus(str, Enum):
    NEW = "new"
    IN_PROGRESS = "in_progress"
    CONTACTED = "contacted"
    SCHEDULED = "scheduled"
    VISITED = "visited"
    PAID = "paid"
    DUPLICATE = "duplicate"
    NO_ANSWER = "no_answer"
    CANCELLED = "cancelled"


class ReportStatus(str, Enum):
    PENDING_REVIEW = "pending_review"
    AUTO_MATCHED = "auto_matched"
    APPROVED = "approved"
    REJECTED = "rejected"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    ACT_GENERATED = "act_generated"
    SENT_FOR_SIGNING = "sent_for_signing"
    SIGNED = "signed"
    READY_FOR_PAYMENT = "ready_for_payment"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# Main referral chain, in order
REFERRAL_CHAIN = (
    ReferralStatus.NEW,
    ReferralStatus.IN_PROGRESS,
    ReferralStatus.CONTACTED,
    ReferralStatus.SCHEDULED,
    ReferralStatus.VISITED,
    ReferralStatus.PAID,
)

REFERRAL_SIDE_EXITS = frozenset(
    {ReferralStatus.DUPLICATE, ReferralStatus.NO_ANSWER, ReferralStatus.CANCELLED}
)

PRE_VISIT_STATUSES = frozenset(REFERRAL_CHAIN[:4]) | {ReferralStatus.NO_ANSWER}

# Referrals the matcher may still link a clinic report to
OPEN_REFERRAL_STATUSES: FrozenSet[ReferralStatus] = PRE_VISIT_STATUSES

# Referrals whose treatment amount counts towards the monthly tier
REVENUE_REFERRAL_STATUSES = frozenset({ReferralStatus.VISITED, ReferralStatus.PAID})

PAYMENT_CHAIN = (
    PaymentStatus.PENDING,
    PaymentStatus.ACT_GENERATED,
    PaymentStatus.SENT_FOR_SIGNING,
    PaymentStatus.SIGNED,
    PaymentStatus.READY_FOR_PAYMENT,
    PaymentStatus.PROCESSING,
    PaymentStatus.COMPLETED,
)

TERMINAL_PAYMENT_STATUSES = frozenset({PaymentStatus.COMPLETED, PaymentStatus.FAILED})

NON_TERMINAL_PAYMENT_STATUSES = frozenset(PaymentStatus) - TERMINAL_PAYMENT_STATUSES

# At most one payment per agent may sit in one of these
IN_FLIGHT_PAYMENT_STATUSES = frozenset({PaymentStatus.PENDING, PaymentStatus.PROCESSING})

REVIEWABLE_REPORT_STATUSES = frozenset({ReportStatus.PENDING_REVIEW, ReportStatus.AUTO_MATCHED})


def _referral_transitions() -> Dict[ReferralStatus, FrozenSet[ReferralStatus]]:
    transitions: Dict[ReferralStatus, FrozenSet[ReferralStatus]] = {}
    for i, status in enumerate(REFERRAL_CHAIN):
        allowed = set(REFERRAL_CHAIN[i + 1:])
        if status in PRE_VISIT_STATUSES:
            allowed |= REFERRAL_SIDE_EXITS
        transitions[status] = frozenset(allowed)

    # A patient who did not pick up may still be reached later
    transitions[ReferralStatus.NO_ANSWER] = frozenset(
        set(REFERRAL_CHAIN[1:5]) | {ReferralStatus.DUPLICATE, ReferralStatus.CANCELLED}
    )
    transitions[ReferralStatus.DUPLICATE] = frozenset()
    transitions[ReferralStatus.CANCELLED] = frozenset()
    return transitions


def _payment_transitions() -> Dict[PaymentStatus, FrozenSet[PaymentStatus]]:
    transitions: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {}
    for i, status in enumerate(PAYMENT_CHAIN):
        transitions[status] = frozenset(PAYMENT_CHAIN[i + 1:])
    transitions[PaymentStatus.PROCESSING] = transitions[PaymentStatus.PROCESSING] | {PaymentStatus.FAILED}
    transitions[PaymentStatus.FAILED] = frozenset()
    return transitions


REFERRAL_TRANSITIONS = _referral_transitions()
PAYMENT_TRANSITIONS = _payment_transitions()


def check_referral_transition(current: ReferralStatus, target: ReferralStatus) -> None:
    """Raise InvalidStatusTransitionError unless current -> target is allowed"""
    current, target = ReferralStatus(current), ReferralStatus(target)
    if target not in REFERRAL_TRANSITIONS[current]:
        raise InvalidStatusTransitionError("referral", current.value, target.value)


def check_payment_transition(current: PaymentStatus, target: PaymentStatus) -> None:
    """Raise InvalidStatusTransitionError unless current -> target is allowed"""
    current, target = PaymentStatus(current), PaymentStatus(target)
    if target not in PAYMENT_TRANSITIONS[current]:
        raise InvalidStatusTransitionError("payment", current.value, target.value)
