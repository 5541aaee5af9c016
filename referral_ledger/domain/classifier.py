"""Status classifier for freshly matched clinic reports"""

from referral_ledger.domain.status import ReportStatus


def classify(match_confidence: int, threshold: int) -> ReportStatus:
    """
    Map match confidence to the initial report status.

    Only auto_matched or pending_review come out of here; approved and
    rejected need a human reviewer.
    """
    if match_confidence >= threshold:
        return ReportStatus.AUTO_MATCHED
    return ReportStatus.PENDING_REVIEW
