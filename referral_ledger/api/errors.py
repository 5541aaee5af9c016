"""Mapping of domain exceptions to HTTP errors"""

from fastapi import HTTPException

from referral_ledger.domain.exceptions import (
    BelowMinimumPayoutError,
    DomainException,
    InsufficientFundsError,
    InvalidStatusTransitionError,
    MissingRequisitesError,
    NegativeAmountError,
    NotFoundError,
    PaymentInFlightError,
    ReportAlreadyReviewedError,
)

UNAVAILABLE_DETAIL = "Service temporarily unavailable, please try again later"

_STATUS_CODES = (
    (NotFoundError, 404),
    (PaymentInFlightError, 409),
    (InvalidStatusTransitionError, 409),
    (ReportAlreadyReviewedError, 409),
    (InsufficientFundsError, 422),
    (BelowMinimumPayoutError, 422),
    (MissingRequisitesError, 422),
    (NegativeAmountError, 422),
)


def to_http_exception(exc: DomainException) -> HTTPException:
    """User-facing rejections keep their message; anything else is a 500"""
    for exc_type, status_code in _STATUS_CODES:
        if isinstance(exc, exc_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=500, detail=UNAVAILABLE_DETAIL)
