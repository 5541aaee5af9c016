"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class ExtractorError(DomainException):
    """Extraction service returned an error or is unavailable"""

    pass


class NotFoundError(DomainException):
    """Referenced entity does not exist"""

    def __init__(self, entity: str, entity_id: int):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class InvalidStatusTransitionError(DomainException):
    """Requested status change is not allowed by the state machine"""

    def __init__(self, entity: str, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"{entity} cannot move from {current} to {target}")


class ReportAlreadyReviewedError(DomainException):
    """Clinic report was already approved or rejected"""

    def __init__(self, report_id: int, status: str):
        super().__init__(f"clinic report {report_id} is already {status}")


class LedgerError(DomainException):
    """
    Ledger invariant violation.

    The message is user-facing: it states what was rejected and why.
    """

    pass


class InsufficientFundsError(LedgerError):
    def __init__(self, available_kopecks: int, requested_kopecks: int):
        self.available_kopecks = available_kopecks
        self.requested_kopecks = requested_kopecks
        super().__init__(
            f"insufficient funds: available {available_kopecks}, requested {requested_kopecks}"
        )


class BelowMinimumPayoutError(LedgerError):
    def __init__(self, minimum_kopecks: int, requested_kopecks: int):
        self.minimum_kopecks = minimum_kopecks
        self.requested_kopecks = requested_kopecks
        super().__init__(
            f"below minimum payout: minimum {minimum_kopecks}, requested {requested_kopecks}"
        )


class PaymentInFlightError(LedgerError):
    def __init__(self, payment_id: int):
        self.payment_id = payment_id
        super().__init__(
            f"payment request {payment_id} is still being processed, wait for it to finish"
        )


class MissingRequisitesError(LedgerError):
    def __init__(self, missing: str):
        self.missing = missing
        super().__init__(f"payout requisites incomplete: fill in {missing} before requesting a payout")


class NegativeAmountError(LedgerError):
    def __init__(self, field: str, value: int):
        super().__init__(f"{field} cannot be negative (got {value})")
