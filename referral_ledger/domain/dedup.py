"""Idempotency keys for clinic report ingestion"""


def idempotency_key(message_id: str, index: int, total: int) -> str:
    """
    Stable key for one patient extracted from one source message.

    A message that reports a single patient keeps its own id; when one
    email reports several visits each patient gets a suffixed key.
    """
    if total <= 1:
        return message_id
    return f"{message_id}::patient-{index}"


def upload_message_id(clinic_id: int, upload_id: str) -> str:
    """Source id for a spreadsheet upload, the counterpart of an email Message-ID"""
    return f"upload:{clinic_id}:{upload_id}"


def message_keys(message_id: str) -> tuple:
    """Keys under which the first report of a message may already be stored"""
    return message_id, idempotency_key(message_id, 0, 2)
