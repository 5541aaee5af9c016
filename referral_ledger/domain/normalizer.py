"""Candidate normalizer - turns raw extractor output into VisitCandidates"""

import math
import re
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, List, Optional

from referral_ledger.domain.models import VisitCandidate
from referral_ledger.utils.date_utils import normalize_date

DEFAULT_AI_CONFIDENCE = 50

# Anything above this cannot be a treatment bill and would overflow a BIGINT of kopecks
MAX_AMOUNT_RUB = 10 ** 12

_AMOUNT_NOISE = re.compile(r"[\s ₽]|руб\.?|rub", re.IGNORECASE)


def _clean_str(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def _clean_amount(value: Any) -> Optional[float]:
    """Non-negative finite amount in rubles, None otherwise"""
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        # "300 000,00 ₽" -> 300000.00
        text = _AMOUNT_NOISE.sub("", value).replace(",", ".")
        try:
            value = float(text)
        except ValueError:
            return None
    if not isinstance(value, (int, float)):
        return None
    try:
        value = float(value)
    except OverflowError:
        return None
    if math.isnan(value) or math.isinf(value) or value < 0 or value > MAX_AMOUNT_RUB:
        return None
    return value


def _clean_confidence(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return DEFAULT_AI_CONFIDENCE
    if isinstance(value, int):
        return min(100, max(0, value))
    if math.isnan(value):
        return DEFAULT_AI_CONFIDENCE
    if math.isinf(value):
        return 100 if value > 0 else 0
    return int(min(100, max(0, round(value))))


def _clean_services(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [s.strip() for s in value if isinstance(s, str) and s.strip()]


def normalize_candidate(raw: Any) -> Optional[VisitCandidate]:
    """
    Validate one raw patient record from the extractor.

    Fields of the wrong type are nulled instead of failing the record.
    Returns None only when the record is not a mapping at all.
    """
    if not isinstance(raw, dict):
        return None

    visit_date = _clean_str(raw.get("visitDate"))
    birthdate = _clean_str(raw.get("birthdate"))

    return VisitCandidate(
        patient_name=_clean_str(raw.get("patientName")),
        # Keep the free-form text when it is not a recognizable date
        visit_date=normalize_date(visit_date) or visit_date,
        treatment_amount_rub=_clean_amount(raw.get("treatmentAmount")),
        services=_clean_services(raw.get("services")),
        clinic_name_hint=_clean_str(raw.get("clinicName")),
        confidence=_clean_confidence(raw.get("confidence")),
        patient_birthdate=normalize_date(birthdate) if birthdate else None,
    )


def normalize_extraction(payload: Any) -> List[VisitCandidate]:
    """
    Normalize a whole extraction response.

    Accepts {"patients": [...]}, a bare list, or anything else (treated as
    no candidates).
    """
    if isinstance(payload, dict):
        payload = payload.get("patients")
    if not isinstance(payload, list):
        return []

    candidates = []
    for raw in payload:
        candidate = normalize_candidate(raw)
        if candidate is not None:
            candidates.append(candidate)
    return candidates


def rub_to_kopecks(amount_rub: Optional[float]) -> int:
    """Convert rubles to integer kopecks, rounding half up"""
    if amount_rub is None:
        return 0
    kopecks = Decimal(str(amount_rub)) * 100
    return int(kopecks.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
