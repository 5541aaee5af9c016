"""Referral matcher - links extracted visits to open referrals"""

import re
from datetime import timedelta
from typing import Iterable, Optional, Protocol

from referral_ledger.domain.models import (
    ClinicRef,
    MatchResult,
    ReferralCandidate,
    ResolvedClinic,
    VisitCandidate,
)
from referral_ledger.utils.date_utils import normalize_date, parse_date

EXACT_MATCH_CONFIDENCE = 100
VISIT_PROXIMITY_CONFIDENCE = 90
NAME_ONLY_CONFIDENCE = 70
DATE_CONFLICT_CONFIDENCE = 50

VISIT_WINDOW_DAYS = 90

_WHITESPACE = re.compile(r"\s+")


class ClinicDirectory(Protocol):
    def resolve_by_sender_email(self, address: str) -> ClinicRef: ...

    def resolve_by_name(self, name: str) -> ClinicRef: ...


def normalize_name(name: Optional[str]) -> str:
    """Lower-case, ё -> е, whitespace collapsed"""
    if not name:
        return ""
    return _WHITESPACE.sub(" ", name.lower().replace("ё", "е")).strip()


def resolve_clinic(
    sender_clinic: ClinicRef,
    ai_clinic_name: Optional[str],
    directory: ClinicDirectory,
) -> ResolvedClinic:
    """
    Decide which clinic a report belongs to.

    The sender-email mapping is authoritative. An AI-extracted clinic name
    only overrides it when it names a different clinic that the directory
    knows; otherwise the sender clinic wins. Without a sender mapping the
    AI name is all we have and the identity is not certain.
    """
    if sender_clinic.clinic_id is not None:
        if ai_clinic_name and normalize_name(ai_clinic_name) != normalize_name(sender_clinic.clinic_name):
            resolved = directory.resolve_by_name(ai_clinic_name)
            if resolved.clinic_id is not None:
                return ResolvedClinic(resolved.clinic_id, resolved.clinic_name, certain=True)
        return ResolvedClinic(sender_clinic.clinic_id, sender_clinic.clinic_name, certain=True)

    if ai_clinic_name:
        resolved = directory.resolve_by_name(ai_clinic_name)
        if resolved.clinic_id is not None:
            return ResolvedClinic(resolved.clinic_id, resolved.clinic_name, certain=False)
        return ResolvedClinic(None, ai_clinic_name, certain=False)

    return ResolvedClinic(None, sender_clinic.clinic_name, certain=False)


def score_referral(candidate: VisitCandidate, referral: ReferralCandidate) -> int:
    """
    Confidence (0-100) that the candidate visit belongs to the referral.

    An exact normalized name match is required for any positive score.
    Dates then grade the match:
    - birthdate known on both sides: equal -> exact, different -> no match
    - otherwise the visit must fall within VISIT_WINDOW_DAYS after the
      referral was created
    - no usable date at all -> name-only confidence
    """
    candidate_name = normalize_name(candidate.patient_name)
    if not candidate_name or candidate_name != normalize_name(referral.patient_full_name):
        return 0

    candidate_birthdate = normalize_date(candidate.patient_birthdate)
    referral_birthdate = normalize_date(referral.patient_birthdate)
    if candidate_birthdate and referral_birthdate:
        return EXACT_MATCH_CONFIDENCE if candidate_birthdate == referral_birthdate else 0

    visit = parse_date(candidate.visit_date)
    if visit is None or referral.created_at is None:
        return NAME_ONLY_CONFIDENCE

    created = referral.created_at.date()
    if created <= visit <= created + timedelta(days=VISIT_WINDOW_DAYS):
        return VISIT_PROXIMITY_CONFIDENCE
    return DATE_CONFLICT_CONFIDENCE


def find_best_match(
    candidate: VisitCandidate,
    referrals: Iterable[ReferralCandidate],
) -> tuple[Optional[int], int]:
    """
    Best scoring referral and its score.

    Referrals are expected newest first; on equal scores the first seen wins.
    """
    best_id: Optional[int] = None
    best_score = 0
    for referral in referrals:
        score = score_referral(candidate, referral)
        if score > best_score:
            best_score = score
            best_id = referral.referral_id
    return best_id, best_score


def apply_identity_bonus(confidence: int, referral_id: Optional[int], clinic_certain: bool, bonus: int) -> int:
    """Raise confidence when the sender vouched for the clinic and a referral matched"""
    if clinic_certain and referral_id is not None:
        return min(100, confidence + bonus)
    return confidence


def match_candidate(
    candidate: VisitCandidate,
    clinic: ResolvedClinic,
    referrals: Iterable[ReferralCandidate],
    identity_bonus: int,
) -> MatchResult:
    """Score the open referrals of the resolved clinic and return the best match"""
    referral_id, confidence = find_best_match(candidate, referrals)
    confidence = apply_identity_bonus(confidence, referral_id, clinic.certain, identity_bonus)
    return MatchResult(
        referral_id=referral_id,
        clinic_id=clinic.clinic_id,
        match_confidence=confidence,
    )
