"""Unit tests for referral matching"""

from datetime import datetime
from referral_ledger.domain.dedup import idempotency_key, message_keys, upload_message_id
from referral_ledger.domain.matching import (
    DATE_CONFLICT_CONFIDENCE,
    EXACT_MATCH_CONFIDENCE,
    NAME_ONLY_CONFIDENCE,
    VISIT_PROXIMITY_CONFIDENCE,
    find_best_match,
    match_candidate,
    normalize_name,
    resolve_clinic,
    score_referral,
)
from referral_ledger.domain.models import ClinicRef, ReferralCandidate, ResolvedClinic, VisitCandidate


class StubDirectory:
    def __init__(self, clinics):
        self.clinics = clinics  # name -> id

    def resolve_by_sender_email(self, address):
        return ClinicRef(None, None)

    def resolve_by_name(self, name):
        for clinic_name, clinic_id in self.clinics.items():
            if clinic_name.lower() == name.strip().lower():
                return ClinicRef(clinic_id, clinic_name)
        return ClinicRef(None, None)


def _candidate(name="Смирнова Анна Викторовна", visit_date="2025-01-15", birthdate=None):
    return VisitCandidate(
        patient_name=name,
        visit_date=visit_date,
        treatment_amount_rub=15000.0,
        services=[],
        clinic_name_hint=None,
        confidence=90,
        patient_birthdate=birthdate,
    )


def _referral(referral_id=1, name="Смирнова Анна Викторовна", birthdate=None, created=datetime(2025, 1, 10)):
    return ReferralCandidate(referral_id, name, birthdate, created)


def test_normalize_name():
    assert normalize_name("  СЕМЁНОВА   Ольга\tИвановна ") == "семенова ольга ивановна"
    assert normalize_name(None) == ""


def test_score_requires_exact_name():
    """Test partial names never match"""
    assert score_referral(_candidate(name="Смирнова Анна"), _referral()) == 0
    assert score_referral(_candidate(name=None), _referral()) == 0


def test_score_birthdates():
    assert score_referral(_candidate(birthdate="03.05.1990"), _referral(birthdate="1990-05-03")) == EXACT_MATCH_CONFIDENCE
    assert score_referral(_candidate(birthdate="1990-05-04"), _referral(birthdate="1990-05-03")) == 0


def test_score_visit_window():
    """Test visit date relative to referral creation"""
    assert score_referral(_candidate(visit_date="2025-01-15"), _referral()) == VISIT_PROXIMITY_CONFIDENCE
    assert score_referral(_candidate(visit_date="2025-06-01"), _referral()) == DATE_CONFLICT_CONFIDENCE
    assert score_referral(_candidate(visit_date="2024-12-31"), _referral()) == DATE_CONFLICT_CONFIDENCE
    assert score_referral(_candidate(visit_date=None), _referral()) == NAME_ONLY_CONFIDENCE
    assert score_referral(_candidate(visit_date="на прошлой неделе"), _referral()) == NAME_ONLY_CONFIDENCE


def test_find_best_match_prefers_newest_on_tie():
    referrals = [_referral(referral_id=7), _referral(referral_id=3)]
    assert find_best_match(_candidate(), referrals) == (7, VISIT_PROXIMITY_CONFIDENCE)


def test_find_best_match_no_candidates():
    assert find_best_match(_candidate(), []) == (None, 0)


def test_resolve_clinic_sender_wins():
    directory = StubDirectory({"МЕДСИ": 1, "СМ-Клиника": 2})
    resolved = resolve_clinic(ClinicRef(1, "МЕДСИ"), "медси", directory)
    assert resolved == ResolvedClinic(1, "МЕДСИ", certain=True)


def test_resolve_clinic_ai_name_overrides_when_known():
    directory = StubDirectory({"МЕДСИ": 1, "СМ-Клиника": 2})
    assert resolve_clinic(ClinicRef(1, "МЕДСИ"), "СМ-Клиника", directory).clinic_id == 2
    assert resolve_clinic(ClinicRef(1, "МЕДСИ"), "Неизвестная", directory).clinic_id == 1


def test_resolve_clinic_without_sender_is_uncertain():
    directory = StubDirectory({"МЕДСИ": 1})
    assert resolve_clinic(ClinicRef(None, None), "МЕДСИ", directory) == ResolvedClinic(1, "МЕДСИ", certain=False)
    assert resolve_clinic(ClinicRef(None, None), None, directory).clinic_id is None


def test_match_candidate_identity_bonus():
    """Test 90 + 5 lands exactly on the auto-match threshold"""
    result = match_candidate(_candidate(), ResolvedClinic(1, "МЕДСИ", True), [_referral()], identity_bonus=5)
    assert result.referral_id == 1
    assert result.clinic_id == 1
    assert result.match_confidence == 95


def test_match_candidate_bonus_capped_and_requires_certainty():
    exact = _candidate(birthdate="1990-05-03")
    referral = _referral(birthdate="1990-05-03")
    assert match_candidate(exact, ResolvedClinic(1, "МЕДСИ", True), [referral], 5).match_confidence == 100
    assert match_candidate(_candidate(), ResolvedClinic(1, "МЕДСИ", False), [_referral()], 5).match_confidence == 90
    assert match_candidate(_candidate(name="Кто-то"), ResolvedClinic(1, "МЕДСИ", True), [_referral()], 5).match_confidence == 0


def test_idempotency_keys():
    assert idempotency_key("<abc@mail>", 0, 1) == "<abc@mail>"
    assert idempotency_key("<abc@mail>", 2, 3) == "<abc@mail>::patient-2"
    assert upload_message_id(4, "jan.xlsx") == "upload:4:jan.xlsx"
    assert message_keys("<abc@mail>") == ("<abc@mail>", "<abc@mail>::patient-0")
