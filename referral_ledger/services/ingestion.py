"""
Clinic report ingestion pipeline.

Flow per source message:
1. Skip if the message was already ingested (idempotency key lookup)
2. Identify the clinic by sender address
3. Extract patient records (extractor failure -> zero candidates)
4. Normalize; zero candidates still persist a pending_review shell report
5. For each patient: dedup, resolve clinic, match referral, classify, persist

Messages are processed strictly one after another. A failing item is rolled
back and counted; the batch moves on.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Protocol

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from referral_ledger.config import settings
from referral_ledger.domain.classifier import classify
from referral_ledger.domain.dedup import idempotency_key, message_keys, upload_message_id
from referral_ledger.domain.exceptions import ExtractorError, NotFoundError
from referral_ledger.domain.matching import match_candidate, resolve_clinic
from referral_ledger.domain.models import (
    Attachment,
    ClinicRef,
    IngestionSummary,
    SourceMessage,
    VisitCandidate,
)
from referral_ledger.domain.normalizer import normalize_extraction, rub_to_kopecks
from referral_ledger.domain.status import ReportStatus
from referral_ledger.infrastructure.database.models import ClinicReport
from referral_ledger.infrastructure.database.repositories import (
    ClinicReportRepository,
    ClinicRepository,
    ReferralRepository,
)
from referral_ledger.infrastructure.observability.metrics import (
    extractor_failure_counter,
    ingestion_item_counter,
    record_report,
)


class Extractor(Protocol):
    async def extract(
        self,
        body: str,
        sender: str,
        subject: str,
        attachments: Optional[List[Attachment]] = None,
    ) -> List[Dict[str, Any]]: ...


class IngestionService:
    """Turns clinic emails and uploads into deduplicated, matched clinic reports"""

    def __init__(
        self,
        db: Session,
        extractor: Optional[Extractor] = None,
        auto_match_threshold: Optional[int] = None,
        clinic_identity_bonus: Optional[int] = None,
        ignore_unknown_senders: Optional[bool] = None,
    ):
        self.db = db
        self.extractor = extractor
        self.reports = ClinicReportRepository(db)
        self.clinics = ClinicRepository(db)
        self.referrals = ReferralRepository(db)
        self.auto_match_threshold = (
            settings.auto_match_threshold if auto_match_threshold is None else auto_match_threshold
        )
        self.clinic_identity_bonus = (
            settings.clinic_identity_bonus if clinic_identity_bonus is None else clinic_identity_bonus
        )
        self.ignore_unknown_senders = (
            settings.ignore_unknown_senders if ignore_unknown_senders is None else ignore_unknown_senders
        )

    async def ingest_batch(self, messages: Iterable[SourceMessage]) -> IngestionSummary:
        """Ingest messages one at a time and return the combined counters"""
        summary = IngestionSummary()
        for message in messages:
            summary.merge(await self.ingest_message(message))

        logging.info(
            f"Ingestion batch done: processed={summary.processed}, created={summary.created}, "
            f"skipped={summary.skipped}, errors={summary.errors}"
        )
        return summary

    async def ingest_message(self, message: SourceMessage) -> IngestionSummary:
        """Ingest one clinic email"""
        summary = IngestionSummary(processed=1)
        try:
            known = (self.reports.get_by_message_id(key) for key in message_keys(message.message_id))
            if any(report is not None for report in known):
                logging.info("Skipping already ingested message", extra={"message_id": message.message_id})
                summary.skipped += 1
                ingestion_item_counter.labels(outcome="skipped").inc()
                return summary

            sender_clinic = self.clinics.resolve_by_sender_email(message.sender)
            if sender_clinic.clinic_id is None and self.ignore_unknown_senders:
                logging.info(
                    "Ignoring message from unknown sender",
                    extra={"message_id": message.message_id, "sender": message.sender},
                )
                summary.skipped += 1
                ingestion_item_counter.labels(outcome="skipped").inc()
                return summary

            raw_records = await self._extract(message)
            summary.merge(self._process(message, sender_clinic, raw_records))
        except Exception:
            self.db.rollback()
            logging.exception("Failed to ingest message", extra={"message_id": message.message_id})
            summary.errors += 1
            ingestion_item_counter.labels(outcome="error").inc()
        return summary

    def ingest_upload(self, clinic_id: int, upload_id: str, rows: List[Dict[str, Any]]) -> IngestionSummary:
        """
        Ingest rows of a clinic's spreadsheet upload.

        Rows use the extractor's field names (patientName, birthdate,
        visitDate, treatmentAmount, services). The uploading clinic is the
        certain clinic identity.
        """
        clinic = self.clinics.get(clinic_id)
        if clinic is None:
            raise NotFoundError("clinic", clinic_id)

        message = SourceMessage(
            message_id=upload_message_id(clinic_id, upload_id),
            sender=f"upload:{clinic.name}",
            subject=f"Spreadsheet upload {upload_id}",
            body="",
            source="upload",
        )
        # Structured rows carry no model uncertainty
        records = [{"confidence": 100, **row} for row in rows if isinstance(row, dict)]
        summary = IngestionSummary(processed=1)
        try:
            summary.merge(self._process(message, ClinicRef(clinic.id, clinic.name), records))
        except Exception:
            self.db.rollback()
            logging.exception("Failed to ingest upload", extra={"message_id": message.message_id})
            summary.errors += 1
            ingestion_item_counter.labels(outcome="error").inc()
        return summary

    async def _extract(self, message: SourceMessage) -> List[Dict[str, Any]]:
        if self.extractor is None:
            return []
        try:
            return await self.extractor.extract(
                message.body, message.sender, message.subject, message.attachments
            )
        except ExtractorError as e:
            extractor_failure_counter.inc()
            logging.warning(
                f"Extraction failed, recording empty report: {e}",
                extra={"message_id": message.message_id},
            )
            return []

    def _process(self, message: SourceMessage, sender_clinic: ClinicRef, raw_records: Any) -> IngestionSummary:
        summary = IngestionSummary()
        candidates = normalize_extraction(raw_records)

        if not candidates:
            # Nothing extracted: keep the message for a human to look at
            shell = self._new_report(message, message.message_id)
            shell.clinic_id = sender_clinic.clinic_id
            shell.clinic_name = sender_clinic.clinic_name
            self._persist(shell, summary)
            return summary

        for index, candidate in enumerate(candidates):
            key = idempotency_key(message.message_id, index, len(candidates))
            try:
                if self.reports.get_by_message_id(key) is not None:
                    summary.skipped += 1
                    ingestion_item_counter.labels(outcome="skipped").inc()
                    continue
                report = self._build_report(message, key, candidate, sender_clinic)
                self._persist(report, summary)
            except Exception:
                self.db.rollback()
                logging.exception("Failed to ingest patient record", extra={"message_id": key})
                summary.errors += 1
                ingestion_item_counter.labels(outcome="error").inc()
        return summary

    def _build_report(
        self,
        message: SourceMessage,
        key: str,
        candidate: VisitCandidate,
        sender_clinic: ClinicRef,
    ) -> ClinicReport:
        clinic = resolve_clinic(sender_clinic, candidate.clinic_name_hint, self.clinics)
        pool = [
            ReferralRepository.to_candidate(r)
            for r in self.referrals.open_for_clinic(clinic.clinic_id, clinic.clinic_name)
        ]
        match = match_candidate(candidate, clinic, pool, self.clinic_identity_bonus)
        status = classify(match.match_confidence, self.auto_match_threshold)

        report = self._new_report(message, key)
        report.referral_id = match.referral_id
        report.clinic_id = match.clinic_id
        report.clinic_name = candidate.clinic_name_hint or clinic.clinic_name
        report.patient_name = candidate.patient_name
        report.patient_birthdate = candidate.patient_birthdate
        report.visit_date = candidate.visit_date
        report.treatment_amount_kopecks = rub_to_kopecks(candidate.treatment_amount_rub)
        report.services = candidate.services
        report.status = status.value
        report.ai_confidence = candidate.confidence
        report.match_confidence = match.match_confidence

        logging.info(
            f"Matched report: clinic={report.clinic_name} confidence={candidate.confidence}% "
            f"match={match.match_confidence}% status={status.value}",
            extra={"message_id": key, "referral_id": match.referral_id},
        )
        return report

    @staticmethod
    def _new_report(message: SourceMessage, key: str) -> ClinicReport:
        return ClinicReport(
            source=message.source,
            email_message_id=key,
            email_from=message.sender,
            email_subject=message.subject,
            email_received_at=message.received_at,
            email_body_raw=(message.body or "")[: settings.raw_body_max_chars],
            services=[],
            treatment_amount_kopecks=0,
            status=ReportStatus.PENDING_REVIEW.value,
            ai_confidence=0,
            match_confidence=0,
        )

    def _persist(self, report: ClinicReport, summary: IngestionSummary) -> None:
        """Insert and commit one report; a concurrent duplicate counts as skipped"""
        try:
            self.reports.create(report)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logging.info("Report already ingested by a concurrent run", extra={"message_id": report.email_message_id})
            summary.skipped += 1
            ingestion_item_counter.labels(outcome="skipped").inc()
            return

        summary.created += 1
        ingestion_item_counter.labels(outcome="created").inc()
        record_report(report.status, report.match_confidence)
