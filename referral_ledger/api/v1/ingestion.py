"""POST /v1/ingest/* - clinic report ingestion endpoints"""

import base64
import binascii
import logging
import time
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from referral_ledger.api.dependencies import get_extractor_client, get_request_id
from referral_ledger.api.errors import to_http_exception
from referral_ledger.api.v1.schemas import IngestMessagesRequest, IngestUploadRequest, IngestionSummaryResponse
from referral_ledger.domain.exceptions import DomainException
from referral_ledger.domain.models import Attachment, SourceMessage
from referral_ledger.infrastructure.clients.extractor import ExtractorClient
from referral_ledger.infrastructure.database.session import get_db
from referral_ledger.infrastructure.observability.logging import log_ingestion_summary
from referral_ledger.services.ingestion import IngestionService

router = APIRouter()


def _to_source_message(item) -> SourceMessage:
    try:
        attachments = [
            Attachment(a.filename, a.content_type, base64.b64decode(a.content_b64, validate=True))
            for a in item.attachments
        ]
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=422, detail=f"Invalid attachment encoding in {item.message_id}")

    return SourceMessage(
        message_id=item.message_id,
        sender=item.sender,
        subject=item.subject,
        body=item.body,
        received_at=item.received_at,
        attachments=attachments,
    )


@router.post("/ingest/messages", response_model=IngestionSummaryResponse)
async def ingest_messages(
    request_body: IngestMessagesRequest,
    request: Request,
    db: Session = Depends(get_db),
    extractor: ExtractorClient = Depends(get_extractor_client),
):
    """
    Ingest a batch of clinic emails.

    Messages are processed in order. Already ingested messages are skipped
    and a failing message does not stop the batch; the counters report both.
    """
    start_time = time.time()
    request_id = get_request_id(request)
    messages = [_to_source_message(m) for m in request_body.messages]

    summary = await IngestionService(db, extractor=extractor).ingest_batch(messages)

    duration_ms = (time.time() - start_time) * 1000
    log_ingestion_summary(request_id, "email", summary, duration_ms)
    return IngestionSummaryResponse(**vars(summary))


@router.post("/ingest/uploads", response_model=IngestionSummaryResponse)
def ingest_upload(
    request_body: IngestUploadRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    """Ingest the parsed rows of a clinic's spreadsheet upload"""
    start_time = time.time()
    request_id = get_request_id(request)

    try:
        summary = IngestionService(db).ingest_upload(
            request_body.clinic_id, request_body.upload_id, request_body.rows
        )
    except DomainException as e:
        db.rollback()
        logging.warning(f"Upload rejected: {e}", extra={"request_id": request_id})
        raise to_http_exception(e)

    duration_ms = (time.time() - start_time) * 1000
    log_ingestion_summary(request_id, "upload", summary, duration_ms)
    return IngestionSummaryResponse(**vars(summary))
