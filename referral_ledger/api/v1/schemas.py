"""Pydantic schemas for API request/response validation"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from referral_ledger.domain.status import PaymentStatus, ReferralStatus, ReportStatus


class AttachmentSchema(BaseModel):
    filename: str
    content_type: str = "application/octet-stream"
    content_b64: str = Field(..., description="Base64-encoded file content")


class MessageSchema(BaseModel):
    """One clinic email as delivered by the mail collector"""

    message_id: str = Field(..., min_length=1, description="RFC 5322 Message-ID")
    sender: str = Field(..., description="From header")
    subject: str = ""
    body: str = ""
    received_at: Optional[datetime] = None
    attachments: List[AttachmentSchema] = []


class IngestMessagesRequest(BaseModel):
    """Request body for POST /v1/ingest/messages"""

    messages: List[MessageSchema]


class IngestUploadRequest(BaseModel):
    """Request body for POST /v1/ingest/uploads"""

    clinic_id: int
    upload_id: str = Field(..., min_length=1, description="Stable id of the uploaded file")
    rows: List[Dict[str, Any]]


class IngestionSummaryResponse(BaseModel):
    processed: int
    created: int
    skipped: int
    errors: int


class ClinicReportResponse(BaseModel):
    id: int
    referral_id: Optional[int] = None
    clinic_id: Optional[int] = None
    source: str
    email_message_id: str
    email_from: Optional[str] = None
    patient_name: Optional[str] = None
    patient_birthdate: Optional[str] = None
    visit_date: Optional[str] = None
    treatment_amount_kopecks: int
    services: List[str] = []
    clinic_name: Optional[str] = None
    status: ReportStatus
    ai_confidence: int
    match_confidence: int
    reviewed_by: Optional[int] = None
    review_notes: Optional[str] = None

    model_config = {"from_attributes": True}


class ReportListResponse(BaseModel):
    reports: List[ClinicReportResponse]


class ApproveReportRequest(BaseModel):
    """Request body for POST /v1/reports/{report_id}/approve"""

    reviewer_id: int
    referral_id: Optional[int] = Field(None, description="Overrides the matched referral")
    treatment_amount_kopecks: Optional[int] = Field(None, ge=0)
    notes: Optional[str] = None


class RejectReportRequest(BaseModel):
    reviewer_id: int
    notes: Optional[str] = None


class ReferralStatusRequest(BaseModel):
    """Request body for PATCH /v1/referrals/{referral_id}/status"""

    status: ReferralStatus


class CommissionRequest(BaseModel):
    """Request body for PUT /v1/referrals/{referral_id}/commission"""

    commission_amount_kopecks: int = Field(..., ge=0)
    treatment_amount_kopecks: Optional[int] = Field(None, ge=0)


class ReferralResponse(BaseModel):
    id: int
    agent_id: int
    patient_full_name: str
    status: ReferralStatus
    treatment_amount_kopecks: int
    commission_amount_kopecks: int
    treatment_month: Optional[str] = None

    model_config = {"from_attributes": True}


class CommissionResponse(BaseModel):
    referral_id: int
    delta_kopecks: int


class BalanceResponse(BaseModel):
    """Response for GET /v1/agents/{agent_id}/balance"""

    agent_id: int
    total_earnings_kopecks: int
    completed_payments_kopecks: int
    pending_payments_kopecks: int
    available_kopecks: int
    bonus_points_kopecks: int


class BonusPointsRequest(BaseModel):
    amount_kopecks: int = Field(..., gt=0)


class BonusUnlockResponse(BaseModel):
    agent_id: int
    unlocked: bool
    balance: BalanceResponse


class RequisitesRequest(BaseModel):
    """Request body for PUT /v1/agents/{agent_id}/requisites"""

    inn: Optional[str] = Field(None, pattern=r"^\d{10}(\d{2})?$")
    payout_method: Optional[str] = Field(None, pattern=r"^(card|sbp|bank_account)$")
    card_number: Optional[str] = None
    bank_account: Optional[str] = None
    bank_name: Optional[str] = None
    bank_bik: Optional[str] = None
    is_self_employed: Optional[str] = Field(None, pattern=r"^(yes|no|unknown)$")


class PaymentRequest(BaseModel):
    """Request body for POST /v1/payments"""

    agent_id: int
    amount_kopecks: int = Field(..., gt=0, description="Gross payout amount in kopecks")
    is_self_employed: Optional[bool] = None


class PaymentResponse(BaseModel):
    id: int
    agent_id: int
    amount_kopecks: int
    gross_amount_kopecks: int
    net_amount_kopecks: int
    tax_amount_kopecks: int
    social_contributions_kopecks: int
    status: PaymentStatus
    is_self_employed_snapshot: bool
    transaction_id: Optional[str] = None

    model_config = {"from_attributes": True}


class PaymentCreatedResponse(BaseModel):
    payment: PaymentResponse
    balance: BalanceResponse


class PaymentListResponse(BaseModel):
    agent_id: int
    payments: List[PaymentResponse]


class PaymentStatusRequest(BaseModel):
    """Request body for PATCH /v1/payments/{payment_id}/status"""

    status: PaymentStatus
    transaction_id: Optional[str] = None


class ActRequest(BaseModel):
    act_number: str = Field(..., min_length=1)


class ActResponse(BaseModel):
    id: int
    payment_id: int
    act_number: str
    status: str
    is_active: bool

    model_config = {"from_attributes": True}
