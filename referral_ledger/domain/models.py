"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass
class Attachment:
    """File attached to a clinic email, passed through to the extractor"""

    filename: str
    content_type: str
    content: bytes


@dataclass
class SourceMessage:
    """One inbound clinic report (email or upload) before extraction"""

    message_id: str
    sender: str
    subject: str
    body: str
    received_at: Optional[datetime] = None
    attachments: List[Attachment] = field(default_factory=list)
    source: str = "email"  # "email" or "upload"


@dataclass
class VisitCandidate:
    """Normalized extraction result, not yet matched to a referral"""

    patient_name: Optional[str]
    visit_date: Optional[str]
    treatment_amount_rub: Optional[float]
    services: List[str]
    clinic_name_hint: Optional[str]
    confidence: int
    patient_birthdate: Optional[str] = None


@dataclass
class ClinicRef:
    """Clinic identity as resolved by the clinic directory"""

    clinic_id: Optional[int]
    clinic_name: Optional[str]


@dataclass
class ResolvedClinic:
    """Clinic chosen for matching, with whether the sender vouched for it"""

    clinic_id: Optional[int]
    clinic_name: Optional[str]
    certain: bool


@dataclass
class ReferralCandidate:
    """Open referral as seen by the matcher"""

    referral_id: int
    patient_full_name: str
    patient_birthdate: Optional[str]
    created_at: Optional[datetime]


@dataclass
class MatchResult:
    """Best referral for a visit candidate"""

    referral_id: Optional[int]
    clinic_id: Optional[int]
    match_confidence: int


@dataclass
class CommissionTier:
    """Commission rate applied once monthly revenue reaches the threshold"""

    min_monthly_revenue_kopecks: int
    commission_rate: float


@dataclass
class MonthlyTier:
    """Revenue and effective rate for one agent and treatment month"""

    treatment_month: str
    revenue_kopecks: int
    commission_rate: Optional[float]


@dataclass
class BalanceSnapshot:
    """Agent balance as computed at one point in time"""

    agent_id: int
    total_earnings_kopecks: int
    completed_payments_kopecks: int
    pending_payments_kopecks: int
    available_kopecks: int
    bonus_points_kopecks: int = 0


@dataclass
class TaxBreakdown:
    """Withholdings for a payout request"""

    gross_amount_kopecks: int
    net_amount_kopecks: int
    tax_amount_kopecks: int
    social_contributions_kopecks: int
    npd_estimate_kopecks: int
    is_self_employed: bool


@dataclass
class IngestionSummary:
    """Counters reported at the end of an ingestion run"""

    processed: int = 0
    created: int = 0
    skipped: int = 0
    errors: int = 0

    def merge(self, other: "IngestionSummary") -> None:
        self.processed += other.processed
        self.created += other.created
        self.skipped += other.skipped
        self.errors += other.errors


@dataclass
class LedgerEvent:
    """Notification emitted after a committed ledger change"""

    event: str
    agent_id: Optional[int]
    payload: Dict[str, Any] = field(default_factory=dict)
