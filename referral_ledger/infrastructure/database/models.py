"""SQLAlchemy ORM models for agents, referrals, clinic reports and payments"""

from sqlalchemy import Column, String, BigInteger, Boolean, Float, DateTime, Integer, ForeignKey, Text, JSON
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


class Agent(Base):
    """Referring agent; earnings are credited here, balance is derived"""

    __tablename__ = "agent"

    id = Column(Integer, primary_key=True, autoincrement=True)
    telegram_id = Column(String(64), nullable=True, unique=True)
    full_name = Column(Text, nullable=False)
    email = Column(String(320), nullable=True)
    phone = Column(String(50), nullable=True)
    total_earnings_kopecks = Column(BigInteger, nullable=False, default=0)
    bonus_points_kopecks = Column(BigInteger, nullable=False, default=0)
    excluded_clinic_ids = Column(JSON, nullable=False, default=list)
    referred_by = Column(Integer, ForeignKey("agent.id", ondelete="SET NULL"), nullable=True)

    # Payout requisites
    is_self_employed = Column(Text, nullable=False, default="unknown")  # yes | no | unknown
    inn = Column(String(12), nullable=True)
    payout_method = Column(Text, nullable=False, default="card")  # card | sbp | bank_account
    card_number = Column(String(32), nullable=True)
    bank_account = Column(String(32), nullable=True)
    bank_name = Column(Text, nullable=True)
    bank_bik = Column(String(16), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    referrals = relationship("Referral", back_populates="agent", cascade="all, delete-orphan")
    payments = relationship("Payment", back_populates="agent", cascade="all, delete-orphan")


class Clinic(Base):
    """Partner clinic; report_emails maps sender addresses to the clinic"""

    __tablename__ = "clinic"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    report_emails = Column(JSON, nullable=False, default=list)
    commission_rate = Column(Float, nullable=True)  # percent
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Referral(Base):
    """Patient referred by an agent to a clinic"""

    __tablename__ = "referral"

    id = Column(Integer, primary_key=True, autoincrement=True)
    agent_id = Column(Integer, ForeignKey("agent.id", ondelete="CASCADE"), nullable=False, index=True)
    patient_full_name = Column(Text, nullable=False)
    patient_birthdate = Column(String(10), nullable=True)  # YYYY-MM-DD
    patient_phone = Column(String(50), nullable=True)
    target_clinic_id = Column(Integer, ForeignKey("clinic.id", ondelete="SET NULL"), nullable=True, index=True)
    clinic = Column(Text, nullable=True)  # legacy free-text clinic name
    status = Column(Text, nullable=False, default="new")
    treatment_amount_kopecks = Column(BigInteger, nullable=False, default=0)
    commission_amount_kopecks = Column(BigInteger, nullable=False, default=0)
    treatment_month = Column(String(7), nullable=True, index=True)  # YYYY-MM
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())

    agent = relationship("Agent", back_populates="referrals")


class ClinicReport(Base):
    """One extracted patient-visit claim from one source message"""

    __tablename__ = "clinic_report"

    id = Column(Integer, primary_key=True, autoincrement=True)
    referral_id = Column(Integer, ForeignKey("referral.id", ondelete="SET NULL"), nullable=True, index=True)
    clinic_id = Column(Integer, ForeignKey("clinic.id", ondelete="SET NULL"), nullable=True)
    source = Column(Text, nullable=False, default="email")  # email | upload
    # Idempotency key: Message-ID, Message-ID::patient-N, or upload-derived id
    email_message_id = Column(String(512), nullable=False, unique=True)
    email_from = Column(Text, nullable=True)
    email_subject = Column(Text, nullable=True)
    email_received_at = Column(DateTime(timezone=True), nullable=True)
    email_body_raw = Column(Text, nullable=True)
    patient_name = Column(Text, nullable=True)
    patient_birthdate = Column(String(10), nullable=True)
    visit_date = Column(Text, nullable=True)
    treatment_amount_kopecks = Column(BigInteger, nullable=False, default=0)
    services = Column(JSON, nullable=False, default=list)
    clinic_name = Column(Text, nullable=True)
    status = Column(Text, nullable=False, default="pending_review")
    ai_confidence = Column(Integer, nullable=False, default=0)
    match_confidence = Column(Integer, nullable=False, default=0)
    reviewed_by = Column(Integer, nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    review_notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    referral = relationship("Referral")


class Payment(Base):
    """Payout request and its lifecycle"""

    __tablename__ = "payment"

    id = Column(Integer, primary_key=True, autoincrement=True)
    agent_id = Column(Integer, ForeignKey("agent.id", ondelete="CASCADE"), nullable=False, index=True)
    amount_kopecks = Column(BigInteger, nullable=False)
    gross_amount_kopecks = Column(BigInteger, nullable=False)
    net_amount_kopecks = Column(BigInteger, nullable=False)
    tax_amount_kopecks = Column(BigInteger, nullable=False, default=0)
    social_contributions_kopecks = Column(BigInteger, nullable=False, default=0)
    status = Column(Text, nullable=False, default="pending")
    is_self_employed_snapshot = Column(Boolean, nullable=False)
    transaction_id = Column(Text, nullable=True)
    requested_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)

    agent = relationship("Agent", back_populates="payments")
    acts = relationship("PaymentAct", back_populates="payment", cascade="all, delete-orphan")


class PaymentAct(Base):
    """Act document record; one active act per payment"""

    __tablename__ = "payment_act"

    id = Column(Integer, primary_key=True, autoincrement=True)
    payment_id = Column(Integer, ForeignKey("payment.id", ondelete="CASCADE"), nullable=False, index=True)
    act_number = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="generated")  # generated | signed | cancelled
    is_active = Column(Boolean, nullable=False, default=True)
    signed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    payment = relationship("Payment", back_populates="acts")
