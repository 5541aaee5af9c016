"""Pytest fixtures for testing"""

import os

# Point the application at the test database before it creates its engine
TEST_DATABASE_URL = "sqlite:///./test.db"
os.environ.setdefault("DATABASE_URL", TEST_DATABASE_URL)

import pytest
from datetime import datetime
from typing import Any, Dict, Generator, List, Optional
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker, Session
from referral_ledger.api.main import create_app
from referral_ledger.infrastructure.database.models import Agent, Base, Clinic, Referral
from referral_ledger.infrastructure.database.session import create_db_engine, get_db


engine = create_db_engine(TEST_DATABASE_URL)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory():
    """Independent sessions for concurrency tests (one per thread)"""
    return TestingSessionLocal


@pytest.fixture
def client(db: Session) -> TestClient:
    """Create FastAPI test client with test database"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    return TestClient(app)


@pytest.fixture
def make_agent(db: Session):
    """Factory for agents with complete card payout requisites"""

    def _make(total_earnings_kopecks: int = 0, bonus_points_kopecks: int = 0, **fields) -> Agent:
        values = {
            "full_name": "Иванов Пётр Сергеевич",
            "inn": "771234567890",
            "payout_method": "card",
            "card_number": "2200123456789012",
            "is_self_employed": "no",
        }
        values.update(fields)
        agent = Agent(
            total_earnings_kopecks=total_earnings_kopecks,
            bonus_points_kopecks=bonus_points_kopecks,
            **values,
        )
        db.add(agent)
        db.flush()
        return agent

    return _make


@pytest.fixture
def make_clinic(db: Session):
    def _make(name: str = "МЕДСИ", report_emails: Optional[List[str]] = None, commission_rate=None) -> Clinic:
        clinic = Clinic(
            name=name,
            report_emails=report_emails if report_emails is not None else ["reports@medsi.ru"],
            commission_rate=commission_rate,
        )
        db.add(clinic)
        db.flush()
        return clinic

    return _make


@pytest.fixture
def make_referral(db: Session):
    def _make(agent: Agent, clinic: Optional[Clinic] = None, **fields) -> Referral:
        values: Dict[str, Any] = {
            "patient_full_name": "Смирнова Анна Викторовна",
            "status": "new",
            "created_at": datetime(2025, 1, 10, 12, 0),
        }
        if clinic is not None:
            values["target_clinic_id"] = clinic.id
            values["clinic"] = clinic.name
        values.update(fields)
        referral = Referral(agent_id=agent.id, **values)
        db.add(referral)
        db.flush()
        return referral

    return _make


class FakeExtractor:
    """Extractor stand-in returning canned records or raising"""

    def __init__(self, records: Any = None, error: Optional[Exception] = None):
        self.records = records if records is not None else []
        self.error = error
        self.calls = 0

    async def extract(self, body, sender, subject, attachments=None):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.records


@pytest.fixture
def fake_extractor():
    return FakeExtractor
