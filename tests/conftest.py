"""Pytest fixtures for testing"""

import pytest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Generator
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from crm_ledger.api.main import create_app
from crm_ledger.domain.models import BillingCharges, CustomerType
from crm_ledger.infrastructure.database.models import AdvancePayment, Base, Billing, Company, Individual
from crm_ledger.infrastructure.database.repositories import BillingRepository, CustomerRepository, PaymentRepository
from crm_ledger.infrastructure.database.session import get_db
from crm_ledger.infrastructure.messaging.events import event_bus
from crm_ledger.infrastructure.messaging.notifications import CollectingNotificationSink


# Test database
TEST_DATABASE_URL = "sqlite://"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False}, poolclass=StaticPool)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)

BASE_TIME = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


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


@pytest.fixture(autouse=True)
def clean_event_bus():
    """Subscribers must not leak between tests"""
    event_bus.clear()
    yield
    event_bus.clear()


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
def sink() -> CollectingNotificationSink:
    return CollectingNotificationSink("test-request")


@pytest.fixture
def company(db: Session) -> Company:
    """Company with a 10,000 credit limit over 30 days"""
    customer = CustomerRepository(db).create_customer(
        CustomerType.COMPANY,
        name="Emirates Tech Solutions",
        trade_license_number="TL-1001",
        credit_limit=Decimal("10000.00"),
        credit_limit_days=30,
    )
    db.commit()
    return customer


@pytest.fixture
def individual(db: Session) -> Individual:
    customer = CustomerRepository(db).create_customer(
        CustomerType.INDIVIDUAL,
        name="Aisha Rahman",
        nationality="AE",
        credit_limit=Decimal("2000.00"),
        credit_limit_days=15,
    )
    db.commit()
    return customer


@pytest.fixture
def make_billing(db: Session) -> Callable[..., Billing]:
    """
    Factory for billings with a fixed total (government fees, no VAT).

    `age_days` controls creation order: larger means older.
    """
    counter = {"n": 0}

    def _make(customer, amount: str, age_days: int = 0, service_date: date = date(2026, 1, 5)) -> Billing:
        counter["n"] += 1
        total = Decimal(amount)
        customer_type = CustomerType.COMPANY if isinstance(customer, Company) else CustomerType.INDIVIDUAL
        billing = BillingRepository(db).create_billing(
            customer_id=customer.id,
            customer_type=customer_type,
            invoice_number=f"INV-2026-{counter['n']:03d}",
            service_date=service_date,
            charges=BillingCharges(
                typing_charges=Decimal("0.00"),
                government_charges=total,
                vat_amount=Decimal("0.00"),
                total_amount_due=total,
            ),
            created_at=BASE_TIME - timedelta(days=age_days),
        )
        db.commit()
        return billing

    return _make


@pytest.fixture
def make_payment(db: Session) -> Callable[..., AdvancePayment]:
    """Factory for stored advance payments (no auto-apply)"""
    counter = {"n": 0}

    def _make(customer, amount: str, status: str = "completed") -> AdvancePayment:
        counter["n"] += 1
        customer_type = CustomerType.COMPANY if isinstance(customer, Company) else CustomerType.INDIVIDUAL
        payment = PaymentRepository(db).create_payment(
            customer_id=customer.id,
            customer_type=customer_type,
            amount=Decimal(amount),
            payment_date=date(2026, 1, 10),
            payment_method="bank_transfer",
            receipt_number=f"RCP-2026-{counter['n']:03d}",
            created_by="staff-1",
            status=status,
        )
        db.commit()
        return payment

    return _make


@pytest.fixture
def session_factory(db) -> sessionmaker:
    """Factory for work that opens its own session, e.g. background delivery"""
    return TestingSessionLocal
