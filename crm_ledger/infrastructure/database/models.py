"""SQLAlchemy ORM models for the customer ledger"""

import uuid
from sqlalchemy import Column, String, Integer, Numeric, DateTime, Date, ForeignKey, Text, JSON
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base, relationship

from crm_ledger.utils.date_utils import utcnow

Base = declarative_base()

MONEY = Numeric(12, 2)


class Company(Base):
    """Corporate customer"""

    __tablename__ = "company"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    trade_license_number = Column(Text, nullable=True)
    email = Column(Text, nullable=True)
    phone = Column(String(32), nullable=True)
    credit_limit = Column(MONEY, nullable=False, default=0)
    credit_limit_days = Column(Integer, nullable=False, default=30)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class Individual(Base):
    """Individual customer"""

    __tablename__ = "individual"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    nationality = Column(Text, nullable=True)
    email = Column(Text, nullable=True)
    phone = Column(String(32), nullable=True)
    credit_limit = Column(MONEY, nullable=False, default=0)
    credit_limit_days = Column(Integer, nullable=False, default=30)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class AdvancePayment(Base):
    """Money received ahead of (or independent of) a specific invoice"""

    __tablename__ = "advance_payment"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    customer_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    customer_type = Column(Text, nullable=False)
    amount = Column(MONEY, nullable=False)
    payment_date = Column(Date, nullable=False)
    payment_method = Column(Text, nullable=False)
    payment_reference = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    receipt_number = Column(Text, nullable=False, unique=True)
    invoice_number = Column(Text, nullable=True)
    created_by = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="completed")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    allocations = relationship(
        "BillingAllocation",
        back_populates="advance_payment",
        order_by="BillingAllocation.id",
    )


class Billing(Base):
    """Invoice raised against a customer"""

    __tablename__ = "billing"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    customer_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    customer_type = Column(Text, nullable=False)
    invoice_number = Column(Text, nullable=False, unique=True)
    service_date = Column(Date, nullable=False)
    description = Column(Text, nullable=True)
    typing_charges = Column(MONEY, nullable=False, default=0)
    government_charges = Column(MONEY, nullable=False, default=0)
    vat_amount = Column(MONEY, nullable=False, default=0)
    total_amount_due = Column(MONEY, nullable=False)
    amount_paid = Column(MONEY, nullable=False, default=0)
    status = Column(Text, nullable=False, default="unpaid", index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    version_id = Column(Integer, nullable=False)

    allocations = relationship("BillingAllocation", back_populates="billing")

    # Concurrent writers to the same billing fail with StaleDataError
    __mapper_args__ = {"version_id_col": version_id}


class BillingAllocation(Base):
    """Portion of an advance payment applied to one billing"""

    __tablename__ = "billing_allocation"

    # Monotonic id doubles as application order
    id = Column(Integer, primary_key=True, autoincrement=True)
    advance_payment_id = Column(
        UUID(as_uuid=True), ForeignKey("advance_payment.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    billing_id = Column(UUID(as_uuid=True), ForeignKey("billing.id", ondelete="RESTRICT"), nullable=False, index=True)
    applied_amount = Column(MONEY, nullable=False)
    applied_by = Column(Text, nullable=False)
    applied_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    advance_payment = relationship("AdvancePayment", back_populates="allocations")
    billing = relationship("Billing", back_populates="allocations")


class OutboundEvent(Base):
    """Ledger event outbox with retry tracking"""

    __tablename__ = "outbound_event"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_type = Column(Text, nullable=False)
    payload = Column(JSON, nullable=False)
    target_url = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="pending")
    last_attempt_at = Column(DateTime(timezone=True), nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
