"""Data access layer for ledger entities"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import func
from sqlalchemy.orm import Session

from crm_ledger.domain.models import BillingCharges, BillingStatus, CustomerType
from crm_ledger.domain.numbering import format_document_number, next_sequence
from crm_ledger.infrastructure.database.models import (
    AdvancePayment,
    Billing,
    BillingAllocation,
    Company,
    Individual,
    OutboundEvent,
)
from crm_ledger.utils.date_utils import utcnow
from crm_ledger.utils.money import ZERO, to_money

Customer = Union[Company, Individual]

_CUSTOMER_MODELS = {
    CustomerType.COMPANY: Company,
    CustomerType.INDIVIDUAL: Individual,
}


class CustomerRepository:
    """Repository for companies and individuals"""

    def __init__(self, db: Session):
        self.db = db

    def create_customer(self, customer_type: CustomerType, **fields: Any) -> Customer:
        """Persist a company or individual"""
        model = _CUSTOMER_MODELS[CustomerType(customer_type)]
        customer = model(**fields)
        self.db.add(customer)
        self.db.flush()
        return customer

    def get_customer(self, customer_id: uuid.UUID, customer_type: CustomerType) -> Optional[Customer]:
        model = _CUSTOMER_MODELS[CustomerType(customer_type)]
        return self.db.query(model).filter(model.id == customer_id).first()

    def update_customer(self, customer: Customer, changes: Dict[str, Any]) -> Customer:
        for key, value in changes.items():
            setattr(customer, key, value)
        self.db.flush()
        return customer


class PaymentRepository:
    """Repository for advance payments"""

    def __init__(self, db: Session):
        self.db = db

    def next_receipt_number(self, prefix: str, year: int) -> str:
        issued = (
            self.db.query(AdvancePayment.receipt_number)
            .filter(AdvancePayment.receipt_number.like(f"{prefix}-{year}-%"))
            .all()
        )
        return format_document_number(prefix, year, next_sequence(prefix, year, (r[0] for r in issued)))

    def create_payment(
        self,
        customer_id: uuid.UUID,
        customer_type: CustomerType,
        amount: Decimal,
        payment_date: date,
        payment_method: str,
        receipt_number: str,
        created_by: str,
        payment_reference: Optional[str] = None,
        notes: Optional[str] = None,
        description: Optional[str] = None,
        invoice_number: Optional[str] = None,
        status: str = "completed",
    ) -> AdvancePayment:
        """Persist advance payment; id is available after flush"""
        payment = AdvancePayment(
            customer_id=customer_id,
            customer_type=CustomerType(customer_type).value,
            amount=to_money(amount),
            payment_date=payment_date,
            payment_method=payment_method,
            payment_reference=payment_reference,
            notes=notes,
            description=description,
            receipt_number=receipt_number,
            invoice_number=invoice_number,
            created_by=created_by,
            status=status,
        )
        self.db.add(payment)
        self.db.flush()
        return payment

    def get_payment(self, payment_id: uuid.UUID) -> Optional[AdvancePayment]:
        return self.db.query(AdvancePayment).filter(AdvancePayment.id == payment_id).first()

    def update_payment(self, payment: AdvancePayment, changes: Dict[str, Any]) -> AdvancePayment:
        for key, value in changes.items():
            setattr(payment, key, value)
        payment.updated_at = utcnow()
        self.db.flush()
        return payment

    def list_payments_by_customer(self, customer_id: uuid.UUID, customer_type: CustomerType) -> List[AdvancePayment]:
        return (
            self.db.query(AdvancePayment)
            .filter(
                AdvancePayment.customer_id == customer_id,
                AdvancePayment.customer_type == CustomerType(customer_type).value,
            )
            .order_by(AdvancePayment.created_at.asc())
            .all()
        )


class BillingRepository:
    """Repository for billings (invoices)"""

    def __init__(self, db: Session):
        self.db = db

    def next_invoice_number(self, prefix: str, year: int) -> str:
        issued = (
            self.db.query(Billing.invoice_number)
            .filter(Billing.invoice_number.like(f"{prefix}-{year}-%"))
            .all()
        )
        return format_document_number(prefix, year, next_sequence(prefix, year, (r[0] for r in issued)))

    def create_billing(
        self,
        customer_id: uuid.UUID,
        customer_type: CustomerType,
        invoice_number: str,
        service_date: date,
        charges: BillingCharges,
        description: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> Billing:
        billing = Billing(
            customer_id=customer_id,
            customer_type=CustomerType(customer_type).value,
            invoice_number=invoice_number,
            service_date=service_date,
            description=description,
            typing_charges=charges.typing_charges,
            government_charges=charges.government_charges,
            vat_amount=charges.vat_amount,
            total_amount_due=charges.total_amount_due,
            amount_paid=ZERO,
            status=BillingStatus.UNPAID.value,
        )
        if created_at is not None:
            billing.created_at = created_at
        self.db.add(billing)
        self.db.flush()
        return billing

    def get_billing(self, billing_id: uuid.UUID) -> Optional[Billing]:
        return self.db.query(Billing).filter(Billing.id == billing_id).first()

    def list_unpaid_billings(
        self,
        customer_id: uuid.UUID,
        customer_type: CustomerType,
        lock: bool = True,
    ) -> List[Billing]:
        """Outstanding billings oldest first, row-locked for the allocation loop"""
        query = (
            self.db.query(Billing)
            .filter(
                Billing.customer_id == customer_id,
                Billing.customer_type == CustomerType(customer_type).value,
                Billing.status.in_([BillingStatus.UNPAID.value, BillingStatus.PARTIALLY_PAID.value]),
            )
            .order_by(Billing.created_at.asc(), Billing.invoice_number.asc())
        )
        if lock:
            query = query.with_for_update()
        return query.all()

    def list_billings_by_customer(self, customer_id: uuid.UUID, customer_type: CustomerType) -> List[Billing]:
        return (
            self.db.query(Billing)
            .filter(
                Billing.customer_id == customer_id,
                Billing.customer_type == CustomerType(customer_type).value,
            )
            .order_by(Billing.created_at.asc(), Billing.invoice_number.asc())
            .all()
        )

    def update_billing(self, billing: Billing, amount_paid: Decimal, status: BillingStatus) -> Billing:
        billing.amount_paid = to_money(amount_paid)
        billing.status = BillingStatus(status).value
        self.db.flush()
        return billing


class AllocationRepository:
    """Repository for billing allocations"""

    def __init__(self, db: Session):
        self.db = db

    def create_allocation(
        self,
        advance_payment_id: uuid.UUID,
        billing_id: uuid.UUID,
        applied_amount: Decimal,
        applied_by: str,
    ) -> BillingAllocation:
        allocation = BillingAllocation(
            advance_payment_id=advance_payment_id,
            billing_id=billing_id,
            applied_amount=to_money(applied_amount),
            applied_by=applied_by,
        )
        self.db.add(allocation)
        self.db.flush()
        return allocation

    def list_allocations(self, advance_payment_id: uuid.UUID) -> List[BillingAllocation]:
        """Allocations of a payment in application order"""
        return (
            self.db.query(BillingAllocation)
            .filter(BillingAllocation.advance_payment_id == advance_payment_id)
            .order_by(BillingAllocation.id.asc())
            .all()
        )

    def total_applied(self, advance_payment_id: uuid.UUID) -> Decimal:
        total = (
            self.db.query(func.coalesce(func.sum(BillingAllocation.applied_amount), 0))
            .filter(BillingAllocation.advance_payment_id == advance_payment_id)
            .scalar()
        )
        return to_money(total)

    def reduce_allocation(self, allocation: BillingAllocation, remaining_applied: Decimal) -> None:
        """Shrink an allocation; a zero remainder removes it"""
        if to_money(remaining_applied) <= ZERO:
            self.db.delete(allocation)
        else:
            allocation.applied_amount = to_money(remaining_applied)
        self.db.flush()


class OutboxRepository:
    """Repository for outbound ledger events"""

    def __init__(self, db: Session):
        self.db = db

    def enqueue(self, event_type: str, payload: Dict[str, Any], target_url: str) -> OutboundEvent:
        event = OutboundEvent(event_type=event_type, payload=payload, target_url=target_url)
        self.db.add(event)
        self.db.flush()
        return event

    def get_event(self, event_id: uuid.UUID) -> Optional[OutboundEvent]:
        return self.db.query(OutboundEvent).filter(OutboundEvent.id == event_id).first()

    def list_undelivered(self, limit: int = 50) -> List[OutboundEvent]:
        return (
            self.db.query(OutboundEvent)
            .filter(OutboundEvent.status.in_(["pending", "failed"]))
            .order_by(OutboundEvent.created_at.asc())
            .limit(limit)
            .all()
        )

    def record_attempt(self, event: OutboundEvent, delivered: bool) -> None:
        event.attempts = (event.attempts or 0) + 1
        event.last_attempt_at = utcnow()
        event.status = "delivered" if delivered else "failed"
        self.db.flush()
