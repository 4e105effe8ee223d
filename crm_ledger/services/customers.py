"""Customer registration, edits and credit usage"""

import uuid
from datetime import date
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crm_ledger.config import settings
from crm_ledger.domain.credit import calculate_credit_usage
from crm_ledger.domain.exceptions import CustomerNotFoundError, ValidationError
from crm_ledger.domain.models import CreditUsage, CustomerType, PaymentStatus
from crm_ledger.infrastructure.database.errors import describe_persistence_error
from crm_ledger.infrastructure.database.repositories import (
    AllocationRepository,
    BillingRepository,
    Customer,
    CustomerRepository,
    PaymentRepository,
)
from crm_ledger.infrastructure.messaging.notifications import SUCCESS, NotificationSink
from crm_ledger.services.payments import AdvancePaymentService, RecordedPayment
from crm_ledger.utils.money import ZERO, to_money

COMMON_FIELDS = {"name", "email", "phone", "credit_limit", "credit_limit_days"}
TYPE_FIELDS = {
    CustomerType.COMPANY: COMMON_FIELDS | {"trade_license_number"},
    CustomerType.INDIVIDUAL: COMMON_FIELDS | {"nationality"},
}


class CustomerService:
    """Registration and edit forms; both record advance payments the same way"""

    def __init__(self, db: Session, payments: AdvancePaymentService, notifier: NotificationSink):
        self.db = db
        self.payments = payments
        self.notifier = notifier
        self.customers = CustomerRepository(db)

    def register(
        self,
        customer_type: CustomerType,
        fields: Dict[str, Any],
        advance_payment: Optional[Dict[str, Any]],
        actor_id: str,
    ) -> Tuple[Customer, Optional[RecordedPayment]]:
        customer_type = CustomerType(customer_type)
        data = self._clean_fields(customer_type, fields)
        if not data.get("name"):
            raise ValidationError("Name is required")
        data.setdefault("credit_limit_days", settings.default_credit_limit_days)
        self._check_advance(advance_payment)

        try:
            customer = self.customers.create_customer(customer_type, **data)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise describe_persistence_error(e) from e

        self.notifier.notify(SUCCESS, f"{customer_type.value.capitalize()} {customer.name} registered")
        recorded = self._record_advance(customer, customer_type, advance_payment, actor_id)
        return customer, recorded

    def update(
        self,
        customer_type: CustomerType,
        customer_id: uuid.UUID,
        fields: Dict[str, Any],
        advance_payment: Optional[Dict[str, Any]],
        actor_id: str,
    ) -> Tuple[Customer, Optional[RecordedPayment]]:
        customer_type = CustomerType(customer_type)
        customer = self._get(customer_id, customer_type)
        changes = self._clean_fields(customer_type, fields)
        if "name" in changes and not changes["name"]:
            raise ValidationError("Name cannot be empty")
        self._check_advance(advance_payment)

        if changes:
            try:
                self.customers.update_customer(customer, changes)
                self.db.commit()
            except SQLAlchemyError as e:
                self.db.rollback()
                raise describe_persistence_error(e) from e
            self.notifier.notify(SUCCESS, f"{customer_type.value.capitalize()} {customer.name} updated")

        recorded = self._record_advance(customer, customer_type, advance_payment, actor_id)
        return customer, recorded

    def credit_usage(self, customer_id: uuid.UUID, customer_type: CustomerType, today: Optional[date] = None) -> CreditUsage:
        customer_type = CustomerType(customer_type)
        customer = self._get(customer_id, customer_type)

        billings = BillingRepository(self.db).list_billings_by_customer(customer.id, customer_type)
        allocations = AllocationRepository(self.db)
        unapplied = [
            to_money(p.amount) - allocations.total_applied(p.id)
            for p in PaymentRepository(self.db).list_payments_by_customer(customer.id, customer_type)
            if p.status != PaymentStatus.CANCELLED.value
        ]

        return calculate_credit_usage(
            customer_id=str(customer.id),
            customer_type=customer_type,
            credit_limit=to_money(customer.credit_limit),
            credit_limit_days=customer.credit_limit_days or settings.default_credit_limit_days,
            billings=billings,
            unapplied_advances=[u for u in unapplied if u > ZERO],
            today=today or date.today(),
        )

    def _check_advance(self, advance_payment: Optional[Dict[str, Any]]) -> None:
        """Reject a bad advance section before the customer is stored"""
        if not self._has_advance(advance_payment):
            return
        self.payments.validate_payment_fields(
            advance_payment.get("amount"),
            advance_payment.get("payment_date"),
            advance_payment.get("payment_method"),
            advance_payment.get("status", PaymentStatus.COMPLETED.value),
        )

    def _record_advance(
        self,
        customer: Customer,
        customer_type: CustomerType,
        advance_payment: Optional[Dict[str, Any]],
        actor_id: str,
    ) -> Optional[RecordedPayment]:
        if not self._has_advance(advance_payment):
            return None
        return self.payments.record_advance_payment(
            customer_id=customer.id,
            customer_type=customer_type,
            created_by=actor_id,
            **advance_payment,
        )

    @staticmethod
    def _has_advance(advance_payment: Optional[Dict[str, Any]]) -> bool:
        # Forms send the section even when left empty
        return bool(advance_payment and advance_payment.get("amount"))

    def _get(self, customer_id: uuid.UUID, customer_type: CustomerType) -> Customer:
        customer = self.customers.get_customer(customer_id, customer_type)
        if customer is None:
            raise CustomerNotFoundError(f"{customer_type.value.capitalize()} {customer_id} not found")
        return customer

    @staticmethod
    def _clean_fields(customer_type: CustomerType, fields: Dict[str, Any]) -> Dict[str, Any]:
        allowed = TYPE_FIELDS[customer_type]
        unknown = set(fields) - allowed
        if unknown:
            raise ValidationError(
                f"Fields not valid for {customer_type.value}: {', '.join(sorted(unknown))}"
            )
        data = dict(fields)
        if "credit_limit" in data:
            data["credit_limit"] = to_money(data["credit_limit"])
            if data["credit_limit"] < ZERO:
                raise ValidationError("Credit limit cannot be negative")
        if "credit_limit_days" in data and (data["credit_limit_days"] is None or data["credit_limit_days"] <= 0):
            raise ValidationError("Credit limit days must be greater than zero")
        return data
