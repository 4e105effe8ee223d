"""Advance payment reconciliation against a customer's billings"""

import logging
import uuid
from collections import defaultdict
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from crm_ledger.config import settings
from crm_ledger.domain.allocation import billing_status, plan_allocations, plan_reversals
from crm_ledger.domain.exceptions import LedgerInconsistency, PaymentNotFoundError, ValidationError
from crm_ledger.domain.models import (
    AppliedAllocation,
    Application,
    AutoApplyResult,
    CustomerType,
    OpenBilling,
    PaymentMethod,
    PaymentStatus,
    UpdateResult,
)
from crm_ledger.infrastructure.database.models import AdvancePayment
from crm_ledger.infrastructure.database.repositories import (
    AllocationRepository,
    BillingRepository,
    PaymentRepository,
)
from crm_ledger.utils.money import ZERO, sum_money, to_money

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("amount", "payment_date", "payment_method", "payment_reference", "notes", "description")


class AdvancePaymentReconciler:
    """
    Applies advance payments to billings and keeps allocations within receipt amounts.

    Only flushes; the caller owns the transaction so that a whole allocation
    or correction loop commits or rolls back as one unit.
    """

    def __init__(self, db: Session):
        self.db = db
        self.payments = PaymentRepository(db)
        self.billings = BillingRepository(db)
        self.allocations = AllocationRepository(db)

    def auto_apply(
        self,
        payment_id: uuid.UUID,
        customer_id: uuid.UUID,
        customer_type: CustomerType,
        actor_id: str,
    ) -> AutoApplyResult:
        """
        Offset a new advance payment against the customer's unpaid billings.

        Flow:
        1. Refuse a payment that already has allocations (no double application)
        2. Lock the customer's unpaid/partially paid billings, oldest first
        3. Allocate min(balance due, remaining) to each until the payment runs out
        4. Leave any surplus on the payment

        Raises:
            PaymentNotFoundError: Unknown payment
            ValidationError: Payment belongs to another customer
            SQLAlchemyError: Any read/write failure inside the loop
        """
        payment = self._load(payment_id)
        if str(payment.customer_id) != str(customer_id) or payment.customer_type != CustomerType(customer_type).value:
            raise ValidationError(f"Advance payment {payment_id} does not belong to {customer_type} {customer_id}")

        amount = to_money(payment.amount)
        if payment.status == PaymentStatus.CANCELLED.value:
            return AutoApplyResult(
                applied=False, total_applied=ZERO, remaining=amount, message="Cancelled payments are not applied"
            )

        existing = self.allocations.list_allocations(payment.id)
        if existing:
            already = sum_money(a.applied_amount for a in existing)
            return AutoApplyResult(
                applied=False,
                total_applied=ZERO,
                remaining=amount - already,
                message="Advance payment already applied",
            )

        return self._apply(payment, amount, actor_id)

    def apply_remaining(self, payment_id: uuid.UUID, actor_id: str) -> AutoApplyResult:
        """Apply only the unallocated surplus of a payment"""
        payment = self._load(payment_id)
        if payment.status == PaymentStatus.CANCELLED.value:
            return AutoApplyResult(
                applied=False,
                total_applied=ZERO,
                remaining=to_money(payment.amount),
                message="Cancelled payments are not applied",
            )

        available = to_money(payment.amount) - self.allocations.total_applied(payment.id)
        if available <= ZERO:
            return AutoApplyResult(
                applied=False, total_applied=ZERO, remaining=ZERO, message="Advance payment fully utilized"
            )
        return self._apply(payment, available, actor_id)

    def update_advance_payment(
        self,
        payment_id: uuid.UUID,
        updates: Dict[str, Any],
        actor_id: Optional[str] = None,
    ) -> UpdateResult:
        """
        Correct an advance payment after the fact.

        When the corrected amount is below what was already applied, the most
        recently applied allocations are reduced until they fit, and the
        affected billings are reopened. If a billing cannot give back the
        amount (its paid total is already short), nothing is changed and
        LedgerInconsistency is raised.
        """
        changes = self._validate_updates(updates)
        payment = self._load(payment_id)

        allocations = self.allocations.list_allocations(payment.id)
        total_applied = sum_money(a.applied_amount for a in allocations)
        old_amount = to_money(payment.amount)
        new_amount = changes.get("amount", old_amount)

        reversals = []
        if new_amount < total_applied:
            reversals = plan_reversals(
                [AppliedAllocation(a.id, a.billing_id, a.applied_amount) for a in allocations],
                new_amount,
            )

            # Verify every billing can absorb its reversal before touching anything
            owed: Dict[Any, Decimal] = defaultdict(lambda: ZERO)
            billings = {}
            for reversal in reversals:
                billing = billings.get(reversal.billing_id) or self.billings.get_billing(reversal.billing_id)
                owed[reversal.billing_id] += reversal.amount
                if billing is None or to_money(billing.amount_paid) < owed[reversal.billing_id]:
                    raise LedgerInconsistency(
                        payment_id=payment.id,
                        receipt_amount=new_amount,
                        total_applied=total_applied,
                        billing_id=reversal.billing_id,
                        billing_amount_paid=to_money(billing.amount_paid) if billing is not None else ZERO,
                        amount_to_reverse=owed[reversal.billing_id],
                    )
                billings[reversal.billing_id] = billing

            by_id = {a.id: a for a in allocations}
            for reversal in reversals:
                billing = billings[reversal.billing_id]
                paid = to_money(billing.amount_paid) - reversal.amount
                self.billings.update_billing(billing, paid, billing_status(to_money(billing.total_amount_due), paid))
                self.allocations.reduce_allocation(by_id[reversal.allocation_id], reversal.remaining_applied)

        self.payments.update_payment(payment, changes)

        result = UpdateResult(
            payment=payment,
            old_amount=old_amount,
            total_applied=total_applied,
            was_over_applied=bool(reversals),
            reversals=reversals,
        )
        if reversals:
            reversed_total = sum_money(r.amount for r in reversals)
            touched = len({r.billing_id for r in reversals})
            result.message = (
                f"Receipt {payment.receipt_number} corrected from {settings.currency} {old_amount} to "
                f"{settings.currency} {new_amount}. {settings.currency} {total_applied} had already been "
                f"applied; {settings.currency} {reversed_total} was reversed from {touched} billing(s), "
                f"which are open again and may need review."
            )
        elif new_amount != old_amount:
            result.message = (
                f"Receipt {payment.receipt_number} amount changed from {settings.currency} {old_amount} "
                f"to {settings.currency} {new_amount}"
            )
        return result

    def _apply(self, payment: AdvancePayment, amount: Decimal, actor_id: str) -> AutoApplyResult:
        billings = self.billings.list_unpaid_billings(payment.customer_id, payment.customer_type)
        planned, remaining = plan_allocations(
            [
                OpenBilling(
                    billing_id=b.id,
                    total_amount_due=to_money(b.total_amount_due),
                    amount_paid=to_money(b.amount_paid),
                    invoice_number=b.invoice_number,
                )
                for b in billings
            ],
            amount,
        )

        by_id = {b.id: b for b in billings}
        applications: List[Application] = []
        for step in planned:
            billing = by_id[step.billing_id]
            self.allocations.create_allocation(payment.id, billing.id, step.amount, actor_id)
            self.billings.update_billing(billing, step.new_amount_paid, step.new_status)
            applications.append(
                Application(
                    billing_id=str(billing.id),
                    invoice_number=billing.invoice_number,
                    applied_amount=step.amount,
                )
            )

        total_applied = sum_money(a.applied_amount for a in applications)
        if not applications:
            message = "No unpaid billings to apply to"
        else:
            message = f"Applied {settings.currency} {total_applied} to {len(applications)} billing(s)"

        logger.debug(
            "Allocation loop finished",
            extra={"payment_id": str(payment.id), "applications": len(applications), "remaining": str(remaining)},
        )
        return AutoApplyResult(
            applied=bool(applications),
            total_applied=total_applied,
            remaining=remaining,
            applications=applications,
            message=message,
        )

    def _load(self, payment_id: uuid.UUID) -> AdvancePayment:
        payment = self.payments.get_payment(payment_id)
        if payment is None:
            raise PaymentNotFoundError(f"Advance payment {payment_id} not found")
        return payment

    @staticmethod
    def _validate_updates(updates: Dict[str, Any]) -> Dict[str, Any]:
        unknown = set(updates) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")

        changes = {k: v for k, v in updates.items() if k in EDITABLE_FIELDS}
        if not changes:
            raise ValidationError(f"Provide at least one of: {', '.join(EDITABLE_FIELDS)}")

        if "amount" in changes:
            if changes["amount"] is None:
                raise ValidationError("Amount is required")
            try:
                changes["amount"] = to_money(changes["amount"])
            except (InvalidOperation, ValueError):
                raise ValidationError(f"Invalid amount: {changes['amount']}")
            if changes["amount"] <= ZERO:
                raise ValidationError("Amount must be greater than zero")

        if "payment_method" in changes:
            try:
                changes["payment_method"] = PaymentMethod(changes["payment_method"]).value
            except ValueError:
                raise ValidationError(f"Unknown payment method: {changes['payment_method']}")

        if "payment_date" in changes and changes["payment_date"] is None:
            raise ValidationError("Payment date is required")

        return changes
