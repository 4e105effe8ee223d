"""Advance payment workflow shared by registration, customer edit and receipt screens"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crm_ledger.config import settings
from crm_ledger.domain.exceptions import (
    AutoApplyPartialFailure,
    CustomerNotFoundError,
    LedgerInconsistency,
    ValidationError,
)
from crm_ledger.domain.models import (
    AutoApplyResult,
    CustomerType,
    PaymentEvent,
    PaymentMethod,
    PaymentStatus,
    UpdateResult,
)
from crm_ledger.infrastructure.database.errors import describe_persistence_error
from crm_ledger.infrastructure.database.models import AdvancePayment
from crm_ledger.infrastructure.database.repositories import (
    CustomerRepository,
    OutboxRepository,
    PaymentRepository,
)
from crm_ledger.infrastructure.messaging.events import ADVANCE_PAYMENT_UPDATED, EventBus, event_bus
from crm_ledger.infrastructure.messaging.notifications import ERROR, SUCCESS, WARNING, NotificationSink
from crm_ledger.infrastructure.observability.logging import log_auto_apply, log_correction
from crm_ledger.infrastructure.observability.metrics import (
    advance_payment_counter,
    ledger_inconsistency_counter,
    ledger_repair_counter,
    record_auto_apply,
)
from crm_ledger.services.reconciler import AdvancePaymentReconciler
from crm_ledger.utils.money import ZERO, to_money

logger = logging.getLogger(__name__)


@dataclass
class RecordedPayment:
    payment: AdvancePayment
    auto_apply: Optional[AutoApplyResult] = None
    auto_apply_failed: bool = False
    outbox_event_ids: List[uuid.UUID] = field(default_factory=list)


@dataclass
class CorrectedPayment:
    update: UpdateResult
    reapply: Optional[AutoApplyResult] = None
    reapply_failed: bool = False
    outbox_event_ids: List[uuid.UUID] = field(default_factory=list)


def payment_snapshot(payment: AdvancePayment) -> Dict[str, Any]:
    """JSON-safe view of a payment for event payloads"""
    return {
        "id": str(payment.id),
        "customer_id": str(payment.customer_id),
        "customer_type": payment.customer_type,
        "amount": str(to_money(payment.amount)),
        "payment_date": payment.payment_date.isoformat() if payment.payment_date else None,
        "payment_method": payment.payment_method,
        "payment_reference": payment.payment_reference,
        "receipt_number": payment.receipt_number,
        "invoice_number": payment.invoice_number,
        "status": payment.status,
        "created_by": payment.created_by,
    }


class AdvancePaymentService:
    """
    Single entry point for recording and correcting advance payments.

    The payment is committed before auto-apply runs, and auto-apply runs in
    its own transaction: a failed allocation loop rolls back completely while
    the payment stands.
    """

    def __init__(
        self,
        db: Session,
        notifier: NotificationSink,
        events: EventBus = event_bus,
        webhook_url: Optional[str] = None,
        request_id: Optional[str] = None,
    ):
        self.db = db
        self.notifier = notifier
        self.events = events
        self.webhook_url = webhook_url if webhook_url is not None else settings.ledger_webhook_url
        self.request_id = request_id
        self.reconciler = AdvancePaymentReconciler(db)
        self.payments = PaymentRepository(db)
        self.customers = CustomerRepository(db)
        self.outbox = OutboxRepository(db)

    def record_advance_payment(
        self,
        customer_id: uuid.UUID,
        customer_type: CustomerType,
        amount: Any,
        payment_date: date,
        payment_method: str,
        created_by: str,
        payment_reference: Optional[str] = None,
        notes: Optional[str] = None,
        description: Optional[str] = None,
        invoice_number: Optional[str] = None,
        status: str = PaymentStatus.COMPLETED.value,
    ) -> RecordedPayment:
        """
        Record a payment and apply it to the customer's unpaid billings.

        Raises:
            ValidationError: Bad amount, method, status or customer type
            CustomerNotFoundError: Unknown customer
            PersistenceError: The payment itself could not be stored
        """
        amount, payment_method = self.validate_payment_fields(amount, payment_date, payment_method, status)
        customer_type = self._validate_customer_type(customer_type)
        if self.customers.get_customer(customer_id, customer_type) is None:
            raise CustomerNotFoundError(f"{customer_type.value.capitalize()} {customer_id} not found")

        try:
            payment = self.payments.create_payment(
                customer_id=customer_id,
                customer_type=customer_type,
                amount=amount,
                payment_date=payment_date,
                payment_method=payment_method,
                receipt_number=self.payments.next_receipt_number(settings.receipt_prefix, payment_date.year),
                created_by=created_by,
                payment_reference=payment_reference,
                notes=notes,
                description=description or None,
                invoice_number=invoice_number,
                status=status,
            )
            outbox_ids = self._enqueue(payment, "created")
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise describe_persistence_error(e) from e

        advance_payment_counter.labels(action="created").inc()
        recorded = RecordedPayment(payment=payment, outbox_event_ids=outbox_ids)

        if status == PaymentStatus.CANCELLED.value:
            self.notifier.notify(SUCCESS, f"Receipt {payment.receipt_number} recorded as cancelled")
        else:
            try:
                recorded.auto_apply = self._run_auto_apply(payment)
            except AutoApplyPartialFailure as failure:
                recorded.auto_apply_failed = True
                logger.error(str(failure), extra={"request_id": self.request_id, "payment_id": str(payment.id)})
                self.notifier.notify(
                    SUCCESS, f"Advance payment recorded. Receipt Number: {payment.receipt_number}"
                )
                self.notifier.notify(
                    WARNING,
                    f"Payment recorded; auto-apply failed, apply manually. Receipt Number: {payment.receipt_number}",
                )
            else:
                self._notify_recorded(payment, recorded.auto_apply)

        self._publish(payment, "created")
        return recorded

    def validate_payment_fields(
        self,
        amount: Any,
        payment_date: Optional[date],
        payment_method: Any,
        status: str = PaymentStatus.COMPLETED.value,
    ) -> Tuple[Decimal, str]:
        """Check a payment payload without touching the database"""
        amount = self._validate_amount(amount)
        payment_method = self._validate_method(payment_method)
        if status not in {s.value for s in PaymentStatus}:
            raise ValidationError(f"Unknown payment status: {status}")
        if payment_date is None:
            raise ValidationError("Payment date is required")
        return amount, payment_method

    def correct_advance_payment(
        self,
        payment_id: uuid.UUID,
        updates: Dict[str, Any],
        actor_id: str,
    ) -> CorrectedPayment:
        """
        Apply a correction and repair over-applied allocations.

        Raises:
            LedgerInconsistency: Allocations cannot be reduced to fit; nothing changed
            ValidationError / PaymentNotFoundError: Bad request
            PersistenceError: Backend failure; nothing changed
        """
        try:
            update = self.reconciler.update_advance_payment(payment_id, updates, actor_id)
            outbox_ids = self._enqueue(update.payment, "updated")
            self.db.commit()
        except LedgerInconsistency as e:
            self.db.rollback()
            ledger_inconsistency_counter.inc()
            self.notifier.notify(ERROR, str(e), prominent=True)
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            raise describe_persistence_error(e) from e
        except Exception:
            self.db.rollback()
            raise

        payment = update.payment
        new_amount = to_money(payment.amount)
        advance_payment_counter.labels(action="updated").inc()
        log_correction(
            str(payment.id),
            update.old_amount,
            new_amount,
            update.total_applied,
            update.was_over_applied,
            len(update.reversals),
            request_id=self.request_id,
        )

        if update.was_over_applied:
            ledger_repair_counter.inc()
            self.notifier.notify(WARNING, update.message, prominent=True)
        else:
            self.notifier.notify(SUCCESS, update.message)

        corrected = CorrectedPayment(update=update, outbox_event_ids=outbox_ids)
        if new_amount > update.old_amount and payment.status != PaymentStatus.CANCELLED.value:
            try:
                corrected.reapply = self._run_auto_apply(payment, surplus_only=True)
            except AutoApplyPartialFailure as failure:
                corrected.reapply_failed = True
                logger.error(str(failure), extra={"request_id": self.request_id, "payment_id": str(payment.id)})
                self.notifier.notify(WARNING, "Payment updated; auto-apply failed, apply manually.")
            else:
                if corrected.reapply.applied:
                    self.notifier.notify(SUCCESS, corrected.reapply.message)

        self._publish(payment, "updated")
        return corrected

    def apply_remaining(self, payment_id: uuid.UUID, actor_id: str) -> AutoApplyResult:
        """Manual trigger to apply a payment's unallocated surplus"""
        try:
            result = self.reconciler.apply_remaining(payment_id, actor_id)
            payment = self.payments.get_payment(payment_id)
            if result.applied:
                self._enqueue(payment, "updated")
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise describe_persistence_error(e) from e
        except Exception:
            self.db.rollback()
            raise

        record_auto_apply("applied" if result.applied else "nothing_to_apply", result.total_applied)
        self.notifier.notify(SUCCESS, result.message or "Nothing to apply")
        if result.applied:
            self._publish(payment, "updated")
        return result

    def _run_auto_apply(self, payment: AdvancePayment, surplus_only: bool = False) -> AutoApplyResult:
        actor = payment.created_by
        try:
            if surplus_only:
                result = self.reconciler.apply_remaining(payment.id, actor)
            else:
                result = self.reconciler.auto_apply(payment.id, payment.customer_id, payment.customer_type, actor)
            self.db.commit()
        except SQLAlchemyError as e:
            # Detach first so the rollback does not expire the committed payment
            self.db.expunge(payment)
            self.db.rollback()
            record_auto_apply("failed", ZERO)
            raise AutoApplyPartialFailure(payment.id, e) from e

        if result.applied:
            outcome = "applied"
        elif result.message == "Advance payment already applied":
            outcome = "already_applied"
        else:
            outcome = "nothing_to_apply"
        record_auto_apply(outcome, result.total_applied)
        log_auto_apply(
            str(payment.id),
            str(payment.customer_id),
            result.applied,
            result.total_applied,
            len(result.applications),
            result.remaining,
            request_id=self.request_id,
        )
        return result

    def _notify_recorded(self, payment: AdvancePayment, result: AutoApplyResult) -> None:
        if result.applied:
            self.notifier.notify(
                SUCCESS,
                f"Receipt created and applied! Receipt Number: {payment.receipt_number}. "
                f"Applied {settings.currency} {result.total_applied} to {len(result.applications)} billing(s)",
            )
        else:
            self.notifier.notify(
                SUCCESS,
                f"Advance payment of {settings.currency} {to_money(payment.amount)} recorded. "
                f"Receipt Number: {payment.receipt_number}. {result.message}",
            )

    def _enqueue(self, payment: AdvancePayment, action: str) -> List[uuid.UUID]:
        if not self.webhook_url:
            return []
        event = PaymentEvent(
            customer_id=str(payment.customer_id),
            customer_type=payment.customer_type,
            action=action,
            payment=payment_snapshot(payment),
        )
        outbound = self.outbox.enqueue(ADVANCE_PAYMENT_UPDATED, event.to_dict(), self.webhook_url)
        return [outbound.id]

    def _publish(self, payment: AdvancePayment, action: str) -> None:
        self.events.publish(
            ADVANCE_PAYMENT_UPDATED,
            PaymentEvent(
                customer_id=str(payment.customer_id),
                customer_type=payment.customer_type,
                action=action,
                payment=payment_snapshot(payment),
            ),
        )

    @staticmethod
    def _validate_amount(amount: Any) -> Decimal:
        try:
            value = to_money(amount)
        except (InvalidOperation, ValueError, TypeError):
            raise ValidationError(f"Invalid amount: {amount}")
        if amount is None or value <= ZERO:
            raise ValidationError("Amount must be greater than zero")
        return value

    @staticmethod
    def _validate_customer_type(customer_type: Any) -> CustomerType:
        try:
            return CustomerType(customer_type)
        except ValueError:
            raise ValidationError(f"Unknown customer type: {customer_type}")

    @staticmethod
    def _validate_method(payment_method: Any) -> str:
        try:
            return PaymentMethod(payment_method).value
        except ValueError:
            raise ValidationError(f"Unknown payment method: {payment_method}")
