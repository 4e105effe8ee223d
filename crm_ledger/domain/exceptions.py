"""Domain-specific exceptions"""

from decimal import Decimal
from typing import Any, Dict, Optional


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class ValidationError(DomainException):
    """Input rejected before any persistence call"""

    pass


class CustomerNotFoundError(DomainException):
    """Company or individual does not exist"""

    pass


class PaymentNotFoundError(DomainException):
    """Advance payment does not exist"""

    pass


class BillingNotFoundError(DomainException):
    """Billing does not exist"""

    pass


class PersistenceError(DomainException):
    """Backend write or read failed"""

    def __init__(self, message: str, kind: str = "unknown"):
        super().__init__(message)
        self.kind = kind


class AutoApplyPartialFailure(DomainException):
    """Payment was recorded but applying it to billings failed"""

    def __init__(self, payment_id: Any, cause: Exception):
        super().__init__(f"Auto-apply failed for advance payment {payment_id}: {cause}")
        self.payment_id = payment_id
        self.cause = cause


class LedgerInconsistency(DomainException):
    """
    Allocations of a receipt cannot be reconciled with its amount.

    Carries every amount involved so the caller can show the full picture;
    prior invoices may need review.
    """

    def __init__(
        self,
        payment_id: Any,
        receipt_amount: Decimal,
        total_applied: Decimal,
        billing_id: Optional[Any] = None,
        billing_amount_paid: Optional[Decimal] = None,
        amount_to_reverse: Optional[Decimal] = None,
    ):
        self.payment_id = payment_id
        self.receipt_amount = receipt_amount
        self.total_applied = total_applied
        self.billing_id = billing_id
        self.billing_amount_paid = billing_amount_paid
        self.amount_to_reverse = amount_to_reverse

        message = (
            f"Over-applied receipt {payment_id}: {total_applied} applied against a receipt amount of "
            f"{receipt_amount}"
        )
        if billing_id is not None:
            message += (
                f"; billing {billing_id} has only {billing_amount_paid} paid but "
                f"{amount_to_reverse} would have to be reversed"
            )
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": "ledger_inconsistency",
            "payment_id": str(self.payment_id),
            "receipt_amount": str(self.receipt_amount),
            "total_applied": str(self.total_applied),
            "billing_id": str(self.billing_id) if self.billing_id is not None else None,
            "billing_amount_paid": str(self.billing_amount_paid) if self.billing_amount_paid is not None else None,
            "amount_to_reverse": str(self.amount_to_reverse) if self.amount_to_reverse is not None else None,
            "message": str(self),
        }
