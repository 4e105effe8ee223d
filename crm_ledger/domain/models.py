"""Domain models - pure Python dataclasses representing ledger entities"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional


class CustomerType(str, Enum):
    COMPANY = "company"
    INDIVIDUAL = "individual"


class BillingStatus(str, Enum):
    UNPAID = "unpaid"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"


class PaymentMethod(str, Enum):
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    CHEQUE = "cheque"
    CARD = "card"
    CREDIT_CARD = "credit_card"


class PaymentStatus(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass
class OpenBilling:
    """Outstanding billing as seen by the allocator, oldest first"""

    billing_id: Any
    total_amount_due: Decimal
    amount_paid: Decimal
    invoice_number: str = ""

    @property
    def balance_due(self) -> Decimal:
        return self.total_amount_due - self.amount_paid


@dataclass
class PlannedAllocation:
    """One step of applying a payment to a billing"""

    billing_id: Any
    amount: Decimal
    new_amount_paid: Decimal
    new_status: BillingStatus


@dataclass
class AppliedAllocation:
    """Existing allocation as seen by the correction path"""

    allocation_id: int
    billing_id: Any
    applied_amount: Decimal


@dataclass
class AllocationReversal:
    """Amount taken back from an allocation during a correction"""

    allocation_id: int
    billing_id: Any
    amount: Decimal
    remaining_applied: Decimal  # 0 means the allocation is removed


@dataclass
class Application:
    """Allocation reported back to the caller"""

    billing_id: str
    invoice_number: str
    applied_amount: Decimal


@dataclass
class AutoApplyResult:
    """Outcome of applying an advance payment to unpaid billings"""

    applied: bool
    total_applied: Decimal
    remaining: Decimal
    applications: List[Application] = field(default_factory=list)
    message: Optional[str] = None


@dataclass
class UpdateResult:
    """Outcome of correcting an advance payment"""

    payment: Any
    old_amount: Decimal
    total_applied: Decimal  # Sum of allocations before the correction
    was_over_applied: bool = False
    reversals: List[AllocationReversal] = field(default_factory=list)
    message: str = "Advance payment updated"


@dataclass
class CreditUsage:
    """Outstanding balance of a customer relative to the credit limit"""

    customer_id: str
    customer_type: CustomerType
    credit_limit: Decimal
    credit_limit_days: int
    total_billed: Decimal
    total_paid: Decimal
    total_outstanding: Decimal
    available_credit: Decimal
    utilization_percent: Decimal
    overdue_amount: Decimal
    unapplied_advance: Decimal


@dataclass
class PaymentEvent:
    """Payload broadcast to other views when a customer's ledger changes"""

    customer_id: str
    customer_type: str
    action: str  # "created" or "updated"
    payment: Dict[str, Any]
    occurred_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "customer_id": self.customer_id,
            "customer_type": self.customer_type,
            "action": self.action,
            "payment": self.payment,
            "occurred_at": self.occurred_at.isoformat() if self.occurred_at else None,
        }


@dataclass
class BillingCharges:
    """Billing amounts after VAT"""

    typing_charges: Decimal
    government_charges: Decimal
    vat_amount: Decimal
    total_amount_due: Decimal
