"""Pydantic schemas for API request/response validation"""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from crm_ledger.domain.models import CustomerType, PaymentMethod, PaymentStatus


class NotificationSchema(BaseModel):
    """Message for the user; prominent ones must not auto-dismiss"""

    kind: str
    message: str
    prominent: bool = False


# Advance payments

class AdvancePaymentInput(BaseModel):
    """Advance payment section of the registration and edit forms"""

    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    payment_date: date = Field(default_factory=date.today)
    payment_method: PaymentMethod = PaymentMethod.CASH
    payment_reference: Optional[str] = None
    notes: Optional[str] = None
    description: Optional[str] = None


class AdvancePaymentCreateRequest(AdvancePaymentInput):
    """Request body for POST /v1/advance-payments"""

    customer_id: str = Field(..., min_length=1)
    customer_type: CustomerType
    created_by: str = Field(..., min_length=1)
    invoice_number: Optional[str] = None
    status: PaymentStatus = PaymentStatus.COMPLETED


class AdvancePaymentUpdateRequest(BaseModel):
    """Request body for PATCH /v1/advance-payments/{payment_id}"""

    model_config = ConfigDict(extra="forbid")

    amount: Optional[Decimal] = Field(None, gt=0, max_digits=12, decimal_places=2)
    payment_date: Optional[date] = None
    payment_method: Optional[PaymentMethod] = None
    payment_reference: Optional[str] = None
    notes: Optional[str] = None
    description: Optional[str] = None
    updated_by: str = Field("system", min_length=1)


class ApplyRequest(BaseModel):
    """Request body for POST /v1/advance-payments/{payment_id}/apply"""

    applied_by: str = Field(..., min_length=1)


class ApplicationSchema(BaseModel):
    billing_id: str
    invoice_number: str
    applied_amount: Decimal


class AutoApplySchema(BaseModel):
    applied: bool
    total_applied: Decimal
    remaining: Decimal
    applications: List[ApplicationSchema]
    message: Optional[str] = None


class AllocationSchema(BaseModel):
    id: int
    billing_id: str
    applied_amount: Decimal
    applied_by: str
    applied_at: datetime


class AdvancePaymentSchema(BaseModel):
    id: str
    customer_id: str
    customer_type: CustomerType
    amount: Decimal
    payment_date: date
    payment_method: str
    payment_reference: Optional[str] = None
    notes: Optional[str] = None
    description: Optional[str] = None
    receipt_number: str
    invoice_number: Optional[str] = None
    created_by: str
    status: str


class AdvancePaymentResponse(BaseModel):
    """Response for POST /v1/advance-payments"""

    payment: AdvancePaymentSchema
    auto_apply: Optional[AutoApplySchema] = None
    auto_apply_failed: bool = False
    notifications: List[NotificationSchema]


class ReversalSchema(BaseModel):
    allocation_id: int
    billing_id: str
    amount: Decimal
    remaining_applied: Decimal


class AdvancePaymentUpdateResponse(BaseModel):
    """Response for PATCH /v1/advance-payments/{payment_id}"""

    payment: AdvancePaymentSchema
    old_amount: Decimal
    total_applied: Decimal
    was_over_applied: bool
    reversals: List[ReversalSchema]
    message: str
    reapply: Optional[AutoApplySchema] = None
    notifications: List[NotificationSchema]


class ApplyResponse(BaseModel):
    """Response for POST /v1/advance-payments/{payment_id}/apply"""

    result: AutoApplySchema
    notifications: List[NotificationSchema]


class PaymentUtilizationResponse(BaseModel):
    """Response for GET /v1/advance-payments/{payment_id}"""

    payment: AdvancePaymentSchema
    allocations: List[AllocationSchema]
    total_applied: Decimal
    available_balance: Decimal
    is_fully_utilized: bool


# Billings

class BillingCreateRequest(BaseModel):
    """Request body for POST /v1/billings"""

    customer_id: str = Field(..., min_length=1)
    customer_type: CustomerType
    service_date: date = Field(default_factory=date.today)
    typing_charges: Decimal = Field(Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    government_charges: Decimal = Field(Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    description: Optional[str] = None


class BillingSchema(BaseModel):
    id: str
    customer_id: str
    customer_type: CustomerType
    invoice_number: str
    service_date: date
    description: Optional[str] = None
    typing_charges: Decimal
    government_charges: Decimal
    vat_amount: Decimal
    total_amount_due: Decimal
    amount_paid: Decimal
    balance_due: Decimal
    status: str


class BillingListResponse(BaseModel):
    customer_id: str
    customer_type: CustomerType
    billings: List[BillingSchema]


# Customers

class CustomerFields(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    email: Optional[str] = None
    phone: Optional[str] = None
    credit_limit: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    credit_limit_days: Optional[int] = Field(None, gt=0)
    trade_license_number: Optional[str] = None
    nationality: Optional[str] = None


class CustomerRegisterRequest(CustomerFields):
    """Request body for POST /v1/customers"""

    customer_type: CustomerType
    name: str = Field(..., min_length=1)
    credit_limit: Decimal = Field(Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    registered_by: str = Field(..., min_length=1)
    advance_payment: Optional[AdvancePaymentInput] = None


class CustomerUpdateRequest(CustomerFields):
    """Request body for PATCH /v1/customers/{customer_type}/{customer_id}"""

    updated_by: str = Field(..., min_length=1)
    advance_payment: Optional[AdvancePaymentInput] = None


class CustomerSchema(BaseModel):
    id: str
    customer_type: CustomerType
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    credit_limit: Decimal
    credit_limit_days: int
    trade_license_number: Optional[str] = None
    nationality: Optional[str] = None


class CustomerResponse(BaseModel):
    """Response for customer registration and edits"""

    customer: CustomerSchema
    advance_payment: Optional[AdvancePaymentResponse] = None
    notifications: List[NotificationSchema]


class CreditUsageResponse(BaseModel):
    """Response for GET /v1/customers/{customer_type}/{customer_id}/credit-usage"""

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
