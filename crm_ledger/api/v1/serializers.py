"""Build response schemas from ORM rows and domain results"""

from typing import Optional

from crm_ledger.api.v1.schemas import (
    AdvancePaymentResponse,
    AdvancePaymentSchema,
    ApplicationSchema,
    AutoApplySchema,
    BillingSchema,
    CustomerSchema,
    NotificationSchema,
)
from crm_ledger.domain.models import AutoApplyResult
from crm_ledger.infrastructure.database.models import AdvancePayment, Billing, Company
from crm_ledger.infrastructure.messaging.notifications import CollectingNotificationSink
from crm_ledger.infrastructure.database.repositories import Customer
from crm_ledger.services.payments import RecordedPayment
from crm_ledger.utils.money import to_money


def payment_schema(payment: AdvancePayment) -> AdvancePaymentSchema:
    return AdvancePaymentSchema(
        id=str(payment.id),
        customer_id=str(payment.customer_id),
        customer_type=payment.customer_type,
        amount=to_money(payment.amount),
        payment_date=payment.payment_date,
        payment_method=payment.payment_method,
        payment_reference=payment.payment_reference,
        notes=payment.notes,
        description=payment.description,
        receipt_number=payment.receipt_number,
        invoice_number=payment.invoice_number,
        created_by=payment.created_by,
        status=payment.status,
    )


def auto_apply_schema(result: Optional[AutoApplyResult]) -> Optional[AutoApplySchema]:
    if result is None:
        return None
    return AutoApplySchema(
        applied=result.applied,
        total_applied=result.total_applied,
        remaining=result.remaining,
        applications=[
            ApplicationSchema(
                billing_id=a.billing_id,
                invoice_number=a.invoice_number,
                applied_amount=a.applied_amount,
            )
            for a in result.applications
        ],
        message=result.message,
    )


def notifications(sink: CollectingNotificationSink):
    return [NotificationSchema(**n) for n in sink.as_dicts()]


def recorded_payment_response(
    recorded: RecordedPayment,
    sink: Optional[CollectingNotificationSink],
) -> AdvancePaymentResponse:
    return AdvancePaymentResponse(
        payment=payment_schema(recorded.payment),
        auto_apply=auto_apply_schema(recorded.auto_apply),
        auto_apply_failed=recorded.auto_apply_failed,
        notifications=notifications(sink) if sink is not None else [],
    )


def billing_schema(billing: Billing) -> BillingSchema:
    total = to_money(billing.total_amount_due)
    paid = to_money(billing.amount_paid)
    return BillingSchema(
        id=str(billing.id),
        customer_id=str(billing.customer_id),
        customer_type=billing.customer_type,
        invoice_number=billing.invoice_number,
        service_date=billing.service_date,
        description=billing.description,
        typing_charges=to_money(billing.typing_charges),
        government_charges=to_money(billing.government_charges),
        vat_amount=to_money(billing.vat_amount),
        total_amount_due=total,
        amount_paid=paid,
        balance_due=total - paid,
        status=billing.status,
    )


def customer_schema(customer: Customer) -> CustomerSchema:
    is_company = isinstance(customer, Company)
    return CustomerSchema(
        id=str(customer.id),
        customer_type="company" if is_company else "individual",
        name=customer.name,
        email=customer.email,
        phone=customer.phone,
        credit_limit=to_money(customer.credit_limit),
        credit_limit_days=customer.credit_limit_days,
        trade_license_number=customer.trade_license_number if is_company else None,
        nationality=None if is_company else customer.nationality,
    )
