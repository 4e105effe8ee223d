"""Credit usage calculation for customers"""

from datetime import date
from decimal import Decimal
from typing import Iterable, Sequence

from crm_ledger.domain.models import BillingStatus, CreditUsage, CustomerType
from crm_ledger.utils.date_utils import overdue_cutoff
from crm_ledger.utils.money import ZERO, to_money


def calculate_credit_usage(
    customer_id: str,
    customer_type: CustomerType,
    credit_limit: Decimal,
    credit_limit_days: int,
    billings: Sequence,
    unapplied_advances: Iterable[Decimal],
    today: date,
) -> CreditUsage:
    """
    Summarize a customer's outstanding balance against the credit limit.

    `billings` are objects exposing total_amount_due, amount_paid, status and
    service_date. Overdue means serviced before today - credit_limit_days and
    not yet fully paid.
    """
    credit_limit = to_money(credit_limit)
    cutoff = overdue_cutoff(today, credit_limit_days)

    total_billed = ZERO
    total_paid = ZERO
    total_outstanding = ZERO
    overdue = ZERO

    for billing in billings:
        due = to_money(billing.total_amount_due)
        paid = to_money(billing.amount_paid)
        total_billed += due
        total_paid += paid

        if billing.status == BillingStatus.PAID.value:
            continue

        balance = due - paid
        total_outstanding += balance
        if billing.service_date is not None and billing.service_date < cutoff:
            overdue += balance

    available = max(ZERO, credit_limit - total_outstanding)
    utilization = (
        to_money(total_outstanding * 100 / credit_limit) if credit_limit > ZERO else ZERO
    )

    return CreditUsage(
        customer_id=str(customer_id),
        customer_type=customer_type,
        credit_limit=credit_limit,
        credit_limit_days=credit_limit_days,
        total_billed=total_billed,
        total_paid=total_paid,
        total_outstanding=total_outstanding,
        available_credit=available,
        utilization_percent=utilization,
        overdue_amount=overdue,
        unapplied_advance=to_money(sum(unapplied_advances, ZERO)),
    )
