"""Advance payment allocation - core business logic for applying receipts to billings"""

from decimal import Decimal
from typing import List, Sequence, Tuple

from crm_ledger.domain.exceptions import ValidationError
from crm_ledger.domain.models import (
    AllocationReversal,
    AppliedAllocation,
    BillingCharges,
    BillingStatus,
    OpenBilling,
    PlannedAllocation,
)
from crm_ledger.utils.money import ZERO, to_money


def billing_status(total_amount_due: Decimal, amount_paid: Decimal) -> BillingStatus:
    """Status a billing must carry for the given paid amount"""
    if amount_paid <= ZERO:
        return BillingStatus.UNPAID
    if amount_paid >= total_amount_due:
        return BillingStatus.PAID
    return BillingStatus.PARTIALLY_PAID


def plan_allocations(
    billings: Sequence[OpenBilling],
    amount: Decimal,
) -> Tuple[List[PlannedAllocation], Decimal]:
    """
    Spread a payment over outstanding billings, oldest debt first.

    Requirements:
    - Billings arrive oldest first and are cleared in that order
    - A billing never receives more than its outstanding balance
    - Whatever cannot be placed stays on the payment as surplus

    Returns:
        (allocations in application order, unallocated remainder)

    Example:
        B1 due 500, B2 due 300, payment 650
        → [B1: 500 (paid), B2: 150 (partially_paid)], remainder 0
    """
    remaining = to_money(amount)
    if remaining <= ZERO:
        return [], ZERO

    planned: List[PlannedAllocation] = []
    for billing in billings:
        if remaining <= ZERO:
            break

        due = to_money(billing.total_amount_due) - to_money(billing.amount_paid)
        allocate = min(due, remaining)
        if allocate <= ZERO:
            continue

        new_paid = to_money(billing.amount_paid) + allocate
        planned.append(
            PlannedAllocation(
                billing_id=billing.billing_id,
                amount=allocate,
                new_amount_paid=new_paid,
                new_status=billing_status(to_money(billing.total_amount_due), new_paid),
            )
        )
        remaining -= allocate

    return planned, remaining


def plan_reversals(
    allocations: Sequence[AppliedAllocation],
    new_amount: Decimal,
) -> List[AllocationReversal]:
    """
    Shrink allocations until they fit a corrected receipt amount.

    Most recently applied allocations (highest id) are reduced first. Only the
    last allocation touched may be reduced partially; every earlier one in the
    walk is removed entirely.
    """
    new_amount = to_money(new_amount)
    if new_amount < ZERO:
        raise ValidationError("Receipt amount cannot be negative")

    excess = sum((to_money(a.applied_amount) for a in allocations), ZERO) - new_amount
    reversals: List[AllocationReversal] = []

    for allocation in sorted(allocations, key=lambda a: a.allocation_id, reverse=True):
        if excess <= ZERO:
            break

        applied = to_money(allocation.applied_amount)
        reduce_by = min(applied, excess)
        reversals.append(
            AllocationReversal(
                allocation_id=allocation.allocation_id,
                billing_id=allocation.billing_id,
                amount=reduce_by,
                remaining_applied=applied - reduce_by,
            )
        )
        excess -= reduce_by

    return reversals


def calculate_billing_charges(
    typing_charges: Decimal,
    government_charges: Decimal,
    vat_rate: Decimal,
) -> BillingCharges:
    """
    Compute billing totals.

    VAT applies to typing (service) charges only; government fees pass through
    untaxed.
    """
    typing = to_money(typing_charges)
    government = to_money(government_charges)
    if typing < ZERO or government < ZERO:
        raise ValidationError("Charges cannot be negative")
    if typing + government <= ZERO:
        raise ValidationError("Billing total must be greater than zero")

    vat = to_money(typing * vat_rate)
    return BillingCharges(
        typing_charges=typing,
        government_charges=government,
        vat_amount=vat,
        total_amount_due=typing + government + vat,
    )
