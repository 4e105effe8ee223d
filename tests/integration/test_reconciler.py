"""Integration tests for applying and correcting advance payments against the database"""

import uuid
import pytest
from decimal import Decimal
from crm_ledger.domain.exceptions import LedgerInconsistency, PaymentNotFoundError, ValidationError
from crm_ledger.domain.models import CustomerType
from crm_ledger.infrastructure.database.models import Billing, BillingAllocation
from crm_ledger.infrastructure.database.repositories import AllocationRepository
from crm_ledger.services.reconciler import AdvancePaymentReconciler


def apply(db, payment, customer_type=CustomerType.COMPANY):
    result = AdvancePaymentReconciler(db).auto_apply(payment.id, payment.customer_id, customer_type, "staff-1")
    db.commit()
    return result


def test_auto_apply_oldest_billing_first(db, company, make_billing, make_payment):
    """Billings 500 and 300, payment 650: oldest paid in full, second partially"""
    b1 = make_billing(company, "500.00", age_days=2)
    b2 = make_billing(company, "300.00", age_days=1)
    payment = make_payment(company, "650.00")

    result = apply(db, payment)

    assert result.applied is True
    assert result.total_applied == Decimal("650.00")
    assert result.remaining == Decimal("0.00")
    assert [a.billing_id for a in result.applications] == [str(b1.id), str(b2.id)]
    assert [a.applied_amount for a in result.applications] == [Decimal("500.00"), Decimal("150.00")]

    db.refresh(b1)
    db.refresh(b2)
    assert (b1.amount_paid, b1.status) == (Decimal("500.00"), "paid")
    assert (b2.amount_paid, b2.status) == (Decimal("150.00"), "partially_paid")


def test_auto_apply_partial_second_billing(db, company, make_billing, make_payment):
    """B1 and B2 of 100 each, payment 150: B1 cleared, B2 gets 50"""
    b1 = make_billing(company, "100.00", age_days=2)
    b2 = make_billing(company, "100.00", age_days=1)
    payment = make_payment(company, "150.00")

    apply(db, payment)

    db.refresh(b1)
    db.refresh(b2)
    assert (b1.amount_paid, b1.status) == (Decimal("100.00"), "paid")
    assert (b2.amount_paid, b2.status) == (Decimal("50.00"), "partially_paid")
    assert AllocationRepository(db).total_applied(payment.id) <= payment.amount


def test_auto_apply_uses_creation_order_not_invoice_number(db, company, make_billing, make_payment):
    """A billing created earlier is cleared first even with a later invoice number"""
    newer = make_billing(company, "100.00", age_days=1)
    older = make_billing(company, "100.00", age_days=5)
    payment = make_payment(company, "100.00")

    result = apply(db, payment)

    assert [a.billing_id for a in result.applications] == [str(older.id)]
    db.refresh(newer)
    assert newer.status == "unpaid"


def test_auto_apply_surplus_stays_on_payment(db, company, make_billing, make_payment):
    make_billing(company, "120.00")
    payment = make_payment(company, "300.00")

    result = apply(db, payment)

    assert result.total_applied == Decimal("120.00")
    assert result.remaining == Decimal("180.00")
    assert AllocationRepository(db).total_applied(payment.id) == Decimal("120.00")


def test_auto_apply_without_billings(db, company, make_payment):
    payment = make_payment(company, "300.00")

    result = apply(db, payment)

    assert result.applied is False
    assert result.remaining == Decimal("300.00")
    assert result.message == "No unpaid billings to apply to"


def test_auto_apply_only_touches_own_billings(db, company, individual, make_billing, make_payment):
    other = make_billing(individual, "100.00", age_days=10)
    own = make_billing(company, "100.00")
    payment = make_payment(company, "500.00")

    result = apply(db, payment)

    assert [a.billing_id for a in result.applications] == [str(own.id)]
    db.refresh(other)
    assert other.amount_paid == Decimal("0.00")


def test_auto_apply_is_idempotent(db, company, make_billing, make_payment):
    """A second run on the same payment creates no new allocations"""
    make_billing(company, "200.00", age_days=2)
    make_billing(company, "200.00", age_days=1)
    payment = make_payment(company, "250.00")
    apply(db, payment)

    second = apply(db, payment)

    assert second.applied is False
    assert second.message == "Advance payment already applied"
    assert second.remaining == Decimal("0.00")
    assert db.query(BillingAllocation).count() == 2
    assert AllocationRepository(db).total_applied(payment.id) == Decimal("250.00")


def test_auto_apply_skips_cancelled_payment(db, company, make_billing, make_payment):
    make_billing(company, "100.00")
    payment = make_payment(company, "100.00", status="cancelled")

    result = apply(db, payment)

    assert result.applied is False
    assert db.query(BillingAllocation).count() == 0


def test_auto_apply_rejects_other_customer(db, company, individual, make_payment):
    payment = make_payment(company, "100.00")

    with pytest.raises(ValidationError):
        AdvancePaymentReconciler(db).auto_apply(payment.id, individual.id, CustomerType.INDIVIDUAL, "staff-1")


def test_auto_apply_unknown_payment(db, company):
    with pytest.raises(PaymentNotFoundError):
        AdvancePaymentReconciler(db).auto_apply(uuid.uuid4(), company.id, CustomerType.COMPANY, "staff-1")


def test_paid_amount_never_exceeds_total(db, company, make_billing, make_payment):
    """Two payments against the same billings never overpay any of them"""
    make_billing(company, "100.00", age_days=2)
    make_billing(company, "100.00", age_days=1)
    apply(db, make_payment(company, "150.00"))
    apply(db, make_payment(company, "150.00"))

    for billing in db.query(Billing).all():
        assert billing.amount_paid <= billing.total_amount_due
        assert billing.status == "paid"


def test_apply_remaining_uses_only_surplus(db, company, make_billing, make_payment):
    make_billing(company, "100.00", age_days=3)
    payment = make_payment(company, "250.00")
    apply(db, payment)
    later = make_billing(company, "200.00", age_days=0)

    result = AdvancePaymentReconciler(db).apply_remaining(payment.id, "staff-2")
    db.commit()

    assert result.total_applied == Decimal("150.00")
    assert [a.billing_id for a in result.applications] == [str(later.id)]
    assert AllocationRepository(db).total_applied(payment.id) == Decimal("250.00")

    nothing = AdvancePaymentReconciler(db).apply_remaining(payment.id, "staff-2")
    assert nothing.applied is False
    assert nothing.message == "Advance payment fully utilized"


def test_correction_reduces_most_recent_allocation(db, company, make_billing, make_payment):
    """Receipt 200 applied 100/100 corrected to 120: B2 drops to 20, B1 untouched"""
    b1 = make_billing(company, "100.00", age_days=2)
    b2 = make_billing(company, "100.00", age_days=1)
    payment = make_payment(company, "200.00")
    apply(db, payment)

    result = AdvancePaymentReconciler(db).update_advance_payment(payment.id, {"amount": "120.00"}, "staff-1")
    db.commit()

    assert result.was_over_applied is True
    assert result.old_amount == Decimal("200.00")
    assert result.total_applied == Decimal("200.00")
    assert len(result.reversals) == 1
    assert "open again" in result.message

    db.refresh(b1)
    db.refresh(b2)
    assert (b1.amount_paid, b1.status) == (Decimal("100.00"), "paid")
    assert (b2.amount_paid, b2.status) == (Decimal("20.00"), "partially_paid")
    assert AllocationRepository(db).total_applied(payment.id) == Decimal("120.00")
    assert payment.amount == Decimal("120.00")


def test_correction_removes_allocations_entirely(db, company, make_billing, make_payment):
    b1 = make_billing(company, "100.00", age_days=2)
    b2 = make_billing(company, "100.00", age_days=1)
    payment = make_payment(company, "200.00")
    apply(db, payment)

    AdvancePaymentReconciler(db).update_advance_payment(payment.id, {"amount": "50.00"}, "staff-1")
    db.commit()

    db.refresh(b1)
    db.refresh(b2)
    assert (b1.amount_paid, b1.status) == (Decimal("50.00"), "partially_paid")
    assert (b2.amount_paid, b2.status) == (Decimal("0.00"), "unpaid")
    allocations = AllocationRepository(db).list_allocations(payment.id)
    assert [(a.billing_id, a.applied_amount) for a in allocations] == [(b1.id, Decimal("50.00"))]


def test_correction_within_applied_total_is_plain_update(db, company, make_billing, make_payment):
    make_billing(company, "100.00")
    payment = make_payment(company, "300.00")
    apply(db, payment)

    result = AdvancePaymentReconciler(db).update_advance_payment(
        payment.id, {"amount": "150.00", "notes": "Cheque re-counted"}, "staff-1"
    )
    db.commit()

    assert result.was_over_applied is False
    assert result.reversals == []
    assert payment.notes == "Cheque re-counted"
    assert AllocationRepository(db).total_applied(payment.id) == Decimal("100.00")


def test_correction_refuses_unrepairable_ledger(db, company, make_billing, make_payment):
    """A billing that cannot give back its share aborts the correction untouched"""
    b1 = make_billing(company, "100.00", age_days=2)
    b2 = make_billing(company, "100.00", age_days=1)
    payment = make_payment(company, "200.00")
    apply(db, payment)

    # B2 was edited by hand and only shows 30 paid
    b2.amount_paid = Decimal("30.00")
    b2.status = "partially_paid"
    db.commit()

    with pytest.raises(LedgerInconsistency) as exc_info:
        AdvancePaymentReconciler(db).update_advance_payment(payment.id, {"amount": "50.00"}, "staff-1")
    db.rollback()

    error = exc_info.value
    assert error.billing_id == b2.id
    assert error.amount_to_reverse == Decimal("100.00")
    assert error.billing_amount_paid == Decimal("30.00")

    db.refresh(payment)
    db.refresh(b1)
    assert payment.amount == Decimal("200.00")
    assert b1.amount_paid == Decimal("100.00")
    assert AllocationRepository(db).total_applied(payment.id) == Decimal("200.00")


def test_correction_validation(db, company, make_payment):
    payment = make_payment(company, "100.00")
    reconciler = AdvancePaymentReconciler(db)

    with pytest.raises(ValidationError):
        reconciler.update_advance_payment(payment.id, {"amount": "0"}, "staff-1")
    with pytest.raises(ValidationError):
        reconciler.update_advance_payment(payment.id, {"amount": "abc"}, "staff-1")
    with pytest.raises(ValidationError):
        reconciler.update_advance_payment(payment.id, {"receipt_number": "RCP-2026-999"}, "staff-1")
    with pytest.raises(ValidationError):
        reconciler.update_advance_payment(payment.id, {"payment_method": "barter"}, "staff-1")
    with pytest.raises(ValidationError):
        reconciler.update_advance_payment(payment.id, {}, "staff-1")
