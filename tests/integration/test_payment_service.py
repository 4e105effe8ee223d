"""Integration tests for the advance payment workflow"""

import pytest
from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock
from sqlalchemy import event
from sqlalchemy.exc import OperationalError
from crm_ledger.domain.exceptions import CustomerNotFoundError, LedgerInconsistency, ValidationError
from crm_ledger.domain.models import CustomerType
from crm_ledger.infrastructure.database.models import AdvancePayment, BillingAllocation, OutboundEvent
from crm_ledger.infrastructure.database.repositories import AllocationRepository, BillingRepository
from crm_ledger.infrastructure.messaging.events import ADVANCE_PAYMENT_UPDATED, EventBus
from crm_ledger.services.payments import AdvancePaymentService

WEBHOOK_URL = "http://ledger.test/events"


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def service(db, sink, bus) -> AdvancePaymentService:
    return AdvancePaymentService(db, sink, events=bus, webhook_url="", request_id="test-request")


def record(service, customer, amount, **kwargs):
    return service.record_advance_payment(
        customer_id=customer.id,
        customer_type=CustomerType.COMPANY,
        amount=amount,
        payment_date=kwargs.pop("payment_date", date(2026, 2, 1)),
        payment_method=kwargs.pop("payment_method", "bank_transfer"),
        created_by="staff-1",
        **kwargs,
    )


def test_record_applies_and_notifies(service, sink, company, make_billing):
    make_billing(company, "500.00", age_days=2)
    make_billing(company, "300.00", age_days=1)

    recorded = record(service, company, "650.00")

    assert recorded.payment.receipt_number == "RCP-2026-001"
    assert recorded.auto_apply.total_applied == Decimal("650.00")
    assert recorded.auto_apply_failed is False
    assert len(sink.notifications) == 1
    assert sink.notifications[0].kind == "success"
    assert "RCP-2026-001" in sink.notifications[0].message
    assert "2 billing(s)" in sink.notifications[0].message


def test_receipt_numbers_increment(service, company):
    first = record(service, company, "10.00")
    second = record(service, company, "20.00")
    next_year = record(service, company, "30.00", payment_date=date(2027, 1, 3))

    assert first.payment.receipt_number == "RCP-2026-001"
    assert second.payment.receipt_number == "RCP-2026-002"
    assert next_year.payment.receipt_number == "RCP-2027-001"


def test_record_without_billings_keeps_balance(service, sink, company):
    recorded = record(service, company, "400.00")

    assert recorded.auto_apply.applied is False
    assert "No unpaid billings" in sink.notifications[0].message


def test_record_validation(service, db, company):
    with pytest.raises(ValidationError):
        record(service, company, "0")
    with pytest.raises(ValidationError):
        record(service, company, "-5")
    with pytest.raises(ValidationError):
        record(service, company, "ten")
    with pytest.raises(ValidationError):
        record(service, company, "10.00", payment_method="barter")

    assert db.query(AdvancePayment).count() == 0


def test_record_unknown_customer(service, individual):
    # Individual id looked up as a company
    with pytest.raises(CustomerNotFoundError):
        record(service, individual, "10.00")


def test_cancelled_payment_is_not_applied(service, db, company, make_billing):
    make_billing(company, "100.00")

    recorded = record(service, company, "100.00", status="cancelled")

    assert recorded.auto_apply is None
    assert db.query(BillingAllocation).count() == 0


def test_auto_apply_failure_keeps_payment(service, db, sink, company, make_billing, monkeypatch):
    """Allocation loop failing midway rolls back every allocation; the payment stands"""
    b1 = make_billing(company, "100.00", age_days=2)
    b2 = make_billing(company, "100.00", age_days=1)

    original = AllocationRepository.create_allocation
    calls = {"n": 0}

    def flaky(self, *args, **kwargs):
        calls["n"] += 1
        if calls["n"] == 2:
            raise OperationalError("INSERT INTO billing_allocation", {}, Exception("connection lost"))
        return original(self, *args, **kwargs)

    monkeypatch.setattr(AllocationRepository, "create_allocation", flaky)

    recorded = record(service, company, "200.00")

    assert recorded.auto_apply_failed is True
    assert recorded.auto_apply is None
    assert db.query(AdvancePayment).count() == 1
    assert db.query(BillingAllocation).count() == 0
    db.refresh(b1)
    db.refresh(b2)
    assert b1.amount_paid == Decimal("0.00")
    assert b1.status == "unpaid"

    kinds = [n.kind for n in sink.notifications]
    assert kinds == ["success", "warning"]
    assert "apply manually" in sink.notifications[1].message


def test_auto_apply_failure_with_database_unreachable(service, db, sink, bus, company, make_billing, monkeypatch):
    """Every statement fails once the billing fetch fails; the payment is still reported with a warning"""
    make_billing(company, "100.00")
    handler = MagicMock()
    bus.subscribe(ADVANCE_PAYMENT_UPDATED, handler)
    engine = db.get_bind()
    down = {"flag": False}

    def refuse(conn, cursor, statement, parameters, context, executemany):
        if down["flag"]:
            raise OperationalError(statement, parameters, Exception("server closed the connection"))

    def unreachable(self, *args, **kwargs):
        down["flag"] = True
        raise OperationalError("SELECT billing", {}, Exception("server closed the connection"))

    monkeypatch.setattr(BillingRepository, "list_unpaid_billings", unreachable)
    event.listen(engine, "before_cursor_execute", refuse)
    try:
        recorded = record(service, company, "100.00")
    finally:
        event.remove(engine, "before_cursor_execute", refuse)

    assert recorded.auto_apply_failed is True
    assert recorded.payment.receipt_number == "RCP-2026-001"
    assert [n.kind for n in sink.notifications] == ["success", "warning"]
    assert "apply manually" in sink.notifications[1].message
    assert "RCP-2026-001" in sink.notifications[1].message
    assert handler.call_args.args[0].payment["receipt_number"] == "RCP-2026-001"
    assert db.query(AdvancePayment).count() == 1
    assert db.query(BillingAllocation).count() == 0


def test_manual_apply_after_failure(service, db, company, make_billing, monkeypatch):
    make_billing(company, "100.00")

    def broken(self, *args, **kwargs):
        raise OperationalError("INSERT INTO billing_allocation", {}, Exception("timeout"))

    monkeypatch.setattr(AllocationRepository, "create_allocation", broken)
    recorded = record(service, company, "100.00")
    monkeypatch.undo()

    result = service.apply_remaining(recorded.payment.id, "staff-2")

    assert result.applied is True
    assert result.total_applied == Decimal("100.00")


def test_events_published_on_record_and_correction(service, bus, company):
    handler = MagicMock()
    bus.subscribe(ADVANCE_PAYMENT_UPDATED, handler)

    recorded = record(service, company, "100.00")
    service.correct_advance_payment(recorded.payment.id, {"notes": "Ref added"}, "staff-1")

    actions = [call.args[0].action for call in handler.call_args_list]
    assert actions == ["created", "updated"]
    event = handler.call_args_list[0].args[0]
    assert event.customer_id == str(company.id)
    assert event.payment["amount"] == "100.00"
    assert bus.last_published(ADVANCE_PAYMENT_UPDATED) is not None


def test_outbox_written_with_payment(db, sink, bus, company):
    service = AdvancePaymentService(db, sink, events=bus, webhook_url=WEBHOOK_URL)

    recorded = record(service, company, "75.00")

    assert len(recorded.outbox_event_ids) == 1
    event = db.query(OutboundEvent).one()
    assert event.status == "pending"
    assert event.event_type == ADVANCE_PAYMENT_UPDATED
    assert event.target_url == WEBHOOK_URL
    assert event.payload["action"] == "created"
    assert event.payload["payment"]["receipt_number"] == recorded.payment.receipt_number


def test_no_outbox_without_webhook(service, db, company):
    recorded = record(service, company, "75.00")

    assert recorded.outbox_event_ids == []
    assert db.query(OutboundEvent).count() == 0


def test_correction_repair_is_prominent_warning(service, sink, company, make_billing):
    make_billing(company, "100.00", age_days=2)
    make_billing(company, "100.00", age_days=1)
    recorded = record(service, company, "200.00")
    sink.notifications.clear()

    corrected = service.correct_advance_payment(recorded.payment.id, {"amount": "120.00"}, "staff-1")

    assert corrected.update.was_over_applied is True
    assert len(sink.notifications) == 1
    assert sink.notifications[0].kind == "warning"
    assert sink.notifications[0].prominent is True
    assert "AED 200.00 had already been applied" in sink.notifications[0].message


def test_correction_inconsistency_rolls_back(service, db, sink, company, make_billing):
    make_billing(company, "100.00", age_days=2)
    b2 = make_billing(company, "100.00", age_days=1)
    recorded = record(service, company, "200.00")
    b2.amount_paid = Decimal("10.00")
    db.commit()
    sink.notifications.clear()

    with pytest.raises(LedgerInconsistency):
        service.correct_advance_payment(recorded.payment.id, {"amount": "50.00", "notes": "typo"}, "staff-1")

    payment = db.get(AdvancePayment, recorded.payment.id)
    assert payment.amount == Decimal("200.00")
    assert payment.notes is None
    assert AllocationRepository(db).total_applied(payment.id) == Decimal("200.00")
    assert sink.notifications[0].kind == "error"
    assert sink.notifications[0].prominent is True


def test_correction_increase_applies_surplus(service, db, sink, company, make_billing):
    make_billing(company, "100.00", age_days=2)
    recorded = record(service, company, "100.00")
    b2 = make_billing(company, "80.00", age_days=0)

    corrected = service.correct_advance_payment(recorded.payment.id, {"amount": "150.00"}, "staff-1")

    assert corrected.reapply.applied is True
    assert corrected.reapply.total_applied == Decimal("50.00")
    db.refresh(b2)
    assert (b2.amount_paid, b2.status) == (Decimal("50.00"), "partially_paid")
