"""Advance payment endpoints - record, correct and apply receipts"""

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sqlalchemy.orm import Session

from crm_ledger.api.dependencies import get_notification_sink, get_payment_service, get_request_id
from crm_ledger.api.errors import parse_uuid, to_http_error
from crm_ledger.api.v1.schemas import (
    AdvancePaymentCreateRequest,
    AdvancePaymentResponse,
    AdvancePaymentUpdateRequest,
    AdvancePaymentUpdateResponse,
    AllocationSchema,
    ApplyRequest,
    ApplyResponse,
    PaymentUtilizationResponse,
    ReversalSchema,
)
from crm_ledger.api.v1.serializers import (
    auto_apply_schema,
    notifications,
    payment_schema,
    recorded_payment_response,
)
from crm_ledger.domain.exceptions import DomainException, LedgerInconsistency, PaymentNotFoundError
from crm_ledger.infrastructure.database.repositories import AllocationRepository, PaymentRepository
from crm_ledger.infrastructure.database.session import get_db
from crm_ledger.infrastructure.messaging.notifications import CollectingNotificationSink
from crm_ledger.services.outbox import deliver_event
from crm_ledger.services.payments import AdvancePaymentService
from crm_ledger.utils.money import ZERO, sum_money, to_money

router = APIRouter()


@router.post("/advance-payments", response_model=AdvancePaymentResponse, status_code=201)
def create_advance_payment(
    request_body: AdvancePaymentCreateRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    service: AdvancePaymentService = Depends(get_payment_service),
    sink: CollectingNotificationSink = Depends(get_notification_sink),
):
    """
    Record an advance payment and apply it to unpaid billings.

    Flow:
    1. Validate and store the payment (its own transaction)
    2. Apply to unpaid billings oldest first (separate transaction)
    3. Broadcast advancePaymentUpdated and queue the ledger webhook
    4. A failed auto-apply is reported as a warning; the payment stands
    """
    request_id = get_request_id(request)
    customer_id = parse_uuid(request_body.customer_id, "customer")

    try:
        recorded = service.record_advance_payment(
            customer_id=customer_id,
            customer_type=request_body.customer_type,
            amount=request_body.amount,
            payment_date=request_body.payment_date,
            payment_method=request_body.payment_method.value,
            created_by=request_body.created_by,
            payment_reference=request_body.payment_reference,
            notes=request_body.notes,
            description=request_body.description,
            invoice_number=request_body.invoice_number,
            status=request_body.status.value,
        )
    except DomainException as e:
        raise to_http_error(e, request_id)

    for event_id in recorded.outbox_event_ids:
        background_tasks.add_task(deliver_event, event_id)

    return recorded_payment_response(recorded, sink)


@router.get("/advance-payments/{payment_id}", response_model=PaymentUtilizationResponse)
def get_advance_payment(payment_id: str, request: Request, db: Session = Depends(get_db)):
    """Payment with its allocations and how much of it is still available"""
    payment_uuid = parse_uuid(payment_id, "payment")
    payment = PaymentRepository(db).get_payment(payment_uuid)
    if payment is None:
        raise to_http_error(PaymentNotFoundError(f"Advance payment {payment_id} not found"), get_request_id(request))

    allocations = AllocationRepository(db).list_allocations(payment.id)
    total_applied = sum_money(a.applied_amount for a in allocations)
    available = to_money(payment.amount) - total_applied

    return PaymentUtilizationResponse(
        payment=payment_schema(payment),
        allocations=[
            AllocationSchema(
                id=a.id,
                billing_id=str(a.billing_id),
                applied_amount=to_money(a.applied_amount),
                applied_by=a.applied_by,
                applied_at=a.applied_at,
            )
            for a in allocations
        ],
        total_applied=total_applied,
        available_balance=available,
        is_fully_utilized=available <= ZERO,
    )


@router.patch("/advance-payments/{payment_id}", response_model=AdvancePaymentUpdateResponse)
def update_advance_payment(
    payment_id: str,
    request_body: AdvancePaymentUpdateRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    service: AdvancePaymentService = Depends(get_payment_service),
    sink: CollectingNotificationSink = Depends(get_notification_sink),
):
    """
    Correct a payment after the fact.

    Over-applied receipts are repaired (most recent allocations reduced first)
    and reported in detail. A ledger that cannot be repaired returns 409 with
    every amount involved.
    """
    request_id = get_request_id(request)
    payment_uuid = parse_uuid(payment_id, "payment")
    updates = request_body.model_dump(exclude_unset=True, exclude={"updated_by"})
    if "payment_method" in updates and updates["payment_method"] is not None:
        updates["payment_method"] = updates["payment_method"].value

    try:
        corrected = service.correct_advance_payment(payment_uuid, updates, request_body.updated_by)
    except LedgerInconsistency as e:
        http_error = to_http_error(e, request_id)
        http_error.detail["notifications"] = sink.as_dicts()
        raise http_error
    except DomainException as e:
        raise to_http_error(e, request_id)

    for event_id in corrected.outbox_event_ids:
        background_tasks.add_task(deliver_event, event_id)

    update = corrected.update
    return AdvancePaymentUpdateResponse(
        payment=payment_schema(update.payment),
        old_amount=update.old_amount,
        total_applied=update.total_applied,
        was_over_applied=update.was_over_applied,
        reversals=[
            ReversalSchema(
                allocation_id=r.allocation_id,
                billing_id=str(r.billing_id),
                amount=r.amount,
                remaining_applied=r.remaining_applied,
            )
            for r in update.reversals
        ],
        message=update.message,
        reapply=auto_apply_schema(corrected.reapply),
        notifications=notifications(sink),
    )


@router.post("/advance-payments/{payment_id}/apply", response_model=ApplyResponse)
def apply_advance_payment(
    payment_id: str,
    request_body: ApplyRequest,
    request: Request,
    service: AdvancePaymentService = Depends(get_payment_service),
    sink: CollectingNotificationSink = Depends(get_notification_sink),
):
    """Apply whatever is left of a payment to the customer's unpaid billings"""
    request_id = get_request_id(request)
    payment_uuid = parse_uuid(payment_id, "payment")

    try:
        result = service.apply_remaining(payment_uuid, request_body.applied_by)
    except DomainException as e:
        raise to_http_error(e, request_id)

    return ApplyResponse(result=auto_apply_schema(result), notifications=notifications(sink))
