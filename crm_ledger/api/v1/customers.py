"""Customer registration/edit endpoints and credit usage"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request

from crm_ledger.api.dependencies import get_customer_service, get_notification_sink, get_request_id
from crm_ledger.api.errors import parse_uuid, to_http_error
from crm_ledger.api.v1.schemas import (
    CreditUsageResponse,
    CustomerRegisterRequest,
    CustomerResponse,
    CustomerUpdateRequest,
)
from crm_ledger.api.v1.serializers import customer_schema, notifications, recorded_payment_response
from crm_ledger.domain.exceptions import DomainException
from crm_ledger.domain.models import CustomerType
from crm_ledger.infrastructure.messaging.notifications import CollectingNotificationSink
from crm_ledger.services.customers import TYPE_FIELDS, CustomerService
from crm_ledger.services.outbox import deliver_event

router = APIRouter()


def _advance_payload(advance_payment) -> Optional[dict]:
    if advance_payment is None:
        return None
    data = advance_payment.model_dump(exclude_none=True)
    data["payment_method"] = advance_payment.payment_method.value
    return data


@router.post("/customers", response_model=CustomerResponse, status_code=201)
def register_customer(
    request_body: CustomerRegisterRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    service: CustomerService = Depends(get_customer_service),
    sink: CollectingNotificationSink = Depends(get_notification_sink),
):
    """Register a company or individual, optionally with an advance payment"""
    customer_type = request_body.customer_type
    fields = request_body.model_dump(
        exclude_none=True,
        include=TYPE_FIELDS[customer_type],
    )

    try:
        customer, recorded = service.register(
            customer_type, fields, _advance_payload(request_body.advance_payment), request_body.registered_by
        )
    except DomainException as e:
        raise to_http_error(e, get_request_id(request))

    if recorded is not None:
        for event_id in recorded.outbox_event_ids:
            background_tasks.add_task(deliver_event, event_id)

    return CustomerResponse(
        customer=customer_schema(customer),
        advance_payment=recorded_payment_response(recorded, None) if recorded else None,
        notifications=notifications(sink),
    )


@router.patch("/customers/{customer_type}/{customer_id}", response_model=CustomerResponse)
def update_customer(
    customer_type: CustomerType,
    customer_id: str,
    request_body: CustomerUpdateRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    service: CustomerService = Depends(get_customer_service),
    sink: CollectingNotificationSink = Depends(get_notification_sink),
):
    """Edit a customer, optionally recording an advance payment"""
    customer_uuid = parse_uuid(customer_id, "customer")
    submitted = request_body.model_dump(exclude_unset=True, exclude={"updated_by", "advance_payment"})

    try:
        customer, recorded = service.update(
            customer_type,
            customer_uuid,
            submitted,
            _advance_payload(request_body.advance_payment),
            request_body.updated_by,
        )
    except DomainException as e:
        raise to_http_error(e, get_request_id(request))

    if recorded is not None:
        for event_id in recorded.outbox_event_ids:
            background_tasks.add_task(deliver_event, event_id)

    return CustomerResponse(
        customer=customer_schema(customer),
        advance_payment=recorded_payment_response(recorded, None) if recorded else None,
        notifications=notifications(sink),
    )


@router.get("/customers/{customer_type}/{customer_id}/credit-usage", response_model=CreditUsageResponse)
def get_credit_usage(
    customer_type: CustomerType,
    customer_id: str,
    request: Request,
    as_of: Optional[date] = Query(None, description="Evaluate overdue billings as of this date"),
    service: CustomerService = Depends(get_customer_service),
):
    """Outstanding balance against the credit limit"""
    try:
        usage = service.credit_usage(parse_uuid(customer_id, "customer"), customer_type, today=as_of)
    except DomainException as e:
        raise to_http_error(e, get_request_id(request))

    return CreditUsageResponse(
        customer_id=usage.customer_id,
        customer_type=usage.customer_type,
        credit_limit=usage.credit_limit,
        credit_limit_days=usage.credit_limit_days,
        total_billed=usage.total_billed,
        total_paid=usage.total_paid,
        total_outstanding=usage.total_outstanding,
        available_credit=usage.available_credit,
        utilization_percent=usage.utilization_percent,
        overdue_amount=usage.overdue_amount,
        unapplied_advance=usage.unapplied_advance,
    )
