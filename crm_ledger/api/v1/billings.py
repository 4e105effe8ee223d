"""Billing endpoints"""

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from crm_ledger.api.dependencies import get_request_id
from crm_ledger.api.errors import parse_uuid, to_http_error
from crm_ledger.api.v1.schemas import BillingCreateRequest, BillingListResponse, BillingSchema
from crm_ledger.api.v1.serializers import billing_schema
from crm_ledger.domain.exceptions import DomainException
from crm_ledger.domain.models import CustomerType
from crm_ledger.infrastructure.database.session import get_db
from crm_ledger.services.billings import create_billing, list_billings

router = APIRouter()


@router.post("/billings", response_model=BillingSchema, status_code=201)
def post_billing(request_body: BillingCreateRequest, request: Request, db: Session = Depends(get_db)):
    """Raise an invoice; VAT applies to typing charges only"""
    customer_id = parse_uuid(request_body.customer_id, "customer")
    try:
        billing = create_billing(
            db,
            customer_id=customer_id,
            customer_type=request_body.customer_type,
            service_date=request_body.service_date,
            typing_charges=request_body.typing_charges,
            government_charges=request_body.government_charges,
            description=request_body.description,
        )
    except DomainException as e:
        raise to_http_error(e, get_request_id(request))
    return billing_schema(billing)


@router.get("/billings", response_model=BillingListResponse)
def get_billings(
    customer_id: str = Query(..., description="Customer identifier"),
    customer_type: CustomerType = Query(..., description="company or individual"),
    db: Session = Depends(get_db),
):
    """Billings of a customer, oldest first"""
    billings = list_billings(db, parse_uuid(customer_id, "customer"), customer_type)
    return BillingListResponse(
        customer_id=customer_id,
        customer_type=customer_type,
        billings=[billing_schema(b) for b in billings],
    )
