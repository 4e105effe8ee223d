"""Billing creation with VAT and invoice numbering"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crm_ledger.config import settings
from crm_ledger.domain.allocation import calculate_billing_charges
from crm_ledger.domain.exceptions import CustomerNotFoundError
from crm_ledger.domain.models import CustomerType
from crm_ledger.infrastructure.database.errors import describe_persistence_error
from crm_ledger.infrastructure.database.models import Billing
from crm_ledger.infrastructure.database.repositories import BillingRepository, CustomerRepository


def create_billing(
    db: Session,
    customer_id: uuid.UUID,
    customer_type: CustomerType,
    service_date: date,
    typing_charges: Decimal,
    government_charges: Decimal,
    description: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> Billing:
    """Raise an invoice; surplus advance payments are not applied automatically"""
    customer_type = CustomerType(customer_type)
    if CustomerRepository(db).get_customer(customer_id, customer_type) is None:
        raise CustomerNotFoundError(f"{customer_type.value.capitalize()} {customer_id} not found")

    charges = calculate_billing_charges(typing_charges, government_charges, settings.vat_rate)
    repo = BillingRepository(db)
    try:
        billing = repo.create_billing(
            customer_id=customer_id,
            customer_type=customer_type,
            invoice_number=repo.next_invoice_number(settings.invoice_prefix, service_date.year),
            service_date=service_date,
            charges=charges,
            description=description,
            created_at=created_at,
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise describe_persistence_error(e) from e
    return billing


def list_billings(db: Session, customer_id: uuid.UUID, customer_type: CustomerType) -> List[Billing]:
    return BillingRepository(db).list_billings_by_customer(customer_id, CustomerType(customer_type))
