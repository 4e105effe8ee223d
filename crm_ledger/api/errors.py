"""Map domain exceptions to HTTP errors"""

import logging
import uuid

from fastapi import HTTPException

from crm_ledger.domain.exceptions import (
    BillingNotFoundError,
    CustomerNotFoundError,
    DomainException,
    LedgerInconsistency,
    PaymentNotFoundError,
    PersistenceError,
    ValidationError,
)


def to_http_error(error: DomainException, request_id: str) -> HTTPException:
    """HTTPException for a domain failure, logged with the request id"""
    if isinstance(error, ValidationError):
        logging.warning(f"Validation failed: {error}", extra={"request_id": request_id})
        return HTTPException(status_code=422, detail=str(error))

    if isinstance(error, (CustomerNotFoundError, PaymentNotFoundError, BillingNotFoundError)):
        return HTTPException(status_code=404, detail=str(error))

    if isinstance(error, LedgerInconsistency):
        logging.error(f"Ledger inconsistency: {error}", extra={"request_id": request_id})
        return HTTPException(status_code=409, detail=error.to_dict())

    if isinstance(error, PersistenceError):
        logging.error(f"Persistence error ({error.kind}): {error}", extra={"request_id": request_id})
        status_code = 503 if error.kind == "unavailable" else 409 if error.kind == "conflict" else 500
        return HTTPException(status_code=status_code, detail=str(error))

    logging.error(f"Unexpected domain error: {error}", extra={"request_id": request_id})
    return HTTPException(status_code=500, detail="Internal server error")


def parse_uuid(value: str, label: str) -> uuid.UUID:
    """Path/body identifiers arrive as strings; malformed ones are a 400"""
    try:
        return uuid.UUID(value)
    except (ValueError, AttributeError, TypeError):
        raise HTTPException(status_code=400, detail=f"Invalid {label} ID format")
