"""Dependency injection for FastAPI endpoints"""

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from crm_ledger.config import settings
from crm_ledger.infrastructure.database.session import get_db
from crm_ledger.infrastructure.messaging.events import EventBus, event_bus
from crm_ledger.infrastructure.messaging.notifications import CollectingNotificationSink
from crm_ledger.services.customers import CustomerService
from crm_ledger.services.payments import AdvancePaymentService


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_notification_sink(request: Request) -> CollectingNotificationSink:
    """Per-request sink; its notifications are returned in the response"""
    return CollectingNotificationSink(get_request_id(request))


def get_event_bus() -> EventBus:
    """Provide the process-wide event bus"""
    return event_bus


def get_payment_service(
    request: Request,
    db: Session = Depends(get_db),
    notifier: CollectingNotificationSink = Depends(get_notification_sink),
    events: EventBus = Depends(get_event_bus),
) -> AdvancePaymentService:
    """Advance payment workflow bound to the request's session and sink"""
    return AdvancePaymentService(
        db,
        notifier,
        events=events,
        webhook_url=settings.ledger_webhook_url or "",
        request_id=get_request_id(request),
    )


def get_customer_service(
    db: Session = Depends(get_db),
    notifier: CollectingNotificationSink = Depends(get_notification_sink),
    payments: AdvancePaymentService = Depends(get_payment_service),
) -> CustomerService:
    return CustomerService(db, payments, notifier)
