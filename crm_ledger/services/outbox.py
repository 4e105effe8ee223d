"""Delivery of outbox events to the ledger webhook"""

import logging
import uuid
from typing import Optional

import httpx
from sqlalchemy.orm import Session, sessionmaker

from crm_ledger.infrastructure.clients.ledger import LedgerClient
from crm_ledger.infrastructure.database.models import OutboundEvent
from crm_ledger.infrastructure.database.repositories import OutboxRepository
from crm_ledger.infrastructure.database.session import SessionLocal, session_scope

logger = logging.getLogger(__name__)


async def _deliver(repo: OutboxRepository, event: OutboundEvent, client: LedgerClient) -> bool:
    try:
        await client.send_event(event.payload, target_url=event.target_url)
        delivered = True
    except httpx.HTTPError as e:
        logger.warning(
            f"Ledger webhook delivery failed: {e}",
            extra={"event_id": str(event.id), "event_type": event.event_type},
        )
        delivered = False
    repo.record_attempt(event, delivered)
    return delivered


async def deliver_event(
    event_id: uuid.UUID,
    client: Optional[LedgerClient] = None,
    session_factory: sessionmaker = SessionLocal,
) -> bool:
    """Background task: deliver one outbox event in its own session"""
    client = client or LedgerClient()
    with session_scope(session_factory) as db:
        repo = OutboxRepository(db)
        event = repo.get_event(event_id)
        if event is None or event.status == "delivered":
            return False
        return await _deliver(repo, event, client)


async def deliver_pending(db: Session, client: Optional[LedgerClient] = None, limit: int = 50) -> int:
    """Retry sweep over pending and failed events; returns how many were delivered"""
    client = client or LedgerClient()
    repo = OutboxRepository(db)
    delivered = 0
    for event in repo.list_undelivered(limit):
        if await _deliver(repo, event, client):
            delivered += 1
    db.commit()
    return delivered
