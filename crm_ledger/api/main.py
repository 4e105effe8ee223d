"""FastAPI application factory"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from sqlalchemy.exc import SQLAlchemyError
from starlette.responses import Response

from crm_ledger.api.middleware import RequestIDMiddleware, MetricsMiddleware
from crm_ledger.api.v1 import billings, customers, payments
from crm_ledger.config import settings
from crm_ledger.infrastructure.database.session import session_scope
from crm_ledger.infrastructure.observability.logging import setup_logging
from crm_ledger.services.outbox import deliver_pending

setup_logging(settings.log_level)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Resend ledger events left undelivered by a previous run"""
    if settings.ledger_webhook_url:
        try:
            with session_scope() as db:
                delivered = await deliver_pending(db)
            logger.info("Outbox sweep finished", extra={"step": "outbox_sweep", "delivered": delivered})
        except SQLAlchemyError as e:
            logger.error(f"Outbox sweep skipped: {e}", extra={"step": "outbox_sweep"})
    yield


def create_app() -> FastAPI:
    app = FastAPI(
        title="CRM Ledger",
        description="Advance payments, billings and credit-ledger reconciliation",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Last added runs first: request id must exist before metrics/handlers
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name, "currency": settings.currency}

    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(customers.router, prefix="/v1", tags=["customers"])
    app.include_router(billings.router, prefix="/v1", tags=["billings"])
    app.include_router(payments.router, prefix="/v1", tags=["advance-payments"])

    return app


app = create_app()
