"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional
from pythonjsonlogger import jsonlogger

from crm_ledger.config import settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_auto_apply(
    payment_id: str,
    customer_id: str,
    applied: bool,
    total_applied: Decimal,
    billings_touched: int,
    remaining: Decimal,
    request_id: Optional[str] = None,
) -> None:
    """Log structured auto-apply outcome for reconciliation audits"""
    logging.info(
        "Advance payment auto-applied" if applied else "Advance payment left unapplied",
        extra={
            "request_id": request_id,
            "payment_id": payment_id,
            "customer_id": customer_id,
            "step": "auto_apply",
            "outcome": "applied" if applied else "nothing_to_apply",
            "total_applied": str(total_applied),
            "billings_touched": billings_touched,
            "remaining": str(remaining),
        },
    )


def log_correction(
    payment_id: str,
    old_amount: Decimal,
    new_amount: Decimal,
    total_applied: Decimal,
    was_over_applied: bool,
    reversals: int,
    request_id: Optional[str] = None,
) -> None:
    """Log a receipt correction; over-applied repairs are warnings"""
    level = logging.WARNING if was_over_applied else logging.INFO
    logging.log(
        level,
        "Over-applied receipt repaired" if was_over_applied else "Advance payment corrected",
        extra={
            "request_id": request_id,
            "payment_id": payment_id,
            "step": "correction",
            "old_amount": str(old_amount),
            "new_amount": str(new_amount),
            "total_applied": str(total_applied),
            "reversals": reversals,
        },
    )
