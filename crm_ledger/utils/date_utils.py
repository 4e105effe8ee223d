"""Date manipulation utilities"""

from datetime import date, datetime, timedelta, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def overdue_cutoff(today: date, credit_limit_days: int) -> date:
    """Billings serviced before this date are past their credit period"""
    return today - timedelta(days=credit_limit_days)
