"""Translate SQLAlchemy failures into domain persistence errors"""

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from crm_ledger.domain.exceptions import PersistenceError


def describe_persistence_error(error: SQLAlchemyError) -> PersistenceError:
    """
    Best-effort classification of a backend failure.

    Postgres and SQLite word constraint failures differently; both mention the
    constraint kind somewhere in the driver message.
    """
    original = getattr(error, "orig", None)
    text = str(original if original is not None else error).lower()

    if isinstance(error, StaleDataError):
        return PersistenceError("Record was modified concurrently, please retry", kind="conflict")

    if isinstance(error, IntegrityError):
        if "foreign key" in text:
            return PersistenceError("Referenced record does not exist", kind="foreign_key")
        if "not null" in text or "null value" in text:
            return PersistenceError("A required field is missing", kind="not_null")
        if "unique" in text or "duplicate" in text:
            return PersistenceError("A record with the same number already exists", kind="unique")
        return PersistenceError("Data integrity violation", kind="integrity")

    if isinstance(error, OperationalError):
        return PersistenceError("Database unavailable", kind="unavailable")

    return PersistenceError(f"Database error: {error.__class__.__name__}", kind="unknown")
