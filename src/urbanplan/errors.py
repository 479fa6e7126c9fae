"""Domain error taxonomy and translation of database failures.

Every failed write surfaces to callers as one of the exceptions below and has
no effect on the store. Driver exceptions raised by SQLAlchemy are mapped by
:func:`translate_db_error`.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy.exc import DataError, DBAPIError, IntegrityError, OperationalError

# Name of the CHECK constraint backing the project date-order rule.
DATE_ORDER_CONSTRAINT = "ck_projects_date_order"

# PostgreSQL SQLSTATE codes for serialization failure and deadlock.
_CONFLICT_SQLSTATES = {"40001", "40P01"}
_CONFLICT_MESSAGES = ("database is locked", "deadlock", "could not serialize")


class UrbanPlanError(Exception):
    """Base class for all domain errors."""


class ValidationError(UrbanPlanError):
    """A domain rule (project end date before start date) was violated."""


class ConstraintViolation(UrbanPlanError):
    """An enum, non-negative, reference or uniqueness constraint was violated."""


class NotFound(UrbanPlanError):
    """The targeted identifier does not exist."""


class TransactionConflict(UrbanPlanError):
    """The write lost a lock or serialization race; the caller should retry."""


def _is_conflict(exc: DBAPIError) -> bool:
    orig = exc.orig
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code in _CONFLICT_SQLSTATES:
        return True
    message = str(orig).lower()
    return any(fragment in message for fragment in _CONFLICT_MESSAGES)


def translate_db_error(exc: Exception) -> Optional[UrbanPlanError]:
    """Return the domain error for a database exception, or ``None``.

    ``None`` means the exception is not a recognised constraint or
    contention failure and should propagate unchanged.
    """

    if isinstance(exc, IntegrityError):
        detail = str(exc.orig)
        if DATE_ORDER_CONSTRAINT in detail:
            return ValidationError("end date cannot precede start date")
        return ConstraintViolation(detail)
    if isinstance(exc, DataError):
        # out-of-range integers and numeric overflow
        return ConstraintViolation(str(exc.orig))
    if isinstance(exc, (OperationalError, DBAPIError)) and _is_conflict(exc):
        return TransactionConflict(str(exc.orig))
    return None
