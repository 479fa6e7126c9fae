from sqlalchemy.exc import DataError, IntegrityError, OperationalError

from urbanplan.errors import (
    ConstraintViolation,
    TransactionConflict,
    ValidationError,
    translate_db_error,
)


class PgError(Exception):
    def __init__(self, message, pgcode):
        super().__init__(message)
        self.pgcode = pgcode


def test_unique_violation_is_constraint_violation():
    exc = IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed: users.email"))
    assert isinstance(translate_db_error(exc), ConstraintViolation)


def test_date_order_check_is_validation_error():
    exc = IntegrityError(
        "UPDATE", {}, Exception("CHECK constraint failed: ck_projects_date_order")
    )
    assert isinstance(translate_db_error(exc), ValidationError)


def test_locked_database_is_transaction_conflict():
    exc = OperationalError("UPDATE", {}, Exception("database is locked"))
    assert isinstance(translate_db_error(exc), TransactionConflict)


def test_postgres_serialization_failure_is_transaction_conflict():
    exc = OperationalError("UPDATE", {}, PgError("could not serialize access", "40001"))
    assert isinstance(translate_db_error(exc), TransactionConflict)
    exc = OperationalError("UPDATE", {}, PgError("deadlock detected", "40P01"))
    assert isinstance(translate_db_error(exc), TransactionConflict)


def test_numeric_overflow_is_constraint_violation():
    exc = DataError("UPDATE", {}, PgError("integer out of range", "22003"))
    assert isinstance(translate_db_error(exc), ConstraintViolation)


def test_unrelated_errors_are_not_translated():
    assert translate_db_error(OperationalError("SELECT", {}, Exception("no such table"))) is None
    assert translate_db_error(ValueError("boom")) is None
