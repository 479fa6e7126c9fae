"""Closed value sets and column value coercion for the models."""

import enum
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional, Type, TypeVar

from .errors import ConstraintViolation

E = TypeVar("E", bound=enum.Enum)

# Range of the INTEGER columns (population, year).
INT32_MIN = -(2 ** 31)
INT32_MAX = 2 ** 31 - 1


class UserRole(str, enum.Enum):
    PLANNER = "planner"
    ADMIN = "admin"


class ZoneType(str, enum.Enum):
    RESIDENTIAL = "Residential"
    COMMERCIAL = "Commercial"
    INDUSTRIAL = "Industrial"
    MIXED = "Mixed"


class PoiCategory(str, enum.Enum):
    SCHOOL = "School"
    HOSPITAL = "Hospital"
    PARK = "Park"
    OTHER = "Other"


class ProjectStatus(str, enum.Enum):
    PLANNED = "Planned"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    DELAYED = "Delayed"


def coerce_enum(enum_cls: Type[E], value, field: str) -> Optional[E]:
    """Map ``value`` onto a member of ``enum_cls``.

    ``None`` passes through. Anything outside the closed set raises
    :class:`ConstraintViolation`.
    """
    if value is None or isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ConstraintViolation(
            f"{field} must be one of {{{allowed}}}, got {value!r}"
        ) from None


def quantize(value, precision: int, scale: int, field: str) -> Optional[Decimal]:
    """Round a numeric value to fit a ``Numeric(precision, scale)`` column."""
    if value is None:
        return None
    try:
        number = Decimal(str(value))
    except InvalidOperation:
        raise ConstraintViolation(f"{field} must be numeric, got {value!r}") from None
    if not number.is_finite():
        raise ConstraintViolation(f"{field} must be finite, got {value!r}")
    limit = Decimal(10) ** (precision - scale)
    try:
        rounded = number.quantize(Decimal(1).scaleb(-scale), rounding=ROUND_HALF_UP)
    except InvalidOperation:
        rounded = None
    if rounded is None or abs(rounded) >= limit:
        raise ConstraintViolation(
            f"{field} must be below {limit} in magnitude, got {value!r}"
        )
    return rounded


def check_int32(value, field: str) -> Optional[int]:
    """Accept ``None`` or an integer that fits a 32-bit ``INTEGER`` column."""
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConstraintViolation(f"{field} must be an integer, got {value!r}")
    if not INT32_MIN <= value <= INT32_MAX:
        raise ConstraintViolation(f"{field} is out of integer range, got {value}")
    return value
