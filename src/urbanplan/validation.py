"""Write-time validation of project date order.

The check runs synchronously inside the write transaction: the service layer
calls it before flushing, and :mod:`urbanplan.database` attaches it to the
``Project`` mapper so that every ORM insert or update of a project is checked
regardless of which component issued it.
"""

import logging
from datetime import date
from typing import Optional

from .errors import ValidationError

logger = logging.getLogger(__name__)


def validate_project_dates(start_date: Optional[date], end_date: Optional[date]) -> None:
    """Raise :class:`ValidationError` if ``end_date`` precedes ``start_date``.

    A missing date on either side is accepted.
    """
    if start_date is None or end_date is None:
        return
    if end_date < start_date:
        logger.warning(
            "rejected project dates start=%s end=%s", start_date, end_date
        )
        raise ValidationError(
            f"end date {end_date.isoformat()} cannot precede start date "
            f"{start_date.isoformat()}"
        )


def check_project_row(mapper, connection, target) -> None:
    """Mapper event hook for ``before_insert`` / ``before_update``."""
    validate_project_dates(target.start_date, target.end_date)
