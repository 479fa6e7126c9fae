"""Celery tasks for keeping the cached coverage summary up to date."""

import logging

from . import services
from .errors import TransactionConflict
from .worker import celery_app


logger = logging.getLogger(__name__)


@celery_app.task(bind=True, max_retries=3, default_retry_delay=60)
def refresh_coverage_summary(self) -> int:
    """Recompute the coverage summary.

    Returns the number of zones in the refreshed summary. A refresh that loses
    a lock race is retried by Celery.
    """
    logger.info("refreshing coverage summary")
    try:
        zones = services.refresh_coverage_summary()
    except TransactionConflict as exc:
        logger.warning("coverage refresh conflicted, retrying", exc_info=True)
        raise self.retry(exc=exc)
    logger.info("coverage summary refreshed for %d zones", zones)
    return zones
