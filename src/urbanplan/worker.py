"""Celery application with a periodic task to refresh the coverage summary."""

from celery import Celery

from .config import settings


celery_app = Celery(
    "urbanplan",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["urbanplan.tasks"],
)

# The coverage summary is only as fresh as this schedule (or manual refreshes).
celery_app.conf.beat_schedule = {
    "refresh-coverage-summary": {
        "task": "urbanplan.tasks.refresh_coverage_summary",
        "schedule": settings.coverage_refresh_frequency,
    }
}
celery_app.conf.timezone = "UTC"
