"""Urban planning records: zones, points of interest, demographics and projects."""

from .api import app
from .worker import celery_app

__all__ = ["app", "celery_app"]
