"""Cached infrastructure coverage report.

The coverage summary counts parks, schools and hospitals per zone. It is a
snapshot: writes to zones or points of interest do NOT update it. Callers (or
the scheduled Celery task in :mod:`urbanplan.tasks`) must call
:meth:`CoverageSummary.refresh` to bring it up to date, and readers get
whatever the last refresh produced.
"""

import logging
from datetime import datetime
from typing import Dict, List

from sqlalchemy import case, delete, func, select, text
from sqlalchemy.orm import Session

from .database import CoverageSummaryEntry, PointOfInterest, Zone
from .enums import PoiCategory

logger = logging.getLogger(__name__)


def _count_category(category: PoiCategory):
    return func.count(case((PointOfInterest.category == category, 1)))


class CoverageSummary:
    """Recompute-and-swap cache over ``zones`` and ``points_of_interest``."""

    def compute(self, session: Session) -> List[Dict[str, object]]:
        """Aggregate live data; zones without points of interest count zero."""
        stmt = (
            select(
                Zone.id,
                Zone.name,
                _count_category(PoiCategory.PARK).label("parks"),
                _count_category(PoiCategory.SCHOOL).label("schools"),
                _count_category(PoiCategory.HOSPITAL).label("hospitals"),
            )
            .select_from(Zone)
            .outerjoin(PointOfInterest, PointOfInterest.zone_id == Zone.id)
            .group_by(Zone.id, Zone.name)
            .order_by(Zone.id)
        )
        return [
            {
                "zone_id": row.id,
                "zone_name": row.name,
                "parks": row.parks,
                "schools": row.schools,
                "hospitals": row.hospitals,
            }
            for row in session.execute(stmt)
        ]

    def refresh(self, session: Session) -> int:
        """Replace the cached rows with a fresh computation.

        Runs in the caller's transaction; nothing is visible to readers until
        the caller commits. Returns the number of rows written.
        """
        if session.get_bind().dialect.name == "postgresql":
            # serialize refreshers; ACCESS SHARE readers are not blocked
            session.execute(text("LOCK TABLE coverage_summary IN EXCLUSIVE MODE"))
        rows = self.compute(session)
        refreshed_at = datetime.utcnow()
        session.execute(delete(CoverageSummaryEntry))
        session.add_all(
            CoverageSummaryEntry(refreshed_at=refreshed_at, **row) for row in rows
        )
        session.flush()
        logger.info("recomputed coverage summary for %d zones", len(rows))
        return len(rows)

    def rows(self, session: Session) -> List[CoverageSummaryEntry]:
        """Return the cached rows as of the last refresh."""
        return list(
            session.scalars(
                select(CoverageSummaryEntry).order_by(CoverageSummaryEntry.zone_id)
            )
        )


coverage_summary = CoverageSummary()
