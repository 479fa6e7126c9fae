"""Service layer for urban planning records.

Each operation opens its own session and runs in a single transaction. On any
failure the transaction is rolled back and a domain error from
:mod:`urbanplan.errors` is raised, so a failed write never leaves a trace.
"""

import hashlib
import logging
import time
from datetime import date
from typing import Callable, Dict, Iterable, List, Optional, Tuple, TypeVar

from prometheus_client import Counter
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session

from .coverage import coverage_summary
from .database import (
    SessionLocal,
    CoverageSummaryEntry,
    DemographicRecord,
    PointOfInterest,
    Project,
    Zone,
)
from .enums import (
    PoiCategory,
    ProjectStatus,
    UserRole,
    ZoneType,
    check_int32,
    coerce_enum,
)
from .errors import (
    ConstraintViolation,
    NotFound,
    TransactionConflict,
    UrbanPlanError,
    translate_db_error,
)
from .models.user import User
from .validation import validate_project_dates


logger = logging.getLogger(__name__)

T = TypeVar("T")

# Fixed occupancy assumption used by the growth simulator.
PERSONS_PER_HOUSING_UNIT = 3

RECORDS_CREATED_COUNTER = Counter(
    "urbanplan_records_created_total", "Total records created", ["entity"]
)
SIMULATION_COUNTER = Counter(
    "population_simulations_total", "Total population growth simulations applied"
)
COVERAGE_REFRESH_COUNTER = Counter(
    "coverage_refreshes_total", "Total coverage summary refreshes"
)

USER_FIELDS = {"name", "email", "role", "password"}
ZONE_FIELDS = {"name", "zone_type", "boundary", "area_km2"}
POI_FIELDS = {"name", "category", "latitude", "longitude", "zone_id"}
DEMOGRAPHIC_FIELDS = {"year", "population", "density", "average_age"}
PROJECT_FIELDS = {
    "name",
    "description",
    "start_date",
    "end_date",
    "status",
    "zone_id",
    "user_id",
    "location",
}


def _handle_service_error(session: Session, exc: Exception) -> None:
    """Rollback the transaction and re-raise as a domain error."""
    session.rollback()
    if isinstance(exc, UrbanPlanError):
        logger.warning("write rejected: %s", exc)
        raise exc
    error = translate_db_error(exc)
    if error is None:
        logger.exception("service layer error", exc_info=exc)
        raise exc
    logger.warning("database rejected write: %s", error)
    raise error from exc


def _get_or_raise(session: Session, model, record_id: int):
    record = session.get(model, record_id)
    if record is None:
        raise NotFound(f"{model.__name__} {record_id} not found")
    return record


def _require_reference(session: Session, model, record_id: Optional[int], field: str) -> None:
    """Ensure a referenced row exists; ``None`` is accepted."""
    if record_id is not None and session.get(model, record_id) is None:
        raise ConstraintViolation(f"{field} references missing {model.__name__} {record_id}")


def _apply_changes(record, changes: Dict[str, object], allowed: Iterable[str]) -> None:
    unknown = set(changes) - set(allowed)
    if unknown:
        raise ConstraintViolation(f"unknown fields: {', '.join(sorted(unknown))}")
    for key, value in changes.items():
        setattr(record, key, value)


def _paginate(query: Query, order_by, skip: int, limit: int) -> Tuple[list, int]:
    total = query.count()
    records = query.order_by(order_by).offset(skip).limit(limit).all()
    return records, total


def retry_on_conflict(operation: Callable[..., T], *args, attempts: int = 3, **kwargs) -> T:
    """Call ``operation`` and retry it when it aborts with a transaction conflict."""
    for attempt in range(1, attempts + 1):
        try:
            return operation(*args, **kwargs)
        except TransactionConflict:
            if attempt == attempts:
                raise
            logger.info(
                "transaction conflict in %s, retry %d/%d",
                getattr(operation, "__name__", operation),
                attempt,
                attempts - 1,
            )
            time.sleep(0.05 * attempt)


# ── Users ─────────────────────────────────────────────────────


def hash_password(password: str) -> str:
    return hashlib.sha256(password.encode()).hexdigest()


def register_user(
    name: str, email: str, password: str, role: str = UserRole.PLANNER.value
) -> User:
    """Persist a new planner or administrator account."""

    logger.info("register user email=%s role=%s", email, role)
    session: Session = SessionLocal()
    try:
        if session.query(User).filter(User.email == email).first():
            raise ConstraintViolation("email already registered")
        user = User(
            name=name,
            email=email,
            password_hash=hash_password(password),
            role=role,
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        RECORDS_CREATED_COUNTER.labels(entity="user").inc()
        logger.info("registered user id=%s", user.id)
        return user
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()


def get_user(user_id: int) -> User:
    session: Session = SessionLocal()
    try:
        return _get_or_raise(session, User, user_id)
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()


def list_users(
    skip: int = 0, limit: int = 10, role: Optional[str] = None
) -> Tuple[List[User], int]:
    """Retrieve paginated users, optionally filtered by role."""

    session: Session = SessionLocal()
    try:
        query = session.query(User)
        if role:
            query = query.filter(User.role == coerce_enum(UserRole, role, "role"))
        return _paginate(query, User.id, skip, limit)
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()


def update_user(user_id: int, **changes) -> User:
    """Update account fields; a ``password`` change is stored hashed."""

    session: Session = SessionLocal()
    try:
        user = _get_or_raise(session, User, user_id)
        password = changes.pop("password", None)
        _apply_changes(user, changes, USER_FIELDS - {"password"})
        if password is not None:
            user.password_hash = hash_password(password)
        session.commit()
        session.refresh(user)
        fields = sorted(changes) + (["password"] if password is not None else [])
        logger.info("updated user id=%s fields=%s", user_id, fields)
        return user
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()


def delete_user(user_id: int) -> None:
    """Delete a user; their projects keep existing without an owner."""

    session: Session = SessionLocal()
    try:
        user = _get_or_raise(session, User, user_id)
        session.delete(user)
        session.commit()
        logger.info("deleted user id=%s", user_id)
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()


# ── Zones ─────────────────────────────────────────────────────


def create_zone(
    name: str,
    zone_type: Optional[str] = None,
    boundary: Optional[str] = None,
    area_km2: Optional[float] = None,
) -> Zone:
    """Persist a new urban zone."""

    logger.info("create zone name=%s type=%s", name, zone_type)
    session: Session = SessionLocal()
    try:
        zone = Zone(name=name, zone_type=zone_type, boundary=boundary, area_km2=area_km2)
        session.add(zone)
        session.commit()
        session.refresh(zone)
        RECORDS_CREATED_COUNTER.labels(entity="zone").inc()
        logger.info("created zone id=%s", zone.id)
        return zone
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()


def get_zone(zone_id: int) -> Zone:
    session: Session = SessionLocal()
    try:
        return _get_or_raise(session, Zone, zone_id)
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()


def list_zones(
    skip: int = 0,
    limit: int = 10,
    name: Optional[str] = None,
    zone_type: Optional[str] = None,
) -> Tuple[List[Zone], int]:
    """Retrieve paginated zones filtered by name substring and zone type."""

    session: Session = SessionLocal()
    try:
        query = session.query(Zone)
        if name:
            query = query.filter(Zone.name.contains(name))
        if zone_type:
            query = query.filter(
                Zone.zone_type == coerce_enum(ZoneType, zone_type, "zone_type")
            )
        return _paginate(query, Zone.id, skip, limit)
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()


def update_zone(zone_id: int, **changes) -> Zone:
    session: Session = SessionLocal()
    try:
        zone = _get_or_raise(session, Zone, zone_id)
        _apply_changes(zone, changes, ZONE_FIELDS)
        session.commit()
        session.refresh(zone)
        logger.info("updated zone id=%s fields=%s", zone_id, sorted(changes))
        return zone
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()


def delete_zone(zone_id: int) -> None:
    """Delete a zone with its points of interest and demographic records.

    Projects in the zone are kept and lose their zone reference. The coverage
    summary still lists the zone until it is refreshed.
    """

    session: Session = SessionLocal()
    try:
        zone = _get_or_raise(session, Zone, zone_id)
        session.delete(zone)
        session.commit()
        logger.info("deleted zone id=%s", zone_id)
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()


# ── Points of interest ────────────────────────────────────────


def create_point_of_interest(
    name: str,
    zone_id: int,
    category: Optional[str] = None,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
) -> PointOfInterest:
    """Persist a point of interest inside an existing zone."""

    logger.info("create point of interest name=%s zone=%s", name, zone_id)
    session: Session = SessionLocal()
    try:
        if zone_id is None:
            raise ConstraintViolation("zone_id is required")
        _require_reference(session, Zone, zone_id, "zone_id")
        poi = PointOfInterest(
            name=name,
            zone_id=zone_id,
            category=category,
            latitude=latitude,
            longitude=longitude,
        )
        session.add(poi)
        session.commit()
        session.refresh(poi)
        RECORDS_CREATED_COUNTER.labels(entity="point_of_interest").inc()
        logger.info("created point of interest id=%s", poi.id)
        return poi
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()


def get_point_of_interest(poi_id: int) -> PointOfInterest:
    session: Session = SessionLocal()
    try:
        return _get_or_raise(session, PointOfInterest, poi_id)
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()


def list_points_of_interest(
    skip: int = 0,
    limit: int = 10,
    zone_id: Optional[int] = None,
    category: Optional[str] = None,
) -> Tuple[List[PointOfInterest], int]:
    session: Session = SessionLocal()
    try:
        query = session.query(PointOfInterest)
        if zone_id is not None:
            query = query.filter(PointOfInterest.zone_id == zone_id)
        if category:
            query = query.filter(
                PointOfInterest.category == coerce_enum(PoiCategory, category, "category")
            )
        return _paginate(query, PointOfInterest.id, skip, limit)
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()


def update_point_of_interest(poi_id: int, **changes) -> PointOfInterest:
    session: Session = SessionLocal()
    try:
        poi = _get_or_raise(session, PointOfInterest, poi_id)
        if "zone_id" in changes:
            if changes["zone_id"] is None:
                raise ConstraintViolation("zone_id is required")
            _require_reference(session, Zone, changes["zone_id"], "zone_id")
        _apply_changes(poi, changes, POI_FIELDS)
        session.commit()
        session.refresh(poi)
        logger.info("updated point of interest id=%s fields=%s", poi_id, sorted(changes))
        return poi
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()


def delete_point_of_interest(poi_id: int) -> None:
    session: Session = SessionLocal()
    try:
        poi = _get_or_raise(session, PointOfInterest, poi_id)
        session.delete(poi)
        session.commit()
        logger.info("deleted point of interest id=%s", poi_id)
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()


# ── Demographic records ───────────────────────────────────────


def create_demographic_record(
    zone_id: int,
    year: int,
    population: Optional[int] = None,
    density: Optional[float] = None,
    average_age: Optional[float] = None,
) -> DemographicRecord:
    """Persist yearly population statistics for a zone."""

    logger.info("create demographic record zone=%s year=%s", zone_id, year)
    session: Session = SessionLocal()
    try:
        if zone_id is None:
            raise ConstraintViolation("zone_id is required")
        _require_reference(session, Zone, zone_id, "zone_id")
        record = DemographicRecord(
            zone_id=zone_id,
            year=year,
            population=population,
            density=density,
            average_age=average_age,
        )
        session.add(record)
        session.commit()
        session.refresh(record)
        RECORDS_CREATED_COUNTER.labels(entity="demographic_record").inc()
        logger.info("created demographic record id=%s", record.id)
        return record
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()


def get_demographic_record(record_id: int) -> DemographicRecord:
    session: Session = SessionLocal()
    try:
        return _get_or_raise(session, DemographicRecord, record_id)
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()


def list_demographic_records(
    skip: int = 0,
    limit: int = 10,
    zone_id: Optional[int] = None,
    year: Optional[int] = None,
) -> Tuple[List[DemographicRecord], int]:
    session: Session = SessionLocal()
    try:
        query = session.query(DemographicRecord)
        if zone_id is not None:
            query = query.filter(DemographicRecord.zone_id == zone_id)
        if year is not None:
            query = query.filter(DemographicRecord.year == year)
        return _paginate(query, DemographicRecord.id, skip, limit)
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()


def update_demographic_record(record_id: int, **changes) -> DemographicRecord:
    session: Session = SessionLocal()
    try:
        record = _get_or_raise(session, DemographicRecord, record_id)
        _apply_changes(record, changes, DEMOGRAPHIC_FIELDS)
        session.commit()
        session.refresh(record)
        logger.info("updated demographic record id=%s fields=%s", record_id, sorted(changes))
        return record
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()


def delete_demographic_record(record_id: int) -> None:
    session: Session = SessionLocal()
    try:
        record = _get_or_raise(session, DemographicRecord, record_id)
        session.delete(record)
        session.commit()
        logger.info("deleted demographic record id=%s", record_id)
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()


def simulate_population_growth(zone_id: int, new_housing_units: int) -> int:
    """Add ``new_housing_units * 3`` residents to every record of a zone.

    All records of the zone are updated by one statement in one transaction.
    Negative unit counts model demolition; if any population would drop below
    zero nothing is changed and :class:`ConstraintViolation` is raised.
    Returns the number of records updated, which is zero for a zone without
    records.
    """

    check_int32(new_housing_units, "new_housing_units")
    delta = check_int32(
        new_housing_units * PERSONS_PER_HOUSING_UNIT, "population change"
    )
    logger.info(
        "simulate growth zone=%s units=%s delta=%s", zone_id, new_housing_units, delta
    )
    session: Session = SessionLocal()
    try:
        result = session.execute(
            update(DemographicRecord)
            .where(DemographicRecord.zone_id == zone_id)
            .values(population=DemographicRecord.population + delta)
            .execution_options(synchronize_session=False)
        )
        session.commit()
        SIMULATION_COUNTER.inc()
        logger.info("simulated growth zone=%s records=%s", zone_id, result.rowcount)
        return result.rowcount
    except IntegrityError as exc:
        session.rollback()
        logger.warning(
            "growth rejected zone=%s units=%s: population would be negative",
            zone_id,
            new_housing_units,
        )
        raise ConstraintViolation(
            f"population in zone {zone_id} cannot drop below zero"
        ) from exc
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()


# ── Projects ──────────────────────────────────────────────────


def create_project(
    name: str,
    description: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    status: Optional[str] = None,
    zone_id: Optional[int] = None,
    user_id: Optional[int] = None,
    location: Optional[str] = None,
) -> Project:
    """Persist a development project after checking its date order."""

    logger.info("create project name=%s zone=%s user=%s", name, zone_id, user_id)
    session: Session = SessionLocal()
    try:
        validate_project_dates(start_date, end_date)
        _require_reference(session, Zone, zone_id, "zone_id")
        _require_reference(session, User, user_id, "user_id")
        project = Project(
            name=name,
            description=description,
            start_date=start_date,
            end_date=end_date,
            status=status,
            zone_id=zone_id,
            user_id=user_id,
            location=location,
        )
        session.add(project)
        session.commit()
        session.refresh(project)
        RECORDS_CREATED_COUNTER.labels(entity="project").inc()
        logger.info("created project id=%s", project.id)
        return project
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()


def get_project(project_id: int) -> Project:
    session: Session = SessionLocal()
    try:
        return _get_or_raise(session, Project, project_id)
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()


def list_projects(
    skip: int = 0,
    limit: int = 10,
    status: Optional[str] = None,
    zone_id: Optional[int] = None,
    user_id: Optional[int] = None,
) -> Tuple[List[Project], int]:
    """Retrieve paginated projects with optional status, zone and owner filters."""

    session: Session = SessionLocal()
    try:
        query = session.query(Project)
        if status:
            query = query.filter(
                Project.status == coerce_enum(ProjectStatus, status, "status")
            )
        if zone_id is not None:
            query = query.filter(Project.zone_id == zone_id)
        if user_id is not None:
            query = query.filter(Project.user_id == user_id)
        return _paginate(query, Project.id, skip, limit)
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()


def update_project(project_id: int, **changes) -> Project:
    """Apply changes to a project; the proposed row must keep its date order."""

    session: Session = SessionLocal()
    try:
        project = _get_or_raise(session, Project, project_id)
        _apply_changes(project, changes, PROJECT_FIELDS)
        validate_project_dates(project.start_date, project.end_date)
        if "zone_id" in changes:
            _require_reference(session, Zone, project.zone_id, "zone_id")
        if "user_id" in changes:
            _require_reference(session, User, project.user_id, "user_id")
        session.commit()
        session.refresh(project)
        logger.info("updated project id=%s fields=%s", project_id, sorted(changes))
        return project
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()


def delete_project(project_id: int) -> None:
    session: Session = SessionLocal()
    try:
        project = _get_or_raise(session, Project, project_id)
        session.delete(project)
        session.commit()
        logger.info("deleted project id=%s", project_id)
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()


# ── Coverage summary ──────────────────────────────────────────


def refresh_coverage_summary() -> int:
    """Recompute the cached coverage summary and swap it in atomically."""

    session: Session = SessionLocal()
    try:
        count = coverage_summary.refresh(session)
        session.commit()
        COVERAGE_REFRESH_COUNTER.inc()
        return count
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()


def get_coverage_summary() -> List[CoverageSummaryEntry]:
    """Return the summary as of the last refresh; it may be stale."""

    session: Session = SessionLocal()
    try:
        return coverage_summary.rows(session)
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()
