"""Database setup and models for zones, points of interest, demographics and projects."""

import sqlite3
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, relationship, sessionmaker, validates

from .config import settings
from .enums import (
    PoiCategory,
    ProjectStatus,
    ZoneType,
    check_int32,
    coerce_enum,
    quantize,
)
from .errors import ConstraintViolation, DATE_ORDER_CONSTRAINT
from .validation import check_project_row


def enum_type(enum_cls, name: str, length: int) -> Enum:
    """Store enum values (not member names) with a CHECK constraint."""
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        create_constraint=True,
        length=length,
        validate_strings=True,
        values_callable=lambda members: [member.value for member in members],
    )


def make_engine(url: str) -> Engine:
    """Create an engine with the configured lock timeout."""
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args = {"timeout": settings.db_lock_timeout, "check_same_thread": False}
    return create_engine(url, future=True, connect_args=connect_args)


@event.listens_for(Engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # ON DELETE CASCADE / SET NULL are ignored by SQLite unless enabled per connection
    if isinstance(dbapi_connection, sqlite3.Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


engine = make_engine(settings.database_url)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
Base = declarative_base()


class Zone(Base):
    """An urban planning subdivision of the city."""

    __tablename__ = "zones"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), index=True, nullable=False)
    zone_type = Column(enum_type(ZoneType, "zone_type", 50))
    boundary = Column(Text)
    area_km2 = Column(Numeric(10, 2))

    points_of_interest = relationship(
        "PointOfInterest",
        back_populates="zone",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    demographic_records = relationship(
        "DemographicRecord",
        back_populates="zone",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    projects = relationship("Project", back_populates="zone", passive_deletes=True)

    @validates("zone_type")
    def _validate_zone_type(self, key, value):
        return coerce_enum(ZoneType, value, key)

    @validates("area_km2")
    def _validate_area(self, key, value):
        return quantize(value, 10, 2, key)


class PointOfInterest(Base):
    """A notable point location inside a zone."""

    __tablename__ = "points_of_interest"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    category = Column(enum_type(PoiCategory, "poi_category", 50), index=True)
    latitude = Column(Numeric(9, 6))
    longitude = Column(Numeric(9, 6))
    zone_id = Column(
        Integer, ForeignKey("zones.id", ondelete="CASCADE"), index=True, nullable=False
    )

    zone = relationship("Zone", back_populates="points_of_interest")

    @validates("category")
    def _validate_category(self, key, value):
        return coerce_enum(PoiCategory, value, key)

    @validates("latitude", "longitude")
    def _validate_coordinate(self, key, value):
        return quantize(value, 9, 6, key)


class DemographicRecord(Base):
    """Population statistics for a zone in a given year."""

    __tablename__ = "demographic_records"
    __table_args__ = (
        CheckConstraint(
            "population >= 0", name="ck_demographic_records_population_non_negative"
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    zone_id = Column(
        Integer, ForeignKey("zones.id", ondelete="CASCADE"), index=True, nullable=False
    )
    year = Column(Integer, nullable=False)
    population = Column(Integer)
    density = Column(Numeric(10, 2))
    average_age = Column(Numeric(5, 2))

    zone = relationship("Zone", back_populates="demographic_records")

    @validates("year")
    def _validate_year(self, key, value):
        return check_int32(value, key)

    @validates("population")
    def _validate_population(self, key, value):
        value = check_int32(value, key)
        if value is not None and value < 0:
            raise ConstraintViolation(f"population must be non-negative, got {value}")
        return value

    @validates("density")
    def _validate_density(self, key, value):
        return quantize(value, 10, 2, key)

    @validates("average_age")
    def _validate_average_age(self, key, value):
        return quantize(value, 5, 2, key)


class Project(Base):
    """A development project, optionally tied to a zone and an owning user."""

    __tablename__ = "projects"
    __table_args__ = (
        CheckConstraint(
            "end_date IS NULL OR start_date IS NULL OR end_date >= start_date",
            name=DATE_ORDER_CONSTRAINT,
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(150), nullable=False)
    description = Column(Text)
    start_date = Column(Date)
    end_date = Column(Date)
    status = Column(enum_type(ProjectStatus, "project_status", 20), index=True)
    zone_id = Column(Integer, ForeignKey("zones.id", ondelete="SET NULL"), index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), index=True)
    location = Column(Text)

    zone = relationship("Zone", back_populates="projects")
    owner = relationship("User", back_populates="projects")

    @validates("status")
    def _validate_status(self, key, value):
        return coerce_enum(ProjectStatus, value, key)


event.listen(Project, "before_insert", check_project_row)
event.listen(Project, "before_update", check_project_row)


class CoverageSummaryEntry(Base):
    """Cached per-zone infrastructure counts.

    Rows are only written by :meth:`urbanplan.coverage.CoverageSummary.refresh`
    and are not kept in sync with ``zones`` or ``points_of_interest``.
    """

    __tablename__ = "coverage_summary"

    zone_id = Column(Integer, primary_key=True)
    zone_name = Column(String(100), nullable=False)
    parks = Column(Integer, default=0, nullable=False)
    schools = Column(Integer, default=0, nullable=False)
    hospitals = Column(Integer, default=0, nullable=False)
    refreshed_at = Column(DateTime, default=datetime.utcnow, nullable=False)


def init_db() -> None:
    """Create database tables if they do not exist."""
    Base.metadata.create_all(bind=engine)


from .models import user  # noqa: E402,F401  registers the users table
