"""FastAPI application exposing urban planning records and the coverage report."""

from datetime import date, datetime
from typing import List, Optional

import logging
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from prometheus_client import Counter

from pydantic import BaseModel, Field, confloat, conint

from . import errors
from .config import settings
from .database import init_db
from .enums import PoiCategory, ProjectStatus, UserRole, ZoneType
from . import services


limiter = Limiter(key_func=get_remote_address)
app = FastAPI(title=settings.api_title)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
init_db()

logger = logging.getLogger(__name__)

# Prometheus counter to track API requests by method, endpoint and status code
REQUEST_COUNTER = Counter(
    "api_requests_total",
    "Total API requests",
    ["method", "endpoint", "status"],
)

# Schema failures (unknown enum values, negative population) never get here:
# FastAPI answers them with 422 before the service layer runs.
ERROR_STATUS = {
    errors.NotFound: 404,
    errors.ValidationError: 422,
    errors.ConstraintViolation: 400,
    errors.TransactionConflict: 409,
}


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log incoming requests and their outcomes while updating metrics."""
    logger.info("request %s %s", request.method, request.url.path)
    try:
        response = await call_next(request)
        REQUEST_COUNTER.labels(
            method=request.method,
            endpoint=request.url.path,
            status=str(response.status_code),
        ).inc()
        logger.info(
            "response %s %s status %s",
            request.method,
            request.url.path,
            response.status_code,
        )
        return response
    except Exception:
        REQUEST_COUNTER.labels(
            method=request.method,
            endpoint=request.url.path,
            status="500",
        ).inc()
        logger.exception(
            "error handling %s %s", request.method, request.url.path
        )
        raise


@app.exception_handler(errors.UrbanPlanError)
async def domain_error_handler(request: Request, exc: errors.UrbanPlanError):
    """Translate domain errors into HTTP status codes."""
    status_code = ERROR_STATUS.get(type(exc), 400)
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


class UserCreate(BaseModel):
    """Request body for registering a planner or administrator."""

    name: str = Field(..., max_length=100)
    email: str = Field(..., max_length=100)
    password: str
    role: UserRole = UserRole.PLANNER


class UserUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=100)
    email: Optional[str] = Field(None, max_length=100)
    password: Optional[str] = None
    role: Optional[UserRole] = None


class UserResponse(BaseModel):
    """Serialized user; the password hash is never returned."""

    id: int
    name: str
    email: str
    role: UserRole
    created_at: datetime

    class Config:
        from_attributes = True


class UserListResponse(BaseModel):
    total: int
    items: List[UserResponse]


class ZoneCreate(BaseModel):
    """Request body for creating a zone."""

    name: str = Field(..., max_length=100)
    zone_type: Optional[ZoneType] = None
    boundary: Optional[str] = Field(None, description="Textual boundary description")
    area_km2: Optional[float] = Field(None, description="Approximate area in km²")


class ZoneUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=100)
    zone_type: Optional[ZoneType] = None
    boundary: Optional[str] = None
    area_km2: Optional[float] = None


class ZoneResponse(ZoneCreate):
    id: int

    class Config:
        from_attributes = True


class ZoneListResponse(BaseModel):
    total: int
    items: List[ZoneResponse]


class PointOfInterestCreate(BaseModel):
    """Request body for creating a point of interest."""

    name: str = Field(..., max_length=100)
    zone_id: int
    category: Optional[PoiCategory] = None
    latitude: Optional[confloat(ge=-90, le=90)] = None
    longitude: Optional[confloat(ge=-180, le=180)] = None


class PointOfInterestUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=100)
    zone_id: Optional[int] = None
    category: Optional[PoiCategory] = None
    latitude: Optional[confloat(ge=-90, le=90)] = None
    longitude: Optional[confloat(ge=-180, le=180)] = None


class PointOfInterestResponse(PointOfInterestCreate):
    id: int

    class Config:
        from_attributes = True


class PointOfInterestListResponse(BaseModel):
    total: int
    items: List[PointOfInterestResponse]


class DemographicCreate(BaseModel):
    """Request body for recording yearly statistics of a zone."""

    zone_id: int
    year: int
    population: Optional[conint(ge=0)] = None
    density: Optional[float] = Field(None, description="Inhabitants per km²")
    average_age: Optional[float] = None


class DemographicUpdate(BaseModel):
    year: Optional[int] = None
    population: Optional[conint(ge=0)] = None
    density: Optional[float] = None
    average_age: Optional[float] = None


class DemographicResponse(DemographicCreate):
    id: int

    class Config:
        from_attributes = True


class DemographicListResponse(BaseModel):
    total: int
    items: List[DemographicResponse]


class GrowthRequest(BaseModel):
    """Number of housing units built (negative for demolitions)."""

    new_housing_units: int


class GrowthResponse(BaseModel):
    zone_id: int
    records_updated: int


class ProjectCreate(BaseModel):
    """Request body for creating a development project."""

    name: str = Field(..., max_length=150)
    description: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    status: Optional[ProjectStatus] = None
    zone_id: Optional[int] = None
    user_id: Optional[int] = None
    location: Optional[str] = None


class ProjectUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=150)
    description: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    status: Optional[ProjectStatus] = None
    zone_id: Optional[int] = None
    user_id: Optional[int] = None
    location: Optional[str] = None


class ProjectResponse(ProjectCreate):
    id: int

    class Config:
        from_attributes = True


class ProjectListResponse(BaseModel):
    total: int
    items: List[ProjectResponse]


class CoverageRow(BaseModel):
    """Cached infrastructure counts for one zone."""

    zone_id: int
    zone_name: str
    parks: int
    schools: int
    hospitals: int
    refreshed_at: datetime

    class Config:
        from_attributes = True


class CoverageRefreshResponse(BaseModel):
    zones: int


@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "ok"}


# ── Users ─────────────────────────────────────────────────────


@app.post("/users", response_model=UserResponse, status_code=201)
@limiter.limit(settings.registration_rate_limit)
def register(request: Request, user: UserCreate):
    """Register a planner or administrator account."""

    return services.register_user(
        name=user.name, email=user.email, password=user.password, role=user.role
    )


@app.get("/users", response_model=UserListResponse)
def list_users(skip: int = 0, limit: int = 10, role: Optional[UserRole] = None):
    records, total = services.list_users(skip, limit, role=role)
    return UserListResponse(total=total, items=records)


@app.get("/users/{user_id}", response_model=UserResponse)
def get_user(user_id: int):
    return services.get_user(user_id)


@app.patch("/users/{user_id}", response_model=UserResponse)
def update_user(user_id: int, payload: UserUpdate):
    return services.update_user(user_id, **payload.model_dump(exclude_unset=True))


@app.delete("/users/{user_id}", status_code=204)
def delete_user(user_id: int):
    services.delete_user(user_id)
    return Response(status_code=204)


# ── Zones ─────────────────────────────────────────────────────


@app.post("/zones", response_model=ZoneResponse, status_code=201)
def create_zone(payload: ZoneCreate):
    return services.create_zone(**payload.model_dump())


@app.get("/zones", response_model=ZoneListResponse)
def list_zones(
    skip: int = 0,
    limit: int = 10,
    name: Optional[str] = None,
    zone_type: Optional[ZoneType] = None,
):
    """Return paginated zones, optionally filtered by name and type."""

    records, total = services.list_zones(skip, limit, name=name, zone_type=zone_type)
    return ZoneListResponse(total=total, items=records)


@app.get("/zones/{zone_id}", response_model=ZoneResponse)
def get_zone(zone_id: int):
    return services.get_zone(zone_id)


@app.patch("/zones/{zone_id}", response_model=ZoneResponse)
def update_zone(zone_id: int, payload: ZoneUpdate):
    return services.update_zone(zone_id, **payload.model_dump(exclude_unset=True))


@app.delete("/zones/{zone_id}", status_code=204)
def delete_zone(zone_id: int):
    """Delete a zone together with its points of interest and demographics."""

    services.delete_zone(zone_id)
    return Response(status_code=204)


@app.post("/zones/{zone_id}/growth-simulations", response_model=GrowthResponse)
def simulate_growth(zone_id: int, payload: GrowthRequest):
    """Project population growth from new housing units (3 residents each)."""

    updated = services.simulate_population_growth(zone_id, payload.new_housing_units)
    return GrowthResponse(zone_id=zone_id, records_updated=updated)


# ── Points of interest ────────────────────────────────────────


@app.post("/points-of-interest", response_model=PointOfInterestResponse, status_code=201)
def create_point_of_interest(payload: PointOfInterestCreate):
    return services.create_point_of_interest(**payload.model_dump())


@app.get("/points-of-interest", response_model=PointOfInterestListResponse)
def list_points_of_interest(
    skip: int = 0,
    limit: int = 10,
    zone_id: Optional[int] = None,
    category: Optional[PoiCategory] = None,
):
    records, total = services.list_points_of_interest(
        skip, limit, zone_id=zone_id, category=category
    )
    return PointOfInterestListResponse(total=total, items=records)


@app.get("/points-of-interest/{poi_id}", response_model=PointOfInterestResponse)
def get_point_of_interest(poi_id: int):
    return services.get_point_of_interest(poi_id)


@app.patch("/points-of-interest/{poi_id}", response_model=PointOfInterestResponse)
def update_point_of_interest(poi_id: int, payload: PointOfInterestUpdate):
    return services.update_point_of_interest(
        poi_id, **payload.model_dump(exclude_unset=True)
    )


@app.delete("/points-of-interest/{poi_id}", status_code=204)
def delete_point_of_interest(poi_id: int):
    services.delete_point_of_interest(poi_id)
    return Response(status_code=204)


# ── Demographic records ───────────────────────────────────────


@app.post("/demographics", response_model=DemographicResponse, status_code=201)
def create_demographic_record(payload: DemographicCreate):
    return services.create_demographic_record(**payload.model_dump())


@app.get("/demographics", response_model=DemographicListResponse)
def list_demographic_records(
    skip: int = 0,
    limit: int = 10,
    zone_id: Optional[int] = None,
    year: Optional[int] = None,
):
    records, total = services.list_demographic_records(
        skip, limit, zone_id=zone_id, year=year
    )
    return DemographicListResponse(total=total, items=records)


@app.get("/demographics/{record_id}", response_model=DemographicResponse)
def get_demographic_record(record_id: int):
    return services.get_demographic_record(record_id)


@app.patch("/demographics/{record_id}", response_model=DemographicResponse)
def update_demographic_record(record_id: int, payload: DemographicUpdate):
    return services.update_demographic_record(
        record_id, **payload.model_dump(exclude_unset=True)
    )


@app.delete("/demographics/{record_id}", status_code=204)
def delete_demographic_record(record_id: int):
    services.delete_demographic_record(record_id)
    return Response(status_code=204)


# ── Projects ──────────────────────────────────────────────────


@app.post("/projects", response_model=ProjectResponse, status_code=201)
def create_project(payload: ProjectCreate):
    """Create a project; an end date before the start date is rejected."""

    return services.create_project(**payload.model_dump())


@app.get("/projects", response_model=ProjectListResponse)
def list_projects(
    skip: int = 0,
    limit: int = 10,
    status: Optional[ProjectStatus] = None,
    zone_id: Optional[int] = None,
    user_id: Optional[int] = None,
):
    """Return paginated projects with optional filters."""

    records, total = services.list_projects(
        skip, limit, status=status, zone_id=zone_id, user_id=user_id
    )
    return ProjectListResponse(total=total, items=records)


@app.get("/projects/{project_id}", response_model=ProjectResponse)
def get_project(project_id: int):
    return services.get_project(project_id)


@app.patch("/projects/{project_id}", response_model=ProjectResponse)
def update_project(project_id: int, payload: ProjectUpdate):
    return services.update_project(project_id, **payload.model_dump(exclude_unset=True))


@app.delete("/projects/{project_id}", status_code=204)
def delete_project(project_id: int):
    services.delete_project(project_id)
    return Response(status_code=204)


# ── Coverage summary ──────────────────────────────────────────


@app.get("/coverage-summary", response_model=List[CoverageRow])
def get_coverage_summary():
    """Return the cached per-zone coverage counts.

    The summary reflects the last refresh, not the live tables. It is
    refreshed on a schedule by the Celery worker or on demand through
    ``POST /coverage-summary/refresh``.
    """

    return services.get_coverage_summary()


@app.post("/coverage-summary/refresh", response_model=CoverageRefreshResponse)
def refresh_coverage_summary():
    return CoverageRefreshResponse(zones=services.refresh_coverage_summary())
