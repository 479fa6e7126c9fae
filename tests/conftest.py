import os

# keep the module-level engine off disk while the API module is imported
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from urbanplan import services
from urbanplan.api import app
from urbanplan.database import Base


@pytest.fixture
def session_local(monkeypatch):
    """Provide an isolated in-memory database for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    Base.metadata.create_all(bind=engine)
    monkeypatch.setattr(services, "SessionLocal", TestingSessionLocal)
    yield TestingSessionLocal
    engine.dispose()


@pytest.fixture
def client(session_local):
    return TestClient(app)


@pytest.fixture
def zone(session_local):
    return services.create_zone("Centro", zone_type="Residential", area_km2=4.5)
