from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.auth import AuthUser, get_current_user as auth_get_current_user
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.main import app


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clear_settings() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[auth_get_current_user] = lambda: AuthUser(sub="guest", roles=["guest"])
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_generated_correlation_id_returned_in_header_and_error_envelope(client: TestClient) -> None:
    response = client.get(f"/api/cross-sell-matrix/client/{uuid.uuid4()}")
    assert response.status_code == 403
    header_value = response.headers.get("x-correlation-id")
    assert header_value
    body = response.json()
    assert body["correlation_id"] == header_value


def test_correlation_id_respected_when_provided(client: TestClient) -> None:
    response = client.get("/api/cross-sell-matrix", headers={"X-Correlation-Id": "abc-123"})
    assert response.status_code == 403
    assert response.headers.get("x-correlation-id") == "abc-123"
    assert response.json()["correlation_id"] == "abc-123"


def test_request_id_header_used_when_correlation_id_missing(client: TestClient) -> None:
    response = client.get("/api/cross-sell-matrix/region/EU", headers={"X-Request-Id": "req-77"})
    assert response.status_code == 403
    assert response.headers.get("x-correlation-id") == "req-77"
    assert response.json()["correlation_id"] == "req-77"


def test_validation_error_envelope_includes_correlation_id(client: TestClient) -> None:
    app.dependency_overrides[auth_get_current_user] = lambda: AuthUser(sub="admin-1", roles=["admin"])

    response = client.get(
        "/api/cross-sell-matrix",
        params={"minOpportunityScore": "abc"},
        headers={"X-Correlation-Id": "corr-invalid-1"},
    )

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "Invalid cross-sell matrix filter"
    assert body["correlation_id"] == "corr-invalid-1"
