from __future__ import annotations

import time
from collections.abc import Generator
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.business.cross_sell.api import get_snapshot_reader
from app.business.cross_sell.errors import SnapshotReadError
from app.business.cross_sell.records import BusinessUnitRecord, ClientRecord, EntitySnapshot, ServiceRecord
from app.business.cross_sell.schemas import MatrixFilters
from app.core.auth import AuthUser, get_current_user as auth_get_current_user
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.crm.models import BusinessUnit, Client, Opportunity, Service
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
def setup_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("MATRIX_RELATIONSHIP_STRATEGY", "fixed")
    monkeypatch.setenv("MATRIX_RELATIONSHIP_POINTS", "0")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def seeded(db_session: Session) -> dict[str, str]:
    content = BusinessUnit(name="Content")
    video = BusinessUnit(name="Video")
    db_session.add_all([content, video])
    db_session.flush()

    blog = Service(name="Blog Writing", category="Writing", business_unit_id=content.id)
    production = Service(name="Video Production", category="Production", business_unit_id=video.id)
    photography = Service(name="Photography", category="Production", business_unit_id=video.id)
    db_session.add_all([blog, production, photography])
    db_session.flush()

    acme = Client(
        name="Acme",
        industry="Retail",
        region="EU",
        annual_revenue=Decimal("2000000"),
        primary_business_unit_id=content.id,
    )
    birch = Client(name="Birch", industry="Media", region="US", primary_business_unit_id=video.id)
    db_session.add_all([acme, birch])
    db_session.flush()

    db_session.add(
        Opportunity(
            client_id=acme.id,
            service_id=blog.id,
            name="Blog retainer",
            updated_at=datetime(2026, 9, 1, tzinfo=timezone.utc),
        )
    )
    db_session.commit()
    return {"acme": str(acme.id), "birch": str(birch.id), "content": str(content.id), "video": str(video.id)}


def _client_as(db_session: Session, user: AuthUser) -> TestClient:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[auth_get_current_user] = lambda: user
    return TestClient(app)


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    with _client_as(db_session, AuthUser(sub="manager-1", roles=["management"])) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_matrix_returns_success_envelope_with_camel_case_items(client: TestClient, seeded: dict[str, str]) -> None:
    response = client.get("/api/cross-sell-matrix")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    by_client = {item["clientId"]: item for item in body["data"]}
    acme = by_client[seeded["acme"]]
    assert acme["sourceBusinessUnitName"] == "Content"
    assert acme["targetBusinessUnitName"] == "Video"
    assert acme["opportunityScore"] == 26
    assert [service["name"] for service in acme["existingServices"]] == ["Blog Writing"]
    assert acme["lastEngagementDate"].startswith("2026-09-01T00:00:00")

    birch = by_client[seeded["birch"]]
    assert "lastEngagementDate" not in birch
    assert birch["existingServices"] == []
    assert birch["targetBusinessUnitId"] == seeded["content"]


def test_matrix_applies_query_filters(client: TestClient, seeded: dict[str, str]) -> None:
    response = client.get("/api/cross-sell-matrix", params={"clientIndustry": "Retail", "minOpportunityScore": "20"})

    assert response.status_code == 200
    assert [item["clientId"] for item in response.json()["data"]] == [seeded["acme"]]


def test_matrix_accepts_legacy_current_business_unit_param(client: TestClient, seeded: dict[str, str]) -> None:
    response = client.get("/api/cross-sell-matrix", params={"currentBusinessUnitId": seeded["video"]})

    assert response.status_code == 200
    assert [item["clientId"] for item in response.json()["data"]] == [seeded["birch"]]


@pytest.mark.parametrize("raw", ["lots", "150"])
def test_invalid_min_score_returns_400(client: TestClient, seeded: dict[str, str], raw: str) -> None:
    response = client.get("/api/cross-sell-matrix", params={"minOpportunityScore": raw})

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert "minOpportunityScore" in body["error"]


def test_high_opportunity_returns_empty_list_above_every_score(client: TestClient, seeded: dict[str, str]) -> None:
    response = client.get("/api/cross-sell-matrix/high-opportunity", params={"minScore": "90"})

    assert response.status_code == 200
    assert response.json() == {"success": True, "data": []}


def test_client_route_returns_only_that_client(client: TestClient, seeded: dict[str, str]) -> None:
    response = client.get(f"/api/cross-sell-matrix/client/{seeded['acme']}")

    assert response.status_code == 200
    data = response.json()["data"]
    assert len(data) == 1
    assert sorted(service["name"] for service in data[0]["potentialServices"]) == ["Photography", "Video Production"]


def test_industry_and_region_routes(client: TestClient, seeded: dict[str, str]) -> None:
    by_industry = client.get("/api/cross-sell-matrix/industry/Media")
    by_region = client.get("/api/cross-sell-matrix/region/EU")
    case_mismatch = client.get("/api/cross-sell-matrix/region/eu")

    assert [item["clientId"] for item in by_industry.json()["data"]] == [seeded["birch"]]
    assert [item["clientId"] for item in by_region.json()["data"]] == [seeded["acme"]]
    assert case_mismatch.json()["data"] == []


def test_business_unit_routes_for_management(client: TestClient, seeded: dict[str, str]) -> None:
    source = client.get(f"/api/cross-sell-matrix/business-unit/source/{seeded['content']}")
    target = client.get(f"/api/cross-sell-matrix/business-unit/target/{seeded['content']}")

    assert [item["clientId"] for item in source.json()["data"]] == [seeded["acme"]]
    assert [item["clientId"] for item in target.json()["data"]] == [seeded["birch"]]


def test_summary_groups_items_by_target_unit(client: TestClient, seeded: dict[str, str]) -> None:
    response = client.get("/api/cross-sell-matrix/summary", params={"highOpportunityThreshold": "20"})

    assert response.status_code == 200
    summary = response.json()["data"]
    assert summary["totalItems"] == 2
    assert summary["highOpportunityThreshold"] == 20
    assert summary["highOpportunityCount"] == 1
    assert {entry["businessUnitName"] for entry in summary["byTargetBusinessUnit"]} == {"Content", "Video"}


def test_role_outside_allowed_set_is_forbidden(db_session: Session, seeded: dict[str, str]) -> None:
    with _client_as(db_session, AuthUser(sub="rep-1", roles=["sales_rep"])) as test_client:
        response = test_client.get("/api/cross-sell-matrix", headers={"X-Correlation-Id": "corr-denied-1"})
    app.dependency_overrides.clear()

    assert response.status_code == 403
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "Access denied"
    assert body["correlation_id"] == "corr-denied-1"


def test_bu_head_is_scoped_to_own_business_unit(db_session: Session, seeded: dict[str, str]) -> None:
    head = AuthUser(sub="head-1", roles=["bu_head"], business_unit_id=seeded["content"])
    with _client_as(db_session, head) as test_client:
        own = test_client.get(f"/api/cross-sell-matrix/business-unit/source/{seeded['content']}")
        other = test_client.get(f"/api/cross-sell-matrix/business-unit/target/{seeded['video']}")
        overall = test_client.get("/api/cross-sell-matrix")
    app.dependency_overrides.clear()

    assert own.status_code == 200
    assert other.status_code == 403
    assert overall.status_code == 200


def test_configured_roles_replace_defaults(
    db_session: Session,
    seeded: dict[str, str],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("CROSS_SELL_VIEW_ROLES", "admin,sales_rep")
    get_settings.cache_clear()

    with _client_as(db_session, AuthUser(sub="rep-1", roles=["sales_rep"])) as test_client:
        allowed = test_client.get("/api/cross-sell-matrix")
    with _client_as(db_session, AuthUser(sub="manager-1", roles=["management"])) as test_client:
        denied = test_client.get("/api/cross-sell-matrix")
    app.dependency_overrides.clear()

    assert allowed.status_code == 200
    assert denied.status_code == 403


class FailingReader:
    def read(self, prefilter: MatrixFilters | None = None):  # type: ignore[no-untyped-def]
        raise SnapshotReadError("clients", RuntimeError("connection reset"))


def test_storage_failure_returns_500_with_route_message(client: TestClient) -> None:
    app.dependency_overrides[get_snapshot_reader] = lambda: FailingReader()

    response = client.get("/api/cross-sell-matrix/region/EU", headers={"X-Correlation-Id": "corr-fail-1"})

    assert response.status_code == 500
    body = response.json()
    assert body == {
        "success": False,
        "message": "Failed to generate cross-sell matrix for region EU",
        "error": "Failed to read clients: connection reset",
        "correlation_id": "corr-fail-1",
    }
    assert response.headers.get("x-correlation-id") == "corr-fail-1"


@pytest.mark.parametrize("industry", ["Media", " Media"])
def test_industry_matches_identically_on_query_and_path(client: TestClient, seeded: dict[str, str], industry: str) -> None:
    by_query = client.get("/api/cross-sell-matrix", params={"clientIndustry": industry})
    by_path = client.get(f"/api/cross-sell-matrix/industry/{industry}")

    assert by_query.status_code == 200
    assert by_path.status_code == 200
    assert by_query.json()["data"] == by_path.json()["data"]
    expected = [seeded["birch"]] if industry == "Media" else []
    assert [item["clientId"] for item in by_path.json()["data"]] == expected


def test_invalid_min_score_keeps_filter_error_message(client: TestClient, seeded: dict[str, str]) -> None:
    response = client.get("/api/cross-sell-matrix/high-opportunity", params={"minScore": "abc"})

    assert response.status_code == 400
    body = response.json()
    assert body["message"] == "Invalid cross-sell matrix filter"
    assert "minScore" in body["error"]


class SlowReader:
    def read(self, prefilter: MatrixFilters | None = None) -> EntitySnapshot:
        time.sleep(0.05)
        return EntitySnapshot(
            clients=(ClientRecord(id="slow-client", name="Slow", primary_business_unit_id="bu-a"),),
            business_units=(BusinessUnitRecord(id="bu-a", name="A"), BusinessUnitRecord(id="bu-b", name="B")),
            services=(ServiceRecord(id="svc-b", name="Service B", business_unit_id="bu-b"),),
        )


def test_timed_out_generation_returns_504(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MATRIX_TIMEOUT_SECONDS", "0.01")
    get_settings.cache_clear()
    app.dependency_overrides[get_snapshot_reader] = lambda: SlowReader()

    response = client.get("/api/cross-sell-matrix/client/slow-client", headers={"X-Correlation-Id": "corr-slow-1"})

    assert response.status_code == 504
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "Cross-sell matrix generation timed out"
    assert body["error"] == "Matrix generation exceeded 0.01s after 0 clients"
    assert body["correlation_id"] == "corr-slow-1"
