from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from fakes import FakeIdentityGateway, FakeJobTreadClient
from leadportal.core.config import get_settings
from leadportal.core.database import Base, get_db
from leadportal.identity import get_identity_gateway
from leadportal.jobtread.client import JobTreadError, get_jobtread_client
from leadportal.jobtread.workflow import ImportConfig, get_import_config
from leadportal.leads.models import SalesRep
from leadportal.main import app


REP_HEADERS = {"Authorization": "Bearer rep-token"}
ACCOUNT = {
    "id": "acc-1",
    "name": "[TEST] Jane Doe Residence",
    "type": "customer",
    "isTaxable": False,
    "customFieldValues": {"nodes": [{"id": "cfv-1", "value": "Imported by Rep One", "customField": {"name": "Notes"}}]},
}


def organization_handler(fail_locations: bool = False):
    def handle(body: dict) -> dict:
        if "jobs" in body:
            return {"organization": {"jobs": {"nodes": [{"id": "job-1", "name": "Kitchen Remodel", "number": "1001"}]}}}
        if fail_locations:
            raise JobTreadError("JobTread request failed: timeout")
        return {"organization": {"locations": {"nodes": [{"id": "loc-1", "address": "12 Main St, Austin, TX"}]}}}

    return handle


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
def jobtread() -> FakeJobTreadClient:
    return FakeJobTreadClient({"account": {"account": ACCOUNT}, "organization": organization_handler()})


@pytest.fixture()
def client(db_session: Session, jobtread: FakeJobTreadClient) -> Generator[TestClient, None, None]:
    identity = FakeIdentityGateway()
    identity.add_user("rep1", token="rep-token")
    identity.add_user("keyless", token="keyless-token")
    db_session.add_all(
        [
            SalesRep(uid="rep1", name="Rep One", grant_key="gk1", is_active=True),
            SalesRep(uid="keyless", name="No Key", is_active=True),
        ]
    )
    db_session.commit()

    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_identity_gateway] = lambda: identity
    app.dependency_overrides[get_jobtread_client] = lambda: jobtread
    app.dependency_overrides[get_import_config] = lambda: ImportConfig(organization_id="org-1")
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_customer_is_returned_with_jobs_and_locations(client: TestClient, jobtread: FakeJobTreadClient) -> None:
    response = client.get("/sales-rep/jobtread/customer/acc-1", headers=REP_HEADERS)
    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Customer and jobs retrieved successfully"
    assert body["data"]["customer"] == ACCOUNT
    assert body["data"]["jobs"] == [{"id": "job-1", "name": "Kitchen Remodel", "number": "1001"}]
    assert body["data"]["locations"] == [{"id": "loc-1", "address": "12 Main St, Austin, TX"}]

    account_query = jobtread.calls_for("account")[0]
    assert account_query["$"] == {"id": "acc-1"}
    assert account_query["customFieldValues"]["$"] == {"size": 25}

    organization_queries = jobtread.calls_for("organization")
    jobs_query = next(query for query in organization_queries if "jobs" in query)
    assert jobs_query["$"] == {"id": "org-1"}
    assert jobs_query["jobs"]["$"]["where"] == [["accountId", "=", "acc-1"]]
    locations_query = next(query for query in organization_queries if "locations" in query)
    assert locations_query["locations"]["$"]["where"] == [["accountId", "=", "acc-1"]]


def test_failed_locations_lookup_returns_empty_list(client: TestClient, jobtread: FakeJobTreadClient) -> None:
    jobtread.handlers["organization"] = organization_handler(fail_locations=True)

    response = client.get("/sales-rep/jobtread/customer/acc-1", headers=REP_HEADERS)
    assert response.status_code == 200
    assert response.json()["data"]["locations"] == []
    assert len(response.json()["data"]["jobs"]) == 1


def test_unknown_customer_is_not_found(client: TestClient, jobtread: FakeJobTreadClient) -> None:
    jobtread.handlers["account"] = {"account": None}

    response = client.get("/sales-rep/jobtread/customer/missing", headers=REP_HEADERS)
    assert response.status_code == 404
    assert response.json()["error"] == "Customer not found"
    assert jobtread.operations() == ["account"]


def test_crm_failure_on_account_lookup_is_a_server_error(client: TestClient, jobtread: FakeJobTreadClient) -> None:
    jobtread.handlers["account"] = JobTreadError("JobTread API error: 500 Internal Server Error", status_code=500)

    response = client.get("/sales-rep/jobtread/customer/acc-1", headers=REP_HEADERS)
    assert response.status_code == 500
    assert response.json()["error"] == "Internal server error"
    assert "correlation_id" in response.json()


def test_rep_without_grant_key_is_rejected(client: TestClient, jobtread: FakeJobTreadClient) -> None:
    response = client.get("/sales-rep/jobtread/customer/acc-1", headers={"Authorization": "Bearer keyless-token"})
    assert response.status_code == 400
    assert response.json()["error"] == "JobTread grant key not configured for this user"
    assert jobtread.calls == []
