from __future__ import annotations

from collections.abc import Generator
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from fakes import FakeIdentityGateway
from leadportal.core.config import get_settings
from leadportal.core.database import Base, get_db
from leadportal.identity import get_identity_gateway
from leadportal.leads.models import Admin, SalesRep
from leadportal.main import app


REP = {"Authorization": "Bearer rep-token"}
ADMIN = {"Authorization": "Bearer admin-token"}


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
def identity() -> FakeIdentityGateway:
    gateway = FakeIdentityGateway()
    gateway.add_user("rep1", token="rep-token", email="rep1@example.com")
    gateway.add_user("rep2", token="rep2-token", email="rep2@example.com")
    gateway.add_user("admin1", token="admin-token", email="admin1@example.com")
    return gateway


@pytest.fixture()
def client(db_session: Session, identity: FakeIdentityGateway) -> Generator[TestClient, None, None]:
    db_session.add_all(
        [
            SalesRep(
                uid="rep1",
                name="Rep One",
                phone="5125550199",
                calendar_url="https://cal.example.com/rep1",
                grant_key="gk1",
                commission_rate=Decimal("5.00"),
                is_active=True,
            ),
            SalesRep(uid="rep2", name="Amy Two", grant_key="gk2", is_active=True),
            SalesRep(uid="gone", name="Former Rep", grant_key="gk-old", is_active=False),
            Admin(uid="admin1", name="Admin One", phone="5125550000", is_active=True),
        ]
    )
    db_session.commit()

    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_identity_gateway] = lambda: identity
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_rep_info_hides_grant_key(client: TestClient) -> None:
    response = client.get("/sales-rep/info", headers=REP)
    assert response.status_code == 200
    assert response.json()["data"] == {
        "uid": "rep1",
        "name": "Rep One",
        "commission_rate": 5.0,
        "phone": "5125550199",
        "email": "rep1@example.com",
        "calendar_url": "https://cal.example.com/rep1",
        "is_active": True,
        "role": "sales_rep",
    }


def test_rep_updates_own_phone_and_calendar(client: TestClient, db_session: Session) -> None:
    phone = client.put("/sales-rep/phone", json={"phone": "5125550111"}, headers=REP)
    assert phone.status_code == 200
    assert phone.json()["data"] == {"uid": "rep1", "phone": "5125550111"}

    calendar = client.put("/sales-rep/calendar-url", json={"calendar_url": "https://cal.example.com/new"}, headers=REP)
    assert calendar.status_code == 200

    db_session.expire_all()
    rep = db_session.get(SalesRep, "rep1")
    assert rep.phone == "5125550111"
    assert rep.calendar_url == "https://cal.example.com/new"


def test_phone_is_required(client: TestClient) -> None:
    response = client.put("/sales-rep/phone", json={}, headers=REP)
    assert response.status_code == 400
    assert response.json()["error"] == "Phone number is required"


def test_admin_info(client: TestClient) -> None:
    response = client.get("/admin/info", headers=ADMIN)
    assert response.status_code == 200
    assert response.json()["data"] == {
        "uid": "admin1",
        "name": "Admin One",
        "email": "admin1@example.com",
        "phone": "5125550000",
        "is_active": True,
        "role": "admin",
    }


def test_admin_lists_active_reps_by_name_with_emails(client: TestClient, identity: FakeIdentityGateway) -> None:
    identity.failing_lookups.add("rep2")

    response = client.get("/admin/sales-reps", headers=ADMIN)
    assert response.status_code == 200
    reps = response.json()["data"]
    assert [rep["uid"] for rep in reps] == ["rep2", "rep1"]
    assert reps[0]["email"] is None
    assert reps[1]["email"] == "rep1@example.com"
    assert reps[1]["grant_key"] == "gk1"


def test_admin_reads_inactive_rep(client: TestClient) -> None:
    response = client.get("/admin/sales-reps/gone", headers=ADMIN)
    assert response.status_code == 200
    assert response.json()["data"]["is_active"] is False

    missing = client.get("/admin/sales-reps/nobody", headers=ADMIN)
    assert missing.status_code == 404
    assert missing.json()["error"] == "Sales rep not found"


def test_admin_updates_rep_and_identity_email(client: TestClient, identity: FakeIdentityGateway) -> None:
    response = client.put(
        "/admin/sales-reps/rep2",
        json={"name": "Amy Second", "commission_rate": 6.25, "email": "amy@example.com"},
        headers=ADMIN,
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["name"] == "Amy Second"
    assert data["commission_rate"] == 6.25
    assert data["email"] == "amy@example.com"
    assert identity.email_updates == [("rep2", "amy@example.com")]


def test_unchanged_email_is_not_pushed_to_identity(client: TestClient, identity: FakeIdentityGateway) -> None:
    response = client.put("/admin/sales-reps/rep1", json={"email": "rep1@example.com"}, headers=ADMIN)
    assert response.status_code == 200
    assert identity.email_updates == []


def test_identity_failure_rejects_update(client: TestClient, identity: FakeIdentityGateway, db_session: Session) -> None:
    identity.fail_updates = True

    response = client.put("/admin/sales-reps/rep2", json={"name": "New", "email": "new@example.com"}, headers=ADMIN)
    assert response.status_code == 400
    assert response.json()["error"] == "Failed to update email in identity provider"

    db_session.expire_all()
    assert db_session.get(SalesRep, "rep2").name == "Amy Two"


def test_empty_update_is_rejected(client: TestClient) -> None:
    response = client.put("/admin/sales-reps/rep1", json={}, headers=ADMIN)
    assert response.status_code == 400
    assert response.json()["error"] == "No fields provided to update"


def test_admin_sets_rep_phone_by_uid(client: TestClient) -> None:
    missing_uid = client.put("/admin/phone", json={"phone": "5125550123"}, headers=ADMIN)
    assert missing_uid.status_code == 400
    assert missing_uid.json()["error"] == "Sales rep UID is required"

    unknown = client.put("/admin/phone", json={"uid": "nobody", "phone": "5125550123"}, headers=ADMIN)
    assert unknown.status_code == 404

    ok = client.put("/admin/calendar-url", json={"uid": "rep2", "calendar_url": "https://cal.example.com/amy"}, headers=ADMIN)
    assert ok.status_code == 200
    assert ok.json()["data"] == {"uid": "rep2", "calendar_url": "https://cal.example.com/amy"}


def test_rep_cannot_use_admin_profile_routes(client: TestClient) -> None:
    response = client.get("/admin/sales-reps", headers=REP)
    assert response.status_code == 403
