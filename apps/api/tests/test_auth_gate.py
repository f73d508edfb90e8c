from __future__ import annotations

import asyncio
import threading
from collections.abc import Generator
from decimal import Decimal

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
from starlette.requests import Request

from fakes import FakeIdentityGateway
from leadportal.core.auth import Role, extract_token, get_principal
from leadportal.core.config import get_settings
from leadportal.core.database import Base, get_db
from leadportal.core.rbac import INSUFFICIENT_PERMISSION, admin_auth
from leadportal.identity import TokenExpiredError, get_identity_gateway
from leadportal.leads.models import Admin, SalesRep
from leadportal.main import app


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
def identity(db_session: Session) -> FakeIdentityGateway:
    gateway = FakeIdentityGateway()
    gateway.add_user("rep1", token="abc", email="rep1@example.com")
    gateway.add_user("admin1", token="admin-token", email="admin1@example.com")
    gateway.add_user("both1", token="both-token", email="both1@example.com")
    gateway.add_user("nobody", token="nobody-token")

    db_session.add_all(
        [
            SalesRep(uid="rep1", name="Rep One", grant_key="gk1", commission_rate=Decimal("5.00"), is_active=True),
            SalesRep(uid="both1", name="Both One", grant_key="gk-both", is_active=True),
            SalesRep(uid="zed", name="Zed Rep", grant_key="gk-zed", is_active=True),
            Admin(uid="admin1", name="Admin One", is_active=True),
            Admin(uid="both1", name="Both One", is_active=True),
        ]
    )
    db_session.commit()
    return gateway


@pytest.fixture()
def client(db_session: Session, identity: FakeIdentityGateway) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_identity_gateway] = lambda: identity
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _request(authorization: str | None) -> Request:
    headers = [(b"authorization", authorization.encode())] if authorization is not None else []
    return Request({"type": "http", "method": "GET", "path": "/", "headers": headers})


def test_missing_header_is_rejected(client: TestClient) -> None:
    response = client.get("/sales-rep/info")
    assert response.status_code == 401
    assert response.json()["error"] == "No authorization header found."


def test_bearer_prefix_without_token_is_rejected() -> None:
    with pytest.raises(HTTPException) as exc_info:
        extract_token("Bearer ")
    assert exc_info.value.status_code == 401
    assert exc_info.value.detail == "No token found in authorization header."


@pytest.mark.parametrize("header", ["Bearer abc", "abc"])
def test_bearer_and_raw_token_resolve_to_same_credential(
    client: TestClient,
    identity: FakeIdentityGateway,
    header: str,
) -> None:
    response = client.get("/sales-rep/info", headers={"Authorization": header})
    assert response.status_code == 200
    assert identity.seen_tokens == ["abc"]
    body = response.json()["data"]
    assert body["uid"] == "rep1"
    assert body["email"] == "rep1@example.com"
    assert "grant_key" not in body


def test_invalid_token_is_rejected(client: TestClient) -> None:
    response = client.get("/sales-rep/info", headers={"Authorization": "Bearer wrong"})
    assert response.status_code == 401
    assert response.json()["error"] == "Unable to verify token."


def test_expired_token_has_its_own_message(client: TestClient, identity: FakeIdentityGateway) -> None:
    async def expired(token: str) -> str | None:
        raise TokenExpiredError()

    identity.verify_token = expired  # type: ignore[method-assign]
    response = client.get("/sales-rep/info", headers={"Authorization": "Bearer abc"})
    assert response.status_code == 401
    assert response.json()["error"] == "Token has expired."


def test_token_without_uid_is_rejected(client: TestClient, identity: FakeIdentityGateway) -> None:
    async def no_uid(token: str) -> str | None:
        return None

    identity.verify_token = no_uid  # type: ignore[method-assign]
    response = client.get("/sales-rep/info", headers={"Authorization": "Bearer abc"})
    assert response.status_code == 401
    assert response.json()["error"] == "Unable to get uid from token."


def test_unknown_user_is_rejected(client: TestClient, identity: FakeIdentityGateway) -> None:
    identity.tokens["ghost-token"] = "ghost"
    response = client.get("/sales-rep/info", headers={"Authorization": "Bearer ghost-token"})
    assert response.status_code == 401
    assert response.json()["error"] == "Unable to get user ghost"


def test_roleless_user_is_forbidden(client: TestClient) -> None:
    response = client.get("/sales-rep/info", headers={"Authorization": "Bearer nobody-token"})
    assert response.status_code == 403
    assert response.json()["error"] == INSUFFICIENT_PERMISSION


def test_sales_rep_cannot_reach_admin_routes(client: TestClient) -> None:
    response = client.get("/admin/info", headers={"Authorization": "Bearer abc"})
    assert response.status_code == 403
    assert response.json()["error"] == "Insufficient Permission. Please contact Admin."


def test_dual_role_caller_passes_both_gates(client: TestClient) -> None:
    headers = {"Authorization": "Bearer both-token"}
    assert client.get("/sales-rep/info", headers=headers).status_code == 200
    admin = client.get("/admin/info", headers=headers)
    assert admin.status_code == 200
    assert admin.json()["data"]["role"] == "admin"


def test_roles_follow_lookup_order_and_rep_grant_key(db_session: Session, identity: FakeIdentityGateway) -> None:
    principal = asyncio.run(get_principal(_request("Bearer both-token"), db_session, identity))
    assert principal.roles == (Role.SALES_REP, Role.ADMIN)
    assert principal.grant_key == "gk-both"

    checked = asyncio.run(admin_auth(principal))
    assert checked is principal


def test_admin_only_caller_uses_configured_grant_key(
    db_session: Session,
    identity: FakeIdentityGateway,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("JOBTREAD_ADMIN_GRANT_KEY", "gk-admin")
    get_settings.cache_clear()

    principal = asyncio.run(get_principal(_request("admin-token"), db_session, identity))
    assert principal.roles == (Role.ADMIN,)
    assert principal.grant_key == "gk-admin"


def test_admin_only_caller_can_borrow_first_active_rep_key(
    db_session: Session,
    identity: FakeIdentityGateway,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("ADMIN_GRANT_KEY_POLICY", "any_active_rep")
    get_settings.cache_clear()

    principal = asyncio.run(get_principal(_request("admin-token"), db_session, identity))
    assert principal.grant_key == "gk-both"


def test_inactive_rep_row_grants_no_role(db_session: Session, identity: FakeIdentityGateway) -> None:
    rep = db_session.get(SalesRep, "rep1")
    assert rep is not None
    rep.is_active = False
    db_session.commit()

    principal = asyncio.run(get_principal(_request("abc"), db_session, identity))
    assert principal.roles == ()
    assert principal.grant_key is None


class BrokenSession:
    def __init__(self) -> None:
        self.rolled_back = False

    def scalar(self, *args, **kwargs):
        raise SQLAlchemyError("database unavailable")

    def rollback(self) -> None:
        self.rolled_back = True


def test_database_error_during_role_lookup_is_an_auth_failure(identity: FakeIdentityGateway) -> None:
    session = BrokenSession()
    with pytest.raises(HTTPException) as exc_info:
        asyncio.run(get_principal(_request("abc"), session, identity))  # type: ignore[arg-type]
    assert exc_info.value.status_code == 401
    assert exc_info.value.detail == "Unable to get user rep1"
    assert session.rolled_back


class ThreadRecordingSession:
    def __init__(self, session: Session) -> None:
        self._session = session
        self.threads: set[int] = set()

    def scalar(self, *args, **kwargs):
        self.threads.add(threading.get_ident())
        return self._session.scalar(*args, **kwargs)

    def rollback(self) -> None:
        self._session.rollback()


def test_role_lookup_runs_off_the_event_loop_thread(db_session: Session, identity: FakeIdentityGateway) -> None:
    session = ThreadRecordingSession(db_session)
    loop_threads: set[int] = set()

    async def resolve() -> object:
        loop_threads.add(threading.get_ident())
        return await get_principal(_request("abc"), session, identity)  # type: ignore[arg-type]

    principal = asyncio.run(resolve())
    assert principal.roles == (Role.SALES_REP,)
    assert session.threads
    assert not session.threads & loop_threads
