from __future__ import annotations

import asyncio
import json
import time

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import jwk, jwt

from leadportal.identity import (
    FirebaseIdentityGateway,
    IdentityUnavailableError,
    InvalidTokenError,
    TokenExpiredError,
)


PROJECT_ID = "lead-portal-test"
JWKS_URL = "https://keys.example.test/jwks"
KID = "key-1"


@pytest.fixture(scope="module")
def private_pem() -> str:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


@pytest.fixture(scope="module")
def jwks(private_pem: str) -> dict:
    public_pem = (
        serialization.load_pem_private_key(private_pem.encode(), password=None)
        .public_key()
        .public_bytes(serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo)
    )
    key = jwk.construct(public_pem, algorithm="RS256").to_dict()
    key["kid"] = KID
    key["use"] = "sig"
    return {"keys": [key]}


def _token(private_pem: str, **overrides) -> str:
    now = int(time.time())
    claims = {
        "iss": f"https://securetoken.google.com/{PROJECT_ID}",
        "aud": PROJECT_ID,
        "sub": "rep1",
        "user_id": "rep1",
        "iat": now,
        "exp": now + 600,
    }
    claims.update(overrides)
    return jwt.encode(claims, private_pem, algorithm="RS256", headers={"kid": KID})


class Recorder:
    def __init__(self, jwks: dict) -> None:
        self.jwks = jwks
        self.requests: list[httpx.Request] = []
        self.lookup_users: list[dict] = [{"localId": "rep1", "email": "rep1@example.com", "displayName": "Rep One"}]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        if url == JWKS_URL:
            return httpx.Response(200, json=self.jwks)
        if url == "https://oauth2.googleapis.com/token":
            return httpx.Response(200, json={"access_token": "admin-access", "expires_in": 3600})
        if url.endswith("/accounts:lookup"):
            return httpx.Response(200, json={"users": self.lookup_users} if self.lookup_users else {})
        if url.endswith("/accounts:update"):
            return httpx.Response(200, json={"localId": json.loads(request.content)["localId"]})
        return httpx.Response(404)

    def paths(self) -> list[str]:
        return [request.url.path for request in self.requests]


def _gateway(recorder: Recorder, private_pem: str | None = None) -> FirebaseIdentityGateway:
    return FirebaseIdentityGateway(
        project_id=PROJECT_ID,
        jwks_url=JWKS_URL,
        service_account_email="svc@lead-portal-test.iam.gserviceaccount.com",
        service_account_private_key=private_pem,
        http=httpx.AsyncClient(transport=httpx.MockTransport(recorder)),
    )


def test_valid_token_resolves_uid_and_keys_are_cached(private_pem: str, jwks: dict) -> None:
    recorder = Recorder(jwks)
    gateway = _gateway(recorder)

    async def verify_twice() -> list[str | None]:
        token = _token(private_pem)
        return [await gateway.verify_token(token), await gateway.verify_token(token)]

    assert asyncio.run(verify_twice()) == ["rep1", "rep1"]
    assert recorder.paths() == ["/jwks"]


def test_expired_token_is_reported_as_expired(private_pem: str, jwks: dict) -> None:
    gateway = _gateway(Recorder(jwks))
    token = _token(private_pem, iat=int(time.time()) - 7200, exp=int(time.time()) - 3600)

    with pytest.raises(TokenExpiredError) as exc_info:
        asyncio.run(gateway.verify_token(token))
    assert str(exc_info.value) == "Token has expired."


def test_token_for_another_project_is_rejected(private_pem: str, jwks: dict) -> None:
    gateway = _gateway(Recorder(jwks))

    with pytest.raises(InvalidTokenError):
        asyncio.run(gateway.verify_token(_token(private_pem, aud="someone-else")))


def test_garbage_token_is_rejected(jwks: dict) -> None:
    gateway = _gateway(Recorder(jwks))

    with pytest.raises(InvalidTokenError) as exc_info:
        asyncio.run(gateway.verify_token("not-a-jwt"))
    assert str(exc_info.value) == "Unable to verify token."


def test_unreachable_key_endpoint_is_unavailable(private_pem: str) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    gateway = FirebaseIdentityGateway(
        project_id=PROJECT_ID,
        jwks_url=JWKS_URL,
        http=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    with pytest.raises(IdentityUnavailableError):
        asyncio.run(gateway.verify_token(_token(private_pem)))


def test_get_user_uses_admin_api_with_service_account_token(private_pem: str, jwks: dict) -> None:
    recorder = Recorder(jwks)
    gateway = _gateway(recorder, private_pem)

    user = asyncio.run(gateway.get_user("rep1"))

    assert user is not None
    assert user.uid == "rep1"
    assert user.email == "rep1@example.com"
    assert user.display_name == "Rep One"

    token_request, lookup_request = recorder.requests
    assert b"grant_type=urn%3Aietf%3Aparams%3Aoauth%3Agrant-type%3Ajwt-bearer" in token_request.content
    assert lookup_request.url.path == f"/v1/projects/{PROJECT_ID}/accounts:lookup"
    assert lookup_request.headers["authorization"] == "Bearer admin-access"
    assert json.loads(lookup_request.content) == {"localId": ["rep1"]}


def test_unknown_user_is_none_and_access_token_is_reused(private_pem: str, jwks: dict) -> None:
    recorder = Recorder(jwks)
    recorder.lookup_users = []
    gateway = _gateway(recorder, private_pem)

    async def lookups() -> list:
        return [await gateway.get_user("ghost"), await gateway.get_user("ghost")]

    assert asyncio.run(lookups()) == [None, None]
    assert recorder.paths().count("/token") == 1


def test_update_email_posts_to_admin_api(private_pem: str, jwks: dict) -> None:
    recorder = Recorder(jwks)
    gateway = _gateway(recorder, private_pem)

    asyncio.run(gateway.update_email("rep1", "new@example.com"))

    update_request = recorder.requests[-1]
    assert update_request.url.path.endswith("/accounts:update")
    assert json.loads(update_request.content) == {"localId": "rep1", "email": "new@example.com"}


def test_admin_calls_need_service_account(jwks: dict) -> None:
    gateway = _gateway(Recorder(jwks))

    with pytest.raises(IdentityUnavailableError):
        asyncio.run(gateway.get_user("rep1"))


def test_unknown_key_id_refetches_signing_keys_once(private_pem: str, jwks: dict) -> None:
    old_public_pem = (
        rsa.generate_private_key(public_exponent=65537, key_size=2048)
        .public_key()
        .public_bytes(serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo)
    )
    retired = {"keys": [{**jwk.construct(old_public_pem, algorithm="RS256").to_dict(), "kid": "retired-key"}]}
    recorder = Recorder(retired)
    gateway = _gateway(recorder)

    async def verify_across_rotation() -> str | None:
        with pytest.raises(InvalidTokenError):
            await gateway.verify_token(_token(private_pem, sub="warmup"))
        recorder.jwks = jwks
        return await gateway.verify_token(_token(private_pem))

    assert asyncio.run(verify_across_rotation()) == "rep1"
    assert recorder.paths() == ["/jwks", "/jwks"]


def test_non_json_key_endpoint_is_unavailable(private_pem: str) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>maintenance</html>")

    gateway = FirebaseIdentityGateway(
        project_id=PROJECT_ID,
        jwks_url=JWKS_URL,
        http=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    with pytest.raises(IdentityUnavailableError):
        asyncio.run(gateway.verify_token(_token(private_pem)))
