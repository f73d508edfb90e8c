from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Protocol

import httpx
from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTClaimsError, JWTError

from leadportal.core.config import get_settings
from leadportal.identity.errors import IdentityUnavailableError, InvalidTokenError, TokenExpiredError


logger = logging.getLogger("leadportal.identity")

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
IDENTITY_TOOLKIT_URL = "https://identitytoolkit.googleapis.com/v1/projects/{project_id}"
_ADMIN_SCOPES = "https://www.googleapis.com/auth/identitytoolkit https://www.googleapis.com/auth/cloud-platform"


def _key_ids(jwks: dict[str, Any]) -> set[str]:
    return {key.get("kid") for key in jwks.get("keys", []) if isinstance(key, dict) and key.get("kid")}


@dataclass(frozen=True)
class IdentityUser:
    uid: str
    email: str | None = None
    display_name: str | None = None
    phone_number: str | None = None
    disabled: bool = False


class IdentityGateway(Protocol):
    async def verify_token(self, token: str) -> str | None: ...

    async def get_user(self, uid: str) -> IdentityUser | None: ...

    async def update_email(self, uid: str, email: str) -> None: ...


class FirebaseIdentityGateway:
    """Firebase Authentication over its public REST surface.

    ID tokens are verified locally against Google's published JWKS. User lookups
    and updates go through the Identity Toolkit admin API with a service-account
    access token obtained through the JWT-bearer grant.
    """

    jwks_ttl_seconds = 3600

    def __init__(
        self,
        *,
        project_id: str | None,
        jwks_url: str,
        service_account_email: str | None = None,
        service_account_private_key: str | None = None,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self.project_id = project_id
        self.jwks_url = jwks_url
        self.service_account_email = service_account_email
        self.service_account_private_key = (
            service_account_private_key.replace("\\n", "\n") if service_account_private_key else None
        )
        self._http = http
        self._jwks: dict[str, Any] | None = None
        self._jwks_expires_at = 0.0
        self._access_token: str | None = None
        self._access_token_expires_at = 0.0

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=15)
        return self._http

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def verify_token(self, token: str) -> str | None:
        if not self.project_id:
            raise IdentityUnavailableError("Firebase project id not configured")

        try:
            kid = jwt.get_unverified_header(token).get("kid")
        except JWTError as exc:
            raise InvalidTokenError() from exc

        cached = self._jwks is not None and time.monotonic() < self._jwks_expires_at
        jwks = await self._get_jwks()
        if cached and kid and kid not in _key_ids(jwks):
            # Google rotates signing keys; an unknown kid means the cached set is stale.
            jwks = await self._get_jwks(refresh=True)
        try:
            claims = jwt.decode(
                token,
                jwks,
                algorithms=["RS256"],
                audience=self.project_id,
                issuer=f"https://securetoken.google.com/{self.project_id}",
            )
        except ExpiredSignatureError as exc:
            raise TokenExpiredError() from exc
        except JWTClaimsError as exc:
            raise InvalidTokenError("Token claims are invalid.") from exc
        except JWTError as exc:
            raise InvalidTokenError() from exc

        subject = claims.get("sub") or claims.get("user_id")
        return str(subject) if subject else None

    async def get_user(self, uid: str) -> IdentityUser | None:
        data = await self._admin_call("accounts:lookup", {"localId": [uid]})
        users = data.get("users") or []
        if not users:
            return None
        return self._to_user(users[0])

    async def update_email(self, uid: str, email: str) -> None:
        await self._admin_call("accounts:update", {"localId": uid, "email": email})

    async def _get_jwks(self, *, refresh: bool = False) -> dict[str, Any]:
        now = time.monotonic()
        if not refresh and self._jwks is not None and now < self._jwks_expires_at:
            return self._jwks
        try:
            response = await self.http.get(self.jwks_url)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise IdentityUnavailableError(f"Unable to fetch signing keys: {exc}") from exc
        try:
            jwks = response.json()
        except ValueError as exc:
            raise IdentityUnavailableError("Signing keys response is not JSON") from exc
        if not isinstance(jwks, dict) or not isinstance(jwks.get("keys"), list):
            raise IdentityUnavailableError("Signing keys response has no key set")
        self._jwks = jwks
        self._jwks_expires_at = now + self.jwks_ttl_seconds
        return self._jwks

    async def _get_access_token(self) -> str:
        now = time.time()
        if self._access_token is not None and now < self._access_token_expires_at - 60:
            return self._access_token
        if not self.service_account_email or not self.service_account_private_key:
            raise IdentityUnavailableError("Firebase service account not configured")

        issued_at = int(now)
        assertion = jwt.encode(
            {
                "iss": self.service_account_email,
                "scope": _ADMIN_SCOPES,
                "aud": GOOGLE_TOKEN_URL,
                "iat": issued_at,
                "exp": issued_at + 3600,
            },
            self.service_account_private_key,
            algorithm="RS256",
        )
        try:
            response = await self.http.post(
                GOOGLE_TOKEN_URL,
                data={"grant_type": "urn:ietf:params:oauth:grant-type:jwt-bearer", "assertion": assertion},
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise IdentityUnavailableError(f"Unable to obtain access token: {exc}") from exc

        payload = response.json()
        self._access_token = str(payload["access_token"])
        self._access_token_expires_at = now + float(payload.get("expires_in", 3600))
        return self._access_token

    async def _admin_call(self, action: str, body: dict[str, Any]) -> dict[str, Any]:
        if not self.project_id:
            raise IdentityUnavailableError("Firebase project id not configured")
        token = await self._get_access_token()
        url = f"{IDENTITY_TOOLKIT_URL.format(project_id=self.project_id)}/{action}"
        try:
            response = await self.http.post(url, json=body, headers={"Authorization": f"Bearer {token}"})
        except httpx.HTTPError as exc:
            raise IdentityUnavailableError(f"Identity provider unreachable: {exc}") from exc
        if response.is_error:
            logger.warning(
                "identity.admin_call_failed",
                extra={"status_code": response.status_code, "error": response.text},
            )
            raise IdentityUnavailableError(f"{action} failed with status {response.status_code}")
        return response.json()

    @staticmethod
    def _to_user(raw: dict[str, Any]) -> IdentityUser:
        return IdentityUser(
            uid=str(raw.get("localId")),
            email=raw.get("email"),
            display_name=raw.get("displayName"),
            phone_number=raw.get("phoneNumber"),
            disabled=bool(raw.get("disabled", False)),
        )


@lru_cache
def _gateway_singleton() -> FirebaseIdentityGateway:
    settings = get_settings()
    return FirebaseIdentityGateway(
        project_id=settings.firebase_project_id,
        jwks_url=settings.firebase_jwks_url,
        service_account_email=settings.firebase_service_account_email,
        service_account_private_key=settings.firebase_service_account_private_key,
    )


def get_identity_gateway() -> IdentityGateway:
    return _gateway_singleton()
