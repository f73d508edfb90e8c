from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from fastapi import Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from starlette.requests import Request

from leadportal.context import set_principal_uid
from leadportal.core.config import Settings, get_settings
from leadportal.core.database import get_db
from leadportal.identity import IdentityError, IdentityGateway, IdentityUser, InvalidTokenError, get_identity_gateway
from leadportal.leads.models import Admin, SalesRep
from leadportal.metrics import observe_auth_failure


logger = logging.getLogger("leadportal.auth")

BEARER_PREFIX = "Bearer "


class Role(str, Enum):
    SALES_REP = "sales_rep"
    ADMIN = "admin"


@dataclass(frozen=True)
class Principal:
    uid: str
    roles: tuple[Role, ...]
    grant_key: str | None
    user: IdentityUser

    def has_role(self, role: Role) -> bool:
        return role in self.roles


def _unauthorized(reason: str, message: str) -> HTTPException:
    observe_auth_failure(reason)
    logger.info("auth.rejected", extra={"reason": reason})
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=message)


def extract_token(authorization: str | None) -> str:
    if not authorization:
        raise _unauthorized("missing_header", "No authorization header found.")
    token = authorization[len(BEARER_PREFIX):] if authorization.startswith(BEARER_PREFIX) else authorization
    token = token.strip()
    if not token:
        raise _unauthorized("missing_token", "No token found in authorization header.")
    return token


def resolve_admin_grant_key(session: Session, settings: Settings) -> str | None:
    if settings.admin_grant_key_policy == "any_active_rep":
        return session.scalar(
            select(SalesRep.grant_key)
            .where(SalesRep.is_active.is_(True), SalesRep.grant_key.is_not(None), SalesRep.grant_key != "")
            .order_by(SalesRep.name.asc())
            .limit(1)
        )
    return settings.jobtread_admin_grant_key


def resolve_roles(session: Session, uid: str, settings: Settings) -> tuple[tuple[Role, ...], str | None]:
    """Roles in lookup order (sales rep, then admin) and the grant key the caller acts with."""
    try:
        rep = session.scalar(select(SalesRep).where(SalesRep.uid == uid, SalesRep.is_active.is_(True)))
        admin = session.scalar(select(Admin).where(Admin.uid == uid, Admin.is_active.is_(True)))
        roles: list[Role] = []
        if rep is not None:
            roles.append(Role.SALES_REP)
        if admin is not None:
            roles.append(Role.ADMIN)

        grant_key = rep.grant_key if rep is not None else None
        if not grant_key and admin is not None:
            grant_key = resolve_admin_grant_key(session, settings)
    except SQLAlchemyError:
        session.rollback()
        raise
    return tuple(roles), grant_key or None


async def get_principal(
    request: Request,
    db: Session = Depends(get_db),
    identity: IdentityGateway = Depends(get_identity_gateway),
) -> Principal:
    token = extract_token(request.headers.get("authorization"))

    try:
        uid = await identity.verify_token(token)
    except InvalidTokenError as exc:
        raise _unauthorized("invalid_token", str(exc)) from exc
    except IdentityError as exc:
        logger.warning("auth.verify_unavailable", extra={"error": str(exc)})
        raise _unauthorized("verify_failed", "Unable to verify token.") from exc

    if not uid:
        raise _unauthorized("missing_uid", "Unable to get uid from token.")

    try:
        user = await identity.get_user(uid)
    except IdentityError as exc:
        logger.warning("auth.user_lookup_failed", extra={"uid": uid, "error": str(exc)})
        user = None
    if user is None:
        raise _unauthorized("unknown_user", f"Unable to get user {uid}")

    try:
        roles, grant_key = await run_in_threadpool(resolve_roles, db, uid, get_settings())
    except SQLAlchemyError as exc:
        logger.error("auth.role_lookup_failed", extra={"uid": uid, "error": str(exc)})
        raise _unauthorized("role_lookup_failed", f"Unable to get user {uid}") from exc

    principal = Principal(uid=uid, roles=roles, grant_key=grant_key, user=user)
    request.state.principal = principal
    set_principal_uid(uid)
    return principal
