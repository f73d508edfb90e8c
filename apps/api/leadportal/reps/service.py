from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from decimal import Decimal
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import select, update
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from leadportal.identity import IdentityError, IdentityGateway
from leadportal.leads.models import UNASSIGNED, Admin, SalesRep
from leadportal.reps.schemas import SalesRepUpdate


logger = logging.getLogger("leadportal.reps")


def _decimal(value: Decimal | None) -> float | None:
    return float(value) if value is not None else None


class RepDirectory:
    """Rep and admin profiles joined with their live identity-provider email."""

    def __init__(self, identity: IdentityGateway) -> None:
        self.identity = identity

    async def email_for(self, uid: str) -> str | None:
        try:
            user = await self.identity.get_user(uid)
        except IdentityError as exc:
            logger.warning("identity.email_lookup_failed", extra={"uid": uid, "error": str(exc)})
            return None
        return user.email if user is not None else None

    async def emails_for(self, uids: Iterable[str]) -> dict[str, str | None]:
        ordered = list(dict.fromkeys(uids))
        emails = await asyncio.gather(*(self.email_for(uid) for uid in ordered))
        return dict(zip(ordered, emails))

    @staticmethod
    def rep_profile(rep: SalesRep, email: str | None, *, include_grant_key: bool = True) -> dict[str, Any]:
        profile = {
            "uid": rep.uid,
            "name": rep.name,
            "commission_rate": _decimal(rep.commission_rate),
            "phone": rep.phone,
            "email": email,
            "calendar_url": rep.calendar_url,
            "is_active": rep.is_active,
        }
        if include_grant_key:
            profile["grant_key"] = rep.grant_key
        return profile

    @staticmethod
    def active_reps(session: Session) -> list[SalesRep]:
        return list(session.scalars(select(SalesRep).where(SalesRep.is_active.is_(True)).order_by(SalesRep.name.asc())))

    async def list_reps(self, session: Session) -> list[dict[str, Any]]:
        reps = await run_in_threadpool(self.active_reps, session)
        emails = await self.emails_for(rep.uid for rep in reps)
        return [self.rep_profile(rep, emails.get(rep.uid)) for rep in reps]

    async def rep_map(self, session: Session) -> dict[str, dict[str, Any]]:
        return {profile["uid"]: profile for profile in await self.list_reps(session)}

    async def expand_sales_rep(self, session: Session, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        reps = await self.rep_map(session)
        for row in rows:
            uid = row.get("sales_rep")
            row["sales_rep"] = reps.get(uid) if uid and uid != UNASSIGNED else None
        return rows


class RepService:
    def get_rep(self, session: Session, uid: str, *, active_only: bool = True) -> SalesRep:
        stmt = select(SalesRep).where(SalesRep.uid == uid)
        if active_only:
            stmt = stmt.where(SalesRep.is_active.is_(True))
        rep = session.scalar(stmt)
        if rep is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Sales rep not found")
        return rep

    def get_admin(self, session: Session, uid: str) -> Admin:
        admin = session.scalar(select(Admin).where(Admin.uid == uid, Admin.is_active.is_(True)))
        if admin is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Admin not found")
        return admin

    def _update_field(self, session: Session, uid: str | None, column: str, value: str | None, label: str) -> None:
        if not uid:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Sales rep UID is required")
        if not value:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"{label} is required")
        result = session.execute(
            update(SalesRep).where(SalesRep.uid == uid, SalesRep.is_active.is_(True)).values({column: value})
        )
        session.commit()
        if result.rowcount == 0:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Sales rep not found")

    def update_phone(self, session: Session, uid: str | None, phone: str | None) -> None:
        self._update_field(session, uid, "phone", phone, "Phone number")

    def update_calendar_url(self, session: Session, uid: str | None, calendar_url: str | None) -> None:
        self._update_field(session, uid, "calendar_url", calendar_url, "Calendar URL")

    def _apply_changes(self, session: Session, rep: SalesRep, changes: dict[str, Any]) -> None:
        for key, value in changes.items():
            setattr(rep, key, value)
        session.add(rep)
        session.commit()
        session.refresh(rep)

    async def update_rep(
        self,
        session: Session,
        uid: str,
        dto: SalesRepUpdate,
        directory: RepDirectory,
    ) -> dict[str, Any]:
        rep = await run_in_threadpool(self.get_rep, session, uid, active_only=False)
        changes = dto.model_dump(exclude_unset=True)
        email = changes.pop("email", None)

        if email:
            current = await directory.email_for(uid)
            if email != current:
                try:
                    await directory.identity.update_email(uid, email)
                except IdentityError as exc:
                    logger.warning("identity.email_update_failed", extra={"uid": uid, "error": str(exc)})
                    raise HTTPException(
                        status_code=status.HTTP_400_BAD_REQUEST,
                        detail="Failed to update email in identity provider",
                    ) from exc

        if not changes and not email:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields provided to update")

        await run_in_threadpool(self._apply_changes, session, rep, changes)
        logger.info("sales_rep.updated", extra={"uid": uid})
        return directory.rep_profile(rep, await directory.email_for(uid))
