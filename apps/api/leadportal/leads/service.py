from __future__ import annotations

import logging
import secrets
import string
import time
import uuid
from datetime import date, datetime
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import Select, func, or_, select
from sqlalchemy.orm import Session

from leadportal.leads.models import (
    LEAD_STATUS_FOLLOW_UP,
    LEAD_STATUS_IMPORTED,
    LEAD_STATUS_IMPORTING,
    LEAD_STATUS_NEW,
    UNASSIGNED,
    Admin,
    Lead,
    SalesRep,
    TouchPoint,
    utcnow,
)
from leadportal.leads.schemas import (
    CONTACT_METHODS,
    FINANCE_NEED_VALUES,
    LeadCreate,
    LeadRead,
    LeadUpdate,
    TouchPointCreate,
    TouchPointRead,
)


logger = logging.getLogger("leadportal.leads")

INACTIVE_STATUSES = (LEAD_STATUS_IMPORTED, LEAD_STATUS_IMPORTING)
TOUCH_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_touch_id() -> str:
    suffix = "".join(secrets.choice(TOUCH_ID_ALPHABET) for _ in range(9))
    return f"tp_{int(time.time() * 1000)}_{suffix}"


def generate_lead_id() -> str:
    return uuid.uuid4().hex[:16]


def _isoformat(value: datetime | date | None) -> str | None:
    return value.isoformat() if value is not None else None


def serialize_lead(lead: Lead) -> dict[str, Any]:
    return LeadRead.model_validate(lead).model_dump(mode="json")


def _validate_finance_need(value: str | None) -> None:
    if value and value not in FINANCE_NEED_VALUES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Finance need must be either "Yes" or "No"')


def _validate_status(new_status: str | None, follow_up_date: date | None) -> None:
    if new_status in INACTIVE_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Leads can only be marked Imported by the JobTread import",
        )
    if new_status == LEAD_STATUS_FOLLOW_UP and follow_up_date is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Follow-up date is required when status is Follow-up",
        )


class LeadService:
    def _active_leads_query(self, owner_uid: str | None, status_filter: str | None, search: str | None) -> Select:
        stmt = select(Lead).where(Lead.status.not_in(INACTIVE_STATUSES))
        if owner_uid is not None:
            stmt = stmt.where(Lead.sales_rep == owner_uid)
        if status_filter:
            stmt = stmt.where(Lead.status == status_filter)
        if search:
            pattern = f"%{search.strip()}%"
            stmt = stmt.where(or_(Lead.name.ilike(pattern), Lead.email.ilike(pattern), Lead.phone.ilike(pattern)))
        return stmt

    def list_active_leads(
        self,
        session: Session,
        *,
        owner_uid: str | None = None,
        status_filter: str | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int | None = None,
    ) -> tuple[list[dict[str, Any]], int]:
        stmt = self._active_leads_query(owner_uid, status_filter, search)
        total = session.scalar(select(func.count()).select_from(stmt.subquery())) or 0

        stmt = stmt.order_by(Lead.created_at.desc(), Lead.lead_id.asc())
        if limit is not None:
            stmt = stmt.offset((page - 1) * limit).limit(limit)
        leads = list(session.scalars(stmt).all())
        return self._with_touch_stats(session, leads), total

    def _with_touch_stats(self, session: Session, leads: list[Lead]) -> list[dict[str, Any]]:
        if not leads:
            return []
        lead_ids = [lead.lead_id for lead in leads]
        stats = {
            row.lead_id: row
            for row in session.execute(
                select(
                    TouchPoint.lead_id,
                    func.count(TouchPoint.touch_id).label("touch_point_count"),
                    func.max(TouchPoint.created_at).label("last_touched"),
                )
                .where(TouchPoint.lead_id.in_(lead_ids), TouchPoint.is_active.is_(True))
                .group_by(TouchPoint.lead_id)
            )
        }

        latest: dict[str, TouchPoint] = {}
        for touch_point in session.scalars(
            select(TouchPoint)
            .where(TouchPoint.lead_id.in_(lead_ids), TouchPoint.is_active.is_(True))
            .order_by(TouchPoint.created_at.desc(), TouchPoint.touch_id.desc())
        ):
            latest.setdefault(touch_point.lead_id, touch_point)
        names = _author_names(session, latest.values())

        rows = []
        for lead in leads:
            row = serialize_lead(lead)
            stat = stats.get(lead.lead_id)
            row["touch_point_count"] = int(stat.touch_point_count) if stat else 0
            row["last_touched"] = _isoformat(stat.last_touched) if stat else None
            last = latest.get(lead.lead_id)
            row["last_touchpoint"] = (
                {
                    "description": last.description,
                    "contact_method": last.contact_method,
                    "created_at": _isoformat(last.created_at),
                    "uid": last.uid,
                    "contact_name": names.get((last.commenter_type, last.uid), last.uid),
                }
                if last is not None
                else None
            )
            rows.append(row)
        return rows

    def get_lead(self, session: Session, lead_id: str, *, owner_uid: str | None = None) -> Lead:
        stmt = select(Lead).where(Lead.lead_id == lead_id)
        if owner_uid is not None:
            stmt = stmt.where(Lead.sales_rep == owner_uid)
        lead = session.scalar(stmt)
        if lead is None:
            detail = "Lead not found or access denied" if owner_uid is not None else "Lead not found"
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)
        return lead

    def create_lead(
        self,
        session: Session,
        dto: LeadCreate,
        *,
        owner_uid: str,
        default_channel: str | None = None,
    ) -> Lead:
        if not (dto.name or "").strip():
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Name is required")
        _validate_finance_need(dto.finance_need)
        _validate_status(dto.status, dto.follow_up_date)

        lead_id = dto.lead_id or generate_lead_id()
        if session.get(Lead, lead_id) is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Lead ID already exists")

        values = dto.model_dump(exclude={"lead_id", "sales_rep", "text_notification"})
        values["status"] = dto.status or LEAD_STATUS_NEW
        values["channel"] = dto.channel or default_channel
        lead = Lead(lead_id=lead_id, sales_rep=owner_uid, **values)
        session.add(lead)
        session.commit()
        session.refresh(lead)
        logger.info("lead.created", extra={"lead_id": lead_id})
        return lead

    def update_lead(self, session: Session, lead: Lead, dto: LeadUpdate, *, allow_admin_fields: bool = False) -> Lead:
        changes = dto.model_dump(exclude_unset=True)
        if not allow_admin_fields:
            changes.pop("sales_rep", None)
            changes.pop("commission_rate", None)
        if "name" in changes and not (changes["name"] or "").strip():
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Name is required")
        _validate_finance_need(changes.get("finance_need"))

        if lead.status in INACTIVE_STATUSES and "status" in changes and changes["status"] != lead.status:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Imported leads cannot change status")
        new_status = changes.get("status") or lead.status
        follow_up_date = changes.get("follow_up_date", lead.follow_up_date)
        if "status" in changes and changes["status"] != lead.status:
            _validate_status(new_status, follow_up_date)
            if new_status != LEAD_STATUS_FOLLOW_UP and "follow_up_date" not in changes:
                changes["follow_up_date"] = None
        elif new_status == LEAD_STATUS_FOLLOW_UP and follow_up_date is None:
            _validate_status(new_status, follow_up_date)

        sales_rep = changes.get("sales_rep")
        if sales_rep and sales_rep != UNASSIGNED and session.get(SalesRep, sales_rep) is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Sales rep not found")

        for key, value in changes.items():
            if key == "status" and value is None:
                continue
            setattr(lead, key, value)
        lead.updated_at = utcnow()
        session.add(lead)
        session.commit()
        session.refresh(lead)
        logger.info("lead.updated", extra={"lead_id": lead.lead_id})
        return lead


def _author_names(session: Session, touch_points) -> dict[tuple[str, str], str]:
    admin_uids = {tp.uid for tp in touch_points if tp.commenter_type == "admin"}
    rep_uids = {tp.uid for tp in touch_points if tp.commenter_type != "admin"}
    names: dict[tuple[str, str], str] = {}
    if admin_uids:
        for uid, name in session.execute(
            select(Admin.uid, Admin.name).where(Admin.uid.in_(admin_uids), Admin.is_active.is_(True))
        ):
            if name:
                names[("admin", uid)] = name
    if rep_uids:
        for uid, name in session.execute(
            select(SalesRep.uid, SalesRep.name).where(SalesRep.uid.in_(rep_uids), SalesRep.is_active.is_(True))
        ):
            if name:
                names[("sales_rep", uid)] = name
    return names


class TouchPointService:
    def list_touch_points(self, session: Session, lead_id: str) -> list[dict[str, Any]]:
        touch_points = list(
            session.scalars(
                select(TouchPoint)
                .where(TouchPoint.lead_id == lead_id, TouchPoint.is_active.is_(True))
                .order_by(TouchPoint.created_at.desc(), TouchPoint.touch_id.desc())
            ).all()
        )
        names = _author_names(session, touch_points)
        rows = []
        for touch_point in touch_points:
            row = TouchPointRead.model_validate(touch_point)
            key = ("admin" if touch_point.commenter_type == "admin" else "sales_rep", touch_point.uid)
            row.contact_name = names.get(key, touch_point.uid)
            rows.append(row.model_dump(mode="json"))
        return rows

    def create_touch_point(
        self,
        session: Session,
        lead: Lead,
        *,
        uid: str,
        dto: TouchPointCreate,
        commenter_type: str = "sales_rep",
    ) -> TouchPoint:
        if dto.contact_method not in CONTACT_METHODS:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Contact method must be one of: {', '.join(CONTACT_METHODS)}",
            )
        if lead.status in INACTIVE_STATUSES and dto.status and dto.status != lead.status:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Imported leads cannot change status")

        notes = []
        if dto.status and dto.status != lead.status:
            follow_up_date = dto.follow_up_date if dto.status == LEAD_STATUS_FOLLOW_UP else None
            _validate_status(dto.status, follow_up_date)
            notes.append(f"Status changed from {lead.status} to {dto.status}")
            lead.status = dto.status
            lead.follow_up_date = follow_up_date
            lead.updated_at = utcnow()
        elif dto.follow_up_date is not None and lead.status == LEAD_STATUS_FOLLOW_UP:
            lead.follow_up_date = dto.follow_up_date
            lead.updated_at = utcnow()
        if dto.follow_up_date is not None and lead.status == LEAD_STATUS_FOLLOW_UP:
            notes.append(f"Follow-up scheduled for {dto.follow_up_date.isoformat()}")

        touch_point = TouchPoint(
            touch_id=generate_touch_id(),
            uid=uid,
            lead_id=lead.lead_id,
            contact_method=dto.contact_method,
            description=dto.description,
            system_note="\n".join(notes) if notes else None,
            commenter_type=commenter_type,
            created_at=utcnow(),
            is_active=True,
        )
        session.add(lead)
        session.add(touch_point)
        session.commit()
        session.refresh(touch_point)
        logger.info("touch_point.created", extra={"lead_id": lead.lead_id})
        return touch_point

    def delete_touch_point(self, session: Session, lead_id: str, touch_id: str, *, uid: str) -> None:
        touch_point = session.scalar(
            select(TouchPoint).where(
                TouchPoint.touch_id == touch_id,
                TouchPoint.lead_id == lead_id,
                TouchPoint.uid == uid,
                TouchPoint.is_active.is_(True),
            )
        )
        if touch_point is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Touch point not found")
        touch_point.is_active = False
        session.add(touch_point)
        session.commit()
        logger.info("touch_point.deleted", extra={"lead_id": lead_id})
