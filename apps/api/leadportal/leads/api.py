from __future__ import annotations

import logging
import math

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from leadportal.core.auth import Principal
from leadportal.core.database import get_db
from leadportal.core.errors import error_response
from leadportal.core.rbac import admin_auth, sales_auth
from leadportal.identity import IdentityGateway, get_identity_gateway
from leadportal.leads.models import SalesRep
from leadportal.leads.schemas import LeadCreate, LeadUpdate, TouchPointCreate, TouchPointRead
from leadportal.leads.service import LeadService, TouchPointService, serialize_lead
from leadportal.notifications.openphone import OpenPhoneNotifier, get_notifier
from leadportal.reps.service import RepDirectory


logger = logging.getLogger("leadportal.leads.api")

sales_router = APIRouter(prefix="/sales-rep", tags=["sales-rep.leads"])
admin_router = APIRouter(prefix="/admin", tags=["admin.leads"])
lead_service = LeadService()
touch_point_service = TouchPointService()

ADMIN_DEFAULT_CHANNEL = "Marketing"


def _error(request: Request, exc: HTTPException) -> JSONResponse:
    return error_response(request, status_code=exc.status_code, message=str(exc.detail))


@sales_router.get("/leads", response_model=None)
def list_my_leads(
    status_filter: str | None = Query(default=None, alias="status"),
    search: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    principal: Principal = Depends(sales_auth),
) -> dict:
    leads, total = lead_service.list_active_leads(
        db,
        owner_uid=principal.uid,
        status_filter=status_filter,
        search=search,
        page=page,
        limit=limit,
    )
    return {
        "message": "Leads retrieved successfully",
        "data": {
            "leads": leads,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "total_pages": math.ceil(total / limit) if total else 0,
            },
        },
    }


@sales_router.post("/leads", status_code=status.HTTP_201_CREATED, response_model=None)
def create_my_lead(
    request: Request,
    dto: LeadCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(sales_auth),
) -> dict | JSONResponse:
    try:
        lead = lead_service.create_lead(db, dto, owner_uid=principal.uid)
    except HTTPException as exc:
        return _error(request, exc)
    return {"message": "Lead created successfully", "data": serialize_lead(lead)}


@sales_router.get("/leads/{lead_id}", response_model=None)
def get_my_lead(
    request: Request,
    lead_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(sales_auth),
) -> dict | JSONResponse:
    try:
        lead = lead_service.get_lead(db, lead_id, owner_uid=principal.uid)
    except HTTPException as exc:
        return _error(request, exc)
    return {"message": "Lead retrieved successfully", "data": serialize_lead(lead)}


@sales_router.put("/leads/{lead_id}", response_model=None)
def update_my_lead(
    request: Request,
    lead_id: str,
    dto: LeadUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(sales_auth),
) -> dict | JSONResponse:
    try:
        lead = lead_service.get_lead(db, lead_id, owner_uid=principal.uid)
        lead = lead_service.update_lead(db, lead, dto)
    except HTTPException as exc:
        return _error(request, exc)
    return {"message": "Lead updated successfully", "data": serialize_lead(lead)}


@sales_router.get("/leads/{lead_id}/touch-points", response_model=None)
def list_my_touch_points(
    request: Request,
    lead_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(sales_auth),
) -> dict | JSONResponse:
    try:
        lead_service.get_lead(db, lead_id, owner_uid=principal.uid)
    except HTTPException as exc:
        return _error(request, exc)
    return {"message": "Touch points retrieved successfully", "data": touch_point_service.list_touch_points(db, lead_id)}


@sales_router.post("/leads/{lead_id}/touch-points", status_code=status.HTTP_201_CREATED, response_model=None)
def create_my_touch_point(
    request: Request,
    lead_id: str,
    dto: TouchPointCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(sales_auth),
) -> dict | JSONResponse:
    try:
        lead = lead_service.get_lead(db, lead_id, owner_uid=principal.uid)
        touch_point = touch_point_service.create_touch_point(db, lead, uid=principal.uid, dto=dto)
    except HTTPException as exc:
        return _error(request, exc)
    return {
        "message": "Touch point created successfully",
        "data": TouchPointRead.model_validate(touch_point).model_dump(mode="json"),
    }


@sales_router.delete("/leads/{lead_id}/touch-points/{touch_id}", response_model=None)
def delete_my_touch_point(
    request: Request,
    lead_id: str,
    touch_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(sales_auth),
) -> dict | JSONResponse:
    try:
        lead_service.get_lead(db, lead_id, owner_uid=principal.uid)
        touch_point_service.delete_touch_point(db, lead_id, touch_id, uid=principal.uid)
    except HTTPException as exc:
        return _error(request, exc)
    return {"message": "Touch point deleted successfully", "data": {"touch_id": touch_id, "lead_id": lead_id}}


@admin_router.get("/leads", response_model=None)
async def list_all_leads(
    db: Session = Depends(get_db),
    principal: Principal = Depends(admin_auth),
    identity: IdentityGateway = Depends(get_identity_gateway),
) -> dict:
    leads, _ = await run_in_threadpool(lead_service.list_active_leads, db)
    leads = await RepDirectory(identity).expand_sales_rep(db, leads)
    return {"message": "Leads retrieved successfully", "data": leads}


@admin_router.get("/leads/{lead_id}", response_model=None)
async def get_any_lead(
    request: Request,
    lead_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(admin_auth),
    identity: IdentityGateway = Depends(get_identity_gateway),
) -> dict | JSONResponse:
    try:
        lead = await run_in_threadpool(lead_service.get_lead, db, lead_id)
    except HTTPException as exc:
        return _error(request, exc)
    (row,) = await RepDirectory(identity).expand_sales_rep(db, [serialize_lead(lead)])
    return {"message": "Lead retrieved successfully", "data": row}


@admin_router.post("/leads", status_code=status.HTTP_201_CREATED, response_model=None)
async def create_assigned_lead(
    request: Request,
    dto: LeadCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(admin_auth),
    notifier: OpenPhoneNotifier = Depends(get_notifier),
) -> dict | JSONResponse:
    try:
        if not dto.sales_rep:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Sales rep is required")
        lead = await run_in_threadpool(
            lead_service.create_lead, db, dto, owner_uid=dto.sales_rep, default_channel=ADMIN_DEFAULT_CHANNEL
        )
    except HTTPException as exc:
        return _error(request, exc)

    data = serialize_lead(lead)
    if dto.text_notification:
        rep = await run_in_threadpool(db.get, SalesRep, lead.sales_rep)
        data["notified"] = await notifier.notify_lead_assigned(
            rep_phone=rep.phone if rep is not None else None,
            lead_id=lead.lead_id,
            lead_name=lead.name,
            lead_phone=lead.phone,
        )
    return {"message": "Lead created successfully", "data": data}


@admin_router.put("/leads/{lead_id}", response_model=None)
def update_any_lead(
    request: Request,
    lead_id: str,
    dto: LeadUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(admin_auth),
) -> dict | JSONResponse:
    try:
        lead = lead_service.get_lead(db, lead_id)
        lead = lead_service.update_lead(db, lead, dto, allow_admin_fields=True)
    except HTTPException as exc:
        return _error(request, exc)
    return {"message": "Lead updated successfully", "data": serialize_lead(lead)}


@admin_router.get("/leads/{lead_id}/touch-points", response_model=None)
def list_any_touch_points(
    request: Request,
    lead_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(admin_auth),
) -> dict | JSONResponse:
    try:
        lead_service.get_lead(db, lead_id)
    except HTTPException as exc:
        return _error(request, exc)
    return {"message": "Touch points retrieved successfully", "data": touch_point_service.list_touch_points(db, lead_id)}


@admin_router.post("/leads/{lead_id}/touch-points", status_code=status.HTTP_201_CREATED, response_model=None)
def create_admin_touch_point(
    request: Request,
    lead_id: str,
    dto: TouchPointCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(admin_auth),
) -> dict | JSONResponse:
    try:
        lead = lead_service.get_lead(db, lead_id)
        touch_point = touch_point_service.create_touch_point(
            db, lead, uid=principal.uid, dto=dto, commenter_type="admin"
        )
    except HTTPException as exc:
        return _error(request, exc)
    return {
        "message": "Touch point created successfully",
        "data": TouchPointRead.model_validate(touch_point).model_dump(mode="json"),
    }
