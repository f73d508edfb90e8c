from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from leadportal.core.auth import Principal
from leadportal.core.database import get_db
from leadportal.core.errors import error_response
from leadportal.core.rbac import admin_auth, sales_auth
from leadportal.identity import IdentityGateway, get_identity_gateway
from leadportal.reps.schemas import CalendarUrlUpdate, PhoneUpdate, SalesRepUpdate
from leadportal.reps.service import RepDirectory, RepService


sales_router = APIRouter(prefix="/sales-rep", tags=["sales-rep.profile"])
admin_router = APIRouter(prefix="/admin", tags=["admin.sales-reps"])
service = RepService()


def get_rep_directory(identity: IdentityGateway = Depends(get_identity_gateway)) -> RepDirectory:
    return RepDirectory(identity)


@sales_router.get("/info", response_model=None)
def my_info(
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(sales_auth),
    directory: RepDirectory = Depends(get_rep_directory),
) -> dict | JSONResponse:
    try:
        rep = service.get_rep(db, principal.uid)
    except HTTPException as exc:
        return error_response(request, status_code=exc.status_code, message=str(exc.detail))
    profile = directory.rep_profile(rep, principal.user.email, include_grant_key=False)
    profile["role"] = "sales_rep"
    return {"message": "Sales rep info retrieved successfully", "data": profile}


@sales_router.put("/phone", response_model=None)
def update_my_phone(
    request: Request,
    dto: PhoneUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(sales_auth),
) -> dict | JSONResponse:
    try:
        service.update_phone(db, principal.uid, dto.phone)
    except HTTPException as exc:
        return error_response(request, status_code=exc.status_code, message=str(exc.detail))
    return {"message": "Phone number updated successfully", "data": {"uid": principal.uid, "phone": dto.phone}}


@sales_router.put("/calendar-url", response_model=None)
def update_my_calendar_url(
    request: Request,
    dto: CalendarUrlUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(sales_auth),
) -> dict | JSONResponse:
    try:
        service.update_calendar_url(db, principal.uid, dto.calendar_url)
    except HTTPException as exc:
        return error_response(request, status_code=exc.status_code, message=str(exc.detail))
    return {
        "message": "Calendar URL updated successfully",
        "data": {"uid": principal.uid, "calendar_url": dto.calendar_url},
    }


@admin_router.get("/info", response_model=None)
def admin_info(
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(admin_auth),
) -> dict | JSONResponse:
    try:
        admin = service.get_admin(db, principal.uid)
    except HTTPException as exc:
        return error_response(request, status_code=exc.status_code, message=str(exc.detail))
    return {
        "message": "Admin info retrieved successfully",
        "data": {
            "uid": admin.uid,
            "name": admin.name,
            "email": principal.user.email,
            "phone": admin.phone,
            "is_active": admin.is_active,
            "role": "admin",
        },
    }


@admin_router.get("/sales-reps", response_model=None)
async def list_sales_reps(
    db: Session = Depends(get_db),
    principal: Principal = Depends(admin_auth),
    directory: RepDirectory = Depends(get_rep_directory),
) -> dict:
    return {"message": "Sales reps retrieved successfully", "data": await directory.list_reps(db)}


@admin_router.get("/sales-reps/{uid}", response_model=None)
async def get_sales_rep(
    request: Request,
    uid: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(admin_auth),
    directory: RepDirectory = Depends(get_rep_directory),
) -> dict | JSONResponse:
    try:
        rep = await run_in_threadpool(service.get_rep, db, uid, active_only=False)
    except HTTPException as exc:
        return error_response(request, status_code=exc.status_code, message=str(exc.detail))
    return {
        "message": "Sales rep retrieved successfully",
        "data": directory.rep_profile(rep, await directory.email_for(uid)),
    }


@admin_router.put("/sales-reps/{uid}", response_model=None)
async def update_sales_rep(
    request: Request,
    uid: str,
    dto: SalesRepUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(admin_auth),
    directory: RepDirectory = Depends(get_rep_directory),
) -> dict | JSONResponse:
    try:
        profile = await service.update_rep(db, uid, dto, directory)
    except HTTPException as exc:
        return error_response(request, status_code=exc.status_code, message=str(exc.detail))
    return {"message": "Sales rep updated successfully", "data": profile}


@admin_router.put("/phone", response_model=None)
def update_rep_phone(
    request: Request,
    dto: PhoneUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(admin_auth),
) -> dict | JSONResponse:
    try:
        service.update_phone(db, dto.uid, dto.phone)
    except HTTPException as exc:
        return error_response(request, status_code=exc.status_code, message=str(exc.detail))
    return {"message": "Phone number updated successfully", "data": {"uid": dto.uid, "phone": dto.phone}}


@admin_router.put("/calendar-url", response_model=None)
def update_rep_calendar_url(
    request: Request,
    dto: CalendarUrlUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(admin_auth),
) -> dict | JSONResponse:
    try:
        service.update_calendar_url(db, dto.uid, dto.calendar_url)
    except HTTPException as exc:
        return error_response(request, status_code=exc.status_code, message=str(exc.detail))
    return {
        "message": "Calendar URL updated successfully",
        "data": {"uid": dto.uid, "calendar_url": dto.calendar_url},
    }
