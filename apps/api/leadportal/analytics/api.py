from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from leadportal.analytics.schemas import EventCreate, EventRead
from leadportal.analytics.service import EventService
from leadportal.core.database import get_db
from leadportal.core.errors import error_response


router = APIRouter(prefix="/events", tags=["events"])
service = EventService()


@router.post("", status_code=status.HTTP_201_CREATED, response_model=None)
def create_event(request: Request, dto: EventCreate, db: Session = Depends(get_db)) -> dict | JSONResponse:
    try:
        event = service.record_event(db, dto)
    except HTTPException as exc:
        return error_response(request, status_code=exc.status_code, message=str(exc.detail))
    return {"message": "Event created successfully", "data": EventRead.model_validate(event).model_dump(mode="json")}


@router.get("/sessions", response_model=None)
def list_sessions(
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
) -> dict:
    return {"message": "Sessions retrieved successfully", "data": service.latest_sessions(db, limit)}


@router.get("/summary", response_model=None)
def event_summary(
    start_date: datetime | None = Query(default=None),
    end_date: datetime | None = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    summary = service.summary(db, start_date, end_date)
    return {"message": "Event summary retrieved successfully", "data": summary.model_dump(mode="json")}
