from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class EventCreate(BaseModel):
    event_name: str | None = None
    event_type: str | None = None
    occurred_at: datetime | None = None
    page_path: str | None = None
    referrer: str | None = None
    ad_source: str | None = None
    session_id: str | None = None


class EventRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    event_id: str
    event_name: str
    event_type: str
    occurred_at: datetime
    page_path: str | None
    referrer: str | None
    ad_source: str | None
    session_id: str | None


class NameCount(BaseModel):
    event_name: str
    count: int


class EventSummary(BaseModel):
    average_events_per_session: float
    total_events: int
    total_sessions: int
    total_leads: int
    top_options: list[NameCount]
    top_ctas: list[NameCount]
