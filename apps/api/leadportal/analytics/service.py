from __future__ import annotations

import uuid
from datetime import datetime

from fastapi import HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from leadportal.analytics.models import Event
from leadportal.analytics.schemas import EventCreate, EventRead, EventSummary, NameCount
from leadportal.leads.models import utcnow


OPTION_SELECTION = "option_selection"
CTA_CLICKED = "cta_clicked"
LEAD_EVENT = "lead"
TOP_N = 10


class EventService:
    def record_event(self, session: Session, dto: EventCreate) -> Event:
        if not dto.event_name:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="event_name is required")
        if not dto.event_type:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="event_type is required")

        event = Event(
            event_id=str(uuid.uuid4()),
            event_name=dto.event_name,
            event_type=dto.event_type,
            occurred_at=dto.occurred_at or utcnow(),
            page_path=dto.page_path,
            referrer=dto.referrer,
            ad_source=dto.ad_source,
            session_id=dto.session_id,
        )
        session.add(event)
        session.commit()
        session.refresh(event)
        return event

    def latest_sessions(self, session: Session, limit: int = 50) -> list[dict]:
        latest_event_at = func.max(Event.occurred_at).label("latest_event_at")
        summaries = session.execute(
            select(Event.session_id, latest_event_at, func.count().label("event_count"))
            .where(Event.session_id.is_not(None))
            .group_by(Event.session_id)
            .order_by(latest_event_at.desc())
            .limit(limit)
        ).all()
        if not summaries:
            return []

        session_ids = [row.session_id for row in summaries]
        events_by_session: dict[str, list[dict]] = {session_id: [] for session_id in session_ids}
        for event in session.scalars(
            select(Event).where(Event.session_id.in_(session_ids)).order_by(Event.occurred_at.asc(), Event.event_id.asc())
        ):
            events_by_session[event.session_id].append(EventRead.model_validate(event).model_dump(mode="json"))

        return [
            {
                "session_id": row.session_id,
                "latest_event_at": row.latest_event_at.isoformat() if row.latest_event_at else None,
                "event_count": int(row.event_count),
                "events": events_by_session[row.session_id],
            }
            for row in summaries
        ]

    def summary(self, session: Session, start: datetime | None = None, end: datetime | None = None) -> EventSummary:
        window = []
        if start is not None:
            window.append(Event.occurred_at >= start)
        if end is not None:
            window.append(Event.occurred_at <= end)

        total_events = session.scalar(select(func.count()).select_from(Event).where(*window)) or 0
        with_session = session.execute(
            select(func.count(), func.count(func.distinct(Event.session_id))).where(*window, Event.session_id.is_not(None))
        ).one()
        session_events, total_sessions = int(with_session[0] or 0), int(with_session[1] or 0)
        average = round(session_events / total_sessions, 2) if total_sessions else 0.0
        total_leads = (
            session.scalar(select(func.count()).select_from(Event).where(*window, Event.event_type == LEAD_EVENT)) or 0
        )

        return EventSummary(
            average_events_per_session=average,
            total_events=int(total_events),
            total_sessions=total_sessions,
            total_leads=int(total_leads),
            top_options=self._top_names(session, window, OPTION_SELECTION),
            top_ctas=self._top_names(session, window, CTA_CLICKED),
        )

    def _top_names(self, session: Session, window: list, event_type: str) -> list[NameCount]:
        count = func.count().label("count")
        rows = session.execute(
            select(Event.event_name, count)
            .where(*window, Event.event_type == event_type)
            .group_by(Event.event_name)
            .order_by(count.desc(), Event.event_name.asc())
            .limit(TOP_N)
        ).all()
        return [NameCount(event_name=name, count=int(total)) for name, total in rows]
