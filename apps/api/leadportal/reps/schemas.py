from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel


class PhoneUpdate(BaseModel):
    uid: str | None = None
    phone: str | None = None


class CalendarUrlUpdate(BaseModel):
    uid: str | None = None
    calendar_url: str | None = None


class SalesRepUpdate(BaseModel):
    name: str | None = None
    phone: str | None = None
    calendar_url: str | None = None
    commission_rate: Decimal | None = None
    grant_key: str | None = None
    email: str | None = None
    is_active: bool | None = None
