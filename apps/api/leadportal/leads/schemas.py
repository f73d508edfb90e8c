from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, field_validator


CONTACT_METHODS = ("Call", "Text", "Email", "In-Person", "Voicemail", "Other")
FINANCE_NEED_VALUES = ("Yes", "No")
CommenterType = Literal["sales_rep", "admin"]


def _stringify(value: Any) -> Any:
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        return str(value)
    return value


class LeadFields(BaseModel):
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zipcode: str | None = None
    project_interest: str | None = None
    budget: str | None = None
    finance_need: str | None = None
    channel: str | None = None
    click_source: str | None = None
    website_source: str | None = None
    ad_source: str | None = None
    status: str | None = None
    follow_up_date: date | None = None
    notes: str | None = None

    @field_validator("budget", "zipcode", "phone", mode="before")
    @classmethod
    def _coerce_numbers(cls, value: Any) -> Any:
        return _stringify(value)


class LeadCreate(LeadFields):
    lead_id: str | None = None
    sales_rep: str | None = None
    text_notification: bool = False

    @field_validator("lead_id", mode="before")
    @classmethod
    def _coerce_lead_id(cls, value: Any) -> Any:
        return _stringify(value)


class LeadUpdate(LeadFields):
    sales_rep: str | None = None
    commission_rate: Decimal | None = None


class LeadRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    lead_id: str
    name: str
    email: str | None
    phone: str | None
    address: str | None
    city: str | None
    state: str | None
    zipcode: str | None
    project_interest: str | None
    budget: str | None
    finance_need: str | None
    channel: str | None
    click_source: str | None
    website_source: str | None
    ad_source: str | None
    status: str
    follow_up_date: date | None
    sales_rep: str
    integration_id: str | None
    integration_platform: str | None
    commission_rate: Decimal | None
    notes: str | None
    created_at: datetime
    updated_at: datetime


class TouchPointCreate(BaseModel):
    contact_method: str | None = None
    description: str | None = None
    status: str | None = None
    follow_up_date: date | None = None


class TouchPointRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    touch_id: str
    uid: str
    lead_id: str
    contact_method: str
    description: str | None
    system_note: str | None
    commenter_type: CommenterType
    created_at: datetime
    contact_name: str | None = None
