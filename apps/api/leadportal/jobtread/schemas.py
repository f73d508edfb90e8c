from __future__ import annotations

from typing import Any

from pydantic import BaseModel, field_validator


class ImportCustomerRequest(BaseModel):
    lead_id: str | None = None
    customer_type: str | None = None
    customer_title: str | None = None
    contact_notes: str | None = None

    @field_validator("lead_id", mode="before")
    @classmethod
    def _coerce_lead_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value
