from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from leadportal.core.database import Base


LEAD_STATUS_NEW = "New"
LEAD_STATUS_FOLLOW_UP = "Follow-up"
LEAD_STATUS_IMPORTING = "Importing"
LEAD_STATUS_IMPORTED = "Imported"
UNASSIGNED = "unassigned"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SalesRep(Base):
    __tablename__ = "sales_rep"

    uid: Mapped[str] = mapped_column(String(128), primary_key=True)
    name: Mapped[str | None] = mapped_column(Text, nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    calendar_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    grant_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    commission_rate: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class Admin(Base):
    __tablename__ = "admin"

    uid: Mapped[str] = mapped_column(String(128), primary_key=True)
    name: Mapped[str | None] = mapped_column(Text, nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class Lead(Base):
    __tablename__ = "leads"

    lead_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[str | None] = mapped_column(Text, nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    city: Mapped[str | None] = mapped_column(Text, nullable=True)
    state: Mapped[str | None] = mapped_column(String(32), nullable=True)
    zipcode: Mapped[str | None] = mapped_column(String(16), nullable=True)
    project_interest: Mapped[str | None] = mapped_column(Text, nullable=True)
    budget: Mapped[str | None] = mapped_column(Text, nullable=True)
    finance_need: Mapped[str | None] = mapped_column(String(8), nullable=True)
    channel: Mapped[str | None] = mapped_column(String(64), nullable=True)
    click_source: Mapped[str | None] = mapped_column(Text, nullable=True)
    website_source: Mapped[str | None] = mapped_column(Text, nullable=True)
    ad_source: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=LEAD_STATUS_NEW, server_default=LEAD_STATUS_NEW)
    follow_up_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    sales_rep: Mapped[str] = mapped_column(String(128), nullable=False, default=UNASSIGNED, server_default=UNASSIGNED)
    integration_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    integration_platform: Mapped[str | None] = mapped_column(String(64), nullable=True)
    commission_rate: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    touch_points: Mapped[list[TouchPoint]] = relationship("TouchPoint", back_populates="lead")

    __table_args__ = (
        Index("ix_leads_sales_rep_status", "sales_rep", "status"),
        Index("ix_leads_integration_id", "integration_id"),
    )


class TouchPoint(Base):
    __tablename__ = "touch_points"

    touch_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    uid: Mapped[str] = mapped_column(String(128), nullable=False)
    lead_id: Mapped[str] = mapped_column(String(64), ForeignKey("leads.lead_id", ondelete="RESTRICT"), nullable=False)
    contact_method: Mapped[str] = mapped_column(String(32), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    system_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    commenter_type: Mapped[str] = mapped_column(String(16), nullable=False, default="sales_rep", server_default="sales_rep")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")

    lead: Mapped[Lead] = relationship("Lead", back_populates="touch_points")

    __table_args__ = (Index("ix_touch_points_lead_active", "lead_id", "is_active", "created_at"),)
