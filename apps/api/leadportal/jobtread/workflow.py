from __future__ import annotations

import dataclasses
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from fastapi import HTTPException, status
from opentelemetry import trace
from opentelemetry.trace import Span
from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from leadportal.core.auth import Principal
from leadportal.core.config import Settings, get_settings
from leadportal.jobtread.client import JobTreadClient, JobTreadError
from leadportal.jobtread.query import dig, document, select as field
from leadportal.jobtread.schemas import ImportCustomerRequest
from leadportal.leads.models import (
    LEAD_STATUS_IMPORTED,
    LEAD_STATUS_IMPORTING,
    Lead,
    SalesRep,
    TouchPoint,
    utcnow,
)
from leadportal.metrics import observe_import_step
from leadportal.otel import mark_span_failed


logger = logging.getLogger("leadportal.jobtread.import")
tracer = trace.get_tracer("leadportal.jobtread.import")

INTEGRATION_PLATFORM = "JobTread"
TEST_PREFIX = "[TEST] "
COMMENT_DATE_FORMAT = "%b %d, %Y"
INTAKE_LABELS = (
    ("finance_need", "Finance Need"),
    ("channel", "Channel"),
    ("budget", "Budget"),
    ("project_interest", "Project Interest"),
)
INTERNAL_ONLY = {
    "isVisibleToAll": False,
    "isVisibleToInternalRoles": True,
    "isVisibleToCustomerRoles": False,
    "isVisibleToVendorRoles": False,
}

NOTE_WITH_CONTACT = "Customer created with contact information from lead and lead updated with integration details."
NOTE_WITHOUT_CONTACT = (
    "Customer created and lead updated with integration details. Contact information can be added separately."
)


@dataclass(frozen=True)
class ImportConfig:
    organization_id: str | None
    checklist_template_id: str | None = None
    production: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> ImportConfig:
        return cls(
            organization_id=settings.jobtread_organization_id,
            checklist_template_id=settings.jobtread_checklist_template_id,
            production=settings.is_production,
        )


def get_import_config() -> ImportConfig:
    return ImportConfig.from_settings(get_settings())


@dataclass(frozen=True)
class StepResult:
    """Outcome of one best-effort import step.

    ``ok`` is true only when the CRM returned an identifier. ``skipped`` marks a
    step whose inputs were absent, which is neither a success nor a failure.
    """

    step: str
    ok: bool
    value: Any = None
    error: str | None = None
    skipped: bool = False

    @classmethod
    def succeeded(cls, step: str, value: Any) -> StepResult:
        return cls(step=step, ok=True, value=value)

    @classmethod
    def failed(cls, step: str, error: str) -> StepResult:
        return cls(step=step, ok=False, error=error)

    @classmethod
    def skip(cls, step: str, reason: str) -> StepResult:
        return cls(step=step, ok=False, error=reason, skipped=True)

    @property
    def outcome(self) -> str:
        if self.skipped:
            return "skipped"
        return "ok" if self.ok else "failed"

    def as_dict(self) -> dict[str, Any]:
        return {"step": self.step, "outcome": self.outcome, "value": self.value, "error": self.error}


@dataclass
class ImportOutcome:
    customer: dict[str, Any]
    lead_id: str
    lead_data: dict[str, Any]
    has_contact_info: bool
    steps: list[StepResult] = dataclasses.field(default_factory=list)

    def created_id(self, step: str) -> str | None:
        for result in self.steps:
            if result.step == step and result.ok:
                return result.value
        return None

    def as_response(self) -> dict[str, Any]:
        return {
            "customer": self.customer,
            "lead_id": self.lead_id,
            "lead_data": self.lead_data,
            "integration": {
                "integration_id": self.customer["id"],
                "integration_name": INTEGRATION_PLATFORM,
            },
            "note": NOTE_WITH_CONTACT if self.has_contact_info else NOTE_WITHOUT_CONTACT,
            "created": {
                "contact_id": self.created_id("contact"),
                "location_id": self.created_id("location"),
                "job_id": self.created_id("job"),
                "comment_ids": [r.value for r in self.steps if r.step == "comment" and r.ok],
            },
            "diagnostics": [result.as_dict() for result in self.steps],
        }


def customer_display_name(lead_name: str, customer_type: str | None, *, production: bool) -> str:
    name = lead_name if not customer_type else f"{lead_name} {customer_type}"
    return name if production else f"{TEST_PREFIX}{name}"


def address_line(lead: Lead) -> str:
    parts = [lead.address, lead.city, lead.state, lead.zipcode]
    return ", ".join(part.strip() for part in parts if part and part.strip())


def touch_point_comment(touch_point: TouchPoint) -> str:
    lines = [touch_point.description or ""]
    if touch_point.system_note:
        lines.append(touch_point.system_note)
    lines.append(f"- {touch_point.created_at.strftime(COMMENT_DATE_FORMAT)}")
    return "\n".join(lines)


def intake_summary(lead: Lead) -> str | None:
    lines = [f"{label}: {getattr(lead, attr)}" for attr, label in INTAKE_LABELS if getattr(lead, attr)]
    return "\n".join(lines) if lines else None


class LeadImportWorkflow:
    def __init__(self, client: JobTreadClient, config: ImportConfig) -> None:
        self.client = client
        self.config = config

    async def run(self, session: Session, principal: Principal, payload: ImportCustomerRequest) -> ImportOutcome:
        rep = await run_in_threadpool(self._load_rep, session, principal.uid)
        grant_key = principal.grant_key
        if not grant_key:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="JobTread grant key not configured for this user",
            )
        if not self.config.organization_id:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="JobTread organization ID not configured",
            )
        if not payload.lead_id:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Lead ID is required")

        lead = await run_in_threadpool(self._load_lead, session, payload.lead_id, principal.uid)
        lead_id = lead.lead_id
        previous_status = lead.status
        await run_in_threadpool(self._claim, session, lead, rep)

        with tracer.start_as_current_span("lead.import") as span:
            span.set_attribute("lead_id", lead_id)
            started = time.perf_counter()
            logger.info("lead_import.started", extra={"lead_id": lead_id, "uid": principal.uid})

            try:
                customer = await self._create_account(lead, rep, payload, grant_key)
            except BaseException as exc:
                await self._abandon(session, span, lead_id, previous_status, "account", exc)
                if isinstance(exc, JobTreadError):
                    raise HTTPException(
                        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                        detail="Failed to create customer account",
                    ) from exc
                raise
            observe_import_step("account", "ok")
            span.set_attribute("customer_id", customer["id"])

            try:
                await run_in_threadpool(self._mark_imported, session, lead, rep, customer["id"])
            except BaseException as exc:
                await self._abandon(session, span, lead_id, previous_status, "finalize", exc, customer["id"])
                raise

            outcome = ImportOutcome(
                customer=customer,
                lead_id=lead_id,
                lead_data={"name": lead.name, "email": lead.email, "phone": lead.phone},
                has_contact_info=bool(lead.email or lead.phone),
            )
            await self._run_best_effort(session, lead, customer["id"], payload, grant_key, outcome)

            failed = [result.step for result in outcome.steps if not result.ok and not result.skipped]
            logger.info(
                "lead_import.finished",
                extra={
                    "lead_id": lead_id,
                    "customer_id": customer["id"],
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                    "reason": ",".join(failed) if failed else None,
                },
            )
            return outcome

    # The helpers below touch the session and run on a worker thread.

    def _load_rep(self, session: Session, uid: str) -> SalesRep:
        rep = session.scalar(select(SalesRep).where(SalesRep.uid == uid, SalesRep.is_active.is_(True)))
        if rep is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Sales Rep not found or access denied")
        return rep

    def _load_lead(self, session: Session, lead_id: str, uid: str) -> Lead:
        lead = session.scalar(select(Lead).where(Lead.lead_id == lead_id, Lead.sales_rep == uid))
        if lead is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Lead not found or access denied")
        if not (lead.name or "").strip():
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Lead must have a name")
        return lead

    def _claim(self, session: Session, lead: Lead, rep: SalesRep) -> None:
        result = session.execute(
            update(Lead)
            .where(
                Lead.lead_id == lead.lead_id,
                Lead.sales_rep == rep.uid,
                or_(Lead.status.is_(None), Lead.status.not_in([LEAD_STATUS_IMPORTED, LEAD_STATUS_IMPORTING])),
            )
            .values(status=LEAD_STATUS_IMPORTING, updated_at=utcnow())
        )
        session.commit()
        if result.rowcount == 0:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Lead is already imported or being imported",
            )
        session.refresh(lead)
        session.refresh(rep)

    def _mark_imported(self, session: Session, lead: Lead, rep: SalesRep, customer_id: str) -> None:
        lead.status = LEAD_STATUS_IMPORTED
        lead.integration_id = customer_id
        lead.integration_platform = INTEGRATION_PLATFORM
        lead.commission_rate = rep.commission_rate
        lead.updated_at = utcnow()
        session.add(lead)
        session.commit()
        session.refresh(lead)

    def _release(self, session: Session, lead_id: str, previous_status: str | None) -> None:
        session.rollback()
        session.execute(
            update(Lead)
            .where(Lead.lead_id == lead_id, Lead.status == LEAD_STATUS_IMPORTING)
            .values(status=previous_status)
        )
        session.commit()

    def _active_touch_points(self, session: Session, lead_id: str) -> list[TouchPoint]:
        return list(
            session.scalars(
                select(TouchPoint)
                .where(TouchPoint.lead_id == lead_id, TouchPoint.is_active.is_(True))
                .order_by(TouchPoint.created_at.asc(), TouchPoint.touch_id.asc())
            )
        )

    async def _abandon(
        self,
        session: Session,
        span: Span,
        lead_id: str,
        previous_status: str | None,
        step: str,
        exc: BaseException,
        customer_id: str | None = None,
    ) -> None:
        if isinstance(exc, Exception):
            await run_in_threadpool(self._release, session, lead_id, previous_status)
        else:
            # Cancelled: the claim is released inline since further awaits may be cancelled too.
            self._release(session, lead_id, previous_status)
        mark_span_failed(span, exc)
        observe_import_step(step, "failed")
        logger.error(
            f"lead_import.{step}_failed",
            extra={
                "lead_id": lead_id,
                "customer_id": customer_id,
                "step": step,
                "error": str(exc) or type(exc).__name__,
            },
        )

    async def _create_account(
        self,
        lead: Lead,
        rep: SalesRep,
        payload: ImportCustomerRequest,
        grant_key: str,
    ) -> dict[str, Any]:
        mutation = field(
            "createAccount",
            field(
                "createdAccount",
                "id",
                "name",
                "createdAt",
                "type",
                field("organization", "id", "name"),
            ),
            args={
                "organizationId": self.config.organization_id,
                "name": customer_display_name(lead.name, payload.customer_type, production=self.config.production),
                "type": "customer",
                "isTaxable": False,
                "customFieldValues": {"Notes": f"Imported by {rep.name or 'Unknown'}"},
            },
        )
        response = await self.client.query(document(mutation), grant_key)
        customer = dig(response, "createAccount", "createdAccount")
        if not isinstance(customer, dict) or not customer.get("id"):
            raise JobTreadError("JobTread did not return a created account id")
        return customer

    async def _run_best_effort(
        self,
        session: Session,
        lead: Lead,
        customer_id: str,
        payload: ImportCustomerRequest,
        grant_key: str,
        outcome: ImportOutcome,
    ) -> None:
        steps = outcome.steps

        if lead.email or lead.phone:
            contact = await self._attempt(
                lead.lead_id, "contact", lambda: self._create_contact(lead, customer_id, payload, grant_key)
            )
        else:
            contact = StepResult.skip("contact", "lead has no email or phone")
        steps.append(contact)

        if lead.address and lead.city:
            location = await self._attempt(
                lead.lead_id,
                "location",
                lambda: self._create_location(lead, customer_id, contact.value if contact.ok else None, grant_key),
            )
        else:
            location = StepResult.skip("location", "lead has no address and city")
        steps.append(location)

        steps.extend(await self._replay_touch_points(session, lead.lead_id, customer_id, grant_key))

        summary = intake_summary(lead)
        if summary:
            steps.append(
                await self._attempt(
                    lead.lead_id, "intake_summary", lambda: self._create_comment(customer_id, summary, grant_key)
                )
            )
        else:
            steps.append(StepResult.skip("intake_summary", "no intake fields on lead"))

        if location.ok:
            job = await self._attempt(
                lead.lead_id, "job", lambda: self._create_job(lead, location.value, grant_key)
            )
        else:
            job = StepResult.skip("job", "no location was created")
        steps.append(job)

        if not job.ok:
            steps.append(StepResult.skip("checklist", "no job was created"))
        elif not self.config.checklist_template_id:
            steps.append(StepResult.skip("checklist", "no checklist template configured"))
        else:
            steps.append(
                await self._attempt(lead.lead_id, "checklist", lambda: self._attach_checklist(job.value, grant_key))
            )

    async def _attempt(self, lead_id: str, step: str, call: Callable[[], Awaitable[Any]]) -> StepResult:
        try:
            value = await call()
        except Exception as exc:
            observe_import_step(step, "failed")
            logger.warning("lead_import.step_failed", extra={"lead_id": lead_id, "step": step, "error": str(exc)})
            return StepResult.failed(step, str(exc))
        if not value:
            observe_import_step(step, "failed")
            logger.warning(
                "lead_import.step_failed",
                extra={"lead_id": lead_id, "step": step, "error": "no id returned"},
            )
            return StepResult.failed(step, "no id returned")
        observe_import_step(step, "ok")
        return StepResult.succeeded(step, value)

    async def _replay_touch_points(
        self,
        session: Session,
        lead_id: str,
        customer_id: str,
        grant_key: str,
    ) -> list[StepResult]:
        touch_points = await run_in_threadpool(self._active_touch_points, session, lead_id)

        results = []
        for touch_point in touch_points:
            message = touch_point_comment(touch_point)
            results.append(
                await self._attempt(
                    lead_id, "comment", lambda message=message: self._create_comment(customer_id, message, grant_key)
                )
            )
        return results

    async def _create_contact(
        self,
        lead: Lead,
        customer_id: str,
        payload: ImportCustomerRequest,
        grant_key: str,
    ) -> str | None:
        mutation = field(
            "createContact",
            field("createdContact", "id", "name", "title"),
            args={
                "accountId": customer_id,
                "name": lead.name,
                "title": payload.customer_title or "",
                "customFieldValues": {
                    "Email": lead.email or "",
                    "Phone": lead.phone or "",
                    "Notes": payload.contact_notes or "",
                },
            },
        )
        response = await self.client.query(document(mutation), grant_key)
        return dig(response, "createContact", "createdContact", "id")

    async def _create_location(
        self,
        lead: Lead,
        customer_id: str,
        contact_id: str | None,
        grant_key: str,
    ) -> str | None:
        address = address_line(lead)
        args: dict[str, Any] = {"accountId": customer_id, "name": address, "address": address}
        if contact_id:
            args["contactId"] = contact_id
        mutation = field("createLocation", field("createdLocation", "id", "name", "address"), args=args)
        response = await self.client.query(document(mutation), grant_key)
        return dig(response, "createLocation", "createdLocation", "id")

    async def _create_comment(self, customer_id: str, message: str, grant_key: str) -> str | None:
        mutation = field(
            "createComment",
            field("createdComment", "id"),
            args={"targetId": customer_id, "targetType": "account", "message": message, **INTERNAL_ONLY},
        )
        response = await self.client.query(document(mutation), grant_key)
        return dig(response, "createComment", "createdComment", "id")

    async def _create_job(self, lead: Lead, location_id: str, grant_key: str) -> str | None:
        mutation = field(
            "createJob",
            field("createdJob", "id", "name", "number"),
            args={"locationId": location_id, "name": lead.project_interest or lead.name},
        )
        response = await self.client.query(document(mutation), grant_key)
        return dig(response, "createJob", "createdJob", "id")

    async def _attach_checklist(self, job_id: str, grant_key: str) -> str | None:
        mutation = field(
            "copyTaskTemplate",
            field("createdTasks", field("nodes", "id")),
            args={
                "id": self.config.checklist_template_id,
                "targetId": job_id,
                "targetType": "job",
                "notify": False,
            },
        )
        response = await self.client.query(document(mutation), grant_key)
        if dig(response, "copyTaskTemplate") is None:
            return None
        return job_id
