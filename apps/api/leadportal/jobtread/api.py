from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from leadportal.core.auth import Principal
from leadportal.core.database import get_db
from leadportal.core.errors import error_response, internal_error_response
from leadportal.core.rbac import admin_auth, sales_auth
from leadportal.identity import IdentityGateway, get_identity_gateway
from leadportal.jobtread.client import JobTreadClient, JobTreadError, get_jobtread_client
from leadportal.jobtread.customers import CustomerService
from leadportal.jobtread.jobs import JobListingService
from leadportal.jobtread.schemas import ImportCustomerRequest
from leadportal.jobtread.workflow import ImportConfig, LeadImportWorkflow, get_import_config
from leadportal.leads.models import LEAD_STATUS_IMPORTED, Lead
from leadportal.leads.service import serialize_lead
from leadportal.reps.service import RepDirectory


logger = logging.getLogger("leadportal.jobtread.api")

sales_router = APIRouter(prefix="/sales-rep", tags=["sales-rep.jobtread"])
admin_router = APIRouter(prefix="/admin", tags=["admin.jobs"])


def get_lead_import_workflow(
    client: JobTreadClient = Depends(get_jobtread_client),
    config: ImportConfig = Depends(get_import_config),
) -> LeadImportWorkflow:
    return LeadImportWorkflow(client, config)


def get_customer_service(
    client: JobTreadClient = Depends(get_jobtread_client),
    config: ImportConfig = Depends(get_import_config),
) -> CustomerService:
    return CustomerService(client, config)


def get_job_listing_service(
    client: JobTreadClient = Depends(get_jobtread_client),
    config: ImportConfig = Depends(get_import_config),
) -> JobListingService:
    return JobListingService(client, config)


def _imported_leads(db: Session, owner_uid: str | None = None) -> list[dict]:
    stmt = select(Lead).where(Lead.status == LEAD_STATUS_IMPORTED)
    if owner_uid is not None:
        stmt = stmt.where(Lead.sales_rep == owner_uid)
    stmt = stmt.order_by(Lead.updated_at.desc(), Lead.lead_id.asc())
    return [serialize_lead(lead) for lead in db.scalars(stmt)]


@sales_router.post("/jobtread/customer", status_code=status.HTTP_201_CREATED, response_model=None)
async def import_customer(
    request: Request,
    dto: ImportCustomerRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(sales_auth),
    workflow: LeadImportWorkflow = Depends(get_lead_import_workflow),
) -> dict | JSONResponse:
    try:
        outcome = await workflow.run(db, principal, dto)
    except HTTPException as exc:
        return error_response(request, status_code=exc.status_code, message=str(exc.detail))
    except Exception as exc:
        logger.exception("lead_import.unhandled", extra={"lead_id": dto.lead_id, "error": str(exc)})
        return internal_error_response(request, exc)
    return {"message": "Residential customer created successfully from lead", "data": outcome.as_response()}


@sales_router.get("/jobtread/customer/{customer_id}", response_model=None)
async def get_customer(
    request: Request,
    customer_id: str,
    principal: Principal = Depends(sales_auth),
    customers: CustomerService = Depends(get_customer_service),
) -> dict | JSONResponse:
    try:
        data = await customers.get_customer(customer_id, principal.grant_key)
    except HTTPException as exc:
        return error_response(request, status_code=exc.status_code, message=str(exc.detail))
    except JobTreadError as exc:
        logger.error("jobtread.customer_lookup_failed", extra={"customer_id": customer_id, "error": str(exc)})
        return internal_error_response(request, exc)
    return {"message": "Customer and jobs retrieved successfully", "data": data}


@sales_router.get("/jobs", response_model=None)
async def list_rep_jobs(
    db: Session = Depends(get_db),
    principal: Principal = Depends(sales_auth),
    jobs: JobListingService = Depends(get_job_listing_service),
) -> dict:
    customers = await jobs.enrich(await run_in_threadpool(_imported_leads, db, principal.uid), principal.grant_key)
    return {"message": "Jobs retrieved successfully", "data": customers}


@admin_router.get("/jobs", response_model=None)
async def list_all_jobs(
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(admin_auth),
    jobs: JobListingService = Depends(get_job_listing_service),
    identity: IdentityGateway = Depends(get_identity_gateway),
) -> dict | JSONResponse:
    if not principal.grant_key:
        return error_response(
            request,
            status_code=status.HTTP_400_BAD_REQUEST,
            message="JobTread grant key not configured",
        )
    customers = await jobs.enrich(await run_in_threadpool(_imported_leads, db), principal.grant_key)
    customers = await RepDirectory(identity).expand_sales_rep(db, customers)
    return {"message": "Customers retrieved successfully", "data": customers}
