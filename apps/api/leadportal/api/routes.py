from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from leadportal.analytics.api import router as events_router
from leadportal.core.auth import Principal
from leadportal.core.config import get_settings
from leadportal.core.rbac import admin_auth
from leadportal.jobtread.api import admin_router as admin_jobs_router, sales_router as sales_jobtread_router
from leadportal.leads.api import admin_router as admin_leads_router, sales_router as sales_leads_router
from leadportal.metrics import generate_metrics_payload, metrics_content_type
from leadportal.reps.api import admin_router as admin_reps_router, sales_router as sales_profile_router

router = APIRouter()
router.include_router(sales_profile_router)
router.include_router(sales_leads_router)
router.include_router(sales_jobtread_router)
router.include_router(admin_reps_router)
router.include_router(admin_leads_router)
router.include_router(admin_jobs_router)
router.include_router(events_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/metrics", tags=["system"])
def metrics(principal: Principal = Depends(admin_auth)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
