from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from leadhub.core.auth import get_current_actor
from leadhub.core.config import get_settings
from leadhub.crm.api import activities_router, auth_router, leads_router, users_router
from leadhub.dashboard.api import router as dashboard_router
from leadhub.metrics import generate_metrics_payload, metrics_content_type
from leadhub.platform.security import Actor

router = APIRouter()
router.include_router(auth_router)
router.include_router(leads_router)
router.include_router(activities_router)
router.include_router(users_router)
router.include_router(dashboard_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/metrics", tags=["system"])
def metrics(actor: Actor = Depends(get_current_actor)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    if not actor.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin role required")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
