"""Health check endpoints.

/health is a liveness probe that touches nothing. /health/ready verifies
the connection storage answers and the CRM services were initialized, and
answers 503 when either is missing. Provider reachability is reported by
/api/v1/crm/health instead, since a slow CRM should not take the service
out of rotation.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from src.zenith.config import get_settings

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic liveness check. No provider is contacted."""
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


async def _check_dependencies(request: Request) -> dict:
    checks: dict = {"storage": "ok", "registry": "ok"}

    storage = getattr(request.app.state, "storage", None)
    if storage is None:
        checks["storage"] = "not_initialized"
    else:
        try:
            if not await storage.ping():
                checks["storage"] = "error"
                checks["storage_error"] = "PING did not return PONG"
        except Exception as e:
            checks["storage"] = "error"
            checks["storage_error"] = str(e)

    if getattr(request.app.state, "connection_registry", None) is None:
        checks["registry"] = "not_initialized"

    checks["workspace"] = (
        "ok" if getattr(request.app.state, "workspace_service", None) is not None else "disabled"
    )
    return checks


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Readiness check: storage reachable and CRM services initialized."""
    checks = await _check_dependencies(request)
    ready = checks["storage"] == "ok" and checks["registry"] == "ok"

    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "ready" if ready else "degraded", "checks": checks},
    )
