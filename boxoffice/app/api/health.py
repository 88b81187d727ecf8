"""Health check endpoints."""

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.app.core.database import get_db

router = APIRouter()


@router.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy"}


@router.get("/ready")
async def readiness_check(request: Request, db: AsyncSession = Depends(get_db)):
    """
    Readiness check - verify the database is reachable and, when the
    monitor is enabled, that both of its loops are alive.
    """
    health_status = {
        "status": "ready",
        "checks": {
            "database": "unknown",
            "domain_action_monitor": "disabled",
        }
    }

    try:
        await db.execute(text("SELECT 1"))
        health_status["checks"]["database"] = "ok"
    except Exception as e:
        health_status["checks"]["database"] = f"failed: {str(e)}"
        health_status["status"] = "not_ready"

    monitor = getattr(request.app.state, "domain_action_monitor", None)
    if monitor is not None:
        monitor_health = monitor.health()
        health_status["checks"]["domain_action_monitor"] = monitor_health
        if not monitor_health["running"]:
            health_status["status"] = "not_ready"

    if health_status["status"] != "ready":
        return JSONResponse(
            content=health_status,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )

    return health_status
