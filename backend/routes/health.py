# Health check endpoints for system monitoring

from fastapi import APIRouter, status
from datetime import datetime, timezone

from core.config import settings
from core.database import get_db_health
from core.utils.response import Response

router = APIRouter(prefix="/health", tags=["health"])


class HealthStatus:
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


@router.get("/live")
async def liveness_check():
    """
    Basic liveness check - returns 200 if the service is running
    Used by load balancers and orchestrators
    """
    return {
        "status": "alive",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": settings.SERVICE_NAME
    }


@router.get("")
async def health_check():
    """Readiness: the service is healthy only when the database answers"""
    database = await get_db_health()
    healthy = database.get("status") == HealthStatus.HEALTHY
    data = {
        "status": HealthStatus.HEALTHY if healthy else HealthStatus.UNHEALTHY,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": settings.SERVICE_NAME,
        "environment": settings.ENVIRONMENT,
        "database": database,
    }
    if healthy:
        return Response.success(data=data, message="Service healthy")
    return Response.error(
        message="Service unhealthy",
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        data=data,
    )
