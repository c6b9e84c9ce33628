"""
Admin security configuration, dashboard and fraud log management
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
from uuid import UUID

from core.database import get_db
from core.dependencies import require_admin
from core.utils.response import Response
from models.user import User
from schemas.security import SecurityConfigUpdate, FraudLogResolution
from services.fraud_detection import FraudDetectionService
from services.security import SecurityConfigService

router = APIRouter(prefix="/admin/security", tags=["admin-security"])


@router.get("/configuration")
async def get_security_configuration(
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    config = await SecurityConfigService(db).get_security_configuration()
    return Response.success(data=config)


@router.put("/configuration")
async def update_security_configuration(
    request: SecurityConfigUpdate,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    config = await SecurityConfigService(db).update_security_configuration(request, admin_id=str(current_user.id))
    return Response.success(data=config, message="Security configuration updated")


@router.get("/dashboard")
async def get_security_dashboard(
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    dashboard = await SecurityConfigService(db).get_security_dashboard()
    return Response.success(data=dashboard)


@router.get("/fraud-logs")
async def list_fraud_logs(
    resolved: Optional[bool] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    logs = await FraudDetectionService(db).list_fraud_logs(resolved=resolved, limit=limit)
    return Response.success(data=[log.to_dict() for log in logs])


@router.post("/fraud-logs/{log_id}/resolve")
async def resolve_fraud_log(
    log_id: UUID,
    request: FraudLogResolution,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    log = await FraudDetectionService(db).resolve_fraud_log(log_id, admin_id=str(current_user.id), notes=request.notes)
    return Response.success(data=log.to_dict(), message="Fraud log resolved")
