"""
Admin discount rule management and discount statistics
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
from datetime import datetime
from uuid import UUID

from core.database import get_db
from core.dependencies import require_admin
from core.utils.response import Response
from models.user import User
from schemas.discounts import (
    DiscountRuleCreate,
    DiscountRuleUpdate,
    AdminDiscountConfig,
    AdminDiscountConfigUpdate,
)
from services.discounts import DiscountEngine, DiscountRuleService

router = APIRouter(prefix="/admin", tags=["admin-discounts"])


@router.get("/discount-rules")
async def list_discount_rules(
    include_inactive: bool = Query(True),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    rules = await DiscountRuleService(db).list_rules(include_inactive=include_inactive)
    return Response.success(data=[rule.to_dict() for rule in rules])


@router.post("/discount-rules")
async def create_discount_rule(
    request: DiscountRuleCreate,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    rule = await DiscountRuleService(db).create_rule(request, created_by=str(current_user.id))
    return Response.success(data=rule.to_dict(), message="Discount rule created", status_code=status.HTTP_201_CREATED)


@router.get("/discount-rules/{rule_id}")
async def get_discount_rule(
    rule_id: UUID,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    rule = await DiscountRuleService(db).get_rule(rule_id)
    return Response.success(data=rule.to_dict())


@router.put("/discount-rules/{rule_id}")
async def update_discount_rule(
    rule_id: UUID,
    request: DiscountRuleUpdate,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    rule = await DiscountRuleService(db).update_rule(rule_id, request)
    return Response.success(data=rule.to_dict(), message="Discount rule updated")


@router.delete("/discount-rules/{rule_id}")
async def deactivate_discount_rule(
    rule_id: UUID,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Rules are deactivated, not deleted"""
    rule = await DiscountRuleService(db).deactivate_rule(rule_id)
    return Response.success(data=rule.to_dict(), message="Discount rule deactivated")


@router.get("/discounts/stats")
async def get_discount_stats(
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    stats = await DiscountEngine(db).get_discount_statistics(start_date, end_date)
    return Response.success(data=stats)


@router.get("/discounts/configuration")
async def get_discount_configuration(
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    config = await DiscountEngine(db).get_admin_configuration()
    if config is None:
        # Nothing saved yet: discounting stays off until an admin enables it
        config = AdminDiscountConfig(global_discount_enabled=False)
    return Response.success(data=config)


@router.put("/discounts/configuration")
async def update_discount_configuration(
    request: AdminDiscountConfigUpdate,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    config = await DiscountEngine(db).update_admin_configuration(request, admin_id=str(current_user.id))
    return Response.success(data=config, message="Discount configuration updated")
