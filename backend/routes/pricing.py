"""
Unlock code batch pricing routes
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
from uuid import UUID

from core.database import get_db
from core.dependencies import get_current_active_user
from core.exceptions import ValidationException
from core.utils.response import Response
from models.user import User
from services.pricing import PricingCalculator

router = APIRouter(prefix="/codes/pricing", tags=["pricing"])


@router.get("")
async def get_pricing(
    quantity: int = Query(..., description="Number of codes in the batch"),
    payment_method_id: Optional[UUID] = Query(None),
    current_user: User = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Price a batch of unlock codes for the current user, discounts included
    """
    validation = PricingCalculator.validate_quantity(quantity)
    if not validation.is_valid:
        raise ValidationException(message=validation.error, errors={"quantity": validation.error})

    calculator = PricingCalculator(db)
    tiers = await calculator.get_active_tiers()
    calculation = await calculator.calculate_pricing_with_discounts(
        quantity=quantity,
        user_id=current_user.id,
        payment_method_id=payment_method_id,
        tiers=tiers,
    )
    return Response.success(data={
        "pricing": calculation,
        "summary": PricingCalculator.get_pricing_summary(calculation),
        "warnings": validation.warnings,
    })


@router.get("/tiers")
async def get_pricing_tiers(db: AsyncSession = Depends(get_db)):
    tiers = await PricingCalculator(db).get_active_tiers()
    return Response.success(data=[
        {**tier.model_dump(), "name": PricingCalculator.get_tier_name(tier)}
        for tier in tiers
    ])


@router.get("/validate")
async def validate_quantity(quantity: int = Query(...)):
    return Response.success(data=PricingCalculator.validate_quantity(quantity))
