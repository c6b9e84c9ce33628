"""
Pricing calculator for bulk unlock code purchases
Quantity-tiered per-code pricing, optionally layered with the discount engine
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from typing import List, Optional
from decimal import Decimal
from uuid import UUID
import logging

from core.exceptions import ValidationException
from models.discounts import PurchaseType
from models.pricing import CodePricingTier
from schemas.discounts import PurchaseContext
from schemas.pricing import (
    PricingTier,
    PricingBreakdown,
    PricingCalculation,
    QuantityValidation,
    PricingSummary,
)
from services.discounts import DiscountEngine

logger = logging.getLogger(__name__)

MAX_BATCH_QUANTITY = 100_000
LARGE_BATCH_QUANTITY = 10_000
VOLUME_PRICING_HINT_QUANTITY = 100


def _format_count(value: int) -> str:
    return f"{value:,}"


def _format_money(value: Decimal) -> str:
    if value == value.to_integral_value():
        return f"${value:,.0f}"
    return f"${value:,.2f}"


class PricingCalculator:
    """Tiered pricing for unlock code batches"""

    DEFAULT_TIERS: List[PricingTier] = [
        PricingTier(id="tier_1", min_quantity=1, max_quantity=999,
                    price_per_code=Decimal("50"), currency="USD", is_active=True),
        PricingTier(id="tier_2", min_quantity=1000, max_quantity=4999,
                    price_per_code=Decimal("30"), currency="USD", is_active=True),
        PricingTier(id="tier_3", min_quantity=5000, max_quantity=None,
                    price_per_code=Decimal("20"), currency="USD", is_active=True),
    ]

    def __init__(self, db: Optional[AsyncSession] = None):
        self.db = db

    @staticmethod
    def get_tier_name(tier: PricingTier) -> str:
        if tier.max_quantity is None:
            return f"{_format_count(tier.min_quantity)}+ codes"
        return f"{_format_count(tier.min_quantity)}-{_format_count(tier.max_quantity)} codes"

    @staticmethod
    def find_applicable_tier(quantity: int, tiers: List[PricingTier]) -> Optional[PricingTier]:
        """Scan from the highest minimum down; ``tiers`` must be sorted ascending."""
        for tier in reversed(tiers):
            if quantity >= tier.min_quantity and (tier.max_quantity is None or quantity <= tier.max_quantity):
                return tier
        return None

    @classmethod
    def calculate_pricing(cls, quantity: int, tiers: Optional[List[PricingTier]] = None) -> PricingCalculation:
        """
        Calculate basic pricing for a given quantity (without discounts)

        Raises:
            ValidationException: non-positive quantity, no active tiers, or no
                tier covering the quantity
        """
        if quantity <= 0:
            raise ValidationException(message="Quantity must be greater than 0")

        tiers = tiers if tiers is not None else cls.DEFAULT_TIERS
        active_tiers = sorted((t for t in tiers if t.is_active), key=lambda t: t.min_quantity)
        if not active_tiers:
            raise ValidationException(message="No active pricing tiers available")

        tier = cls.find_applicable_tier(quantity, active_tiers)
        if not tier:
            raise ValidationException(message=f"No pricing tier found for quantity: {quantity}")

        total_cost = quantity * tier.price_per_code
        # Savings are measured against the entry tier
        savings = quantity * (active_tiers[0].price_per_code - tier.price_per_code)

        return PricingCalculation(
            quantity=quantity,
            total_cost=total_cost,
            price_per_code=tier.price_per_code,
            currency=tier.currency,
            tier=tier,
            savings=savings,
            breakdown=[
                PricingBreakdown(
                    tier_name=cls.get_tier_name(tier),
                    quantity=quantity,
                    price_per_code=tier.price_per_code,
                    subtotal=total_cost,
                )
            ],
        )

    async def calculate_pricing_with_discounts(
        self,
        quantity: int,
        user_id: UUID,
        payment_method_id: Optional[UUID] = None,
        tiers: Optional[List[PricingTier]] = None,
    ) -> PricingCalculation:
        """
        Base pricing with the discount engine applied on top.
        Falls back to the undiscounted pricing when discounts cannot be computed.
        """
        base_pricing = self.calculate_pricing(quantity, tiers)

        try:
            discount_result = await DiscountEngine(self.db).calculate_discounts(
                PurchaseContext(
                    user_id=user_id,
                    purchase_type=PurchaseType.UNLOCK_CODES,
                    amount=base_pricing.total_cost,
                    quantity=quantity,
                    payment_method_id=payment_method_id,
                )
            )
        except Exception as e:
            logger.error(f"Error calculating discounts for user {user_id}: {str(e)}")
            return base_pricing

        return base_pricing.model_copy(update={
            "original_amount": discount_result.original_amount,
            "discount_amount": discount_result.total_discount,
            "final_amount": discount_result.final_amount,
            "total_cost": discount_result.final_amount,
            "applicable_discounts": discount_result.discount_breakdown,
        })

    async def get_active_tiers(self) -> List[PricingTier]:
        """Tiers configured in the store, or the defaults when none are."""
        if self.db is None:
            return list(self.DEFAULT_TIERS)
        try:
            result = await self.db.execute(
                select(CodePricingTier)
                .where(CodePricingTier.is_active == True)
                .order_by(CodePricingTier.min_quantity)
            )
            rows = result.scalars().all()
        except SQLAlchemyError as e:
            logger.error(f"Error fetching pricing tiers: {str(e)}")
            return list(self.DEFAULT_TIERS)

        if not rows:
            return list(self.DEFAULT_TIERS)

        return [
            PricingTier(
                id=str(row.id),
                min_quantity=row.min_quantity,
                max_quantity=row.max_quantity,
                price_per_code=Decimal(str(row.price_per_code)),
                currency=row.currency,
                is_active=row.is_active,
            )
            for row in rows
        ]

    @staticmethod
    def get_pricing_summary(calculation: PricingCalculation) -> PricingSummary:
        return PricingSummary(
            display_text=f"{_format_count(calculation.quantity)} codes at "
                         f"{_format_money(calculation.price_per_code)} each",
            savings_text=f"Save {_format_money(calculation.savings)}" if calculation.savings > 0 else "",
            cost_per_code=_format_money(calculation.price_per_code),
            total_cost=_format_money(calculation.total_cost),
        )

    @staticmethod
    def validate_quantity(quantity) -> QuantityValidation:
        warnings: List[str] = []

        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            return QuantityValidation(is_valid=False, error="Quantity must be a positive integer")

        if quantity > MAX_BATCH_QUANTITY:
            return QuantityValidation(is_valid=False, error="Maximum quantity is 100,000 codes per batch")

        if quantity > LARGE_BATCH_QUANTITY:
            warnings.append("Large batches may take several minutes to generate")

        if quantity < VOLUME_PRICING_HINT_QUANTITY:
            warnings.append("Consider ordering more codes to take advantage of volume pricing")

        return QuantityValidation(is_valid=True, warnings=warnings)
