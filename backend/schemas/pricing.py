from pydantic import BaseModel, Field, ConfigDict
from typing import List, Optional
from decimal import Decimal

from schemas.discounts import DiscountBreakdownItem


class PricingTier(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    min_quantity: int = Field(..., ge=1)
    max_quantity: Optional[int] = None
    price_per_code: Decimal = Field(..., ge=0)
    currency: str = "USD"
    is_active: bool = True


class PricingBreakdown(BaseModel):
    tier_name: str
    quantity: int
    price_per_code: Decimal
    subtotal: Decimal


class PricingCalculation(BaseModel):
    quantity: int
    total_cost: Decimal
    price_per_code: Decimal
    currency: str = "USD"
    tier: PricingTier
    savings: Decimal
    breakdown: List[PricingBreakdown] = Field(default_factory=list)
    # Present only when discounts were evaluated
    original_amount: Optional[Decimal] = None
    discount_amount: Optional[Decimal] = None
    final_amount: Optional[Decimal] = None
    applicable_discounts: Optional[List[DiscountBreakdownItem]] = None


class QuantityValidation(BaseModel):
    is_valid: bool
    error: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)


class PricingSummary(BaseModel):
    display_text: str
    savings_text: str
    cost_per_code: str
    total_cost: str
