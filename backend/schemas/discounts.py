"""
Discount engine inputs, rule variants and calculation results
"""
from pydantic import BaseModel, Field, TypeAdapter, model_validator, ConfigDict
from typing import Annotated, List, Literal, Optional, Union
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from models.discounts import DiscountTarget, DiscountType, PurchaseType


class PurchaseContext(BaseModel):
    user_id: UUID
    purchase_type: PurchaseType
    amount: Decimal = Field(..., ge=0)
    quantity: int = Field(1, ge=0)
    payment_method_id: Optional[UUID] = None


class AdminDiscountConfig(BaseModel):
    """Admin discount toggles, loaded once per calculation"""
    model_config = ConfigDict(from_attributes=True)

    global_discount_enabled: bool = True
    max_stackable_discounts: int = 3
    discount_calculation_order: str = "priority"
    auto_apply_best_discount: bool = True


class AdminDiscountConfigUpdate(BaseModel):
    global_discount_enabled: Optional[bool] = None
    max_stackable_discounts: Optional[int] = Field(None, ge=1)
    discount_calculation_order: Optional[Literal["priority", "amount"]] = None
    auto_apply_best_discount: Optional[bool] = None


class TierBreakpoint(BaseModel):
    min: int = Field(..., ge=0)
    discount: Decimal = Field(..., ge=0, le=1)


tier_breakpoints_adapter = TypeAdapter(List[TierBreakpoint])


# --- Rule variants consumed by the engine ---

class _EngineRuleBase(BaseModel):
    id: UUID
    name: str
    target: DiscountTarget = DiscountTarget.GLOBAL
    payment_method_id: Optional[UUID] = None
    # None means the rule applies to every purchase type
    purchase_types: Optional[List[PurchaseType]] = None
    purchase_types_malformed: bool = False
    min_order_amount: Optional[Decimal] = None
    max_order_amount: Optional[Decimal] = None
    min_quantity: Optional[int] = None
    max_quantity: Optional[int] = None
    is_stackable: bool = False
    priority: int = 0
    max_total_usage: Optional[int] = None
    max_usage_per_user: Optional[int] = None
    current_total_usage: int = 0


class PercentageRule(_EngineRuleBase):
    discount_type: Literal["PERCENTAGE"] = "PERCENTAGE"
    percentage: Decimal = Field(..., ge=0, le=1)


class FixedAmountRule(_EngineRuleBase):
    discount_type: Literal["FIXED_AMOUNT"] = "FIXED_AMOUNT"
    amount: Decimal = Field(..., ge=0)


class BuyXGetYRule(_EngineRuleBase):
    discount_type: Literal["BUY_X_GET_Y"] = "BUY_X_GET_Y"
    buy_quantity: Optional[int] = Field(None, ge=0)
    get_quantity: Optional[int] = Field(None, ge=0)


class TieredRule(_EngineRuleBase):
    discount_type: Literal["TIERED"] = "TIERED"
    breakpoints: List[TierBreakpoint] = Field(default_factory=list)
    breakpoints_malformed: bool = False


EngineRule = Annotated[
    Union[PercentageRule, FixedAmountRule, BuyXGetYRule, TieredRule],
    Field(discriminator="discount_type"),
]
engine_rule_adapter = TypeAdapter(EngineRule)


# --- Calculation results ---

class DiscountBreakdownItem(BaseModel):
    rule_id: UUID
    rule_name: str
    discount_type: str
    discount_amount: Decimal


class ApplicableDiscount(BaseModel):
    id: UUID
    name: str
    discount_type: str
    priority: int
    is_stackable: bool


class DegradedRule(BaseModel):
    """A rule the engine could not evaluate normally"""
    rule_id: Optional[UUID] = None
    rule_name: Optional[str] = None
    reason: str


class DiscountCalculation(BaseModel):
    applicable_discounts: List[ApplicableDiscount] = Field(default_factory=list)
    total_discount: Decimal
    final_amount: Decimal
    original_amount: Decimal
    discount_breakdown: List[DiscountBreakdownItem] = Field(default_factory=list)
    degraded_rules: List[DegradedRule] = Field(default_factory=list)


class RuleUsageStatistic(BaseModel):
    rule_id: UUID
    rule_name: Optional[str] = None
    usage_count: int
    total_discount: Decimal


class DiscountStatistics(BaseModel):
    total_usage: int
    total_savings: Decimal
    top_rules: List[RuleUsageStatistic] = Field(default_factory=list)


# --- Admin rule management ---

class DiscountRuleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    discount_type: DiscountType
    target: DiscountTarget = DiscountTarget.GLOBAL
    percentage_discount: Optional[float] = None
    fixed_amount_discount: Optional[float] = None
    buy_quantity: Optional[int] = None
    get_quantity: Optional[int] = None
    tier_breakpoints: Optional[List[TierBreakpoint]] = None
    min_order_amount: Optional[float] = Field(None, ge=0)
    max_order_amount: Optional[float] = Field(None, ge=0)
    min_quantity: Optional[int] = Field(None, ge=0)
    max_quantity: Optional[int] = Field(None, ge=0)
    payment_method_id: Optional[UUID] = None
    purchase_types: Optional[List[PurchaseType]] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: bool = True
    is_stackable: bool = False
    priority: int = 0
    max_total_usage: Optional[int] = Field(None, ge=1)
    max_usage_per_user: Optional[int] = Field(None, ge=1)

    @model_validator(mode="after")
    def check_kind_parameters(self):
        if self.discount_type == DiscountType.PERCENTAGE:
            if self.percentage_discount is None or not 0 < self.percentage_discount <= 1:
                raise ValueError("percentage_discount must be a fraction in (0, 1]")
        elif self.discount_type == DiscountType.FIXED_AMOUNT:
            if self.fixed_amount_discount is None or self.fixed_amount_discount <= 0:
                raise ValueError("fixed_amount_discount must be greater than 0")
        elif self.discount_type == DiscountType.BUY_X_GET_Y:
            if not self.buy_quantity or not self.get_quantity or self.buy_quantity < 1 or self.get_quantity < 1:
                raise ValueError("buy_quantity and get_quantity must both be at least 1")
        elif self.discount_type == DiscountType.TIERED:
            if not self.tier_breakpoints:
                raise ValueError("tier_breakpoints must contain at least one breakpoint")

        if self.target == DiscountTarget.PAYMENT_METHOD and not self.payment_method_id:
            raise ValueError("payment_method_id is required for PAYMENT_METHOD rules")
        if self.start_date and self.end_date and self.start_date >= self.end_date:
            raise ValueError("start_date must be before end_date")
        if (self.min_order_amount is not None and self.max_order_amount is not None
                and self.min_order_amount > self.max_order_amount):
            raise ValueError("min_order_amount cannot exceed max_order_amount")
        if (self.min_quantity is not None and self.max_quantity is not None
                and self.min_quantity > self.max_quantity):
            raise ValueError("min_quantity cannot exceed max_quantity")
        return self


class DiscountRuleUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    discount_type: Optional[DiscountType] = None
    target: Optional[DiscountTarget] = None
    percentage_discount: Optional[float] = None
    fixed_amount_discount: Optional[float] = None
    buy_quantity: Optional[int] = None
    get_quantity: Optional[int] = None
    tier_breakpoints: Optional[List[TierBreakpoint]] = None
    min_order_amount: Optional[float] = None
    max_order_amount: Optional[float] = None
    min_quantity: Optional[int] = None
    max_quantity: Optional[int] = None
    payment_method_id: Optional[UUID] = None
    purchase_types: Optional[List[PurchaseType]] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: Optional[bool] = None
    is_stackable: Optional[bool] = None
    priority: Optional[int] = None
    max_total_usage: Optional[int] = None
    max_usage_per_user: Optional[int] = None
