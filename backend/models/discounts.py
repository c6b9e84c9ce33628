"""
Discount rule models for purchase pricing
"""
from enum import Enum
from sqlalchemy import Column, String, Boolean, DateTime, Float, Text, Integer, Index, ForeignKey, JSON
from sqlalchemy.orm import relationship
from core.database import BaseModel, GUID
from typing import Dict, Any


class DiscountType(str, Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED_AMOUNT = "FIXED_AMOUNT"
    BUY_X_GET_Y = "BUY_X_GET_Y"
    TIERED = "TIERED"


class DiscountTarget(str, Enum):
    GLOBAL = "GLOBAL"
    PURCHASE_TYPE = "PURCHASE_TYPE"
    PAYMENT_METHOD = "PAYMENT_METHOD"
    USER_TIER = "USER_TIER"
    CREATOR_TIER = "CREATOR_TIER"


class PurchaseType(str, Enum):
    ALBUM = "ALBUM"
    TRACK = "TRACK"
    UNLOCK_CODES = "UNLOCK_CODES"
    STREAMING_FEES = "STREAMING_FEES"
    PREMIUM_SUBSCRIPTION = "PREMIUM_SUBSCRIPTION"
    ARTIST_FEATURES = "ARTIST_FEATURES"
    MARKETPLACE_TRANSACTION = "MARKETPLACE_TRANSACTION"
    ALL = "ALL"


class DiscountRule(BaseModel):
    """Promotional rule evaluated by the discount engine"""
    __tablename__ = "discount_rules"
    __table_args__ = (
        Index('idx_discount_rules_active_priority', 'is_active', 'priority'),
        Index('idx_discount_rules_window', 'start_date', 'end_date'),
        {'extend_existing': True}
    )

    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    discount_type = Column(String(20), nullable=False)
    target = Column(String(20), nullable=False, default=DiscountTarget.GLOBAL.value)

    # Kind-specific parameters
    percentage_discount = Column(Float, nullable=True)  # fraction, 0.05 for 5%
    fixed_amount_discount = Column(Float, nullable=True)
    buy_quantity = Column(Integer, nullable=True)
    get_quantity = Column(Integer, nullable=True)
    tier_breakpoints = Column(JSON, nullable=True)  # [{"min": 100, "discount": 0.02}, ...]

    # Applicability constraints
    min_order_amount = Column(Float, nullable=True)
    max_order_amount = Column(Float, nullable=True)
    min_quantity = Column(Integer, nullable=True)
    max_quantity = Column(Integer, nullable=True)
    payment_method_id = Column(GUID(), ForeignKey("payment_methods.id"), nullable=True)
    purchase_types = Column(JSON, nullable=True)  # ["UNLOCK_CODES"], null means every type
    start_date = Column(DateTime(timezone=True), nullable=True)
    end_date = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    # Stacking
    is_stackable = Column(Boolean, default=False, nullable=False)
    priority = Column(Integer, default=0, nullable=False)

    # Usage caps
    max_total_usage = Column(Integer, nullable=True)
    max_usage_per_user = Column(Integer, nullable=True)
    current_total_usage = Column(Integer, default=0, nullable=False)

    created_by = Column(String(100), nullable=True)

    payment_method = relationship("PaymentMethod", lazy="selectin")

    def to_dict(self) -> Dict[str, Any]:
        """Convert discount rule to dictionary for API responses"""
        return {
            "id": str(self.id),
            "name": self.name,
            "description": self.description,
            "discount_type": self.discount_type,
            "target": self.target,
            "percentage_discount": self.percentage_discount,
            "fixed_amount_discount": self.fixed_amount_discount,
            "buy_quantity": self.buy_quantity,
            "get_quantity": self.get_quantity,
            "tier_breakpoints": self.tier_breakpoints,
            "min_order_amount": self.min_order_amount,
            "max_order_amount": self.max_order_amount,
            "min_quantity": self.min_quantity,
            "max_quantity": self.max_quantity,
            "payment_method_id": str(self.payment_method_id) if self.payment_method_id else None,
            "purchase_types": self.purchase_types,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "is_active": self.is_active,
            "is_stackable": self.is_stackable,
            "priority": self.priority,
            "max_total_usage": self.max_total_usage,
            "max_usage_per_user": self.max_usage_per_user,
            "current_total_usage": self.current_total_usage,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class DiscountUsage(BaseModel):
    """One rule applied to one completed order. Immutable once written."""
    __tablename__ = "discount_usages"
    __table_args__ = (
        Index('idx_discount_usages_user_rule', 'user_id', 'discount_rule_id'),
        Index('idx_discount_usages_created_at', 'created_at'),
        {'extend_existing': True}
    )

    user_id = Column(GUID(), ForeignKey("users.id"), nullable=False)
    discount_rule_id = Column(GUID(), ForeignKey("discount_rules.id"), nullable=False)
    order_id = Column(String(100), nullable=False)
    discount_amount = Column(Float, nullable=False)
    original_amount = Column(Float, nullable=False)
    final_amount = Column(Float, nullable=False)
    purchase_type = Column(String(30), nullable=False)

    discount_rule = relationship("DiscountRule", lazy="selectin")


class AdminDiscountConfiguration(BaseModel):
    """Singleton toggle set an administrator uses to steer discounting"""
    __tablename__ = "admin_discount_configurations"
    __table_args__ = {'extend_existing': True}

    global_discount_enabled = Column(Boolean, default=True, nullable=False)
    max_stackable_discounts = Column(Integer, default=3, nullable=False)
    discount_calculation_order = Column(String(20), default="priority", nullable=False)
    auto_apply_best_discount = Column(Boolean, default=True, nullable=False)
    updated_by = Column(String(100), nullable=True)
