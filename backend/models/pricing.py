from sqlalchemy import Column, String, Boolean, Float, Integer
from core.database import BaseModel


class CodePricingTier(BaseModel):
    """Quantity band with its per-code price for bulk unlock code purchases"""
    __tablename__ = "code_pricing_tiers"
    __table_args__ = {'extend_existing': True}

    min_quantity = Column(Integer, nullable=False)
    max_quantity = Column(Integer, nullable=True)  # null means open-ended
    price_per_code = Column(Float, nullable=False)
    currency = Column(String(10), nullable=False, default="USD")
    is_active = Column(Boolean, default=True, nullable=False)
