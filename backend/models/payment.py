from sqlalchemy import Column, String, Boolean
from core.database import BaseModel


class PaymentMethod(BaseModel):
    """Platform payment method a discount rule can be tied to"""
    __tablename__ = "payment_methods"
    __table_args__ = {'extend_existing': True}

    name = Column(String(100), nullable=False)
    provider = Column(String(50), nullable=False)  # stripe, paypal, coinbase
    type = Column(String(50), nullable=False)  # card, crypto, wallet
    is_active = Column(Boolean, default=True, nullable=False)
