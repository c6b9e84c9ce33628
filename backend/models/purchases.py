from sqlalchemy import Column, String, Float, ForeignKey
from core.database import BaseModel, GUID


class Purchase(BaseModel):
    __tablename__ = "purchases"
    __table_args__ = {'extend_existing': True}

    user_id = Column(GUID(), ForeignKey("users.id"), nullable=False, index=True)
    release_id = Column(GUID(), ForeignKey("releases.id"), nullable=True)
    type = Column(String(30), nullable=False)  # PurchaseType value
    price = Column(Float, nullable=False, default=0.0)
    currency = Column(String(10), nullable=False, default="SHC")
    status = Column(String(20), nullable=False, default="PENDING")  # PENDING, COMPLETED, REFUNDED
