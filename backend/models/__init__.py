# Import every model so Base.metadata sees the full schema
from .user import User
from .payment import PaymentMethod
from .discounts import (
    DiscountType,
    DiscountTarget,
    PurchaseType,
    DiscountRule,
    DiscountUsage,
    AdminDiscountConfiguration,
)
from .releases import Release, ReleaseTrack
from .unlock_codes import UnlockCode, CodeRedemptionLog
from .purchases import Purchase
from .pricing import CodePricingTier
from .security import (
    SecurityConfiguration,
    CodeRedemptionRateLimit,
    SuspiciousActivity,
    FraudDetectionLog,
)

__all__ = [
    "User",
    "PaymentMethod",
    "DiscountType",
    "DiscountTarget",
    "PurchaseType",
    "DiscountRule",
    "DiscountUsage",
    "AdminDiscountConfiguration",
    "Release",
    "ReleaseTrack",
    "UnlockCode",
    "CodeRedemptionLog",
    "Purchase",
    "CodePricingTier",
    "SecurityConfiguration",
    "CodeRedemptionRateLimit",
    "SuspiciousActivity",
    "FraudDetectionLog",
]
