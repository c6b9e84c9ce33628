# Services package - Consolidated imports only

from .discounts import DiscountEngine, DiscountRuleService
from .pricing import PricingCalculator
from .rate_limit import RedemptionRateLimiter
from .fraud_detection import FraudDetectionService
from .security import SecurityConfigService
from .unlock_codes import UnlockCodeService

__all__ = [
    "DiscountEngine",
    "DiscountRuleService",
    "PricingCalculator",
    "RedemptionRateLimiter",
    "FraudDetectionService",
    "SecurityConfigService",
    "UnlockCodeService",
]
