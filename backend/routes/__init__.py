# Consolidated route imports
from .admin_discounts import router as admin_discounts_router
from .admin_security import router as admin_security_router
from .health import router as health_router
from .pricing import router as pricing_router
from .unlock_codes import router as unlock_codes_router

__all__ = [
    "admin_discounts_router",
    "admin_security_router",
    "health_router",
    "pricing_router",
    "unlock_codes_router",
]
