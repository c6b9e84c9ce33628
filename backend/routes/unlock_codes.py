"""
Unlock code routes for listeners
"""
from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import get_db
from core.dependencies import get_current_active_user, get_client_ip
from core.exceptions import FraudBlockException, RateLimitException
from core.utils.response import Response
from models.user import User
from schemas.unlock_codes import CodeValidationRequest, CodeRedemptionRequest
from services.security import SecurityConfigService
from services.unlock_codes import UnlockCodeService

router = APIRouter(prefix="/unlock-codes", tags=["unlock-codes"])

REJECTION_STATUS_CODES = {
    "VALIDATION_ERROR": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "ALREADY_REDEEMED": status.HTTP_409_CONFLICT,
    "ALREADY_OWNED": status.HTTP_409_CONFLICT,
    "CODE_INVALID": status.HTTP_409_CONFLICT,
    "DEVICE_LOCKED": status.HTTP_409_CONFLICT,
    "IP_LOCKED": status.HTTP_409_CONFLICT,
    "STORE_UNAVAILABLE": status.HTTP_503_SERVICE_UNAVAILABLE,
    "INTERNAL_ERROR": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


@router.post("/validate")
async def validate_code(
    request: CodeValidationRequest,
    current_user: User = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db)
):
    """Check a code without redeeming it"""
    result = await UnlockCodeService(db).validate_unlock_code(request.code, current_user.id)
    message = "Code is valid" if result.valid else result.error
    return Response.success(data=result, message=message)


@router.post("/redeem")
async def redeem_code(
    request: CodeRedemptionRequest,
    http_request: Request,
    current_user: User = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Redeem a code. Rejections are returned with success=false and a reason;
    rate-limited and blocked callers get the standard error envelope.
    """
    result = await UnlockCodeService(db).redeem_unlock_code(
        code=request.code,
        user_id=current_user.id,
        ip_address=get_client_ip(http_request),
        user_agent=http_request.headers.get("user-agent"),
        device_fingerprint=request.device_fingerprint,
    )
    if result.success:
        return Response.success(data=result, message="Code redeemed successfully")
    if result.error_code == "RATE_LIMIT_ERROR":
        config = await SecurityConfigService(db).get_security_configuration()
        raise RateLimitException(message=result.error, retry_after=config.rate_limit_window_hours * 3600)
    if result.error_code == "FRAUD_BLOCK_ERROR":
        raise FraudBlockException(message=result.error)
    return Response.error(
        message=result.error,
        status_code=REJECTION_STATUS_CODES.get(result.error_code, status.HTTP_400_BAD_REQUEST),
        data=result,
    )


@router.get("/stats")
async def redemption_stats(
    current_user: User = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db)
):
    stats = await UnlockCodeService(db).get_user_redemption_stats(current_user.id)
    return Response.success(data=stats)
