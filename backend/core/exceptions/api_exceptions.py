from fastapi import HTTPException
from datetime import datetime
from typing import Any, Dict, Optional

from .utils import get_correlation_id


class APIException(HTTPException):
    """Custom API exception with enhanced error details"""

    def __init__(
        self,
        status_code: int,
        message: str = "An unexpected API error occurred",
        detail: Optional[str] = None,
        error_code: Optional[str] = None,
        correlation_id: Optional[str] = None,
        **kwargs
    ):
        self.message = message
        self.detail = detail or message
        self.error_code = error_code or f"ERR_{status_code}"
        self.correlation_id = correlation_id or get_correlation_id()
        self.timestamp = datetime.now().isoformat()

        super().__init__(status_code=status_code, detail=self.detail, **kwargs)


class ValidationException(APIException):
    """Malformed input: bad code format, non-positive quantity, missing fields"""

    def __init__(self, message: str = "Validation failed", errors: Optional[Dict[str, Any]] = None):
        self.errors = errors or {}
        super().__init__(
            status_code=422,
            message=message,
            error_code="VALIDATION_ERROR"
        )


class AuthenticationException(APIException):
    """Exception for authentication errors"""

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(
            status_code=401,
            message=message,
            error_code="AUTH_ERROR"
        )


class AuthorizationException(APIException):
    """Exception for authorization errors"""

    def __init__(self, message: str = "Access denied"):
        super().__init__(
            status_code=403,
            message=message,
            error_code="AUTHORIZATION_ERROR"
        )


class NotFoundException(APIException):
    """Referenced user, code or rule does not exist"""

    def __init__(self, message: str = "Resource not found", resource: Optional[str] = None):
        self.resource = resource
        super().__init__(
            status_code=404,
            message=message,
            error_code="NOT_FOUND"
        )


class ConflictException(APIException):
    """Code already redeemed, lock mismatch or usage limit exhausted"""

    def __init__(self, message: str = "Resource conflict", error_code: str = "CONFLICT_ERROR"):
        super().__init__(
            status_code=409,
            message=message,
            error_code=error_code
        )


class RateLimitException(APIException):
    """Exception for rate limiting errors"""

    def __init__(self, message: str = "Rate limit exceeded", retry_after: Optional[int] = None):
        self.retry_after = retry_after
        super().__init__(
            status_code=429,
            message=message,
            error_code="RATE_LIMIT_ERROR"
        )


class FraudBlockException(APIException):
    """Requester is on the fraud block list"""

    def __init__(self, message: str = "Access temporarily blocked due to suspicious activity"):
        super().__init__(
            status_code=403,
            message=message,
            error_code="FRAUD_BLOCK_ERROR"
        )


class DatabaseException(APIException):
    """Exception for database errors"""

    def __init__(self, message: str = "Database error occurred", status_code: int = 500,
                 error_code: str = "DATABASE_ERROR"):
        super().__init__(
            status_code=status_code,
            message=message,
            error_code=error_code
        )


class TransientStoreException(DatabaseException):
    """Store unreachable or transaction aborted for infrastructure reasons"""

    def __init__(self, message: str = "Store temporarily unavailable"):
        super().__init__(
            message=message,
            status_code=503,
            error_code="STORE_UNAVAILABLE"
        )
