import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

CORRELATION_HEADER = "X-Correlation-ID"


def get_correlation_id(request=None) -> str:
    """Correlation id forwarded by the gateway, or a fresh one"""
    if request is not None:
        forwarded = request.headers.get(CORRELATION_HEADER)
        if forwarded:
            return forwarded
    return str(uuid.uuid4())


def format_error_response(
    message: str,
    status_code: int = 500,
    error_code: Optional[str] = None,
    correlation_id: Optional[str] = None,
    **extra
) -> Dict[str, Any]:
    """Error envelope shared by every exception handler; empty extras are dropped"""
    body = {
        "success": False,
        "message": message,
        "error_code": error_code or f"ERR_{status_code}",
        "correlation_id": correlation_id or get_correlation_id(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    body.update({key: value for key, value in extra.items() if value is not None})
    return body
