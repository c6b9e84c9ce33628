"""
Response envelope returned by every route: {success, data, message[, errors]}
"""
from typing import Any, Optional
from decimal import Decimal
from enum import Enum
from fastapi.responses import JSONResponse
from fastapi import status
from pydantic import BaseModel
from uuid import UUID
from datetime import datetime, date


def to_jsonable(data: Any) -> Any:
    """Pydantic models, Decimals, enums, UUIDs and datetimes to plain JSON values"""
    if isinstance(data, BaseModel):
        return to_jsonable(data.model_dump())
    if isinstance(data, Decimal):
        # Money is computed as Decimal and sent to clients as a JSON number
        return float(data)
    if isinstance(data, Enum):
        return data.value
    if isinstance(data, UUID):
        return str(data)
    if isinstance(data, (datetime, date)):
        return data.isoformat()
    if isinstance(data, (list, tuple)):
        return [to_jsonable(item) for item in data]
    if isinstance(data, dict):
        return {key: to_jsonable(value) for key, value in data.items()}
    return data


class Response(JSONResponse):
    """Directly returnable from FastAPI routes"""

    def __init__(
        self,
        success: bool = True,
        data: Any = None,
        message: str = "Success",
        status_code: int = status.HTTP_200_OK,
        errors: Optional[list] = None,
        **kwargs
    ):
        content = {"success": success, "data": to_jsonable(data), "message": message}
        if errors:
            content["errors"] = errors
        super().__init__(content=content, status_code=status_code, **kwargs)

    @staticmethod
    def success(
        data: Any = None,
        message: str = "Success",
        status_code: int = status.HTTP_200_OK,
    ) -> "Response":
        return Response(success=True, data=data, message=message, status_code=status_code)

    @staticmethod
    def error(
        message: str = "An error occurred",
        status_code: int = status.HTTP_400_BAD_REQUEST,
        data: Any = None,
        errors: Optional[list] = None
    ) -> "Response":
        """Rejections that carry a payload, e.g. a failed redemption result"""
        return Response(success=False, data=data, message=message, status_code=status_code, errors=errors)
