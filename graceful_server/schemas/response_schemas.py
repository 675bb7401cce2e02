from pydantic import BaseModel
from typing import Optional


class ApiResponse(BaseModel):
    status: bool
    message: str
    data: Optional[str] = None


def message(status: bool, text: str) -> ApiResponse:
    """Base response envelope carrying only status and message"""
    return ApiResponse(status=status, message=text)
