"""统一 API 响应模型"""

from typing import Any, Optional
from pydantic import BaseModel

from quote_service.models.result import FetchError


class ApiResponse(BaseModel):
    """标准 API 响应封装"""
    success: bool = True
    data: Optional[Any] = None
    message: str = ""
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None, message: str = "success") -> "ApiResponse":
        return cls(success=True, data=data, message=message)

    @classmethod
    def fail(cls, error: str, message: str = "failed", data: Any = None) -> "ApiResponse":
        return cls(success=False, error=error, message=message, data=data)

    @classmethod
    def from_error(cls, error: FetchError) -> "ApiResponse":
        """失败结果 → 响应体，data 中保留各数据源的失败原因"""
        return cls.fail(error=error.kind.value, message=error.message, data=error.to_dict())
