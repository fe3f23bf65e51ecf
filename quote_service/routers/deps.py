"""路由公共依赖：获取服务实例、失败结果转换为 HTTP 错误"""

from fastapi import HTTPException, Request, status

from quote_service.models.response import ApiResponse
from quote_service.models.result import ErrorKind, FetchError
from quote_service.services.quote_service import QuoteService

_STATUS_BY_KIND = {
    ErrorKind.NO_NETWORK: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.TIMEOUT: status.HTTP_504_GATEWAY_TIMEOUT,
}


def get_quote_service(request: Request) -> QuoteService:
    """lifespan 中创建的服务实例挂在 app.state 上"""
    return request.app.state.quote_service


def raise_for_error(error: FetchError) -> None:
    raise HTTPException(
        status_code=_STATUS_BY_KIND.get(error.kind, status.HTTP_502_BAD_GATEWAY),
        detail=ApiResponse.from_error(error).model_dump(),
    )
