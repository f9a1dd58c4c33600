"""
Request ID 中间件
生成或透传追踪ID，并通过 contextvars 绑定到 structlog 上下文；
认证通过后再补充 user_id，便于按用户排查购买/退款日志。
"""
import re
import uuid
from contextvars import ContextVar
from typing import Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

import structlog


request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# 透传的ID直接写入日志与响应头，只接受安全字符
_VALID_REQUEST_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.headers.get("X-Real-IP") or (request.client.host if request.client else "unknown")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Request ID 追踪中间件"""

    HEADER_NAME = "X-Request-ID"

    async def dispatch(self, request: Request, call_next):
        incoming = request.headers.get(self.HEADER_NAME)
        request_id = incoming if incoming and _VALID_REQUEST_ID.match(incoming) else str(uuid.uuid4())
        client_ip = _client_ip(request)

        request.state.request_id = request_id
        request.state.client_ip = client_ip
        request_id_var.set(request_id)

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            client_ip=client_ip,
            method=request.method,
            path=request.url.path,
        )

        response = await call_next(request)
        response.headers[self.HEADER_NAME] = request_id
        return response


def bind_user_id(user_id: int) -> None:
    """认证通过后将用户ID绑定到当前请求的日志上下文"""
    structlog.contextvars.bind_contextvars(user_id=user_id)
