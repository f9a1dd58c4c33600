"""
请求/响应日志中间件
记录请求开始/结束与耗时；请求体按开关记录并脱敏，webhook 原始请求体从不读取
"""
import json
import time
from typing import Any

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from core.logging_config import get_logger
from core.config import settings


logger = get_logger(__name__)


class LoggingMiddleware(BaseHTTPMiddleware):
    """日志记录中间件"""

    SKIP_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}

    # 验签依赖未被改动的原始字节
    NO_BODY_PATH_PREFIXES = ("/api/v1/webhooks/",)

    SENSITIVE_FIELDS = {"password", "token", "secret", "access_token", "refresh_token", "email", "customer_email"}

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.enable_body_log_default: bool = settings.LOG_REQUEST_BODY_ENABLE_BY_DEFAULT
        self.max_body_log_bytes: int = settings.LOG_REQUEST_BODY_MAX_BYTES

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.SKIP_PATHS:
            return await call_next(request)

        start = time.perf_counter()
        request_info = await self._request_info(request)
        logger.info("request_started", **request_info)

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request_failed",
                duration=time.perf_counter() - start,
                error_type=type(exc).__name__,
                **request_info,
                exc_info=True,
            )
            raise

        duration = time.perf_counter() - start
        self._log_response(response, duration, request_info)
        response.headers["X-Process-Time"] = f"{duration:.3f}"
        return response

    async def _request_info(self, request: Request) -> dict:
        info: dict[str, Any] = {"query_params": dict(request.query_params)}
        if request.method in ("POST", "PUT", "PATCH") and self._should_log_body(request):
            body = await self._sanitized_body(request)
            if body is not None:
                info["body"] = body
        user_agent = request.headers.get("User-Agent")
        if user_agent:
            info["user_agent"] = user_agent
        return info

    def _should_log_body(self, request: Request) -> bool:
        if request.url.path.startswith(self.NO_BODY_PATH_PREFIXES):
            return False
        # X-Log-Body: true/false 覆盖默认
        header = (request.headers.get("X-Log-Body") or "").lower()
        if header in {"true", "1", "yes"}:
            return True
        if header in {"false", "0", "no"}:
            return False
        return bool(self.enable_body_log_default and settings.DEBUG)

    async def _sanitized_body(self, request: Request) -> Any:
        body = await request.body()
        if not body:
            return None
        text = body[: self.max_body_log_bytes].decode("utf-8", errors="ignore")
        if "application/json" not in request.headers.get("content-type", "").lower():
            return text
        try:
            return self._redact(json.loads(text))
        except ValueError:
            # 截断后的 JSON 无法解析，按文本记录
            return text

    def _redact(self, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: ("***" if k.lower() in self.SENSITIVE_FIELDS else self._redact(v)) for k, v in data.items()}
        if isinstance(data, list):
            return [self._redact(v) for v in data]
        return data

    def _log_response(self, response: Response, duration: float, request_info: dict):
        status_code = response.status_code
        if status_code < 400:
            logger.info("request_completed", status_code=status_code, duration=duration)
        elif status_code < 500:
            logger.warning("request_client_error", status_code=status_code, duration=duration, **request_info)
        else:
            logger.error("request_server_error", status_code=status_code, duration=duration, **request_info)
