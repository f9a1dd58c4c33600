"""领域层业务异常定义，供领域与基础设施使用。

核心（core）层只负责把 ``code`` 映射为 HTTP 状态；领域层不反向依赖核心层。
客户端依据 ``details["code"]`` 中的字符串错误码分支，而非解析 message。
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from shared.codes import BusinessCode


def iso_utc(dt: datetime) -> str:
    """ISO-8601 with a ``Z`` suffix, the format every client-facing timestamp uses."""
    return dt.isoformat().replace("+00:00", "Z")


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
        message_key: Optional[str] = None,
        format_params: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        self.message_key = message_key
        self.format_params = format_params
        super().__init__(self.message)


class PolicyViolation(BusinessException):
    """Rejection by a purchase/refund rule.

    ``error_code`` always lands in ``details["code"]``; extra keyword
    arguments are merged into the same details dict.
    """

    def __init__(
        self,
        code: int,
        error_code: Enum,
        message: str,
        *,
        message_key: str,
        field: Optional[str] = None,
        format_params: Optional[dict] = None,
        **details,
    ) -> None:
        super().__init__(
            code=code,
            message=message,
            error_type=type(self).__name__.removesuffix("Exception"),
            details={"code": error_code.value, **details},
            field=field,
            message_key=message_key,
            format_params=format_params,
        )


class DomainValidationException(BusinessException):
    """Entity received a value that would break its counters or status machine."""

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
        message_key: str | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
            message_key=message_key or "validation.domain",
        )
