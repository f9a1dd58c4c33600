"""
Business codes shared by the domain, core and API layers.

``BusinessCode`` holds the generic ranges (1xxxx-5xxxx). Provider and
match-credit codes (6xxxx, 61xxx) live in ``shared.codes.payment_codes``;
``core.exceptions`` maps every code to its HTTP status.
"""
from enum import IntEnum


class BusinessCode(IntEnum):
    SUCCESS = 0

    # Request parameters (1xxxx)
    PARAM_ERROR = 10000
    PARAM_MISSING = 10001  # also: bearer token without a subject
    PARAM_TYPE_ERROR = 10002
    PARAM_VALIDATION_ERROR = 10003

    # Generic business state (2xxxx)
    BUSINESS_ERROR = 20000
    USER_NOT_FOUND = 20001
    TOKEN_INVALID = 20004
    TOKEN_EXPIRED = 20005
    NOT_FOUND = 20006
    CONFLICT = 20007  # caller may retry later

    # Authorization (3xxxx)
    PERMISSION_ERROR = 30000
    UNAUTHORIZED = 30001
    FORBIDDEN = 30002

    # System (4xxxx)
    SYSTEM_ERROR = 40000
    DATABASE_ERROR = 40001
    NETWORK_ERROR = 40002
    SERVICE_UNAVAILABLE = 40003

    # Rate limiting (5xxxx)
    RATE_LIMIT_ERROR = 50000
    TOO_MANY_REQUESTS = 50001


__all__ = ["BusinessCode"]
