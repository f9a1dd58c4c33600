from .request_id import RequestIDMiddleware, bind_user_id
from .logging import LoggingMiddleware
from .locale import LocaleMiddleware

__all__ = [
    "RequestIDMiddleware",
    "LoggingMiddleware",
    "LocaleMiddleware",
    "bind_user_id",
]
