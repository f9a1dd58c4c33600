"""
令牌服务 - 签发与校验访问令牌（JWT, sub = 用户ID）

封禁/认证状态不写入令牌，由业务服务每次从数据库重新读取。
"""
from typing import Optional
from datetime import datetime, timedelta, timezone
import jwt
import uuid

from core.config import settings
from core.exceptions import TokenExpiredException, MissingSubjectException
from core.logging_config import get_logger


logger = get_logger(__name__)


class TokenService:
    """访问令牌服务"""

    def create_access_token(self, user_id: int, *, expires_minutes: Optional[int] = None) -> str:
        """创建访问令牌"""
        expire = datetime.now(timezone.utc) + timedelta(
            minutes=expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES
        )
        to_encode = {
            "sub": str(user_id),
            "exp": expire,
            "type": "access",
            "jti": str(uuid.uuid4()),
        }
        return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

    def verify_access_token(self, token: str) -> Optional[int]:
        """Verify an access JWT and return the user id.

        - Expired token: raise TokenExpiredException
        - Valid token without subject: raise MissingSubjectException
        - Invalid token or wrong type: return None
        """
        try:
            payload = jwt.decode(
                token,
                settings.SECRET_KEY,
                algorithms=[settings.ALGORITHM],
            )
        except jwt.ExpiredSignatureError:
            raise TokenExpiredException()
        except jwt.InvalidTokenError as e:
            logger.info("invalid_access_token", error=str(e))
            return None

        if payload.get("type", "access") != "access":
            return None

        user_id = payload.get("sub")
        if user_id is None or str(user_id) == "":
            raise MissingSubjectException()
        try:
            return int(user_id)
        except (TypeError, ValueError):
            return None
