"""
用户领域实体 - 额度购买只关心封禁与身份认证状态
"""
from dataclasses import dataclass
from typing import Optional


@dataclass
class User:
    """用户实体（由外部系统维护，本服务只读）"""

    id: int
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    is_banned: bool = False
    is_kyc_verified: bool = False

    @property
    def display_name(self) -> str:
        return self.first_name or self.email.split("@", 1)[0]
