"""
匹配意向仓储接口
"""
from abc import ABC, abstractmethod
from typing import Optional

from .entity import Intent


class IntentRepository(ABC):
    """意向仓储抽象接口"""

    @abstractmethod
    async def get_by_id(self, intent_id: int, *, for_update: bool = False) -> Optional[Intent]:
        """根据ID获取意向；for_update=True 时加行锁"""
        pass

    @abstractmethod
    async def get_by_user_id(self, user_id: int, *, for_update: bool = False) -> Optional[Intent]:
        """根据用户ID获取意向"""
        pass

    @abstractmethod
    async def ensure_for_user(self, user_id: int) -> Intent:
        """获取（必要时创建）用户的意向并加行锁

        并发的首次购买只会有一个插入生效，另一方读取到同一行。
        """
        pass

    @abstractmethod
    async def update(self, intent: Intent) -> Intent:
        """持久化计数器/锁/关联变更"""
        pass

    @abstractmethod
    async def find_user_links(self, user_id: int) -> tuple[Optional[int], Optional[int]]:
        """查找用户当前的出租房源ID与搜索ID（不存在时为 None）"""
        pass
